"""
HTTP Microservice
=================
Flask-based HTTP API for the exam parser engine.

Lets an upload form or the grading backend hand a .docx to the parser
over HTTP instead of spawning the CLI.

Endpoints:
    POST   /api/parse         → Parse a .docx (multipart `file` or raw body)
    POST   /api/validate      → Re-validate a previously parsed exam
    GET    /api/health        → Health check
    GET    /api/info          → Parser version info
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from . import __version__
from .engine import ParserConfig, ParserEngine
from .exceptions import InvalidInputError
from .models import ExamData, SourceMetadata
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    # Flask ships MAX_CONTENT_LENGTH = None, so setdefault would not apply
    if not app.config.get("MAX_CONTENT_LENGTH"):
        app.config["MAX_CONTENT_LENGTH"] = 50 * 1024 * 1024  # 50MB
    app.config.setdefault("DEFAULT_TIME_LIMIT", 90)
    app.config.setdefault("LOG_LEVEL", "INFO")
    return app


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "exam-parser",
        "version": __version__,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Parser version and capability info."""
    return jsonify({
        "version": __version__,
        "engine": "lxml",
        "capabilities": [
            "text_extraction",
            "image_extraction",
            "section_detection",
            "answer_inference",
            "validation",
        ],
        "question_types": ["multiple_choice", "true_false", "short_answer"],
        "supported_formats": ["docx"],
    })


# ─── Parse Endpoint ──────────────────────────────────────────────────────────


@app.route("/api/parse", methods=["POST"])
def parse_docx():
    """
    Parse a .docx document synchronously.

    Accepts either:
        - A file upload (multipart/form-data, field `file`)
        - The raw document bytes as the request body

    Optional `title` and `time_limit` come from the form or query string.
    """
    filename = ""

    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return jsonify({"error": "No file selected"}), 400
        filename = file.filename
        data = file.read()
    else:
        data = request.get_data()

    if not data:
        return jsonify({
            "error": "Provide a file upload or the document as the request body"
        }), 400

    params = request.form if request.files else request.args
    title = params.get("title") or Path(filename).stem

    try:
        time_limit = int(params.get("time_limit", app.config.get("DEFAULT_TIME_LIMIT", 90)))
    except ValueError:
        return jsonify({"error": "time_limit must be an integer"}), 400

    config = ParserConfig(
        title=title,
        time_limit=time_limit,
        log_level=app.config.get("LOG_LEVEL", "INFO"),
    )

    try:
        exam = ParserEngine(config).parse_bytes(data, title=title)
    except InvalidInputError as e:
        logger.warning(f"Rejected document {filename or '<body>'}: {e}")
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        logger.error(f"Parse failed for {filename or '<body>'}: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    validation = ValidationEngine().validate(exam)
    source = SourceMetadata(
        filename=filename,
        file_hash=SourceMetadata.hash_bytes(data),
        file_size_bytes=len(data),
        media_count=len(exam.images),
    )

    return jsonify({
        "source": source.model_dump(mode="json"),
        "exam": exam.model_dump(mode="json"),
        "validation": validation.model_dump(mode="json"),
    }), 200


@app.route("/api/validate", methods=["POST"])
def validate_exam():
    """
    Validate an exam posted as JSON, either bare or wrapped as {"exam": ...}.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Provide the exam as a JSON object"}), 400

    try:
        exam = ExamData.model_validate(data.get("exam", data))
    except ValidationError as e:
        details = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        return jsonify({"error": "Invalid exam data", "details": details}), 400

    report = ValidationEngine().validate(exam)
    return jsonify(report.model_dump(mode="json")), 200


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)

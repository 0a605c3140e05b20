"""
Exam Parser Engine
==================
Main orchestrator that combines archive reading, paragraph extraction,
section detection, per-section state machines and assembly into a
complete docx-to-exam pipeline.

Usage:
    engine = ParserEngine(config)
    exam = engine.parse("path/to/exam.docx")        # ExamData
    result = engine.run("path/to/exam.docx")        # ParseResult (+ saved JSON)

Architecture:
    DOCX → DocxArchive → ParagraphExtractor → ParagraphRecords →
    detect_sections → SectionStateMachine ×3 → ExamAssembler → ExamData
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import __version__
from .archive import DocxArchive, MediaCatalog, extract_media
from .assembler import ExamAssembler
from .exceptions import InvalidInputError
from .extractor import ParagraphExtractor
from .models import (
    ExamData,
    ParagraphRecord,
    ParseResult,
    ParseVersion,
    SourceMetadata,
)
from .sections import detect_sections
from .state_machine import DIALECTS, SectionStateMachine
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ParserConfig:
    """Configuration for the parser engine."""

    # Exam metadata
    title: str = ""
    time_limit: int = 90

    # Output settings (used by run() only)
    output_dir: Optional[str] = None
    exam_id: Optional[str] = None
    save_paragraphs: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


@dataclass
class _ParsedDocument:
    exam: ExamData
    paragraphs: list[ParagraphRecord]
    catalog: MediaCatalog


class ParserEngine:
    """
    Main docx parsing engine.

    Orchestrates the full pipeline:
        1. Container opening + media extraction
        2. Paragraph extraction (text, images, underline)
        3. Section boundary detection
        4. State machine parsing per section
        5. Assembly (numbers, sanitizing, images, answer key)

    An engine holds no per-document state and can be reused.
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the package
        package_logger = logging.getLogger("exam_parser")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            package_logger.addHandler(file_handler)

    # ── Core ─────────────────────────────────────────────────────────────

    def parse_bytes(self, data: bytes, title: Optional[str] = None) -> ExamData:
        """
        Parse a .docx container held in memory.

        Args:
            data: Raw container bytes.
            title: Exam title; defaults to the configured title.

        Returns:
            The complete ExamData.

        Raises:
            InvalidInputError: If the bytes are not a readable container
                (ArchiveError) or lack the main document (MissingPartError).
        """
        return self._parse_document(data, title).exam

    def parse(self, docx_path: str) -> ExamData:
        """
        Parse a .docx file from disk.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            InvalidInputError: If the file is not a readable document.
        """
        path = self._check_path(docx_path)
        return self.parse_bytes(path.read_bytes(), title=self._title_for(path))

    def _parse_document(self, data: bytes, title: Optional[str]) -> _ParsedDocument:
        if not isinstance(data, (bytes, bytearray)):
            raise InvalidInputError(
                f"Expected document bytes, got {type(data).__name__}"
            )

        start_time = time.time()

        with DocxArchive.from_bytes(bytes(data)) as archive:
            # ── Step 1: Media ─────────────────────────────────────────
            logger.info("Phase 1: Media extraction")
            catalog = extract_media(archive)

            # ── Step 2: Paragraphs ────────────────────────────────────
            logger.info("Phase 2: Paragraph extraction")
            paragraphs = ParagraphExtractor().extract(archive.main_document())

        # ── Step 3: Sections ──────────────────────────────────────────
        logger.info("Phase 3: Section detection")
        bounds = detect_sections(paragraphs)

        # ── Step 4: State machine parsing ─────────────────────────────
        logger.info("Phase 4: State machine parsing")
        parsed = {}
        for section, (start, end) in bounds.ranges().items():
            machine = SectionStateMachine(DIALECTS[section])
            parsed[section] = machine.parse(paragraphs[start:end])

        # ── Step 5: Assembly ──────────────────────────────────────────
        logger.info("Phase 5: Assembly")
        exam = ExamAssembler(catalog).assemble(
            parsed,
            title=self.config.title if title is None else title,
            time_limit=self.config.time_limit,
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Parse complete in {elapsed:.2f}s — "
            f"{len(exam.questions)} questions extracted"
        )
        return _ParsedDocument(exam=exam, paragraphs=paragraphs, catalog=catalog)

    # ── Full run (parse + validate + save) ───────────────────────────────

    def run(self, docx_path: str) -> ParseResult:
        """
        Parse, validate and (when output_dir is set) save JSON outputs.

        Returns:
            ParseResult with exam, source metadata and validation.
        """
        path = self._check_path(docx_path)
        data = path.read_bytes()
        logger.info(f"Starting parse of: {path}")

        parsed = self._parse_document(data, self._title_for(path))
        validation = ValidationEngine().validate(parsed.exam)

        result = ParseResult(
            source=SourceMetadata(
                filename=path.name,
                file_hash=SourceMetadata.hash_bytes(data),
                file_size_bytes=len(data),
                paragraph_count=len(parsed.paragraphs),
                media_count=len(parsed.catalog),
            ),
            parse_version=ParseVersion(
                parser_version=__version__,
                paragraph_count=len(parsed.paragraphs),
                question_count=len(parsed.exam.questions),
            ),
            exam=parsed.exam,
            validation=validation,
        )

        if self.config.output_dir:
            self._save_outputs(result, parsed.paragraphs, path)

        return result

    def _save_outputs(
        self,
        result: ParseResult,
        paragraphs: list[ParagraphRecord],
        path: Path,
    ):
        exam_id = self.config.exam_id or self._generate_exam_id(path)
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        self._save_json(result.model_dump(mode="json"), output_dir / f"{exam_id}_parsed.json")
        self._save_json(
            result.validation.model_dump(mode="json"),
            output_dir / f"{exam_id}_validation.json",
        )
        if self.config.save_paragraphs:
            self._save_json(
                [p.model_dump(mode="json") for p in paragraphs],
                output_dir / f"{exam_id}_paragraphs.json",
            )

        logger.info(f"Output saved to: {output_dir}")

    def _check_path(self, docx_path: str) -> Path:
        path = Path(os.path.abspath(docx_path))
        if not path.exists():
            raise FileNotFoundError(f"Document not found: {path}")
        return path

    def _title_for(self, path: Path) -> str:
        return self.config.title or path.stem

    def _generate_exam_id(self, path: Path) -> str:
        """Generate a filesystem-safe exam ID from the file name."""
        clean_name = "".join(
            c if c.isalnum() or c in "-_" else "_"
            for c in path.stem
        )
        return clean_name[:50]

    def _save_json(self, data, filepath: Path):
        """Save JSON-ready data to a file."""
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            logger.info(f"Saved JSON: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save JSON {filepath}: {e}")

"""
Docx Exam Parser
================
Rebuilds a structured three-section exam from a Word (.docx) document.

Architecture:
    - Archive Reader: Opens the container, resolves embedded media
    - Paragraph Extractor: Text, image references and underline per paragraph
    - Section Detector: Finds PHẦN 1 / 2 / 3 boundaries
    - State Machine: Questions, options/statements, answers, solutions
    - Assembler: Numbering, sanitizing, images, answer key
    - Validator: Opt-in report on the assembled exam

Version: 1.0.0
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

__version__ = "1.0.0"


def parse_docx(source: Union[bytes, str, Path], title: str = None, time_limit: int = 90):
    """
    Parse a .docx document given as bytes or a file path into ExamData.
    """
    from .engine import ParserConfig, ParserEngine

    engine = ParserEngine(ParserConfig(time_limit=time_limit))
    if isinstance(source, (bytes, bytearray)):
        return engine.parse_bytes(bytes(source), title=title or "")
    if title:
        engine.config.title = title
    return engine.parse(str(source))


def validate_exam(exam):
    """Validation report ({valid, errors, counts}) for parsed ExamData."""
    from .validator import ValidationEngine

    return ValidationEngine().validate(exam)

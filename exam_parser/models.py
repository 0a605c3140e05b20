"""
Data Models
===========
Pydantic models for the structured exam produced from a Word document.
Every model is serializable to JSON for the persistence and grading layers.
"""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)


# ─── Enums ────────────────────────────────────────────────────────────────────


class QuestionType(str, Enum):
    """The three fixed question/section type tags."""
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


WEB_IMAGE_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/svg+xml",
})


# ─── Media ────────────────────────────────────────────────────────────────────


class ImageAsset(BaseModel):
    """
    An image embedded in the document container.
    Shared by reference between the exam and the questions showing it.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    payload: bytes = b""
    content_type: str = "image/png"
    relationship_id: str = Field(
        default="",
        description="Relationship id from the manifest, empty if unresolved"
    )

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, value):
        # JSON round-trips carry the payload as base64
        if isinstance(value, str):
            return base64.b64decode(value)
        return value

    @field_serializer("payload", when_used="json")
    def _encode_payload(self, payload: bytes) -> str:
        return base64.b64encode(payload).decode("ascii")

    @property
    def is_web_compatible(self) -> bool:
        return self.content_type in WEB_IMAGE_TYPES

    @property
    def data_url(self) -> str:
        """Inline `data:` URL for the payload, empty when there is none."""
        if not self.payload:
            return ""
        encoded = base64.b64encode(self.payload).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


# ─── Paragraph Model ──────────────────────────────────────────────────────────


class ParagraphRecord(BaseModel):
    """One physical paragraph of the main document part, normalized."""
    model_config = ConfigDict(frozen=True)

    text: str = ""
    image_ids: list[str] = Field(default_factory=list)
    has_underline: bool = False
    underlined_segments: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_blank(self):
        if not self.text and not self.image_ids:
            raise ValueError("paragraph has neither text nor images")
        return self


# ─── Question Models ──────────────────────────────────────────────────────────


class QuestionOption(BaseModel):
    """An option (single-choice) or statement (true/false)."""
    model_config = ConfigDict(frozen=True)

    letter: str
    text: str = ""


class Question(BaseModel):
    """
    A finalized question.

    `number` is `section_index * 100 + authored_number`; authored numbers
    are only unique within their section.
    """
    model_config = ConfigDict(frozen=True)

    number: int
    authored_number: int
    global_index: int = Field(ge=0)
    section_index: int = Field(ge=1, le=3)
    part: str
    question_type: QuestionType
    text: str
    options: list[QuestionOption] = Field(default_factory=list)
    correct_answer: Optional[str] = None
    images: list[ImageAsset] = Field(default_factory=list)
    solution: str = ""


class ExamSection(BaseModel):
    """One of the three exam divisions."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    section_type: QuestionType
    questions: list[Question] = Field(default_factory=list)


class ExamData(BaseModel):
    """
    The structured exam. Sole output of the parser core.
    `questions` holds the same objects as the sections, in global order.
    """
    model_config = ConfigDict(frozen=True)

    title: str = ""
    time_limit: int = Field(default=90, ge=0, description="Minutes")
    sections: list[ExamSection] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    answers: dict[int, str] = Field(default_factory=dict)
    images: list[ImageAsset] = Field(default_factory=list)

    def get_question(self, number: int) -> Optional[Question]:
        """Look up a question by its encoded number."""
        for question in self.questions:
            if question.number == number:
                return question
        return None


# ─── Validation / Parse Result Models ────────────────────────────────────────


class ValidationReport(BaseModel):
    """Post-parse validation report."""
    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    total_questions: int = 0
    structured_successfully: int = 0
    section_counts: dict[str, int] = Field(default_factory=dict)
    with_answer: int = 0
    without_answer: int = 0
    questions_missing_answer: list[int] = Field(default_factory=list)
    duplicate_question_numbers: list[int] = Field(default_factory=list)
    missing_question_numbers: list[int] = Field(default_factory=list)

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return round(
            self.structured_successfully / self.total_questions * 100,
            2
        )


class SourceMetadata(BaseModel):
    """Metadata about the source document."""
    filename: str = ""
    file_hash: str = ""
    file_size_bytes: int = 0
    paragraph_count: int = 0
    media_count: int = 0

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        """SHA-256 of the raw container bytes."""
        return hashlib.sha256(data).hexdigest()


class ParseVersion(BaseModel):
    """Version tracking for a parse run."""
    parser_version: str = "1.0.0"
    parse_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    paragraph_count: int = 0
    question_count: int = 0


class ParseResult(BaseModel):
    """
    Complete output of a parse run: the exam plus its envelope.
    This is the top-level JSON written by the CLI and returned over HTTP.
    """
    source: SourceMetadata
    parse_version: ParseVersion
    exam: ExamData
    validation: ValidationReport = Field(
        default_factory=ValidationReport
    )

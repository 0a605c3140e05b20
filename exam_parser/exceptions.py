"""
Exceptions
==========
Error and warning taxonomy for the docx exam parser.

Fatal errors abort the parse. Warnings are informational: the parse keeps
going with best-effort data.
"""


class ExamParserError(Exception):
    """Base class for parser failures."""


class InvalidInputError(ExamParserError):
    """Raised when the input is not a usable document container."""


class ArchiveError(InvalidInputError):
    """Raised when the container cannot be opened or read at all."""


class MissingPartError(InvalidInputError):
    """Raised when a required document part is absent from the container."""

    def __init__(self, part_name: str):
        super().__init__(f"Required part not found in document: {part_name}")
        self.part_name = part_name


class MediaExtractionWarning(UserWarning):
    """A media entry or the relationship manifest could not be read."""


class EmptyQuestionDiscarded(UserWarning):
    """A question marker was found but no stem text followed it."""

    def __init__(self, section: int, number: int):
        super().__init__(
            f"Section {section} question {number} has no stem text; discarded"
        )
        self.section = section
        self.number = number

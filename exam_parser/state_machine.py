"""
State Machine Parser
====================
Deterministic state machine turning one section's paragraphs into
questions. The three sections share the machine and differ only by a
Dialect (option marker, explicit-answer marker, answer inference).

    SEEKING_QUESTION → COLLECTING_STEM → COLLECTING_OPTIONS → COLLECTING_SOLUTION
            ↑__________________ next "Câu N." __________________________|
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, NamedTuple, Optional, Sequence

from .exceptions import EmptyQuestionDiscarded
from .models import ParagraphRecord, QuestionType

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# "Câu 12." / "Cau 3:" ; the rest of the paragraph seeds the stem
QUESTION_PATTERN = re.compile(
    r"^C(?:âu|au)\s*(\d+)\s*[.:]\s*(.*)", re.IGNORECASE | re.DOTALL
)

# "Lời giải" / "Loi giai:"
SOLUTION_PATTERN = re.compile(
    r"^L(?:ời|oi)\s*gi(?:ải|ai)\b\s*[.:]?\s*(.*)", re.IGNORECASE | re.DOTALL
)

# "Hình 3": figure captions are never text content
FIGURE_PATTERN = re.compile(r"^H(?:ình|inh)\s*\d+", re.IGNORECASE)

# "Chọn B" / "Chọn đáp án B" anywhere in the paragraph
CHOOSE_PATTERN = re.compile(
    r"\bCh(?:ọn|on)\s*(?:(?:đ|d)(?:áp|ap)\s*(?:án|an)\s*)?([A-D])\b",
    re.IGNORECASE,
)

# "*Đáp án: 12.5": rest of the line, verbatim
SHORT_ANSWER_PATTERN = re.compile(
    r"^[*\s]*(?:Đ|D)(?:áp|ap)\s*(?:án|an)[:\s]*(.+)", re.IGNORECASE
)

SINGLE_CHOICE_OPTION_PATTERN = re.compile(
    r"^\s*([A-D])\s*[.)]\s*(.*)", re.IGNORECASE | re.DOTALL
)
STATEMENT_PATTERN = re.compile(
    r"^\s*([a-d])\s*[).]\s*(.*)", re.IGNORECASE | re.DOTALL
)

# Section header lines that may sit inside a section's range
PART_HEADER_PATTERN = re.compile(
    r"^\s*PH(?:Ầ|A)N\s*(?:\d|[IVX]+\b)", re.IGNORECASE
)
MULTIPLE_CHOICE_HEADER_PATTERN = re.compile(
    r"^\s*(?:[IVX]+\.\s*)?TR(?:Ắ|A)C\s*NGHI(?:Ệ|E)M", re.IGNORECASE
)

# An underlined run that is just a letter: "B", "B.", "(b)"
SINGLE_LETTER_PATTERN = re.compile(r"^\(?([A-Da-d])\s*[.)]?$")
OPTION_PREFIX_PATTERN = re.compile(r"^\(?([A-Da-d])\s*[.)]")


class ParserState(Enum):
    """Where the machine is inside the current question."""
    SEEKING_QUESTION = "SEEKING_QUESTION"
    COLLECTING_STEM = "COLLECTING_STEM"
    COLLECTING_OPTIONS = "COLLECTING_OPTIONS"
    COLLECTING_SOLUTION = "COLLECTING_SOLUTION"


# ─── Intermediate Question ────────────────────────────────────────────────────


@dataclass
class OptionDraft:
    letter: str
    text: str = ""


@dataclass
class IntermediateQuestion:
    """
    A question under construction. Owned by exactly one machine and
    discarded once the assembler has converted it.
    """
    number: int
    section: int
    question_type: QuestionType
    stem: str = ""
    stem_buffer: list[str] = field(default_factory=list)
    options: list[OptionDraft] = field(default_factory=list)
    correct_answer: Optional[str] = None
    solution: str = ""
    solution_buffer: list[str] = field(default_factory=list)
    image_ids: list[str] = field(default_factory=list)
    underlined_letters: list[str] = field(default_factory=list)

    def flush_stem(self):
        """Move buffered stem fragments into the stem, once."""
        if not self.stem and self.stem_buffer:
            self.stem = " ".join(self.stem_buffer).strip()
            self.stem_buffer = []

    def attach_images(self, image_ids: Sequence[str]):
        for rid in image_ids:
            if rid not in self.image_ids:
                self.image_ids.append(rid)


# ─── Answer Inference ─────────────────────────────────────────────────────────


def first_underlined_letter(question: IntermediateQuestion) -> Optional[str]:
    """First underlined A–D letter in encounter order."""
    for letter in question.underlined_letters:
        if letter.upper() in "ABCD":
            return letter.upper()
    return None


def underlined_statement_set(question: IntermediateQuestion) -> Optional[str]:
    """Sorted, comma-joined underlined statements ("a,c"); None if none."""
    letters = sorted({
        letter.lower()
        for letter in question.underlined_letters
        if letter.lower() in "abcd"
    })
    return ",".join(letters) or None


# ─── Dialects ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Dialect:
    """Per-section configuration of the shared state machine."""
    section: int
    question_type: QuestionType
    letters: str = ""
    option_pattern: Optional[re.Pattern] = None
    answer_pattern: Optional[re.Pattern] = None
    format_answer: Callable[[str], str] = str.strip
    infer_answer: Optional[Callable[[IntermediateQuestion], Optional[str]]] = None
    track_underline: bool = False
    stem_underline_hints: bool = False
    header_patterns: tuple[re.Pattern, ...] = (PART_HEADER_PATTERN,)

    def canonical_letter(self, letter: str) -> str:
        if self.letters and self.letters[0].isupper():
            return letter.upper()
        return letter.lower()


SINGLE_CHOICE = Dialect(
    section=1,
    question_type=QuestionType.MULTIPLE_CHOICE,
    letters="ABCD",
    option_pattern=SINGLE_CHOICE_OPTION_PATTERN,
    answer_pattern=CHOOSE_PATTERN,
    format_answer=lambda value: value.strip().upper(),
    infer_answer=first_underlined_letter,
    track_underline=True,
    stem_underline_hints=True,
    header_patterns=(PART_HEADER_PATTERN, MULTIPLE_CHOICE_HEADER_PATTERN),
)

TRUE_FALSE = Dialect(
    section=2,
    question_type=QuestionType.TRUE_FALSE,
    letters="abcd",
    option_pattern=STATEMENT_PATTERN,
    infer_answer=underlined_statement_set,
    track_underline=True,
)

SHORT_ANSWER = Dialect(
    section=3,
    question_type=QuestionType.SHORT_ANSWER,
    answer_pattern=SHORT_ANSWER_PATTERN,
)

DIALECTS: dict[int, Dialect] = {
    1: SINGLE_CHOICE,
    2: TRUE_FALSE,
    3: SHORT_ANSWER,
}


class _Rule(NamedTuple):
    name: str
    matcher: Callable[[ParagraphRecord], object]
    effect: Callable[[ParagraphRecord, object], None]


# ─── State Machine ────────────────────────────────────────────────────────────


class SectionStateMachine:
    """
    Turns the paragraphs of one section into IntermediateQuestions.

    Each paragraph goes through an ordered rule list (first match wins);
    paragraphs no rule claims are content for the current state.
    """

    def __init__(self, dialect: Dialect):
        self.dialect = dialect
        self._markers = {
            letter: re.compile(rf"(?:(?<=\s)|^){letter}\s*[.)](?=\s|$)")
            for letter in dialect.letters
        }
        self._rules = [
            _Rule("question", self._match_question, self._on_question),
            _Rule("header", self._match_header, self._on_skip),
            _Rule("seeking", self._match_seeking, self._on_skip),
            _Rule("solution", self._match_solution, self._on_solution),
            _Rule("answer", self._match_answer, self._on_answer),
            _Rule("figure", self._match_figure, self._on_figure),
            _Rule("option", self._match_option, self._on_option),
        ]
        self.reset()

    def reset(self):
        """Reset the state machine for a fresh parsing run."""
        self.state = ParserState.SEEKING_QUESTION
        self.current: Optional[IntermediateQuestion] = None
        self.questions: list[IntermediateQuestion] = []
        self.discarded: list[EmptyQuestionDiscarded] = []

    def finalize(self):
        """Finalize any pending (in-progress) question at end of parsing."""
        if self.current:
            self._finalize_question()

    def parse(self, paragraphs: Sequence[ParagraphRecord]) -> list[IntermediateQuestion]:
        """Parse a section's paragraphs into questions, in document order."""
        self.reset()

        for para in paragraphs:
            self._process(para)

        self.finalize()

        logger.info(
            f"Section {self.dialect.section}: {len(self.questions)} questions"
            f" ({len(self.discarded)} discarded)"
        )
        return self.questions

    def _process(self, para: ParagraphRecord):
        for rule in self._rules:
            match = rule.matcher(para)
            if match:
                rule.effect(para, match)
                return
        self._on_content(para)

    # ── Matchers ─────────────────────────────────────────────────────────

    def _match_question(self, para: ParagraphRecord):
        return QUESTION_PATTERN.match(para.text)

    def _match_header(self, para: ParagraphRecord):
        return any(p.match(para.text) for p in self.dialect.header_patterns)

    def _match_seeking(self, para: ParagraphRecord):
        return self.current is None

    def _match_solution(self, para: ParagraphRecord):
        return SOLUTION_PATTERN.match(para.text)

    def _match_answer(self, para: ParagraphRecord):
        if self.dialect.answer_pattern is None:
            return None
        return self.dialect.answer_pattern.search(para.text)

    def _match_figure(self, para: ParagraphRecord):
        return FIGURE_PATTERN.match(para.text)

    def _match_option(self, para: ParagraphRecord):
        if self.dialect.option_pattern is None:
            return None
        if self.state not in (
            ParserState.COLLECTING_STEM, ParserState.COLLECTING_OPTIONS
        ):
            return None
        return self.dialect.option_pattern.match(para.text)

    # ── Effects ──────────────────────────────────────────────────────────

    def _on_question(self, para: ParagraphRecord, match: re.Match):
        """Finalize previous and start fresh state."""
        if self.current:
            self._finalize_question()

        number = int(match.group(1))
        logger.info(f"Detected section {self.dialect.section} question {number}")

        q = IntermediateQuestion(
            number=number,
            section=self.dialect.section,
            question_type=self.dialect.question_type,
        )
        self.current = q
        self.state = ParserState.COLLECTING_STEM
        q.attach_images(para.image_ids)

        rest = match.group(2).strip()
        if not rest:
            return
        split = self._split_trailing_options(rest)
        if split:
            stem_part, pairs = split
            if stem_part:
                q.stem_buffer.append(stem_part)
            self._add_options(para, pairs)
        else:
            q.stem_buffer.append(rest)
            self._collect_stem_underlines(para)

    def _on_skip(self, para: ParagraphRecord, match):
        logger.debug(f"Skipping paragraph: {para.text[:60]!r}")

    def _on_solution(self, para: ParagraphRecord, match: re.Match):
        q = self.current
        q.flush_stem()
        self.state = ParserState.COLLECTING_SOLUTION
        rest = match.group(1).strip()
        if rest:
            q.solution_buffer.append(rest)
        q.attach_images(para.image_ids)

    def _on_answer(self, para: ParagraphRecord, match: re.Match):
        q = self.current
        q.correct_answer = self.dialect.format_answer(match.group(1))
        logger.debug(f"Question {q.number}: explicit answer {q.correct_answer}")
        q.attach_images(para.image_ids)

    def _on_figure(self, para: ParagraphRecord, match):
        self.current.attach_images(para.image_ids)

    def _on_option(self, para: ParagraphRecord, match: re.Match):
        letter = self.dialect.canonical_letter(match.group(1))
        pairs = self._split_inline_options(letter, match.group(2).strip())
        self._add_options(para, pairs)

    def _on_content(self, para: ParagraphRecord):
        """Text no rule claimed: continuation, stem or solution by state."""
        q = self.current
        text = para.text

        if text and self.state == ParserState.COLLECTING_OPTIONS:
            option = q.options[-1]
            option.text = f"{option.text} {text}".strip()
            if self.dialect.track_underline and para.has_underline:
                q.underlined_letters.append(option.letter)

        elif text and self.state == ParserState.COLLECTING_STEM:
            split = self._split_trailing_options(text)
            if split:
                stem_part, pairs = split
                if stem_part:
                    q.stem_buffer.append(stem_part)
                self._add_options(para, pairs)
                return
            q.stem_buffer.append(text)
            self._collect_stem_underlines(para)

        elif text and self.state == ParserState.COLLECTING_SOLUTION:
            q.solution_buffer.append(text)

        q.attach_images(para.image_ids)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _add_options(self, para: ParagraphRecord, pairs: list[tuple[str, str]]):
        q = self.current
        if self.state == ParserState.COLLECTING_STEM:
            q.flush_stem()

        drafts = [OptionDraft(letter=letter, text=text) for letter, text in pairs]
        q.options.extend(drafts)
        self.state = ParserState.COLLECTING_OPTIONS

        if self.dialect.track_underline and para.has_underline:
            if len(drafts) == 1:
                q.underlined_letters.append(drafts[0].letter)
            else:
                for segment in para.underlined_segments:
                    letter = self._segment_target(segment, drafts)
                    if letter:
                        q.underlined_letters.append(letter)

        q.attach_images(para.image_ids)

    def _collect_stem_underlines(self, para: ParagraphRecord):
        if not (self.dialect.stem_underline_hints and para.has_underline):
            return
        for segment in para.underlined_segments:
            m = SINGLE_LETTER_PATTERN.match(segment.strip())
            if m:
                self.current.underlined_letters.append(
                    self.dialect.canonical_letter(m.group(1))
                )

    def _segment_target(self, segment: str, drafts: list[OptionDraft]) -> Optional[str]:
        """Which of several same-paragraph options an underlined run marks."""
        segment = segment.strip()
        letters = {d.letter for d in drafts}

        m = OPTION_PREFIX_PATTERN.match(segment) or SINGLE_LETTER_PATTERN.match(segment)
        if m:
            letter = self.dialect.canonical_letter(m.group(1))
            if letter in letters:
                return letter

        for draft in drafts:
            if segment == draft.text:
                return draft.letter
        for draft in drafts:
            if segment and segment in draft.text:
                return draft.letter
        return None

    def _split_inline_options(self, letter: str, text: str) -> list[tuple[str, str]]:
        """
        Split "3 B. 4 C. 5" (after "A.") into one pair per option.

        Only the next letter in sequence is looked for. A run counts only
        with at least two further markers, each followed by text; anything
        less ("Vuông tại B.") stays a single option.
        """
        letters = self.dialect.letters
        pairs: list[tuple[str, str]] = []
        idx = letters.find(letter)
        remaining = text

        while 0 <= idx < len(letters) - 1:
            next_letter = letters[idx + 1]
            m = self._markers[next_letter].search(remaining)
            if not m:
                break
            pairs.append((letter, remaining[:m.start()].strip()))
            letter = next_letter
            remaining = remaining[m.end():]
            idx += 1

        pairs.append((letter, remaining.strip()))
        if len(pairs) < 3 or not all(option_text for _, option_text in pairs):
            return [(pairs[0][0], text.strip())]
        return pairs

    def _split_trailing_options(self, text: str):
        """
        Detect a full option run at the end of stem text:
        "2+2=? A. 3 B. 4 C. 5 D. 6" → ("2+2=?", [(A, 3), ...]).
        Requires every letter of the dialect, in order.
        """
        letters = self.dialect.letters
        if not letters:
            return None
        m = self._markers[letters[0]].search(text)
        if not m or m.start() == 0:
            return None
        pairs = self._split_inline_options(letters[0], text[m.end():])
        if len(pairs) < len(letters):
            return None
        return text[:m.start()].strip(), pairs

    def _finalize_question(self):
        """Flush buffers, infer the answer, keep or discard the question."""
        q = self.current
        self.current = None
        self.state = ParserState.SEEKING_QUESTION

        q.flush_stem()
        if q.solution_buffer:
            q.solution = " ".join(q.solution_buffer).strip()

        if q.correct_answer is None and self.dialect.infer_answer:
            inferred = self.dialect.infer_answer(q)
            if inferred:
                q.correct_answer = inferred
                logger.debug(f"Question {q.number}: answer from underline = {inferred}")

        if not q.stem:
            notice = EmptyQuestionDiscarded(q.section, q.number)
            logger.info(str(notice))
            self.discarded.append(notice)
            return

        self.questions.append(q)

"""
Section Boundary Detector
=========================
Locates where the three exam sections start in the paragraph stream.

    PHẦN 1 → single-choice
    PHẦN 2 → true/false statements
    PHẦN 3 → short answer

A document without recognizable headers is treated as all section 1.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from .models import ParagraphRecord

logger = logging.getLogger(__name__)

# ─── Header Patterns (ordered, first match wins) ─────────────────────────────

SECTION_HEADER_PATTERNS: dict[int, list[re.Pattern]] = {
    1: [
        re.compile(r"PHẦN\s*1", re.IGNORECASE),
        re.compile(r"PHAN\s*1", re.IGNORECASE),
        re.compile(r"PHẦN\s+I[.\s]", re.IGNORECASE),
        re.compile(r"I\.\s*TRẮC\s*NGHIỆM", re.IGNORECASE),
        re.compile(r"I\.\s*TRAC\s*NGHIEM", re.IGNORECASE),
    ],
    2: [
        re.compile(r"PHẦN\s*2", re.IGNORECASE),
        re.compile(r"PHAN\s*2", re.IGNORECASE),
        re.compile(r"PHẦN\s+II[.\s]", re.IGNORECASE),
        re.compile(r"II\.\s*ĐÚNG\s*SAI", re.IGNORECASE),
        re.compile(r"II\.\s*DUNG\s*SAI", re.IGNORECASE),
        re.compile(r"ĐÚNG\s*SAI", re.IGNORECASE),
        re.compile(r"DUNG\s*SAI", re.IGNORECASE),
    ],
    3: [
        re.compile(r"PHẦN\s*3", re.IGNORECASE),
        re.compile(r"PHAN\s*3", re.IGNORECASE),
        re.compile(r"PHẦN\s+III[.\s]", re.IGNORECASE),
        re.compile(r"III\.\s*TRẢ\s*LỜI", re.IGNORECASE),
        re.compile(r"III\.\s*TRA\s*LOI", re.IGNORECASE),
        re.compile(r"TRẢ\s*LỜI\s*NGẮN", re.IGNORECASE),
        re.compile(r"TRA\s*LOI\s*NGAN", re.IGNORECASE),
    ],
}

NOT_FOUND = -1


def match_section_header(section: int, text: str) -> bool:
    return any(p.search(text) for p in SECTION_HEADER_PATTERNS[section])


@dataclass(frozen=True)
class SectionBounds:
    """Start offsets of the three sections in the paragraph sequence."""
    part1_start: int
    part2_start: int
    part3_start: int
    total: int

    def ranges(self) -> dict[int, tuple[int, int]]:
        """
        Half-open (start, end) paragraph range per section.
        A section ends where the next detected section begins.
        """
        starts = {1: self.part1_start, 2: self.part2_start, 3: self.part3_start}
        result = {}
        for section, start in starts.items():
            ends = [
                other_start
                for other, other_start in starts.items()
                if other_start > start or (other_start == start and other > section)
            ]
            result[section] = (start, min(ends, default=self.total))
        return result


def detect_sections(paragraphs: Sequence[ParagraphRecord]) -> SectionBounds:
    """
    Single scan over the paragraphs.

    Section 2 is only looked for after section 1's header, section 3 only
    after the later of the first two. Missing section 1 starts at 0,
    missing sections 2 and 3 are empty (start at the end).
    """
    starts = {1: NOT_FOUND, 2: NOT_FOUND, 3: NOT_FOUND}

    for i, para in enumerate(paragraphs):
        text = para.text
        if not text:
            continue

        if starts[1] == NOT_FOUND and match_section_header(1, text):
            starts[1] = i

        if starts[2] == NOT_FOUND and i > starts[1] and match_section_header(2, text):
            starts[2] = i

        if (
            starts[3] == NOT_FOUND
            and i > max(starts[1], starts[2])
            and match_section_header(3, text)
        ):
            starts[3] = i

    total = len(paragraphs)
    bounds = SectionBounds(
        part1_start=starts[1] if starts[1] != NOT_FOUND else 0,
        part2_start=starts[2] if starts[2] != NOT_FOUND else total,
        part3_start=starts[3] if starts[3] != NOT_FOUND else total,
        total=total,
    )
    logger.info(
        f"Section starts: 1={bounds.part1_start}, "
        f"2={bounds.part2_start}, 3={bounds.part3_start} (of {total})"
    )
    return bounds

"""
Exam Assembler
==============
Turns the per-section IntermediateQuestions into the final ExamData:
global ordering, encoded numbers, sanitized text, resolved images,
sections and answer key.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .archive import MediaCatalog
from .models import (
    ExamData,
    ExamSection,
    ImageAsset,
    Question,
    QuestionOption,
    QuestionType,
)
from .state_machine import IntermediateQuestion
from .text import escape_html_preserve_latex

logger = logging.getLogger(__name__)

SECTION_NUMBER_BASE = 100

SECTION_INFO: dict[int, tuple[str, str, QuestionType]] = {
    1: (
        "PHẦN 1. Trắc nghiệm nhiều lựa chọn",
        "Thí sinh chọn một phương án đúng A, B, C hoặc D",
        QuestionType.MULTIPLE_CHOICE,
    ),
    2: (
        "PHẦN 2. Trắc nghiệm đúng sai",
        "Thí sinh chọn Đúng hoặc Sai cho mỗi ý a), b), c), d)",
        QuestionType.TRUE_FALSE,
    ),
    3: (
        "PHẦN 3. Trắc nghiệm trả lời ngắn",
        "Thí sinh điền đáp án số vào ô trống",
        QuestionType.SHORT_ANSWER,
    ),
}


def encode_question_number(section: int, authored_number: int) -> int:
    """Globally unique number: authored numbers repeat across sections."""
    return section * SECTION_NUMBER_BASE + authored_number


class ExamAssembler:
    """
    Builds ExamData from parsed sections and the media catalog.
    """

    def __init__(self, catalog: Optional[MediaCatalog] = None):
        self.catalog = catalog or MediaCatalog()

    def assemble(
        self,
        parsed: dict[int, Sequence[IntermediateQuestion]],
        title: str = "",
        time_limit: int = 90,
    ) -> ExamData:
        """
        Args:
            parsed: Section index (1-3) → questions in document order.
            title: Exam title.
            time_limit: Minutes.
        """
        sections: list[ExamSection] = []
        questions: list[Question] = []
        answers: dict[int, str] = {}
        global_index = 0

        for section in sorted(SECTION_INFO):
            drafts = sorted(parsed.get(section, []), key=lambda q: q.number)
            if not drafts:
                continue

            section_questions: list[Question] = []
            for draft in drafts:
                q = self._convert(draft, section, global_index)
                global_index += 1
                section_questions.append(q)
                questions.append(q)
                # Answer key holds auto-gradable types only
                if (
                    q.correct_answer is not None
                    and q.question_type != QuestionType.TRUE_FALSE
                ):
                    answers[q.number] = q.correct_answer

            name, description, section_type = SECTION_INFO[section]
            sections.append(ExamSection(
                name=name,
                description=description,
                section_type=section_type,
                questions=section_questions,
            ))

        logger.info(
            f"Assembled {len(questions)} questions in {len(sections)} sections, "
            f"{len(answers)} answers"
        )

        return ExamData(
            title=title,
            time_limit=time_limit,
            sections=sections,
            questions=questions,
            answers=answers,
            images=self.catalog.assets,
        )

    def _convert(
        self, draft: IntermediateQuestion, section: int, global_index: int
    ) -> Question:
        return Question(
            number=encode_question_number(section, draft.number),
            authored_number=draft.number,
            global_index=global_index,
            section_index=section,
            part=f"PHẦN {section}",
            question_type=draft.question_type,
            text=escape_html_preserve_latex(draft.stem),
            options=[
                QuestionOption(
                    letter=opt.letter,
                    text=escape_html_preserve_latex(opt.text),
                )
                for opt in draft.options
            ],
            correct_answer=draft.correct_answer,
            images=self._resolve_images(draft),
            solution=draft.solution,
        )

    def _resolve_images(self, draft: IntermediateQuestion) -> list[ImageAsset]:
        images: list[ImageAsset] = []
        for rid in draft.image_ids:
            asset = self.catalog.resolve(rid)
            if asset is None:
                logger.warning(
                    f"Section {draft.section} question {draft.number}: "
                    f"unresolved image reference {rid}"
                )
                continue
            if all(img.id != asset.id for img in images):
                images.append(asset)
        return images

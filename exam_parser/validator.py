"""
Validation Engine
=================
Opt-in post-parse validation of an ExamData.

The parser never refuses to produce a result; this report is how callers
decide whether the result is usable:
    - Errors: no questions at all, questions with an empty stem
    - Counts by section and by answer presence
    - Duplicate encoded numbers, gaps in authored numbering
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict

from .assembler import encode_question_number
from .models import ExamData, ValidationReport

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates an assembled exam and produces a report.
    """

    def validate(self, exam: ExamData) -> ValidationReport:
        """
        Run full validation on an exam.

        Args:
            exam: The parsed exam.

        Returns:
            ValidationReport; `valid` is False when any error was found.
        """
        report = ValidationReport()
        questions = exam.questions

        if not questions:
            logger.warning("No questions to validate")
            report.errors.append("No questions found in document")
            report.valid = False
            return report

        report.total_questions = len(questions)

        number_counts = Counter(q.number for q in questions)
        report.duplicate_question_numbers = sorted(
            num for num, count in number_counts.items() if count > 1
        )

        authored_by_section: dict[int, set[int]] = defaultdict(set)
        section_counts: Counter = Counter()

        for q in questions:
            section_counts[q.question_type.value] += 1
            authored_by_section[q.section_index].add(q.authored_number)

            has_text = bool(q.text and q.text.strip())
            if not has_text:
                report.errors.append(f"Question {q.number}: missing question text")

            if q.correct_answer:
                report.with_answer += 1
            else:
                report.without_answer += 1
                report.questions_missing_answer.append(q.number)

            if has_text and q.correct_answer:
                report.structured_successfully += 1

        # Gaps in authored numbering, reported as encoded numbers
        missing: list[int] = []
        for section, numbers in sorted(authored_by_section.items()):
            expected = set(range(min(numbers), max(numbers) + 1))
            missing.extend(
                encode_question_number(section, n)
                for n in sorted(expected - numbers)
            )
        report.missing_question_numbers = missing

        report.section_counts = dict(section_counts)
        report.valid = not report.errors

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Questions: {report.total_questions}")
        for section_type, count in report.section_counts.items():
            logger.info(f"  • {section_type}: {count}")
        logger.info(
            f"With Answer: {report.with_answer} | "
            f"Without Answer: {report.without_answer}"
        )
        logger.info(
            f"Duplicate Question Numbers: "
            f"{len(report.duplicate_question_numbers)}"
        )
        logger.info(
            f"Missing Question Numbers: "
            f"{len(report.missing_question_numbers)}"
        )
        for error in report.errors:
            logger.warning(error)
        logger.info("=" * 60)

        return report

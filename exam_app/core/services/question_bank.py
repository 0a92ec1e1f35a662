"""Service for managing the questions supplied for each exam."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from exam_app.constants.exam_constants import (
    DEFAULT_EXAM_DURATION_SECONDS,
    MAX_CHOICE_OPTIONS,
    MIN_CHOICE_OPTIONS,
    TRUE_FALSE_OPTIONS,
)
from exam_app.core.errors import InvalidSessionError
from exam_app.core.models import ExamDefinition, Question, QuestionKind

logger = logging.getLogger(__name__)


class QuestionBank:
    """In-memory question supply keyed by exam id."""

    def __init__(self) -> None:
        self._exams: dict[str, ExamDefinition] = {}

    def register_exam(
        self,
        exam_id: str,
        title: str,
        questions: Sequence[Question],
        duration_seconds: float = DEFAULT_EXAM_DURATION_SECONDS,
        question_count: int | None = None,
    ) -> ExamDefinition:
        """Validate and store an exam, replacing any previous definition with the same id."""
        if not questions:
            raise ValueError("Exam must contain at least one question.")
        if not (duration_seconds > 0 and math.isfinite(duration_seconds)):
            raise ValueError("Exam duration must be a positive, finite number of seconds.")
        if question_count is not None and question_count <= 0:
            raise ValueError("Question count must be a positive integer.")

        prepared = [self._prepare_question(q) for q in questions]
        seen: set[str] = set()
        for question in prepared:
            if question.id in seen:
                raise ValueError(f"Duplicate question id '{question.id}'.")
            seen.add(question.id)

        definition = ExamDefinition(
            exam_id=exam_id,
            title=title.strip() or exam_id,
            questions=tuple(prepared),
            duration_seconds=float(duration_seconds),
            question_count=question_count,
        )
        self._exams[exam_id] = definition
        logger.info("Registered exam %s (%d questions)", exam_id, len(prepared))
        return definition

    def get_exam(self, exam_id: str) -> ExamDefinition:
        definition = self._exams.get(exam_id)
        if definition is None:
            raise InvalidSessionError(f"Unknown exam '{exam_id}'.")
        return definition

    def get_questions(self, exam_id: str) -> list[Question]:
        """Return a copy of the full question list for an exam."""
        return list(self.get_exam(exam_id).questions)

    def has_exam(self, exam_id: str) -> bool:
        return exam_id in self._exams

    def list_exams(self) -> list[ExamDefinition]:
        return list(self._exams.values())

    def remove_exam(self, exam_id: str) -> None:
        self.get_exam(exam_id)
        del self._exams[exam_id]

    def _prepare_question(self, question: Question) -> Question:
        """Validate and normalize a question before storage."""
        question_id = str(question.id).strip()
        if not question_id:
            raise ValueError("Question id must not be empty.")
        cleaned_text = question.text.strip()
        if not cleaned_text:
            raise ValueError(f"Question '{question_id}' text must not be empty.")
        if not (question.points > 0 and math.isfinite(question.points)):
            raise ValueError(f"Question '{question_id}' must be worth a positive, finite number of points.")

        options = self._validate_options(question_id, question.kind, question.options)
        correct_index = question.correct_option_index
        if question.kind.is_auto_gradable:
            if correct_index is None or not 0 <= correct_index < len(options):
                raise ValueError(
                    f"Question '{question_id}' needs a correct option index between 0 and {len(options) - 1}."
                )
        else:
            correct_index = None

        return Question(
            id=question_id,
            text=cleaned_text,
            kind=question.kind,
            options=options,
            correct_option_index=correct_index,
            points=float(question.points),
        )

    @staticmethod
    def _validate_options(
        question_id: str, kind: QuestionKind, options: Sequence[str]
    ) -> tuple[str, ...]:
        cleaned = tuple(option.strip() for option in options)
        if kind is QuestionKind.TRUE_FALSE:
            # Answers map True to option 0, so the labels are fixed.
            if cleaned and cleaned != TRUE_FALSE_OPTIONS:
                raise ValueError(
                    f"True/false question '{question_id}' must use the options {TRUE_FALSE_OPTIONS}."
                )
            return TRUE_FALSE_OPTIONS
        if kind is QuestionKind.SINGLE_CHOICE:
            if not MIN_CHOICE_OPTIONS <= len(cleaned) <= MAX_CHOICE_OPTIONS:
                raise ValueError(
                    f"Question '{question_id}' must have between {MIN_CHOICE_OPTIONS} "
                    f"and {MAX_CHOICE_OPTIONS} options."
                )
        elif cleaned:
            raise ValueError(f"Free-text question '{question_id}' cannot have options.")

        if any(not option for option in cleaned):
            raise ValueError(f"Option text cannot be empty (question '{question_id}').")
        return cleaned

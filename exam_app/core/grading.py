"""Scoring of finished attempts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Mapping

from exam_app.core.errors import InvalidStateError
from exam_app.core.models import AnswerRecord, GradingResult, Question

if TYPE_CHECKING:
    from exam_app.core.services.exam_session import ExamSession


def grade_answers(
    questions: Iterable[Question],
    answers: Mapping[str, AnswerRecord],
) -> GradingResult:
    """Score auto-gradable questions and count free-text answers left for a human.

    Unanswered questions simply earn nothing. Free-text answers that are blank
    are not sent to manual review.
    """
    score = 0.0
    max_score = 0.0
    pending = 0
    correct_ids: list[str] = []

    for question in questions:
        record = answers.get(question.id)
        if question.is_auto_gradable:
            max_score += question.points
            if record is not None and question.is_correct(record.value):
                score += question.points
                correct_ids.append(question.id)
        elif record is not None and str(record.value).strip():
            pending += 1

    return GradingResult(
        score=score,
        max_auto_gradable_score=max_score,
        pending_manual_review=pending,
        correct_question_ids=tuple(correct_ids),
        answered_count=len(answers),
    )


def grade_session(session: ExamSession) -> GradingResult:
    """Grade a session that has reached a terminal state."""
    if not session.state.is_terminal:
        raise InvalidStateError(
            f"Cannot grade session {session.session_id} in state {session.state.value}."
        )
    return grade_answers(session.questions, session.answers)

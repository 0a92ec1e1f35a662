"""Service for managing one student's timed attempt at an exam."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import math
from typing import Callable, Sequence
from uuid import uuid4

from exam_app.core.errors import (
    InvalidAnswerError,
    InvalidSessionError,
    InvalidStateError,
    OutOfRangeError,
    UnknownQuestionError,
)
from exam_app.core.grading import grade_answers
from exam_app.core.models import (
    AnswerRecord,
    AnswerValue,
    AttemptRecord,
    GradingResult,
    Question,
    QuestionKind,
    SessionSnapshot,
    SessionState,
    SubmitOutcome,
    ViolationEvent,
    ViolationKind,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
FinalizedCallback = Callable[[AttemptRecord], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExamSession:
    """State machine for a single attempt: answers, navigation, countdown and submission.

    The session never owns a timer. Time only moves when ``tick`` is called,
    and integrity signals only count when ``report_integrity_violation`` is
    called, so any driver (thread, event loop, test) can feed it.
    """

    def __init__(
        self,
        student_id: str,
        exam_id: str,
        *,
        session_id: str | None = None,
        clock: Clock | None = None,
        on_finalized: FinalizedCallback | None = None,
    ) -> None:
        self._session_id = session_id or uuid4().hex
        self._student_id = student_id
        self._exam_id = exam_id
        self._clock = clock or _utc_now
        self._on_finalized = on_finalized

        self._state = SessionState.NOT_STARTED
        self._questions: tuple[Question, ...] = ()
        self._questions_by_id: dict[str, Question] = {}
        self._current_index: int = 0
        self._answers: dict[str, AnswerRecord] = {}
        self._bookmarks: set[str] = set()
        self._duration_seconds: float = 0.0
        self._remaining_seconds: float = 0.0
        self._violation_count: int = 0
        self._violations: list[ViolationEvent] = []
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._record: AttemptRecord | None = None

    # --- Read-only state ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def exam_id(self) -> str:
        return self._exam_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def questions(self) -> tuple[Question, ...]:
        return self._questions

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question(self) -> Question | None:
        if not self._questions:
            return None
        return self._questions[self._current_index]

    @property
    def answers(self) -> dict[str, AnswerRecord]:
        return dict(self._answers)

    @property
    def bookmarks(self) -> frozenset[str]:
        return frozenset(self._bookmarks)

    @property
    def duration_seconds(self) -> float:
        return self._duration_seconds

    @property
    def remaining_seconds(self) -> float:
        return self._remaining_seconds

    @property
    def elapsed_seconds(self) -> float:
        return self._duration_seconds - self._remaining_seconds

    @property
    def violation_count(self) -> int:
        return self._violation_count

    @property
    def violations(self) -> tuple[ViolationEvent, ...]:
        return tuple(self._violations)

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def result(self) -> GradingResult | None:
        return self._record.result if self._record else None

    def get_answer(self, question_id: str) -> AnswerRecord | None:
        return self._answers.get(question_id)

    def unanswered_question_ids(self) -> list[str]:
        """Question ids without an answer record, in presentation order."""
        return [question.id for question in self._questions if question.id not in self._answers]

    # --- Lifecycle ---

    def start(self, questions: Sequence[Question], duration_seconds: float) -> None:
        """Begin the attempt with an already randomized question list."""
        if self._state is not SessionState.NOT_STARTED:
            raise InvalidStateError(f"Session {self._session_id} has already been started.")
        if not questions:
            raise InvalidSessionError("A session needs at least one question.")
        if not (duration_seconds > 0 and math.isfinite(duration_seconds)):
            raise InvalidSessionError("Time budget must be a positive, finite number of seconds.")

        by_id: dict[str, Question] = {}
        for question in questions:
            if question.id in by_id:
                raise InvalidSessionError(f"Duplicate question id '{question.id}' in session.")
            by_id[question.id] = question

        self._questions = tuple(questions)
        self._questions_by_id = by_id
        self._current_index = 0
        self._answers = {}
        self._bookmarks = set()
        self._violation_count = 0
        self._violations = []
        self._duration_seconds = float(duration_seconds)
        self._remaining_seconds = float(duration_seconds)
        self._started_at = self._clock()
        self._state = SessionState.IN_PROGRESS
        logger.info(
            "Session %s started: student=%s exam=%s questions=%d budget=%.0fs",
            self._session_id,
            self._student_id,
            self._exam_id,
            len(self._questions),
            self._duration_seconds,
        )

    def answer(self, question_id: str, value: AnswerValue) -> AnswerRecord:
        """Insert or overwrite the answer for ``question_id``. Does not move the cursor."""
        self._require_in_progress("answer")
        question = self._get_question(question_id)
        self._validate_answer(question, value)

        record = AnswerRecord(question_id=question_id, value=value, answered_at=self._clock())
        self._answers[question_id] = record
        return record

    def navigate(self, index: int) -> Question:
        """Move to ``index``. Unanswered questions may be left behind freely."""
        self._require_in_progress("navigate")
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._questions):
            raise OutOfRangeError(
                f"Question index {index} out of range (0..{len(self._questions) - 1})."
            )
        self._current_index = index
        return self._questions[index]

    def next_question(self) -> int:
        self._require_in_progress("navigate")
        self._current_index = min(self._current_index + 1, len(self._questions) - 1)
        return self._current_index

    def previous_question(self) -> int:
        self._require_in_progress("navigate")
        self._current_index = max(self._current_index - 1, 0)
        return self._current_index

    def bookmark(self, question_id: str) -> None:
        self._require_in_progress("bookmark")
        self._get_question(question_id)
        self._bookmarks.add(question_id)

    def unbookmark(self, question_id: str) -> None:
        self._require_in_progress("unbookmark")
        self._get_question(question_id)
        self._bookmarks.discard(question_id)

    def toggle_bookmark(self, question_id: str) -> bool:
        """Flip bookmark membership and return the new value."""
        if question_id in self._bookmarks:
            self.unbookmark(question_id)
            return False
        self.bookmark(question_id)
        return True

    def report_integrity_violation(
        self,
        kind: ViolationKind = ViolationKind.OTHER,
        details: str | None = None,
    ) -> bool:
        """Count and log one violation. Signals outside an active attempt are ignored."""
        if self._state is not SessionState.IN_PROGRESS:
            logger.debug(
                "Ignoring integrity signal for session %s in state %s",
                self._session_id,
                self._state.value,
            )
            return False
        self._violation_count += 1
        self._violations.append(ViolationEvent(kind=kind, detected_at=self._clock(), details=details))
        logger.warning(
            "Integrity violation #%d (%s) for session %s (student=%s)",
            self._violation_count,
            kind.value,
            self._session_id,
            self._student_id,
        )
        return True

    def tick(self, elapsed_seconds: float) -> float:
        """Consume ``elapsed_seconds`` of the budget; expire the attempt at zero.

        Returns the remaining budget, which never drops below zero.
        """
        if not (elapsed_seconds >= 0 and math.isfinite(elapsed_seconds)):
            raise ValueError(f"Elapsed time must be a finite, non-negative number (got {elapsed_seconds!r}).")
        self._require_in_progress("tick")

        self._remaining_seconds = max(0.0, self._remaining_seconds - elapsed_seconds)
        if self._remaining_seconds <= 0:
            logger.info("Session %s ran out of time", self._session_id)
            self._finalize(SessionState.EXPIRED)
        return self._remaining_seconds

    def submit(self, force: bool = False) -> SubmitOutcome:
        """Submit the attempt.

        Without ``force``, unanswered questions produce a warning outcome and
        the session stays in progress so the caller can ask for confirmation.
        """
        self._require_in_progress("submit")
        unanswered = tuple(self.unanswered_question_ids())
        if unanswered and not force:
            return SubmitOutcome(
                submitted=False,
                unanswered_count=len(unanswered),
                unanswered_question_ids=unanswered,
            )

        self._state = SessionState.SUBMITTING
        record = self._finalize(SessionState.SUBMITTED)
        return SubmitOutcome(
            submitted=True,
            unanswered_count=len(unanswered),
            unanswered_question_ids=unanswered,
            result=record.result,
        )

    def abandon(self) -> AttemptRecord:
        """Tear down an attempt that was left before submission; keeps existing answers."""
        self._require_in_progress("abandon")
        logger.info("Session %s abandoned by its context", self._session_id)
        return self._finalize(SessionState.ABANDONED)

    # --- Snapshots ---

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self._session_id,
            student_id=self._student_id,
            exam_id=self._exam_id,
            state=self._state,
            current_index=self._current_index,
            current_question=self.current_question,
            question_count=len(self._questions),
            answered_count=len(self._answers),
            remaining_seconds=self._remaining_seconds,
            elapsed_seconds=self.elapsed_seconds,
            violation_count=self._violation_count,
            bookmarks=frozenset(self._bookmarks),
            answered_question_ids=frozenset(self._answers),
        )

    def to_record(self) -> AttemptRecord:
        """Return the finalized record of a terminal session."""
        if self._record is None:
            raise InvalidStateError(
                f"Session {self._session_id} is {self._state.value}; no final record yet."
            )
        return self._record

    # --- Internals ---

    def _finalize(self, outcome: SessionState) -> AttemptRecord:
        self._finished_at = self._clock()
        result = grade_answers(self._questions, self._answers)
        self._state = outcome
        self._record = AttemptRecord(
            session_id=self._session_id,
            student_id=self._student_id,
            exam_id=self._exam_id,
            outcome=outcome,
            started_at=self._started_at or self._finished_at,
            finished_at=self._finished_at,
            duration_seconds=self._duration_seconds,
            remaining_seconds=self._remaining_seconds,
            questions=self._questions,
            answers=dict(self._answers),
            bookmarks=frozenset(self._bookmarks),
            violation_count=self._violation_count,
            current_index=self._current_index,
            violations=tuple(self._violations),
            result=result,
        )
        logger.info(
            "Session %s finished as %s: score=%.2f/%.2f pending_review=%d violations=%d",
            self._session_id,
            outcome.value,
            result.score,
            result.max_auto_gradable_score,
            result.pending_manual_review,
            self._violation_count,
        )
        if self._on_finalized is not None:
            self._on_finalized(self._record)
        return self._record

    def _require_in_progress(self, operation: str) -> None:
        if self._state is not SessionState.IN_PROGRESS:
            raise InvalidStateError(
                f"Cannot {operation} session {self._session_id} in state {self._state.value}."
            )

    def _get_question(self, question_id: str) -> Question:
        question = self._questions_by_id.get(question_id)
        if question is None:
            raise UnknownQuestionError(
                f"Question '{question_id}' is not part of session {self._session_id}."
            )
        return question

    @staticmethod
    def _validate_answer(question: Question, value: AnswerValue) -> None:
        if question.kind is QuestionKind.SINGLE_CHOICE:
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidAnswerError(
                    f"Question '{question.id}' expects an option index, got {value!r}."
                )
            if not 0 <= value < len(question.options):
                raise InvalidAnswerError(
                    f"Option index {value} out of range for question '{question.id}'."
                )
        elif question.kind is QuestionKind.TRUE_FALSE:
            if not isinstance(value, bool):
                raise InvalidAnswerError(
                    f"Question '{question.id}' expects true or false, got {value!r}."
                )
        elif not isinstance(value, str):
            raise InvalidAnswerError(
                f"Question '{question.id}' expects a text answer, got {value!r}."
            )

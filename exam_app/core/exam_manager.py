"""Business logic for running exam attempts, shared between the API and the tick driver."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import random
from threading import Lock
from typing import Callable, Sequence

from exam_app.constants.exam_constants import (
    ACTIVE_ATTEMPT_STALE_AFTER_SECONDS,
    DEFAULT_EXAM_DURATION_SECONDS,
)
from exam_app.core.errors import DuplicateAttemptError, InvalidStateError, UnknownAttemptError
from exam_app.core.models import (
    ActiveAttempt,
    AnswerRecord,
    AnswerValue,
    AttemptRecord,
    ExamDefinition,
    Question,
    SessionSnapshot,
    SessionState,
    SubmitOutcome,
    ViolationEvent,
    ViolationKind,
)
from exam_app.core.randomizer import randomize_questions
from exam_app.core.services.attempt_store import AttemptStore
from exam_app.core.services.exam_session import ExamSession
from exam_app.core.services.integrity_monitor import IntegrityMonitor
from exam_app.core.services.question_bank import QuestionBank

logger = logging.getLogger(__name__)


class ExamManager:
    """Facade for exam services: QuestionBank, ExamSession, IntegrityMonitor and AttemptStore."""

    def __init__(
        self,
        question_bank: QuestionBank | None = None,
        attempt_store: AttemptStore | None = None,
        integrity_monitor: IntegrityMonitor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._lock = Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Services
        self._bank = question_bank or QuestionBank()
        self._store = attempt_store or AttemptStore()
        self._monitor = integrity_monitor or IntegrityMonitor()

        # Live attempts, dropped once their final record has been handed to the store
        self._sessions: dict[str, ExamSession] = {}
        self._last_activity: dict[str, datetime] = {}
        self._pending: list[AttemptRecord] = []

    # --- Question Bank Delegation ---

    def register_exam(
        self,
        exam_id: str,
        title: str,
        questions: Sequence[Question],
        duration_seconds: float = DEFAULT_EXAM_DURATION_SECONDS,
        question_count: int | None = None,
    ) -> ExamDefinition:
        with self._lock:
            return self._bank.register_exam(exam_id, title, questions, duration_seconds, question_count)

    def list_exams(self) -> list[ExamDefinition]:
        with self._lock:
            return self._bank.list_exams()

    def get_exam(self, exam_id: str) -> ExamDefinition:
        with self._lock:
            return self._bank.get_exam(exam_id)

    # --- Attempt Lifecycle ---

    def start_attempt(
        self,
        student_id: str,
        exam_id: str,
        question_count: int | None = None,
        duration_seconds: float | None = None,
        rng: random.Random | None = None,
    ) -> SessionSnapshot:
        """Draw a fresh question order for this attempt and start its session."""
        with self._lock:
            exam = self._bank.get_exam(exam_id)
            for session in self._sessions.values():
                if (
                    session.student_id == student_id
                    and session.exam_id == exam_id
                    and session.state is SessionState.IN_PROGRESS
                ):
                    raise DuplicateAttemptError(
                        f"Student {student_id} already has an attempt in progress for exam {exam_id}."
                    )

            count = question_count if question_count is not None else exam.question_count
            questions = randomize_questions(exam.questions, count, rng)
            session = ExamSession(student_id, exam_id, clock=self._clock, on_finalized=self._persist)
            session.start(questions, duration_seconds if duration_seconds is not None else exam.duration_seconds)
            self._sessions[session.session_id] = session
            self._touch(session.session_id)
            return session.snapshot()

    def get_snapshot(self, session_id: str) -> SessionSnapshot:
        with self._lock:
            return self._get_session(session_id).snapshot()

    def heartbeat(self, session_id: str) -> SessionSnapshot:
        with self._lock:
            session = self._get_session(session_id)
            self._touch(session_id)
            return session.snapshot()

    def answer(self, session_id: str, question_id: str, value: AnswerValue) -> AnswerRecord:
        with self._lock:
            session = self._get_session(session_id)
            record = session.answer(question_id, value)
            self._touch(session_id)
            return record

    def navigate(self, session_id: str, index: int) -> SessionSnapshot:
        with self._lock:
            session = self._get_session(session_id)
            session.navigate(index)
            self._touch(session_id)
            return session.snapshot()

    def next_question(self, session_id: str) -> SessionSnapshot:
        with self._lock:
            session = self._get_session(session_id)
            session.next_question()
            self._touch(session_id)
            return session.snapshot()

    def previous_question(self, session_id: str) -> SessionSnapshot:
        with self._lock:
            session = self._get_session(session_id)
            session.previous_question()
            self._touch(session_id)
            return session.snapshot()

    def bookmark(self, session_id: str, question_id: str) -> SessionSnapshot:
        with self._lock:
            session = self._get_session(session_id)
            session.bookmark(question_id)
            self._touch(session_id)
            return session.snapshot()

    def unbookmark(self, session_id: str, question_id: str) -> SessionSnapshot:
        with self._lock:
            session = self._get_session(session_id)
            session.unbookmark(question_id)
            self._touch(session_id)
            return session.snapshot()

    def report_violation(
        self,
        session_id: str,
        kind: ViolationKind = ViolationKind.OTHER,
        details: str | None = None,
    ) -> bool:
        """Pass a monitoring signal through the integrity monitor.

        Signals for finished or unknown attempts are dropped: monitoring can
        race with submission.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            counted = self._monitor.signal(session, kind, details)
            self._touch(session_id)
            return counted

    def get_violation_events(self, session_id: str) -> list[ViolationEvent]:
        """Violation log of a running attempt, or of a finished one from its record."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return list(session.violations)
            return list(self._find_record(session_id).violations)

    def submit(self, session_id: str, force: bool = False) -> SubmitOutcome:
        with self._lock:
            session = self._get_session(session_id)
            outcome = session.submit(force=force)
            if not outcome.submitted:
                self._touch(session_id)
            return outcome

    def abandon(self, session_id: str) -> AttemptRecord:
        with self._lock:
            return self._get_session(session_id).abandon()

    # --- Timer & Presence ---

    def tick_all(self, elapsed_seconds: float) -> list[AttemptRecord]:
        """Advance every running attempt; returns the records of attempts that expired."""
        expired: list[AttemptRecord] = []
        with self._lock:
            for session in list(self._sessions.values()):
                if session.state is not SessionState.IN_PROGRESS:
                    continue
                session.tick(elapsed_seconds)
                if session.state is SessionState.EXPIRED:
                    expired.append(session.to_record())
        return expired

    def get_active_attempts(
        self,
        exam_id: str | None = None,
        stale_after_seconds: float = ACTIVE_ATTEMPT_STALE_AFTER_SECONDS,
    ) -> list[ActiveAttempt]:
        """Attempts in progress whose browser was heard from recently."""
        with self._lock:
            threshold = self._clock() - timedelta(seconds=stale_after_seconds)
            active: list[ActiveAttempt] = []
            for session in self._sessions.values():
                if session.state is not SessionState.IN_PROGRESS:
                    continue
                if exam_id is not None and session.exam_id != exam_id:
                    continue
                last_activity = self._last_activity[session.session_id]
                if last_activity < threshold:
                    continue
                active.append(
                    ActiveAttempt(
                        session_id=session.session_id,
                        student_id=session.student_id,
                        exam_id=session.exam_id,
                        started_at=session.started_at,
                        last_activity_at=last_activity,
                        answered_count=len(session.answers),
                        question_count=len(session.questions),
                        remaining_seconds=session.remaining_seconds,
                        violation_count=session.violation_count,
                    )
                )
            return sorted(active, key=lambda a: a.last_activity_at)

    def abandon_stale_attempts(
        self, stale_after_seconds: float = ACTIVE_ATTEMPT_STALE_AFTER_SECONDS
    ) -> list[AttemptRecord]:
        """Abandon attempts whose browser context has gone silent."""
        abandoned: list[AttemptRecord] = []
        with self._lock:
            threshold = self._clock() - timedelta(seconds=stale_after_seconds)
            for session in list(self._sessions.values()):
                if session.state is not SessionState.IN_PROGRESS:
                    continue
                if self._last_activity[session.session_id] < threshold:
                    abandoned.append(session.abandon())
        return abandoned

    # --- Results ---

    def get_record(self, session_id: str) -> AttemptRecord:
        with self._lock:
            return self._find_record(session_id)

    def results_for_exam(self, exam_id: str) -> list[AttemptRecord]:
        with self._lock:
            return self._store.results_for_exam(exam_id)

    def results_for_student(self, student_id: str) -> list[AttemptRecord]:
        with self._lock:
            return self._store.results_for_student(student_id)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush_pending(self) -> int:
        """Retry storing records whose first write failed; returns how many were stored."""
        with self._lock:
            remaining: list[AttemptRecord] = []
            stored = 0
            for record in self._pending:
                try:
                    self._store.append(record)
                except DuplicateAttemptError:
                    stored += 1
                except Exception:
                    logger.exception("Attempt %s still cannot be stored", record.session_id)
                    remaining.append(record)
                else:
                    stored += 1
            self._pending = remaining
            return stored

    # --- Internals ---

    def _persist(self, record: AttemptRecord) -> None:
        # Runs inside the session's transition, so the manager lock is already held.
        self._sessions.pop(record.session_id, None)
        self._last_activity.pop(record.session_id, None)
        self._monitor.forget(record.session_id)
        try:
            self._store.append(record)
        except Exception:
            logger.exception(
                "Could not store attempt %s; keeping it for a later retry", record.session_id
            )
            self._pending.append(record)

    def _find_record(self, session_id: str) -> AttemptRecord:
        for record in self._pending:
            if record.session_id == session_id:
                return record
        return self._store.get(session_id)

    def _get_session(self, session_id: str) -> ExamSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        if self._store.has(session_id) or any(r.session_id == session_id for r in self._pending):
            raise InvalidStateError(f"Attempt {session_id} has already finished.")
        raise UnknownAttemptError(f"No attempt with id '{session_id}'.")

    def _touch(self, session_id: str) -> None:
        self._last_activity[session_id] = self._clock()

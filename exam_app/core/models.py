"""Domain models for the exam engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from exam_app.constants.exam_constants import DEFAULT_QUESTION_POINTS

AnswerValue = int | bool | str


class QuestionKind(Enum):
    """How a question is answered and whether it can be scored automatically."""

    SINGLE_CHOICE = "single_choice"
    TRUE_FALSE = "true_false"
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"

    @property
    def is_auto_gradable(self) -> bool:
        return self in (QuestionKind.SINGLE_CHOICE, QuestionKind.TRUE_FALSE)


class SessionState(Enum):
    """Lifecycle of one student's attempt."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    EXPIRED = "expired"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.SUBMITTED, SessionState.EXPIRED, SessionState.ABANDONED)


class ViolationKind(Enum):
    """Integrity signal categories reported by the browser."""

    TAB_HIDDEN = "tab_hidden"
    FOCUS_LOST = "focus_lost"
    COPY_PASTE = "copy_paste"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Question:
    """One evaluable item. Never mutated once a session has started."""

    id: str
    text: str
    kind: QuestionKind = QuestionKind.SINGLE_CHOICE
    options: tuple[str, ...] = ()
    correct_option_index: int | None = None
    points: float = DEFAULT_QUESTION_POINTS

    @property
    def is_auto_gradable(self) -> bool:
        return self.kind.is_auto_gradable

    def is_correct(self, value: AnswerValue) -> bool:
        """Return True when ``value`` matches the correct option of an auto-gradable question."""
        if not self.is_auto_gradable or self.correct_option_index is None:
            return False
        if self.kind is QuestionKind.TRUE_FALSE:
            # Option 0 is "true", option 1 is "false".
            return (0 if value else 1) == self.correct_option_index
        return value == self.correct_option_index

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "text": self.text,
            "kind": self.kind.value,
            "options": list(self.options),
            "correct_option_index": self.correct_option_index,
            "points": self.points,
        }

    @staticmethod
    def from_dict(data: dict) -> Question:
        return Question(
            id=str(data["id"]),
            text=data["text"],
            kind=QuestionKind(data.get("kind", QuestionKind.SINGLE_CHOICE.value)),
            options=tuple(data.get("options") or ()),
            correct_option_index=data.get("correct_option_index"),
            points=float(data.get("points", DEFAULT_QUESTION_POINTS)),
        )


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    """A student's latest response to one question."""

    question_id: str
    value: AnswerValue
    answered_at: datetime


@dataclass(frozen=True, slots=True)
class ExamDefinition:
    """An exam as supplied by the question bank."""

    exam_id: str
    title: str
    questions: tuple[Question, ...]
    duration_seconds: float
    question_count: int | None = None


@dataclass(frozen=True, slots=True)
class GradingResult:
    """Derived score for a finished attempt."""

    score: float
    max_auto_gradable_score: float
    pending_manual_review: int
    correct_question_ids: tuple[str, ...] = ()
    answered_count: int = 0

    @property
    def percentage(self) -> float:
        if self.max_auto_gradable_score <= 0:
            return 0.0
        return (self.score / self.max_auto_gradable_score) * 100

    def to_dict(self) -> dict[str, object]:
        return {
            "score": self.score,
            "max_auto_gradable_score": self.max_auto_gradable_score,
            "pending_manual_review": self.pending_manual_review,
            "correct_question_ids": list(self.correct_question_ids),
            "answered_count": self.answered_count,
            "percentage": self.percentage,
        }

    @staticmethod
    def from_dict(data: dict) -> GradingResult:
        return GradingResult(
            score=float(data["score"]),
            max_auto_gradable_score=float(data["max_auto_gradable_score"]),
            pending_manual_review=int(data["pending_manual_review"]),
            correct_question_ids=tuple(data.get("correct_question_ids") or ()),
            answered_count=int(data.get("answered_count", 0)),
        )


@dataclass(frozen=True, slots=True)
class SubmitOutcome:
    """Result of a submit call; ``submitted`` is False for the unanswered warning."""

    submitted: bool
    unanswered_count: int
    unanswered_question_ids: tuple[str, ...] = ()
    result: GradingResult | None = None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of a session for rendering."""

    session_id: str
    student_id: str
    exam_id: str
    state: SessionState
    current_index: int
    current_question: Question | None
    question_count: int
    answered_count: int
    remaining_seconds: float
    elapsed_seconds: float
    violation_count: int
    bookmarks: frozenset[str] = frozenset()
    answered_question_ids: frozenset[str] = frozenset()

    @property
    def progress(self) -> float:
        if not self.question_count:
            return 0.0
        return self.answered_count / self.question_count


@dataclass(frozen=True, slots=True)
class ViolationEvent:
    """One integrity violation forwarded to a session."""

    kind: ViolationKind
    detected_at: datetime
    details: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "detected_at": self.detected_at.isoformat(),
            "details": self.details,
        }

    @staticmethod
    def from_dict(data: dict) -> ViolationEvent:
        return ViolationEvent(
            kind=ViolationKind(data["kind"]),
            detected_at=datetime.fromisoformat(data["detected_at"]),
            details=data.get("details"),
        )


@dataclass(frozen=True, slots=True)
class ActiveAttempt:
    """Proctor-facing summary of an attempt that is still in progress."""

    session_id: str
    student_id: str
    exam_id: str
    started_at: datetime | None
    last_activity_at: datetime
    answered_count: int
    question_count: int
    remaining_seconds: float
    violation_count: int


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """Finalized session handed to persistence. Written once, never updated."""

    session_id: str
    student_id: str
    exam_id: str
    outcome: SessionState
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    remaining_seconds: float
    questions: tuple[Question, ...]
    answers: dict[str, AnswerRecord] = field(default_factory=dict)
    bookmarks: frozenset[str] = frozenset()
    violation_count: int = 0
    current_index: int = 0
    violations: tuple[ViolationEvent, ...] = ()
    result: GradingResult = field(
        default_factory=lambda: GradingResult(score=0.0, max_auto_gradable_score=0.0, pending_manual_review=0)
    )

    @property
    def complete(self) -> bool:
        """False only for attempts torn down before submission."""
        return self.outcome is not SessionState.ABANDONED

    def to_dict(self) -> dict[str, object]:
        return {
            "session_id": self.session_id,
            "student_id": self.student_id,
            "exam_id": self.exam_id,
            "outcome": self.outcome.value,
            "complete": self.complete,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "remaining_seconds": self.remaining_seconds,
            "questions": [question.to_dict() for question in self.questions],
            "answers": {
                question_id: {
                    "value": record.value,
                    "answered_at": record.answered_at.isoformat(),
                }
                for question_id, record in self.answers.items()
            },
            "bookmarks": sorted(self.bookmarks),
            "violation_count": self.violation_count,
            "current_index": self.current_index,
            "violations": [event.to_dict() for event in self.violations],
            "result": self.result.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict) -> AttemptRecord:
        answers = {
            question_id: AnswerRecord(
                question_id=question_id,
                value=entry["value"],
                answered_at=datetime.fromisoformat(entry["answered_at"]),
            )
            for question_id, entry in data.get("answers", {}).items()
        }
        return AttemptRecord(
            session_id=data["session_id"],
            student_id=data["student_id"],
            exam_id=data["exam_id"],
            outcome=SessionState(data["outcome"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            finished_at=datetime.fromisoformat(data["finished_at"]),
            duration_seconds=float(data["duration_seconds"]),
            remaining_seconds=float(data["remaining_seconds"]),
            questions=tuple(Question.from_dict(q) for q in data.get("questions", [])),
            answers=answers,
            bookmarks=frozenset(data.get("bookmarks", [])),
            violation_count=int(data.get("violation_count", 0)),
            current_index=int(data.get("current_index", 0)),
            violations=tuple(ViolationEvent.from_dict(e) for e in data.get("violations", [])),
            result=GradingResult.from_dict(data["result"]),
        )

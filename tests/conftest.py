"""Shared fixtures for the exam engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from exam_app.core.models import Question, QuestionKind
from exam_app.core.services.exam_session import ExamSession


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Monotonic counter for cooldowns and tick measurements."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def choice_questions() -> list[Question]:
    """Three single-choice questions worth 2 points each; option 0 is correct."""
    return [
        Question(id=f"q{n}", text=f"Question {n}", options=("Yes", "No", "Maybe"), correct_option_index=0, points=2.0)
        for n in range(1, 4)
    ]


@pytest.fixture
def mixed_questions() -> list[Question]:
    return [
        Question(id="choice", text="Pick one", options=("A", "B"), correct_option_index=1, points=1.0),
        Question(
            id="tf",
            text="The sky is blue",
            kind=QuestionKind.TRUE_FALSE,
            options=("Vrai", "Faux"),
            correct_option_index=0,
            points=1.0,
        ),
        Question(id="short", text="Name a hypervisor", kind=QuestionKind.SHORT_TEXT, points=1.0),
        Question(id="essay", text="Explain virtualization", kind=QuestionKind.LONG_TEXT, points=3.0),
    ]


@pytest.fixture
def finalized_records() -> list:
    return []


@pytest.fixture
def session(clock: FakeClock, finalized_records: list) -> ExamSession:
    return ExamSession("student-1", "exam-1", session_id="s-1", clock=clock, on_finalized=finalized_records.append)


@pytest.fixture
def started_session(session: ExamSession, choice_questions: list[Question]) -> ExamSession:
    session.start(choice_questions, duration_seconds=60)
    return session

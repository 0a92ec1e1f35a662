"""Tests for the exam session state machine."""

from __future__ import annotations

import math

import pytest

from exam_app.core.errors import (
    InvalidAnswerError,
    InvalidSessionError,
    InvalidStateError,
    OutOfRangeError,
    UnknownQuestionError,
)
from exam_app.core.models import AttemptRecord, Question, QuestionKind, SessionState, ViolationKind
from exam_app.core.services.exam_session import ExamSession


class TestStart:
    """Starting a session."""

    def test_start_enters_in_progress_at_first_question(self, session, choice_questions):
        session.start(choice_questions, duration_seconds=600)

        assert session.state is SessionState.IN_PROGRESS
        assert session.current_index == 0
        assert session.current_question == choice_questions[0]
        assert session.remaining_seconds == 600
        assert session.answers == {}
        assert session.bookmarks == frozenset()
        assert session.violation_count == 0

    def test_start_with_empty_list_fails(self, session):
        with pytest.raises(InvalidSessionError):
            session.start([], duration_seconds=60)
        assert session.state is SessionState.NOT_STARTED

    @pytest.mark.parametrize("budget", [0, -5, math.nan, math.inf])
    def test_start_with_non_positive_budget_fails(self, session, choice_questions, budget):
        with pytest.raises(InvalidSessionError):
            session.start(choice_questions, duration_seconds=budget)

    def test_start_with_duplicate_ids_fails(self, session, choice_questions):
        with pytest.raises(InvalidSessionError):
            session.start(choice_questions + [choice_questions[0]], duration_seconds=60)

    def test_start_twice_fails(self, started_session, choice_questions):
        with pytest.raises(InvalidStateError):
            started_session.start(choice_questions, duration_seconds=60)

    def test_question_order_is_kept(self, session, choice_questions):
        reordered = list(reversed(choice_questions))
        session.start(reordered, duration_seconds=60)

        assert [q.id for q in session.questions] == ["q3", "q2", "q1"]

    def test_operations_before_start_are_rejected(self, session):
        with pytest.raises(InvalidStateError):
            session.answer("q1", 0)
        with pytest.raises(InvalidStateError):
            session.navigate(0)
        with pytest.raises(InvalidStateError):
            session.submit(force=True)
        with pytest.raises(InvalidStateError):
            session.tick(1)


class TestAnswer:
    """Recording answers."""

    def test_answer_is_readable_immediately(self, started_session):
        record = started_session.answer("q2", 1)

        assert record.value == 1
        assert started_session.get_answer("q2").value == 1

    def test_answer_does_not_move_cursor(self, started_session):
        started_session.answer("q3", 0)

        assert started_session.current_index == 0

    def test_reanswer_overwrites_single_record(self, started_session, clock):
        started_session.answer("q1", 1)
        clock.advance(5)
        record = started_session.answer("q1", 2)

        assert len(started_session.answers) == 1
        assert started_session.get_answer("q1").value == 2
        assert record.answered_at == clock.now

    def test_same_value_twice_only_updates_timestamp(self, started_session, clock):
        first = started_session.answer("q1", 1)
        clock.advance(3)
        second = started_session.answer("q1", 1)

        assert len(started_session.answers) == 1
        assert second.value == first.value
        assert second.answered_at > first.answered_at

    def test_unknown_question_is_rejected(self, started_session):
        with pytest.raises(UnknownQuestionError):
            started_session.answer("nope", 0)

    @pytest.mark.parametrize("value", [3, -1, True, "0", 1.0])
    def test_bad_single_choice_values_are_rejected(self, started_session, value):
        with pytest.raises(InvalidAnswerError):
            started_session.answer("q1", value)
        assert started_session.get_answer("q1") is None

    def test_kind_specific_shapes(self, session, mixed_questions):
        session.start(mixed_questions, duration_seconds=60)

        session.answer("tf", False)
        session.answer("short", "KVM")
        session.answer("essay", "Long text")

        with pytest.raises(InvalidAnswerError):
            session.answer("tf", 1)
        with pytest.raises(InvalidAnswerError):
            session.answer("short", 3)
        with pytest.raises(InvalidAnswerError):
            session.answer("essay", True)


class TestNavigation:
    """Moving between questions."""

    @pytest.mark.parametrize("index", [0, 1, 2])
    def test_navigate_in_range(self, started_session, index):
        question = started_session.navigate(index)

        assert started_session.current_index == index
        assert question.id == f"q{index + 1}"

    @pytest.mark.parametrize("index", [-1, 3, 100])
    def test_navigate_out_of_range(self, started_session, index):
        started_session.navigate(1)
        with pytest.raises(OutOfRangeError):
            started_session.navigate(index)
        assert started_session.current_index == 1

    def test_navigate_past_unanswered_questions_is_allowed(self, started_session):
        started_session.navigate(2)
        started_session.navigate(0)

        assert started_session.answers == {}

    def test_next_and_previous_are_clamped(self, started_session):
        assert started_session.previous_question() == 0
        assert started_session.next_question() == 1
        assert started_session.next_question() == 2
        assert started_session.next_question() == 2
        assert started_session.previous_question() == 1


class TestBookmarks:
    """Bookmarking questions for review."""

    def test_bookmark_and_unbookmark_are_idempotent(self, started_session):
        started_session.bookmark("q2")
        started_session.bookmark("q2")
        assert started_session.bookmarks == frozenset({"q2"})

        started_session.unbookmark("q2")
        started_session.unbookmark("q2")
        assert started_session.bookmarks == frozenset()

    def test_toggle_bookmark(self, started_session):
        assert started_session.toggle_bookmark("q1") is True
        assert started_session.toggle_bookmark("q1") is False

    def test_foreign_question_is_rejected(self, started_session):
        with pytest.raises(UnknownQuestionError):
            started_session.bookmark("other")
        with pytest.raises(UnknownQuestionError):
            started_session.unbookmark("other")


class TestIntegrityViolations:
    """Counting integrity signals."""

    def test_each_call_counts_once(self, started_session):
        for _ in range(4):
            started_session.report_integrity_violation()

        assert started_session.violation_count == 4

    def test_count_survives_interleaved_operations(self, started_session):
        started_session.report_integrity_violation()
        started_session.answer("q1", 0)
        started_session.report_integrity_violation()
        started_session.navigate(2)
        started_session.tick(5)
        started_session.report_integrity_violation()

        assert started_session.violation_count == 3
        assert started_session.state is SessionState.IN_PROGRESS

    def test_signals_outside_progress_are_ignored(self, session, choice_questions):
        assert session.report_integrity_violation() is False

        session.start(choice_questions, duration_seconds=60)
        session.submit(force=True)

        assert session.report_integrity_violation() is False
        assert session.violation_count == 0


class TestTimer:
    """Countdown and expiry."""

    def test_tick_decrements_budget(self, started_session):
        assert started_session.tick(10) == 50
        assert started_session.elapsed_seconds == 10

    def test_expiry_clamps_to_zero_and_grades(self, started_session, finalized_records):
        started_session.answer("q1", 0)
        started_session.tick(30)
        started_session.tick(31)

        assert started_session.state is SessionState.EXPIRED
        assert started_session.remaining_seconds == 0
        assert started_session.result is not None
        assert started_session.result.score == 2.0
        assert len(finalized_records) == 1
        assert finalized_records[0].outcome is SessionState.EXPIRED

    def test_exact_budget_expires(self, started_session):
        started_session.tick(60)

        assert started_session.state is SessionState.EXPIRED

    def test_ticks_after_expiry_are_rejected_without_second_transition(self, started_session, finalized_records):
        started_session.tick(100)
        with pytest.raises(InvalidStateError):
            started_session.tick(1)

        assert len(finalized_records) == 1
        assert started_session.remaining_seconds == 0

    @pytest.mark.parametrize("elapsed", [-1, math.nan, math.inf])
    def test_negative_or_non_finite_tick_is_rejected(self, started_session, elapsed):
        with pytest.raises(ValueError):
            started_session.tick(elapsed)

        assert started_session.state is SessionState.IN_PROGRESS
        assert started_session.remaining_seconds == 60

    def test_budget_frozen_after_submit(self, started_session):
        started_session.tick(20)
        started_session.submit(force=True)

        with pytest.raises(InvalidStateError):
            started_session.tick(5)
        assert started_session.remaining_seconds == 40


class TestSubmit:
    """Submission and its confirmation step."""

    def test_unanswered_questions_produce_a_warning(self, started_session, finalized_records):
        started_session.answer("q1", 0)

        outcome = started_session.submit()

        assert outcome.submitted is False
        assert outcome.unanswered_count == 2
        assert outcome.unanswered_question_ids == ("q2", "q3")
        assert outcome.result is None
        assert started_session.state is SessionState.IN_PROGRESS
        assert finalized_records == []

    def test_all_answered_submits_without_force(self, started_session):
        for question_id in ("q1", "q2", "q3"):
            started_session.answer(question_id, 0)

        outcome = started_session.submit()

        assert outcome.submitted is True
        assert started_session.state is SessionState.SUBMITTED

    def test_scenario_a_forced_submit_scores_answered_questions(self, started_session):
        started_session.answer("q1", 0)
        started_session.answer("q2", 1)

        outcome = started_session.submit(force=True)

        assert outcome.submitted is True
        assert outcome.unanswered_count == 1
        assert outcome.result.score == 2
        assert outcome.result.max_auto_gradable_score == 6
        assert outcome.result.pending_manual_review == 0

    def test_answer_after_submit_is_rejected(self, started_session):
        started_session.submit(force=True)

        with pytest.raises(InvalidStateError):
            started_session.answer("q1", 0)

    def test_submit_twice_is_rejected(self, started_session, finalized_records):
        started_session.submit(force=True)

        with pytest.raises(InvalidStateError):
            started_session.submit(force=True)
        assert len(finalized_records) == 1

    def test_persistence_callback_sees_submitting_finished(self, clock, choice_questions):
        seen_states = []
        holder = {}

        def on_finalized(record):
            seen_states.append(holder["session"].state)

        session = ExamSession("s", "e", clock=clock, on_finalized=on_finalized)
        holder["session"] = session
        session.start(choice_questions, duration_seconds=60)
        session.submit(force=True)

        assert seen_states == [SessionState.SUBMITTED]

    def test_callback_failure_propagates_after_transition(self, clock, choice_questions):
        def failing(record):
            raise RuntimeError("store down")

        session = ExamSession("s", "e", clock=clock, on_finalized=failing)
        session.start(choice_questions, duration_seconds=60)

        with pytest.raises(RuntimeError):
            session.submit(force=True)
        assert session.state is SessionState.SUBMITTED


class TestAbandon:
    """Leaving before submission."""

    def test_abandon_keeps_answers_and_marks_incomplete(self, started_session, finalized_records):
        started_session.answer("q1", 0)

        record = started_session.abandon()

        assert started_session.state is SessionState.ABANDONED
        assert record.complete is False
        assert "q1" in record.answers
        assert record.result.score == 2
        assert finalized_records == [record]

    def test_abandon_after_submit_is_rejected(self, started_session):
        started_session.submit(force=True)

        with pytest.raises(InvalidStateError):
            started_session.abandon()

    def test_outcomes_stay_distinct(self, clock, choice_questions):
        outcomes = []
        for finish in ("submit", "expire", "abandon"):
            session = ExamSession("s", "e", clock=clock)
            session.start(choice_questions, duration_seconds=10)
            if finish == "submit":
                session.submit(force=True)
            elif finish == "expire":
                session.tick(10)
            else:
                session.abandon()
            outcomes.append(session.to_record().outcome)

        assert outcomes == [SessionState.SUBMITTED, SessionState.EXPIRED, SessionState.ABANDONED]


class TestSnapshots:
    """Read-only views for rendering."""

    def test_snapshot_reflects_progress(self, started_session):
        started_session.answer("q1", 0)
        started_session.bookmark("q3")
        started_session.navigate(2)
        started_session.tick(15)
        started_session.report_integrity_violation()

        snapshot = started_session.snapshot()

        assert snapshot.state is SessionState.IN_PROGRESS
        assert snapshot.current_index == 2
        assert snapshot.current_question.id == "q3"
        assert snapshot.question_count == 3
        assert snapshot.answered_count == 1
        assert snapshot.progress == pytest.approx(1 / 3)
        assert snapshot.remaining_seconds == 45
        assert snapshot.violation_count == 1
        assert snapshot.bookmarks == frozenset({"q3"})
        assert snapshot.answered_question_ids == frozenset({"q1"})

    def test_snapshot_is_detached_from_session(self, started_session):
        snapshot = started_session.snapshot()
        started_session.answer("q1", 0)

        assert snapshot.answered_count == 0

    def test_answers_property_is_a_copy(self, started_session):
        started_session.answer("q1", 0)
        answers = started_session.answers
        answers.clear()

        assert started_session.get_answer("q1") is not None

    def test_to_record_before_finish_is_rejected(self, started_session):
        with pytest.raises(InvalidStateError):
            started_session.to_record()

    def test_record_carries_session_fields(self, started_session, clock):
        started_session.answer("q2", 0)
        started_session.bookmark("q1")
        started_session.navigate(2)
        started_session.report_integrity_violation(ViolationKind.TAB_HIDDEN, "visibilitychange")
        clock.advance(30)
        started_session.tick(30)

        record = started_session.submit(force=True)
        stored = started_session.to_record()

        assert record.submitted
        assert stored.session_id == "s-1"
        assert stored.student_id == "student-1"
        assert stored.exam_id == "exam-1"
        assert stored.bookmarks == frozenset({"q1"})
        assert stored.violation_count == 1
        assert stored.remaining_seconds == 30
        assert stored.duration_seconds == 60
        assert (stored.finished_at - stored.started_at).total_seconds() == 30
        assert stored.current_index == 2
        assert [(e.kind, e.details) for e in stored.violations] == [(ViolationKind.TAB_HIDDEN, "visibilitychange")]
        assert AttemptRecord.from_dict(stored.to_dict()) == stored

    def test_abandoned_record_keeps_cursor_position(self, started_session):
        started_session.navigate(2)

        record = started_session.abandon()

        assert record.current_index == 2
        assert record.to_dict()["current_index"] == 2


def test_true_false_question_defaults_true_to_option_zero(clock):
    question = Question(
        id="tf",
        text="Statement",
        kind=QuestionKind.TRUE_FALSE,
        options=("Vrai", "Faux"),
        correct_option_index=1,
        points=1.0,
    )
    session = ExamSession("s", "e", clock=clock)
    session.start([question], duration_seconds=30)
    session.answer("tf", False)

    outcome = session.submit()

    assert outcome.result.score == 1.0

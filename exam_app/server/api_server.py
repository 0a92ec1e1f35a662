"""FastAPI server that exposes the exam-taking endpoints."""

from __future__ import annotations

from threading import Thread
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictBool, StrictInt, StrictStr, StringConstraints
import uvicorn

from exam_app import __version__
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_app.core.errors import (
    DuplicateAttemptError,
    ExamSessionError,
    InvalidSessionError,
    InvalidStateError,
    UnknownAttemptError,
)
from exam_app.core.exam_manager import ExamManager
from exam_app.core.markdown_math_renderer import renderer
from exam_app.core.models import (
    ActiveAttempt,
    AttemptRecord,
    SessionSnapshot,
    SubmitOutcome,
    ViolationKind,
)

_ERROR_STATUS: dict[type[ExamSessionError], int] = {
    UnknownAttemptError: 404,
    InvalidStateError: 409,
    DuplicateAttemptError: 409,
}


class StartAttemptPayload(BaseModel):
    """Payload schema for starting an attempt."""

    student_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    question_count: int | None = Field(default=None, gt=0)


class AnswerPayload(BaseModel):
    """Payload schema for answering a question."""

    question_id: str
    value: StrictBool | StrictInt | StrictStr


class NavigatePayload(BaseModel):
    """Either an absolute index or a relative move."""

    index: int | None = None
    direction: Literal["next", "previous"] | None = None


class ViolationPayload(BaseModel):
    """Integrity signal sent by the browser."""

    kind: ViolationKind = ViolationKind.OTHER
    details: str | None = None


class SubmitPayload(BaseModel):
    """Payload schema for submission; ``force`` confirms despite unanswered questions."""

    force: bool = False


def _snapshot_payload(snapshot: SessionSnapshot) -> dict[str, object]:
    question = snapshot.current_question
    question_payload = None
    if question is not None:
        body_html, options_html = renderer.render_question(question)
        # The correct option is never sent while the attempt is running.
        question_payload = {
            "id": question.id,
            "kind": question.kind.value,
            "points": question.points,
            "html": body_html,
            "options": options_html,
            "bookmarked": question.id in snapshot.bookmarks,
            "answered": question.id in snapshot.answered_question_ids,
        }
    return {
        "session_id": snapshot.session_id,
        "student_id": snapshot.student_id,
        "exam_id": snapshot.exam_id,
        "state": snapshot.state.value,
        "current_index": snapshot.current_index,
        "question": question_payload,
        "question_count": snapshot.question_count,
        "answered_count": snapshot.answered_count,
        "progress": snapshot.progress,
        "remaining_seconds": snapshot.remaining_seconds,
        "elapsed_seconds": snapshot.elapsed_seconds,
        "violation_count": snapshot.violation_count,
        "bookmarks": sorted(snapshot.bookmarks),
    }


def _outcome_payload(outcome: SubmitOutcome) -> dict[str, object]:
    return {
        "submitted": outcome.submitted,
        "unanswered_count": outcome.unanswered_count,
        "unanswered_question_ids": list(outcome.unanswered_question_ids),
        "result": outcome.result.to_dict() if outcome.result else None,
    }


def _record_summary(record: AttemptRecord) -> dict[str, object]:
    return {
        "session_id": record.session_id,
        "student_id": record.student_id,
        "exam_id": record.exam_id,
        "outcome": record.outcome.value,
        "complete": record.complete,
        "started_at": record.started_at.isoformat(),
        "finished_at": record.finished_at.isoformat(),
        "violation_count": record.violation_count,
        "result": record.result.to_dict(),
    }


def _active_payload(attempt: ActiveAttempt) -> dict[str, object]:
    return {
        "session_id": attempt.session_id,
        "student_id": attempt.student_id,
        "exam_id": attempt.exam_id,
        "started_at": attempt.started_at.isoformat() if attempt.started_at else None,
        "last_activity_at": attempt.last_activity_at.isoformat(),
        "answered_count": attempt.answered_count,
        "question_count": attempt.question_count,
        "remaining_seconds": attempt.remaining_seconds,
        "violation_count": attempt.violation_count,
    }


def _get_exam_manager_dependency(exam_manager: ExamManager):
    def dependency() -> ExamManager:
        return exam_manager

    return dependency


def create_api_app(exam_manager: ExamManager) -> FastAPI:
    """Create a FastAPI application wired to the provided exam manager."""

    app = FastAPI(title="ESGIS Exam API", version=__version__)
    manager_dep = _get_exam_manager_dependency(exam_manager)

    @app.exception_handler(ExamSessionError)
    async def handle_exam_error(request: Request, exc: ExamSessionError) -> JSONResponse:
        status_code = _ERROR_STATUS.get(type(exc), 422)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/exams")
    def list_exams(manager: ExamManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return [
            {
                "exam_id": exam.exam_id,
                "title": exam.title,
                "question_count": exam.question_count or len(exam.questions),
                "duration_seconds": exam.duration_seconds,
            }
            for exam in manager.list_exams()
        ]

    @app.post("/exams/{exam_id}/attempts", status_code=201)
    def start_attempt(
        exam_id: str,
        payload: StartAttemptPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        try:
            manager.get_exam(exam_id)
        except InvalidSessionError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        snapshot = manager.start_attempt(
            payload.student_id, exam_id, question_count=payload.question_count
        )
        return _snapshot_payload(snapshot)

    @app.get("/attempts/{session_id}")
    def get_attempt(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        try:
            return _snapshot_payload(manager.get_snapshot(session_id))
        except InvalidStateError:
            record = manager.get_record(session_id)
            return {**_record_summary(record), "state": record.outcome.value}

    @app.post("/attempts/{session_id}/answers", status_code=201)
    def answer_question(
        session_id: str,
        payload: AnswerPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        record = manager.answer(session_id, payload.question_id, payload.value)
        return {
            "question_id": record.question_id,
            "value": record.value,
            "answered_at": record.answered_at.isoformat(),
        }

    @app.post("/attempts/{session_id}/navigate")
    def navigate(
        session_id: str,
        payload: NavigatePayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        if payload.index is not None:
            snapshot = manager.navigate(session_id, payload.index)
        elif payload.direction == "next":
            snapshot = manager.next_question(session_id)
        elif payload.direction == "previous":
            snapshot = manager.previous_question(session_id)
        else:
            raise HTTPException(status_code=422, detail="Provide an index or a direction.")
        return _snapshot_payload(snapshot)

    @app.put("/attempts/{session_id}/bookmarks/{question_id}")
    def add_bookmark(
        session_id: str, question_id: str, manager: ExamManager = Depends(manager_dep)
    ) -> dict[str, object]:
        return _snapshot_payload(manager.bookmark(session_id, question_id))

    @app.delete("/attempts/{session_id}/bookmarks/{question_id}")
    def remove_bookmark(
        session_id: str, question_id: str, manager: ExamManager = Depends(manager_dep)
    ) -> dict[str, object]:
        return _snapshot_payload(manager.unbookmark(session_id, question_id))

    @app.post("/attempts/{session_id}/violations", status_code=202)
    def report_violation(
        session_id: str,
        payload: ViolationPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        counted = manager.report_violation(session_id, payload.kind, payload.details)
        return {"counted": counted}

    @app.get("/attempts/{session_id}/violations")
    def list_violations(
        session_id: str, manager: ExamManager = Depends(manager_dep)
    ) -> list[dict[str, object]]:
        return [event.to_dict() for event in manager.get_violation_events(session_id)]

    @app.post("/attempts/{session_id}/heartbeat")
    def heartbeat(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        return _snapshot_payload(manager.heartbeat(session_id))

    @app.post("/attempts/{session_id}/submit")
    def submit_attempt(
        session_id: str,
        payload: SubmitPayload,
        manager: ExamManager = Depends(manager_dep),
    ) -> dict[str, object]:
        return _outcome_payload(manager.submit(session_id, force=payload.force))

    @app.post("/attempts/{session_id}/abandon")
    def abandon_attempt(session_id: str, manager: ExamManager = Depends(manager_dep)) -> dict[str, object]:
        return _record_summary(manager.abandon(session_id))

    @app.get("/exams/{exam_id}/active")
    def active_attempts(exam_id: str, manager: ExamManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return [_active_payload(attempt) for attempt in manager.get_active_attempts(exam_id)]

    @app.get("/exams/{exam_id}/results")
    def exam_results(exam_id: str, manager: ExamManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return [_record_summary(record) for record in manager.results_for_exam(exam_id)]

    @app.get("/students/{student_id}/results")
    def student_results(
        student_id: str, manager: ExamManager = Depends(manager_dep)
    ) -> list[dict[str, object]]:
        return [_record_summary(record) for record in manager.results_for_student(student_id)]

    return app


def start_api_server(
    exam_manager: ExamManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""

    app = create_api_app(exam_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="ExamApiServer", daemon=True)
    thread.start()
    return thread

"""Application entry point for the ESGIS exam server."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

from exam_app.constants.exam_constants import DEFAULT_EXAM_DURATION_SECONDS
from exam_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_app.core.errors import QuestionImportError
from exam_app.core.exam_manager import ExamManager
from exam_app.core.question_importer import load_questions_from_file
from exam_app.core.services.attempt_store import AttemptStore
from exam_app.core.services.tick_driver import TickDriver
from exam_app.server.api_server import start_api_server
from exam_app.utils.logging_config import configure_logging


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the ESGIS exam server.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--questions", type=Path, help="Question file to load at startup.")
    parser.add_argument("--exam-id", default="default", help="Identifier of the loaded exam.")
    parser.add_argument("--title", default=None, help="Display title of the loaded exam.")
    parser.add_argument(
        "--duration-minutes",
        type=float,
        default=DEFAULT_EXAM_DURATION_SECONDS / 60,
        help="Time budget per attempt.",
    )
    parser.add_argument(
        "--question-count",
        type=int,
        default=None,
        help="Questions drawn per attempt (default: all).",
    )
    parser.add_argument("--results", type=Path, default=None, help="JSON-lines file for finished attempts.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Initialize logging, load questions, start the tick driver and serve the API."""
    logger = configure_logging()
    args = _parse_args(argv)
    logger.info("Starting ESGIS exam server…")

    manager = ExamManager(attempt_store=AttemptStore(args.results))
    if args.questions is not None:
        try:
            imported = load_questions_from_file(args.questions)
            manager.register_exam(
                args.exam_id,
                args.title or args.questions.stem,
                imported.questions,
                duration_seconds=args.duration_minutes * 60,
                question_count=args.question_count,
            )
        except (OSError, QuestionImportError, ValueError) as exc:
            logger.error("Could not load questions from %s: %s", args.questions, exc)
            return 1

    driver = TickDriver(manager)
    driver.start()
    server_thread = start_api_server(exam_manager=manager, host=args.host, port=args.port)
    logger.info("Exam API available at http://%s:%d/", args.host, args.port)
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        driver.stop(timeout=2)
    return 0


if __name__ == "__main__":
    sys.exit(main())

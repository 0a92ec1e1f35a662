"""Utilities for exporting questions to the plain-text format used for imports."""

from __future__ import annotations

from pathlib import Path

from exam_app.core.models import Question, QuestionKind
from exam_app.core.question_importer import OPTION_LETTERS, TYPE_NAMES

_TYPE_LABELS = {kind: name for name, kind in TYPE_NAMES.items()}


def save_questions_to_file(file_path: Path, questions: list[Question]) -> None:
    """Persist the provided questions to disk in the text import format."""

    if not questions:
        raise ValueError("Cannot export an empty question list.")

    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(serialize_questions(questions), encoding="utf-8")


def serialize_questions(questions: list[Question]) -> str:
    blocks = [_serialize_question(question) for question in questions]
    return "\n\n---\n\n".join(blocks) + "\n"


def _serialize_question(question: Question) -> str:
    lines = [f"ID: {question.id}"]
    if question.kind is not QuestionKind.SINGLE_CHOICE:
        lines.append(f"TYPE: {_TYPE_LABELS[question.kind]}")

    question_lines = question.text.splitlines() or [question.text]
    lines.append(f"Q: {question_lines[0]}")
    lines.extend(question_lines[1:])

    if question.kind is QuestionKind.SINGLE_CHOICE:
        for letter, option_text in zip(OPTION_LETTERS, question.options):
            option_lines = option_text.splitlines() or [option_text]
            lines.append(f"{letter}: {option_lines[0]}")
            lines.extend(option_lines[1:])
        if question.correct_option_index is not None:
            lines.append(f"CORRECT: {OPTION_LETTERS[question.correct_option_index]}")
    elif question.kind is QuestionKind.TRUE_FALSE:
        lines.append("CORRECT: TRUE" if question.correct_option_index == 0 else "CORRECT: FALSE")

    lines.append(f"POINTS: {question.points:g}")
    return "\n".join(lines)

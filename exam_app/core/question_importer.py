"""Utilities for importing exam questions from a human-friendly text file.

File format (repeat blocks separated by blank lines or '---'):

    ID: optional identifier (defaults to q1, q2, ... in file order)
    TYPE: single | truefalse | short | essay   (optional, default single)
    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    A: First option text        (single-choice only, letters A-H)
    B: Second option text
    CORRECT: B                  (letter for single, TRUE/FALSE for truefalse)
    POINTS: 2                   (optional, default 0.5)

Example:

    ID: virt-01
    Q: Which hypervisor type runs directly on the hardware?
    A: Type 1
    B: Type 2
    CORRECT: A
    POINTS: 1

    TYPE: essay
    Q: Explain live migration in your own words.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from pathlib import Path

from exam_app.constants.exam_constants import DEFAULT_QUESTION_POINTS, TRUE_FALSE_OPTIONS
from exam_app.core.errors import QuestionImportError
from exam_app.core.models import Question, QuestionKind


@dataclass(slots=True)
class ImportedQuestions:
    """Container for imported question metadata."""

    source_path: Path
    questions: list[Question]


OPTION_LETTERS = ("A", "B", "C", "D", "E", "F", "G", "H")
TYPE_NAMES: dict[str, QuestionKind] = {
    "single": QuestionKind.SINGLE_CHOICE,
    "truefalse": QuestionKind.TRUE_FALSE,
    "short": QuestionKind.SHORT_TEXT,
    "essay": QuestionKind.LONG_TEXT,
}
_TRUE_WORDS = {"TRUE", "VRAI"}
_FALSE_WORDS = {"FALSE", "FAUX"}


def load_questions_from_file(file_path: Path) -> ImportedQuestions:
    text = file_path.read_text(encoding="utf-8")
    questions = parse_questions(text)
    if not questions:
        raise QuestionImportError("Question file did not contain any questions.")
    return ImportedQuestions(source_path=file_path, questions=questions)


def parse_questions(text: str) -> list[Question]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---":
            if current_block:
                blocks.append("\n".join(current_block).strip())
                current_block = []
            continue
        if stripped:
            current_block.append(raw_line)
        elif current_block:
            blocks.append("\n".join(current_block).strip())
            current_block = []
    if current_block:
        blocks.append("\n".join(current_block).strip())

    questions: list[Question] = []
    seen_ids: set[str] = set()
    for position, block in enumerate(blocks, start=1):
        if not block:
            continue
        question = _parse_block(block, default_id=f"q{position}")
        if question.id in seen_ids:
            raise QuestionImportError(f"Duplicate question ID '{question.id}'.")
        seen_ids.add(question.id)
        questions.append(question)
    return questions


def _parse_block(block: str, default_id: str) -> Question:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    question_id = default_id
    kind = QuestionKind.SINGLE_CHOICE
    correct_raw: str | None = None
    points = DEFAULT_QUESTION_POINTS
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        upper = line.upper()
        if upper.startswith("Q:"):
            question_lines = [line[2:].strip()]
            current_section = "Q"
            continue

        if upper.startswith("ID:"):
            question_id = line.split(":", 1)[1].strip()
            if not question_id:
                raise QuestionImportError("ID must not be empty.")
            current_section = None
            continue

        if upper.startswith("TYPE:"):
            type_name = line.split(":", 1)[1].strip().lower()
            if type_name not in TYPE_NAMES:
                raise QuestionImportError(
                    f"TYPE must be one of {', '.join(TYPE_NAMES)} (got '{type_name}')."
                )
            kind = TYPE_NAMES[type_name]
            current_section = None
            continue

        if upper.startswith("CORRECT:"):
            correct_raw = line.split(":", 1)[1].strip().upper()
            current_section = None
            continue

        if upper.startswith("POINTS:"):
            raw_value = line.split(":", 1)[1].strip()
            try:
                points = float(raw_value)
            except ValueError as exc:
                raise QuestionImportError("POINTS must be a number.") from exc
            if not (points > 0 and math.isfinite(points)):
                raise QuestionImportError("POINTS must be a positive, finite number.")
            current_section = None
            continue

        if len(line) > 2 and line[0].upper() in OPTION_LETTERS and line[1] == ":":
            letter = line[0].upper()
            options[letter] = line[2:].strip()
            current_section = letter
            continue

        if current_section == "Q":
            question_lines.append(line)
        elif current_section in OPTION_LETTERS:
            options[current_section] = options[current_section] + f"\n{line}"
        else:
            raise QuestionImportError(
                f"Encountered text outside of a known section: '{line}'."
            )

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuestionImportError(f"Question text missing (Q: ...) in question '{question_id}'.")

    option_list: tuple[str, ...] = ()
    correct_index: int | None = None
    if kind is QuestionKind.SINGLE_CHOICE:
        option_list, correct_index = _parse_choice_options(question_id, options, correct_raw)
    elif kind is QuestionKind.TRUE_FALSE:
        if options:
            raise QuestionImportError(f"True/false question '{question_id}' cannot list options.")
        option_list = TRUE_FALSE_OPTIONS
        if correct_raw in _TRUE_WORDS:
            correct_index = 0
        elif correct_raw in _FALSE_WORDS:
            correct_index = 1
        else:
            raise QuestionImportError(f"CORRECT must be TRUE or FALSE in question '{question_id}'.")
    else:
        if options:
            raise QuestionImportError(f"Free-text question '{question_id}' cannot list options.")
        if correct_raw is not None:
            raise QuestionImportError(f"Free-text question '{question_id}' cannot have CORRECT.")

    return Question(
        id=question_id,
        text=question_text,
        kind=kind,
        options=option_list,
        correct_option_index=correct_index,
        points=points,
    )


def _parse_choice_options(
    question_id: str, options: dict[str, str], correct_raw: str | None
) -> tuple[tuple[str, ...], int]:
    letters = [letter for letter in OPTION_LETTERS if letter in options]
    expected = list(OPTION_LETTERS[: len(letters)])
    if letters != expected:
        raise QuestionImportError(f"Options of question '{question_id}' must be consecutive from A.")
    if len(letters) < 2:
        raise QuestionImportError(f"Question '{question_id}' needs at least two options.")

    option_list = tuple(options[letter].strip() for letter in letters)
    if any(not option for option in option_list):
        raise QuestionImportError("Option text cannot be empty.")

    if correct_raw is None:
        raise QuestionImportError(f"Question '{question_id}' is missing CORRECT.")
    if correct_raw not in letters:
        raise QuestionImportError(
            f"CORRECT must be one of {', '.join(letters)} in question '{question_id}'."
        )
    return option_list, letters.index(correct_raw)

"""Exceptions raised by the exam engine and its collaborators.

Everything here signals a contract violation by the caller. Expected UX
conditions (submitting with unanswered questions, revisiting a question) are
return values, never exceptions.
"""

from __future__ import annotations


class ExamSessionError(Exception):
    """Base class for exam engine errors."""


class UnknownQuestionError(ExamSessionError):
    """Raised when a question id is not part of the session's question list."""


class OutOfRangeError(ExamSessionError):
    """Raised when navigating to an index outside the question list."""


class InvalidAnswerError(ExamSessionError):
    """Raised when an answer value does not fit the question kind."""


class InvalidStateError(ExamSessionError):
    """Raised when an operation is attempted in the wrong lifecycle state."""


class InvalidSessionError(ExamSessionError):
    """Raised when a session cannot be started with the given inputs."""


class UnknownAttemptError(ExamSessionError):
    """Raised when no live or stored attempt matches the given id."""


class DuplicateAttemptError(ExamSessionError):
    """Raised when an attempt would be written or started twice."""


class QuestionImportError(Exception):
    """Raised when a question file cannot be parsed."""

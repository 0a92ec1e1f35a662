"""Exam-related constants shared across the engine, services and server."""

DEFAULT_EXAM_DURATION_SECONDS: float = 120 * 60
DEFAULT_QUESTION_POINTS: float = 0.5
TRUE_FALSE_OPTIONS: tuple[str, str] = ("Vrai", "Faux")
MIN_CHOICE_OPTIONS: int = 2
MAX_CHOICE_OPTIONS: int = 8

TICK_INTERVAL_SECONDS: float = 1.0
VIOLATION_COOLDOWN_SECONDS: float = 5.0
ACTIVE_ATTEMPT_STALE_AFTER_SECONDS: float = 120.0
STALE_CHECK_INTERVAL_SECONDS: float = 30.0

"""Question order randomization for a new attempt."""

from __future__ import annotations

import random
from typing import Sequence, TypeVar

T = TypeVar("T")


def randomize_questions(
    questions: Sequence[T],
    count: int | None = None,
    rng: random.Random | None = None,
) -> list[T]:
    """Return a uniformly shuffled copy of ``questions`` truncated to ``count`` items.

    Uses a Fisher-Yates shuffle on a copy, so the input is never mutated.
    ``count=None`` keeps every question, ``count <= 0`` yields an empty list and
    a count larger than the input is treated as the full length.
    """
    shuffled = list(questions)
    if count is None:
        count = len(shuffled)
    if count <= 0 or not shuffled:
        return []

    rng = rng or random.Random()
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled[:count]

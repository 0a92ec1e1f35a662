"""Service that turns raw browser integrity signals into counted violations."""

from __future__ import annotations

import logging
import time
from typing import Callable

from exam_app.constants.exam_constants import VIOLATION_COOLDOWN_SECONDS
from exam_app.core.models import SessionState, ViolationKind
from exam_app.core.services.exam_session import ExamSession

logger = logging.getLogger(__name__)


class IntegrityMonitor:
    """Coalesces bursts of signals before they reach a session.

    A tab switch usually fires both a visibility change and a focus loss, so
    signals for the same session inside ``cooldown_seconds`` count once. The
    violation log itself lives on the session and ends up in its record.
    """

    def __init__(
        self,
        cooldown_seconds: float = VIOLATION_COOLDOWN_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cooldown_seconds = cooldown_seconds
        self._monotonic = monotonic
        self._last_forwarded: dict[str, float] = {}

    def signal(
        self,
        session: ExamSession,
        kind: ViolationKind = ViolationKind.OTHER,
        details: str | None = None,
    ) -> bool:
        """Forward a signal to ``session``. Returns True if it was counted."""
        if session.state is not SessionState.IN_PROGRESS:
            return False

        now = self._monotonic()
        last = self._last_forwarded.get(session.session_id)
        if last is not None and now - last < self._cooldown_seconds:
            logger.debug("Coalesced %s signal for session %s", kind.value, session.session_id)
            return False

        if not session.report_integrity_violation(kind, details):
            return False
        self._last_forwarded[session.session_id] = now
        return True

    def is_tracking(self, session_id: str) -> bool:
        return session_id in self._last_forwarded

    def forget(self, session_id: str) -> None:
        """Drop the cooldown state of a finished session."""
        self._last_forwarded.pop(session_id, None)

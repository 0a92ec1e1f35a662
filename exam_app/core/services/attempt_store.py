"""Write-once storage for finished attempts."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock

from exam_app.core.errors import DuplicateAttemptError, UnknownAttemptError
from exam_app.core.models import AttemptRecord

logger = logging.getLogger(__name__)


class AttemptStore:
    """Keeps finished attempts in memory, optionally mirrored to a JSON-lines file.

    Each session id can be written once. When a file path is given, existing
    lines are loaded on construction and every new record is appended.
    """

    def __init__(self, file_path: Path | None = None) -> None:
        self._records: dict[str, AttemptRecord] = {}
        self._lock = Lock()
        self._file_path = file_path.resolve() if file_path is not None else None
        if self._file_path is not None and self._file_path.exists():
            self._load(self._file_path)

    def append(self, record: AttemptRecord) -> None:
        with self._lock:
            if record.session_id in self._records:
                raise DuplicateAttemptError(
                    f"Attempt {record.session_id} has already been stored."
                )
            if self._file_path is not None:
                self._file_path.parent.mkdir(parents=True, exist_ok=True)
                with self._file_path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
            self._records[record.session_id] = record
        logger.info(
            "Stored attempt %s (student=%s exam=%s outcome=%s)",
            record.session_id,
            record.student_id,
            record.exam_id,
            record.outcome.value,
        )

    def has(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._records

    def get(self, session_id: str) -> AttemptRecord:
        with self._lock:
            record = self._records.get(session_id)
        if record is None:
            raise UnknownAttemptError(f"No stored attempt with id '{session_id}'.")
        return record

    def results_for_exam(self, exam_id: str) -> list[AttemptRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.exam_id == exam_id]
        return sorted(records, key=lambda r: r.finished_at)

    def results_for_student(self, student_id: str) -> list[AttemptRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.student_id == student_id]
        return sorted(records, key=lambda r: r.finished_at)

    def all_records(self) -> list[AttemptRecord]:
        with self._lock:
            return list(self._records.values())

    def _load(self, file_path: Path) -> None:
        for line_number, line in enumerate(file_path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                record = AttemptRecord.from_dict(json.loads(line))
            except (ValueError, KeyError) as exc:
                raise ValueError(f"Invalid attempt record on line {line_number} of {file_path}: {exc}") from exc
            self._records[record.session_id] = record
        logger.info("Loaded %d stored attempts from %s", len(self._records), file_path)

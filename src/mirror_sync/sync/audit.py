"""Append-only audit trail of sync events.

Each event is one JSON line ``{"timestamp", "event", "payload"}`` in
``<data_dir>/logs/audit.log``.  The line is flushed and fsynced before
``append`` returns, and mirrored to this module's logger.  No rotation or
retention is applied.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from ..core.errors import PersistenceError
from .models import utc_now

logger = logging.getLogger(__name__)

AUDIT_FILENAME = "audit.log"


class AuditTrail:
    """Write and read audit events.

    Args:
        path: Path of the audit log file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @classmethod
    def open(cls, data_dir: Path) -> AuditTrail:
        return cls(Path(data_dir) / "logs" / AUDIT_FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Durably append one event and return the written record.

        Raises:
            PersistenceError: If the log cannot be written.
        """
        record = {
            "timestamp": utc_now().isoformat(),
            "event": event,
            "payload": payload,
        }
        line = json.dumps(record, default=str, ensure_ascii=False)
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise PersistenceError(
                    f"Cannot append to audit log {self._path}: {exc}"
                ) from exc
        logger.info("audit_event %s %s", event, json.dumps(payload, default=str))
        return record

    def read_events(self, event: str | None = None) -> list[dict[str, Any]]:
        """Return recorded events in write order, optionally filtered by name."""
        if not self._path.exists():
            return []
        records: list[dict[str, Any]] = []
        with open(self._path, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    logger.warning("Skipping unreadable audit line: %.80s", line)
                    continue
                if event is None or record.get("event") == event:
                    records.append(record)
        return records

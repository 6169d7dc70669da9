"""Durable sync state.

A single JSON file (``<data_dir>/state/mirror_state.json``) holds four
relations keyed by their primary key:

* ``mappings``  -- source id -> ``SyncMapping``
* ``conflicts`` -- conflict id -> ``Conflict``
* ``media``     -- asset id -> ``MediaRecord``
* ``runs``      -- run id -> ``SyncRun``

Key design choices:

* **Durable atomic writes** -- every mutation writes the whole document to
  a temp file, fsyncs it and ``os.replace()``s the target, so readers never
  see partial data and no write is acknowledged before it is on disk.
* **Idempotent schema** -- missing relations are created on open; existing
  data is never rewritten or migrated.
* **Fail loudly** -- any I/O or decode failure is raised as
  ``PersistenceError``.  Writes are never dropped.
* **Thread-safe** -- the engine calls the store from worker threads via
  ``run_sync``; a lock serialises read-modify-write cycles.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.errors import PersistenceError
from .models import (
    Conflict,
    ConflictStatus,
    MediaRecord,
    RunMode,
    RunStatus,
    SyncMapping,
    SyncRun,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_FILENAME = "mirror_state.json"
RELATIONS = ("mappings", "conflicts", "media", "runs")

_RESOLUTION_STATUSES = (ConflictStatus.RESOLVED, ConflictStatus.IGNORED)


class StateStore:
    """Load, query and atomically persist sync state.

    Args:
        path: Path of the JSON state file.  Its parent directory is
            created if needed.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._data = self._load()
        self._ensure_schema()

    @classmethod
    def open(cls, data_dir: Path) -> StateStore:
        """Open (or create) the state file under *data_dir*."""
        return cls(Path(data_dir) / "state" / STATE_FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise PersistenceError(
                f"Cannot read state file {self._path}: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise PersistenceError(
                f"State file {self._path} has a non-object root"
            )
        return data

    def _ensure_schema(self) -> None:
        with self._lock:
            data = copy.deepcopy(self._data)
            data.setdefault("version", STATE_VERSION)
            for relation in RELATIONS:
                data.setdefault(relation, {})
            self._commit(data)

    def _commit(self, data: dict[str, Any]) -> None:
        """Write *data* durably, then make it the in-memory state.

        Caller must hold ``self._lock``.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._path.parent), suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2, sort_keys=True)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, self._path)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as exc:
            raise PersistenceError(
                f"Cannot write state file {self._path}: {exc}"
            ) from exc
        self._data = data

    def _mutate(self, relation: str, key: str, row: dict[str, Any]) -> None:
        """Insert or replace one row and persist."""
        with self._lock:
            data = copy.deepcopy(self._data)
            data[relation][key] = row
            self._commit(data)

    def _rows(self, relation: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(list(self._data[relation].values()))

    def _row(self, relation: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._data[relation].get(key)
            return copy.deepcopy(row) if row is not None else None

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def get_mapping(self, source_id: str) -> SyncMapping | None:
        """Return the mapping for *source_id*, or ``None`` if never synced."""
        row = self._row("mappings", source_id)
        return SyncMapping.model_validate(row) if row else None

    def upsert_mapping(self, mapping: SyncMapping) -> None:
        """Insert or replace the mapping keyed by its source id."""
        self._mutate(
            "mappings", mapping.source_id, mapping.model_dump(mode="json")
        )

    def list_mappings(self) -> list[SyncMapping]:
        return [SyncMapping.model_validate(r) for r in self._rows("mappings")]

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def insert_conflict(self, conflict: Conflict) -> None:
        """Insert or replace the conflict keyed by its conflict id."""
        self._mutate(
            "conflicts",
            conflict.conflict_id,
            conflict.model_dump(mode="json"),
        )

    def get_conflict(self, conflict_id: str) -> Conflict | None:
        row = self._row("conflicts", conflict_id)
        return Conflict.model_validate(row) if row else None

    def list_conflicts(
        self, status: ConflictStatus | str = ConflictStatus.OPEN
    ) -> list[Conflict]:
        """Return conflicts with *status* (or ``"all"``), newest source change first."""
        conflicts = [
            Conflict.model_validate(r) for r in self._rows("conflicts")
        ]
        if status != "all":
            wanted = ConflictStatus(status)
            conflicts = [c for c in conflicts if c.status == wanted]
        conflicts.sort(key=lambda c: c.source_changed_at, reverse=True)
        return conflicts

    def find_open_conflict(
        self, source_id: str, destination_id: str
    ) -> Conflict | None:
        """Return an open conflict for the given pair, if one exists."""
        for conflict in self.list_conflicts(ConflictStatus.OPEN):
            if (
                conflict.source_id == source_id
                and conflict.destination_id == destination_id
            ):
                return conflict
        return None

    def resolve_conflict(
        self,
        conflict_id: str,
        status: ConflictStatus | str,
        notes: str | None,
    ) -> bool:
        """Set status and notes of a conflict.

        Re-resolving an already resolved conflict overwrites the previous
        status and notes.

        Returns:
            ``True`` if the conflict exists and was updated, ``False`` if
            there is no conflict with *conflict_id*.

        Raises:
            ValueError: If *status* is not ``resolved`` or ``ignored``.
        """
        new_status = ConflictStatus(status)
        if new_status not in _RESOLUTION_STATUSES:
            raise ValueError(
                f"Invalid resolution status '{new_status.value}': "
                "must be 'resolved' or 'ignored'"
            )
        with self._lock:
            row = self._data["conflicts"].get(conflict_id)
            if row is None:
                return False
            data = copy.deepcopy(self._data)
            data["conflicts"][conflict_id].update(
                status=new_status.value, operator_notes=notes
            )
            self._commit(data)
        return True

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def upsert_media_record(self, record: MediaRecord) -> None:
        """Insert or replace the media record keyed by its asset id."""
        self._mutate(
            "media", record.asset_id, record.model_dump(mode="json")
        )

    def get_media_record(self, asset_id: str) -> MediaRecord | None:
        row = self._row("media", asset_id)
        return MediaRecord.model_validate(row) if row else None

    def list_media_records(self) -> list[MediaRecord]:
        return [MediaRecord.model_validate(r) for r in self._rows("media")]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start_run(
        self, run_id: str, mode: RunMode | str, started_at: datetime
    ) -> SyncRun:
        """Record the start of a run with status ``running``."""
        run = SyncRun(
            run_id=run_id,
            started_at=started_at,
            status=RunStatus.RUNNING,
            mode=RunMode(mode),
        )
        self._mutate("runs", run_id, run.model_dump(mode="json"))
        logger.debug("Run %s started (mode=%s)", run_id, run.mode.value)
        return run

    def finish_run(
        self,
        run_id: str,
        status: RunStatus | str,
        ended_at: datetime,
        summary: dict[str, Any] | None,
    ) -> SyncRun:
        """Record the terminal status and summary of a run.

        Raises:
            ValueError: If the run was never started or *status* is not
                terminal.
        """
        final = RunStatus(status)
        if final == RunStatus.RUNNING:
            raise ValueError("finish_run requires a terminal status")
        row = self._row("runs", run_id)
        if row is None:
            raise ValueError(f"Unknown run '{run_id}'")
        run = SyncRun.model_validate(row).model_copy(
            update={"status": final, "ended_at": ended_at, "summary": summary}
        )
        self._mutate("runs", run_id, run.model_dump(mode="json"))
        logger.debug("Run %s finished: %s", run_id, final.value)
        return run

    def get_run(self, run_id: str) -> SyncRun | None:
        row = self._row("runs", run_id)
        return SyncRun.model_validate(row) if row else None

    def list_runs(self) -> list[SyncRun]:
        """Return all runs, most recently started first."""
        runs = [SyncRun.model_validate(r) for r in self._rows("runs")]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs

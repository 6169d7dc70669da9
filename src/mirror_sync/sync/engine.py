"""Sync engine that mirrors source documents into the destination.

The ``SyncEngine`` ties together the source and destination adapters,
state store, media cache and audit trail.  A run:

1. Loads the candidate source documents and resolves their folder paths.
2. Fingerprints each document.
3. Finds the matching destination object by name, then by alias.
4. Looks up the stored mapping and decides the action (create, update,
   skip or conflict).
5. On apply, writes the generated region, updates the mapping and
   appends an audit event, one document at a time.

Conflict detection compares the destination's own last-edited time with
the last successful sync: a change on the source alone is an update, a
change on both sides is a conflict left for the operator.

Error handling is per document: any failure other than a persistence
failure turns into a failed item and the run continues.  A persistence
failure, or a failed document listing, fails the run; mappings already
written stay committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..core.async_utils import pause, run_sync
from ..core.errors import (
    ErrorKind,
    PersistenceError,
    PreconditionError,
    describe_error,
)
from .hashing import fingerprint, new_id
from .models import (
    Conflict,
    ConflictResolution,
    ConflictStatus,
    Container,
    DocumentFilter,
    DocumentSummary,
    MediaBatch,
    PlanItem,
    RunMode,
    RunStatus,
    SourceDocument,
    SyncAction,
    SyncMapping,
    SyncReport,
    as_utc,
    utc_now,
)
from .payload import build_region, region_fingerprint

if TYPE_CHECKING:
    from ..adapters import DestinationAdapter, SourceAdapter
    from .audit import AuditTrail
    from .media import MediaCache
    from .state import StateStore

logger = logging.getLogger(__name__)

NO_CREATE_TARGET = "no destination creation target configured"
UNCHANGED = "unchanged since last sync"
BOTH_CHANGED = "source changed and destination was edited after last sync"
CONFLICT_NOTE = "Conflict detected during apply. Manual resolution required."

_RESOLUTION_STATUS = {
    ConflictResolution.ACCEPT_SOURCE: ConflictStatus.RESOLVED,
    ConflictResolution.ACCEPT_DESTINATION: ConflictStatus.RESOLVED,
    ConflictResolution.MANUAL_MERGE: ConflictStatus.RESOLVED,
    ConflictResolution.IGNORE: ConflictStatus.IGNORED,
}


@dataclass(frozen=True)
class SyncSettings:
    """Engine settings.

    Attributes:
        create_target: Destination container under which missing objects
            are created.  ``None`` disables creation.
        include_media: Default for copying media during apply.
        delay_ms: Pause after each destination write.
        list_limit: Maximum documents requested from the source listing.
    """

    create_target: str | None = None
    include_media: bool = True
    delay_ms: int = 200
    list_limit: int = 200


@dataclass(frozen=True)
class _Planned:
    item: PlanItem
    document: SourceDocument | None = None
    mapping: SyncMapping | None = None


def resolve_container_path(
    container_id: str | None, containers: dict[str, Container]
) -> list[str]:
    """Walk parent links from *container_id* and return names root-first.

    Stops at an unknown container and guards against cycles.
    """
    path: list[str] = []
    seen: set[str] = set()
    current = container_id
    while current and current not in seen:
        seen.add(current)
        container = containers.get(current)
        if container is None:
            break
        path.insert(0, container.name)
        current = container.parent_id
    return path


class SyncEngine:
    """Preview and apply one-way mirroring of source documents.

    Args:
        source: Source content adapter.
        destination: Destination workspace adapter.
        state: Durable sync state.
        media: Media cache used when media inclusion is enabled.
        audit: Audit trail receiving one event per write.
        settings: Engine settings.
    """

    def __init__(
        self,
        source: SourceAdapter,
        destination: DestinationAdapter,
        state: StateStore,
        media: MediaCache,
        audit: AuditTrail,
        settings: SyncSettings | None = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.state = state
        self.media = media
        self.audit = audit
        self.settings = settings or SyncSettings()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def preview(
        self,
        document_ids: list[str] | None = None,
        mode: RunMode | str = RunMode.INCREMENTAL,
    ) -> SyncReport:
        """Compute the action plan without mutating anything.

        Args:
            document_ids: Restrict the plan to these source ids.
            mode: ``incremental`` skips documents unchanged since their
                last sync; ``full`` plans an update for every match.

        Returns:
            A ``SyncReport`` with ``mode="preview"``.
        """
        run_mode = RunMode(mode)
        started_at = utc_now()
        planned = await self._plan(document_ids, run_mode)
        return SyncReport(
            mode="preview",
            run_mode=run_mode,
            items=[p.item for p in planned],
            started_at=started_at,
            completed_at=utc_now(),
        )

    async def apply(
        self,
        document_ids: list[str] | None = None,
        include_media: bool | None = None,
        mode: RunMode | str = RunMode.INCREMENTAL,
    ) -> SyncReport:
        """Plan and execute a sync run, recorded as a ``SyncRun``.

        Args:
            document_ids: Restrict the run to these source ids.
            include_media: Copy referenced media; defaults to the setting.
            mode: ``incremental`` or ``full``.

        Returns:
            A ``SyncReport`` with ``mode="apply"`` and the run id.

        Raises:
            PersistenceError: If state cannot be written.  The run is
                marked ``failed`` before the error propagates.
        """
        run_mode = RunMode(mode)
        with_media = (
            self.settings.include_media
            if include_media is None
            else include_media
        )
        run_id = new_id("run")
        started_at = utc_now()
        await run_sync(self.state.start_run, run_id, run_mode, started_at)
        logger.info(
            "Sync run %s started (mode=%s, media=%s)",
            run_id,
            run_mode.value,
            with_media,
        )

        items: list[PlanItem] = []
        try:
            planned = await self._plan(document_ids, run_mode)
            for entry in planned:
                items.append(await self._apply_entry(entry, with_media))
        except Exception as exc:
            logger.error("Sync run %s failed: %s", run_id, exc)
            await run_sync(
                self.state.finish_run,
                run_id,
                RunStatus.FAILED,
                utc_now(),
                {
                    "error": str(exc),
                    "detail": describe_error(exc),
                    "processed": len(items),
                },
            )
            raise

        report = SyncReport(
            mode="apply",
            run_mode=run_mode,
            run_id=run_id,
            items=items,
            started_at=started_at,
            completed_at=utc_now(),
        )
        await run_sync(
            self.state.finish_run,
            run_id,
            RunStatus.SUCCESS,
            report.completed_at,
            report.summary,
        )
        await self._audit(
            "run_finished", {"run_id": run_id, "summary": report.summary}
        )
        logger.info("Sync run %s finished: %s", run_id, report.summary)
        return report

    async def list_conflicts(
        self, status: ConflictStatus | str = ConflictStatus.OPEN
    ) -> list[Conflict]:
        """Return conflicts with *status* (or ``"all"``), newest first."""
        return await run_sync(self.state.list_conflicts, status)

    async def resolve_conflict(
        self,
        conflict_id: str,
        resolution: ConflictResolution | str,
        notes: str = "",
    ) -> bool:
        """Record the operator's decision for a conflict.

        Any existing conflict may be resolved again; the latest call wins.

        Returns:
            ``True`` if the conflict exists, ``False`` otherwise.

        Raises:
            ValueError: If *resolution* is not a known resolution.
        """
        decision = ConflictResolution(resolution)
        message = f"[{decision.value}] {notes}".rstrip()
        changed = await run_sync(
            self.state.resolve_conflict,
            conflict_id,
            _RESOLUTION_STATUS[decision],
            message,
        )
        if changed:
            await self._audit(
                "conflict_resolved",
                {"conflict_id": conflict_id, "resolution": decision.value},
            )
        else:
            logger.warning("No conflict with id %s", conflict_id)
        return changed

    def diff(
        self,
        source: str,
        target: str,
        object_type: str,
        object_id: str,
    ) -> dict[str, Any]:
        """Echo the requested identity; a semantic diff is not implemented."""
        return {
            "object_type": object_type,
            "object_id": object_id,
            "source": source,
            "target": target,
            "note": (
                "Detailed semantic diff is not implemented yet. "
                "This returns the requested identity envelope."
            ),
        }

    async def health(self, check_source: bool = False) -> dict[str, Any]:
        """Summarise local state for diagnostics.

        With *check_source*, the source adapter's health endpoint is also
        called; a failure is reported under ``source`` rather than raised.
        """
        mappings = await run_sync(self.state.list_mappings)
        open_conflicts = await run_sync(
            self.state.list_conflicts, ConflictStatus.OPEN
        )
        runs = await run_sync(self.state.list_runs)
        return {
            "state_file": str(self.state.path),
            "audit_log": str(self.audit.path),
            "mappings": len(mappings),
            "open_conflicts": len(open_conflicts),
            "runs": len(runs),
            "last_run": runs[0].model_dump(mode="json") if runs else None,
            "create_target": self.settings.create_target,
            "source": await self._source_status() if check_source else None,
        }

    async def _source_status(self) -> dict[str, Any]:
        try:
            await self.source.health_check()
        except PersistenceError:
            raise
        except Exception as exc:
            logger.warning("Source health check failed: %s", exc)
            return {"ok": False, "error": describe_error(exc)}
        return {"ok": True}

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def _plan(
        self, document_ids: list[str] | None, mode: RunMode
    ) -> list[_Planned]:
        planned: list[_Planned] = []
        for loaded in await self._load_documents(document_ids):
            if isinstance(loaded, PlanItem):
                planned.append(_Planned(item=loaded))
            else:
                planned.append(await self._plan_document(loaded, mode))
        return planned

    async def _load_documents(
        self, document_ids: list[str] | None
    ) -> list[SourceDocument | PlanItem]:
        """Fetch candidate documents; per-document failures become items.

        A failure to list documents is not caught: without a listing the
        run cannot proceed.
        """
        summaries = await self.source.list_documents(
            DocumentFilter(limit=self.settings.list_limit)
        )
        summary_by_id = {s.id: s for s in summaries}
        containers = await self._load_containers()

        ids = document_ids if document_ids else [s.id for s in summaries]
        loaded: list[SourceDocument | PlanItem] = []
        for doc_id in ids:
            summary = summary_by_id.get(doc_id)
            try:
                document = await self.source.get_document(doc_id)
            except PersistenceError:
                raise
            except Exception as exc:
                logger.error("Cannot load source document %s: %s", doc_id, exc)
                loaded.append(
                    _failed_item(doc_id, summary.name if summary else "", exc)
                )
                continue
            loaded.append(_with_path(document, summary, containers))
        return loaded

    async def _load_containers(self) -> dict[str, Container]:
        try:
            containers = await self.source.list_containers()
        except PersistenceError:
            raise
        except Exception as exc:
            # Older sources do not expose a container listing.
            logger.info("Container listing unavailable: %s", exc)
            return {}
        return {c.id: c for c in containers}

    async def _plan_document(
        self, document: SourceDocument, mode: RunMode
    ) -> _Planned:
        source_fp = fingerprint(document)
        mapping: SyncMapping | None = None
        try:
            destination_id = await self._find_destination(document)
            mapping = await run_sync(self.state.get_mapping, document.id)

            if destination_id is None:
                self._require_create_target()
                action, reason = SyncAction.CREATE, None
            elif mapping is None:
                action, reason = SyncAction.UPDATE, None
            elif await self._detect_conflict(mapping, source_fp, destination_id):
                action, reason = SyncAction.CONFLICT, BOTH_CHANGED
            elif mode == RunMode.INCREMENTAL and _unchanged(
                mapping, source_fp, destination_id
            ):
                action, reason = SyncAction.SKIP, UNCHANGED
            else:
                action, reason = SyncAction.UPDATE, None
        except PersistenceError:
            raise
        except PreconditionError as exc:
            logger.info("Skipping %s: %s", document.id, exc)
            return _Planned(
                item=PlanItem(
                    source_id=document.id,
                    title=document.name,
                    action=SyncAction.SKIP,
                    reason=exc.message,
                    source_fingerprint=source_fp,
                    error_kind=exc.kind.value,
                ),
                document=document,
                mapping=mapping,
            )
        except Exception as exc:
            logger.error("Cannot plan document %s: %s", document.id, exc)
            return _Planned(
                item=_failed_item(document.id, document.name, exc, source_fp),
                document=document,
                mapping=mapping,
            )

        logger.debug("Planned %s for %s", action.value, document.id)
        return _Planned(
            item=PlanItem(
                source_id=document.id,
                title=document.name,
                destination_id=destination_id,
                action=action,
                reason=reason,
                source_fingerprint=source_fp,
            ),
            document=document,
            mapping=mapping,
        )

    async def _find_destination(self, document: SourceDocument) -> str | None:
        """Match by canonical name first, then by each alias."""
        terms: list[str] = []
        for term in [document.name, *document.aliases]:
            term = term.strip()
            if term and term not in terms:
                terms.append(term)
        for term in terms:
            found = await self.destination.find_object_by_name_under_path(
                term, list(document.path)
            )
            if found:
                return found
        return None

    async def _detect_conflict(
        self, mapping: SyncMapping, source_fp: str, destination_id: str
    ) -> bool:
        """Conflict iff the source changed and the destination was edited after last sync."""
        if mapping.source_fingerprint == source_fp:
            return False
        edited = await self.destination.get_last_edited_timestamp(
            destination_id
        )
        return as_utc(edited) > mapping.last_synced_at

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def _apply_entry(self, entry: _Planned, with_media: bool) -> PlanItem:
        item = entry.item
        document = entry.document
        if item.action == SyncAction.SKIP or document is None:
            return item
        try:
            if item.action == SyncAction.CONFLICT and item.destination_id:
                return await self._record_conflict(
                    entry, document, item.destination_id
                )
            return await self._write_document(entry, document, with_media)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.error(
                "Error syncing %s (%s): %s", item.source_id, item.action.value, exc
            )
            return _failed_item(
                item.source_id,
                item.title,
                exc,
                item.source_fingerprint,
                destination_id=item.destination_id,
            )

    async def _record_conflict(
        self, entry: _Planned, document: SourceDocument, destination_id: str
    ) -> PlanItem:
        item = entry.item
        destination_changed_at = (
            await self.destination.get_last_edited_timestamp(destination_id)
        )
        existing = await run_sync(
            self.state.find_open_conflict, document.id, destination_id
        )
        conflict = Conflict(
            conflict_id=existing.conflict_id if existing else new_id("conflict"),
            source_id=document.id,
            destination_id=destination_id,
            source_changed_at=document.last_modified or utc_now(),
            destination_changed_at=destination_changed_at,
            source_fingerprint=item.source_fingerprint or fingerprint(document),
            destination_fingerprint=(
                entry.mapping.target_fingerprint if entry.mapping else "unknown"
            ),
            status=ConflictStatus.OPEN,
            operator_notes=CONFLICT_NOTE,
        )
        await run_sync(self.state.insert_conflict, conflict)
        await self._audit(
            "conflict_created",
            {
                "source_id": document.id,
                "destination_id": destination_id,
                "conflict_id": conflict.conflict_id,
            },
        )
        logger.warning(
            "Conflict %s recorded for %s", conflict.conflict_id, document.id
        )
        return item.model_copy(update={"conflict_id": conflict.conflict_id})

    async def _write_document(
        self, entry: _Planned, document: SourceDocument, with_media: bool
    ) -> PlanItem:
        item = entry.item
        destination_id = item.destination_id
        if item.action == SyncAction.CREATE or destination_id is None:
            destination_id = await self._create_destination(document)

        batch = MediaBatch()
        if with_media and document.media:
            batch = await self.media.resolve(list(document.media))
            for failure in batch.failures:
                await self._audit(
                    "media_failed",
                    {
                        "source_id": document.id,
                        "asset_id": failure.asset_id,
                        "source_url": failure.source_url,
                        "error": failure.error,
                    },
                )

        region = build_region(document, batch.records, with_media)
        target_fp = region_fingerprint(region)

        previous = await run_sync(self.state.get_mapping, document.id)
        previous_region = previous.region_id if previous else None
        if previous_region:
            await self._delete_region(previous_region)
        region_id = await self.destination.upsert_generated_region(
            destination_id, region, previous_region
        )

        mapping = SyncMapping(
            source_id=document.id,
            source_type=document.doc_type or "document",
            destination_id=destination_id,
            canonical_name=document.name,
            source_fingerprint=item.source_fingerprint or fingerprint(document),
            target_fingerprint=target_fp,
            last_synced_at=utc_now(),
            region_id=region_id,
        )
        await run_sync(self.state.upsert_mapping, mapping)
        await self._audit(
            "document_synced",
            {
                "source_id": document.id,
                "destination_id": destination_id,
                "region_id": region_id,
                "action": item.action.value,
                "media_count": len(batch.records),
                "media_failures": len(batch.failures),
            },
        )
        logger.info(
            "Synced %s -> %s (%s)", document.id, destination_id, item.action.value
        )

        await pause(self.settings.delay_ms)
        return item.model_copy(
            update={
                "destination_id": destination_id,
                "media_count": len(batch.records),
            }
        )

    async def _create_destination(self, document: SourceDocument) -> str:
        container_id = await self.destination.ensure_container_path(
            list(document.path), root=self._require_create_target()
        )
        # Another writer may have created it since the plan was made.
        existing = await self._find_destination(document)
        if existing:
            return existing
        return await self.destination.create_object(container_id, document.name)

    def _require_create_target(self) -> str:
        if not self.settings.create_target:
            raise PreconditionError(NO_CREATE_TARGET)
        return self.settings.create_target

    async def _delete_region(self, region_id: str) -> None:
        try:
            await self.destination.delete_generated_region(region_id)
        except PersistenceError:
            raise
        except Exception as exc:
            logger.warning(
                "Could not delete previous region %s: %s", region_id, exc
            )

    async def _audit(self, event: str, payload: dict[str, Any]) -> None:
        await run_sync(self.audit.append, event, payload)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _unchanged(
    mapping: SyncMapping, source_fp: str, destination_id: str
) -> bool:
    return (
        mapping.source_fingerprint == source_fp
        and mapping.destination_id == destination_id
        and mapping.region_id is not None
    )


def _with_path(
    document: SourceDocument,
    summary: DocumentSummary | None,
    containers: dict[str, Container],
) -> SourceDocument:
    """Fill in ``path`` from the summary or the container hierarchy."""
    if document.path:
        return document
    container_id = document.container_id or (
        summary.container_id if summary else None
    )
    path = (summary.path if summary else None) or resolve_container_path(
        container_id, containers
    )
    return document.model_copy(
        update={"path": list(path), "container_id": container_id}
    )


def _failed_item(
    source_id: str,
    title: str,
    exc: Exception,
    source_fingerprint: str | None = None,
    destination_id: str | None = None,
) -> PlanItem:
    """Turn a per-document failure into a failed skip item.

    Exceptions that are not ``SyncError``s come from adapter code and are
    reported with kind ``adapter``.
    """
    detail = describe_error(exc)
    message = detail["message"]
    if detail["kind"] is None:
        name = type(exc).__name__
        message = f"{name}: {message}" if message else name
    return PlanItem(
        source_id=source_id,
        title=title,
        destination_id=destination_id,
        action=SyncAction.SKIP,
        reason=detail.get("hint") or None,
        source_fingerprint=source_fingerprint,
        error_kind=detail["kind"] or ErrorKind.ADAPTER.value,
        error=message,
    )

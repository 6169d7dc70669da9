"""Pydantic models for the one-way mirror engine.

Defines the data contracts shared by all sync modules:

- Source side: ``SourceDocument``, ``MediaReference``, ``DocumentSummary``,
  ``Container``, ``DocumentFilter``, ``FetchedAsset``.
- Persisted state: ``SyncMapping``, ``Conflict``, ``MediaRecord``,
  ``SyncRun``.
- Results: ``SyncAction``, ``PlanItem``, ``SyncReport``, ``MediaBatch``.
- Destination payload: ``GeneratedRegion`` and ``MediaListing``.

All models are frozen (immutable); use ``model_copy(update=...)`` to derive
a changed instance.  Every timestamp is normalised to timezone-aware UTC so
comparisons between source, destination and stored values are safe.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel


def as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """Planned action for one source document."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
    CONFLICT = "conflict"


class ConflictStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


class ConflictResolution(str, Enum):
    """Operator decision recorded when resolving a conflict."""

    ACCEPT_SOURCE = "accept_source"
    ACCEPT_DESTINATION = "accept_destination"
    MANUAL_MERGE = "manual_merge"
    IGNORE = "ignore"


SOURCE_TO_DESTINATION = "source_to_destination"


# ---------------------------------------------------------------------------
# Source side
# ---------------------------------------------------------------------------


class MediaReference(BaseModel):
    """A binary asset referenced by a source document.

    At least one of ``asset_id`` or ``source_url`` must be set for the
    reference to be resolvable; others are skipped by the media cache.
    """

    asset_id: str | None = None
    source_url: str = ""
    filename: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None

    model_config = {"frozen": True}

    @property
    def has_locator(self) -> bool:
        return bool(self.asset_id or self.source_url)


class SourceDocument(BaseModel):
    """The unit being mirrored.  Read-only for the engine.

    Attributes:
        id: Stable source identifier.
        name: Display name, used as the canonical destination title.
        aliases: Alternative names used when matching destination objects.
        path: Folder names from the root, top-down.
        container_id: Source folder id, used to derive ``path`` when the
            source does not supply it directly.
        last_modified: Source-side modification time, if known.
        content: Raw body markup.
        media: Referenced assets, in document order.
        doc_type: Source-specific type tag.
    """

    id: str
    name: str
    aliases: list[str] = []
    path: list[str] = []
    container_id: str | None = None
    last_modified: UtcDatetime | None = None
    content: str = ""
    media: list[MediaReference] = []
    doc_type: str | None = None

    model_config = {"frozen": True}


class DocumentSummary(BaseModel):
    """Listing entry returned by ``SourceAdapter.list_documents``."""

    id: str
    name: str
    container_id: str | None = None
    path: list[str] | None = None
    last_modified: UtcDatetime | None = None

    model_config = {"frozen": True}


class Container(BaseModel):
    """A source folder; ``parent_id`` links it into a hierarchy."""

    id: str
    name: str
    parent_id: str | None = None
    path: list[str] | None = None

    model_config = {"frozen": True}


class DocumentFilter(BaseModel):
    """Filter passed to ``SourceAdapter.list_documents``."""

    limit: int | None = None
    container_id: str | None = None
    updated_after: UtcDatetime | None = None

    model_config = {"frozen": True}


class FetchedAsset(BaseModel):
    """Downloaded bytes for one media reference."""

    data: bytes
    content_type: str | None = None
    final_url: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class SyncMapping(BaseModel):
    """Link between one source document and one destination object.

    Attributes:
        source_id: Source identifier (primary key).
        source_type: Source type tag.
        destination_id: Destination object identifier.
        canonical_name: Display name at last sync.
        last_sync_direction: Always ``source_to_destination``.
        source_fingerprint: Content fingerprint at last sync.
        target_fingerprint: Fingerprint of the generated payload.
        last_synced_at: Time of the last successful sync.
        region_id: Identifier of the destination's generated region.
    """

    source_id: str
    source_type: str = "document"
    destination_id: str
    canonical_name: str
    last_sync_direction: str = SOURCE_TO_DESTINATION
    source_fingerprint: str
    target_fingerprint: str
    last_synced_at: UtcDatetime
    region_id: str | None = None

    model_config = {"frozen": True}


class Conflict(BaseModel):
    """A divergence that needs a human decision."""

    conflict_id: str
    source_id: str
    destination_id: str
    source_changed_at: UtcDatetime
    destination_changed_at: UtcDatetime
    source_fingerprint: str
    destination_fingerprint: str = "unknown"
    status: ConflictStatus = ConflictStatus.OPEN
    operator_notes: str | None = None

    model_config = {"frozen": True}


class MediaRecord(BaseModel):
    """One downloaded asset in the content-addressed cache."""

    asset_id: str
    source_url: str = ""
    stored_reference: str
    checksum: str
    size_bytes: int
    last_validated_at: UtcDatetime

    model_config = {"frozen": True}


class SyncRun(BaseModel):
    """Bookkeeping for one apply invocation."""

    run_id: str
    started_at: UtcDatetime
    ended_at: UtcDatetime | None = None
    status: RunStatus = RunStatus.RUNNING
    mode: RunMode = RunMode.INCREMENTAL
    summary: dict[str, Any] | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Media cache results
# ---------------------------------------------------------------------------


class MediaFailure(BaseModel):
    """A media reference that could not be fetched."""

    asset_id: str | None = None
    source_url: str = ""
    error: str

    model_config = {"frozen": True}


class MediaBatch(BaseModel):
    """Outcome of ``MediaCache.resolve``: one entry per resolvable input."""

    records: list[MediaRecord] = []
    failures: list[MediaFailure] = []

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Generated region payload
# ---------------------------------------------------------------------------


class MediaListing(BaseModel):
    """Media entry rendered into the generated region."""

    asset_id: str
    source_url: str = ""
    stored_reference: str
    checksum: str
    size_bytes: int

    model_config = {"frozen": True}


class GeneratedRegion(BaseModel):
    """Logical content of the engine-owned region on a destination object.

    Carries no wall-clock values so identical source state always yields
    an identical payload fingerprint.  Destination adapters translate this
    into their own markup and chunk it to their size limits.
    """

    heading: str = "Source Mirror"
    metadata_lines: list[str]
    content_text: str
    media: list[MediaListing] = []
    include_media: bool = True

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Plan / report
# ---------------------------------------------------------------------------


class PlanItem(BaseModel):
    """Planned (preview) or performed (apply) action for one document.

    Attributes:
        source_id: Source document identifier.
        title: Source display name.
        destination_id: Matched or created destination object, if any.
        action: Sync action.
        reason: Why the action was chosen, for skips and conflicts.
        source_fingerprint: Fingerprint computed for this run.
        error_kind: Error category when the item failed.
        error: Error message when the item failed.
        conflict_id: Conflict record written for this item (apply only).
        media_count: Number of media records resolved (apply only).
    """

    source_id: str
    title: str = ""
    destination_id: str | None = None
    action: SyncAction
    reason: str | None = None
    source_fingerprint: str | None = None
    error_kind: str | None = None
    error: str | None = None
    conflict_id: str | None = None
    media_count: int = 0

    model_config = {"frozen": True}

    @property
    def failed(self) -> bool:
        return self.error is not None


class SyncReport(BaseModel):
    """Aggregate result of a preview or apply pass.

    Attributes:
        mode: ``preview`` or ``apply``.
        run_mode: ``incremental`` or ``full``.
        run_id: Run record identifier (apply only).
        items: Per-document outcomes, in processing order.
        started_at: When the pass started.
        completed_at: When the pass completed.
    """

    mode: Literal["preview", "apply"]
    run_mode: RunMode = RunMode.INCREMENTAL
    run_id: str | None = None
    items: list[PlanItem] = []
    started_at: UtcDatetime
    completed_at: UtcDatetime | None = None

    model_config = {"frozen": True}

    def with_action(self, action: SyncAction) -> list[PlanItem]:
        return [i for i in self.items if i.action == action]

    @property
    def created(self) -> list[PlanItem]:
        return self.with_action(SyncAction.CREATE)

    @property
    def updated(self) -> list[PlanItem]:
        return self.with_action(SyncAction.UPDATE)

    @property
    def skipped(self) -> list[PlanItem]:
        return self.with_action(SyncAction.SKIP)

    @property
    def conflicts(self) -> list[PlanItem]:
        return self.with_action(SyncAction.CONFLICT)

    @property
    def errors(self) -> list[PlanItem]:
        return [i for i in self.items if i.failed]

    @property
    def summary(self) -> dict[str, int]:
        """Counts per action, plus the number of failed items."""
        counts = {action.value: 0 for action in SyncAction}
        for item in self.items:
            counts[item.action.value] += 1
        counts["failed"] = len(self.errors)
        return counts

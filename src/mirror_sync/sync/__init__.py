"""One-way document mirror engine.

Public API for mirroring documents from a source content system into an
engine-owned region of destination workspace objects.

Architecture
------------
Change detection is fingerprint based: each source document is hashed
and compared against the fingerprint stored at its last successful sync.
A changed source only becomes a *conflict* when the destination object
was also edited after that sync.  The engine never touches destination
content outside its generated region.

Modules:

- ``engine``   -- ``SyncEngine``: preview and apply passes.
- ``state``    -- ``StateStore``: durable JSON state (mappings, conflicts,
  media records, runs).
- ``media``    -- ``MediaCache``: content-addressed asset storage.
- ``audit``    -- ``AuditTrail``: append-only JSON-lines event log.
- ``hashing``  -- document fingerprints.
- ``payload``  -- generated-region payload assembly.
- ``models``   -- data contracts.
- ``reporter`` -- human-readable and JSON report formatting.

Usage example
-------------
::

    from mirror_sync.context import app_context
    from mirror_sync.sync import format_preview

    async with app_context(destination=my_destination) as ctx:
        preview = await ctx.engine.preview()
        print(format_preview(preview))

        report = await ctx.engine.apply(include_media=True)
"""

from .engine import SyncEngine, SyncSettings
from .models import (
    Conflict,
    ConflictResolution,
    ConflictStatus,
    PlanItem,
    RunMode,
    SourceDocument,
    SyncAction,
    SyncMapping,
    SyncReport,
    SyncRun,
)
from .audit import AuditTrail
from .media import MediaCache
from .reporter import (
    conflicts_to_json,
    format_conflicts,
    format_preview,
    format_report,
    report_to_json,
)
from .state import StateStore

__all__ = [
    "AuditTrail",
    "Conflict",
    "ConflictResolution",
    "ConflictStatus",
    "MediaCache",
    "PlanItem",
    "RunMode",
    "SourceDocument",
    "StateStore",
    "SyncAction",
    "SyncEngine",
    "SyncMapping",
    "SyncReport",
    "SyncRun",
    "SyncSettings",
    "conflicts_to_json",
    "format_conflicts",
    "format_preview",
    "format_report",
    "report_to_json",
]

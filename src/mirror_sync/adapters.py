"""Collaborator interfaces consumed by the sync engine.

Concrete adapters hide every transport detail (envelopes, pagination,
payload size limits) behind these Protocols.  All methods are coroutines;
failures must be raised as ``AdapterError`` with a reason so the engine can
tell "unauthorized" from "not found" from "try again later".
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from .sync.models import (
    Container,
    DocumentFilter,
    DocumentSummary,
    FetchedAsset,
    GeneratedRegion,
    MediaReference,
    SourceDocument,
)


@runtime_checkable
class SourceAdapter(Protocol):
    """Read-only access to the source content system."""

    async def list_documents(
        self, filter: DocumentFilter
    ) -> list[DocumentSummary]: ...

    async def get_document(self, document_id: str) -> SourceDocument: ...

    async def list_containers(self) -> list[Container]: ...

    async def fetch_asset(self, ref: MediaReference) -> FetchedAsset: ...

    async def health_check(self) -> Any:
        """Confirm the source is reachable; raise ``AdapterError`` if not."""
        ...


@runtime_checkable
class DestinationAdapter(Protocol):
    """Write access to the destination workspace.

    The adapter alone knows destination size limits and must chunk large
    ``GeneratedRegion`` payloads internally.
    """

    async def find_object_by_name_under_path(
        self, name: str, path: list[str]
    ) -> str | None:
        """Return the object titled *name* under the container *path*.

        Path segments are matched top-down; a missing segment means no
        match.
        """
        ...

    async def ensure_container_path(
        self, path: list[str], root: str | None = None
    ) -> str:
        """Return the container for *path*, creating missing segments."""
        ...

    async def create_object(self, container_id: str, name: str) -> str: ...

    async def get_last_edited_timestamp(self, object_id: str) -> datetime: ...

    async def delete_generated_region(self, region_id: str) -> None:
        """Delete a previously written region.  Callers treat errors as best-effort."""
        ...

    async def upsert_generated_region(
        self,
        object_id: str,
        payload: GeneratedRegion,
        previous_region_id: str | None = None,
    ) -> str:
        """Write *payload* as the object's generated region; return its id."""
        ...

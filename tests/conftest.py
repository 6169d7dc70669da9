"""Shared pytest fixtures for mirror-sync tests."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from mirror_sync.config import Config
from mirror_sync.core.errors import AdapterError, AdapterFailure
from mirror_sync.sync.audit import AuditTrail
from mirror_sync.sync.engine import SyncEngine, SyncSettings
from mirror_sync.sync.media import MediaCache
from mirror_sync.sync.models import (
    Container,
    DocumentFilter,
    DocumentSummary,
    FetchedAsset,
    GeneratedRegion,
    MediaReference,
    SourceDocument,
)
from mirror_sync.sync.state import StateStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeSource:
    """In-memory ``SourceAdapter``.

    Documents, containers and asset bytes live in dicts.  Set
    ``list_error`` / ``containers_error`` or add ids to ``broken`` to
    simulate adapter failures.
    """

    def __init__(
        self,
        documents: list[SourceDocument] | None = None,
        containers: list[Container] | None = None,
    ) -> None:
        self.documents: dict[str, SourceDocument] = {
            d.id: d for d in documents or []
        }
        self.summary_paths: dict[str, list[str]] = {}
        self.containers: list[Container] = containers or []
        self.assets: dict[str, FetchedAsset] = {}
        self.broken: set[str] = set()
        self.list_error: Exception | None = None
        self.containers_error: Exception | None = None
        self.health_error: Exception | None = None
        self.fetch_calls: list[MediaReference] = []

    def add(self, document: SourceDocument) -> None:
        self.documents[document.id] = document

    async def list_documents(
        self, filter: DocumentFilter
    ) -> list[DocumentSummary]:
        if self.list_error:
            raise self.list_error
        docs = list(self.documents.values())
        if filter.limit:
            docs = docs[: filter.limit]
        return [
            DocumentSummary(
                id=d.id,
                name=d.name,
                container_id=d.container_id,
                path=self.summary_paths.get(d.id),
                last_modified=d.last_modified,
            )
            for d in docs
        ]

    async def get_document(self, document_id: str) -> SourceDocument:
        if document_id in self.broken:
            raise AdapterError(
                f"Source unavailable for {document_id}",
                AdapterFailure.UNAVAILABLE,
            )
        if document_id not in self.documents:
            raise AdapterError(
                f"Document {document_id} not found", AdapterFailure.NOT_FOUND
            )
        return self.documents[document_id]

    async def list_containers(self) -> list[Container]:
        if self.containers_error:
            raise self.containers_error
        return list(self.containers)

    async def fetch_asset(self, ref: MediaReference) -> FetchedAsset:
        self.fetch_calls.append(ref)
        for key in (ref.asset_id, ref.source_url):
            if key and key in self.assets:
                return self.assets[key]
        raise AdapterError(
            f"Asset {ref.asset_id or ref.source_url} not found",
            AdapterFailure.NOT_FOUND,
        )

    async def health_check(self) -> dict[str, str]:
        if self.health_error:
            raise self.health_error
        return {"status": "ok"}


class FakeDestination:
    """In-memory ``DestinationAdapter``.

    Containers are addressed by their full path tuple, objects by
    ``(path, name)``.  Every region write gets a fresh id and replaces
    the edited timestamp of its object.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.containers: dict[tuple[str, ...], str] = {}
        self.container_paths: dict[str, tuple[str, ...]] = {}
        self.objects: dict[tuple[tuple[str, ...], str], str] = {}
        self.edited: dict[str, datetime] = {}
        self.regions: dict[str, tuple[str, GeneratedRegion]] = {}
        self.upsert_calls: list[tuple[str, str | None]] = []
        self.deleted: list[str] = []
        self.created: list[str] = []
        self.fail_upsert_for: set[str] = set()
        self.upsert_errors: dict[str, Exception] = {}
        self.fail_delete = False

    def _next(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add_object(
        self,
        name: str,
        path: list[str] | None = None,
        edited: datetime = T0,
    ) -> str:
        """Seed an existing destination object and return its id."""
        key = tuple(path or [])
        object_id = self._next("obj")
        self.objects[(key, name)] = object_id
        self.edited[object_id] = edited
        return object_id

    def regions_for(self, object_id: str) -> list[str]:
        return [rid for rid, (oid, _) in self.regions.items() if oid == object_id]

    async def find_object_by_name_under_path(
        self, name: str, path: list[str]
    ) -> str | None:
        return self.objects.get((tuple(path), name))

    async def ensure_container_path(
        self, path: list[str], root: str | None = None
    ) -> str:
        for depth in range(1, len(path) + 1):
            prefix = tuple(path[:depth])
            if prefix not in self.containers:
                container_id = self._next("container")
                self.containers[prefix] = container_id
                self.container_paths[container_id] = prefix
        if not path:
            self.container_paths.setdefault(root or "root", ())
            return root or "root"
        return self.containers[tuple(path)]

    async def create_object(self, container_id: str, name: str) -> str:
        path = self.container_paths[container_id]
        object_id = self._next("obj")
        self.objects[(path, name)] = object_id
        self.created.append(object_id)
        return object_id

    async def get_last_edited_timestamp(self, object_id: str) -> datetime:
        return self.edited[object_id]

    async def delete_generated_region(self, region_id: str) -> None:
        if self.fail_delete:
            raise AdapterError("delete refused", AdapterFailure.UNAVAILABLE)
        if region_id not in self.regions:
            raise AdapterError(
                f"Region {region_id} not found", AdapterFailure.NOT_FOUND
            )
        del self.regions[region_id]
        self.deleted.append(region_id)

    async def upsert_generated_region(
        self,
        object_id: str,
        payload: GeneratedRegion,
        previous_region_id: str | None = None,
    ) -> str:
        self.upsert_calls.append((object_id, previous_region_id))
        if object_id in self.upsert_errors:
            raise self.upsert_errors[object_id]
        if object_id in self.fail_upsert_for:
            raise AdapterError(
                f"Object {object_id} is locked", AdapterFailure.UNAVAILABLE
            )
        region_id = self._next("region")
        self.regions[region_id] = (object_id, payload)
        self.edited[object_id] = datetime.now(timezone.utc)
        return region_id


def make_document(doc_id: str, name: str | None = None, **fields: Any) -> SourceDocument:
    fields.setdefault("content", f"<p>Body of {doc_id}</p>")
    fields.setdefault("last_modified", T0)
    return SourceDocument(id=doc_id, name=name or f"Doc {doc_id}", **fields)


@pytest.fixture
def mock_config(tmp_path: Path) -> Config:
    """Create a Config instance pointing at a temp data dir."""
    return Config(
        source_url="https://source.example.com/api",
        source_token="secret-token",
        data_dir=tmp_path / "data",
        delay_ms=0,
    )


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()


@pytest.fixture
def state(tmp_path: Path) -> StateStore:
    return StateStore.open(tmp_path / "data")


@pytest.fixture
def audit(tmp_path: Path) -> AuditTrail:
    return AuditTrail.open(tmp_path / "data")


@pytest.fixture
def make_engine(
    tmp_path: Path,
    source: FakeSource,
    destination: FakeDestination,
    state: StateStore,
    audit: AuditTrail,
) -> Callable[..., SyncEngine]:
    """Factory building a ``SyncEngine`` over the fakes (no write delay)."""

    def _make(**settings: Any) -> SyncEngine:
        settings.setdefault("delay_ms", 0)
        media = MediaCache(source, state, tmp_path / "data" / "media")
        return SyncEngine(
            source,
            destination,
            state,
            media,
            audit,
            SyncSettings(**settings),
        )

    return _make

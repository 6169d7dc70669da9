"""Tests for the HTTP source adapter (requests mocked)."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from mirror_sync.config import Config
from mirror_sync.core.errors import AdapterError, AdapterFailure
from mirror_sync.source.client import HttpSourceAdapter, merge_media
from mirror_sync.sync.models import DocumentFilter, MediaReference


def _response(status: int = 200, json_data=None, content: bytes = b"", headers=None):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 400
    response.text = "error body"
    response.content = content
    response.headers = headers or {}
    response.url = "https://source.example.com/api/final"
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def adapter(mock_config):
    return HttpSourceAdapter(mock_config)


@pytest.fixture
def session(adapter):
    session = Mock()
    with patch.object(adapter, "_get_session", return_value=session):
        yield session


class TestSession:
    def test_auth_headers(self, mock_config):
        """Bearer token always, bridge token when configured."""
        mock_config.bridge_token = "bridge"
        adapter = HttpSourceAdapter(mock_config)

        session = adapter._get_session()

        assert session.headers["Authorization"] == "Bearer secret-token"
        assert session.headers["X-Bridge-Token"] == "bridge"

    def test_no_bridge_header_by_default(self, adapter):
        """The bridge header is absent without a bridge token."""
        assert "X-Bridge-Token" not in adapter._get_session().headers

    def test_url_join(self, adapter):
        """Paths are joined to the base URL, absolute URLs kept."""
        assert adapter._url("/documents") == "https://source.example.com/api/documents"
        assert adapter._url("https://cdn.example.com/x.png") == "https://cdn.example.com/x.png"


class TestListDocuments:
    async def test_documents_envelope(self, adapter, session):
        """The documents envelope is unwrapped and fields mapped."""
        session.get.return_value = _response(
            json_data={
                "documents": [
                    {
                        "id": 1,
                        "title": "Alpha",
                        "folderId": "f1",
                        "folderPath": ["World"],
                        "updatedAt": "2026-01-01T12:00:00Z",
                    }
                ]
            }
        )

        docs = await adapter.list_documents(DocumentFilter(limit=5, container_id="f1"))

        assert docs[0].id == "1"
        assert docs[0].name == "Alpha"
        assert docs[0].path == ["World"]
        assert docs[0].last_modified == datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        _, kwargs = session.get.call_args
        assert kwargs["params"] == {"limit": 5, "folder": "f1"}
        assert kwargs["timeout"] == 30.0

    async def test_journals_envelope_and_bare_list(self, adapter, session):
        """Alternate envelopes are accepted."""
        session.get.return_value = _response(json_data={"journals": [{"id": "j", "name": "J"}]})
        assert [d.id for d in await adapter.list_documents(DocumentFilter())] == ["j"]

        session.get.return_value = _response(json_data=[{"id": "k"}])
        docs = await adapter.list_documents(DocumentFilter())
        assert docs[0].name == "Untitled Document"


class TestGetDocument:
    async def test_maps_fields_and_merges_media(self, adapter, session):
        """Declared media and body URLs are merged, deduplicated by URL."""
        session.get.return_value = _response(
            json_data={
                "id": "d1",
                "name": "Alpha",
                "aliases": ["A"],
                "type": "npc",
                "updatedAt": 1767268800000,
                "text": '<img src="https://x/a.png"><img src="https://x/b.png">',
                "media": [
                    {"assetId": "a1", "url": "https://x/a.png", "mimeType": "image/png"},
                    {"assetId": "a9"},
                ],
            }
        )

        doc = await adapter.get_document("d1")

        assert doc.aliases == ["A"]
        assert doc.doc_type == "npc"
        assert doc.last_modified == datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        assert [(m.asset_id, m.source_url) for m in doc.media] == [
            ("a1", "https://x/a.png"),
            ("a9", ""),
            (None, "https://x/b.png"),
        ]
        assert doc.media[2].filename == "b.png"
        assert session.get.call_args[0][0].endswith("/documents/d1")

    async def test_not_found(self, adapter, session):
        """404 maps to a not_found adapter error."""
        session.get.return_value = _response(status=404)

        with pytest.raises(AdapterError) as exc_info:
            await adapter.get_document("missing")

        assert exc_info.value.reason == AdapterFailure.NOT_FOUND


class TestErrorMapping:
    @pytest.mark.parametrize(
        "status, reason",
        [
            (401, AdapterFailure.UNAUTHORIZED),
            (403, AdapterFailure.UNAUTHORIZED),
            (500, AdapterFailure.UNAVAILABLE),
        ],
    )
    async def test_status_codes(self, adapter, session, status, reason):
        """HTTP status codes map to adapter failure reasons."""
        session.get.return_value = _response(status=status)

        with pytest.raises(AdapterError) as exc_info:
            await adapter.list_containers()

        assert exc_info.value.reason == reason

    async def test_timeout(self, adapter, session):
        """Timeouts are unavailable."""
        session.get.side_effect = requests.Timeout("slow")

        with pytest.raises(AdapterError) as exc_info:
            await adapter.list_containers()

        assert exc_info.value.reason == AdapterFailure.UNAVAILABLE

    async def test_connection_error(self, adapter, session):
        """Connection failures are unavailable."""
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(AdapterError) as exc_info:
            await adapter.list_documents(DocumentFilter())

        assert exc_info.value.reason == AdapterFailure.UNAVAILABLE

    async def test_invalid_json(self, adapter, session):
        """Undecodable bodies are malformed."""
        session.get.return_value = _response(json_data=ValueError("bad json"))

        with pytest.raises(AdapterError) as exc_info:
            await adapter.get_document("d1")

        assert exc_info.value.reason == AdapterFailure.MALFORMED


class TestContainers:
    async def test_folders(self, adapter, session):
        """Folder rows map to containers."""
        session.get.return_value = _response(
            json_data={"folders": [{"id": "f2", "name": "People", "parentId": "f1"}]}
        )

        containers = await adapter.list_containers()

        assert containers[0].parent_id == "f1"


class TestFetchAsset:
    async def test_asset_endpoint_first(self, adapter, session):
        """The asset endpoint is tried before the source URL."""
        session.get.return_value = _response(
            content=b"bytes", headers={"content-type": "image/png"}
        )

        fetched = await adapter.fetch_asset(
            MediaReference(asset_id="a 1", source_url="https://x/a.png")
        )

        assert fetched.data == b"bytes"
        assert fetched.content_type == "image/png"
        assert session.get.call_args[0][0].endswith("/assets/a%201")

    async def test_falls_back_to_source_url(self, adapter, session):
        """A failing asset endpoint falls back to the source URL."""
        session.get.side_effect = [
            _response(status=404),
            _response(content=b"img"),
        ]

        fetched = await adapter.fetch_asset(
            MediaReference(asset_id="a1", source_url="/uploads/a.png", mime_type="image/png")
        )

        assert fetched.data == b"img"
        assert fetched.content_type == "image/png"
        assert session.get.call_args[0][0] == "https://source.example.com/api/uploads/a.png"

    async def test_all_candidates_fail(self, adapter, session):
        """The last error is raised when every candidate fails."""
        session.get.return_value = _response(status=403)

        with pytest.raises(AdapterError) as exc_info:
            await adapter.fetch_asset(MediaReference(asset_id="a1", source_url="https://x/a"))

        assert exc_info.value.reason == AdapterFailure.UNAUTHORIZED


class TestHealthCheck:
    async def test_returns_payload(self, adapter, session):
        """The /health payload is returned as-is."""
        session.get.return_value = _response(json_data={"status": "ok"})

        assert await adapter.health_check() == {"status": "ok"}
        assert session.get.call_args[0][0].endswith("/api/health")

    async def test_unreachable(self, adapter, session):
        """Connection failures surface as unavailable."""
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(AdapterError) as exc_info:
            await adapter.health_check()

        assert exc_info.value.reason == AdapterFailure.UNAVAILABLE


def test_merge_media_drops_unlocatable():
    """Entries with neither URL nor id are dropped."""
    merged = merge_media([MediaReference(filename="x.png")], [])
    assert merged == []


def test_adapter_satisfies_protocol():
    """HttpSourceAdapter is a SourceAdapter."""
    from mirror_sync.adapters import SourceAdapter

    config = Config(source_url="https://s.example.com", source_token="t")
    assert isinstance(HttpSourceAdapter(config), SourceAdapter)

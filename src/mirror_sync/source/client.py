"""REST client for the source content system.

``HttpSourceAdapter`` implements the ``SourceAdapter`` protocol on top of
a ``requests.Session``.  All envelope tolerance lives here: listings may
arrive wrapped as ``{"documents": [...]}``, ``{"journals": [...]}`` or as
a bare list, and document fields have a few accepted spellings.  HTTP
failures are translated into ``AdapterError`` with a reason.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urljoin

import requests

from ..config import Config
from ..core.async_utils import run_sync
from ..core.errors import AdapterError, AdapterFailure
from ..sync.models import (
    Container,
    DocumentFilter,
    DocumentSummary,
    FetchedAsset,
    MediaReference,
    SourceDocument,
)
from .media_refs import extract_media_urls, filename_from_url

logger = logging.getLogger(__name__)

_LIST_KEYS = ("documents", "journals", "items")
_FOLDER_KEYS = ("folders", "containers")
UNTITLED = "Untitled Document"


def _unwrap(raw: Any, keys: tuple[str, ...]) -> list[dict]:
    if isinstance(raw, list):
        return [r for r in raw if isinstance(r, dict)]
    if isinstance(raw, dict):
        for key in keys:
            value = raw.get(key)
            if isinstance(value, list):
                return [r for r in value if isinstance(r, dict)]
        return []
    raise AdapterError(
        f"Unexpected response envelope: {type(raw).__name__}",
        AdapterFailure.MALFORMED,
    )


def _str_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(x) for x in value]


def _opt_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring unparseable timestamp %r", value)
        return None


def _media_reference(raw: dict) -> MediaReference:
    size = raw.get("sizeBytes", raw.get("size_bytes"))
    try:
        size_bytes = int(size) if size is not None else None
    except (TypeError, ValueError):
        size_bytes = None
    return MediaReference(
        asset_id=_opt_str(raw.get("assetId", raw.get("asset_id"))),
        source_url=str(raw.get("sourceUrl") or raw.get("url") or ""),
        filename=_opt_str(raw.get("filename")),
        mime_type=_opt_str(raw.get("mimeType", raw.get("mime_type"))),
        size_bytes=size_bytes,
    )


def merge_media(
    declared: list[MediaReference], body_urls: list[str]
) -> list[MediaReference]:
    """Combine declared media with URLs found in the body.

    Entries are de-duplicated by source URL, first occurrence wins.
    Declared entries without a URL are kept when they carry an asset id.
    """
    merged: list[MediaReference] = []
    seen: set[str] = set()
    candidates = declared + [
        MediaReference(source_url=url, filename=filename_from_url(url))
        for url in body_urls
    ]
    for ref in candidates:
        if ref.source_url:
            if ref.source_url in seen:
                continue
            seen.add(ref.source_url)
        elif not ref.asset_id:
            continue
        merged.append(ref)
    return merged


class HttpSourceAdapter:
    """Source adapter speaking the bridge REST API.

    Args:
        config: Runtime configuration (URL, token, bridge token, timeout).
    """

    def __init__(self, config: Config):
        self.config = config
        self.base_url = config.source_url.rstrip("/")
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Authorization"] = f"Bearer {self.config.source_token}"
        if self.config.bridge_token:
            session.headers["X-Bridge-Token"] = self.config.bridge_token
        return session

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return urljoin(self.base_url + "/", path_or_url.lstrip("/"))

    def _request(
        self, path_or_url: str, params: dict[str, Any] | None = None
    ) -> requests.Response:
        url = self._url(path_or_url)
        try:
            response = self._get_session().get(
                url, params=params, timeout=self.config.timeout_seconds
            )
        except requests.Timeout as exc:
            raise AdapterError(
                f"Source request timed out: {url}", AdapterFailure.UNAVAILABLE
            ) from exc
        except requests.RequestException as exc:
            raise AdapterError(
                f"Source request failed: {url}: {exc}",
                AdapterFailure.UNAVAILABLE,
            ) from exc

        if response.status_code in (401, 403):
            raise AdapterError(
                f"Source rejected credentials ({response.status_code}) {url}",
                AdapterFailure.UNAUTHORIZED,
            )
        if response.status_code == 404:
            raise AdapterError(
                f"Source object not found: {url}", AdapterFailure.NOT_FOUND
            )
        if not response.ok:
            raise AdapterError(
                f"Source request failed ({response.status_code}) {url}: "
                f"{response.text[:200]}",
                AdapterFailure.UNAVAILABLE,
            )
        return response

    def _request_json(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Any:
        response = self._request(path, params)
        try:
            return response.json()
        except ValueError as exc:
            raise AdapterError(
                f"Source returned invalid JSON for {path}",
                AdapterFailure.MALFORMED,
            ) from exc

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _list_documents(self, filter: DocumentFilter) -> list[DocumentSummary]:
        params: dict[str, Any] = {}
        if filter.limit:
            params["limit"] = filter.limit
        if filter.container_id:
            params["folder"] = filter.container_id
        if filter.updated_after:
            params["updated_after"] = filter.updated_after.isoformat()

        rows = _unwrap(self._request_json("/documents", params), _LIST_KEYS)
        summaries = [
            DocumentSummary(
                id=str(row["id"]),
                name=str(row.get("name") or row.get("title") or UNTITLED),
                container_id=_opt_str(row.get("folderId")),
                path=_str_list(row.get("folderPath")),
                last_modified=_timestamp(row.get("updatedAt")),
            )
            for row in rows
            if row.get("id") is not None
        ]
        logger.debug("Listed %d source documents", len(summaries))
        return summaries

    def _get_document(self, document_id: str) -> SourceDocument:
        raw = self._request_json(f"/documents/{quote(document_id, safe='')}")
        if not isinstance(raw, dict):
            raise AdapterError(
                f"Document {document_id}: expected an object",
                AdapterFailure.MALFORMED,
            )
        content = str(raw.get("content") or raw.get("text") or "")
        declared = [
            _media_reference(m)
            for m in raw.get("media") or []
            if isinstance(m, dict)
        ]
        return SourceDocument(
            id=str(raw.get("id") or document_id),
            name=str(raw.get("name") or raw.get("title") or UNTITLED),
            aliases=_str_list(raw.get("aliases")) or [],
            path=_str_list(raw.get("folderPath")) or [],
            container_id=_opt_str(raw.get("folderId")),
            last_modified=_timestamp(raw.get("updatedAt")),
            content=content,
            media=merge_media(declared, extract_media_urls(content)),
            doc_type=_opt_str(raw.get("type")),
        )

    def _list_containers(self) -> list[Container]:
        rows = _unwrap(self._request_json("/folders"), _FOLDER_KEYS)
        return [
            Container(
                id=str(row["id"]),
                name=str(row.get("name") or "Unnamed Folder"),
                parent_id=_opt_str(row.get("parentId")),
                path=_str_list(row.get("path")),
            )
            for row in rows
            if row.get("id") is not None
        ]

    def _fetch_asset(self, ref: MediaReference) -> FetchedAsset:
        candidates: list[str] = []
        if ref.asset_id:
            candidates.append(f"/assets/{quote(ref.asset_id, safe='')}")
        if ref.source_url:
            candidates.append(ref.source_url)
        if not candidates:
            raise AdapterError(
                "Media reference has neither asset id nor URL",
                AdapterFailure.NOT_FOUND,
            )

        response = None
        for candidate in candidates[:-1]:
            try:
                response = self._request(candidate)
                break
            except AdapterError as exc:
                logger.debug("Asset candidate %s failed: %s", candidate, exc)
        if response is None:
            # The last candidate's error propagates
            response = self._request(candidates[-1])
        return FetchedAsset(
            data=response.content,
            content_type=response.headers.get("content-type") or ref.mime_type,
            final_url=response.url,
        )

    # ------------------------------------------------------------------
    # SourceAdapter protocol
    # ------------------------------------------------------------------

    async def list_documents(
        self, filter: DocumentFilter
    ) -> list[DocumentSummary]:
        return await run_sync(self._list_documents, filter)

    async def get_document(self, document_id: str) -> SourceDocument:
        return await run_sync(self._get_document, document_id)

    async def list_containers(self) -> list[Container]:
        return await run_sync(self._list_containers)

    async def fetch_asset(self, ref: MediaReference) -> FetchedAsset:
        return await run_sync(self._fetch_asset, ref)

    async def health_check(self) -> Any:
        """Return the raw ``/health`` payload."""
        return await run_sync(self._request_json, "/health")

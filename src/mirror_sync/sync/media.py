"""Content-addressed media cache.

Assets referenced by source documents are downloaded through the source
adapter and stored as ``<media_dir>/<sha256>.<ext>``.  Because the file
name is derived from the downloaded bytes, identical content fetched from
different URLs (or fetched again later) is stored exactly once.  A
``MediaRecord`` is upserted per asset id, falling back to the checksum when
the source has no stable id.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from ..core.async_utils import run_sync
from ..core.errors import PersistenceError
from ..source.media_refs import extension_for, filename_from_url
from .hashing import sha256_hex
from .models import (
    FetchedAsset,
    MediaBatch,
    MediaFailure,
    MediaRecord,
    MediaReference,
    utc_now,
)

if TYPE_CHECKING:
    from ..adapters import SourceAdapter
    from .state import StateStore

logger = logging.getLogger(__name__)


class MediaCache:
    """Fetch, deduplicate and record media assets.

    Args:
        source: Adapter used to download asset bytes.
        state: Store receiving one ``MediaRecord`` per asset.
        media_dir: Directory holding the content-addressed files.
        public_base_url: When set, records store
            ``<public_base_url>/media/<file>`` instead of the local path.
    """

    def __init__(
        self,
        source: SourceAdapter,
        state: StateStore,
        media_dir: Path,
        public_base_url: str | None = None,
    ) -> None:
        self.source = source
        self.state = state
        self.media_dir = Path(media_dir)
        self.public_base_url = (
            public_base_url.rstrip("/") if public_base_url else None
        )

    async def resolve(self, references: list[MediaReference]) -> MediaBatch:
        """Download and store every resolvable reference, in order.

        References with neither an asset id nor a source URL are skipped.
        A failed download is reported in ``failures`` and does not stop the
        batch; a failed local write raises ``PersistenceError``.
        """
        records: list[MediaRecord] = []
        failures: list[MediaFailure] = []

        for ref in references:
            if not ref.has_locator:
                continue
            try:
                fetched = await self.source.fetch_asset(ref)
            except Exception as exc:
                logger.warning(
                    "Media fetch failed for %s: %s",
                    ref.asset_id or ref.source_url,
                    exc,
                )
                failures.append(
                    MediaFailure(
                        asset_id=ref.asset_id,
                        source_url=ref.source_url,
                        error=str(exc),
                    )
                )
                continue

            record = await run_sync(self._store, ref, fetched)
            records.append(record)

        return MediaBatch(records=records, failures=failures)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def storage_name(
        self, ref: MediaReference, fetched: FetchedAsset, checksum: str
    ) -> str:
        ext = extension_for(
            ref.mime_type or fetched.content_type,
            ref.filename or filename_from_url(ref.source_url),
        )
        return f"{checksum}.{ext}"

    def _store(self, ref: MediaReference, fetched: FetchedAsset) -> MediaRecord:
        checksum = sha256_hex(fetched.data)
        existing = self._cached_file(checksum)
        if existing is not None:
            target = existing
            filename = existing.name
            logger.debug("Media %s already cached", filename)
        else:
            filename = self.storage_name(ref, fetched, checksum)
            target = self.media_dir / filename
            self._write_file(target, fetched.data)
            logger.info(
                "Cached media %s (%d bytes)", filename, len(fetched.data)
            )

        stored_reference = (
            f"{self.public_base_url}/media/{filename}"
            if self.public_base_url
            else str(target)
        )
        record = MediaRecord(
            asset_id=ref.asset_id or checksum,
            source_url=ref.source_url,
            stored_reference=stored_reference,
            checksum=checksum,
            size_bytes=len(fetched.data),
            last_validated_at=utc_now(),
        )
        self.state.upsert_media_record(record)
        return record

    def _cached_file(self, checksum: str) -> Path | None:
        """Return the stored file for *checksum*, whatever its extension."""
        if not self.media_dir.is_dir():
            return None
        for path in sorted(self.media_dir.glob(f"{checksum}.*")):
            if path.is_file():
                return path
        return None

    def _write_file(self, target: Path, data: bytes) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), suffix=".part"
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_path, target)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as exc:
            raise PersistenceError(
                f"Cannot write media file {target}: {exc}"
            ) from exc

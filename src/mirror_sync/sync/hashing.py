"""Content fingerprints and identifier helpers.

``fingerprint()`` hashes exactly the synchronizable fields of a
``SourceDocument``.  The basis is serialised as canonical JSON (sorted keys,
compact separators) so the digest is stable across runs and platforms.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any

from .models import SourceDocument


def sha256_hex(data: str | bytes) -> str:
    """Return the SHA-256 hex digest of *data* (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``run_3f2a...``."""
    return f"{prefix}_{uuid.uuid4()}"


def canonical_json(value: Any) -> str:
    """Serialise *value* deterministically for hashing."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def _timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def fingerprint_basis(document: SourceDocument) -> dict[str, Any]:
    """Return the dict of synchronizable fields that ``fingerprint`` hashes.

    Aliases are sorted because their order carries no meaning; path and
    media keep their order.  Media are reduced to their locator and type.
    """
    return {
        "id": document.id,
        "name": document.name,
        "aliases": sorted(document.aliases),
        "path": list(document.path),
        "last_modified": _timestamp(document.last_modified),
        "content": document.content,
        "media": [
            {
                "asset_id": ref.asset_id,
                "source_url": ref.source_url,
                "filename": ref.filename,
                "mime_type": ref.mime_type,
            }
            for ref in document.media
        ],
    }


def fingerprint(document: SourceDocument) -> str:
    """Compute the content fingerprint of *document* (64 hex chars)."""
    return sha256_hex(canonical_json(fingerprint_basis(document)))

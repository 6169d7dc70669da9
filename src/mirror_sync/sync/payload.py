"""Build the generated-region payload for a destination object.

The payload has three parts:

1. A metadata block of ``Key: value`` lines describing the source.
2. The body, converted from source markup to readable plain text.
3. An optional listing of the media copied into the cache.

It deliberately contains no wall-clock values so that applying the same
source state twice yields the same payload fingerprint.
"""

from __future__ import annotations

import logging
import re

from lxml import etree, html

from .hashing import canonical_json, sha256_hex
from .models import (
    GeneratedRegion,
    MediaListing,
    MediaRecord,
    SourceDocument,
)

logger = logging.getLogger(__name__)

EMPTY_BODY = "(No content)"
NONE_LABEL = "(none)"

_PARAGRAPH_TAGS = {"p", "h1", "h2", "h3", "h4", "h5", "h6"}
_LINE_TAGS = {"div", "li", "tr", "ul", "ol", "blockquote", "pre", "table"}
_SKIP_TAGS = {"script", "style"}

_INLINE_WS = re.compile(r"[ \t\xa0]+")
_BLANK_RUNS = re.compile(r"\n{3,}")
_TAG = re.compile(r"<[^>]*>")


def _walk(el: etree._Element, parts: list[str]) -> None:
    tag = el.tag.lower() if isinstance(el.tag, str) else None
    if tag is not None and tag not in _SKIP_TAGS:
        if tag == "br":
            parts.append("\n")
        elif tag == "li":
            parts.append("- ")
        if el.text:
            parts.append(el.text)
        for child in el:
            _walk(child, parts)
        if tag in _PARAGRAPH_TAGS:
            parts.append("\n\n")
        elif tag in _LINE_TAGS:
            parts.append("\n")
    # Tail text belongs to the parent, so it survives skipped elements.
    if el.tail:
        parts.append(el.tail)


def _normalise(text: str) -> str:
    lines = [
        _INLINE_WS.sub(" ", line).strip()
        for line in text.replace("\r", "").split("\n")
    ]
    return _BLANK_RUNS.sub("\n\n", "\n".join(lines)).strip()


def html_to_text(markup: str | None) -> str:
    """Convert source HTML to readable text.

    Block elements become line breaks, list items are prefixed with
    ``- ``, runs of whitespace collapse and at most one blank line is
    kept.  Returns ``(No content)`` for an empty body.
    """
    if not markup or not markup.strip():
        return EMPTY_BODY
    try:
        root = html.fragment_fromstring(markup, create_parent="div")
    except (etree.ParserError, ValueError) as exc:
        logger.debug("Falling back to tag stripping: %s", exc)
        text = _normalise(_TAG.sub(" ", markup))
        return text or EMPTY_BODY

    parts: list[str] = []
    if root.text:
        parts.append(root.text)
    for child in root:
        _walk(child, parts)
    text = _normalise("".join(parts))
    return text or EMPTY_BODY


def metadata_lines(document: SourceDocument) -> list[str]:
    """Return the ``Key: value`` lines of the metadata block."""
    updated = (
        document.last_modified.isoformat()
        if document.last_modified
        else "unknown"
    )
    return [
        f"Canonical Name: {document.name}",
        f"Source ID: {document.id}",
        f"Source Updated At: {updated}",
        f"Source Path: {' / '.join(document.path) or NONE_LABEL}",
        f"Aliases: {'; '.join(document.aliases) or NONE_LABEL}",
        f"Type: {document.doc_type or 'Source Document'}",
        "Continuity Notes: Auto-generated mirror content. Non-destructive update.",
    ]


def build_region(
    document: SourceDocument,
    media: list[MediaRecord],
    include_media: bool,
) -> GeneratedRegion:
    """Assemble the generated-region payload for *document*."""
    listings = [
        MediaListing(
            asset_id=record.asset_id,
            source_url=record.source_url,
            stored_reference=record.stored_reference,
            checksum=record.checksum,
            size_bytes=record.size_bytes,
        )
        for record in media
    ]
    return GeneratedRegion(
        metadata_lines=metadata_lines(document),
        content_text=html_to_text(document.content),
        media=listings if include_media else [],
        include_media=include_media,
    )


def region_fingerprint(region: GeneratedRegion) -> str:
    """Fingerprint of the payload written to the destination."""
    return sha256_hex(canonical_json(region.model_dump(mode="json")))

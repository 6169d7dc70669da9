"""Media reference helpers.

- ``extract_media_urls`` -- find asset URLs in an HTML body (lxml).
- ``filename_from_url`` -- basename of a URL path.
- ``extension_for`` -- storage extension from MIME type or filename.
"""

from __future__ import annotations

import logging
import posixpath
import re
from urllib.parse import urlparse

from lxml import etree, html

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "bin"

# Checked in order; first substring match wins.
_MIME_EXTENSIONS: list[tuple[str, str]] = [
    ("png", "png"),
    ("jpeg", "jpg"),
    ("jpg", "jpg"),
    ("webp", "webp"),
    ("gif", "gif"),
    ("svg", "svg"),
    ("pdf", "pdf"),
    ("mpeg", "mp3"),
    ("ogg", "ogg"),
    ("wav", "wav"),
    ("webm", "webm"),
    ("mp4", "mp4"),
]

_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)
_EXTENSION = re.compile(r"^[a-z0-9]{1,8}$")


def _is_media_locator(value: str) -> bool:
    if not value or value.startswith("data:"):
        return False
    return bool(_HTTP_URL.match(value)) or value.startswith("/")


def extract_media_urls(body: str) -> list[str]:
    """Return unique ``src``/``href`` URLs in *body*, in document order.

    Only absolute http(s) URLs and root-relative paths are kept; inline
    ``data:`` URIs and relative links are ignored.
    """
    if not body or not body.strip():
        return []
    try:
        tree = html.fragment_fromstring(body, create_parent="div")
    except (etree.ParserError, ValueError) as exc:
        logger.debug("Cannot parse body for media URLs: %s", exc)
        return []

    urls: list[str] = []
    for value in tree.xpath("//@src | //@href"):
        url = str(value).strip()
        if _is_media_locator(url) and url not in urls:
            urls.append(url)
    return urls


def filename_from_url(url: str) -> str:
    """Return the last path segment of *url* (query and fragment dropped)."""
    if not url:
        return ""
    return posixpath.basename(urlparse(url).path)


def _extension_from_mime(mime_type: str | None) -> str | None:
    if not mime_type:
        return None
    mime = mime_type.split(";", 1)[0].strip().lower()
    for needle, ext in _MIME_EXTENSIONS:
        if needle in mime:
            return ext
    return None


def _extension_from_name(filename: str | None) -> str | None:
    if not filename or "." not in filename:
        return None
    ext = filename.rsplit(".", 1)[-1].lower()
    return ext if _EXTENSION.match(ext) else None


def extension_for(
    mime_type: str | None = None, filename: str | None = None
) -> str:
    """Best-guess storage extension.

    The declared MIME type wins, then the filename extension, then
    ``bin``.
    """
    return (
        _extension_from_mime(mime_type)
        or _extension_from_name(filename)
        or DEFAULT_EXTENSION
    )

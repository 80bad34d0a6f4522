"""
Caller-facing response headers for both delivery modes.
"""

import re
from enum import Enum
from typing import Dict, Optional

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")

CACHE_CONTROL = "private, no-store"


class DeliveryMode(str, Enum):
    """How the fetched extension is handed to the caller."""

    RAW = "raw"
    ARCHIVE = "archive"

    @property
    def media_type(self) -> str:
        if self is DeliveryMode.RAW:
            return "application/x-chrome-extension"
        return "application/zip"

    @property
    def extension(self) -> str:
        return "crx" if self is DeliveryMode.RAW else "zip"


def sanitize_display_name(name: Optional[str], max_length: Optional[int] = None) -> str:
    """Lowercase ``name`` and collapse every non-alphanumeric run to one hyphen.

    Leading and trailing hyphens are trimmed, so whitespace-only or
    punctuation-only input becomes the empty string.
    """
    if not name:
        return ""
    if max_length is not None:
        name = name[:max_length]
    return _NON_ALNUM_RUN.sub("-", name.lower()).strip("-")


def build_filename(extension_id: str, mode: DeliveryMode, name: Optional[str] = None,
                   max_name_length: Optional[int] = None) -> str:
    prefix = sanitize_display_name(name, max_name_length)
    stem = f"{prefix}-{extension_id}" if prefix else extension_id
    return f"{stem}.{mode.extension}"


def build_headers(
    extension_id: str,
    mode: DeliveryMode,
    name: Optional[str] = None,
    content_length: Optional[int] = None,
    max_name_length: Optional[int] = None,
) -> Dict[str, str]:
    """Assemble content type, disposition, caching and length headers."""
    filename = build_filename(extension_id, mode, name, max_name_length)
    headers = {
        "Content-Type": mode.media_type,
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Cache-Control": CACHE_CONTROL,
    }
    if content_length is not None and content_length > 0:
        headers["Content-Length"] = str(content_length)
    return headers

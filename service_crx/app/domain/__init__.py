"""
Domain logic for the fetch proxy.

Identifier validation, CRX container parsing and response headers are
pure. ``domain.pipeline`` ties them to the rate limiter and the upstream
client; import it directly, it is not re-exported here because it depends
on the adapters package.
"""

from .container import CrxHeaderV2, CrxHeaderV3, read_header, strip_container
from .identifiers import normalize_extension_id
from .responses import DeliveryMode, build_filename, build_headers, sanitize_display_name

__all__ = [
    "CrxHeaderV2",
    "CrxHeaderV3",
    "DeliveryMode",
    "build_filename",
    "build_headers",
    "normalize_extension_id",
    "read_header",
    "sanitize_display_name",
    "strip_container",
]

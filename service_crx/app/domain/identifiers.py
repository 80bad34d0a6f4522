"""
Chrome extension identifier validation.
"""

import re

from .errors import InvalidIdentifier

# Ids are 32 characters drawn from a-p in practice; any ASCII letter is accepted
_EXTENSION_ID_RE = re.compile(r"[a-zA-Z]{32}")


def normalize_extension_id(value: str) -> str:
    """Return ``value`` lowercased if it is a valid extension id.

    Raises :class:`InvalidIdentifier` otherwise. Runs before any rate-limit
    or network work, so it must stay free of side effects.
    """
    if not isinstance(value, str) or not _EXTENSION_ID_RE.fullmatch(value):
        raise InvalidIdentifier(value if isinstance(value, str) else "")
    return value.lower()


def is_valid_extension_id(value: str) -> bool:
    try:
        normalize_extension_id(value)
    except InvalidIdentifier:
        return False
    return True

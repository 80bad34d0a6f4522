"""
CRX container parsing.

A CRX file is a ZIP archive behind a small signed header:

    CRX3: "Cr24" | u32 version=3 | u32 header_len | header | zip
    CRX2: "Cr24" | u32 version=2 | u32 pubkey_len | u32 sig_len | pubkey | sig | zip

All integers are little-endian. Signatures are not verified here; the
parser only finds where the archive starts.
"""

import struct
from dataclasses import dataclass
from typing import Optional, Union

from .errors import TruncatedContainer, UnrecognizedFormat, UnsupportedContainerVersion

CRX_MAGIC = b"Cr24"
ZIP_LOCAL_FILE_HEADER = b"PK\x03\x04"

# How far into a headerless buffer to look for the first ZIP local file header.
DEFAULT_SCAN_WINDOW = 1024

_U32 = struct.Struct("<I")


@dataclass(frozen=True)
class CrxHeaderV3:
    header_length: int
    format_version: int = 3

    @property
    def payload_offset(self) -> int:
        return 12 + self.header_length


@dataclass(frozen=True)
class CrxHeaderV2:
    public_key_length: int
    signature_length: int
    format_version: int = 2

    @property
    def payload_offset(self) -> int:
        return 16 + self.public_key_length + self.signature_length


ContainerHeader = Union[CrxHeaderV3, CrxHeaderV2]


def _read_u32(view: memoryview, offset: int) -> int:
    if offset + _U32.size > len(view):
        raise TruncatedContainer(required=offset + _U32.size, available=len(view))
    return _U32.unpack_from(view, offset)[0]


def read_header(buffer) -> Optional[ContainerHeader]:
    """Decode the container header, or return ``None`` when the magic is absent.

    A missing magic is not an error: the input may already be a bare archive.
    """
    view = memoryview(buffer)
    if bytes(view[:len(CRX_MAGIC)]) != CRX_MAGIC:
        return None

    version = _read_u32(view, 4)
    if version == 3:
        return CrxHeaderV3(header_length=_read_u32(view, 8))
    if version == 2:
        return CrxHeaderV2(
            public_key_length=_read_u32(view, 8),
            signature_length=_read_u32(view, 12),
        )
    raise UnsupportedContainerVersion(version)


def find_archive_start(buffer, scan_window: int = DEFAULT_SCAN_WINDOW) -> Optional[int]:
    """Offset of the first ZIP local file header within ``scan_window`` bytes."""
    head = bytes(memoryview(buffer)[:scan_window])
    offset = head.find(ZIP_LOCAL_FILE_HEADER)
    return offset if offset >= 0 else None


def strip_container(buffer, scan_window: int = DEFAULT_SCAN_WINDOW) -> memoryview:
    """Return a view of the ZIP archive embedded in ``buffer``.

    The result shares memory with ``buffer``; nothing after the header is
    copied. Raises a :class:`ContainerParseError` subclass when no archive
    can be located.
    """
    view = memoryview(buffer)
    header = read_header(view)

    if header is not None:
        offset = header.payload_offset
        if offset >= len(view):
            raise TruncatedContainer(required=offset + 1, available=len(view))
        return view[offset:]

    offset = find_archive_start(view, scan_window)
    if offset is None:
        raise UnrecognizedFormat(scanned=min(scan_window, len(view)))
    return view[offset:]

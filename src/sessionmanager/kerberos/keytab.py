"""
Keytab Reader

Extracts principal names from MIT-format keytab files. Stateless; used to
discover the gateway's own service identity, not tied to any session.

File layout (version 0x0502, big-endian):

    uint8   0x05
    uint8   version (0x01 or 0x02)
    entry*  where each entry is
        int32   size        (negative: hole of -size bytes to skip)
        uint16  num_components   (v1 counts the realm too)
        counted_string realm
        counted_string component[num_components]
        uint32  name_type   (v2 only)
        uint32  timestamp
        uint8   kvno
        uint16  enctype
        counted_string key
        [uint32 kvno]       (optional, if space remains in the entry)

counted_string is a uint16 length followed by that many bytes. Version 1
files use the writer's native byte order.
"""

from __future__ import annotations

import struct
from typing import List, Optional

import attrs
import structlog

logger = structlog.get_logger()


KEYTAB_MAGIC = 0x05
KEYTAB_V1 = 0x01
KEYTAB_V2 = 0x02


class KeytabFormatError(ValueError):
    """Keytab bytes do not follow the MIT keytab layout."""

    pass


@attrs.define(frozen=True, slots=True)
class KeytabEntry:
    """One key entry from a keytab file."""

    realm: str
    components: tuple
    name_type: Optional[int]
    timestamp: int
    kvno: int
    enctype: int

    @property
    def principal(self) -> str:
        return "/".join(self.components) + "@" + self.realm


@attrs.define
class _Reader:
    data: bytes
    order: str
    offset: int = 0

    def take(self, fmt: str) -> int:
        full = self.order + fmt
        size = struct.calcsize(full)
        if self.offset + size > len(self.data):
            raise KeytabFormatError(f"Truncated keytab at offset {self.offset}")
        (value,) = struct.unpack_from(full, self.data, self.offset)
        self.offset += size
        return value

    def counted(self) -> bytes:
        length = self.take("H")
        end = self.offset + length
        if end > len(self.data):
            raise KeytabFormatError(f"Truncated string at offset {self.offset}")
        value = self.data[self.offset:end]
        self.offset = end
        return value


def decode_keytab(data: bytes) -> List[KeytabEntry]:
    """
    Decode all entries of an in-memory keytab.

    Raises:
        KeytabFormatError: If the bytes are not a valid keytab
    """
    if len(data) < 2 or data[0] != KEYTAB_MAGIC:
        raise KeytabFormatError("Missing keytab magic byte 0x05")

    version = data[1]
    if version == KEYTAB_V2:
        order = ">"
    elif version == KEYTAB_V1:
        order = "="
    else:
        raise KeytabFormatError(f"Unsupported keytab version 0x05{version:02x}")

    reader = _Reader(data=data, order=order, offset=2)
    entries: List[KeytabEntry] = []

    # Fewer than four bytes left cannot hold another entry
    while len(data) - reader.offset >= 4:
        size = reader.take("i")
        if size == 0:
            break
        if size < 0:
            # Hole left by a deleted entry
            reader.offset += -size
            continue

        entry_end = reader.offset + size
        if entry_end > len(data):
            raise KeytabFormatError(f"Entry overruns file at offset {reader.offset}")

        num_components = reader.take("H")
        if version == KEYTAB_V1:
            num_components -= 1

        realm = reader.counted().decode("utf-8")
        components = tuple(
            reader.counted().decode("utf-8") for _ in range(num_components)
        )
        name_type = reader.take("I") if version == KEYTAB_V2 else None
        timestamp = reader.take("I")
        kvno = reader.take("B")
        enctype = reader.take("H")
        reader.counted()  # key material is never kept

        if entry_end - reader.offset >= 4:
            kvno = reader.take("I")

        if not realm or not components:
            raise KeytabFormatError("Entry has an empty principal")

        entries.append(
            KeytabEntry(
                realm=realm,
                components=components,
                name_type=name_type,
                timestamp=timestamp,
                kvno=kvno,
                enctype=enctype,
            )
        )
        reader.offset = entry_end

    return entries


def read_keytab_entries(path: str) -> List[KeytabEntry]:
    """
    Read every entry from the keytab at `path`.

    Raises:
        OSError: If the file cannot be read
        KeytabFormatError: If the file is not a valid keytab
    """
    with open(path, "rb") as f:
        return decode_keytab(f.read())


def parse_keytab(path: Optional[str]) -> Optional[str]:
    """
    Principal name of the first entry in a keytab.

    Args:
        path: Keytab file path

    Returns:
        "component/component@REALM" on success, None otherwise
    """
    if not path:
        return None

    try:
        entries = read_keytab_entries(path)
    except (OSError, UnicodeDecodeError, KeytabFormatError) as e:
        logger.warning("keytab_parse_failed", keytab=path, error=str(e))
        return None

    if not entries:
        logger.warning("keytab_empty", keytab=path)
        return None

    principal = entries[0].principal
    logger.debug("keytab_parsed", keytab=path, principal=principal, entries=len(entries))
    return principal

"""
Unit tests for sessionmanager.kerberos.keytab module.

Keytabs are built byte by byte in the MIT layout.
"""

import struct

import pytest

from sessionmanager.kerberos.keytab import (
    KeytabFormatError,
    decode_keytab,
    parse_keytab,
    read_keytab_entries,
)


def _counted(value, order: str) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8")
    return struct.pack(order + "H", len(value)) + value


def keytab_entry(
    components,
    realm: str = "EXAMPLE.COM",
    version: int = 2,
    kvno: int = 3,
    kvno32=None,
) -> bytes:
    order = ">" if version == 2 else "="
    count = len(components) + (1 if version == 1 else 0)

    body = struct.pack(order + "H", count) + _counted(realm, order)
    for component in components:
        body += _counted(component, order)
    if version == 2:
        body += struct.pack(order + "I", 1)  # KRB5_NT_PRINCIPAL
    body += struct.pack(order + "IBH", 1700000000, kvno, 18)
    body += _counted(b"\x00" * 32, order)
    if kvno32 is not None:
        body += struct.pack(order + "I", kvno32)

    return struct.pack(order + "i", len(body)) + body


def build_keytab(*entries: bytes, version: int = 2) -> bytes:
    return bytes([0x05, version]) + b"".join(entries)


@pytest.fixture
def write_keytab(tmp_path):
    """Write keytab bytes to a file and return its path."""

    def _write(data: bytes, name: str = "test.keytab") -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)

    return _write


class TestParseKeytab:
    """Tests for parse_keytab."""

    def test_service_principal(self, write_keytab):
        """Test a v2 keytab yields its principal."""
        path = write_keytab(build_keytab(keytab_entry(["HTTP", "gw.example.com"])))
        assert parse_keytab(path) == "HTTP/gw.example.com@EXAMPLE.COM"

    def test_first_entry_wins(self, write_keytab):
        """Test the first entry is reported when several exist."""
        path = write_keytab(
            build_keytab(
                keytab_entry(["HTTP", "gw.example.com"]),
                keytab_entry(["host", "gw.example.com"]),
            )
        )
        assert parse_keytab(path) == "HTTP/gw.example.com@EXAMPLE.COM"

    def test_version_one(self, write_keytab):
        """Test a v1 keytab in native byte order."""
        path = write_keytab(
            build_keytab(keytab_entry(["HTTP", "gw.example.com"], version=1), version=1)
        )
        assert parse_keytab(path) == "HTTP/gw.example.com@EXAMPLE.COM"

    def test_hole_skipped(self, write_keytab):
        """Test deleted-entry holes are skipped."""
        hole = struct.pack(">i", -12) + b"\x00" * 12
        path = write_keytab(build_keytab(hole, keytab_entry(["HTTP", "gw.example.com"])))
        assert parse_keytab(path) == "HTTP/gw.example.com@EXAMPLE.COM"

    @pytest.mark.parametrize("tail", [b"\x00", b"\x00\x00", b"\xff\xff\xff"])
    def test_short_trailing_bytes_ignored(self, write_keytab, tail):
        """Test padding too short for another entry does not hide the first."""
        path = write_keytab(build_keytab(keytab_entry(["HTTP", "gw.example.com"])) + tail)
        assert parse_keytab(path) == "HTTP/gw.example.com@EXAMPLE.COM"

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\x05",
            b"\x06\x02",
            b"\x05\x03",
            build_keytab(keytab_entry(["HTTP", "gw.example.com"]))[:-10],
        ],
        ids=["empty", "short", "bad_magic", "bad_version", "truncated"],
    )
    def test_malformed(self, write_keytab, data):
        """Test malformed files give None."""
        assert parse_keytab(write_keytab(data)) is None

    def test_no_entries(self, write_keytab):
        """Test a header-only keytab gives None."""
        assert parse_keytab(write_keytab(build_keytab())) is None

    def test_missing_file(self, tmp_path):
        """Test a missing file gives None."""
        assert parse_keytab(str(tmp_path / "absent.keytab")) is None

    @pytest.mark.parametrize("path", [None, ""])
    def test_no_path(self, path):
        """Test an empty path gives None."""
        assert parse_keytab(path) is None


class TestDecodeKeytab:
    """Tests for the entry decoder."""

    def test_entry_fields(self):
        """Test entry metadata is decoded."""
        [entry] = decode_keytab(build_keytab(keytab_entry(["HTTP", "gw.example.com"])))

        assert entry.realm == "EXAMPLE.COM"
        assert entry.components == ("HTTP", "gw.example.com")
        assert entry.name_type == 1
        assert entry.kvno == 3
        assert entry.enctype == 18

    def test_extended_kvno(self):
        """Test the trailing 32-bit kvno overrides the 8-bit one."""
        [entry] = decode_keytab(
            build_keytab(keytab_entry(["HTTP", "gw.example.com"], kvno=44, kvno32=300))
        )
        assert entry.kvno == 300

    def test_trailing_bytes_keep_entries(self):
        """Test every complete entry is returned despite a short tail."""
        entries = decode_keytab(
            build_keytab(
                keytab_entry(["HTTP", "gw.example.com"]),
                keytab_entry(["host", "gw.example.com"]),
            )
            + b"\x00\x00"
        )
        assert [e.principal for e in entries] == [
            "HTTP/gw.example.com@EXAMPLE.COM",
            "host/gw.example.com@EXAMPLE.COM",
        ]

    def test_bad_magic_raises(self):
        """Test the decoder raises on a non-keytab."""
        with pytest.raises(KeytabFormatError):
            decode_keytab(b"\x00\x02")

    def test_read_entries(self, write_keytab):
        """Test reading every entry from disk."""
        path = write_keytab(
            build_keytab(
                keytab_entry(["HTTP", "gw.example.com"]),
                keytab_entry(["host", "gw.example.com"], realm="OTHER.COM"),
            )
        )
        principals = [e.principal for e in read_keytab_entries(path)]
        assert principals == [
            "HTTP/gw.example.com@EXAMPLE.COM",
            "host/gw.example.com@OTHER.COM",
        ]

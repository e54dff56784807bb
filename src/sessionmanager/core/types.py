"""
SessionManager Core Types

Value and identity types shared by the session store and the Kerberos
delegation subsystem.

Design Principles:
- Immutable: value objects use frozen attrs
- Validated: type constraints enforced at construction
- One storage type: text and binary values are the same tagged bytes
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Optional

import attrs
from attrs import field, validators


TEXT_ENCODING = "utf-8"


# =============================================================================
# IDENTITY TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class Realm:
    """
    Kerberos realm / Windows domain.

    INVARIANT: name is uppercase per convention
    """

    name: str = field(validator=validators.instance_of(str))

    def __attrs_post_init__(self) -> None:
        # Enforce uppercase for realm names (Kerberos convention)
        if self.name != self.name.upper():
            object.__setattr__(self, "name", self.name.upper())

    def __str__(self) -> str:
        return self.name


@attrs.define(frozen=True, slots=True)
class Principal:
    """
    Kerberos principal.

    Format: name@realm (e.g., user@CORP.CONTOSO.COM)

    INVARIANT: name and realm are non-empty
    """

    name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    realm: Realm = field(validator=validators.instance_of(Realm))

    @classmethod
    def from_string(cls, principal_str: str) -> Principal:
        """
        Parse principal from string format.

        Examples:
            "user@REALM.COM" -> Principal(name="user", realm=Realm("REALM.COM"))
            "HTTP/gw.realm.com@REALM.COM" -> Principal(name="HTTP/gw.realm.com", ...)
        """
        if "@" not in principal_str:
            raise ValueError(f"Invalid principal format: {principal_str}")

        # Split on last @ to handle names with @ in them
        at_pos = principal_str.rfind("@")
        name = principal_str[:at_pos]
        realm = principal_str[at_pos + 1 :]
        if not realm:
            raise ValueError(f"Invalid principal format: {principal_str}")

        return cls(name=name, realm=Realm(realm))

    def __str__(self) -> str:
        return f"{self.name}@{self.realm}"


@attrs.define(frozen=True, slots=True)
class KerberosId:
    """
    Delegated Kerberos identity stored in a session.

    An opaque identity, not a credential: the ticket-granting material
    lives in the session's credential cache file.
    """

    principal: Principal = field(validator=validators.instance_of(Principal))

    @classmethod
    def from_string(cls, principal_str: str) -> KerberosId:
        return cls(principal=Principal.from_string(principal_str))

    @property
    def name(self) -> str:
        return str(self.principal)

    def __str__(self) -> str:
        return str(self.principal)


# =============================================================================
# SESSION VALUES
# =============================================================================


class ValueKind(Enum):
    """How the caller serialized a stored value."""

    TEXT = auto()
    BINARY = auto()


@attrs.define(frozen=True, slots=True)
class SessionValue:
    """
    Tagged byte-sequence value held under one session key.

    Text and binary accessors share this single representation; text is
    stored UTF-8 encoded, with lone surrogates kept as their three-byte
    form so any Python str reads back unchanged.
    """

    kind: ValueKind = field(validator=validators.instance_of(ValueKind))
    data: bytes = field(validator=validators.instance_of(bytes), repr=False)

    @classmethod
    def from_text(cls, value: Optional[str]) -> SessionValue:
        """Wrap a text value; None is recorded as an empty value."""
        if value is None:
            value = ""
        return cls(kind=ValueKind.TEXT, data=value.encode(TEXT_ENCODING, errors="surrogatepass"))

    @classmethod
    def from_bytes(cls, value: Optional[bytes]) -> SessionValue:
        """Wrap a binary value; None is recorded as an empty value."""
        if value is None:
            value = b""
        return cls(kind=ValueKind.BINARY, data=bytes(value))

    def as_text(self) -> str:
        if self.kind is ValueKind.TEXT:
            return self.data.decode(TEXT_ENCODING, errors="surrogatepass")
        return self.data.decode(TEXT_ENCODING, errors="replace")

    def as_bytes(self) -> bytes:
        return self.data

    def __len__(self) -> int:
        return len(self.data)


# =============================================================================
# TICKET TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class KeyMaterial:
    """
    Base64-encoded service ticket for one backend server.

    Ephemeral: handed back to the caller and cached in memory for reuse
    until close to expiry, never written to disk.

    INVARIANT: expires_at > issued_at
    """

    server: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    token: str = field(validator=validators.instance_of(str), repr=False)
    issued_at: datetime = field(factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = field()

    @expires_at.default
    def _default_expires_at(self) -> datetime:
        return self.issued_at + timedelta(hours=10)

    def __attrs_post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be after issued_at")

    def is_valid_at(
        self,
        time: Optional[datetime] = None,
        margin: timedelta = timedelta(0),
    ) -> bool:
        """Check the ticket stays valid for at least `margin` past `time`."""
        if time is None:
            time = datetime.now(timezone.utc)
        return self.issued_at <= time and time + margin < self.expires_at

    def __str__(self) -> str:
        return self.token

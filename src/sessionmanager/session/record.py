"""
Session record: the per-user state held between requests.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Optional

import attrs

from sessionmanager.core.types import SessionValue

if TYPE_CHECKING:
    from sessionmanager.kerberos.types import KerberosContext


@attrs.define(eq=False)
class SessionRecord:
    """
    One live session.

    All mutation happens under `lock`. `last_access` is on the store's
    monotonic clock and only ever moves forward. Once `deleted` is set the
    record is unreachable and every later operation reports
    SessionNotFound.
    """

    session_id: str
    created_mono: float
    last_access: float
    created_at: datetime = attrs.Factory(lambda: datetime.now(timezone.utc))
    values: Dict[str, SessionValue] = attrs.Factory(dict)
    kerberos: Optional["KerberosContext"] = None
    deleted: bool = False
    lock: threading.RLock = attrs.field(factory=threading.RLock, repr=False)

    def touch(self, now: float) -> None:
        if now > self.last_access:
            self.last_access = now

    @property
    def short_id(self) -> str:
        """Identifier prefix safe to write to logs."""
        return self.session_id[:8]

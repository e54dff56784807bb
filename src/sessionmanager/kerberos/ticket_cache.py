"""
Kerberos Service Ticket Cache

Per-session reuse of issued service tickets.

Tickets are keyed by target server name and handed out again while they
remain valid for longer than the renewal margin. Entries live only in
memory and die with their owning KerberosContext.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import attrs
import structlog

from sessionmanager.core.types import KeyMaterial

logger = structlog.get_logger()


@attrs.define
class ServiceTicketCache:
    """
    Cache of issued KeyMaterial, one entry per target server.

    Thread-safe; the delegation manager already serializes access per
    session, but ticket issuance workers may race a destroy.

    Example:
        cache = ServiceTicketCache(renew_margin=timedelta(minutes=5))

        ticket = cache.get_valid("files.example.com")
        if ticket is None:
            ticket = issue(...)
            cache.put(ticket)
    """

    # Tickets closer than this to expiry are treated as missing
    renew_margin: timedelta = timedelta(minutes=5)

    # Maximum cache entries before cleanup
    max_entries: int = 256

    # Internal state
    _cache: Dict[str, KeyMaterial] = attrs.Factory(dict)
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    def get_valid(self, server: str, now: Optional[datetime] = None) -> Optional[KeyMaterial]:
        """
        Return a cached ticket for `server` if it is still usable.

        Args:
            server: Target server name
            now: Reference time (default: now)

        Returns:
            KeyMaterial valid beyond the renewal margin, or None
        """
        if now is None:
            now = datetime.now(timezone.utc)

        with self._lock:
            ticket = self._cache.get(server)
            if ticket is None:
                return None

            if not ticket.is_valid_at(now, self.renew_margin):
                del self._cache[server]
                self._logger.debug(
                    "ticket_cache_stale",
                    server=server,
                    expires_at=ticket.expires_at.isoformat(),
                )
                return None

            return ticket

    def put(self, ticket: KeyMaterial) -> None:
        """Store (or replace) the ticket for its server."""
        now = datetime.now(timezone.utc)

        with self._lock:
            self._cache[ticket.server] = ticket

            if len(self._cache) > self.max_entries:
                self._cleanup_expired_locked(now)

            self._logger.debug(
                "ticket_cached",
                server=ticket.server,
                expires_at=ticket.expires_at.isoformat(),
                cache_size=len(self._cache),
            )

    def cleanup_expired(self) -> int:
        """
        Remove tickets that are expired or inside the renewal margin.

        Returns:
            Number of entries removed
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            return self._cleanup_expired_locked(now)

    def _cleanup_expired_locked(self, now: datetime) -> int:
        """Internal cleanup (must hold lock)."""
        expired = [
            server for server, ticket in self._cache.items()
            if not ticket.is_valid_at(now, self.renew_margin)
        ]

        for server in expired:
            del self._cache[server]

        if expired:
            self._logger.debug(
                "ticket_cache_cleanup",
                removed=len(expired),
                remaining=len(self._cache),
            )

        return len(expired)

    def clear(self) -> int:
        """
        Drop all cached tickets.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    @property
    def size(self) -> int:
        """Current number of cached tickets."""
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, int]:
        """Get cache statistics."""
        with self._lock:
            return {
                "size": len(self._cache),
                "max_entries": self.max_entries,
                "renew_margin_seconds": int(self.renew_margin.total_seconds()),
            }

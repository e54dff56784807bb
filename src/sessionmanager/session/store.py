"""
SessionManager Session Store

Server-side key/value state keyed by an unguessable session identifier.

The identifier is meant to live in a browser cookie; every value stays on
the server. Each session holds any number of key/value pairs, readable as
text or bytes over one shared representation.

Locking:
- Each SessionRecord has its own lock; unrelated sessions never block
  each other.
- The backend's store-wide lock is taken only for the map edit on create
  and delete, and to snapshot timestamps for the reaper.

Key names form one flat namespace per session. Independent callers avoid
collisions by prefixing keys with their module name; the store does not
check.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Iterator, List, Optional, Tuple

import attrs
import structlog

from sessionmanager.core.exceptions import BackendUnavailable, SessionNotFound
from sessionmanager.core.types import SessionValue
from sessionmanager.session.backend import InMemorySessionBackend, SessionBackend
from sessionmanager.session.ids import IdentifierGenerator
from sessionmanager.session.record import SessionRecord

logger = structlog.get_logger()


# Bound on insert retries when a fresh id loses a race with another insert
MAX_INSERT_ATTEMPTS = 8


@attrs.define
class SessionStore:
    """
    Owner of every SessionRecord.

    Example:
        store = SessionStore(backend=InMemorySessionBackend())

        sid = store.create_session()
        store.set_value(sid, "myapp.user", "jdoe")
        assert store.get_value(sid, "myapp.user") == "jdoe"

        store.delete_session(sid)
        store.session_exists(sid)  # False
    """

    backend: SessionBackend = attrs.Factory(InMemorySessionBackend)
    generator: IdentifierGenerator = attrs.Factory(IdentifierGenerator)
    clock: Callable[[], float] = time.monotonic

    # Contexts whose ccache removal failed after their record was unlinked
    _orphans: List[Any] = attrs.Factory(list)
    _closed: bool = False
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    # -------------------------------------------------------------------------
    # Record access
    # -------------------------------------------------------------------------

    def _lookup(self, session_id: Optional[str]) -> SessionRecord:
        if not isinstance(session_id, str):
            raise SessionNotFound(session_id)
        record = self.backend.get(session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return record

    @contextmanager
    def with_record(self, session_id: Optional[str]) -> Iterator[SessionRecord]:
        """
        Hold the live record's lock for the duration of the block.

        On normal exit the record's last-access time is refreshed.

        Raises:
            SessionNotFound: If the session is unknown or was deleted
                while waiting for the lock
        """
        record = self._lookup(session_id)
        with record.lock:
            if record.deleted:
                raise SessionNotFound(session_id)
            yield record
            record.touch(self.clock())

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def session_exists(self, session_id: Optional[str]) -> bool:
        """True iff a live record exists. Never raises; does not touch."""
        if not isinstance(session_id, str):
            return False
        record = self.backend.get(session_id)
        return record is not None and not record.deleted

    def key_exists(self, session_id: str, key: Optional[str]) -> bool:
        """
        True iff `key` currently has a value in the session.

        Raises:
            SessionNotFound: If the session is unknown
        """
        with self.with_record(session_id) as record:
            return key is not None and key in record.values

    def session_age(self, session_id: str) -> timedelta:
        """
        Elapsed time since the session was created.

        Raises:
            SessionNotFound: If the session is unknown
        """
        with self.with_record(session_id) as record:
            return timedelta(seconds=max(0.0, self.clock() - record.created_mono))

    def idle_candidates(self, max_idle: float) -> List[Tuple[str, float]]:
        """
        Sessions idle longer than `max_idle` seconds.

        Returns (identifier, observed last_access) pairs from one consistent
        snapshot, for use with delete_if_idle().
        """
        now = self.clock()
        return [
            (sid, last_access)
            for sid, last_access in self.backend.snapshot_last_access()
            if now - last_access > max_idle
        ]

    def __len__(self) -> int:
        return len(self.backend)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_session(self) -> str:
        """
        Allocate an empty session and return its identifier.

        Raises:
            BackendUnavailable: If the store is closed, full, or cannot
                find an unused identifier
        """
        if self._closed:
            raise BackendUnavailable("Session store is closed")

        for _ in range(MAX_INSERT_ATTEMPTS):
            session_id = self.generator.generate(self.backend.contains)
            now = self.clock()
            record = SessionRecord(
                session_id=session_id,
                created_mono=now,
                last_access=now,
            )
            if self.backend.insert(record):
                self._logger.info("session_created", session=record.short_id)
                return session_id

            self._logger.warning("session_id_insert_race", session=record.short_id)

        raise BackendUnavailable("Could not insert a new session")

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def set_value(self, session_id: str, key: str, value: Optional[str]) -> None:
        """
        Set `key` to a text value; None is recorded as an empty value.

        Raises:
            ValueError: If key is None
            SessionNotFound: If the session is unknown
        """
        self._set(session_id, key, SessionValue.from_text(value))

    def set_value_bin(self, session_id: str, key: str, value: Optional[bytes]) -> None:
        """
        Set `key` to a binary value; None is recorded as an empty value.

        Raises:
            ValueError: If key is None
            SessionNotFound: If the session is unknown
        """
        self._set(session_id, key, SessionValue.from_bytes(value))

    def get_value(self, session_id: str, key: Optional[str]) -> Optional[str]:
        """
        Text value for `key`, or None if never set or key is None.

        Raises:
            SessionNotFound: If the session is unknown
        """
        value = self._get(session_id, key)
        return None if value is None else value.as_text()

    def get_value_bin(self, session_id: str, key: Optional[str]) -> Optional[bytes]:
        """
        Binary value for `key`, or None if never set or key is None.

        Raises:
            SessionNotFound: If the session is unknown
        """
        value = self._get(session_id, key)
        return None if value is None else value.as_bytes()

    def _set(self, session_id: str, key: str, value: SessionValue) -> None:
        if key is None:
            raise ValueError("Session key must not be None")
        with self.with_record(session_id) as record:
            record.values[key] = value

    def _get(self, session_id: str, key: Optional[str]) -> Optional[SessionValue]:
        with self.with_record(session_id) as record:
            if key is None:
                return None
            return record.values.get(key)

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    def delete_session(self, session_id: str) -> None:
        """
        Remove the session and destroy its Kerberos context.

        Raises:
            SessionNotFound: If the session is unknown
            BackendUnavailable: If the session's credential cache could not
                be removed; the session itself is already gone
        """
        record = self._lookup(session_id)
        with record.lock:
            if record.deleted:
                raise SessionNotFound(session_id)
            self._destroy_locked(record, reason="deleted")

    def delete_if_idle(self, session_id: str, observed_last_access: float) -> bool:
        """
        Delete the session only if it was not accessed since observed.

        Returns:
            True if deleted; False if it is gone already or was touched
            after `observed_last_access` was read

        Raises:
            BackendUnavailable: As for delete_session
        """
        record = self.backend.get(session_id)
        if record is None:
            return False

        with record.lock:
            if record.deleted:
                return False
            if record.last_access != observed_last_access:
                self._logger.debug(
                    "session_reap_aborted",
                    session=record.short_id,
                    reason="accessed_since_scan",
                )
                return False
            self._destroy_locked(record, reason="expired")
            return True

    def _destroy_locked(self, record: SessionRecord, reason: str) -> None:
        """Unlink and tear down a record (must hold record.lock)."""
        record.deleted = True
        self.backend.remove(record.session_id, record)
        record.values.clear()

        context, record.kerberos = record.kerberos, None
        if context is not None:
            try:
                context.destroy(reason)
            except BackendUnavailable:
                self._orphans.append(context)
                self._logger.error(
                    "session_delete_incomplete",
                    session=record.short_id,
                    reason=reason,
                )
                raise

        self._logger.info("session_deleted", session=record.short_id, reason=reason)

    def adopt_orphan(self, context: Any) -> None:
        """Keep a context whose ccache removal failed, for retry on close()."""
        self._orphans.append(context)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Delete every session, retry failed ccache removals, close the backend.

        Raises:
            BackendUnavailable: If any credential cache could not be removed
        """
        self._closed = True

        for session_id in self.backend.ids():
            try:
                self.delete_session(session_id)
            except SessionNotFound:
                continue
            except BackendUnavailable:
                continue

        still_orphaned = []
        for context in self._orphans:
            try:
                context.destroy("shutdown")
            except BackendUnavailable:
                still_orphaned.append(context)
        self._orphans = still_orphaned
        failures = len(still_orphaned)

        self.backend.close()
        self._logger.info("session_store_closed", orphaned_ccaches=failures)

        if failures:
            raise BackendUnavailable(
                f"{failures} credential cache(s) could not be removed at shutdown"
            )

    @property
    def closed(self) -> bool:
        return self._closed

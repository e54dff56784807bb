"""
SessionManager

Single entry point for the gateway's request-handling layer.

Wires the configured store backend, identifier generator, session store,
Kerberos delegation manager and expiration reaper into one explicitly
constructed object. Build one per process at startup, pass it to whatever
needs it, and close() it at shutdown.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Callable, Optional

import attrs
import structlog

from sessionmanager.core.config import KerberosConfig, SessionManagerConfig
from sessionmanager.core.types import KerberosId, KeyMaterial
from sessionmanager.kerberos.backends import DelegationBackend
from sessionmanager.kerberos.delegation import KerberosDelegationManager
from sessionmanager.session.backend import create_backend
from sessionmanager.session.ids import IdentifierGenerator
from sessionmanager.session.reaper import ExpirationReaper
from sessionmanager.session.store import SessionStore

logger = structlog.get_logger()


@attrs.define
class SessionManager:
    """
    Server-side session manager with Kerberos delegation.

    Provides:
    - Session lifecycle (create, exists, age, delete)
    - Per-session text and binary key/value state
    - Idle expiration on a background thread
    - Delegated Kerberos identity capture and service tickets

    Example:
        manager = SessionManager(SessionManagerConfig(max_idle=1800))
        manager.start()

        sid = manager.create_session()
        manager.set_value(sid, "gateway.username", "jdoe")

        kid = manager.store_krb5_identity(sid, negotiate_header)
        if kid is not None:
            ticket = manager.get_krb5_token_for_server(sid, "files.example.com")

        manager.close()
    """

    config: SessionManagerConfig = attrs.Factory(SessionManagerConfig)
    clock: Callable[[], float] = time.monotonic
    delegation_backend: Optional[DelegationBackend] = None

    _store: SessionStore = attrs.field(init=False, default=None)
    _delegation: KerberosDelegationManager = attrs.field(init=False, default=None)
    _reaper: ExpirationReaper = attrs.field(init=False, default=None)
    _closed: bool = attrs.field(init=False, default=False)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        self._store = SessionStore(
            backend=create_backend(self.config),
            generator=IdentifierGenerator(nbytes=self.config.id_bytes),
            clock=self.clock,
        )
        self._delegation = KerberosDelegationManager(
            store=self._store,
            config=self.config.kerberos,
            backend=self.delegation_backend,
        )
        self._reaper = ExpirationReaper(
            store=self._store,
            max_idle=self.config.max_idle,
            interval=self.config.reap_interval,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def delegation(self) -> KerberosDelegationManager:
        return self._delegation

    @property
    def reaper(self) -> ExpirationReaper:
        return self._reaper

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start background expiration."""
        self._reaper.start()

    def close(self) -> None:
        """
        Stop the reaper, destroy every session and its credential cache,
        and release the ticket backend.

        Raises:
            BackendUnavailable: If some credential caches could not be removed
        """
        if self._closed:
            return
        self._closed = True

        self._reaper.stop()
        try:
            self._store.close()
        finally:
            self._delegation.close()
            self._logger.info("session_manager_closed")

    def __enter__(self) -> "SessionManager":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Session store
    # -------------------------------------------------------------------------

    def session_exists(self, session_id: Optional[str]) -> bool:
        return self._store.session_exists(session_id)

    def key_exists(self, session_id: str, key: Optional[str]) -> bool:
        return self._store.key_exists(session_id, key)

    def session_age(self, session_id: str) -> timedelta:
        return self._store.session_age(session_id)

    def create_session(self) -> str:
        return self._store.create_session()

    def set_value(self, session_id: str, key: str, value: Optional[str]) -> None:
        self._store.set_value(session_id, key, value)

    def get_value(self, session_id: str, key: Optional[str]) -> Optional[str]:
        return self._store.get_value(session_id, key)

    def set_value_bin(self, session_id: str, key: str, value: Optional[bytes]) -> None:
        self._store.set_value_bin(session_id, key, value)

    def get_value_bin(self, session_id: str, key: Optional[str]) -> Optional[bytes]:
        return self._store.get_value_bin(session_id, key)

    def delete_session(self, session_id: str) -> None:
        self._store.delete_session(session_id)

    # -------------------------------------------------------------------------
    # Kerberos delegation
    # -------------------------------------------------------------------------

    def store_krb5_identity(self, session_id: str, spnego_blob: Optional[str]) -> Optional[KerberosId]:
        return self._delegation.store_identity(session_id, spnego_blob)

    def get_krb5_token_for_server(self, session_id: str, server: Optional[str]) -> Optional[KeyMaterial]:
        return self._delegation.token_for_server(session_id, server)

    def get_krb5_identity(self, session_id: str) -> Optional[str]:
        return self._delegation.identity(session_id)

    def get_krb5_ccache_filename(self, session_id: str) -> Optional[str]:
        return self._delegation.ccache_filename(session_id)

    def parse_krb5_keytab(self, filepath: Optional[str]) -> Optional[str]:
        return self._delegation.parse_keytab(filepath)

    def get_krb5_server_name_if_enabled(self) -> Optional[str]:
        return self._delegation.server_name_if_enabled()


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def create_session_manager(
    max_idle: float = 30 * 60.0,
    reap_interval: float = 60.0,
    kerberos: Optional[KerberosConfig] = None,
    start: bool = True,
) -> SessionManager:
    """
    Create a SessionManager with the in-memory backend.

    Args:
        max_idle: Seconds of inactivity before a session is reaped
        reap_interval: Seconds between reaper sweeps
        kerberos: Delegation settings (default: disabled)
        start: Start the reaper immediately

    Returns:
        Configured SessionManager instance
    """
    config = SessionManagerConfig(
        max_idle=max_idle,
        reap_interval=reap_interval,
        kerberos=kerberos or KerberosConfig(),
    )
    manager = SessionManager(config=config)
    if start:
        manager.start()
    return manager

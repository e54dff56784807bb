"""
Kerberos Delegation Manager

Captures a client's delegated Kerberos identity into its session and
issues service tickets on the client's behalf.

Flow:
1. The gateway receives "Authorization: Negotiate <token>" and calls
   store_identity(session_id, token)
2. The backend accepts the token, extracts the delegated credential and
   writes it to a per-session credential cache file
3. Later requests call token_for_server(session_id, "files.example.com")
   and present the returned token to the backend server

Failures here are soft. Delegated access is an optional enhancement, so
every Kerberos problem is logged and reported as None, leaving the
session and any previously stored identity untouched.
"""

from __future__ import annotations

import base64
import binascii
import os
import secrets
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import attrs
import structlog
from returns.result import Failure, Result

from sessionmanager.core.config import KerberosConfig
from sessionmanager.core.exceptions import (
    BackendUnavailable,
    DelegationUnavailable,
    InvariantViolation,
    StateError,
)
from sessionmanager.core.types import KerberosId, KeyMaterial
from sessionmanager.kerberos.backends import (
    DelegationBackend,
    create_delegation_backend,
    discard_ccache,
)
from sessionmanager.kerberos.keytab import parse_keytab
from sessionmanager.kerberos.types import KerberosContext
from sessionmanager.session.store import SessionStore

logger = structlog.get_logger()


NEGOTIATE_PREFIX = "negotiate "
CCACHE_PREFIX = "krb5cc_sm_"


def decode_spnego_blob(blob: Optional[str]) -> Optional[bytes]:
    """
    Decode a client token as sent in an Authorization header.

    Accepts bare base64 or "Negotiate <base64>". Returns None for
    anything that is not non-empty valid base64.
    """
    if not blob or not isinstance(blob, str):
        return None

    text = blob.strip()
    if text.lower().startswith(NEGOTIATE_PREFIX):
        text = text[len(NEGOTIATE_PREFIX):].strip()

    try:
        token = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None

    return token or None


@attrs.define
class KerberosDelegationManager:
    """
    Per-session Kerberos delegation.

    Reaches a KerberosContext only through its owning session record,
    under that record's lock. Each ticket request runs on its own daemon
    thread and is abandoned after `ticket_timeout` seconds; only the
    calling session waits, and an abandoned request holds no capacity
    that other sessions need.

    Example:
        manager = KerberosDelegationManager(
            store=store,
            config=KerberosConfig(enabled=True, ccache_dir="/var/run/gw"),
        )

        kid = manager.store_identity(sid, "Negotiate YIIG...")
        if kid is not None:
            ticket = manager.token_for_server(sid, "files.example.com")
    """

    store: SessionStore
    config: KerberosConfig = attrs.Factory(KerberosConfig)
    backend: Optional[DelegationBackend] = None

    _server_name: Optional[str] = None
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        if not self.config.enabled:
            return

        if self.backend is None:
            self.backend = create_delegation_backend(self.config)

        os.makedirs(self.config.ccache_dir, mode=0o700, exist_ok=True)

        self._server_name = (
            self.config.service_principal
            or parse_keytab(self.config.keytab_path)
            or self.backend.server_principal
        )
        self._logger.info(
            "krb5_delegation_enabled",
            mode=self.config.mode.name,
            server_principal=self._server_name,
            ccache_dir=self.config.ccache_dir,
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.backend is not None

    # -------------------------------------------------------------------------
    # Identity capture
    # -------------------------------------------------------------------------

    def store_identity(self, session_id: str, spnego_blob: Optional[str]) -> Optional[KerberosId]:
        """
        Capture the delegated identity carried by a client token.

        Args:
            session_id: Session to attach the identity to
            spnego_blob: Base64 SPNEGO/Kerberos token, optionally prefixed
                with "Negotiate "

        Returns:
            The delegated KerberosId, or None if the token is malformed,
            expired, carries no delegated credential, or delegation is
            disabled. On None the session's prior state is unchanged.

        Raises:
            SessionNotFound: If the session is unknown
        """
        with self.store.with_record(session_id) as record:
            if not self.enabled:
                self._logger.debug("krb5_delegation_disabled", session=record.short_id)
                return None

            try:
                context = self._accept(spnego_blob)
            except DelegationUnavailable as e:
                self._logger.warning(
                    "krb5_identity_rejected",
                    session=record.short_id,
                    reason=e.message,
                )
                return None

            previous, record.kerberos = record.kerberos, context
            if previous is not None:
                try:
                    previous.destroy("replaced")
                except BackendUnavailable:
                    self.store.adopt_orphan(previous)

            self._logger.info(
                "krb5_identity_stored",
                session=record.short_id,
                principal=context.principal,
                replaced=previous is not None,
            )
            return context.kerberos_id

    def _accept(self, spnego_blob: Optional[str]) -> KerberosContext:
        """
        Accept a client token into a new, unattached KerberosContext.

        Raises:
            DelegationUnavailable: If no usable delegated identity results;
                no ccache file is left behind
        """
        token = decode_spnego_blob(spnego_blob)
        if token is None:
            raise DelegationUnavailable("Malformed negotiation token")

        ccache_path = self._new_ccache_path()
        result = self._call_backend(
            "accept_delegation", self.backend.accept_delegation, token, ccache_path
        )
        if isinstance(result, Failure):
            discard_ccache(ccache_path)
            raise DelegationUnavailable(result.failure())

        credential = result.unwrap()
        try:
            return KerberosContext.attach(
                KerberosId.from_string(credential.principal),
                credential.ccache_path,
                renew_margin=timedelta(seconds=self.config.ticket_renew_margin),
            )
        except (ValueError, StateError, InvariantViolation) as e:
            discard_ccache(credential.ccache_path)
            raise DelegationUnavailable(
                f"Unusable principal {credential.principal!r}: {e}"
            ) from e

    # -------------------------------------------------------------------------
    # Ticket issuance
    # -------------------------------------------------------------------------

    def token_for_server(self, session_id: str, server: Optional[str]) -> Optional[KeyMaterial]:
        """
        Service ticket for `server` on behalf of the session's identity.

        A cached ticket is reused while it stays valid beyond the renewal
        margin; otherwise a new one is requested, bounded by
        `ticket_timeout`.

        Returns:
            Base64 KeyMaterial, or None if no identity is stored, the
            server is unknown, the ticket authority fails, or the request
            times out. Cached tickets and the ccache are untouched on None.

        Raises:
            SessionNotFound: If the session is unknown
        """
        with self.store.with_record(session_id) as record:
            context = record.kerberos
            if not self.enabled or context is None or not context.is_active:
                return None
            if not server:
                return None

            cached = context.tickets.get_valid(server)
            if cached is not None:
                self._logger.debug("krb5_ticket_reused", session=record.short_id, server=server)
                return cached

            try:
                ticket = self._issue(context, server)
            except DelegationUnavailable as e:
                self._logger.warning(
                    "krb5_ticket_issue_failed",
                    session=record.short_id,
                    server=server,
                    reason=e.message,
                )
                return None

            context.tickets.put(ticket)
            self._logger.info(
                "krb5_ticket_issued",
                session=record.short_id,
                server=server,
                principal=context.principal,
                expires_at=ticket.expires_at.isoformat(),
            )
            return ticket

    def _issue(self, context: KerberosContext, server: str) -> KeyMaterial:
        """
        Request a fresh ticket on a dedicated daemon thread.

        A request still running at `ticket_timeout` is left to finish in
        the background; its result is discarded.

        Raises:
            DelegationUnavailable: On timeout, authority failure, or an
                already-expired ticket
        """
        future: Future = Future()
        backend = self.backend
        ccache_path = context.ccache_path

        def request() -> None:
            future.set_running_or_notify_cancel()
            future.set_result(
                self._call_backend(
                    "init_service_token", backend.init_service_token, ccache_path, server
                )
            )

        worker = threading.Thread(
            target=request,
            name=f"krb5-ticket-{server}",
            daemon=True,
        )
        worker.start()

        try:
            result = future.result(timeout=self.config.ticket_timeout)
        except FuturesTimeout:
            raise DelegationUnavailable(
                f"Ticket request timed out after {self.config.ticket_timeout}s"
            ) from None

        if isinstance(result, Failure):
            raise DelegationUnavailable(result.failure())

        issued = result.unwrap()
        now = datetime.now(timezone.utc)
        if issued.expires_at <= now:
            raise DelegationUnavailable("Issued ticket is already expired")

        return KeyMaterial(
            server=server,
            token=issued.encoded(),
            issued_at=now,
            expires_at=issued.expires_at,
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def identity(self, session_id: str) -> Optional[str]:
        """
        Stored principal name, or None.

        Raises:
            SessionNotFound: If the session is unknown
        """
        with self.store.with_record(session_id) as record:
            context = record.kerberos
            if context is None or not context.is_active:
                return None
            return context.principal

    def ccache_filename(self, session_id: str) -> Optional[str]:
        """
        Path of the session's credential cache file, or None.

        Raises:
            SessionNotFound: If the session is unknown
        """
        with self.store.with_record(session_id) as record:
            context = record.kerberos
            if context is None or not context.is_active:
                return None
            return context.ccache_path

    def parse_keytab(self, path: Optional[str]) -> Optional[str]:
        """Principal of the first entry in the keytab at `path`, or None."""
        return parse_keytab(path)

    def server_name_if_enabled(self) -> Optional[str]:
        """Gateway's own service principal if delegation is enabled."""
        if not self.enabled:
            return None
        return self._server_name

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the backend; requests still in flight are abandoned."""
        if self.enabled:
            self.backend = None
            self._logger.info("krb5_delegation_closed")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _new_ccache_path(self) -> str:
        return os.path.join(
            self.config.ccache_dir,
            CCACHE_PREFIX + secrets.token_hex(16),
        )

    def _call_backend(self, operation: str, fn: Callable[..., Result], *args: Any) -> Result:
        """Run a backend call, turning unexpected errors into Failure."""
        try:
            return fn(*args)
        except Exception as e:
            self._logger.error(
                "krb5_backend_error",
                operation=operation,
                error=str(e),
                exc_info=True,
            )
            return Failure(f"{operation} failed: {e}")


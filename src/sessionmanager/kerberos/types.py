"""
SessionManager Kerberos Types

Per-session delegation lifecycle.

States:
    UNINITIALIZED --IdentityStored--> IDENTITY_STORED
    UNINITIALIZED --ContextDestroyed--> DESTROYED
    IDENTITY_STORED --ContextDestroyed--> DESTROYED

A session with no KerberosContext is Uninitialized. Storing a new identity
over an existing one builds a fresh context and destroys the old one, so
each credential cache file belongs to exactly one context and is deleted
exactly once.
"""

from __future__ import annotations

import os
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple, Union

import attrs
import structlog
from returns.result import Failure, Result, Success

from sessionmanager.core.exceptions import BackendUnavailable, InvariantViolation, StateError
from sessionmanager.core.types import KerberosId
from sessionmanager.kerberos.ticket_cache import ServiceTicketCache

logger = structlog.get_logger()


# =============================================================================
# STATES AND EVENTS
# =============================================================================


class DelegationState(Enum):
    """Lifecycle of one KerberosContext."""

    UNINITIALIZED = auto()
    IDENTITY_STORED = auto()
    DESTROYED = auto()


@attrs.define(frozen=True, slots=True)
class IdentityStored:
    """A delegated identity and its credential cache were attached."""

    principal: str
    ccache_path: str


@attrs.define(frozen=True, slots=True)
class ContextDestroyed:
    """The owning session went away, or a newer identity replaced this one."""

    reason: str


LifecycleEvent = Union[IdentityStored, ContextDestroyed]


_TRANSITIONS: Dict[Tuple[DelegationState, type], DelegationState] = {
    (DelegationState.UNINITIALIZED, IdentityStored): DelegationState.IDENTITY_STORED,
    (DelegationState.UNINITIALIZED, ContextDestroyed): DelegationState.DESTROYED,
    (DelegationState.IDENTITY_STORED, ContextDestroyed): DelegationState.DESTROYED,
}


# =============================================================================
# DELEGATION LIFECYCLE
# =============================================================================


@attrs.define(frozen=True, slots=True)
class LifecycleStep:
    """
    One applied lifecycle event, kept for the audit trail.

    `detail` is the principal for IdentityStored and the reason for
    ContextDestroyed.
    """

    from_state: DelegationState
    to_state: DelegationState
    event: str
    detail: str
    at: datetime


@attrs.define
class DelegationLifecycle:
    """
    Current delegation state plus the steps that led to it.

    Example:
        lifecycle = DelegationLifecycle()
        lifecycle.apply(IdentityStored("jdoe@EXAMPLE.COM", "/var/run/gw/krb5cc_sm_1f"))
        lifecycle.apply(ContextDestroyed("session_deleted"))
        assert lifecycle.state is DelegationState.DESTROYED
    """

    state: DelegationState = DelegationState.UNINITIALIZED
    principal: Optional[str] = None
    ccache_path: Optional[str] = None
    stored_at: Optional[datetime] = None
    destroyed_at: Optional[datetime] = None
    history: List[LifecycleStep] = attrs.Factory(list)

    def apply(self, event: LifecycleEvent) -> Result[DelegationState, str]:
        """
        Advance the lifecycle by one event.

        Returns:
            Success(new_state), or Failure(message) if the event is not
            accepted in the current state; the lifecycle is then unchanged

        Raises:
            InvariantViolation: If an identity arrives without a principal
                or credential cache path
        """
        next_state = _TRANSITIONS.get((self.state, type(event)))
        if next_state is None:
            logger.warning(
                "krb5_lifecycle_rejected",
                state=self.state.name,
                event=type(event).__name__,
            )
            return Failure(
                f"No transition for state {self.state.name} with event {type(event).__name__}"
            )

        now = datetime.now(timezone.utc)
        if isinstance(event, IdentityStored):
            if not event.principal or not event.ccache_path:
                raise InvariantViolation("Stored identity needs a principal and a credential cache")
            self.principal = event.principal
            self.ccache_path = event.ccache_path
            self.stored_at = now
            detail = event.principal
        else:
            self.destroyed_at = now
            detail = event.reason

        self.history.append(
            LifecycleStep(
                from_state=self.state,
                to_state=next_state,
                event=type(event).__name__,
                detail=detail,
                at=now,
            )
        )
        self.state = next_state
        return Success(next_state)


# =============================================================================
# KERBEROS CONTEXT
# =============================================================================


@attrs.define
class KerberosContext:
    """
    Delegated Kerberos state owned by one SessionRecord.

    Holds the delegated identity, the path of the on-disk credential
    cache, and the cache of service tickets already issued from it.
    Reached only through the owning record, under the record's lock.
    """

    kerberos_id: KerberosId
    ccache_path: str
    tickets: ServiceTicketCache = attrs.Factory(ServiceTicketCache)

    lifecycle: DelegationLifecycle = attrs.Factory(DelegationLifecycle)
    _destroy_lock: threading.Lock = attrs.field(
        factory=threading.Lock, alias="_destroy_lock"
    )
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: structlog.get_logger(), alias="_logger"
    )

    @classmethod
    def attach(
        cls,
        kerberos_id: KerberosId,
        ccache_path: str,
        renew_margin: timedelta = timedelta(minutes=5),
    ) -> "KerberosContext":
        """
        Build a context in IDENTITY_STORED for a freshly written ccache.

        Raises:
            StateError: If the lifecycle refuses the transition
        """
        ctx = cls(
            kerberos_id=kerberos_id,
            ccache_path=ccache_path,
            tickets=ServiceTicketCache(renew_margin=renew_margin),
        )
        result = ctx.lifecycle.apply(
            IdentityStored(principal=str(kerberos_id), ccache_path=ccache_path)
        )
        if isinstance(result, Failure):
            raise StateError(result.failure())
        return ctx

    @property
    def state(self) -> DelegationState:
        return self.lifecycle.state

    @property
    def is_active(self) -> bool:
        return self.lifecycle.state is DelegationState.IDENTITY_STORED

    @property
    def principal(self) -> str:
        return str(self.kerberos_id)

    def destroy(self, reason: str) -> bool:
        """
        Delete the credential cache file and end the lifecycle.

        Idempotent: the file is removed at most once.

        Args:
            reason: Why the context is going away (for the audit trail)

        Returns:
            True if this call destroyed the context, False if it already was

        Raises:
            BackendUnavailable: If the ccache file exists but cannot be removed
        """
        with self._destroy_lock:
            if self.lifecycle.state is DelegationState.DESTROYED:
                return False

            self.tickets.clear()

            try:
                os.remove(self.ccache_path)
            except FileNotFoundError:
                self._logger.warning(
                    "krb5_ccache_already_gone",
                    ccache=self.ccache_path,
                    principal=self.principal,
                )
            except OSError as e:
                self._logger.error(
                    "krb5_ccache_remove_failed",
                    ccache=self.ccache_path,
                    error=str(e),
                )
                raise BackendUnavailable(
                    f"Cannot remove credential cache {self.ccache_path}: {e}"
                ) from e

            self.lifecycle.apply(ContextDestroyed(reason=reason))

            self._logger.info(
                "krb5_context_destroyed",
                principal=self.principal,
                reason=reason,
            )
            return True


"""
SessionManager Exception Types

Custom exceptions for session store and Kerberos delegation errors.
"""

from typing import Optional


class SessionManagerError(Exception):
    """Base exception for all SessionManager errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class SessionNotFound(SessionManagerError, LookupError):
    """
    No live session for the given identifier.

    Raised when an operation addresses an identifier that was never
    created, has been deleted, or has been reaped. Never retried
    internally: it signals cookie tampering, an expiry race, or a
    caller bug.
    """

    def __init__(self, session_id: Optional[str] = None) -> None:
        shown = _redact(session_id)
        super().__init__(f"Session not found: {shown}")
        self.session_id = session_id


class BackendUnavailable(SessionManagerError):
    """
    Storage backend cannot allocate or remove records.

    Fatal for the operation in progress. A failed deletion leaves the
    system in an inconsistent but detectable state that the caller must
    escalate.
    """

    pass


class DelegationUnavailable(SessionManagerError):
    """
    Kerberos delegation failed (soft).

    Malformed token, ticket authority failure, or timeout. Never crosses
    the public API; the delegation manager reports it as a None result.
    """

    pass


class ConfigurationError(SessionManagerError):
    """Invalid configuration value or unknown backend selection."""

    pass


class StateError(SessionManagerError):
    """
    Invalid state transition.

    An operation was attempted that is not valid in the current
    delegation lifecycle state.
    """

    pass


class InvariantViolation(SessionManagerError):
    """
    Lifecycle invariant was violated.

    The delegation lifecycle refused an event that would leave it in an
    inconsistent state, such as an identity with no credential cache.
    """

    pass


def _redact(session_id: Optional[str]) -> str:
    if not isinstance(session_id, str) or not session_id:
        return repr(session_id)
    return f"{session_id[:8]}..."

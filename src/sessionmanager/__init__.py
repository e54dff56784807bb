"""
SessionManager - Server-side sessions with Kerberos delegation

Holds per-user state across stateless HTTP requests for a web-facing
access gateway, keyed by an unguessable identifier small enough for a
browser cookie, and manages delegated Kerberos credentials so the gateway
can reach backend servers on the user's behalf.

Features:
- Text and binary key/value state per session
- Idle expiration by a background reaper that never races active requests
- SPNEGO delegation capture, per-session credential caches, service tickets
- Keytab principal discovery for the gateway's own identity

Example Usage:
    from sessionmanager import SessionManager, SessionManagerConfig

    with SessionManager(SessionManagerConfig(max_idle=1800)) as manager:
        sid = manager.create_session()
        manager.set_value(sid, "gateway.username", "jdoe")
        print(manager.get_value(sid, "gateway.username"))
"""

from sessionmanager.core.config import (
    DelegationMode,
    KerberosConfig,
    SessionManagerConfig,
)
from sessionmanager.core.exceptions import (
    BackendUnavailable,
    ConfigurationError,
    SessionManagerError,
    SessionNotFound,
)
from sessionmanager.core.types import KerberosId, KeyMaterial
from sessionmanager.manager import SessionManager, create_session_manager

__version__ = "0.1.0"

__all__ = [
    # Main API
    "SessionManager",
    "create_session_manager",
    # Configuration
    "SessionManagerConfig",
    "KerberosConfig",
    "DelegationMode",
    # Types
    "KerberosId",
    "KeyMaterial",
    # Errors
    "SessionManagerError",
    "SessionNotFound",
    "BackendUnavailable",
    "ConfigurationError",
    # Metadata
    "__version__",
]

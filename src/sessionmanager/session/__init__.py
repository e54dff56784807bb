"""
SessionManager Session Module

Components:
- ids: Unguessable identifier generation
- record: Per-session state and lock
- backend: Record storage behind a capability interface
- store: Public key/value operations
- reaper: Background expiration of idle sessions
"""

from sessionmanager.session.ids import IdentifierGenerator
from sessionmanager.session.record import SessionRecord
from sessionmanager.session.backend import (
    BACKENDS,
    InMemorySessionBackend,
    SessionBackend,
    create_backend,
)
from sessionmanager.session.store import SessionStore
from sessionmanager.session.reaper import ExpirationReaper

__all__ = [
    "IdentifierGenerator",
    "SessionRecord",
    "BACKENDS",
    "InMemorySessionBackend",
    "SessionBackend",
    "create_backend",
    "SessionStore",
    "ExpirationReaper",
]

"""
SessionManager Core Module

Provides foundational types and abstractions used by the session store and
the Kerberos delegation subsystem.

Components:
- types: Value and identity types (SessionValue, KerberosId, KeyMaterial)
- config: Process-wide configuration
- exceptions: Custom exception types
"""

from sessionmanager.core.types import (
    KerberosId,
    KeyMaterial,
    Principal,
    Realm,
    SessionValue,
    ValueKind,
)
from sessionmanager.core.config import (
    DelegationMode,
    KerberosConfig,
    SessionManagerConfig,
)
from sessionmanager.core.exceptions import (
    BackendUnavailable,
    ConfigurationError,
    DelegationUnavailable,
    SessionManagerError,
    SessionNotFound,
)

__all__ = [
    # Types
    "KerberosId",
    "KeyMaterial",
    "Principal",
    "Realm",
    "SessionValue",
    "ValueKind",
    # Config
    "DelegationMode",
    "KerberosConfig",
    "SessionManagerConfig",
    # Exceptions
    "SessionManagerError",
    "SessionNotFound",
    "BackendUnavailable",
    "DelegationUnavailable",
    "ConfigurationError",
]

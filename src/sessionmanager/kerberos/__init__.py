"""
SessionManager Kerberos Module

Kerberos delegation tied to session lifetime.

Components:
- types: Per-session KerberosContext and its delegation lifecycle
- ticket_cache: Reuse of issued service tickets until near expiry
- keytab: Principal extraction from keytab files
- backends: Ticket authorities (native GSSAPI, simulated)
- delegation: KerberosDelegationManager, the session-facing operations
"""

from sessionmanager.kerberos.types import (
    ContextDestroyed,
    DelegationLifecycle,
    DelegationState,
    IdentityStored,
    KerberosContext,
    LifecycleStep,
)
from sessionmanager.kerberos.ticket_cache import ServiceTicketCache
from sessionmanager.kerberos.keytab import (
    KeytabEntry,
    KeytabFormatError,
    parse_keytab,
    read_keytab_entries,
)
from sessionmanager.kerberos.backends import (
    DelegatedCredential,
    DelegationBackend,
    GSSAPIDelegationBackend,
    IssuedToken,
    SimulatedDelegationBackend,
    build_simulated_token,
    create_delegation_backend,
    gssapi_available,
)
from sessionmanager.kerberos.delegation import (
    KerberosDelegationManager,
    decode_spnego_blob,
)

__all__ = [
    # Lifecycle
    "DelegationState",
    "DelegationLifecycle",
    "LifecycleStep",
    "IdentityStored",
    "ContextDestroyed",
    "KerberosContext",
    # Ticket cache
    "ServiceTicketCache",
    # Keytab
    "KeytabEntry",
    "KeytabFormatError",
    "parse_keytab",
    "read_keytab_entries",
    # Backends
    "DelegatedCredential",
    "DelegationBackend",
    "GSSAPIDelegationBackend",
    "IssuedToken",
    "SimulatedDelegationBackend",
    "build_simulated_token",
    "create_delegation_backend",
    "gssapi_available",
    # Manager
    "KerberosDelegationManager",
    "decode_spnego_blob",
]

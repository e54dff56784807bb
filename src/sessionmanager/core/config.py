"""
SessionManager Configuration

Process-wide settings for the session store, the expiration reaper and
the Kerberos delegation subsystem. Built once at process start and passed
to SessionManager; never looked up globally.
"""

from __future__ import annotations

import os
import tempfile
from enum import Enum, auto
from typing import Any, Callable, Dict, Mapping, Optional

import attrs
from attrs import field, validators

from sessionmanager.core.exceptions import ConfigurationError


# Minimum identifier entropy: 16 random bytes = 128 bits
MIN_ID_BYTES = 16


class DelegationMode(Enum):
    """
    Ticket authority used for Kerberos delegation.

    - SIMULATED: deterministic in-process tokens (testing, no KDC)
    - NATIVE: real SPNEGO/Kerberos via the system GSSAPI library
    """

    SIMULATED = auto()
    NATIVE = auto()


def _positive(instance: Any, attribute: attrs.Attribute, value: float) -> None:
    if value <= 0:
        raise ConfigurationError(f"{attribute.name} must be positive, got {value}")


def _non_negative(instance: Any, attribute: attrs.Attribute, value: float) -> None:
    if value < 0:
        raise ConfigurationError(f"{attribute.name} must not be negative, got {value}")


def _min_id_bytes(instance: Any, attribute: attrs.Attribute, value: int) -> None:
    if value < MIN_ID_BYTES:
        raise ConfigurationError(
            f"{attribute.name} must be at least {MIN_ID_BYTES} (128 bits), got {value}"
        )


@attrs.define
class KerberosConfig:
    """
    Kerberos delegation configuration.

    Attributes:
        enabled: Whether delegation is available at all
        mode: Ticket authority (simulated or native GSSAPI)
        keytab_path: Acceptor keytab for the gateway's own service principal
        service_principal: Gateway principal; parsed from the keytab if unset
        ccache_dir: Directory holding one credential cache per session
        ticket_timeout: Seconds before a service ticket request is abandoned
        ticket_renew_margin: Seconds before expiry a cached ticket is reissued
        service_class: Service name used to build target principals
    """

    enabled: bool = False
    mode: DelegationMode = field(
        default=DelegationMode.SIMULATED,
        validator=validators.instance_of(DelegationMode),
    )
    keytab_path: Optional[str] = None
    service_principal: Optional[str] = None
    ccache_dir: str = field(factory=tempfile.gettempdir)
    ticket_timeout: float = field(default=10.0, validator=_positive)
    ticket_renew_margin: float = field(default=300.0, validator=_non_negative)
    service_class: str = field(default="HTTP", validator=validators.min_len(1))


@attrs.define
class SessionManagerConfig:
    """
    Session manager configuration.

    Attributes:
        backend: Store backend name (see session.backend.BACKENDS)
        max_idle: Seconds a session may stay idle before it is reaped
        reap_interval: Seconds between reaper sweeps
        id_bytes: Random bytes per session identifier (>= 16)
        max_sessions: Live session cap, 0 for unbounded
        kerberos: Delegation settings
    """

    backend: str = "memory"
    max_idle: float = field(default=30 * 60.0, validator=_positive)
    reap_interval: float = field(default=60.0, validator=_positive)
    id_bytes: int = field(default=MIN_ID_BYTES, validator=_min_id_bytes)
    max_sessions: int = field(default=0, validator=_non_negative)
    kerberos: KerberosConfig = attrs.Factory(KerberosConfig)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = "SESSIONMANAGER_",
    ) -> "SessionManagerConfig":
        """
        Build a configuration from environment variables.

        Recognized names (with the default prefix):
            SESSIONMANAGER_BACKEND, SESSIONMANAGER_MAX_IDLE,
            SESSIONMANAGER_REAP_INTERVAL, SESSIONMANAGER_ID_BYTES,
            SESSIONMANAGER_MAX_SESSIONS, SESSIONMANAGER_KRB5_ENABLED,
            SESSIONMANAGER_KRB5_MODE, SESSIONMANAGER_KRB5_KEYTAB,
            SESSIONMANAGER_KRB5_PRINCIPAL, SESSIONMANAGER_KRB5_CCACHE_DIR,
            SESSIONMANAGER_KRB5_TICKET_TIMEOUT,
            SESSIONMANAGER_KRB5_RENEW_MARGIN, SESSIONMANAGER_KRB5_SERVICE_CLASS

        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range
        """
        env = os.environ if environ is None else environ

        top: Dict[str, Any] = {}
        krb: Dict[str, Any] = {}

        top_fields: Dict[str, tuple] = {
            "BACKEND": ("backend", str),
            "MAX_IDLE": ("max_idle", float),
            "REAP_INTERVAL": ("reap_interval", float),
            "ID_BYTES": ("id_bytes", int),
            "MAX_SESSIONS": ("max_sessions", int),
        }
        krb_fields: Dict[str, tuple] = {
            "KRB5_ENABLED": ("enabled", _parse_bool),
            "KRB5_MODE": ("mode", _parse_mode),
            "KRB5_KEYTAB": ("keytab_path", str),
            "KRB5_PRINCIPAL": ("service_principal", str),
            "KRB5_CCACHE_DIR": ("ccache_dir", str),
            "KRB5_TICKET_TIMEOUT": ("ticket_timeout", float),
            "KRB5_RENEW_MARGIN": ("ticket_renew_margin", float),
            "KRB5_SERVICE_CLASS": ("service_class", str),
        }

        for suffix, (name, parse) in top_fields.items():
            _read_env(env, prefix + suffix, name, parse, top)
        for suffix, (name, parse) in krb_fields.items():
            _read_env(env, prefix + suffix, name, parse, krb)

        try:
            return cls(kerberos=KerberosConfig(**krb), **top)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def _read_env(
    env: Mapping[str, str],
    var: str,
    name: str,
    parse: Callable[[str], Any],
    out: Dict[str, Any],
) -> None:
    raw = env.get(var)
    if raw is None:
        return
    try:
        out[name] = parse(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {var}: {raw!r}") from e


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(raw)


def _parse_mode(raw: str) -> DelegationMode:
    try:
        return DelegationMode[raw.strip().upper()]
    except KeyError:
        raise ValueError(raw) from None

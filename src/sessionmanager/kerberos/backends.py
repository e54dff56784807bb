"""
Delegation Backends

Ticket authorities used by the Kerberos delegation manager.

- GSSAPIDelegationBackend: real SPNEGO acceptance and service ticket
  requests through the system GSSAPI library (MIT Kerberos / Heimdal).
- SimulatedDelegationBackend: deterministic tokens and credential caches
  for testing and for hosts without Kerberos libraries.

Both return returns.result.Result values; the delegation manager turns
failures into None at the public surface.

Requirements (native mode):
- gssapi Python package (pip install gssapi)
- MIT Kerberos or Heimdal libraries installed
- Valid krb5.conf configuration and an acceptor keytab
"""

from __future__ import annotations

import base64
import json
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, FrozenSet, Optional

import attrs
import structlog
from returns.result import Failure, Result, Success

from sessionmanager.core.config import DelegationMode, KerberosConfig
from sessionmanager.core.exceptions import ConfigurationError

logger = structlog.get_logger()

# Check if GSSAPI is available
try:
    import gssapi
    _gssapi_available = True
    _gssapi_error = None
except ImportError as e:
    gssapi = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
except OSError as e:
    # GSSAPI installed but underlying library not available
    gssapi = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
    logger.warning("gssapi_library_error", message=str(e))


def gssapi_available() -> bool:
    """Check if GSSAPI is available."""
    return _gssapi_available


# SPNEGO mechanism OID (RFC 4178)
SPNEGO_OID = "1.3.6.1.5.5.2"

# Credential cache files are private to the gateway process
CCACHE_MODE = 0o600


# =============================================================================
# RESULT TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class DelegatedCredential:
    """Delegated identity captured from a client token and written to a ccache."""

    principal: str
    ccache_path: str
    expires_at: Optional[datetime] = None


@attrs.define(frozen=True, slots=True)
class IssuedToken:
    """Raw service token for one target server."""

    server: str
    token: bytes = attrs.field(repr=False)
    expires_at: datetime

    def encoded(self) -> str:
        return base64.b64encode(self.token).decode("ascii")


# =============================================================================
# BACKEND INTERFACE
# =============================================================================


class DelegationBackend(ABC):
    """Ticket authority capability used by KerberosDelegationManager."""

    @abstractmethod
    def accept_delegation(
        self, token: bytes, ccache_path: str
    ) -> Result[DelegatedCredential, str]:
        """
        Accept a client SPNEGO token and store its delegated credential.

        Args:
            token: Decoded SPNEGO/Kerberos token from the client
            ccache_path: File to create for the delegated credential

        Returns:
            Success(DelegatedCredential), or Failure(reason) if the token is
            malformed, expired, or carries no delegated credential. On
            failure no file is left at ccache_path.
        """
        ...

    @abstractmethod
    def init_service_token(
        self, ccache_path: str, server: str
    ) -> Result[IssuedToken, str]:
        """
        Request a service token for `server` from the delegated credential.

        May block on the network; callers bound it with a timeout.
        """
        ...

    @property
    def server_principal(self) -> Optional[str]:
        """Acceptor principal, if the backend knows it."""
        return None


# =============================================================================
# NATIVE GSSAPI BACKEND
# =============================================================================


@attrs.define
class GSSAPIDelegationBackend(DelegationBackend):
    """
    SPNEGO delegation through python-gssapi.

    Acceptance uses the keytab configured for the gateway; delegated
    credentials are written with gss_store_cred_into to a FILE ccache,
    and outbound tokens are initiated from that same ccache.

    Example:
        backend = GSSAPIDelegationBackend(
            keytab_path="/etc/gateway.keytab",
            service_principal="HTTP/gw.example.com@EXAMPLE.COM",
        )
        result = backend.accept_delegation(token, "/var/run/gw/krb5cc_x")
    """

    keytab_path: Optional[str] = None
    service_principal: Optional[str] = None
    service_class: str = "HTTP"

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def __attrs_post_init__(self) -> None:
        if not _gssapi_available:
            raise ConfigurationError(
                f"GSSAPI library not available ({_gssapi_error}). Install with: pip install gssapi"
            )

    @property
    def server_principal(self) -> Optional[str]:
        return self.service_principal

    def _acceptor_credentials(self) -> Any:
        name = None
        if self.service_principal:
            name = gssapi.Name(
                self.service_principal,
                name_type=gssapi.NameType.kerberos_principal,
            )
        store = {"keytab": self.keytab_path} if self.keytab_path else None
        return gssapi.Credentials(name=name, usage="accept", store=store)

    def accept_delegation(
        self, token: bytes, ccache_path: str
    ) -> Result[DelegatedCredential, str]:
        try:
            ctx = gssapi.SecurityContext(
                creds=self._acceptor_credentials(),
                usage="accept",
            )
            ctx.step(token)

            if not ctx.complete:
                return Failure("SPNEGO exchange needs another round trip")

            delegated = ctx.delegated_creds
            if delegated is None:
                return Failure("Client did not delegate credentials")

            principal = str(ctx.initiator_name)
            delegated.store(
                store={"ccache": f"FILE:{ccache_path}"},
                usage="initiate",
                overwrite=True,
            )
            os.chmod(ccache_path, CCACHE_MODE)

            expires_at = None
            lifetime = delegated.lifetime
            if lifetime:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=lifetime)

        except gssapi.exceptions.GSSError as e:
            discard_ccache(ccache_path)
            self._logger.warning(
                "gssapi_accept_failed",
                error=str(e),
                major=getattr(e, "maj_code", None),
                minor=getattr(e, "min_code", None),
            )
            return Failure(f"GSSAPI error: {e}")
        except OSError as e:
            discard_ccache(ccache_path)
            return Failure(f"Cannot write credential cache: {e}")

        self._logger.debug(
            "gssapi_delegation_accepted",
            principal=principal,
            lifetime=lifetime,
        )
        return Success(
            DelegatedCredential(
                principal=principal,
                ccache_path=ccache_path,
                expires_at=expires_at,
            )
        )

    def init_service_token(
        self, ccache_path: str, server: str
    ) -> Result[IssuedToken, str]:
        try:
            creds = gssapi.Credentials(
                usage="initiate",
                store={"ccache": f"FILE:{ccache_path}"},
            )
            target = gssapi.Name(
                f"{self.service_class}@{server}",
                name_type=gssapi.NameType.hostbased_service,
            )
            ctx = gssapi.SecurityContext(
                name=target,
                creds=creds,
                usage="initiate",
                mech=gssapi.OID.from_int_seq(SPNEGO_OID),
            )
            token = ctx.step()
            lifetime = creds.lifetime

        except gssapi.exceptions.GSSError as e:
            self._logger.warning(
                "gssapi_init_failed",
                server=server,
                error=str(e),
            )
            return Failure(f"GSSAPI error: {e}")

        if not token:
            return Failure("GSSAPI produced no initial token")
        if not lifetime:
            return Failure("Delegated credential has expired")

        return Success(
            IssuedToken(
                server=server,
                token=token,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=lifetime),
            )
        )


# =============================================================================
# SIMULATED BACKEND
# =============================================================================


SIMULATED_SPNEGO_PREFIX = "SPNEGO_SIM"
SIMULATED_AP_REQ_PREFIX = "AP_REQ_SIM"


def build_simulated_token(
    principal: str,
    delegate: bool = True,
    lifetime: timedelta = timedelta(hours=10),
    now: Optional[datetime] = None,
) -> str:
    """
    Build a base64 client token accepted by SimulatedDelegationBackend.

    Format (before base64): SPNEGO_SIM|<principal>|<1 or 0>|<expiry ISO-8601>
    """
    if now is None:
        now = datetime.now(timezone.utc)
    raw = "|".join(
        [
            SIMULATED_SPNEGO_PREFIX,
            principal,
            "1" if delegate else "0",
            (now + lifetime).isoformat(),
        ]
    )
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


@attrs.define
class SimulatedDelegationBackend(DelegationBackend):
    """
    In-process ticket authority.

    Accepts tokens built by build_simulated_token(), writes a small JSON
    credential cache, and issues AP_REQ_SIM service tokens. Servers in
    `unknown_servers` are refused the way a KDC refuses an unknown
    principal; `latency` delays every issuance to exercise timeouts.
    """

    service_principal: Optional[str] = None
    service_class: str = "HTTP"
    ticket_lifetime: timedelta = timedelta(hours=1)
    unknown_servers: FrozenSet[str] = frozenset()
    latency: float = 0.0

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def server_principal(self) -> Optional[str]:
        return self.service_principal

    def accept_delegation(
        self, token: bytes, ccache_path: str
    ) -> Result[DelegatedCredential, str]:
        try:
            parts = token.decode("utf-8").split("|")
        except UnicodeDecodeError:
            return Failure("Token is not a simulated SPNEGO token")

        if len(parts) != 4 or parts[0] != SIMULATED_SPNEGO_PREFIX:
            return Failure("Token is not a simulated SPNEGO token")

        _, principal, delegate, expiry = parts
        if "@" not in principal:
            return Failure(f"Invalid principal in token: {principal!r}")

        try:
            expires_at = _parse_time(expiry)
        except ValueError:
            return Failure("Invalid expiry in token")

        if expires_at <= datetime.now(timezone.utc):
            return Failure("Ticket has expired")

        if delegate != "1":
            return Failure("Client did not delegate credentials")

        payload = json.dumps(
            {"principal": principal, "expires_at": expires_at.isoformat()}
        ).encode("utf-8")
        try:
            fd = os.open(ccache_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, CCACHE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
        except OSError as e:
            discard_ccache(ccache_path)
            return Failure(f"Cannot write credential cache: {e}")

        self._logger.debug("simulated_delegation_accepted", principal=principal)
        return Success(
            DelegatedCredential(
                principal=principal,
                ccache_path=ccache_path,
                expires_at=expires_at,
            )
        )

    def init_service_token(
        self, ccache_path: str, server: str
    ) -> Result[IssuedToken, str]:
        if self.latency:
            time.sleep(self.latency)

        try:
            with open(ccache_path, "rb") as f:
                cached = json.loads(f.read().decode("utf-8"))
            principal = cached["principal"]
            tgt_expires = _parse_time(cached["expires_at"])
        except (OSError, ValueError, KeyError) as e:
            return Failure(f"Cannot read credential cache: {e}")

        now = datetime.now(timezone.utc)
        if tgt_expires <= now:
            return Failure("Delegated credential has expired")

        if server in self.unknown_servers:
            return Failure("Server not found in Kerberos database")

        expires_at = min(tgt_expires, now + self.ticket_lifetime)
        raw = "|".join(
            [
                SIMULATED_AP_REQ_PREFIX,
                principal,
                f"{self.service_class}@{server}",
                expires_at.isoformat(),
            ]
        )
        return Success(
            IssuedToken(server=server, token=raw.encode("utf-8"), expires_at=expires_at)
        )


# =============================================================================
# FACTORY
# =============================================================================


def create_delegation_backend(config: KerberosConfig) -> DelegationBackend:
    """
    Build the ticket authority selected by `config.mode`.

    Raises:
        ConfigurationError: If NATIVE mode is selected without GSSAPI
    """
    if config.mode is DelegationMode.NATIVE:
        return GSSAPIDelegationBackend(
            keytab_path=config.keytab_path,
            service_principal=config.service_principal,
            service_class=config.service_class,
        )
    return SimulatedDelegationBackend(
        service_principal=config.service_principal,
        service_class=config.service_class,
    )


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def discard_ccache(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("ccache_discard_failed", ccache=path, error=str(e))

"""
Pytest configuration and shared fixtures for SessionManager tests.
"""

import pytest

from sessionmanager.core.config import (
    DelegationMode,
    KerberosConfig,
    SessionManagerConfig,
)
from sessionmanager.kerberos.backends import (
    SimulatedDelegationBackend,
    build_simulated_token,
)
from sessionmanager.kerberos.delegation import KerberosDelegationManager
from sessionmanager.manager import SessionManager
from sessionmanager.session.backend import InMemorySessionBackend
from sessionmanager.session.store import SessionStore


GATEWAY_PRINCIPAL = "HTTP/gw.example.com@EXAMPLE.COM"
UNKNOWN_SERVER = "unknown.example.com"


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock that only moves when a test advances it."""
    return FakeClock()


# =============================================================================
# SESSION STORE FIXTURES
# =============================================================================


@pytest.fixture
def store(fake_clock: FakeClock) -> SessionStore:
    """Empty in-memory session store on the fake clock."""
    return SessionStore(backend=InMemorySessionBackend(), clock=fake_clock)


@pytest.fixture
def session_id(store: SessionStore) -> str:
    """A freshly created session."""
    return store.create_session()


# =============================================================================
# KERBEROS FIXTURES
# =============================================================================


@pytest.fixture
def ccache_dir(tmp_path) -> str:
    """Private directory for credential cache files."""
    path = tmp_path / "ccache"
    path.mkdir()
    return str(path)


@pytest.fixture
def krb_config(ccache_dir: str) -> KerberosConfig:
    """Enabled, simulated delegation configuration."""
    return KerberosConfig(
        enabled=True,
        mode=DelegationMode.SIMULATED,
        service_principal=GATEWAY_PRINCIPAL,
        ccache_dir=ccache_dir,
        ticket_timeout=2.0,
    )


@pytest.fixture
def sim_backend() -> SimulatedDelegationBackend:
    """Simulated ticket authority that refuses UNKNOWN_SERVER."""
    return SimulatedDelegationBackend(
        service_principal=GATEWAY_PRINCIPAL,
        unknown_servers=frozenset({UNKNOWN_SERVER}),
    )


@pytest.fixture
def delegation(
    store: SessionStore,
    krb_config: KerberosConfig,
    sim_backend: SimulatedDelegationBackend,
):
    """Delegation manager bound to the test store."""
    manager = KerberosDelegationManager(
        store=store,
        config=krb_config,
        backend=sim_backend,
    )
    yield manager
    manager.close()


@pytest.fixture
def client_token() -> str:
    """Delegating client token for jdoe@EXAMPLE.COM."""
    return build_simulated_token("jdoe@EXAMPLE.COM")


# =============================================================================
# MANAGER FIXTURES
# =============================================================================


@pytest.fixture
def manager_config(krb_config: KerberosConfig) -> SessionManagerConfig:
    """Manager configuration with 60 second idle expiry."""
    return SessionManagerConfig(
        max_idle=60.0,
        reap_interval=1.0,
        kerberos=krb_config,
    )


@pytest.fixture
def session_manager(
    manager_config: SessionManagerConfig,
    fake_clock: FakeClock,
    sim_backend: SimulatedDelegationBackend,
):
    """Session manager (reaper not started) on the fake clock."""
    manager = SessionManager(
        config=manager_config,
        clock=fake_clock,
        delegation_backend=sim_backend,
    )
    yield manager
    manager.close()


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "native: marks tests requiring native GSSAPI"
    )

"""
Unit tests for sessionmanager.manager module.

Exercises the public SessionManager surface end to end with the
simulated ticket authority.
"""

import base64
import os
from datetime import timedelta

import pytest

from sessionmanager import (
    BackendUnavailable,
    ConfigurationError,
    KerberosConfig,
    SessionManager,
    SessionManagerConfig,
    SessionNotFound,
    create_session_manager,
)
from sessionmanager.kerberos.backends import build_simulated_token


class TestSessionOperations:
    """Tests for the session half of the facade."""

    def test_full_session_flow(self, session_manager, fake_clock):
        """Test create, use, age and delete through the facade."""
        sid = session_manager.create_session()
        assert session_manager.session_exists(sid)

        session_manager.set_value(sid, "gateway.username", "jdoe")
        session_manager.set_value_bin(sid, "gateway.cookie", b"\x00\x01")
        fake_clock.advance(7)

        assert session_manager.key_exists(sid, "gateway.username")
        assert session_manager.get_value(sid, "gateway.username") == "jdoe"
        assert session_manager.get_value_bin(sid, "gateway.cookie") == b"\x00\x01"
        assert session_manager.session_age(sid) == timedelta(seconds=7)

        session_manager.delete_session(sid)
        assert not session_manager.session_exists(sid)
        with pytest.raises(SessionNotFound):
            session_manager.get_value(sid, "gateway.username")

    def test_idle_sessions_expire(self, session_manager, fake_clock):
        """Test the manager's reaper honours max_idle."""
        sid = session_manager.create_session()
        fake_clock.advance(61)

        assert session_manager.reaper.sweep() == 1
        assert not session_manager.session_exists(sid)

    def test_unknown_backend(self):
        """Test an unregistered backend fails at construction."""
        with pytest.raises(ConfigurationError):
            SessionManager(config=SessionManagerConfig(backend="redis"))


class TestKerberosOperations:
    """Tests for the delegation half of the facade."""

    def test_delegation_flow(self, session_manager, client_token):
        """Test identity capture, ticket issue and ccache cleanup."""
        sid = session_manager.create_session()

        kid = session_manager.store_krb5_identity(sid, client_token)
        assert str(kid) == "jdoe@EXAMPLE.COM"
        assert session_manager.get_krb5_identity(sid) == "jdoe@EXAMPLE.COM"

        path = session_manager.get_krb5_ccache_filename(sid)
        assert os.path.exists(path)

        ticket = session_manager.get_krb5_token_for_server(sid, "files.example.com")
        assert base64.b64decode(ticket.token).startswith(b"AP_REQ_SIM|jdoe@EXAMPLE.COM|")

        session_manager.delete_session(sid)
        assert not os.path.exists(path)

    def test_soft_failure_keeps_session(self, session_manager):
        """Test a bad token leaves a usable session."""
        sid = session_manager.create_session()
        session_manager.set_value(sid, "k", "v")

        assert session_manager.store_krb5_identity(sid, "not-a-token") is None
        assert session_manager.get_krb5_identity(sid) is None
        assert session_manager.get_krb5_token_for_server(sid, "files.example.com") is None
        assert session_manager.get_value(sid, "k") == "v"

    def test_server_name(self, session_manager):
        """Test the gateway principal is reported when enabled."""
        assert (
            session_manager.get_krb5_server_name_if_enabled()
            == "HTTP/gw.example.com@EXAMPLE.COM"
        )

    def test_server_name_disabled(self):
        """Test no principal is reported when delegation is off."""
        manager = create_session_manager(start=False)
        try:
            assert manager.get_krb5_server_name_if_enabled() is None
            assert manager.store_krb5_identity(
                manager.create_session(), build_simulated_token("jdoe@EXAMPLE.COM")
            ) is None
        finally:
            manager.close()

    def test_parse_keytab_missing(self, session_manager, tmp_path):
        """Test keytab parsing failures give None."""
        assert session_manager.parse_krb5_keytab(str(tmp_path / "absent.keytab")) is None
        assert session_manager.parse_krb5_keytab(None) is None


class TestLifecycle:
    """Tests for start/close."""

    def test_context_manager(self, manager_config, sim_backend):
        """Test the with-block starts and stops the reaper."""
        with SessionManager(config=manager_config, delegation_backend=sim_backend) as manager:
            assert manager.reaper.is_running
            sid = manager.create_session()

        assert not manager.reaper.is_running
        assert not manager.session_exists(sid)

    def test_close_removes_ccaches(self, manager_config, sim_backend, ccache_dir, client_token):
        """Test shutdown destroys every credential cache."""
        manager = SessionManager(config=manager_config, delegation_backend=sim_backend)
        for _ in range(3):
            manager.store_krb5_identity(manager.create_session(), client_token)
        assert len(os.listdir(ccache_dir)) == 3

        manager.close()
        assert os.listdir(ccache_dir) == []

    def test_close_idempotent(self, session_manager):
        """Test closing twice is harmless."""
        session_manager.close()
        session_manager.close()

    def test_create_after_close(self, session_manager):
        """Test a closed manager refuses new sessions."""
        session_manager.close()
        with pytest.raises(BackendUnavailable):
            session_manager.create_session()

    def test_factory(self, ccache_dir):
        """Test create_session_manager wires the configuration through."""
        manager = create_session_manager(
            max_idle=120,
            reap_interval=5,
            kerberos=KerberosConfig(enabled=True, ccache_dir=ccache_dir),
        )
        try:
            assert manager.reaper.is_running
            assert manager.reaper.max_idle == 120
            assert manager.delegation.enabled
        finally:
            manager.close()
        assert not manager.reaper.is_running

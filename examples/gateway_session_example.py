#!/usr/bin/env python3
"""
Gateway Session Example

Demonstrates how an access gateway uses SessionManager to keep per-user
state between requests and to reach backend servers with the user's
delegated Kerberos identity.

Features:
1. Session creation and key/value state
2. Delegated identity capture from a Negotiate header
3. Service tickets for backend servers, with reuse
4. Soft delegation failures that keep the session usable
5. Idle expiration and credential cache cleanup

Runs entirely on the simulated ticket authority; no KDC is needed.
"""

import os
import tempfile

from sessionmanager import (
    DelegationMode,
    KerberosConfig,
    SessionManager,
    SessionManagerConfig,
    SessionNotFound,
)
from sessionmanager.kerberos import build_simulated_token


def main():
    """Walk one user through a gateway session."""

    print("=" * 70)
    print("SessionManager - Gateway Session with Kerberos Delegation")
    print("=" * 70)
    print()

    ccache_dir = tempfile.mkdtemp(prefix="gw-ccache-")
    config = SessionManagerConfig(
        max_idle=30 * 60,
        reap_interval=60,
        kerberos=KerberosConfig(
            enabled=True,
            mode=DelegationMode.SIMULATED,
            service_principal="HTTP/gw.example.com@EXAMPLE.COM",
            ccache_dir=ccache_dir,
        ),
    )

    with SessionManager(config) as manager:
        # ==========================================================================
        # EXAMPLE 1: Create a session
        # ==========================================================================
        print("1. Create Session")
        print("-" * 40)

        sid = manager.create_session()
        manager.set_value(sid, "gateway.username", "jdoe")
        manager.set_value_bin(sid, "gateway.prefs", b"\x01\x00")

        print(f"   Session id (cookie value): {sid}")
        print(f"   gateway.username = {manager.get_value(sid, 'gateway.username')}")
        print(f"   Gateway principal: {manager.get_krb5_server_name_if_enabled()}")
        print()

        # ==========================================================================
        # EXAMPLE 2: Capture the delegated identity
        # ==========================================================================
        print("2. Store Delegated Identity")
        print("-" * 40)

        header = "Negotiate " + build_simulated_token("jdoe@EXAMPLE.COM")
        kid = manager.store_krb5_identity(sid, header)

        print(f"   Identity: {kid}")
        print(f"   Credential cache: {manager.get_krb5_ccache_filename(sid)}")
        print()

        # ==========================================================================
        # EXAMPLE 3: Tickets for backend servers
        # ==========================================================================
        print("3. Service Tickets")
        print("-" * 40)

        first = manager.get_krb5_token_for_server(sid, "files.example.com")
        again = manager.get_krb5_token_for_server(sid, "files.example.com")

        print(f"   Ticket for files.example.com expires {first.expires_at.isoformat()}")
        print(f"   Second request reused cached ticket: {first is again}")
        print()

        # ==========================================================================
        # EXAMPLE 4: Soft failure
        # ==========================================================================
        print("4. Malformed Token")
        print("-" * 40)

        result = manager.store_krb5_identity(sid, "Negotiate ???")
        print(f"   store_krb5_identity returned: {result}")
        print(f"   Identity still: {manager.get_krb5_identity(sid)}")
        print()

        # ==========================================================================
        # EXAMPLE 5: Logout
        # ==========================================================================
        print("5. Delete Session")
        print("-" * 40)

        path = manager.get_krb5_ccache_filename(sid)
        manager.delete_session(sid)

        print(f"   Session exists: {manager.session_exists(sid)}")
        print(f"   Credential cache removed: {not os.path.exists(path)}")
        try:
            manager.get_value(sid, "gateway.username")
        except SessionNotFound as e:
            print(f"   Later access: {e}")
        print()

    os.rmdir(ccache_dir)
    print("Done.")


if __name__ == "__main__":
    main()

"""
Property-based tests for session store invariants.

Tests that the store keeps its guarantees across many random inputs:
values read back as written, identifiers never repeat, concurrent writers
never interleave, and the reaper only removes sessions idle past the limit.
"""

import threading

import pytest
from hypothesis import given, settings, strategies as st

from sessionmanager.core.exceptions import SessionNotFound
from sessionmanager.session.reaper import ExpirationReaper
from sessionmanager.session.store import SessionStore


# =============================================================================
# STRATEGIES
# =============================================================================

# Namespaced keys as callers are expected to use them
key_strategy = st.from_regex(r"[a-z]{1,10}\.[a-zA-Z0-9_]{1,20}", fullmatch=True)

text_strategy = st.text(max_size=200)

# Text that may carry lone surrogates, which a Python str permits
surrogate_text_strategy = st.text(
    alphabet=st.one_of(st.characters(), st.sampled_from(["\ud800", "\udbff", "\udc00", "\udfff"])),
    max_size=50,
)

binary_strategy = st.binary(max_size=512)

# Idle periods in seconds, relative to a 60 second limit
idle_strategy = st.integers(min_value=0, max_value=600)


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# VALUE PROPERTIES
# =============================================================================


class TestValueProperties:
    """Property-based tests for stored values."""

    @given(key_strategy, text_strategy)
    def test_text_round_trip(self, key: str, value: str):
        """Property: get_value returns what set_value stored."""
        store = SessionStore()
        sid = store.create_session()
        store.set_value(sid, key, value)
        assert store.get_value(sid, key) == value

    @given(key_strategy, surrogate_text_strategy)
    def test_surrogate_text_round_trip(self, key: str, value: str):
        """Property: lone surrogates survive a text round trip."""
        store = SessionStore()
        sid = store.create_session()
        store.set_value(sid, key, value)
        assert store.get_value(sid, key) == value

    @given(key_strategy, binary_strategy)
    def test_binary_round_trip(self, key: str, value: bytes):
        """Property: get_value_bin returns what set_value_bin stored."""
        store = SessionStore()
        sid = store.create_session()
        store.set_value_bin(sid, key, value)
        assert store.get_value_bin(sid, key) == value

    @given(st.dictionaries(key_strategy, text_strategy, max_size=20), key_strategy)
    def test_key_exists_matches_writes(self, values, lookup: str):
        """Property: a key exists iff it was written."""
        store = SessionStore()
        sid = store.create_session()
        for key, value in values.items():
            store.set_value(sid, key, value)

        assert store.key_exists(sid, lookup) == (lookup in values)
        for key, value in values.items():
            assert store.get_value(sid, key) == value

    @given(st.lists(key_strategy, min_size=1, max_size=10))
    def test_deleted_session_unreachable(self, keys):
        """Property: nothing written to a deleted session can be read."""
        store = SessionStore()
        sid = store.create_session()
        for key in keys:
            store.set_value(sid, key, "v")
        store.delete_session(sid)

        assert not store.session_exists(sid)
        for key in keys:
            with pytest.raises(SessionNotFound):
                store.get_value(sid, key)


# =============================================================================
# IDENTIFIER PROPERTIES
# =============================================================================


class TestIdentifierProperties:
    """Properties of generated identifiers."""

    def test_ten_thousand_distinct_ids(self):
        """Property: bulk creation never repeats an id."""
        store = SessionStore()
        ids = [store.create_session() for _ in range(10_000)]

        assert len(set(ids)) == 10_000
        assert len(store) == 10_000

    def test_concurrent_creation_distinct(self):
        """Property: creating from many threads never repeats an id."""
        store = SessionStore()
        results = []
        lock = threading.Lock()

        def create_many():
            local = [store.create_session() for _ in range(500)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=create_many) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results)) == 4000
        assert len(store) == 4000


# =============================================================================
# CONCURRENCY PROPERTIES
# =============================================================================


class TestConcurrencyProperties:
    """Properties under concurrent access to one session."""

    @settings(max_examples=20, deadline=None)
    @given(text_strategy, text_strategy)
    def test_concurrent_writes_never_interleave(self, v1: str, v2: str):
        """Property: racing writers leave exactly one of their values."""
        store = SessionStore()
        sid = store.create_session()
        start = threading.Barrier(2)

        def writer(value: str):
            start.wait()
            for _ in range(50):
                store.set_value(sid, "app.key", value)

        threads = [
            threading.Thread(target=writer, args=(v1,)),
            threading.Thread(target=writer, args=(v2,)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get_value(sid, "app.key") in (v1, v2)


# =============================================================================
# EXPIRATION PROPERTIES
# =============================================================================


class TestExpirationProperties:
    """Properties of idle expiration."""

    @given(st.lists(idle_strategy, min_size=1, max_size=20))
    def test_reaps_exactly_the_idle(self, idles):
        """Property: a sweep removes a session iff it idled past max_idle."""
        clock = ManualClock()
        clock.now = 1000.0
        store = SessionStore(clock=clock)
        reaper = ExpirationReaper(store=store, max_idle=60.0)

        # Create every session, then touch each so that it has idled
        # for its assigned period at the final clock reading
        final = clock.now + max(idles)
        ids = [store.create_session() for _ in idles]
        for sid, idle in sorted(zip(ids, idles), key=lambda pair: -pair[1]):
            clock.now = final - idle
            store.get_value(sid, "app.key")
        clock.now = final

        reaper.sweep()

        for sid, idle in zip(ids, idles):
            assert store.session_exists(sid) == (idle <= 60)

    @given(st.lists(st.floats(min_value=0.0, max_value=100.0), min_size=1, max_size=10))
    def test_age_tracks_clock(self, steps):
        """Property: session age equals total elapsed clock time."""
        clock = ManualClock()
        store = SessionStore(clock=clock)
        sid = store.create_session()

        for step in steps:
            clock.now += step

        assert store.session_age(sid).total_seconds() == pytest.approx(sum(steps), abs=1e-3)

"""
Unit tests for sessionmanager.session.ids module.
"""

import pytest

from sessionmanager.core.exceptions import BackendUnavailable
from sessionmanager.session.ids import IdentifierGenerator


class TestIdentifierGenerator:
    """Tests for IdentifierGenerator."""

    def test_default_strength(self):
        """Test default ids carry 16 random bytes."""
        generator = IdentifierGenerator()
        assert generator.nbytes == 16
        # 16 bytes of URL-safe base64 without padding
        assert len(generator.new_id()) == 22

    def test_weak_ids_rejected(self):
        """Test fewer than 128 bits is refused."""
        with pytest.raises(ValueError):
            IdentifierGenerator(nbytes=8)

    def test_longer_ids(self):
        """Test more bytes give longer ids."""
        assert len(IdentifierGenerator(nbytes=32).new_id()) == 43

    def test_ids_are_distinct(self):
        """Test repeated generation does not repeat."""
        generator = IdentifierGenerator()
        ids = {generator.new_id() for _ in range(1000)}
        assert len(ids) == 1000

    def test_collision_is_resampled(self):
        """Test a candidate that is already live is never returned."""
        generator = IdentifierGenerator()
        seen = []

        def exists(candidate: str) -> bool:
            seen.append(candidate)
            return len(seen) < 3

        result = generator.generate(exists)
        assert len(seen) == 3
        assert result == seen[-1]
        assert result not in seen[:2]

    def test_exhausted_attempts(self):
        """Test a generator that only collides gives up."""
        generator = IdentifierGenerator(max_attempts=4)
        calls = []

        def always(candidate: str) -> bool:
            calls.append(candidate)
            return True

        with pytest.raises(BackendUnavailable):
            generator.generate(always)
        assert len(calls) == 4

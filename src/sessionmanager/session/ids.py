"""
Session identifier generation.

Identifiers are URL-safe base64 strings drawn from secrets.token_urlsafe,
small enough for a cookie and at least 128 bits strong.
"""

from __future__ import annotations

import secrets
from typing import Callable

import attrs
import structlog

from sessionmanager.core.config import MIN_ID_BYTES
from sessionmanager.core.exceptions import BackendUnavailable

logger = structlog.get_logger()


@attrs.define
class IdentifierGenerator:
    """
    Unguessable session identifier source.

    Candidates that collide with a live identifier are resampled, never
    reused. A bounded number of attempts guards against a broken random
    source.
    """

    nbytes: int = attrs.field(default=MIN_ID_BYTES, validator=attrs.validators.ge(MIN_ID_BYTES))
    max_attempts: int = 16

    def new_id(self) -> str:
        return secrets.token_urlsafe(self.nbytes)

    def generate(self, exists: Callable[[str], bool]) -> str:
        """
        Return an identifier for which `exists` is false.

        Raises:
            BackendUnavailable: If every attempt collided
        """
        for attempt in range(self.max_attempts):
            candidate = self.new_id()
            if not exists(candidate):
                return candidate
            logger.warning("session_id_collision", attempt=attempt + 1)

        raise BackendUnavailable(
            f"Could not generate a unique session id after {self.max_attempts} attempts"
        )

"""
Session store backends.

A backend owns the identifier -> SessionRecord map and nothing else:
per-record locking, timestamps and Kerberos cleanup belong to
SessionStore. The implementation is picked from BACKENDS by name at
process start.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import attrs
import structlog

from sessionmanager.core.config import SessionManagerConfig
from sessionmanager.core.exceptions import BackendUnavailable, ConfigurationError
from sessionmanager.session.record import SessionRecord

logger = structlog.get_logger()


class SessionBackend(ABC):
    """Capability interface for session record storage."""

    @abstractmethod
    def insert(self, record: SessionRecord) -> bool:
        """
        Add a record under its identifier.

        Returns:
            False if the identifier is already taken (nothing is replaced)

        Raises:
            BackendUnavailable: If no space is left for another session
        """
        ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    def remove(self, session_id: str, record: SessionRecord) -> bool:
        """Unlink `record` if it is still the one stored under `session_id`."""
        ...

    @abstractmethod
    def contains(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def snapshot_last_access(self) -> List[Tuple[str, float]]:
        """(identifier, last_access) for every live record, taken atomically."""
        ...

    @abstractmethod
    def ids(self) -> List[str]:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    def close(self) -> None:
        """Release backend resources."""
        pass


@attrs.define
class InMemorySessionBackend(SessionBackend):
    """
    Process-local dict of records.

    The store-wide lock is held only for map edits and snapshots.
    """

    max_sessions: int = 0

    _records: Dict[str, SessionRecord] = attrs.Factory(dict)
    _lock: threading.Lock = attrs.Factory(threading.Lock)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def insert(self, record: SessionRecord) -> bool:
        with self._lock:
            if record.session_id in self._records:
                return False
            if self.max_sessions and len(self._records) >= self.max_sessions:
                self._logger.error(
                    "session_capacity_exhausted",
                    max_sessions=self.max_sessions,
                )
                raise BackendUnavailable(
                    f"Session capacity exhausted ({self.max_sessions} live sessions)"
                )
            self._records[record.session_id] = record
            return True

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._records.get(session_id)

    def remove(self, session_id: str, record: SessionRecord) -> bool:
        with self._lock:
            if self._records.get(session_id) is not record:
                return False
            del self._records[session_id]
            return True

    def contains(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._records

    def snapshot_last_access(self) -> List[Tuple[str, float]]:
        with self._lock:
            return [(sid, rec.last_access) for sid, rec in self._records.items()]

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def close(self) -> None:
        with self._lock:
            self._records.clear()


BACKENDS: Dict[str, Callable[[SessionManagerConfig], SessionBackend]] = {
    "memory": lambda config: InMemorySessionBackend(max_sessions=config.max_sessions),
}


def create_backend(config: SessionManagerConfig) -> SessionBackend:
    """
    Build the backend named by `config.backend`.

    Raises:
        ConfigurationError: If the name is not registered
    """
    factory = BACKENDS.get(config.backend)
    if factory is None:
        raise ConfigurationError(
            f"Unknown session backend {config.backend!r}; "
            f"available: {', '.join(sorted(BACKENDS))}"
        )
    logger.debug("session_backend_selected", backend=config.backend)
    return factory(config)

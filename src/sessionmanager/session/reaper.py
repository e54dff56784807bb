"""
Expiration Reaper

Background removal of sessions idle longer than the configured maximum.

Each sweep is optimistic:
1. Snapshot (identifier, last_access) under the store-wide lock
2. Release it, then for each idle candidate
3. Delete under the record's lock only if last_access is unchanged

A request that touches a session between scan and delete wins; the
session survives and is reconsidered on a later sweep.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

import attrs
import structlog

from sessionmanager.core.exceptions import BackendUnavailable
from sessionmanager.session.store import SessionStore

logger = structlog.get_logger()


@attrs.define
class ExpirationReaper:
    """
    Periodic idle-session collector.

    Example:
        reaper = ExpirationReaper(store=store, max_idle=1800, interval=60)
        reaper.start()

        # ... sessions idle for 30 minutes disappear ...

        reaper.stop()
    """

    store: SessionStore
    max_idle: float
    interval: float = 60.0
    stop_timeout: float = 5.0

    # Internal state; each run gets its own stop event
    _running: bool = False
    _thread: Optional[threading.Thread] = None
    _stop_event: threading.Event = attrs.Factory(threading.Event)
    _total_reaped: int = 0
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def is_running(self) -> bool:
        """Check if the background thread is active."""
        return self._running

    @property
    def total_reaped(self) -> int:
        return self._total_reaped

    def sweep(self) -> int:
        """
        Run one scan-and-delete pass.

        Returns:
            Number of sessions removed
        """
        candidates = self.store.idle_candidates(self.max_idle)
        reaped = 0

        for session_id, observed in candidates:
            try:
                if self.store.delete_if_idle(session_id, observed):
                    reaped += 1
                    self._logger.info(
                        "session_reaped",
                        session=session_id[:8],
                    )
            except BackendUnavailable as e:
                # The record is unlinked; its ccache is retried at shutdown
                reaped += 1
                self._logger.error(
                    "session_reap_incomplete",
                    session=session_id[:8],
                    error=str(e),
                )

        self._total_reaped += reaped
        if candidates:
            self._logger.debug(
                "reaper_sweep_complete",
                candidates=len(candidates),
                reaped=reaped,
                remaining=len(self.store),
            )
        return reaped

    def start(self) -> bool:
        """
        Start sweeping on a daemon thread.

        Returns:
            True if started, False if already running
        """
        if self._running:
            self._logger.warning("reaper_already_running")
            return False

        self._stop_event = threading.Event()
        self._running = True

        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name="SessionReaper",
            daemon=True,
        )
        self._thread.start()

        self._logger.info(
            "reaper_started",
            max_idle=self.max_idle,
            interval=self.interval,
        )
        return True

    def stop(self) -> None:
        """Stop the background thread and wait for the current sweep."""
        if not self._running:
            return

        self._stop_event.set()
        self._running = False

        if self._thread:
            self._thread.join(timeout=self.stop_timeout)
            if self._thread.is_alive():
                # Exits once its sweep finishes; a later start() uses a new event
                self._logger.warning("reaper_stop_timed_out", timeout=self.stop_timeout)
            self._thread = None

        self._logger.info("reaper_stopped", total_reaped=self._total_reaped)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.sweep()
            except Exception as e:
                self._logger.error("reaper_sweep_failed", error=str(e), exc_info=True)

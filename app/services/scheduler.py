"""
Staleness scheduler: the three ways a sync cycle gets started.

- a periodic timer on a daemon thread
- ``trigger_if_stale()``: fire-and-forget after a list read finds the cache
  older than the staleness threshold
- ``trigger_now()``: on-demand, the outcome goes back to the caller

All three end in ``SyncEngine.sync()`` and share its exclusivity guard.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta

from app.errors import SyncAlreadyRunningError, SyncFailedError
from app.services.sync_engine import SyncEngine, SyncResult, utcnow

logger = logging.getLogger(__name__)


class StalenessScheduler:
    """Starts sync cycles periodically, opportunistically and on demand."""

    def __init__(
        self,
        engine: SyncEngine,
        interval_seconds: float = 300,
        staleness_threshold_seconds: float = 600,
        clock=utcnow,
    ) -> None:
        self.engine = engine
        self.interval = interval_seconds
        self.staleness_threshold = timedelta(seconds=staleness_threshold_seconds)
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="patient-sync")
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._pending: Future | None = None
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="patient-sync-timer", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started (every %.0fs)", self.interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._executor.shutdown(wait=True)
        logger.info("Sync scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        # First tick fires immediately so a fresh process warms its cache.
        while not self._stop_event.is_set():
            if not self.engine.is_running:
                self._run_quietly("timer")
            if self._stop_event.wait(self.interval):
                break

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def is_stale(self, watermark: datetime | None = None) -> bool:
        if watermark is None:
            watermark = self.engine.store.get_watermark()
        if watermark is None:
            return True
        return self._clock() - watermark > self.staleness_threshold

    def trigger_if_stale(self) -> Future | None:
        """
        Submit a background cycle when the cache is stale and no cycle is
        running or already waiting to run. Returns the submitted Future, or
        None when nothing was submitted.
        """
        if self.engine.is_running or not self.is_stale():
            return None
        with self._pending_lock:
            if self._pending is not None and not self._pending.done():
                return None
            try:
                self._pending = self._executor.submit(self._run_quietly, "stale read")
            except RuntimeError:
                # Executor already shut down during process stop.
                logger.debug("Scheduler stopped; stale-read sync not submitted")
                return None
            return self._pending

    def trigger_now(self) -> SyncResult:
        """Run a cycle in the caller's thread and return (or raise) its outcome."""
        return self.engine.sync()

    def _run_quietly(self, reason: str) -> SyncResult | None:
        try:
            return self.engine.sync()
        except SyncAlreadyRunningError:
            logger.debug("Sync (%s) skipped: already running", reason)
        except SyncFailedError as exc:
            logger.error("Background sync (%s) failed: %s", reason, exc)
        except Exception:
            logger.exception("Unexpected error in background sync (%s)", reason)
        return None

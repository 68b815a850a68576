"""Foreground daemon that syncs the notes root on a fixed interval."""

import logging
import signal
import threading
from typing import Optional

from mnote.exceptions import MnoteError
from mnote.observability import metrics
from mnote.services.lock_manager import LockManager
from mnote.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncDaemon:
    """Runs a sync pass every ``interval`` seconds until stopped.

    A tick that finds the lock taken (a manual sync, another daemon) is
    skipped silently. Tick failures are logged and the loop carries on.
    SIGINT and SIGTERM end the wait immediately; a pass already running is
    allowed to finish.
    """

    def __init__(self, orchestrator: SyncOrchestrator,
                 lock: Optional[LockManager] = None,
                 interval: float = 300.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.orchestrator = orchestrator
        self.lock = lock or orchestrator.lock
        self.interval = interval
        self._stop = threading.Event()
        self.ticks = 0
        self.skipped = 0

    def tick(self) -> bool:
        """One iteration; returns True if a sync pass ran successfully."""
        self.ticks += 1
        if not self.lock.acquire(wait=False):
            self.skipped += 1
            return False
        try:
            self.orchestrator.perform_sync(exit_on_error=False)
            return True
        except MnoteError as e:
            logger.error(f"Daemon sync error: {e.message}")
            return False
        except Exception:
            logger.exception("Unexpected daemon error")
            return False
        finally:
            self.lock.release()

    def stop(self, *_args) -> None:
        # Also the signal handler, so it must not log
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _install_signal_handlers(self) -> dict:
        previous = {}
        if threading.current_thread() is not threading.main_thread():
            return previous
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, self.stop)
        return previous

    def run(self, max_ticks: Optional[int] = None) -> int:
        """Loop until stopped (or ``max_ticks`` ticks). Returns ticks run."""
        logger.info(f"Starting mnote daemon (interval: {self.interval}s)")
        previous = self._install_signal_handlers()
        ran = 0
        try:
            while not self._stop.is_set():
                self.tick()
                ran += 1
                if max_ticks is not None and ran >= max_ticks:
                    break
                self._stop.wait(self.interval)
            if self._stop.is_set():
                logger.info("Stop requested, shutting down daemon")
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
        summary = metrics.summary()
        if summary:
            logger.info(f"Operation summary:\n{summary}")
        logger.info("Daemon stopped")
        return ran

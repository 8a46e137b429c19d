"""Background expiry sweep for lapsed reservations."""

import logging
import threading
from typing import Optional

from ..leads.reservations import ReservationManager, SweepResult

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Run ``ReservationManager.sweep`` on a fixed interval in a daemon thread."""

    def __init__(self, reservations: ReservationManager, interval_seconds: Optional[int] = None):
        self.reservations = reservations
        self.interval = interval_seconds or reservations.config.sweep_interval_seconds
        self.running = False
        self.thread = None
        self.last_result: Optional[SweepResult] = None
        self._wake = threading.Event()

    def start(self):
        if self.running:
            return
        self.running = True
        self._wake.clear()
        self.thread = threading.Thread(target=self._run_loop, name="lqe-sweeper", daemon=True)
        self.thread.start()
        logger.info(f"Expiry sweeper started (interval: {self.interval}s)")

    def stop(self):
        self.running = False
        self._wake.set()
        if self.thread:
            self.thread.join(timeout=5)
            self.thread = None
        logger.info("Expiry sweeper stopped")

    def run_once(self) -> SweepResult:
        self.last_result = self.reservations.sweep()
        return self.last_result

    def _run_loop(self):
        while self.running:
            try:
                self.run_once()
            except Exception as e:
                logger.exception(f"Sweeper error: {e}")
            self._wake.wait(self.interval)

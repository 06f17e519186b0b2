"""Fixed-rate snapshot polling."""

import logging
import threading
import time
from typing import Callable, Optional

from .fusion import FusionEngine
from .state import FusionSnapshot

_logger = logging.getLogger(__name__)


class SnapshotPoller:
    """Calls ``callback`` with the engine's snapshot at a fixed rate.

    Snapshots are only delivered once a joint observation has been committed.
    An exception in the callback is logged and polling continues.

    Args:
        engine: Fusion engine to poll.
        rate_hz: Poll rate; defaults to the engine's ``config.poll_rate``.
        callback: Receives each FusionSnapshot.
    """

    def __init__(self, engine: FusionEngine, callback: Callable[[FusionSnapshot], None],
                 rate_hz: Optional[float] = None):
        self.engine = engine
        self.callback = callback
        self.rate_hz = engine.config.poll_rate if rate_hz is None else rate_hz
        if self.rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {self.rate_hz}")
        self.polls = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="snapshot-poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def poll_once(self) -> Optional[FusionSnapshot]:
        snapshot = self.engine.current_snapshot()
        if snapshot is None or snapshot.last_joint_observation is None:
            return None
        self.polls += 1
        try:
            self.callback(snapshot)
        except Exception:
            _logger.exception("Snapshot callback failed")
        return snapshot

    def _loop(self) -> None:
        period = 1.0 / self.rate_hz
        next_tick = time.monotonic()
        while not self._stop.is_set():
            self.poll_once()
            next_tick += period
            delay = next_tick - time.monotonic()
            if delay < 0:
                # Fell behind; restart the schedule from now
                next_tick = time.monotonic()
                delay = 0.0
            self._stop.wait(delay)

"""Bounded record of committed estimates for delay compensation."""

import bisect
from collections import deque
from typing import Deque, Optional

import numpy as np

from .errors import ExpiredObservationError
from .state import RobotStateEstimate, apply_delta


class StateHistory:
    """Time-ordered committed states, trimmed by count and by age.

    Timestamps are appended in non-decreasing order; the FusionEngine never
    commits a state older than its predecessor.

    Args:
        max_length: Maximum number of retained entries.
        max_duration: Maximum time span in seconds between the newest and
                      the oldest retained entry.
    """

    def __init__(self, max_length: int, max_duration: float):
        self.max_length = max_length
        self.max_duration = max_duration
        self._entries: Deque[RobotStateEstimate] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def oldest_timestamp(self) -> Optional[float]:
        return self._entries[0].timestamp if self._entries else None

    @property
    def newest_timestamp(self) -> Optional[float]:
        return self._entries[-1].timestamp if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def append(self, state: RobotStateEstimate) -> None:
        if self._entries and state.timestamp < self._entries[-1].timestamp:
            raise ValueError(
                f"History is time ordered: {state.timestamp} precedes {self._entries[-1].timestamp}"
            )
        self._entries.append(state)
        while len(self._entries) > self.max_length:
            self._entries.popleft()
        while (len(self._entries) > 1
               and state.timestamp - self._entries[0].timestamp > self.max_duration):
            self._entries.popleft()

    def reconstruct(self, timestamp: float, max_staleness: float) -> RobotStateEstimate:
        """Estimate the committed state at a past instant.

        Angles and offset are linearly interpolated between the two entries
        bracketing ``timestamp``. Instants after the newest entry take the
        newest entry; instants up to ``max_staleness`` before the oldest
        entry take the oldest.

        Raises:
            ExpiredObservationError: If the history is empty or ``timestamp``
                precedes the oldest entry by more than ``max_staleness``.
        """
        if not self._entries:
            raise ExpiredObservationError("No rotary history to reconstruct from")

        oldest = self._entries[0]
        if timestamp < oldest.timestamp - max_staleness:
            raise ExpiredObservationError(
                f"Visual result at {timestamp:.6f} is {oldest.timestamp - timestamp:.6f}s "
                f"older than the retained history"
            )
        if timestamp <= oldest.timestamp:
            return oldest.replace(timestamp=timestamp)

        newest = self._entries[-1]
        if timestamp >= newest.timestamp:
            return newest.replace(timestamp=timestamp)

        stamps = [entry.timestamp for entry in self._entries]
        upper = bisect.bisect_right(stamps, timestamp)
        before = self._entries[upper - 1]
        after = self._entries[upper]
        span = after.timestamp - before.timestamp
        w = (timestamp - before.timestamp) / span if span > 0 else 1.0

        return RobotStateEstimate(
            angles=(1.0 - w) * before.angles + w * after.angles,
            offset=(1.0 - w) * before.offset + w * after.offset,
            angle_std=(1.0 - w) * before.angle_std + w * after.angle_std,
            timestamp=timestamp,
        )

    def shift_since(self, timestamp: float, angles_delta: np.ndarray,
                    offset_delta: np.ndarray) -> None:
        """Add a correction to every entry at or after ``timestamp``."""
        self._entries = deque(
            apply_delta(entry, angles_delta, offset_delta) if entry.timestamp >= timestamp else entry
            for entry in self._entries
        )

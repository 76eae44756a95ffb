"""
Pacing Clock
============

Absolute-deadline arithmetic for the fixed-rate capture loop.

Deadline n is always ``start + n * interval``. Deadlines are never
derived from the previous deadline plus an interval, so jitter in
tick duration cannot accumulate into phase error.

Skip Rule:
    When a tick finishes after one or more later deadlines have passed,
    those deadlines are skipped rather than run late.
"""

import math
import time
from typing import Callable, Optional, Tuple


class PacingClock:
    """
    Deadline scheduler for a target frame rate.

    Attributes:
        target_fps: Target ticks per second
        interval: Seconds between deadlines
        start_time: Time of deadline 0 (set by start())
        tick_index: Index of the last issued deadline (-1 before the first)
        last_tick_at: Time the last tick actually began
        lateness: How late the last tick began relative to its deadline
        max_lateness: Largest lateness seen since start()

    Example:
        clock = PacingClock(target_fps=25)
        clock.start()
        deadline, skipped = clock.next_deadline()
        ...  # sleep until deadline
        clock.mark_tick()
    """

    def __init__(
        self,
        target_fps: float = 25.0,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        if target_fps <= 0:
            raise ValueError("target_fps must be > 0")

        self.target_fps = target_fps
        self.interval = 1.0 / target_fps
        self._time_fn = time_fn

        self.start_time: Optional[float] = None
        self.tick_index: int = -1
        self.last_tick_at: Optional[float] = None
        self.lateness: float = 0.0
        self.max_lateness: float = 0.0

    @property
    def interval_ms(self) -> float:
        """Pacing interval in milliseconds."""
        return self.interval * 1000.0

    def now(self) -> float:
        """Current time on this clock's time source."""
        return self._time_fn()

    def start(self, at: Optional[float] = None) -> None:
        """Anchor deadline 0 at ``at`` (default: now) and reset tick state."""
        self.start_time = self.now() if at is None else at
        self.tick_index = -1
        self.last_tick_at = None
        self.lateness = 0.0
        self.max_lateness = 0.0

    def deadline(self, index: int) -> float:
        """Absolute time of deadline ``index``."""
        if self.start_time is None:
            raise RuntimeError("PacingClock not started")
        return self.start_time + index * self.interval

    def next_deadline(self) -> Tuple[float, int]:
        """
        Issue the next deadline that has not yet passed.

        Returns:
            Tuple of (deadline_time, skipped_count) where skipped_count is
            the number of deadlines that passed while the previous tick
            was still busy.
        """
        if self.start_time is None:
            raise RuntimeError("PacingClock not started")

        candidate = self.tick_index + 1
        now = self.now()
        if self.deadline(candidate) < now:
            # First deadline at or after now
            candidate = max(candidate, math.ceil((now - self.start_time) / self.interval))

        skipped = candidate - self.tick_index - 1
        self.tick_index = candidate
        return self.deadline(candidate), skipped

    def mark_tick(self) -> float:
        """
        Record that the current tick has begun.

        Returns:
            Lateness of this tick relative to its deadline, in seconds
        """
        now = self.now()
        self.last_tick_at = now
        self.lateness = max(0.0, now - self.deadline(self.tick_index))
        self.max_lateness = max(self.max_lateness, self.lateness)
        return self.lateness

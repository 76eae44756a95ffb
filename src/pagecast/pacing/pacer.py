"""
Frame Pacer
===========

Fixed-rate capture loop that feeds the encoder.

This module provides the FramePacer class which, at each absolute
deadline:
    - Captures one frame from the FrameSource
    - Writes it to the EncoderProcess
    - Drops the frame on capture failure or encoder backpressure
    - Exits when the encoder closes or capture failures exhaust their budget

Design Rules:
    - At most one capture+write cycle in flight (ticks are sequential)
    - Deadlines missed while busy are skipped, never queued or run late
    - Never blocks on the encoder beyond the per-tick write timeout
    - stop() is observed before the next deadline
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from pagecast.capture.source import FrameSource
from pagecast.encoder.supervisor import EncoderProcess
from pagecast.models.errors import CaptureError, WriteError, WriteErrorKind
from pagecast.models.state import PacerExit, TickOutcome
from pagecast.pacing.clock import PacingClock


logger = logging.getLogger(__name__)


class FramePacerMetrics:
    """Metrics for FramePacer observability."""

    __slots__ = (
        "ticks",
        "delivered",
        "capture_errors",
        "consecutive_capture_errors",
        "dropped_backpressure",
        "write_errors",
        "skipped_ticks",
        "last_sequence",
        "max_lateness_ms",
    )

    def __init__(self) -> None:
        self.ticks: int = 0
        self.delivered: int = 0
        self.capture_errors: int = 0
        self.consecutive_capture_errors: int = 0
        self.dropped_backpressure: int = 0
        self.write_errors: int = 0
        self.skipped_ticks: int = 0
        self.last_sequence: int = -1
        self.max_lateness_ms: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "ticks": self.ticks,
            "delivered": self.delivered,
            "capture_errors": self.capture_errors,
            "consecutive_capture_errors": self.consecutive_capture_errors,
            "dropped_backpressure": self.dropped_backpressure,
            "write_errors": self.write_errors,
            "skipped_ticks": self.skipped_ticks,
            "last_sequence": self.last_sequence,
            "max_lateness_ms": round(self.max_lateness_ms, 3),
        }


class FramePacer:
    """
    Paced capture-to-encoder loop.

    Attributes:
        source: FrameSource to capture from
        encoder: EncoderProcess to write to
        clock: PacingClock providing absolute deadlines
        write_timeout: Per-tick bound on the encoder drain wait (seconds)
        capture_failure_budget: Consecutive capture failures tolerated
        metrics: Operational metrics

    Example:
        pacer = FramePacer(source, encoder, PacingClock(target_fps=25))
        task = asyncio.create_task(pacer.run())
        ...
        pacer.stop()
        exit_reason = await task
    """

    def __init__(
        self,
        source: FrameSource,
        encoder: EncoderProcess,
        clock: PacingClock,
        write_timeout: Optional[float] = None,
        capture_failure_budget: int = 75,
        log_every: int = 250,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        """
        Initialize frame pacer.

        Args:
            source: FrameSource to capture from
            encoder: EncoderProcess to write frames to
            clock: PacingClock (its interval defines the target rate)
            write_timeout: Drain timeout per write (None = one interval)
            capture_failure_budget: Consecutive failures before CAPTURE_EXHAUSTED
            log_every: Ticks between summary log lines
            sleep: Replacement for the stop-interruptible wait, for
                driving the pacer on a virtual clock
        """
        if capture_failure_budget < 1:
            raise ValueError("capture_failure_budget must be >= 1")

        self.source = source
        self.encoder = encoder
        self.clock = clock
        self.write_timeout = write_timeout if write_timeout is not None else clock.interval
        self.capture_failure_budget = capture_failure_budget
        self.log_every = log_every
        self._sleep = sleep

        self._stop_event = asyncio.Event()
        self._running: bool = False
        self._capture_in_progress: bool = False

        self.metrics = FramePacerMetrics()

    @property
    def running(self) -> bool:
        """Whether run() is currently looping."""
        return self._running

    @property
    def capture_in_progress(self) -> bool:
        """Whether a capture is currently in flight."""
        return self._capture_in_progress

    async def run(self) -> PacerExit:
        """
        Run the tick loop until stopped or interrupted.

        Returns:
            PacerExit describing why the loop ended
        """
        if self._running:
            raise RuntimeError("FramePacer is already running")

        self._running = True
        self._stop_event.clear()
        self.metrics.consecutive_capture_errors = 0
        self.clock.start()

        logger.info(
            f"FramePacer started: {self.clock.target_fps:g} fps "
            f"({self.clock.interval_ms:.1f}ms interval)"
        )

        exit_reason = PacerExit.STOPPED
        try:
            while not self._stop_event.is_set():
                deadline, skipped = self.clock.next_deadline()
                if skipped:
                    self.metrics.skipped_ticks += skipped
                    logger.debug(f"Skipped {skipped} tick(s), previous tick overran")

                if not await self._wait_until(deadline):
                    break

                lateness = self.clock.mark_tick()
                self.metrics.max_lateness_ms = max(
                    self.metrics.max_lateness_ms, lateness * 1000.0
                )

                outcome = await self.tick()

                if outcome is TickOutcome.ENCODER_CLOSED:
                    exit_reason = PacerExit.ENCODER_CLOSED
                    break
                if outcome is TickOutcome.CAPTURE_EXHAUSTED:
                    exit_reason = PacerExit.CAPTURE_EXHAUSTED
                    break

                if self.metrics.ticks % self.log_every == 0:
                    logger.info(f"FramePacer: {self.metrics.to_dict()}")
        finally:
            self._running = False
            self._capture_in_progress = False

        logger.info(f"FramePacer stopped: {exit_reason.value}")
        return exit_reason

    def stop(self) -> None:
        """Signal the loop to exit before its next deadline."""
        self._stop_event.set()

    async def tick(self) -> TickOutcome:
        """
        Run one capture+write cycle.

        Returns:
            TickOutcome for this tick
        """
        self.metrics.ticks += 1

        self._capture_in_progress = True
        try:
            frame = await self.source.capture()
        except CaptureError as e:
            self.metrics.capture_errors += 1
            self.metrics.consecutive_capture_errors += 1
            logger.warning(
                f"Capture failed ({self.metrics.consecutive_capture_errors}/"
                f"{self.capture_failure_budget}): {e}"
            )
            if self.metrics.consecutive_capture_errors >= self.capture_failure_budget:
                logger.error(
                    f"Capture failure budget exhausted after "
                    f"{self.metrics.consecutive_capture_errors} consecutive failures"
                )
                return TickOutcome.CAPTURE_EXHAUSTED
            return TickOutcome.CAPTURE_FAILED
        finally:
            self._capture_in_progress = False

        self.metrics.consecutive_capture_errors = 0
        self.metrics.last_sequence = frame.sequence

        try:
            await self.encoder.write(frame, timeout=self.write_timeout)
        except WriteError as e:
            if e.kind is WriteErrorKind.BUFFER_FULL:
                self.metrics.dropped_backpressure += 1
                logger.debug(f"Dropped frame {frame.sequence}: encoder busy ({e.message})")
                return TickOutcome.DROPPED_BACKPRESSURE
            if e.kind is WriteErrorKind.CLOSED:
                logger.warning(f"Encoder closed while writing frame {frame.sequence}: {e.message}")
                return TickOutcome.ENCODER_CLOSED
            self.metrics.write_errors += 1
            logger.error(f"Write failed for frame {frame.sequence}: {e}")
            return TickOutcome.WRITE_FAILED

        self.metrics.delivered += 1
        return TickOutcome.DELIVERED

    async def _wait_until(self, deadline: float) -> bool:
        """
        Wait until ``deadline`` unless stopped first.

        Returns:
            True if the deadline was reached, False if stop() was called
        """
        delay = deadline - self.clock.now()

        if self._sleep is not None:
            if delay > 0:
                await self._sleep(delay)
            return not self._stop_event.is_set()

        if delay <= 0:
            return not self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return False
        except asyncio.TimeoutError:
            return not self._stop_event.is_set()

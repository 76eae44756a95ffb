"""
Stream Session
==============

Top-level state machine composing FrameSource, EncoderProcess and
FramePacer.

This module provides the StreamSession class which:
    - Launches the renderer and encoder under a bounded retry budget
    - Supervises the pacer and polls encoder health while streaming
    - Restarts a crashed encoder under a bounded retry budget (DEGRADED)
    - Terminates on stop(), exhausted budgets or capture failure
    - Releases every resource exactly once on entering TERMINATED

Design Rules:
    - Pacer only runs while STREAMING
    - Frames are not captured or queued while DEGRADED
    - Only the supervisor restarts the encoder, and only with the pacer stopped
    - Every retry path has an attempt ceiling
"""

import asyncio
import logging
import time
from typing import List, Optional, Tuple

from pagecast.capture.renderer import PlaywrightRenderer, Renderer
from pagecast.capture.source import FrameSource
from pagecast.config import PacingConfig, Settings
from pagecast.encoder.command import build_ffmpeg_command
from pagecast.encoder.process import ProcessLauncher, launch_subprocess
from pagecast.encoder.supervisor import EncoderProcess
from pagecast.models.errors import CaptureError, LaunchError
from pagecast.models.state import (
    EncoderHealth,
    PacerExit,
    SessionSnapshot,
    SessionState,
    TransitionRecord,
)
from pagecast.pacing.clock import PacingClock
from pagecast.pacing.pacer import FramePacer
from pagecast.session.transitions import RetryPolicy, check_transition


logger = logging.getLogger(__name__)


# Outer bound on FrameSource.open() beyond the page-load timeout (browser launch)
BROWSER_LAUNCH_ALLOWANCE_SECONDS = 15.0


class StreamSession:
    """
    Supervisor for one page-to-stream run.

    Attributes:
        source: FrameSource (renderer connection)
        encoder: EncoderProcess (subprocess supervision)
        pacer: FramePacer (tick loop)
        launch_policy: Retry budget for the initial launch
        restart_policy: Retry budget for consecutive encoder restarts
        stability_window: Seconds a restored pipeline must deliver frames
            before the restart budget is refilled
        health_check_interval: Seconds between encoder health polls
        restarts: Number of successful encoder restarts
        failed: Whether the session terminated on a fatal failure
        termination_reason: Why the session terminated

    Example:
        session = StreamSession.from_settings(settings)
        if await session.start():
            ...
        await session.stop()
    """

    def __init__(
        self,
        source: FrameSource,
        encoder: EncoderProcess,
        pacer: Optional[FramePacer] = None,
        launch_policy: Optional[RetryPolicy] = None,
        restart_policy: Optional[RetryPolicy] = None,
        health_check_interval: float = 1.0,
        stability_window: float = 5.0,
    ) -> None:
        if health_check_interval <= 0:
            raise ValueError("health_check_interval must be > 0")
        if stability_window < 0:
            raise ValueError("stability_window must be >= 0")

        self.source = source
        self.encoder = encoder
        self.pacer = pacer or FramePacer(
            source,
            encoder,
            PacingClock(target_fps=PacingConfig().target_fps),
        )
        self.launch_policy = launch_policy or RetryPolicy()
        self.restart_policy = restart_policy or RetryPolicy()
        self.health_check_interval = health_check_interval
        self.stability_window = stability_window

        # State
        self._state = SessionState.IDLE
        self._history: List[TransitionRecord] = []
        self._stop_event = asyncio.Event()
        self._terminated_event = asyncio.Event()
        self._launch_task: Optional[asyncio.Task] = None
        self._supervisor_task: Optional[asyncio.Task] = None
        self._pacer_task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None

        self.restarts: int = 0
        self._restart_attempts: int = 0
        self.failed: bool = False
        self.termination_reason: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        renderer: Optional[Renderer] = None,
        launcher: Optional[ProcessLauncher] = None,
    ) -> "StreamSession":
        """
        Build the full pipeline from configuration.

        Args:
            settings: Loaded Settings
            renderer: Renderer override (default: PlaywrightRenderer)
            launcher: Process launcher override (default: asyncio subprocess)
        """
        capture = settings.capture
        interval = settings.pacing.interval_seconds

        if renderer is None:
            renderer = PlaywrightRenderer(
                width=capture.width,
                height=capture.height,
                navigation_timeout_ms=capture.navigation_timeout_ms,
                browser_args=capture.browser_args,
            )

        source = FrameSource(
            renderer,
            settings.page_url(),
            timeout=capture.timeout_ms / 1000.0 if capture.timeout_ms else interval,
            image_format=capture.image_format,
            quality=capture.quality,
            navigation_timeout=(
                capture.navigation_timeout_ms / 1000.0 + BROWSER_LAUNCH_ALLOWANCE_SECONDS
            ),
        )

        enc = settings.encoder
        encoder = EncoderProcess(
            build_ffmpeg_command(enc, settings.pacing.target_fps),
            launcher=launcher or launch_subprocess,
            startup_grace=enc.startup_grace_ms / 1000.0,
            stop_grace=enc.stop_grace_ms / 1000.0,
            stall_timeout=enc.stall_timeout_seconds,
            max_pending_bytes=enc.max_pending_bytes,
        )

        pacer = FramePacer(
            source,
            encoder,
            PacingClock(target_fps=settings.pacing.target_fps),
            write_timeout=enc.write_timeout_ms / 1000.0 if enc.write_timeout_ms else None,
            capture_failure_budget=settings.pacing.capture_failure_budget,
            log_every=settings.pacing.log_every,
        )

        sess = settings.session
        return cls(
            source,
            encoder,
            pacer,
            launch_policy=RetryPolicy(
                attempts=sess.launch_attempts,
                initial_backoff=sess.backoff_initial_seconds,
                multiplier=sess.backoff_multiplier,
                max_backoff=sess.backoff_max_seconds,
            ),
            restart_policy=RetryPolicy(
                attempts=sess.restart_attempts,
                initial_backoff=sess.backoff_initial_seconds,
                multiplier=sess.backoff_multiplier,
                max_backoff=sess.backoff_max_seconds,
            ),
            health_check_interval=sess.health_check_interval_seconds,
            stability_window=sess.restart_stability_seconds,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def history(self) -> List[TransitionRecord]:
        """Recorded state transitions, oldest first."""
        return list(self._history)

    @property
    def terminated(self) -> bool:
        """Whether the session has reached TERMINATED."""
        return self._state is SessionState.TERMINATED

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def start(self) -> bool:
        """
        Launch the pipeline and begin streaming.

        Returns:
            True if the session reached STREAMING, False if it terminated
            during launch (budget exhausted or stopped)
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Cannot start session in state: {self._state.value}")

        self._started_at = time.time()
        self._transition(SessionState.LAUNCHING, "start")

        self._launch_task = asyncio.create_task(self._launch(), name="stream_session_launch")
        try:
            launched = await self._launch_task
        except asyncio.CancelledError:
            if not self._stop_event.is_set():
                raise
            launched = False
        finally:
            self._launch_task = None

        if self._state is SessionState.TERMINATED:
            return False

        if not launched:
            if self._stop_event.is_set():
                await self._terminate("stopped during launch", failed=False)
            else:
                await self._terminate("launch retry budget exhausted", failed=True)
            return False

        self._transition(SessionState.STREAMING, "launched")
        self._supervisor_task = asyncio.create_task(
            self._supervise(),
            name="stream_session_supervisor",
        )
        return True

    async def stop(self) -> None:
        """
        Stop the session and release all resources.

        Idempotent: later calls wait for the first release to finish and
        leave the state TERMINATED.
        """
        if self._state is SessionState.TERMINATED:
            await self._terminated_event.wait()
            return

        logger.info("StreamSession stopping...")
        self._stop_event.set()
        self.pacer.stop()

        launch_task = self._launch_task
        if launch_task is not None and not launch_task.done():
            launch_task.cancel()
            try:
                await launch_task
            except asyncio.CancelledError:
                pass

        supervisor = self._supervisor_task
        if (
            supervisor is not None
            and supervisor is not asyncio.current_task()
            and not supervisor.done()
            and self._state is not SessionState.TERMINATED
        ):
            supervisor.cancel()
            try:
                await supervisor
            except asyncio.CancelledError:
                pass

        await self._terminate("stopped", failed=False)

    async def wait_terminated(self) -> None:
        """Wait until the session has terminated and released its resources."""
        await self._terminated_event.wait()

    async def run(self) -> SessionSnapshot:
        """
        Start the session and wait for it to terminate.

        Returns:
            Final SessionSnapshot
        """
        await self.start()
        await self.wait_terminated()
        return self.snapshot()

    def snapshot(self) -> SessionSnapshot:
        """Get a point-in-time view of the session."""
        uptime = 0.0
        if self._started_at is not None:
            uptime = round(time.time() - self._started_at, 1)
        return SessionSnapshot(
            state=self._state,
            failed=self.failed,
            termination_reason=self.termination_reason,
            started_at=self._started_at,
            uptime_seconds=uptime,
            restarts=self.restarts,
            pacer=self.pacer.metrics.to_dict(),
            encoder=self.encoder.metrics_dict(),
            history=self.history,
        )

    # -------------------------------------------------------------------------
    # Launch
    # -------------------------------------------------------------------------

    async def _launch(self) -> bool:
        """Open the frame source and start the encoder within the launch budget."""
        policy = self.launch_policy
        for attempt in range(1, policy.attempts + 1):
            try:
                if not self.source.connected:
                    await self.source.open()
                await self.encoder.start()
                logger.info(f"Pipeline launched (attempt {attempt}/{policy.attempts})")
                return True
            except (LaunchError, CaptureError) as e:
                logger.error(f"Launch attempt {attempt}/{policy.attempts} failed: {e}")

            if attempt < policy.attempts:
                delay = policy.backoff(attempt)
                logger.info(f"Retrying launch in {delay:.1f}s")
                if not await self._backoff(delay):
                    return False
        return False

    # -------------------------------------------------------------------------
    # Supervision
    # -------------------------------------------------------------------------

    async def _supervise(self) -> None:
        """Run the pacer, recover from encoder failures, escalate when budgets run out."""
        try:
            while True:
                exit_reason, cause = await self._run_pipeline()

                if exit_reason is PacerExit.STOPPED or self._stop_event.is_set():
                    return

                if exit_reason is PacerExit.CAPTURE_EXHAUSTED:
                    await self._terminate("capture failure budget exhausted", failed=True)
                    return

                self._transition(SessionState.DEGRADED, cause)
                if not await self._restart_encoder():
                    if self._stop_event.is_set():
                        return
                    await self._terminate("encoder restart budget exhausted", failed=True)
                    return

                self.restarts += 1
                self._transition(SessionState.STREAMING, "encoder restarted")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Session supervisor failed: {e}")
            await self._terminate(f"supervisor error: {e}", failed=True)

    async def _run_pipeline(self) -> Tuple[PacerExit, str]:
        """
        Run the pacer alongside the encoder health watcher.

        Returns:
            Tuple of (pacer exit reason, transition cause)
        """
        self._pacer_task = asyncio.create_task(self.pacer.run(), name="frame_pacer")
        health_task = asyncio.create_task(self._watch_encoder(), name="encoder_health")
        try:
            done, _ = await asyncio.wait(
                {self._pacer_task, health_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if self._pacer_task in done:
                exit_reason = self._pacer_task.result()
                return exit_reason, exit_reason.value
            return PacerExit.ENCODER_CLOSED, "ENCODER_CRASHED"
        finally:
            health_task.cancel()
            try:
                await health_task
            except asyncio.CancelledError:
                pass
            await self._stop_pacer()

    async def _watch_encoder(self) -> None:
        """
        Return once the encoder reports CRASHED.

        Also refills the restart budget once the pipeline has delivered
        frames for ``stability_window`` seconds.
        """
        started = time.monotonic()
        delivered_at_start = self.pacer.metrics.delivered
        while True:
            await asyncio.sleep(self.health_check_interval)
            if self.encoder.health_check() is EncoderHealth.CRASHED:
                logger.warning("Encoder health check reported CRASHED")
                return

            if (
                self._restart_attempts
                and time.monotonic() - started >= self.stability_window
                and self.pacer.metrics.delivered > delivered_at_start
            ):
                logger.info(
                    f"Pipeline stable for {self.stability_window:.1f}s, "
                    f"restart budget reset"
                )
                self._restart_attempts = 0

    async def _stop_pacer(self) -> None:
        """Stop the pacer, cancelling any in-flight tick after one interval."""
        task = self._pacer_task
        self._pacer_task = None
        if task is None:
            return

        self.pacer.stop()
        if task.done():
            return
        try:
            await asyncio.wait_for(task, timeout=self.pacer.clock.interval)
        except asyncio.TimeoutError:
            logger.warning("FramePacer did not stop within one interval, tick abandoned")

    async def _restart_encoder(self) -> bool:
        """
        Replace the encoder subprocess within the restart budget.

        The attempt count carries over between degraded episodes until the
        pipeline proves stable, so an encoder that starts and then fails at
        once cannot restart forever. Every attempt waits its backoff first.
        """
        await self.encoder.stop()

        policy = self.restart_policy
        while self._restart_attempts < policy.attempts:
            self._restart_attempts += 1
            attempt = self._restart_attempts
            delay = policy.backoff(attempt)
            logger.info(f"Restarting encoder in {delay:.1f}s (attempt {attempt}/{policy.attempts})")
            if not await self._backoff(delay):
                return False
            try:
                await self.encoder.start()
                logger.info(f"Encoder restarted (attempt {attempt}/{policy.attempts})")
                return True
            except LaunchError as e:
                logger.error(f"Encoder restart attempt {attempt}/{policy.attempts} failed: {e}")
        return False

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _backoff(self, delay: float) -> bool:
        """
        Wait ``delay`` seconds unless stopped first.

        Returns:
            True if the full delay elapsed, False if stop() was called
        """
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return False
        except asyncio.TimeoutError:
            return True

    def _transition(self, target: SessionState, reason: str) -> None:
        check_transition(self._state, target)
        record = TransitionRecord(
            timestamp=time.time(),
            from_state=self._state,
            to_state=target,
            reason=reason,
        )
        self._history.append(record)
        logger.info(f"Session {self._state.value} → {target.value} ({reason})")
        self._state = target

    async def _terminate(self, reason: str, failed: bool) -> None:
        """Enter TERMINATED and release pacer, encoder and renderer once."""
        if self._state is SessionState.TERMINATED:
            await self._terminated_event.wait()
            return

        self._transition(SessionState.TERMINATED, reason)
        self.failed = failed
        self.termination_reason = reason
        self._stop_event.set()

        if failed:
            logger.critical(f"Stream session terminated: {reason}")
        else:
            logger.info(f"Stream session terminated: {reason}")

        try:
            await self._stop_pacer()
            await self.encoder.stop()
        finally:
            try:
                await self.source.close()
            finally:
                self._terminated_event.set()

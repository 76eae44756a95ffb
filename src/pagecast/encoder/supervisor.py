"""
Encoder Process Supervisor
==========================

Lifecycle and flow control for the external encoder subprocess.

This module provides the EncoderProcess class which:
    - Launches the encoder and rejects processes that exit immediately
    - Writes frames to the encoder's stdin without blocking the pacer
    - Monitors stderr for progress heartbeats and error lines
    - Reports liveness through a non-blocking health check
    - Stops the process with SIGTERM, escalating to SIGKILL

Design Rules:
    - Exactly one subprocess handle is live at a time
    - A restart creates a new handle; a crashed handle is never reused
    - BUFFER_FULL is backpressure, never a crash
    - Reading stderr never blocks frame delivery (separate task)
"""

import asyncio
import logging
import re
import time
from collections import deque
from typing import Callable, Deque, List, Optional

from pagecast.encoder.process import ProcessHandle, ProcessLauncher, launch_subprocess
from pagecast.models.errors import (
    LaunchError,
    LaunchErrorKind,
    WriteError,
    WriteErrorKind,
)
from pagecast.models.frame import Frame
from pagecast.models.state import EncoderHealth, EncoderState


logger = logging.getLogger(__name__)


# ffmpeg progress lines look like "frame=  123 fps= 25 q=23.0 size= ..."
HEARTBEAT_MARKER = "frame="

ERROR_MARKERS = (
    "error",
    "failed",
    "invalid",
    "refused",
    "broken pipe",
    "could not",
    "unable to",
)

STDERR_TAIL_LINES = 20
STDERR_CHUNK_BYTES = 4096

_LINE_SPLIT = re.compile(r"[\r\n]")


class EncoderMetrics:
    """Metrics for EncoderProcess observability."""

    __slots__ = (
        "starts",
        "crashes",
        "frames_written",
        "bytes_written",
        "buffer_full",
        "io_failures",
        "heartbeats",
        "diagnostic_errors",
    )

    def __init__(self) -> None:
        self.starts: int = 0
        self.crashes: int = 0
        self.frames_written: int = 0
        self.bytes_written: int = 0
        self.buffer_full: int = 0
        self.io_failures: int = 0
        self.heartbeats: int = 0
        self.diagnostic_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {name: getattr(self, name) for name in self.__slots__}


class EncoderProcess:
    """
    Supervisor for one external encoder subprocess at a time.

    Attributes:
        argv: Encoder argument vector (executable first)
        startup_grace: Seconds a new process must survive to count as started
        stop_grace: Seconds to wait after SIGTERM before SIGKILL
        stall_timeout: Seconds without a heartbeat before reporting CRASHED (0 = off)
        max_pending_bytes: Pending stdin bytes at which writes report BUFFER_FULL
        metrics: Operational metrics

    Example:
        encoder = EncoderProcess(build_ffmpeg_command(config, fps=25))
        await encoder.start()
        await encoder.write(frame)
        if encoder.health_check() is EncoderHealth.CRASHED:
            await encoder.stop()
            await encoder.start()
    """

    def __init__(
        self,
        argv: List[str],
        launcher: ProcessLauncher = launch_subprocess,
        startup_grace: float = 0.5,
        stop_grace: float = 3.0,
        stall_timeout: float = 10.0,
        max_pending_bytes: int = 4 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not argv:
            raise ValueError("argv must not be empty")
        if max_pending_bytes < 1:
            raise ValueError("max_pending_bytes must be >= 1")

        self.argv = list(argv)
        self.startup_grace = startup_grace
        self.stop_grace = stop_grace
        self.stall_timeout = stall_timeout
        self.max_pending_bytes = max_pending_bytes
        self._launcher = launcher
        self._clock = clock

        # Handle state
        self._state = EncoderState.NOT_STARTED
        self._process: Optional[ProcessHandle] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._started_at: Optional[float] = None
        self._last_heartbeat: Optional[float] = None
        self._last_progress: str = ""
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        self.metrics = EncoderMetrics()

    @property
    def state(self) -> EncoderState:
        """Current lifecycle state."""
        return self._state

    @property
    def pid(self) -> Optional[int]:
        """PID of the live subprocess, if any."""
        return self._process.pid if self._process is not None else None

    @property
    def stderr_tail(self) -> List[str]:
        """Most recent non-progress diagnostic lines."""
        return list(self._stderr_tail)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Launch a new encoder subprocess.

        Raises:
            LaunchError: NOT_FOUND if the executable cannot be run,
                IMMEDIATE_EXIT if it exits within the startup grace period
            RuntimeError: A subprocess is already live
        """
        if self._process is not None or self._state in (
            EncoderState.STARTING,
            EncoderState.RUNNING,
        ):
            raise RuntimeError(f"Cannot start encoder in state: {self._state.value}")

        self._state = EncoderState.STARTING
        self._stderr_tail.clear()
        self._last_heartbeat = None
        self._last_progress = ""
        self.metrics.starts += 1

        try:
            process = await self._launcher(self.argv)
        except (FileNotFoundError, PermissionError) as e:
            self._state = EncoderState.STOPPED
            raise LaunchError(
                LaunchErrorKind.NOT_FOUND,
                f"cannot execute {self.argv[0]!r}: {e}",
            ) from e
        except OSError as e:
            self._state = EncoderState.STOPPED
            raise LaunchError(LaunchErrorKind.NOT_FOUND, f"spawn failed: {e}") from e

        self._process = process
        self._started_at = self._clock()
        self._monitor_task = asyncio.create_task(
            self._monitor_stderr(process),
            name="encoder_stderr_monitor",
        )
        self._raise_write_buffer_limit(process)

        exit_code = process.returncode
        if exit_code is None and self.startup_grace > 0:
            try:
                exit_code = await asyncio.wait_for(process.wait(), timeout=self.startup_grace)
            except asyncio.TimeoutError:
                exit_code = None

        if exit_code is not None:
            await self._finish_monitor(timeout=1.0)
            self._process = None
            self._state = EncoderState.STOPPED
            tail = " | ".join(list(self._stderr_tail)[-5:]) or "no diagnostic output"
            raise LaunchError(
                LaunchErrorKind.IMMEDIATE_EXIT,
                f"encoder exited with code {exit_code}: {tail}",
            )

        self._state = EncoderState.RUNNING
        logger.info(f"Encoder running (pid={process.pid})")

    async def stop(self) -> None:
        """
        Terminate the subprocess and drop its handle.

        Closes stdin, sends SIGTERM, waits up to ``stop_grace`` seconds,
        then sends SIGKILL. Safe to call in any state.
        """
        process = self._process
        if process is None:
            if self._state is not EncoderState.NOT_STARTED:
                self._state = EncoderState.STOPPED
            return

        # Dropped first so nothing writes to a handle being torn down
        self._process = None

        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError as e:
                logger.debug(f"Encoder stdin close failed: {e}")

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_grace)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Encoder (pid={process.pid}) ignored SIGTERM for "
                    f"{self.stop_grace:.1f}s, killing"
                )
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        await self._finish_monitor(timeout=0)
        self._state = EncoderState.STOPPED
        logger.info(f"Encoder stopped (pid={process.pid}, exit code={process.returncode})")

    # -------------------------------------------------------------------------
    # Frame delivery
    # -------------------------------------------------------------------------

    async def write(self, frame: Frame, timeout: Optional[float] = None) -> None:
        """
        Write one frame to the encoder's stdin.

        The drain wait is bounded by ``timeout``; a frame whose bytes are
        accepted into the pipe buffer counts as written even if the drain
        times out, and later writes then see BUFFER_FULL.

        Args:
            frame: Frame to deliver
            timeout: Maximum seconds to wait for the pipe to drain

        Raises:
            WriteError: BUFFER_FULL, CLOSED or IO_FAILURE
        """
        process = self._process
        if self._state is not EncoderState.RUNNING or process is None:
            raise WriteError(WriteErrorKind.CLOSED, f"encoder is {self._state.value}")

        if process.returncode is not None:
            self._mark_crashed(f"exited with code {process.returncode}")
            raise WriteError(WriteErrorKind.CLOSED, "encoder process has exited")

        stdin = process.stdin
        if stdin is None or stdin.is_closing():
            self._mark_crashed("stdin pipe closed")
            raise WriteError(WriteErrorKind.CLOSED, "encoder stdin is closed")

        pending = stdin.transport.get_write_buffer_size()
        if pending >= self.max_pending_bytes:
            self.metrics.buffer_full += 1
            raise WriteError(WriteErrorKind.BUFFER_FULL, f"{pending} bytes pending")

        try:
            stdin.write(frame.data)
            if timeout is None:
                await stdin.drain()
            else:
                await asyncio.wait_for(stdin.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Drain timed out for frame {frame.sequence}, bytes queued in pipe")
        except (BrokenPipeError, ConnectionResetError) as e:
            self._mark_crashed(f"pipe broken: {e}")
            raise WriteError(WriteErrorKind.CLOSED, str(e)) from e
        except OSError as e:
            self.metrics.io_failures += 1
            raise WriteError(WriteErrorKind.IO_FAILURE, str(e)) from e

        self.metrics.frames_written += 1
        self.metrics.bytes_written += len(frame.data)

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def health_check(self) -> EncoderHealth:
        """
        Non-blocking liveness check.

        Returns CRASHED when the process has exited, its pipe broke, or no
        progress heartbeat arrived within ``stall_timeout``. States other
        than RUNNING and CRASHED report HEALTHY since nothing has failed.
        """
        if self._state is EncoderState.CRASHED:
            return EncoderHealth.CRASHED
        if self._state is not EncoderState.RUNNING or self._process is None:
            return EncoderHealth.HEALTHY

        if self._process.returncode is not None:
            self._mark_crashed(f"exited with code {self._process.returncode}")
            return EncoderHealth.CRASHED

        if self.stall_timeout > 0:
            reference = self._last_heartbeat if self._last_heartbeat is not None else self._started_at
            silent_for = self._clock() - reference
            if silent_for > self.stall_timeout:
                self._mark_crashed(f"no progress heartbeat for {silent_for:.1f}s")
                return EncoderHealth.CRASHED

        return EncoderHealth.HEALTHY

    def metrics_dict(self) -> dict:
        """Get encoder metrics for observability."""
        heartbeat_age = None
        if self._last_heartbeat is not None:
            heartbeat_age = round(self._clock() - self._last_heartbeat, 3)
        return {
            "state": self._state.value,
            "pid": self.pid,
            "last_heartbeat_age": heartbeat_age,
            "last_progress": self._last_progress,
            **self.metrics.to_dict(),
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _mark_crashed(self, reason: str) -> None:
        if self._state is EncoderState.RUNNING:
            self._state = EncoderState.CRASHED
            self.metrics.crashes += 1
            logger.error(f"Encoder crashed (pid={self.pid}): {reason}")

    def _raise_write_buffer_limit(self, process: ProcessHandle) -> None:
        """Let drain() return immediately until max_pending_bytes is reached."""
        if process.stdin is None:
            return
        transport = process.stdin.transport
        if hasattr(transport, "set_write_buffer_limits"):
            transport.set_write_buffer_limits(high=self.max_pending_bytes)

    async def _monitor_stderr(self, process: ProcessHandle) -> None:
        """Consume stderr until EOF, then detect an unexpected exit."""
        stream = process.stderr
        if stream is not None:
            pending = ""
            try:
                while True:
                    chunk = await stream.read(STDERR_CHUNK_BYTES)
                    if not chunk:
                        break
                    pending += chunk.decode("utf-8", errors="replace")
                    *lines, pending = _LINE_SPLIT.split(pending)
                    for line in lines:
                        self._handle_diagnostic_line(line)
            except OSError as e:
                logger.warning(f"Encoder stderr read failed: {e}")
            if pending:
                self._handle_diagnostic_line(pending)

        exit_code = await process.wait()
        if self._process is process:
            self._mark_crashed(f"exited with code {exit_code}")

    def _handle_diagnostic_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return

        if HEARTBEAT_MARKER in line:
            self._last_heartbeat = self._clock()
            self._last_progress = line
            self.metrics.heartbeats += 1
            logger.debug(f"Encoder progress: {line}")
            return

        self._stderr_tail.append(line)
        lowered = line.lower()
        if any(marker in lowered for marker in ERROR_MARKERS):
            self.metrics.diagnostic_errors += 1
            logger.warning(f"Encoder: {line}")
        else:
            logger.info(f"Encoder: {line}")

    async def _finish_monitor(self, timeout: float) -> None:
        """Let the stderr monitor drain for up to ``timeout`` seconds, then cancel it."""
        task = self._monitor_task
        self._monitor_task = None
        if task is None:
            return
        if timeout > 0:
            await asyncio.wait({task}, timeout=timeout)
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

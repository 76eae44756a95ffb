"""
Test Configuration
==================

Pytest fixtures and test doubles for PageCast.

The fakes stand in for the two external boundaries: the headless
renderer and the encoder subprocess. FakeProcess mirrors the parts of
asyncio.subprocess.Process that EncoderProcess touches.
"""

import asyncio
import os
import tempfile
from typing import Callable, List, Optional

import pytest

# Keep the service's content directory out of the working tree
os.environ.setdefault("PAGECAST_CONTENT_DIR", tempfile.mkdtemp(prefix="pagecast-test-"))

from pagecast.models.errors import RendererError  # noqa: E402


# =============================================================================
# Helpers
# =============================================================================

async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Renderer
# =============================================================================

class FakeRenderer:
    """
    Renderer double.

    Attributes:
        connect_failures: Number of connect() calls that fail before succeeding
        capture_errors: Exceptions raised by upcoming capture() calls, in order
        capture_delay: Real seconds each capture takes
        on_capture: Hook called with the capture number before returning
    """

    def __init__(self) -> None:
        self.connected = False
        self.connect_failures = 0
        self.connect_calls = 0
        self.close_calls = 0
        self.captures = 0
        self.capture_errors: List[Exception] = []
        self.always_fail: Optional[Exception] = None
        self.capture_delay = 0.0
        self.on_capture: Optional[Callable[[int], None]] = None

    async def connect(self, url: str) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.connect_failures:
            raise RendererError(f"cannot reach {url}")
        self.connected = True

    async def capture(self, image_format: str = "jpeg", quality: int = 80) -> bytes:
        if self.capture_delay:
            await asyncio.sleep(self.capture_delay)
        if self.always_fail is not None:
            raise self.always_fail
        if self.capture_errors:
            raise self.capture_errors.pop(0)
        self.captures += 1
        if self.on_capture is not None:
            self.on_capture(self.captures)
        return f"frame-{self.captures}".encode()

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False


# =============================================================================
# Encoder subprocess
# =============================================================================

class FakeTransport:
    def __init__(self) -> None:
        self.buffer_size = 0
        self.high_water: Optional[int] = None

    def get_write_buffer_size(self) -> int:
        return self.buffer_size

    def set_write_buffer_limits(self, high=None, low=None) -> None:
        self.high_water = high


class FakeStdin:
    """
    Pipe writer double.

    Attributes:
        writes: Data accepted, in order
        fail_at: 1-based write number that raises ``failure``
    """

    def __init__(self) -> None:
        self.transport = FakeTransport()
        self.writes: List[bytes] = []
        self.closed = False
        self.fail_at: Optional[int] = None
        self.failure: Exception = BrokenPipeError("Broken pipe")
        self.drain_delay = 0.0
        self._attempts = 0

    def write(self, data: bytes) -> None:
        self._attempts += 1
        if self.fail_at is not None and self._attempts >= self.fail_at:
            raise self.failure
        self.writes.append(data)

    async def drain(self) -> None:
        if self.drain_delay:
            await asyncio.sleep(self.drain_delay)

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True


class FakeStderr:
    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()

    def feed(self, text: str) -> None:
        self._queue.put_nowait(text.encode())

    def feed_eof(self) -> None:
        self._queue.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._queue.get()


class FakeProcess:
    """
    Encoder subprocess double.

    Attributes:
        ignore_terminate: If True, terminate() does not end the process
    """

    _next_pid = 1000

    def __init__(self) -> None:
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.stdin = FakeStdin()
        self.stderr = FakeStderr()
        self.returncode: Optional[int] = None
        self.ignore_terminate = False
        self.terminate_calls = 0
        self.kill_calls = 0
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit(-9)


class FakeLauncher:
    """
    ProcessLauncher double.

    Each call consumes the next entry of ``plan``: an exception to raise,
    a callable that configures the new FakeProcess, or None. Once the
    plan is empty every call uses ``default``, which is None (a healthy
    process) unless given.
    """

    def __init__(self, plan: Optional[list] = None, default=None) -> None:
        self.plan = list(plan or [])
        self.default = default
        self.calls: List[List[str]] = []
        self.processes: List[FakeProcess] = []

    async def __call__(self, argv: List[str]) -> FakeProcess:
        self.calls.append(list(argv))
        step = self.plan.pop(0) if self.plan else self.default
        if isinstance(step, BaseException):
            raise step
        process = FakeProcess()
        if step is not None:
            step(process)
        self.processes.append(process)
        return process


class FakeEncoder:
    """EncoderProcess stand-in for pacer tests."""

    def __init__(self) -> None:
        self.frames = []
        self.errors: List[Exception] = []

    async def write(self, frame, timeout=None) -> None:
        if self.errors:
            raise self.errors.pop(0)
        self.frames.append(frame)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_clock():
    """Provide a manually advanced clock starting at 0."""
    return FakeClock()


@pytest.fixture
def renderer():
    """Provide a connected-on-demand FakeRenderer."""
    return FakeRenderer()


@pytest.fixture
def launcher():
    """Provide a FakeLauncher that always yields healthy processes."""
    return FakeLauncher()


@pytest.fixture
def fake_encoder():
    """Provide a FakeEncoder that accepts every frame."""
    return FakeEncoder()


@pytest.fixture
def content_dir(tmp_path):
    """Provide an empty content directory."""
    path = tmp_path / "content"
    path.mkdir()
    return path

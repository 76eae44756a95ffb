"""
Stream Session Tests
====================

Launch, recovery and termination of the full pipeline with a fake
renderer and fake encoder subprocesses.
"""

import asyncio

import pytest

from conftest import FakeLauncher, FakeRenderer, wait_until
from pagecast.capture.source import FrameSource
from pagecast.config import PacingConfig, Settings
from pagecast.encoder.supervisor import EncoderProcess
from pagecast.models.errors import InvalidTransitionError, RendererError
from pagecast.models.state import EncoderState, SessionState
from pagecast.pacing.clock import PacingClock
from pagecast.pacing.pacer import FramePacer
from pagecast.session import RetryPolicy, StreamSession, check_transition


URL = "http://127.0.0.1:3200/preview.html"


def make_session(
    renderer,
    launcher,
    fps=100,
    capture_failure_budget=75,
    launch_attempts=3,
    restart_attempts=3,
    initial_backoff=0.01,
    stall_timeout=0,
    stability_window=5.0,
):
    source = FrameSource(renderer, URL, timeout=0.5)
    encoder = EncoderProcess(
        ["ffmpeg", "-i", "-"],
        launcher=launcher,
        startup_grace=0,
        stop_grace=0.1,
        stall_timeout=stall_timeout,
    )
    pacer = FramePacer(
        source,
        encoder,
        PacingClock(target_fps=fps),
        capture_failure_budget=capture_failure_budget,
    )
    return StreamSession(
        source,
        encoder,
        pacer,
        launch_policy=RetryPolicy(attempts=launch_attempts, initial_backoff=initial_backoff, max_backoff=0.05),
        restart_policy=RetryPolicy(attempts=restart_attempts, initial_backoff=initial_backoff, max_backoff=0.05),
        health_check_interval=0.02,
        stability_window=stability_window,
    )


def frame_numbers(writes):
    return [int(data.split(b"-")[1]) for data in writes]


def visited(session):
    return [record.to_state for record in session.history]


class TestLaunch:
    """Tests for StreamSession.start()."""

    @pytest.mark.asyncio
    async def test_launch_reaches_streaming(self, renderer, launcher):
        session = make_session(renderer, launcher)

        assert await session.start() is True
        assert session.state is SessionState.STREAMING
        await wait_until(lambda: launcher.processes[0].stdin.writes)

        await session.stop()
        assert visited(session) == [
            SessionState.LAUNCHING,
            SessionState.STREAMING,
            SessionState.TERMINATED,
        ]

    @pytest.mark.asyncio
    async def test_launch_budget_exhausted(self, renderer):
        """Three failed launches terminate without ever streaming."""
        launcher = FakeLauncher([FileNotFoundError(2, "ffmpeg") for _ in range(3)])
        session = make_session(renderer, launcher, launch_attempts=3)

        assert await session.start() is False
        assert session.state is SessionState.TERMINATED
        assert session.failed is True
        assert session.termination_reason == "launch retry budget exhausted"
        assert SessionState.STREAMING not in visited(session)
        assert len(launcher.calls) == 3
        assert renderer.close_calls == 1

    @pytest.mark.asyncio
    async def test_launch_retries_renderer_and_encoder(self, renderer):
        renderer.connect_failures = 1
        launcher = FakeLauncher([FileNotFoundError(2, "ffmpeg")])
        session = make_session(renderer, launcher, launch_attempts=3)

        assert await session.start() is True
        assert renderer.connect_calls == 2
        assert len(launcher.calls) == 2
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_during_launch_backoff(self, renderer):
        launcher = FakeLauncher([FileNotFoundError(2, "ffmpeg")])
        session = make_session(renderer, launcher, initial_backoff=5.0)

        start_task = asyncio.create_task(session.start())
        await wait_until(lambda: len(launcher.calls) == 1)
        await session.stop()

        assert await asyncio.wait_for(start_task, timeout=1.0) is False
        assert session.state is SessionState.TERMINATED
        assert session.failed is False

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, renderer, launcher):
        session = make_session(renderer, launcher)
        await session.start()

        with pytest.raises(RuntimeError):
            await session.start()
        await session.stop()


class TestRecovery:
    """Tests for encoder restart while streaming."""

    @pytest.mark.asyncio
    async def test_broken_pipe_restarts_encoder(self, renderer):
        """The 5th write breaks: frames 1-4 reach process 1, later frames process 2."""
        launcher = FakeLauncher([lambda process: setattr(process.stdin, "fail_at", 5)])
        session = make_session(renderer, launcher)
        states_at_capture = []
        renderer.on_capture = lambda n: states_at_capture.append(session.state)

        await session.start()
        await wait_until(
            lambda: len(launcher.processes) == 2 and len(launcher.processes[1].stdin.writes) >= 3,
            timeout=3.0,
        )
        await session.stop()

        first, second = launcher.processes
        assert frame_numbers(first.stdin.writes) == [1, 2, 3, 4]
        assert min(frame_numbers(second.stdin.writes)) > 5
        assert first.terminate_calls == 1
        assert session.restarts == 1
        assert visited(session) == [
            SessionState.LAUNCHING,
            SessionState.STREAMING,
            SessionState.DEGRADED,
            SessionState.STREAMING,
            SessionState.TERMINATED,
        ]
        assert session.history[2].reason == "ENCODER_CLOSED"
        assert SessionState.DEGRADED not in states_at_capture

    @pytest.mark.asyncio
    async def test_process_exit_restarts_encoder(self, renderer, launcher):
        session = make_session(renderer, launcher)
        await session.start()
        await wait_until(lambda: launcher.processes[0].stdin.writes)

        launcher.processes[0].exit(1)
        await wait_until(lambda: session.restarts == 1, timeout=3.0)

        assert session.state is SessionState.STREAMING
        assert len(launcher.processes) == 2
        await session.stop()

    @pytest.mark.asyncio
    async def test_restart_budget_exhausted(self, renderer):
        launcher = FakeLauncher([
            lambda process: setattr(process.stdin, "fail_at", 1),
            FileNotFoundError(2, "ffmpeg"),
            FileNotFoundError(2, "ffmpeg"),
            FileNotFoundError(2, "ffmpeg"),
        ])
        session = make_session(renderer, launcher, restart_attempts=3)

        await session.start()
        await asyncio.wait_for(session.wait_terminated(), timeout=3.0)

        assert session.failed is True
        assert session.termination_reason == "encoder restart budget exhausted"
        assert visited(session)[-2:] == [SessionState.DEGRADED, SessionState.TERMINATED]
        assert len(launcher.calls) == 4
        assert renderer.close_calls == 1

    @pytest.mark.asyncio
    async def test_encoder_failing_on_first_write_exhausts_budget(self, renderer):
        """Restarts that succeed but break at once still count against one budget."""
        launcher = FakeLauncher(default=lambda process: setattr(process.stdin, "fail_at", 1))
        session = make_session(renderer, launcher, restart_attempts=3)

        await session.start()
        await asyncio.wait_for(session.wait_terminated(), timeout=3.0)

        assert session.state is SessionState.TERMINATED
        assert session.failed is True
        assert session.termination_reason == "encoder restart budget exhausted"
        assert session.restarts == 3
        assert len(launcher.calls) == 4
        assert all(process.stdin.writes == [] for process in launcher.processes)

    @pytest.mark.asyncio
    async def test_first_restart_waits_for_backoff(self, renderer):
        launcher = FakeLauncher([lambda process: setattr(process.stdin, "fail_at", 1)])
        session = make_session(renderer, launcher, initial_backoff=0.05)

        await session.start()
        await wait_until(lambda: session.restarts == 1, timeout=3.0)
        await session.stop()

        degraded, restored = session.history[2], session.history[3]
        assert degraded.to_state is SessionState.DEGRADED
        assert restored.to_state is SessionState.STREAMING
        assert restored.timestamp - degraded.timestamp >= 0.04

    @pytest.mark.asyncio
    async def test_stable_delivery_refills_restart_budget(self, renderer):
        """With one restart allowed, a second failure after a stable run is still recovered."""
        launcher = FakeLauncher([
            lambda process: setattr(process.stdin, "fail_at", 20),
            lambda process: setattr(process.stdin, "fail_at", 20),
        ])
        session = make_session(renderer, launcher, restart_attempts=1, stability_window=0.05)

        await session.start()
        await wait_until(lambda: session.restarts == 2, timeout=3.0)

        assert session.state is SessionState.STREAMING
        assert session.failed is False
        assert len(launcher.calls) == 3
        await session.stop()

    @pytest.mark.asyncio
    async def test_stalled_encoder_is_restarted(self, renderer):
        """No progress heartbeat within stall_timeout degrades and restarts the encoder."""
        launcher = FakeLauncher()
        session = make_session(renderer, launcher, fps=10, stall_timeout=0.1)

        await session.start()
        await wait_until(lambda: session.restarts >= 1, timeout=3.0)
        await session.stop()

        assert visited(session)[:4] == [
            SessionState.LAUNCHING,
            SessionState.STREAMING,
            SessionState.DEGRADED,
            SessionState.STREAMING,
        ]
        assert session.history[2].reason == "ENCODER_CRASHED"
        assert launcher.processes[0].terminate_calls == 1
        assert session.failed is False

    @pytest.mark.asyncio
    async def test_unexpected_capture_exception_keeps_streaming(self, renderer, launcher):
        renderer.capture_errors = [RuntimeError("driver hiccup")]
        session = make_session(renderer, launcher)

        await session.start()
        await wait_until(lambda: session.pacer.metrics.delivered >= 2)
        await session.stop()

        assert session.pacer.metrics.capture_errors == 1
        assert SessionState.DEGRADED not in visited(session)
        assert session.failed is False

    @pytest.mark.asyncio
    async def test_capture_exhaustion_is_fatal(self, renderer, launcher):
        renderer.always_fail = RendererError("renderer wedged")
        session = make_session(renderer, launcher, capture_failure_budget=3)

        snapshot = await asyncio.wait_for(session.run(), timeout=3.0)

        assert snapshot.state is SessionState.TERMINATED
        assert snapshot.failed is True
        assert snapshot.termination_reason == "capture failure budget exhausted"
        assert SessionState.DEGRADED not in visited(session)
        assert session.encoder.state is EncoderState.STOPPED
        assert launcher.processes[0].stdin.writes == []


class TestTermination:
    """Tests for stop() and resource release."""

    @pytest.mark.asyncio
    async def test_double_stop_releases_once(self, renderer, launcher):
        session = make_session(renderer, launcher)
        await session.start()
        await wait_until(lambda: launcher.processes[0].stdin.writes)

        await asyncio.gather(session.stop(), session.stop())
        await session.stop()

        assert session.state is SessionState.TERMINATED
        assert session.failed is False
        assert renderer.close_calls == 1
        assert launcher.processes[0].terminate_calls == 1
        assert visited(session).count(SessionState.TERMINATED) == 1
        assert session.pacer.running is False

    @pytest.mark.asyncio
    async def test_stop_abandons_in_flight_capture(self, renderer, launcher):
        """stop() does not wait for a slow capture, and the frame is never retried."""
        renderer.capture_delay = 0.3
        session = make_session(renderer, launcher)
        await session.start()
        await wait_until(lambda: session.pacer.capture_in_progress)

        loop = asyncio.get_running_loop()
        began = loop.time()
        await session.stop()
        elapsed = loop.time() - began

        assert elapsed < 0.25
        assert session.state is SessionState.TERMINATED
        await asyncio.sleep(0.4)
        assert renderer.captures == 0
        assert session.pacer.metrics.ticks == 1
        assert launcher.processes[0].stdin.writes == []

    @pytest.mark.asyncio
    async def test_stop_abandons_in_flight_drain(self, renderer):
        launcher = FakeLauncher([lambda process: setattr(process.stdin, "drain_delay", 0.3)])
        session = make_session(renderer, launcher)
        session.pacer.write_timeout = 5.0
        await session.start()
        await wait_until(lambda: launcher.processes[0].stdin.writes)

        loop = asyncio.get_running_loop()
        began = loop.time()
        await session.stop()
        elapsed = loop.time() - began

        assert elapsed < 0.25
        await asyncio.sleep(0.4)
        assert len(launcher.processes[0].stdin.writes) == 1
        assert session.pacer.metrics.delivered == 0

    @pytest.mark.asyncio
    async def test_stop_before_start(self, renderer, launcher):
        session = make_session(renderer, launcher)
        await session.stop()

        assert session.state is SessionState.TERMINATED
        assert launcher.calls == []

    @pytest.mark.asyncio
    async def test_snapshot(self, renderer, launcher):
        session = make_session(renderer, launcher)
        await session.start()
        await wait_until(lambda: session.pacer.metrics.delivered >= 2)

        data = session.snapshot().model_dump(mode="json")
        await session.stop()

        assert data["state"] == "STREAMING"
        assert data["restarts"] == 0
        assert data["pacer"]["delivered"] >= 2
        assert data["encoder"]["state"] == "RUNNING"
        assert [h["to_state"] for h in data["history"]] == ["LAUNCHING", "STREAMING"]


class TestFromSettings:
    """Tests for building a session from configuration."""

    def test_wires_configuration(self):
        settings = Settings.model_validate({
            "pacing": {"target_fps": 20},
            "encoder": {"destination": "rtmp://live.example/app/key", "output_format": "flv"},
        })
        session = StreamSession.from_settings(settings, renderer=FakeRenderer(), launcher=FakeLauncher())

        assert session.source.url == URL
        assert session.source.timeout == pytest.approx(0.05)
        assert session.pacer.write_timeout == pytest.approx(0.05)
        assert session.pacer.clock.target_fps == 20
        assert session.encoder.argv[0] == "ffmpeg"
        assert session.encoder.argv[-2:] == ["flv", "rtmp://live.example/app/key"]
        assert session.launch_policy.attempts == 3

    def test_default_pacer_uses_configured_default_rate(self):
        session = StreamSession(
            FrameSource(FakeRenderer(), URL),
            EncoderProcess(["ffmpeg", "-i", "-"], launcher=FakeLauncher()),
        )

        assert session.pacer.clock.target_fps == PacingConfig().target_fps
        assert session.stability_window == 5.0

    def test_wires_restart_stability(self):
        settings = Settings.model_validate({"session": {"restart_stability_seconds": 12}})
        session = StreamSession.from_settings(settings, renderer=FakeRenderer(), launcher=FakeLauncher())

        assert session.stability_window == 12


class TestTransitions:
    """Tests for the transition table and retry policy."""

    def test_allowed_transitions(self):
        check_transition(SessionState.IDLE, SessionState.LAUNCHING)
        check_transition(SessionState.STREAMING, SessionState.DEGRADED)
        check_transition(SessionState.DEGRADED, SessionState.STREAMING)

    @pytest.mark.parametrize(
        "current,target",
        [
            (SessionState.IDLE, SessionState.STREAMING),
            (SessionState.LAUNCHING, SessionState.DEGRADED),
            (SessionState.TERMINATED, SessionState.LAUNCHING),
            (SessionState.TERMINATED, SessionState.TERMINATED),
        ],
    )
    def test_rejected_transitions(self, current, target):
        with pytest.raises(InvalidTransitionError):
            check_transition(current, target)

    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(attempts=7, initial_backoff=1.0, multiplier=2.0, max_backoff=30.0)
        assert list(policy.delays()) == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)

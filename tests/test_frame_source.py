"""
Frame Source Tests
==================

Capture outcomes and renderer error mapping.
"""

import pytest

from pagecast.capture.source import FrameSource
from pagecast.models.errors import (
    CaptureError,
    CaptureErrorKind,
    RendererError,
    RendererUnavailableError,
)


URL = "http://127.0.0.1:3200/preview.html"


class TestOpen:
    """Tests for connecting the renderer."""

    @pytest.mark.asyncio
    async def test_open_connects(self, renderer):
        source = FrameSource(renderer, URL)
        await source.open()
        assert source.connected

    @pytest.mark.asyncio
    async def test_open_failure_is_unavailable(self, renderer):
        renderer.connect_failures = 1
        source = FrameSource(renderer, URL)

        with pytest.raises(CaptureError) as exc_info:
            await source.open()
        assert exc_info.value.kind is CaptureErrorKind.RENDERER_UNAVAILABLE
        assert not source.connected

    def test_rejects_non_positive_timeout(self, renderer):
        with pytest.raises(ValueError):
            FrameSource(renderer, URL, timeout=0)


class TestCapture:
    """Tests for single-frame capture."""

    @pytest.mark.asyncio
    async def test_sequence_starts_at_one(self, renderer):
        source = FrameSource(renderer, URL)
        await source.open()

        frames = [await source.capture() for _ in range(3)]

        assert [f.sequence for f in frames] == [1, 2, 3]
        assert frames[0].data == b"frame-1"
        assert frames[0].image_format == "jpeg"
        assert frames[0].timestamp <= frames[2].timestamp

    @pytest.mark.asyncio
    async def test_timeout(self, renderer):
        """A slow capture fails with TIMEOUT and the source stays usable."""
        source = FrameSource(renderer, URL, timeout=0.02)
        renderer.capture_delay = 0.5

        with pytest.raises(CaptureError) as exc_info:
            await source.capture()
        assert exc_info.value.kind is CaptureErrorKind.TIMEOUT

        renderer.capture_delay = 0.0
        frame = await source.capture()
        assert frame.sequence == 1

    @pytest.mark.asyncio
    async def test_renderer_unavailable(self, renderer):
        source = FrameSource(renderer, URL)
        renderer.capture_errors = [RendererUnavailableError("browser closed")]

        with pytest.raises(CaptureError) as exc_info:
            await source.capture()
        assert exc_info.value.kind is CaptureErrorKind.RENDERER_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_other_renderer_error_is_unknown(self, renderer):
        source = FrameSource(renderer, URL)
        renderer.capture_errors = [RendererError("screenshot failed")]

        with pytest.raises(CaptureError) as exc_info:
            await source.capture()
        assert exc_info.value.kind is CaptureErrorKind.UNKNOWN

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_unknown(self, renderer):
        """A backend exception outside RendererError still maps to a CaptureError."""
        source = FrameSource(renderer, URL)
        renderer.capture_errors = [RuntimeError("driver hiccup")]

        with pytest.raises(CaptureError) as exc_info:
            await source.capture()
        assert exc_info.value.kind is CaptureErrorKind.UNKNOWN
        assert "driver hiccup" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert (await source.capture()).sequence == 1

    @pytest.mark.asyncio
    async def test_failed_capture_does_not_consume_sequence(self, renderer):
        source = FrameSource(renderer, URL)
        renderer.capture_errors = [RendererError("x")]

        with pytest.raises(CaptureError):
            await source.capture()
        assert (await source.capture()).sequence == 1

    @pytest.mark.asyncio
    async def test_close_releases_renderer(self, renderer):
        source = FrameSource(renderer, URL)
        await source.open()
        await source.close()

        assert renderer.close_calls == 1
        assert not source.connected

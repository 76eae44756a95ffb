"""
Frame Source
============

Produces one Frame per call from a Renderer.

This module provides the FrameSource class which:
    - Connects the renderer to the page URL
    - Captures one still image per call, bounded by a timeout
    - Tags each capture with a sequence number and timestamp
    - Translates renderer failures into CaptureError kinds

Design Rules:
    - No internal buffering across calls
    - A timed-out capture is cancelled; the renderer stays usable
    - Does NOT decode image data
"""

import asyncio
import itertools
import logging
import time
from typing import Optional

from pagecast.capture.renderer import Renderer
from pagecast.models.errors import (
    CaptureError,
    CaptureErrorKind,
    RendererError,
    RendererUnavailableError,
)
from pagecast.models.frame import Frame


logger = logging.getLogger(__name__)


class FrameSource:
    """
    Timeout-bounded frame producer over a Renderer.

    Attributes:
        renderer: Rendering backend
        url: Page the renderer loads
        timeout: Per-capture timeout in seconds
        image_format: Still-image codec requested from the renderer
        quality: Still-image quality

    Example:
        source = FrameSource(renderer, url, timeout=0.04)
        await source.open()
        frame = await source.capture()
    """

    def __init__(
        self,
        renderer: Renderer,
        url: str,
        timeout: float = 0.04,
        image_format: str = "jpeg",
        quality: int = 80,
        navigation_timeout: Optional[float] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.renderer = renderer
        self.url = url
        self.timeout = timeout
        self.image_format = image_format
        self.quality = quality
        self.navigation_timeout = navigation_timeout

        self._sequence = itertools.count(1)

    @property
    def connected(self) -> bool:
        """Whether the renderer is connected and ready."""
        return self.renderer.connected

    async def open(self) -> None:
        """
        Connect the renderer to the page.

        Raises:
            CaptureError: RENDERER_UNAVAILABLE if the page cannot be loaded
        """
        logger.info(f"Opening frame source: {self.url}")
        try:
            if self.navigation_timeout is not None:
                await asyncio.wait_for(
                    self.renderer.connect(self.url),
                    timeout=self.navigation_timeout,
                )
            else:
                await self.renderer.connect(self.url)
        except asyncio.TimeoutError as e:
            raise CaptureError(
                CaptureErrorKind.RENDERER_UNAVAILABLE,
                f"page load timed out after {self.navigation_timeout}s",
            ) from e
        except RendererError as e:
            raise CaptureError(CaptureErrorKind.RENDERER_UNAVAILABLE, str(e)) from e

    async def capture(self) -> Frame:
        """
        Capture one frame.

        Returns:
            Frame with the next sequence number

        Raises:
            CaptureError: TIMEOUT, RENDERER_UNAVAILABLE or UNKNOWN
        """
        try:
            data = await asyncio.wait_for(
                self.renderer.capture(self.image_format, self.quality),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise CaptureError(
                CaptureErrorKind.TIMEOUT,
                f"capture exceeded {self.timeout * 1000:.0f}ms",
            ) from e
        except RendererUnavailableError as e:
            raise CaptureError(CaptureErrorKind.RENDERER_UNAVAILABLE, str(e)) from e
        except RendererError as e:
            raise CaptureError(CaptureErrorKind.UNKNOWN, str(e)) from e
        except Exception as e:
            # Unclassified backend failure; CancelledError is not an Exception
            raise CaptureError(CaptureErrorKind.UNKNOWN, f"{type(e).__name__}: {e}") from e

        return Frame(
            sequence=next(self._sequence),
            timestamp=time.time(),
            data=bytes(data),
            image_format=self.image_format,
        )

    async def close(self) -> None:
        """Release the renderer."""
        await self.renderer.close()
        logger.info("Frame source closed")

"""
Renderer Boundary
=================

Headless rendering surface consumed by FrameSource.

This module provides the Renderer protocol and the PlaywrightRenderer
implementation backed by headless Chromium.

Design Rules:
    - Narrow interface: connect, capture, close
    - Playwright errors are translated to RendererError /
      RendererUnavailableError so callers never import Playwright
    - No frame buffering; capture returns exactly one image
"""

import logging
from typing import List, Optional, Protocol

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    async_playwright,
)

from pagecast.models.errors import RendererError, RendererUnavailableError


logger = logging.getLogger(__name__)


class Renderer(Protocol):
    """
    Protocol for headless rendering backends.

    Implemented by:
        - PlaywrightRenderer (production)
        - test doubles
    """

    @property
    def connected(self) -> bool:
        """Whether a page is loaded and ready for capture."""
        ...

    async def connect(self, url: str) -> None:
        """Launch the renderer and load ``url``."""
        ...

    async def capture(self, image_format: str, quality: int) -> bytes:
        """Capture the current page as one encoded still image."""
        ...

    async def close(self) -> None:
        """Release the renderer. Must be safe to call repeatedly."""
        ...


class PlaywrightRenderer:
    """
    Headless Chromium renderer driven through Playwright.

    Attributes:
        width: Viewport width in pixels
        height: Viewport height in pixels
        navigation_timeout_ms: Timeout for the initial page load

    Example:
        renderer = PlaywrightRenderer(width=1280, height=720)
        await renderer.connect("http://localhost:3200/preview.html")
        jpeg = await renderer.capture("jpeg", 80)
        await renderer.close()
    """

    def __init__(
        self,
        width: int = 1280,
        height: int = 720,
        navigation_timeout_ms: int = 30000,
        browser_args: Optional[List[str]] = None,
    ) -> None:
        self.width = width
        self.height = height
        self.navigation_timeout_ms = navigation_timeout_ms
        self.browser_args = list(browser_args or [])

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    @property
    def connected(self) -> bool:
        return (
            self._page is not None
            and not self._page.is_closed()
            and self._browser is not None
            and self._browser.is_connected()
        )

    async def connect(self, url: str) -> None:
        """
        Launch headless Chromium and navigate to ``url``.

        Raises:
            RendererUnavailableError: Browser launch or navigation failed
        """
        await self.close()

        args = self.browser_args + [f"--window-size={self.width},{self.height}"]
        logger.info(f"Launching headless Chromium ({self.width}x{self.height})")

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=args,
            )
            self._page = await self._browser.new_page(
                viewport={"width": self.width, "height": self.height},
            )
            await self._page.goto(
                url,
                wait_until="networkidle",
                timeout=self.navigation_timeout_ms,
            )
        except PlaywrightError as e:
            await self.close()
            raise RendererUnavailableError(f"Failed to load {url}: {e}") from e

        logger.info(f"Page loaded: {url}")

    async def capture(self, image_format: str = "jpeg", quality: int = 80) -> bytes:
        """
        Capture the viewport as one still image.

        Raises:
            RendererUnavailableError: Page or browser is gone
            RendererError: Screenshot failed on a live page
        """
        if not self.connected:
            raise RendererUnavailableError("Renderer is not connected")

        options = {"type": image_format}
        if image_format == "jpeg":
            options["quality"] = quality

        try:
            return await self._page.screenshot(**options)
        except PlaywrightError as e:
            if not self.connected:
                raise RendererUnavailableError(str(e)) from e
            raise RendererError(str(e)) from e

    async def close(self) -> None:
        """Close page, browser and Playwright driver."""
        page, browser, playwright = self._page, self._browser, self._playwright
        self._page = None
        self._browser = None
        self._playwright = None

        if page is not None and not page.is_closed():
            try:
                await page.close()
            except PlaywrightError as e:
                logger.debug(f"Page close failed: {e}")
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.debug(f"Browser close failed: {e}")
        if playwright is not None:
            await playwright.stop()

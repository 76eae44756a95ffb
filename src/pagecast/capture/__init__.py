"""
Capture Module
==============

Headless rendering and frame capture.

    - Renderer: Protocol for rendering backends
    - PlaywrightRenderer: Headless Chromium via Playwright
    - FrameSource: Timeout-bounded, one-frame-per-call producer
"""

from pagecast.capture.renderer import PlaywrightRenderer, Renderer
from pagecast.capture.source import FrameSource


__all__ = [
    "Renderer",
    "PlaywrightRenderer",
    "FrameSource",
]

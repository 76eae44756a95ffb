"""
PageCast
========

Renders a web page headlessly and republishes it as a live video stream.

This package captures still frames of a headless Chromium page at a fixed
rate and pipes them into an ffmpeg subprocess that publishes the encoded
stream (RTSP by default), keeping the encoder alive and fed through
transient capture and process failures.

Components:
    - capture: Renderer boundary and FrameSource
    - encoder: ffmpeg command profile and EncoderProcess supervision
    - pacing: PacingClock and FramePacer
    - session: StreamSession state machine
    - content: File API and pages the renderer loads

Example:
    from pagecast.config import settings
    from pagecast.session import StreamSession

    session = StreamSession.from_settings(settings)
    await session.run()
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]

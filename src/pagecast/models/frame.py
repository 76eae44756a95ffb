"""
Frame Data Model
=================

Internal frame representation for the capture-to-stream pipeline.

A Frame is produced by FrameSource, handed to FramePacer and written to
the encoder pipe within a single tick. It is never queued.

Design Rules:
    - Immutable once produced
    - Does NOT decode or manipulate image data
    - Sequence numbers increase monotonically per FrameSource
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One still-image capture of the rendering surface.

    Attributes:
        sequence: Monotonically increasing capture counter (starts at 1)
        timestamp: UNIX timestamp when the capture completed
        data: Encoded still image bytes (e.g. JPEG), passed through unchanged
        image_format: Still-image codec of ``data``
    """

    sequence: int
    timestamp: float
    data: bytes
    image_format: str = "jpeg"

    @property
    def size(self) -> int:
        """Size of the image payload in bytes."""
        return len(self.data)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"Frame(sequence={self.sequence}, "
            f"timestamp={self.timestamp:.3f}, "
            f"format={self.image_format}, "
            f"size={len(self.data)})"
        )

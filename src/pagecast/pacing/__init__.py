"""
Pacing Module
=============

Fixed-rate frame pacing.

    - PacingClock: Absolute-deadline scheduler
    - FramePacer: Capture-to-encoder tick loop with drop policy
    - FramePacerMetrics: Pacer counters
"""

from pagecast.pacing.clock import PacingClock
from pagecast.pacing.pacer import FramePacer, FramePacerMetrics


__all__ = [
    "PacingClock",
    "FramePacer",
    "FramePacerMetrics",
]

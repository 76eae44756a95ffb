"""
Data Models
===========

Frame, error and state models for PageCast.

Models:
    Frame:
        - Frame: Immutable captured still image

    Errors:
        - CaptureError, WriteError, LaunchError (with kind enums)
        - RendererError, RendererUnavailableError
        - InvalidTransitionError

    State:
        - EncoderState, EncoderHealth
        - SessionState, TickOutcome, PacerExit
        - TransitionRecord, SessionSnapshot
"""

from pagecast.models.frame import Frame
from pagecast.models.errors import (
    CaptureError,
    CaptureErrorKind,
    InvalidTransitionError,
    LaunchError,
    LaunchErrorKind,
    PipelineError,
    RendererError,
    RendererUnavailableError,
    WriteError,
    WriteErrorKind,
)
from pagecast.models.state import (
    EncoderHealth,
    EncoderState,
    PacerExit,
    SessionSnapshot,
    SessionState,
    TickOutcome,
    TransitionRecord,
)

__all__ = [
    # Frame
    "Frame",
    # Errors
    "PipelineError",
    "CaptureError",
    "CaptureErrorKind",
    "WriteError",
    "WriteErrorKind",
    "LaunchError",
    "LaunchErrorKind",
    "RendererError",
    "RendererUnavailableError",
    "InvalidTransitionError",
    # State
    "EncoderState",
    "EncoderHealth",
    "SessionState",
    "TickOutcome",
    "PacerExit",
    "TransitionRecord",
    "SessionSnapshot",
]

"""
Pipeline Errors
===============

Exception types raised across the capture-to-stream pipeline.

Each pipeline error carries a machine-readable ``kind`` so callers can
apply the drop / restart / terminate policy without parsing messages:

    CaptureError  -> TIMEOUT, RENDERER_UNAVAILABLE, UNKNOWN
    WriteError    -> BUFFER_FULL, CLOSED, IO_FAILURE
    LaunchError   -> NOT_FOUND, IMMEDIATE_EXIT
"""

from enum import Enum


class CaptureErrorKind(str, Enum):
    """Why a frame capture failed."""

    TIMEOUT = "TIMEOUT"
    RENDERER_UNAVAILABLE = "RENDERER_UNAVAILABLE"
    UNKNOWN = "UNKNOWN"


class WriteErrorKind(str, Enum):
    """
    Why a frame could not be written to the encoder.

    Attributes:
        BUFFER_FULL: Encoder input pipe would block (backpressure, not a failure)
        CLOSED: Encoder process has exited or its pipe is broken
        IO_FAILURE: Any other I/O error on the pipe
    """

    BUFFER_FULL = "BUFFER_FULL"
    CLOSED = "CLOSED"
    IO_FAILURE = "IO_FAILURE"


class LaunchErrorKind(str, Enum):
    """Why the encoder process could not be launched."""

    NOT_FOUND = "NOT_FOUND"
    IMMEDIATE_EXIT = "IMMEDIATE_EXIT"


class PipelineError(Exception):
    """Base class for capture, write and launch errors."""

    def __init__(self, kind: Enum, message: str = "") -> None:
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}" if message else kind.value)


class CaptureError(PipelineError):
    """Frame capture failed; the renderer stays usable for the next call."""

    kind: CaptureErrorKind


class WriteError(PipelineError):
    """Frame write to the encoder pipe failed."""

    kind: WriteErrorKind


class LaunchError(PipelineError):
    """Encoder subprocess could not be started."""

    kind: LaunchErrorKind


class RendererError(Exception):
    """Renderer call failed but the renderer is still connected."""


class RendererUnavailableError(RendererError):
    """Renderer is not connected or its page/browser has gone away."""


class InvalidTransitionError(RuntimeError):
    """A session state transition was requested that the state machine forbids."""

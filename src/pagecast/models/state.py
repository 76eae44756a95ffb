"""
Pipeline State Models
=====================

State enumerations for the encoder, pacer and session, plus the
snapshot model published on the status endpoints.

Core Concepts:
    - EncoderState: Lifecycle of one encoder subprocess handle
    - EncoderHealth: Result of a non-blocking liveness check
    - SessionState: Top-level StreamSession state machine
    - TickOutcome: What happened during one pacer tick
    - PacerExit: Why a pacer run ended

Session Transitions:
    IDLE → LAUNCHING → STREAMING ⇄ DEGRADED
    LAUNCHING / STREAMING / DEGRADED → TERMINATED (absorbing)
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class EncoderState(str, Enum):
    """
    Lifecycle of the encoder subprocess handle.

    Attributes:
        NOT_STARTED: No process has been launched yet
        STARTING: Launch in progress (startup grace period)
        RUNNING: Process alive and accepting frames
        CRASHED: Process exited or pipe broke while RUNNING
        STOPPED: Process terminated on request
    """

    NOT_STARTED = "NOT_STARTED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    CRASHED = "CRASHED"
    STOPPED = "STOPPED"


class EncoderHealth(str, Enum):
    """Result of EncoderProcess.health_check()."""

    HEALTHY = "HEALTHY"
    CRASHED = "CRASHED"


class SessionState(str, Enum):
    """
    Top-level stream session states.

    Attributes:
        IDLE: Created, not started
        LAUNCHING: Connecting renderer and launching encoder
        STREAMING: Pacer running, frames delivered
        DEGRADED: Encoder restarting, frames not delivered
        TERMINATED: Absorbing end state, all resources released
    """

    IDLE = "IDLE"
    LAUNCHING = "LAUNCHING"
    STREAMING = "STREAMING"
    DEGRADED = "DEGRADED"
    TERMINATED = "TERMINATED"


class TickOutcome(str, Enum):
    """Result of a single pacer tick."""

    DELIVERED = "DELIVERED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    CAPTURE_EXHAUSTED = "CAPTURE_EXHAUSTED"
    DROPPED_BACKPRESSURE = "DROPPED_BACKPRESSURE"
    WRITE_FAILED = "WRITE_FAILED"
    ENCODER_CLOSED = "ENCODER_CLOSED"


class PacerExit(str, Enum):
    """Why FramePacer.run() returned."""

    STOPPED = "STOPPED"
    ENCODER_CLOSED = "ENCODER_CLOSED"
    CAPTURE_EXHAUSTED = "CAPTURE_EXHAUSTED"


class TransitionRecord(BaseModel):
    """One recorded session state transition."""

    timestamp: float = Field(..., description="UNIX time of the transition")
    from_state: SessionState
    to_state: SessionState
    reason: str = Field(default="", description="Short machine-readable cause")


class SessionSnapshot(BaseModel):
    """
    Point-in-time view of a StreamSession.

    Published by GET /status and WS /ws/status.
    """

    state: SessionState
    failed: bool = Field(default=False, description="Terminated by a fatal failure")
    termination_reason: Optional[str] = None
    started_at: Optional[float] = None
    uptime_seconds: float = 0.0
    restarts: int = Field(default=0, ge=0, description="Successful encoder restarts")
    pacer: Dict[str, Any] = Field(default_factory=dict)
    encoder: Dict[str, Any] = Field(default_factory=dict)
    history: List[TransitionRecord] = Field(default_factory=list)

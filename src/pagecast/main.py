"""
PageCast Main Application
=========================

FastAPI entry point for the page streamer.

The same app serves the content API, the page the headless renderer
loads, and the operational endpoints for the stream session that runs
in the background.

Endpoints:
    GET    /                  - Service information
    GET    /health            - Liveness probe (is process alive?)
    GET    /ready             - Readiness probe (session streaming?)
    GET    /metrics           - Session, pacer and encoder metrics
    GET    /status            - Full session snapshot
    WS     /ws/status         - Session snapshot pushed every second
    POST   /upload            - Upload content
    GET    /api/files         - List content
    DELETE /api/files/{name}  - Delete content
    GET    /content/*, /*     - Static content and pages
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from pagecast.config import settings
from pagecast.content import create_content_router, mount_static
from pagecast.models.state import SessionState
from pagecast.session import StreamSession


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_shutdown_flag: bool = False
_session: Optional[StreamSession] = None
_session_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0


def get_session() -> Optional[StreamSession]:
    return _session


# =============================================================================
# Session Runner
# =============================================================================

async def run_session(session: StreamSession) -> None:
    """Run the stream session until it terminates."""
    snapshot = await session.run()
    if snapshot.failed:
        logger.critical(
            f"Streaming stopped permanently: {snapshot.termination_reason}. "
            f"Restart the service once the cause is fixed."
        )
    else:
        logger.info(f"Streaming stopped: {snapshot.termination_reason}")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _session, _session_task, _startup_time, _shutdown_flag

    _startup_time = time.time()
    _shutdown_flag = False
    logger.info(f"Starting {settings.service.name} {settings.service.version}")
    logger.info(f"Content directory: {Path(settings.content.directory).resolve()}")
    logger.info(f"Rendering {settings.page_url()} → {settings.encoder.destination}")

    # The renderer loads a page served by this app; the launch retry
    # budget covers the window before the server accepts connections.
    _session = StreamSession.from_settings(settings)
    _session_task = asyncio.create_task(run_session(_session), name="stream_session")

    yield

    logger.info("Shutting down gracefully...")
    _shutdown_flag = True

    if _session is not None:
        await _session.stop()

    if _session_task is not None:
        try:
            await asyncio.wait_for(_session_task, timeout=5.0)
        except asyncio.TimeoutError:
            _session_task.cancel()
            try:
                await _session_task
            except asyncio.CancelledError:
                pass

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="PageCast",
    description="Headless web page to live video stream republisher",
    version=settings.service.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    session = get_session()
    return JSONResponse({
        "service": settings.service.name,
        "version": settings.service.version,
        "status": "running",
        "page_url": settings.page_url(),
        "destination": settings.encoder.destination,
        "target_fps": settings.pacing.target_fps,
        "text_filename": settings.content.text_filename,
        "session_state": session.state.value if session else None,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - is the stream being published?

    Returns 200 while the session is STREAMING, 503 otherwise
    (launching, degraded or terminated).
    """
    session = get_session()
    state = session.state if session else SessionState.IDLE

    body = {
        "status": "ready" if state is SessionState.STREAMING else "not_ready",
        "session_state": state.value,
    }
    if session is not None and session.terminated:
        body["failed"] = session.failed
        body["termination_reason"] = session.termination_reason

    return JSONResponse(body, status_code=200 if state is SessionState.STREAMING else 503)


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    session = get_session()
    if session is None:
        return JSONResponse({"error": "Session not initialized"}, status_code=503)

    pacer = session.pacer.metrics.to_dict()
    encoder = session.encoder.metrics_dict()
    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "session_state": session.state.value,
        "restarts": session.restarts,
        **{f"pacer_{key}": value for key, value in pacer.items()},
        **{f"encoder_{key}": value for key, value in encoder.items()},
    })


@app.get("/status")
async def status() -> JSONResponse:
    """Full session snapshot."""
    session = get_session()
    if session is None:
        return JSONResponse({"error": "Session not initialized"}, status_code=503)
    return JSONResponse(session.snapshot().model_dump(mode="json"))


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws/status")
async def status_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint pushing the session snapshot every second."""
    await websocket.accept()
    logger.info("Client connected to /ws/status")

    try:
        while not _shutdown_flag:
            session = get_session()
            if session is not None:
                await websocket.send_json(session.snapshot().model_dump(mode="json"))
            await asyncio.sleep(1.0)
    except WebSocketDisconnect:
        pass
    finally:
        logger.info("Client disconnected from /ws/status")


# =============================================================================
# Content Surface
# =============================================================================

_content_dir = Path(settings.content.directory)
app.include_router(create_content_router(_content_dir, settings.content.text_filename))
mount_static(
    app,
    _content_dir,
    Path(settings.content.public_directory) if settings.content.public_directory else None,
)


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    """Run the service with uvicorn."""
    import uvicorn

    uvicorn.run(
        "pagecast.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )


if __name__ == "__main__":
    main()

"""
PageCast Configuration
======================

This module handles configuration loading for the page streamer.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    PAGECAST_PAGE_URL     -> capture.page_url
    PAGECAST_WIDTH        -> capture.width
    PAGECAST_HEIGHT       -> capture.height
    PAGECAST_FPS          -> pacing.target_fps
    PAGECAST_FFMPEG       -> encoder.executable
    PAGECAST_DESTINATION  -> encoder.destination
    PAGECAST_CONTENT_DIR  -> content.directory
    PAGECAST_PORT         -> server.port
    PAGECAST_LOG_LEVEL    -> logging.level
    PORT                  -> server.port (container platforms)

Example:
    from pagecast.config import settings

    print(settings.pacing.target_fps)
    print(settings.encoder.destination)
    print(settings.page_url())
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="pagecast", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3200, ge=1, le=65535, description="Bind port")


class ContentConfig(BaseModel):
    """Content directory and page configuration."""

    directory: str = Field(
        default="./content",
        description="Directory holding uploaded content files",
    )
    public_directory: Optional[str] = Field(
        default=None,
        description="Directory served at / (None = packaged pages)",
    )
    page_path: str = Field(
        default="/preview.html",
        description="Path of the page the renderer navigates to",
    )
    text_filename: str = Field(
        default="text.txt",
        description="File name used for the uploaded text field",
    )


class CaptureConfig(BaseModel):
    """Headless renderer and capture configuration."""

    page_url: Optional[str] = Field(
        default=None,
        description="Page to render (None = this service's page_path)",
    )
    width: int = Field(default=1280, ge=16, description="Capture width in pixels")
    height: int = Field(default=720, ge=16, description="Capture height in pixels")
    image_format: str = Field(default="jpeg", description="Still-image codec")
    quality: int = Field(default=80, ge=1, le=100, description="Still-image quality")
    timeout_ms: Optional[int] = Field(
        default=None,
        gt=0,
        description="Per-capture timeout (None = one pacing interval)",
    )
    navigation_timeout_ms: int = Field(
        default=30000,
        gt=0,
        description="Timeout for the initial page load",
    )
    browser_args: List[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-gpu",
        ],
        description="Extra Chromium launch arguments",
    )


class EncoderConfig(BaseModel):
    """Encoder subprocess configuration."""

    executable: str = Field(default="ffmpeg", description="Encoder executable")
    input_format: str = Field(default="image2pipe", description="Input demuxer")
    input_codec: str = Field(default="mjpeg", description="Input still-image codec")
    output_codec: str = Field(default="libx264", description="Video codec")
    preset: str = Field(default="veryfast", description="Codec preset")
    tune: str = Field(default="zerolatency", description="Codec tuning")
    pix_fmt: str = Field(default="yuv420p", description="Output pixel format")
    output_format: str = Field(default="rtsp", description="Output muxer")
    destination: str = Field(
        default="rtsp://127.0.0.1:8554/live",
        description="Network address the stream is published to",
    )
    extra_output_args: List[str] = Field(
        default_factory=list,
        description="Arguments inserted before the output muxer",
    )
    startup_grace_ms: int = Field(
        default=500,
        ge=0,
        description="Process exiting within this window is a launch failure",
    )
    stop_grace_ms: int = Field(
        default=3000,
        ge=0,
        description="Wait after SIGTERM before SIGKILL",
    )
    stall_timeout_seconds: float = Field(
        default=10.0,
        ge=0,
        description="No progress heartbeat for this long = crashed (0 = off)",
    )
    max_pending_bytes: int = Field(
        default=4 * 1024 * 1024,
        ge=1,
        description="Pending pipe bytes at which writes report BUFFER_FULL",
    )
    write_timeout_ms: Optional[int] = Field(
        default=None,
        gt=0,
        description="Per-write drain timeout (None = one pacing interval)",
    )


class PacingConfig(BaseModel):
    """Frame pacing configuration."""

    target_fps: float = Field(default=25.0, gt=0, le=240, description="Target frame rate")
    capture_failure_budget: int = Field(
        default=75,
        ge=1,
        description="Consecutive capture failures tolerated before fatal",
    )
    log_every: int = Field(
        default=250,
        ge=1,
        description="Ticks between pacer summary log lines",
    )

    @property
    def interval_seconds(self) -> float:
        """Target pacing interval in seconds."""
        return 1.0 / self.target_fps


class SessionConfig(BaseModel):
    """Session retry budgets and supervision timing."""

    launch_attempts: int = Field(default=3, ge=1, description="Launch retry budget")
    restart_attempts: int = Field(default=3, ge=1, description="Restart retry budget")
    backoff_initial_seconds: float = Field(
        default=1.0,
        ge=0,
        description="First backoff delay between attempts",
    )
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth")
    backoff_max_seconds: float = Field(default=30.0, ge=0, description="Backoff cap")
    restart_stability_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delivery time after which the restart budget is refilled",
    )
    health_check_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Encoder health polling interval",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for PageCast.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    content: ContentConfig = Field(default_factory=ContentConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def page_url(self) -> str:
        """URL the renderer loads: explicit page_url or this service's page."""
        if self.capture.page_url:
            return self.capture.page_url
        return f"http://127.0.0.1:{self.server.port}{self.content.page_path}"


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Capture settings
    if env_url := os.environ.get("PAGECAST_PAGE_URL"):
        config_data.setdefault("capture", {})["page_url"] = env_url
    if env_width := os.environ.get("PAGECAST_WIDTH"):
        config_data.setdefault("capture", {})["width"] = int(env_width)
    if env_height := os.environ.get("PAGECAST_HEIGHT"):
        config_data.setdefault("capture", {})["height"] = int(env_height)

    # Pacing settings
    if env_fps := os.environ.get("PAGECAST_FPS"):
        config_data.setdefault("pacing", {})["target_fps"] = float(env_fps)

    # Encoder settings
    if env_ffmpeg := os.environ.get("PAGECAST_FFMPEG"):
        config_data.setdefault("encoder", {})["executable"] = env_ffmpeg
    if env_dest := os.environ.get("PAGECAST_DESTINATION"):
        config_data.setdefault("encoder", {})["destination"] = env_dest

    # Content settings
    if env_dir := os.environ.get("PAGECAST_CONTENT_DIR"):
        config_data.setdefault("content", {})["directory"] = env_dir

    # Server settings (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("PAGECAST_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("PAGECAST_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)

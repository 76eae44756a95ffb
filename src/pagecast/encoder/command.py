"""
Encoder Command
===============

Fixed ffmpeg argument profile for the encoder subprocess.

Input is a raw stream of still images on stdin at the target frame
rate; output is an encoded video stream published to the configured
network destination.
"""

from typing import List

from pagecast.config import EncoderConfig


def format_rate(fps: float) -> str:
    """Render a frame rate as ffmpeg expects it (``25`` rather than ``25.0``)."""
    if float(fps).is_integer():
        return str(int(fps))
    return f"{fps:g}"


def build_ffmpeg_command(config: EncoderConfig, fps: float) -> List[str]:
    """
    Build the encoder argument vector.

    Args:
        config: Encoder configuration
        fps: Target frame rate of the incoming image stream

    Returns:
        Argument list, executable first
    """
    return [
        config.executable,
        "-hide_banner",
        "-f", config.input_format,
        "-vcodec", config.input_codec,
        "-r", format_rate(fps),
        "-i", "-",
        "-vcodec", config.output_codec,
        "-preset", config.preset,
        "-tune", config.tune,
        "-pix_fmt", config.pix_fmt,
        *config.extra_output_args,
        "-f", config.output_format,
        config.destination,
    ]

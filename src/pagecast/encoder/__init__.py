"""
Encoder Module
==============

Supervision of the external video encoder subprocess.

    - build_ffmpeg_command: Fixed encoder argument profile
    - ProcessHandle / ProcessLauncher: Process seam (real or fake)
    - EncoderProcess: Launch, write, health check, stop
"""

from pagecast.encoder.command import build_ffmpeg_command
from pagecast.encoder.process import ProcessHandle, ProcessLauncher, launch_subprocess
from pagecast.encoder.supervisor import EncoderMetrics, EncoderProcess


__all__ = [
    "build_ffmpeg_command",
    "ProcessHandle",
    "ProcessLauncher",
    "launch_subprocess",
    "EncoderMetrics",
    "EncoderProcess",
]

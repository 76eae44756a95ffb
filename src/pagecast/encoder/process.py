"""
Process Seam
============

Small process-supervision interface between EncoderProcess and the OS.

The ProcessHandle protocol is the subset of ``asyncio.subprocess.Process``
that EncoderProcess uses, so a real subprocess and a test double are
interchangeable. A ProcessLauncher turns an argument vector into a
running handle.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol


logger = logging.getLogger(__name__)


class ProcessInput(Protocol):
    """Writable end of the subprocess stdin pipe (asyncio.StreamWriter subset)."""

    transport: asyncio.WriteTransport

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def is_closing(self) -> bool: ...

    def close(self) -> None: ...


class ProcessOutput(Protocol):
    """Readable subprocess stream (asyncio.StreamReader subset)."""

    async def read(self, n: int = -1) -> bytes: ...


class ProcessHandle(Protocol):
    """Running subprocess (asyncio.subprocess.Process subset)."""

    pid: int
    stdin: Optional[ProcessInput]
    stderr: Optional[ProcessOutput]

    @property
    def returncode(self) -> Optional[int]: ...

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


ProcessLauncher = Callable[[List[str]], Awaitable[ProcessHandle]]


async def launch_subprocess(argv: List[str]) -> ProcessHandle:
    """
    Spawn ``argv`` with piped stdin and stderr.

    stdout is discarded; the encoder publishes to the network itself.

    Raises:
        FileNotFoundError: Executable not found
        PermissionError: Executable not runnable
    """
    logger.info(f"Spawning encoder: {' '.join(argv)}")
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )

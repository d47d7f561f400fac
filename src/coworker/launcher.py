"""Process launching behind a small protocol.

Workers and the environment resolver never call asyncio subprocess APIs
directly; they go through a ProcessLauncher so tests can substitute a fake
one without touching the OS process table.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from coworker.errors import SpawnError
from coworker.logging import get_logger

log = get_logger("launcher")


class ByteStream(Protocol):
    """Readable byte stream (asyncio.StreamReader compatible)."""

    async def read(self, n: int = -1) -> bytes: ...


@runtime_checkable
class ProcessHandle(Protocol):
    """A launched process (asyncio.subprocess.Process compatible)."""

    stdout: Any
    stderr: Any

    @property
    def returncode(self) -> int | None: ...

    async def wait(self) -> int: ...

    def kill(self) -> None: ...

    def terminate(self) -> None: ...


class ProcessLauncher(Protocol):
    """Protocol for starting external processes.

    Implementations:
    - AsyncioProcessLauncher: real subprocesses via asyncio
    - test fakes that replay canned stdout/stderr
    """

    async def launch(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        """Start a process with piped stdout and stderr.

        Raises:
            SpawnError: If the executable cannot be started.
        """
        ...


class AsyncioProcessLauncher:
    """Launch processes using asyncio.create_subprocess_exec."""

    async def launch(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessHandle:
        if not argv:
            raise SpawnError("Empty command line")
        command = argv[0]
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=dict(env) if env is not None else None,
            )
        except FileNotFoundError as e:
            raise SpawnError(f"Command not found: {command}") from e
        except PermissionError as e:
            raise SpawnError(f"Permission denied: {command}") from e
        except OSError as e:
            raise SpawnError(f"Failed to start {command}: {e}") from e


async def read_all(stream: ByteStream | None, chunk_size: int = 65536) -> bytes:
    """Read a stream to EOF."""
    if stream is None:
        return b""
    parts: list[bytes] = []
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        parts.append(chunk)
    return b"".join(parts)


async def kill_quietly(process: ProcessHandle) -> None:
    """Kill a process and reap it, ignoring an already-exited process."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=2.0)
    except asyncio.TimeoutError:
        log.warning("Process did not exit after kill")

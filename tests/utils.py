"""Shared fakes for coworker tests.

Nothing here touches the OS process table or the network: processes,
SDK connections and model providers are replayed from canned data.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterable, AsyncIterator, Mapping, Sequence
from typing import Any

from coworker.context import WorkerContext, WorkerKind
from coworker.environment import INSTALL_HINT, LaunchEnvironment
from coworker.errors import SpawnError
from coworker.workers.llm import StreamChunk
from coworker.workers.sdk import SDKOptions


def jsonl(*objects: dict[str, Any]) -> bytes:
    """Encode objects as newline-delimited JSON."""
    return "".join(json.dumps(o) + "\n" for o in objects).encode("utf-8")


def make_context(kind: WorkerKind = WorkerKind.CLI, working_directory: str | None = "/work", **kwargs: Any) -> WorkerContext:
    """Create a WorkerContext with test-friendly defaults."""
    return WorkerContext(session_id=kwargs.pop("session_id", "session-1"), kind=kind, working_directory=working_directory, **kwargs)


class FakeStream:
    """Byte stream replaying chunks, optionally blocking at EOF until released."""

    def __init__(self, chunks: Sequence[bytes] = (), *, release: asyncio.Event | None = None) -> None:
        self._chunks = list(chunks)
        self._release = release

    async def read(self, n: int = -1) -> bytes:
        if self._chunks:
            return self._chunks.pop(0)
        if self._release is not None:
            await self._release.wait()
        return b""


class FakeProcess:
    """Process handle with canned stdout/stderr and exit code.

    With ``hang=True`` stdout stays open until kill() is called.
    """

    def __init__(
        self,
        stdout: Sequence[bytes] | bytes = (),
        stderr: bytes = b"",
        returncode: int = 0,
        *,
        hang: bool = False,
    ) -> None:
        if isinstance(stdout, bytes):
            stdout = [stdout]
        self._killed_event = asyncio.Event()
        self.stdout = FakeStream(stdout, release=self._killed_event if hang else None)
        self.stderr = FakeStream([stderr] if stderr else [])
        self._exit_code = returncode
        self._returncode: int | None = None
        self.killed = False

    @property
    def returncode(self) -> int | None:
        return self._returncode

    async def wait(self) -> int:
        if self._returncode is None:
            self._returncode = self._exit_code
        return self._returncode

    def kill(self) -> None:
        self.killed = True
        self._exit_code = -9
        self._killed_event.set()

    def terminate(self) -> None:
        self.kill()


class FakeLauncher:
    """ProcessLauncher returning prepared processes in order."""

    def __init__(self, *processes: FakeProcess, error: SpawnError | None = None) -> None:
        self._processes = list(processes)
        self._error = error
        self.calls: list[dict[str, Any]] = []

    async def launch(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> FakeProcess:
        self.calls.append({"argv": list(argv), "cwd": cwd, "env": dict(env or {})})
        if self._error is not None:
            raise self._error
        if not self._processes:
            raise AssertionError(f"Unexpected launch: {argv}")
        return self._processes.pop(0)


class FakeResolver:
    """EnvironmentResolver stand-in that never looks at the filesystem."""

    def __init__(
        self,
        executable: str | None = "/opt/node/bin/claude",
        search_path: str = "/opt/node/bin",
        version: str | None = "1.0.0 (Claude Code)",
    ) -> None:
        self.executable = executable
        self.search_path = search_path
        self.version = version
        self.prepared: list[str] = []

    def prepare(self, name: str) -> LaunchEnvironment:
        self.prepared.append(name)
        if self.executable is None:
            raise SpawnError(f"Could not find '{name}' on the search path.", remediation=INSTALL_HINT)
        return LaunchEnvironment(executable=self.executable, search_path=self.search_path)

    async def probe_version(self, executable: str, env: Mapping[str, str] | None = None, timeout: float = 5.0) -> str | None:
        return self.version


class FakeConnection:
    """SDKConnection replaying wire dicts, then optionally raising."""

    def __init__(
        self,
        messages: Sequence[dict[str, Any]] = (),
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self._messages = list(messages)
        self._error = error
        self._gate = gate
        self.prompts: list[Any] = []
        self.options: list[SDKOptions] = []
        self.interrupted = False

    async def stream(
        self,
        prompt: str | AsyncIterable[dict[str, Any]],
        options: SDKOptions,
    ) -> AsyncIterator[dict[str, Any]]:
        if isinstance(prompt, str):
            self.prompts.append(prompt)
        else:
            self.prompts.append([turn async for turn in prompt])
        self.options.append(options)
        for message in self._messages:
            yield message
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error

    async def interrupt(self) -> None:
        self.interrupted = True
        if self._gate is not None:
            self._gate.set()


class FakeProvider:
    """LLMProvider yielding fixed text chunks."""

    def __init__(self, chunks: Sequence[str] = (), *, model: str = "test-model", gate: asyncio.Event | None = None) -> None:
        self._chunks = list(chunks)
        self._model = model
        self._gate = gate
        self.requests: list[list[dict[str, Any]]] = []

    @property
    def model(self) -> str:
        return self._model

    async def stream(self, messages: list[dict[str, Any]], *, max_tokens: int = 4096) -> AsyncIterator[StreamChunk]:
        self.requests.append(messages)
        for text in self._chunks:
            yield StreamChunk(text=text)
        if self._gate is not None:
            await self._gate.wait()
        yield StreamChunk(text="", is_final=True, finish_reason="stop")

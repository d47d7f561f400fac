"""Worker backed by a spawned CLI process in print mode.

Each request launches:

    <exe> -p --output-format stream-json --verbose --dangerously-skip-permissions
          [--model <name>] <prompt>

with the session working directory as cwd. The credential variable is
removed from the child environment so the CLI uses its own stored login.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field

from coworker.context import WorkerContext, WorkerKind
from coworker.environment import INSTALL_HINT, EnvironmentResolver
from coworker.errors import (
    CoworkerError,
    FailureKind,
    SpawnError,
    VersionIncompatibilityError,
    classify_process_error,
)
from coworker.launcher import AsyncioProcessLauncher, ProcessHandle, ProcessLauncher, kill_quietly, read_all
from coworker.logging import get_logger, mask_secret
from coworker.messages import UserInput
from coworker.observers import Observer
from coworker.permissions import PermissionManager
from coworker.protocol import Init, ProtocolEvent, Result, StreamParser, TextDelta, ToolResult, ToolUse
from coworker.workers.base import Worker
from coworker.workers.tools import describe_tool_use

log = get_logger("workers.process")

SUCCESS_FALLBACK = "Command executed successfully."
READ_CHUNK = 65536


def redact_command(argv: list[str], secrets: Iterable[str | None] = (), max_arg: int = 80) -> str:
    """Render argv for logging with secrets masked and long arguments cut."""
    hidden = [s for s in secrets if s]
    parts = []
    for arg in argv:
        for secret in hidden:
            arg = arg.replace(secret, mask_secret(secret))
        if len(arg) > max_arg:
            arg = arg[:max_arg] + "..."
        parts.append(f'"{arg}"' if " " in arg else arg)
    return " ".join(parts)


@dataclass
class _RunState:
    text: list[str] = field(default_factory=list)
    result_text: str | None = None
    result_error: str | None = None

    @property
    def streamed(self) -> str:
        return "".join(self.text)


class SpawnedProcessWorker(Worker):
    """Runs the CLI once per request and parses its stream-json stdout."""

    kind = WorkerKind.CLI
    requires_working_directory = True

    def __init__(
        self,
        context: WorkerContext,
        permissions: PermissionManager | None = None,
        observers: Iterable[Observer] = (),
        *,
        launcher: ProcessLauncher | None = None,
        resolver: EnvironmentResolver | None = None,
    ) -> None:
        super().__init__(context, permissions, observers)
        self._launcher = launcher or AsyncioProcessLauncher()
        self._resolver = resolver or context.resolver(self._launcher)
        self._process: ProcessHandle | None = None
        self._aborted = False

    def build_argv(self, executable: str, prompt: str) -> list[str]:
        argv = [
            executable,
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]
        if self.context.model:
            argv += ["--model", self.context.model]
        argv.append(prompt)
        return argv

    async def initialize(self) -> None:
        """Check that the CLI can be found and answers ``--version``."""
        try:
            launch = self._resolver.prepare(self.context.executable)
        except SpawnError as e:
            log.warning("CLI not available: %s", e)
            self.emit_error(e.user_message())
            return

        env = launch.build_env(remove=[self.context.credential_env])
        version = await self._resolver.probe_version(launch.executable, env, self.context.probe_timeout)
        if version is None:
            log.warning("%s --version did not succeed", launch.executable)
            self.emit_error(f"Could not run {self.context.executable} --version. {INSTALL_HINT}")
            return
        log.info("Using %s (%s)", launch.executable, version)

    async def abort(self) -> None:
        process = self._process
        if process is None:
            return
        self._aborted = True
        log.info("Aborting CLI process for session %s", self.session_id)
        await kill_quietly(process)

    async def _run(self, request: UserInput) -> str:
        if request.images:
            raise CoworkerError("Image input is not supported in CLI mode.")

        launch = self._resolver.prepare(self.context.executable)
        argv = self.build_argv(launch.executable, request.content)
        env = launch.build_env(remove=[self.context.credential_env])
        log.info("Executing: %s", redact_command(argv, [self.context.api_key]))

        self._aborted = False
        process = await self._launcher.launch(argv, cwd=self.working_directory, env=env)
        self._process = process
        stderr_task = asyncio.create_task(read_all(process.stderr))
        state = _RunState()
        try:
            parser = StreamParser()
            while True:
                chunk = await process.stdout.read(READ_CHUNK)
                if not chunk:
                    break
                for event in parser.feed(chunk):
                    self._dispatch(event, state)
            for event in parser.close():
                self._dispatch(event, state)

            stderr = (await stderr_task).decode("utf-8", errors="replace")
            code = await process.wait()
        finally:
            self._process = None
            if not stderr_task.done():
                stderr_task.cancel()
            if process.returncode is None:
                log.info("Killing CLI process left running for session %s", self.session_id)
                await asyncio.shield(kill_quietly(process))

        if parser.skipped:
            log.warning("Skipped %d malformed protocol line(s)", parser.skipped)
        if stderr.strip():
            log.debug("CLI stderr: %s", stderr.strip())

        if self._aborted:
            log.info("CLI process aborted (exit code %s)", code)
            return state.streamed

        if code == 0:
            return self._success_content(state)
        return self._failure_content(launch.executable, code, stderr)

    def _success_content(self, state: _RunState) -> str:
        if state.result_error is not None:
            self.emit_error(state.result_error)
            prefix = f"{state.streamed}\n\n" if state.streamed else ""
            return f"{prefix}[Error] {state.result_error}"
        return state.result_text or state.streamed or SUCCESS_FALLBACK

    def _failure_content(self, executable: str, code: int, stderr: str) -> str:
        failure = classify_process_error(stderr)
        if failure.kind is FailureKind.RUNTIME_TOO_OLD:
            error = VersionIncompatibilityError(failure.message, failure.required_version)
            log.warning("CLI needs a newer runtime (%s)", error.required_version)
            message = str(error)
        else:
            message = stderr.strip() or f"{executable} exited with code {code}"
            log.error("CLI exited with code %s", code)
        self.emit_error(message)
        return message

    def _dispatch(self, event: ProtocolEvent, state: _RunState) -> None:
        if isinstance(event, Init):
            log.debug("CLI session started (model=%s)", event.model)
            message = f"Session started ({event.model})" if event.model else "Session started"
            self.emit_progress({"type": "init", "message": message})
        elif isinstance(event, TextDelta):
            state.text.append(event.text)
            self.emit_token(event.text)
            self.set_reply(state.streamed)
        elif isinstance(event, ToolUse):
            self.emit_progress(describe_tool_use(event.name, event.input))
        elif isinstance(event, ToolResult):
            self.emit_progress({
                "type": "tool_result",
                "message": "Tool failed" if event.is_error else "Tool finished",
                "is_error": event.is_error,
            })
        elif isinstance(event, Result):
            if event.is_error:
                state.result_error = event.error_message or "Unknown error"
            else:
                state.result_text = event.text

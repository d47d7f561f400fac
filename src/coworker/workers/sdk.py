"""Worker backed by a claude-agent-sdk streaming connection.

The SDK launches the CLI itself, so the executable still has to be located
through the EnvironmentResolver and handed over as ``cli_path``. SDK message
objects are converted to the same wire dicts the CLI prints and decoded with
``decode_message``, so both process-based variants share one event model.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    PermissionResultAllow,
    PermissionResultDeny,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ToolPermissionContext,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)

from coworker.context import WorkerContext, WorkerKind
from coworker.environment import EnvironmentResolver
from coworker.errors import ParseError, TransportError
from coworker.logging import get_logger
from coworker.messages import UserInput, parse_data_url
from coworker.observers import Observer
from coworker.permissions import PermissionManager
from coworker.protocol import Init, ProtocolEvent, Result, TextDelta, ToolResult, ToolUse, decode_message
from coworker.workers.base import NO_RESPONSE_MESSAGE, Worker
from coworker.workers.tools import describe_tool_use, is_progress_line

log = get_logger("workers.sdk")

BYPASS_PERMISSIONS = "bypassPermissions"

TRANSPORT_HELP = (
    "The connection to the CLI was interrupted. Possible causes: the CLI process exited "
    "unexpectedly, a network problem, or a misconfigured credential. Check that the CLI is "
    "installed (run `claude --version`) and that you are logged in."
)

# (tool name, tool input) -> (allowed, denial message)
ToolAuthorizer = Callable[[str, dict[str, Any]], Awaitable[tuple[bool, str | None]]]


@dataclass(slots=True)
class SDKOptions:
    """Connection options independent of the SDK's own types."""

    cwd: str
    cli_path: str
    permission_mode: str = BYPASS_PERMISSIONS
    env: dict[str, str] = field(default_factory=dict)
    model: str | None = None
    resume: str | None = None
    can_use_tool: ToolAuthorizer | None = None


class SDKConnection(Protocol):
    """One streaming conversation turn over the SDK."""

    def stream(
        self,
        prompt: str | AsyncIterable[dict[str, Any]],
        options: SDKOptions,
    ) -> AsyncIterator[dict[str, Any]]:
        """Send the prompt and yield wire-shaped dicts until the result."""
        ...

    async def interrupt(self) -> None:
        """Interrupt the in-flight turn, if any."""
        ...


# -----------------------------------------------------------------------------
# claude-agent-sdk adapter
# -----------------------------------------------------------------------------


def _block_to_wire(block: Any) -> dict[str, Any] | None:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
            "is_error": block.is_error,
        }
    return None


def message_to_wire(message: Any) -> dict[str, Any] | None:
    """Convert an SDK message object to its stream-json dict, or None."""
    if isinstance(message, SystemMessage):
        return {"type": "system", "subtype": message.subtype, **(message.data or {})}
    if isinstance(message, AssistantMessage):
        blocks = [b for b in (_block_to_wire(x) for x in message.content) if b]
        return {"type": "assistant", "message": {"model": message.model, "content": blocks}}
    if isinstance(message, UserMessage):
        content = message.content
        if isinstance(content, str):
            return {"type": "user", "message": {"content": content}}
        blocks = [b for b in (_block_to_wire(x) for x in content) if b]
        return {"type": "user", "message": {"content": blocks}}
    if isinstance(message, ResultMessage):
        return {
            "type": "result",
            "subtype": message.subtype,
            "is_error": message.is_error,
            "result": message.result,
            "session_id": message.session_id,
        }
    return None


class ClaudeSDKConnection:
    """SDKConnection built on ClaudeSDKClient."""

    def __init__(self) -> None:
        self._client: ClaudeSDKClient | None = None

    def _build_options(self, options: SDKOptions) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "cwd": options.cwd,
            "permission_mode": options.permission_mode,
            "env": options.env,
            "cli_path": options.cli_path,
        }
        if options.model:
            kwargs["model"] = options.model
        if options.resume:
            kwargs["resume"] = options.resume
        if options.can_use_tool is not None:
            authorize = options.can_use_tool

            async def can_use_tool(
                tool_name: str,
                tool_input: dict[str, Any],
                context: ToolPermissionContext,
            ) -> PermissionResultAllow | PermissionResultDeny:
                allowed, reason = await authorize(tool_name, tool_input)
                if allowed:
                    return PermissionResultAllow(updated_input=tool_input)
                return PermissionResultDeny(message=reason or "Denied by user")

            kwargs["can_use_tool"] = can_use_tool
        return ClaudeAgentOptions(**kwargs)

    async def stream(
        self,
        prompt: str | AsyncIterable[dict[str, Any]],
        options: SDKOptions,
    ) -> AsyncIterator[dict[str, Any]]:
        client = ClaudeSDKClient(options=self._build_options(options))
        self._client = client
        try:
            await client.connect()
            await client.query(prompt)
            async for message in client.receive_response():
                wire = message_to_wire(message)
                if wire is not None:
                    yield wire
        finally:
            self._client = None
            await client.disconnect()

    async def interrupt(self) -> None:
        client = self._client
        if client is not None:
            await client.interrupt()


# -----------------------------------------------------------------------------
# Worker
# -----------------------------------------------------------------------------


async def _single_turn(message: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
    yield message


@dataclass
class _Response:
    parts: list[str] = field(default_factory=list)

    def add(self, text: str) -> None:
        self.parts.append(text)

    @property
    def text(self) -> str:
        return "".join(self.parts)


class StreamingSDKWorker(Worker):
    """Streams responses through claude-agent-sdk with session resumption."""

    kind = WorkerKind.SDK
    requires_working_directory = True

    def __init__(
        self,
        context: WorkerContext,
        permissions: PermissionManager | None = None,
        observers: Iterable[Observer] = (),
        *,
        connection: SDKConnection | None = None,
        resolver: EnvironmentResolver | None = None,
    ) -> None:
        super().__init__(context, permissions, observers)
        self._connection = connection or ClaudeSDKConnection()
        self._resolver = resolver or context.resolver()
        self._session_token: str | None = None
        self._streaming = False

    @property
    def session_token(self) -> str | None:
        """Token passed back as ``resume`` on the next request."""
        return self._session_token

    def _reset_resumable_state(self) -> None:
        self._session_token = None

    async def abort(self) -> None:
        if not self._streaming:
            return
        log.info("Interrupting SDK turn for session %s", self.session_id)
        try:
            await self._connection.interrupt()
        except Exception as e:
            log.warning("Interrupt failed: %s", e)

    def build_prompt(self, request: UserInput) -> str | AsyncIterable[dict[str, Any]]:
        """Plain prompt, or one synthetic user turn carrying images then text."""
        if not request.images:
            return request.content

        content: list[dict[str, Any]] = []
        for url in request.images:
            image = parse_data_url(url)
            if image is None:
                log.warning("Skipping unparsable image URL (%.40s...)", url)
                continue
            content.append(image.to_dict())
        content.append({"type": "text", "text": request.content})
        return _single_turn({
            "type": "user",
            "message": {"role": "user", "content": content},
            "parent_tool_use_id": None,
            "session_id": "",
        })

    def build_options(self) -> SDKOptions:
        launch = self._resolver.prepare(self.context.executable)
        env = {"PATH": launch.search_path}
        if self.context.api_key:
            env[self.context.credential_env] = self.context.api_key

        options = SDKOptions(
            cwd=self.working_directory or "",
            cli_path=launch.executable,
            permission_mode=self.context.permission_mode,
            env=env,
            model=self.context.model,
            resume=self._session_token,
        )
        if options.permission_mode != BYPASS_PERMISSIONS:
            options.can_use_tool = self.authorize_tool
        return options

    async def authorize_tool(self, tool: str, tool_input: dict[str, Any]) -> tuple[bool, str | None]:
        """Decide whether the CLI may run a tool call."""
        command = tool_input.get("command")
        if tool == "Bash" and isinstance(command, str):
            pattern = self.permissions.blocked_reason(command)
            if pattern is not None:
                log.warning("Blocked command matching %r", pattern)
                return False, f"Command blocked by policy (matches '{pattern}')"

        path = tool_input.get("file_path") or tool_input.get("path")
        path = path if isinstance(path, str) else None
        if self.permissions.has_tool_permission(tool, path):
            return True, None

        description = describe_tool_use(tool, tool_input)["message"]
        approved = await self.request_confirmation(tool, description, tool_input, path)
        return approved, None if approved else "Denied by user"

    async def _run(self, request: UserInput) -> str:
        options = self.build_options()
        prompt = self.build_prompt(request)
        log.info(
            "SDK request in %s (model=%s, resume=%s)",
            options.cwd,
            options.model or "default",
            "yes" if options.resume else "no",
        )

        response = _Response()
        self._streaming = True
        try:
            async for wire in self._connection.stream(prompt, options):
                try:
                    events = decode_message(wire)
                except ParseError as e:
                    log.warning("Skipping SDK message: %s", e)
                    continue
                for event in events:
                    self._dispatch(event, response)
        except Exception as e:
            if response.text:
                log.warning("SDK stream broke after %d chars; keeping partial response: %s", len(response.text), e)
            else:
                log.error("SDK stream failed before any content: %s", e)
                raise TransportError(f"{TRANSPORT_HELP} ({e})") from e
        finally:
            self._streaming = False

        return response.text or NO_RESPONSE_MESSAGE

    def _dispatch(self, event: ProtocolEvent, response: _Response) -> None:
        if isinstance(event, Init):
            if event.session_id:
                self._session_token = event.session_id
            log.debug("SDK session %s (model=%s)", event.session_id, event.model)
        elif isinstance(event, TextDelta):
            response.add(event.text)
            if is_progress_line(event.text):
                log.info("Progress line shown as status: %s", event.text.strip())
                self.emit_progress({"type": "tool_use", "message": event.text.strip()})
            else:
                self.emit_token(event.text)
            self.set_reply(response.text)
        elif isinstance(event, ToolUse):
            self.emit_progress(describe_tool_use(event.name, event.input))
        elif isinstance(event, ToolResult):
            log.debug("Tool result for %s", event.tool_use_id)
        elif isinstance(event, Result):
            if event.session_id:
                self._session_token = event.session_id
            if event.is_error:
                message = event.error_message or "Unknown error"
                self.emit_progress({"type": "complete", "message": f"Error: {message}", "is_error": True})
                line = f"\n\nError: {message}"
                response.add(line)
                self.emit_token(line)
            elif event.text:
                addition = "\n\n" + event.text
                response.add(addition)
                self.emit_token(addition)
            self.set_reply(response.text)

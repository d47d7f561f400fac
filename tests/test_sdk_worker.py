"""Tests for the streaming SDK worker."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from coworker.context import WorkerKind
from coworker.messages import UserInput
from coworker.observers import EventKind, QueueObserver, WorkerEvent
from coworker.permissions import PermissionManager
from coworker.workers.base import NO_RESPONSE_MESSAGE, NO_WORKING_DIRECTORY_MESSAGE
from coworker.workers.sdk import TRANSPORT_HELP, StreamingSDKWorker
from tests.utils import FakeConnection, FakeResolver, make_context

PNG = "data:image/png;base64,iVBORw0KGgo="


def init(session_id: str = "sess-1") -> dict:
    return {"type": "system", "subtype": "init", "model": "claude-sonnet", "session_id": session_id}


def text(value: str) -> dict:
    return {"type": "assistant", "message": {"content": [{"type": "text", "text": value}]}}


def result(value: str = "", session_id: str | None = "sess-1", **fields: object) -> dict:
    return {"type": "result", "result": value, "is_error": False, "session_id": session_id, **fields}


async def next_event(observer: QueueObserver, kind: EventKind) -> WorkerEvent:
    while True:
        event = await asyncio.wait_for(observer.queue.get(), timeout=1.0)
        if event.kind is kind:
            return event


@pytest.fixture
def observer() -> QueueObserver:
    return QueueObserver()


def make_worker(
    tmp_path: Path,
    observer: QueueObserver,
    connection: FakeConnection,
    *,
    permissions: PermissionManager | None = None,
    **context: object,
) -> StreamingSDKWorker:
    context.setdefault("working_directory", str(tmp_path))
    return StreamingSDKWorker(
        make_context(WorkerKind.SDK, **context),
        permissions,
        [observer],
        connection=connection,
        resolver=FakeResolver(),
    )


class TestStreaming:
    """Test response assembly."""

    async def test_text_and_result(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([init(), text("Hello"), result("Done")])
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("hi")

        assert worker.get_history()[-1].content == "Hello\n\nDone"
        assert [e.payload for e in observer.of_kind(EventKind.STREAM_TOKEN)] == ["Hello", "\n\nDone"]
        assert worker.session_token == "sess-1"
        assert observer.kinds()[-1] is EventKind.COMPLETE
        assert connection.prompts == ["hi"]

    async def test_progress_line_not_streamed(self, tmp_path: Path, observer: QueueObserver) -> None:
        """A short line ending in a colon is shown as progress, kept in the reply."""
        connection = FakeConnection([text("Let me look at the files:"), text("There are two.")])
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("what's here?")

        assert [e.payload for e in observer.of_kind(EventKind.STREAM_TOKEN)] == ["There are two."]
        progress = observer.of_kind(EventKind.PROGRESS)
        assert progress[0].payload == {"type": "tool_use", "message": "Let me look at the files:"}
        assert worker.get_history()[-1].content == "Let me look at the files:There are two."

    async def test_tool_use_progress(self, tmp_path: Path, observer: QueueObserver) -> None:
        todos = {"todos": [{"content": "Read code", "status": "in_progress"}]}
        connection = FakeConnection(
            [
                {"type": "assistant", "message": {"content": [{"type": "tool_use", "id": "t", "name": "TodoWrite", "input": todos}]}},
                {"type": "assistant", "message": {"content": [{"type": "tool_use", "id": "u", "name": "mcp__fs__read"}]}},
                text("ok"),
            ]
        )
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("plan")

        payloads = [e.payload for e in observer.of_kind(EventKind.PROGRESS)]
        assert payloads[0]["message"] == "Task list (1 items)"
        assert payloads[0]["todos"] == [{"content": "Read code", "status": "in_progress"}]
        assert payloads[1]["message"] == "MCP fs: read"

    async def test_error_result(self, tmp_path: Path, observer: QueueObserver) -> None:
        """An application error is shown in the reply; the request completes normally."""
        connection = FakeConnection([text("Trying"), {"type": "result", "is_error": True, "errors": ["a", "b"]}])
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("go")

        assert worker.get_history()[-1].content == "Trying\n\nError: a; b"
        assert observer.of_kind(EventKind.ERROR) == []
        complete = [e.payload for e in observer.of_kind(EventKind.PROGRESS) if e.payload["type"] == "complete"]
        assert complete == [{"type": "complete", "message": "Error: a; b", "is_error": True}]
        assert observer.kinds()[-1] is EventKind.COMPLETE

    async def test_no_response(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection([init()]))
        await worker.process_user_message("hi")
        assert worker.get_history()[-1].content == NO_RESPONSE_MESSAGE

    async def test_no_working_directory(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([text("never")])
        worker = make_worker(tmp_path, observer, connection, working_directory=None)

        await worker.process_user_message("hi")

        assert worker.get_history()[-1].content == NO_WORKING_DIRECTORY_MESSAGE
        assert connection.prompts == []
        assert observer.kinds()[-1] is EventKind.COMPLETE


class TestTransportFailures:
    """Test connection failures with and without partial content."""

    async def test_partial_response_kept(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([text("Partial answer")], error=ConnectionResetError("pipe closed"))
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("hi")

        assert worker.get_history()[-1].content == "Partial answer"
        assert observer.of_kind(EventKind.ERROR) == []

    async def test_empty_failure_reported(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([init()], error=ConnectionResetError("pipe closed"))
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("hi")

        (error,) = observer.of_kind(EventKind.ERROR)
        assert TRANSPORT_HELP in error.payload
        assert "pipe closed" in error.payload
        assert [m.content for m in worker.get_history()] == ["hi"]
        assert not worker.processing
        assert observer.kinds()[-1] is EventKind.COMPLETE


class TestResumption:
    """Test the session token."""

    async def test_token_passed_as_resume(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([init("sess-9"), text("a")])
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("one")
        await worker.process_user_message("two")

        assert [o.resume for o in connection.options] == [None, "sess-9"]

    async def test_result_token_wins(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection([init("sess-1"), result("x", session_id="sess-2")]))
        await worker.process_user_message("one")
        assert worker.session_token == "sess-2"

    async def test_clear_history_drops_token(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([init("sess-1"), text("a")])
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message("one")
        worker.clear_history()
        await worker.process_user_message("two")

        assert worker.session_token == "sess-1"
        assert [o.resume for o in connection.options] == [None, None]
        assert [m.content for m in worker.get_history()] == ["two", "a"]


class TestPromptAndOptions:
    """Test prompt construction and connection options."""

    async def test_images_build_single_turn(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([text("A logo.")])
        worker = make_worker(tmp_path, observer, connection)

        await worker.process_user_message(UserInput("describe", images=(PNG, "not-a-data-url")))

        (turns,) = connection.prompts
        assert turns == [
            {
                "type": "user",
                "message": {
                    "role": "user",
                    "content": [
                        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}},
                        {"type": "text", "text": "describe"},
                    ],
                },
                "parent_tool_use_id": None,
                "session_id": "",
            }
        ]
        user = worker.get_history()[0]
        assert isinstance(user.content, list) and len(user.content) == 2

    def test_options(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection(), api_key="sk-test", model="opus")
        options = worker.build_options()

        assert options.cwd == str(tmp_path)
        assert options.cli_path == "/opt/node/bin/claude"
        assert options.env == {"PATH": "/opt/node/bin", "ANTHROPIC_API_KEY": "sk-test"}
        assert options.model == "opus"
        assert options.permission_mode == "bypassPermissions"
        assert options.can_use_tool is None

    def test_options_without_key(self, tmp_path: Path, observer: QueueObserver) -> None:
        options = make_worker(tmp_path, observer, FakeConnection()).build_options()
        assert options.env == {"PATH": "/opt/node/bin"}

    def test_prompting_mode_installs_authorizer(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection(), permission_mode="default")
        assert worker.build_options().can_use_tool == worker.authorize_tool


class TestToolAuthorization:
    """Test the approval path for non-bypass permission modes."""

    async def test_blacklisted_command_denied(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection())
        allowed, reason = await worker.authorize_tool("Bash", {"command": "rm -rf /"})
        assert not allowed
        assert "rm -rf" in (reason or "")
        assert observer.of_kind(EventKind.CONFIRM_REQUEST) == []

    async def test_remembered_tool_allowed(self, tmp_path: Path, observer: QueueObserver) -> None:
        permissions = PermissionManager()
        permissions.remember_tool("Read")
        worker = make_worker(tmp_path, observer, FakeConnection(), permissions=permissions)
        assert await worker.authorize_tool("Read", {"file_path": "/a"}) == (True, None)

    async def test_confirmation_with_remember(self, tmp_path: Path, observer: QueueObserver) -> None:
        """The user approves once and asks to remember the decision."""
        worker = make_worker(tmp_path, observer, FakeConnection())
        target = str(tmp_path / "out.txt")

        task = asyncio.create_task(worker.authorize_tool("Write", {"file_path": target}))
        request = await next_event(observer, EventKind.CONFIRM_REQUEST)
        assert request.payload["tool"] == "Write"
        assert request.payload["path"] == target
        assert request.payload["description"] == f"Writing file: {target}"
        assert worker.pending_confirmations() == [request.payload["id"]]

        assert worker.handle_confirm_response_with_remember(request.payload["id"], True, True, "Write", target)
        assert await task == (True, None)
        assert worker.permissions.has_tool_permission("Write", target)
        assert not worker.handle_confirm_response(request.payload["id"], False)

    async def test_confirmation_denied(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection())
        task = asyncio.create_task(worker.authorize_tool("Bash", {"command": "make"}))
        request = await next_event(observer, EventKind.CONFIRM_REQUEST)

        worker.handle_confirm_response(request.payload["id"], False)

        assert await task == (False, "Denied by user")

    async def test_cleanup_cancels_pending(self, tmp_path: Path, observer: QueueObserver) -> None:
        worker = make_worker(tmp_path, observer, FakeConnection())
        task = asyncio.create_task(worker.request_confirmation("Bash", "Running command: make", {"command": "make"}))
        await next_event(observer, EventKind.CONFIRM_REQUEST)

        await worker.cleanup()

        assert await task is False
        assert worker.pending_confirmations() == []

    async def test_cancelled_waiter_drops_entry(self, tmp_path: Path, observer: QueueObserver) -> None:
        """A confirmation whose waiting task is cancelled leaves nothing behind."""
        worker = make_worker(tmp_path, observer, FakeConnection())
        task = asyncio.create_task(worker.request_confirmation("Bash", "Running command: make", {"command": "make"}))
        request = await next_event(observer, EventKind.CONFIRM_REQUEST)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert request.payload["id"] not in worker._broker
        assert not worker.handle_confirm_response(request.payload["id"], True)


class TestAbort:
    """Test interrupting a turn."""

    async def test_abort_interrupts(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection([text("Working")], gate=asyncio.Event())
        worker = make_worker(tmp_path, observer, connection)

        task = asyncio.create_task(worker.process_user_message("long"))
        await next_event(observer, EventKind.STREAM_TOKEN)
        await worker.abort()
        await asyncio.wait_for(task, timeout=1.0)

        assert connection.interrupted
        assert worker.get_history()[-1].content == "Working"
        assert not worker.processing

    async def test_abort_when_idle(self, tmp_path: Path, observer: QueueObserver) -> None:
        connection = FakeConnection()
        await make_worker(tmp_path, observer, connection).abort()
        assert not connection.interrupted

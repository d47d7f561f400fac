"""Tests for the model-API worker."""

from __future__ import annotations

import asyncio

import pytest

from coworker.context import WorkerKind
from coworker.errors import ConfigurationError
from coworker.messages import ImageBlock, Message, Role, TextBlock, UserInput
from coworker.observers import EventKind, QueueObserver
from coworker.workers.base import NO_RESPONSE_MESSAGE
from coworker.workers.llm import LiteLLMProvider
from coworker.workers.remote import RemoteAPIWorker, to_chat_message
from tests.utils import FakeProvider, make_context


def make_worker(provider: FakeProvider | None, observer: QueueObserver, **context: object) -> RemoteAPIWorker:
    return RemoteAPIWorker(
        make_context(WorkerKind.API, working_directory=None, **context),
        observers=[observer],
        provider=provider,
    )


class TestToChatMessage:
    """Test history conversion."""

    def test_text(self) -> None:
        assert to_chat_message(Message(Role.USER, "hi")) == {"role": "user", "content": "hi"}

    def test_empty_skipped(self) -> None:
        assert to_chat_message(Message(Role.ASSISTANT, "")) is None

    def test_image_parts(self) -> None:
        message = Message(Role.USER, [ImageBlock("image/png", "aGk="), TextBlock("what?")])
        assert to_chat_message(message) == {
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,aGk="}},
                {"type": "text", "text": "what?"},
            ],
        }


class TestRemoteAPIWorker:
    """Test streaming through a provider."""

    async def test_streams_reply(self) -> None:
        observer = QueueObserver()
        provider = FakeProvider(["Hel", "lo"])
        worker = make_worker(provider, observer)

        await worker.process_user_message("hi")

        assert worker.get_history()[-1].content == "Hello"
        assert [e.payload for e in observer.of_kind(EventKind.STREAM_TOKEN)] == ["Hel", "lo"]
        assert provider.requests == [[{"role": "user", "content": "hi"}]]
        assert observer.kinds()[0] is EventKind.STREAM_START
        assert observer.kinds()[-1] is EventKind.COMPLETE

    async def test_no_working_directory_needed(self) -> None:
        worker = make_worker(FakeProvider(["ok"]), QueueObserver())
        await worker.process_user_message("hi")
        assert worker.get_history()[-1].content == "ok"

    async def test_history_sent(self) -> None:
        provider = FakeProvider(["second"])
        worker = make_worker(provider, QueueObserver())
        worker.load_history([{"role": "user", "content": "first"}, {"role": "assistant", "content": "reply"}])

        await worker.process_user_message(UserInput("again"))

        assert provider.requests[0] == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "again"},
        ]

    async def test_empty_stream(self) -> None:
        worker = make_worker(FakeProvider([]), QueueObserver())
        await worker.process_user_message("hi")
        assert worker.get_history()[-1].content == NO_RESPONSE_MESSAGE

    async def test_abort_keeps_partial(self) -> None:
        observer = QueueObserver()
        worker = make_worker(FakeProvider(["Partial"], gate=asyncio.Event()), observer)

        task = asyncio.create_task(worker.process_user_message("hi"))
        while not observer.of_kind(EventKind.STREAM_TOKEN):
            await asyncio.sleep(0)
        await worker.abort()
        await asyncio.wait_for(task, timeout=1.0)

        assert worker.get_history()[-1].content == "Partial"
        assert not worker.processing
        assert observer.of_kind(EventKind.ERROR) == []

    async def test_provider_failure(self) -> None:
        class BrokenProvider(FakeProvider):
            async def stream(self, messages, *, max_tokens=4096):
                raise RuntimeError("503 from upstream")
                yield  # pragma: no cover

        observer = QueueObserver()
        worker = make_worker(BrokenProvider(), observer)

        await worker.process_user_message("hi")

        assert [e.payload for e in observer.of_kind(EventKind.ERROR)] == ["503 from upstream"]
        assert [m.role for m in worker.get_history()] == [Role.USER]
        assert not worker.processing

    def test_requires_key(self) -> None:
        with pytest.raises(ConfigurationError):
            make_worker(None, QueueObserver())

    def test_builds_litellm_provider(self) -> None:
        worker = make_worker(None, QueueObserver(), api_key="sk-test", model="gpt-4o")
        assert isinstance(worker.provider, LiteLLMProvider)
        assert worker.provider.model == "gpt-4o"

"""Worker that talks to a model API directly through an LLMProvider."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from coworker.context import WorkerContext, WorkerKind
from coworker.errors import ConfigurationError
from coworker.logging import get_logger
from coworker.messages import ImageBlock, Message, TextBlock, UserInput
from coworker.observers import Observer
from coworker.permissions import PermissionManager
from coworker.workers.base import NO_RESPONSE_MESSAGE, Worker
from coworker.workers.llm import DEFAULT_MODEL, ChatMessage, LiteLLMProvider, LLMProvider

log = get_logger("workers.remote")


def to_chat_message(message: Message) -> ChatMessage | None:
    """Convert a history Message to a chat message, or None if it has no content."""
    if isinstance(message.content, str):
        if not message.content:
            return None
        return {"role": message.role.value, "content": message.content}

    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            parts.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            parts.append({"type": "image_url", "image_url": {"url": block.to_data_url()}})
    if not parts:
        return None
    return {"role": message.role.value, "content": parts}


class RemoteAPIWorker(Worker):
    """Streams completions from a model API.

    Needs a credential but no working directory.
    """

    kind = WorkerKind.API

    def __init__(
        self,
        context: WorkerContext,
        permissions: PermissionManager | None = None,
        observers: Iterable[Observer] = (),
        *,
        provider: LLMProvider | None = None,
    ) -> None:
        super().__init__(context, permissions, observers)
        if provider is None:
            if not context.api_key:
                raise ConfigurationError("No API key configured for the API integration mode")
            provider = LiteLLMProvider(
                context.model or DEFAULT_MODEL,
                api_key=context.api_key,
                api_base=context.api_base,
            )
        self._provider = provider
        self._task: asyncio.Task[str] | None = None
        self._partial: list[str] = []

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    async def abort(self) -> None:
        task = self._task
        if task is not None and not task.done():
            log.info("Cancelling API stream for session %s", self.session_id)
            task.cancel()

    async def _run(self, request: UserInput) -> str:
        # Everything before the placeholder
        messages = [m for m in (to_chat_message(msg) for msg in self._history[:-1]) if m]
        log.info("API request with %d message(s) to %s", len(messages), self._provider.model)

        self._partial = []
        self._task = asyncio.create_task(self._stream(messages))
        try:
            text = await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            log.info("API stream aborted after %d chars", sum(len(p) for p in self._partial))
            return "".join(self._partial)
        finally:
            self._task = None
        return text or NO_RESPONSE_MESSAGE

    async def _stream(self, messages: list[ChatMessage]) -> str:
        async for chunk in self._provider.stream(messages, max_tokens=self.context.max_tokens):
            if chunk.text:
                self._partial.append(chunk.text)
                self.emit_token(chunk.text)
                self.set_reply("".join(self._partial))
        return "".join(self._partial)

"""LLM provider protocol and the litellm implementation.

Supports 100+ LLM providers through litellm:
- Anthropic: "claude-sonnet-4-20250514"
- OpenAI: "gpt-4o"
- Local: "ollama/llama3"

See https://docs.litellm.ai/docs/providers for full list.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import litellm

DEFAULT_MODEL = "claude-sonnet-4-20250514"

ChatMessage = dict[str, Any]


@dataclass(slots=True)
class StreamChunk:
    """A chunk from streaming LLM response."""

    text: str
    is_final: bool = False
    finish_reason: str | None = None


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for streaming chat completion providers."""

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    def stream(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamChunk]:
        """Generate a streaming completion.

        Args:
            messages: Chat messages (``role`` plus string or part-list ``content``)
            max_tokens: Maximum tokens to generate

        Yields:
            StreamChunk objects as they arrive
        """
        ...


class LiteLLMProvider:
    """LLM provider using litellm for multi-provider support.

    Usage:
        provider = LiteLLMProvider("claude-sonnet-4-20250514", api_key=key)

        # With custom base URL
        provider = LiteLLMProvider("gpt-4o", api_base="http://localhost:8000/v1")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        **kwargs: Any,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(self, messages: list[ChatMessage], *, max_tokens: int) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
            "stream": True,
            **self._kwargs,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def stream(
        self,
        messages: list[ChatMessage],
        *,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamChunk]:
        response = await litellm.acompletion(**self._build_kwargs(messages, max_tokens=max_tokens))

        async for chunk in response:
            if chunk.choices and chunk.choices[0].delta:
                delta = chunk.choices[0].delta
                finish_reason = chunk.choices[0].finish_reason
                yield StreamChunk(
                    text=delta.content or "",
                    is_final=finish_reason is not None,
                    finish_reason=finish_reason,
                )

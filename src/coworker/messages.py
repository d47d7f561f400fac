"""Conversation data model.

Messages are owned and mutated by exactly one worker. Observers only ever
see serialized snapshots produced by ``to_dict()``.

Content is either a plain string or an ordered list of blocks. Block dicts
use the same field names as the streaming wire protocol (``type``, ``text``,
``source``, ``name``, ``input``, ``tool_use_id``, ``content``) so a history
can be persisted and handed back to the SDK without translation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Role(Enum):
    """Message role in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True, slots=True)
class ImageBlock:
    """Base64 image content.

    Attributes:
        media_type: MIME type such as ``image/png``
        data: Base64 payload without the ``data:`` prefix
    """

    media_type: str
    data: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }

    def to_data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(frozen=True, slots=True)
class ToolResultBlock:
    tool_use_id: str
    content: Any = None
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock]


def block_from_dict(data: dict[str, Any]) -> ContentBlock | None:
    """Build a content block from its wire dict, or None for unknown types."""
    kind = data.get("type")
    if kind == "text":
        return TextBlock(text=str(data.get("text", "")))
    if kind == "image":
        source = data.get("source") or {}
        return ImageBlock(
            media_type=source.get("media_type", "image/png"),
            data=source.get("data", ""),
        )
    if kind == "tool_use":
        return ToolUseBlock(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            input=dict(data.get("input") or {}),
        )
    if kind == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(data.get("tool_use_id", "")),
            content=data.get("content"),
            is_error=bool(data.get("is_error", False)),
        )
    return None


@dataclass(slots=True)
class Message:
    """One conversation turn.

    Attributes:
        role: USER or ASSISTANT
        content: Plain text or an ordered list of content blocks
        id: Optional identifier assigned by the host
    """

    role: Role
    content: str | list[ContentBlock] = ""
    id: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content

    def text(self) -> str:
        """Concatenated text of the message, ignoring non-text blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value}
        if isinstance(self.content, str):
            data["content"] = self.content
        else:
            data["content"] = [b.to_dict() for b in self.content]
        if self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        raw = data.get("content", "")
        content: str | list[ContentBlock]
        if isinstance(raw, list):
            content = [b for b in (block_from_dict(d) for d in raw if isinstance(d, dict)) if b]
        else:
            content = "" if raw is None else str(raw)
        return cls(role=Role(data.get("role", "user")), content=content, id=data.get("id"))


# -----------------------------------------------------------------------------
# User input
# -----------------------------------------------------------------------------

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


def parse_data_url(url: str) -> ImageBlock | None:
    """Parse ``data:<mime>;base64,<data>`` into an ImageBlock, or None."""
    match = _DATA_URL_RE.match(url.strip())
    if not match:
        return None
    return ImageBlock(media_type=match.group("mime"), data=match.group("data"))


@dataclass(frozen=True, slots=True)
class UserInput:
    """A prompt from the user plus optional ``data:`` image URLs."""

    content: str
    images: tuple[str, ...] = ()

    @classmethod
    def coerce(cls, value: UserInput | str) -> UserInput:
        if isinstance(value, UserInput):
            return value
        return cls(content=value)

    def to_message(self) -> Message:
        """Build the user Message stored in history.

        Unparsable image URLs are dropped; callers that care log them.
        """
        if not self.images:
            return Message(role=Role.USER, content=self.content)
        blocks: list[ContentBlock] = [
            img for img in (parse_data_url(u) for u in self.images) if img is not None
        ]
        blocks.append(TextBlock(text=self.content))
        return Message(role=Role.USER, content=blocks)


def serialize_history(messages: list[Message]) -> list[dict[str, Any]]:
    return [m.to_dict() for m in messages]

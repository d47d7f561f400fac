"""Streaming protocol parser for the CLI's ``stream-json`` output.

The CLI writes one JSON object per line. Chunks arrive at arbitrary
boundaries (including inside a multibyte character), so StreamParser keeps
a residual buffer and an incremental UTF-8 decoder between feeds.

Wire shapes (field names must be preserved exactly):
    {"type": "system", "subtype": "init", "model": ..., "session_id": ...}
    {"type": "assistant", "message": {"content": [{"type": "text", "text": ...},
                                                  {"type": "tool_use", "id", "name", "input"}]}}
    {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id", "content", "is_error"}]}}
    {"type": "result", "result": ..., "is_error": ..., "error_message"?, "error"?, "errors"?}
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from coworker.errors import ParseError
from coworker.logging import get_logger

log = get_logger("protocol")


# -----------------------------------------------------------------------------
# Wire models
# -----------------------------------------------------------------------------


class WireModel(BaseModel):
    """Base model for wire objects. Unknown fields are kept, not rejected."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class WireBlock(WireModel):
    """One entry of ``message.content``."""

    type: str
    text: str | None = None
    id: str | None = None
    name: str | None = None
    input: Any = None
    tool_use_id: str | None = None
    content: Any = None
    is_error: Any = None


class WireMessage(WireModel):
    """The nested ``message`` of assistant/user lines."""

    role: str | None = None
    model: str | None = None
    content: list[Any] | str | None = None


class WireEnvelope(WireModel):
    """A complete protocol line."""

    type: str
    subtype: str | None = None
    session_id: str | None = None
    model: str | None = None
    message: WireMessage | None = None
    result: Any = None
    is_error: Any = None
    error_message: Any = None
    error: Any = None
    errors: Any = None


# -----------------------------------------------------------------------------
# Protocol events
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Init:
    model: str | None = None
    session_id: str | None = None


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ToolUse:
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_use_id: str | None = None
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class Result:
    """Final line of a run.

    Attributes:
        text: The ``result`` text when it is a string
        is_error: Application-level failure reported by the CLI
        error_message: Best available error text when is_error is set
        session_id: Session token for resumption, if reported
    """

    text: str | None = None
    is_error: bool = False
    error_message: str | None = None
    session_id: str | None = None


ProtocolEvent = Union[Init, TextDelta, ToolUse, ToolResult, Result]


def result_error_text(envelope: WireEnvelope) -> str | None:
    """Pick the error text of a result line, or None if it reports no error.

    Priority: ``error_message`` > ``error`` > joined ``errors`` > ``result``
    (the last only when ``is_error`` is set).
    """
    if envelope.error_message:
        return str(envelope.error_message)
    if envelope.error:
        return envelope.error if isinstance(envelope.error, str) else json.dumps(envelope.error)
    if envelope.errors:
        if isinstance(envelope.errors, list):
            return "; ".join(str(e) for e in envelope.errors)
        return str(envelope.errors)
    if envelope.is_error:
        return str(envelope.result) if envelope.result else "Unknown error"
    return None


def _blocks(envelope: WireEnvelope) -> list[WireBlock]:
    if envelope.message is None or envelope.message.content is None:
        return []
    content = envelope.message.content
    if isinstance(content, str):
        return [WireBlock(type="text", text=content)]

    blocks: list[WireBlock] = []
    for raw in content:
        try:
            blocks.append(WireBlock.model_validate(raw))
        except ValidationError as e:
            log.debug("Dropping malformed content block: %d validation error(s)", e.error_count())
    return blocks


def _tool_input(block: WireBlock) -> dict[str, Any]:
    if isinstance(block.input, dict):
        return block.input
    if block.input is not None:
        log.debug("Tool %s input is not an object; using {}", block.name)
    return {}


def decode_message(obj: dict[str, Any]) -> list[ProtocolEvent]:
    """Decode one wire object into protocol events.

    Raises:
        ParseError: If the object does not match the wire models.
    """
    try:
        envelope = WireEnvelope.model_validate(obj)
    except ValidationError as e:
        raise ParseError(f"Invalid protocol object: {e.error_count()} validation error(s)", json.dumps(obj, default=str)) from e

    kind = envelope.type
    if kind == "system":
        if envelope.subtype == "init":
            return [Init(model=envelope.model, session_id=envelope.session_id)]
        return []

    if kind == "assistant":
        events: list[ProtocolEvent] = []
        for block in _blocks(envelope):
            if block.type == "text" and block.text:
                events.append(TextDelta(text=block.text))
            elif block.type == "tool_use":
                events.append(ToolUse(name=block.name or "", input=_tool_input(block), id=block.id))
            elif block.type == "tool_result":
                events.append(ToolResult(tool_use_id=block.tool_use_id, is_error=bool(block.is_error)))
        return events

    if kind == "user":
        return [
            ToolResult(tool_use_id=b.tool_use_id, is_error=bool(b.is_error))
            for b in _blocks(envelope)
            if b.type == "tool_result"
        ]

    if kind == "result":
        text = envelope.result if isinstance(envelope.result, str) else None
        error_message = result_error_text(envelope)
        return [
            Result(
                text=text,
                is_error=bool(envelope.is_error) or error_message is not None,
                error_message=error_message,
                session_id=envelope.session_id,
            )
        ]

    log.debug("Ignoring protocol line of type %r", kind)
    return []


def parse_line(line: str) -> list[ProtocolEvent]:
    """Parse one complete protocol line.

    Raises:
        ParseError: On invalid JSON, a non-object value, or a wire model mismatch.
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e.msg}", line) from e
    if not isinstance(obj, dict):
        raise ParseError("Protocol line is not a JSON object", line)
    return decode_message(obj)


class StreamParser:
    """Incremental newline-delimited JSON parser.

    Usage:
        parser = StreamParser()
        for chunk in chunks:
            for event in parser.feed(chunk):
                handle(event)
        for event in parser.close():
            handle(event)
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.skipped = 0

    @property
    def residual(self) -> str:
        return self._buffer

    def feed(self, chunk: str | bytes) -> list[ProtocolEvent]:
        """Append a chunk and return events for every completed line."""
        if isinstance(chunk, (bytes, bytearray)):
            text = self._decoder.decode(bytes(chunk))
        else:
            text = chunk
        if not text:
            return []

        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")

        events: list[ProtocolEvent] = []
        for line in lines:
            events.extend(self._parse_segment(line))
        return events

    def close(self) -> list[ProtocolEvent]:
        """Flush the decoder and parse whatever remains, then reset."""
        tail = self._decoder.decode(b"", final=True)
        residual = self._buffer + tail
        self._buffer = ""
        self._decoder.reset()

        events: list[ProtocolEvent] = []
        for line in residual.split("\n"):
            events.extend(self._parse_segment(line))
        return events

    def _parse_segment(self, segment: str) -> list[ProtocolEvent]:
        stripped = segment.strip()
        if not stripped or not stripped.startswith("{"):
            return []
        try:
            return parse_line(stripped)
        except ParseError as e:
            self.skipped += 1
            log.warning("Skipping malformed protocol line: %s (%.120s)", e, e.line)
            return []

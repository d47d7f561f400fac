"""Tests for the stream-json protocol parser."""

from __future__ import annotations

import json

import pytest

from coworker.errors import ParseError
from coworker.protocol import (
    Init,
    Result,
    StreamParser,
    TextDelta,
    ToolResult,
    ToolUse,
    decode_message,
    parse_line,
)

LINES = [
    {"type": "system", "subtype": "init", "model": "claude-sonnet", "session_id": "abc"},
    {"type": "assistant", "message": {"content": [{"type": "text", "text": "Héllo wörld ✓"}]}},
    {
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}}]},
    },
    {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "is_error": False}]}},
    {"type": "result", "result": "Done", "is_error": False, "session_id": "abc"},
]


def encoded(objects: list[dict]) -> bytes:
    return "".join(json.dumps(o, ensure_ascii=False) + "\n" for o in objects).encode("utf-8")


def parse_all(chunks: list[bytes]) -> list:
    parser = StreamParser()
    events = []
    for chunk in chunks:
        events.extend(parser.feed(chunk))
    events.extend(parser.close())
    return events


class TestDecodeMessage:
    """Test decoding single wire objects."""

    def test_init(self) -> None:
        assert decode_message(LINES[0]) == [Init(model="claude-sonnet", session_id="abc")]

    def test_assistant_blocks(self) -> None:
        """Text, tool_use and tool_result blocks become separate events."""
        events = decode_message(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "a"},
                        {"type": "text", "text": ""},
                        {"type": "tool_use", "id": "t", "name": "Read", "input": {"file_path": "/x"}},
                        {"type": "tool_result", "tool_use_id": "t", "is_error": True},
                    ]
                },
            }
        )
        assert events == [
            TextDelta("a"),
            ToolUse(name="Read", input={"file_path": "/x"}, id="t"),
            ToolResult(tool_use_id="t", is_error=True),
        ]

    def test_user_tool_results_only(self) -> None:
        events = decode_message(
            {"type": "user", "message": {"content": [{"type": "text", "text": "echo"}, {"type": "tool_result", "tool_use_id": "x"}]}}
        )
        assert events == [ToolResult(tool_use_id="x", is_error=False)]

    def test_unknown_type_ignored(self) -> None:
        assert decode_message({"type": "stream_event", "event": {}}) == []

    def test_unknown_fields_tolerated(self) -> None:
        """Extra fields on known shapes do not break decoding."""
        events = decode_message({"type": "system", "subtype": "init", "tools": ["Bash"], "cwd": "/w"})
        assert events == [Init()]

    def test_invalid_shape_raises(self) -> None:
        with pytest.raises(ParseError):
            decode_message({"no_type": True})


class TestLenientFields:
    """Test that odd field types only affect the field or block they are in."""

    def test_null_error_flag(self) -> None:
        assert decode_message({"type": "result", "result": "Hi", "is_error": None}) == [Result(text="Hi", is_error=False)]

    def test_non_object_tool_input(self) -> None:
        """A tool input that is not an object becomes empty, the text block survives."""
        events = decode_message(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "Hi"},
                        {"type": "tool_use", "id": "t1", "name": "Bash", "input": "raw"},
                    ]
                },
            }
        )
        assert events == [TextDelta("Hi"), ToolUse(name="Bash", input={}, id="t1")]

    def test_bad_block_dropped_alone(self) -> None:
        events = decode_message(
            {
                "type": "assistant",
                "message": {"content": [{"type": "text", "text": "Hi"}, {"name": "no type"}, "stray"]},
            }
        )
        assert events == [TextDelta("Hi")]

    def test_non_string_error_message(self) -> None:
        (event,) = decode_message({"type": "result", "is_error": True, "error_message": 429})
        assert event == Result(is_error=True, error_message="429")

    def test_mixed_line_in_stream(self) -> None:
        """A line with one bad block still yields its good blocks and is not counted as skipped."""
        content = [{"type": "text", "text": "Hi"}, {"type": "tool_use", "input": "raw"}]
        line = {"type": "assistant", "message": {"content": content}}
        parser = StreamParser()
        events = parser.feed(encoded([line])) + parser.close()
        assert events == [TextDelta("Hi"), ToolUse(name="", input={})]
        assert parser.skipped == 0


class TestResultErrors:
    """Test error priority on result lines."""

    def test_success(self) -> None:
        assert decode_message({"type": "result", "result": "ok", "is_error": False}) == [
            Result(text="ok", is_error=False)
        ]

    @pytest.mark.parametrize(
        ("fields", "expected"),
        [
            ({"error_message": "em", "error": "e", "errors": ["x"], "result": "r"}, "em"),
            ({"error": "e", "errors": ["x"], "result": "r"}, "e"),
            ({"error": {"code": 1}}, '{"code": 1}'),
            ({"errors": ["x", "y"], "result": "r"}, "x; y"),
            ({"result": "r"}, "r"),
            ({}, "Unknown error"),
        ],
    )
    def test_priority(self, fields: dict, expected: str) -> None:
        """error_message > error > joined errors > result."""
        (event,) = decode_message({"type": "result", "is_error": True, **fields})
        assert isinstance(event, Result)
        assert event.is_error
        assert event.error_message == expected

    def test_error_field_without_flag(self) -> None:
        """An explicit error field marks the result as failed."""
        (event,) = decode_message({"type": "result", "is_error": False, "error": "quota exceeded"})
        assert event.is_error
        assert event.error_message == "quota exceeded"


class TestParseLine:
    """Test single-line parsing."""

    def test_invalid_json(self) -> None:
        with pytest.raises(ParseError) as exc:
            parse_line("{not json")
        assert exc.value.line == "{not json"

    def test_non_object(self) -> None:
        with pytest.raises(ParseError):
            parse_line("[1, 2]")


class TestStreamParser:
    """Test incremental parsing across chunk boundaries."""

    def test_whole_stream(self) -> None:
        events = parse_all([encoded(LINES)])
        assert [type(e) for e in events] == [Init, TextDelta, ToolUse, ToolResult, Result]
        assert events[1] == TextDelta("Héllo wörld ✓")

    def test_chunk_boundaries_do_not_matter(self) -> None:
        """Every split point, including mid-character, gives the same events."""
        data = encoded(LINES)
        expected = parse_all([data])
        for size in (1, 2, 3, 7, 64):
            chunks = [data[i : i + size] for i in range(0, len(data), size)]
            assert parse_all(chunks) == expected

    def test_malformed_line_skipped(self) -> None:
        """A bad line in the middle is skipped and counted."""
        parser = StreamParser()
        data = encoded(LINES[:2]) + b'{"type": "assistant", broken\n' + encoded(LINES[2:])
        events = parser.feed(data) + parser.close()
        assert len(events) == len(LINES)
        assert parser.skipped == 1

    def test_non_object_segments_ignored(self) -> None:
        """Blank lines and plain text are not errors."""
        parser = StreamParser()
        events = parser.feed(b"\n\nWarning: something\n" + encoded(LINES[:1]))
        assert events == [Init(model="claude-sonnet", session_id="abc")]
        assert parser.skipped == 0

    def test_residual_parsed_on_close(self) -> None:
        """A final line without a newline is parsed at close."""
        parser = StreamParser()
        assert parser.feed(json.dumps(LINES[-1])) == []
        assert parser.residual
        assert parser.close() == [Result(text="Done", is_error=False, session_id="abc")]
        assert parser.residual == ""

    def test_str_chunks(self) -> None:
        parser = StreamParser()
        text = encoded(LINES[:2]).decode("utf-8")
        assert parser.feed(text[:10]) == []
        assert len(parser.feed(text[10:])) == 2

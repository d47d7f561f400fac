"""Human-readable progress descriptions for tool calls."""

from __future__ import annotations

from typing import Any

# tool name -> (message prefix, input key shown after the prefix)
_SIMPLE_TOOLS: dict[str, tuple[str, str]] = {
    "Bash": ("Running command", "command"),
    "Glob": ("Searching files", "pattern"),
    "Grep": ("Searching content", "pattern"),
    "WebFetch": ("Fetching page", "url"),
    "WebSearch": ("Searching the web", "query"),
    "Task": ("Starting task", "description"),
    "Skill": ("Starting skill", "command"),
}

# File tools: prefix, and whether the file is a produced artifact
_FILE_TOOLS: dict[str, tuple[str, bool]] = {
    "Read": ("Reading file", False),
    "Write": ("Writing file", True),
    "Edit": ("Editing file", False),
}


def todo_items(tool_input: dict[str, Any]) -> list[dict[str, Any]]:
    """Normalize TodoWrite input (``todos`` or ``newTodos``) to content/status items."""
    raw = tool_input.get("todos") or tool_input.get("newTodos") or []
    items = []
    for item in raw:
        if isinstance(item, dict):
            items.append({"content": item.get("content", ""), "status": item.get("status", "pending")})
    return items


def describe_tool_use(name: str, tool_input: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the ``progress`` payload for a tool_use block.

    Returns:
        Dict with ``type: tool_use``, ``tool``, ``message`` and ``input``,
        plus ``filePath``/``isArtifact`` for file tools and ``todos`` for
        TodoWrite.
    """
    tool_input = tool_input or {}
    name = name or "unknown"
    progress: dict[str, Any] = {"type": "tool_use", "tool": name, "input": tool_input}

    if name in _SIMPLE_TOOLS:
        prefix, key = _SIMPLE_TOOLS[name]
        progress["message"] = f"{prefix}: {tool_input.get(key) or ''}"
    elif name in _FILE_TOOLS:
        prefix, is_artifact = _FILE_TOOLS[name]
        file_path = tool_input.get("file_path")
        progress["message"] = f"{prefix}: {file_path or ''}"
        progress["filePath"] = file_path
        progress["isArtifact"] = is_artifact
    elif name == "MultiEdit":
        progress["message"] = "Editing multiple files"
    elif name == "TodoWrite":
        todos = todo_items(tool_input)
        progress["message"] = f"Task list ({len(todos)} items)"
        progress["todos"] = todos
    elif name.startswith("mcp__"):
        parts = name.split("__")
        server = parts[1] if len(parts) > 1 and parts[1] else "unknown"
        function = parts[2] if len(parts) > 2 and parts[2] else name
        progress["message"] = f"MCP {server}: {function}"
    else:
        progress["message"] = f"Calling tool: {name}"

    return progress


def is_progress_line(text: str) -> bool:
    """Heuristic for short "about to do X:" lines between tool calls.

    True for a single trimmed line under 150 characters ending with an
    ASCII or fullwidth colon.
    """
    trimmed = text.strip()
    return (
        len(trimmed) < 150
        and trimmed.endswith((":", "："))
        and "\n" not in trimmed
    )

"""Session history persistence.

Handles saving and loading conversation history to/from YAML files in:
  <sessions directory>/<session-id>.yaml

Session files contain:
- session_id: Unique identifier
- updated_at: ISO timestamp
- messages: List of serialized messages (wire field names)
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import yaml

from coworker.logging import get_logger
from coworker.messages import Message
from coworker.observers import EventKind, WorkerEvent

log = get_logger("storage")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class SessionStore(Protocol):
    """Persistence interface the registry and observers depend on."""

    def save_messages(self, session_id: str, messages: list[dict[str, Any]]) -> None: ...

    def load_messages(self, session_id: str) -> list[Message]: ...


class YamlSessionStore:
    """One YAML file per session, written atomically."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    def session_path(self, session_id: str) -> Path:
        return self._directory / f"{_UNSAFE_CHARS.sub('_', session_id)}.yaml"

    def save_messages(self, session_id: str, messages: list[dict[str, Any]]) -> None:
        """Save a session's messages.

        Performs atomic write by writing to a temp file first.

        Raises:
            RuntimeError: If the file cannot be written.
        """
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(f"Failed to create session directory: {e}") from e
        session_path = self.session_path(session_id)
        temp_path = session_path.with_name(session_path.name + ".tmp")

        data = {
            "session_id": session_id,
            "updated_at": datetime.now().isoformat(),
            "messages": messages,
        }

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            temp_path.replace(session_path)
            log.debug("Saved %d message(s) for session %s", len(messages), session_id)
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise RuntimeError(f"Failed to save session: {e}") from e

    def load_messages(self, session_id: str) -> list[Message]:
        """Load a session's messages, or an empty list if missing or invalid."""
        path = self.session_path(session_id)
        if not path.exists():
            return []

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return [Message.from_dict(m) for m in data.get("messages", []) if isinstance(m, dict)]
        except Exception as e:
            log.warning("Failed to load session %s from %s: %s", session_id, path, e)
            return []

    def delete(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        if path.exists():
            path.unlink()
            log.debug("Deleted session %s", session_id)
            return True
        return False

    def list_sessions(self) -> list[str]:
        if not self._directory.exists():
            return []
        return sorted(p.stem for p in self._directory.glob("*.yaml"))


class HistoryPersistenceObserver:
    """Observer that saves every history-update to a SessionStore."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._destroyed = False

    def send(self, event: WorkerEvent) -> None:
        if event.kind is not EventKind.HISTORY_UPDATE:
            return
        try:
            self._store.save_messages(event.session_id, list(event.payload or []))
        except RuntimeError as e:
            log.warning("Could not persist history for %s: %s", event.session_id, e)

    def is_destroyed(self) -> bool:
        return self._destroyed

    def close(self) -> None:
        self._destroyed = True

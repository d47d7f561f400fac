"""Permission collaborator: authorized folders, command blacklist, remembered tools.

Workers only consume three questions from here: which working directories
are authorized (the first one is the session's working directory), whether a
shell command is blacklisted, and whether the user already approved a tool
for a path. Changes are written through a value store (normally
ConfigStore) so they survive restarts.
"""

from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from coworker.config.schema import DEFAULT_COMMAND_BLACKLIST, PermissionsConfig
from coworker.logging import get_logger

log = get_logger("permissions")


class ValueStore(Protocol):
    """Get/set dotted configuration values (ConfigStore satisfies this)."""

    def get_value(self, key: str, default: Any = None) -> Any: ...

    def set_value(self, key: str, value: Any) -> None: ...


@dataclass(frozen=True, slots=True)
class ToolPermission:
    tool: str
    path_pattern: str = "*"
    granted_at: float = 0.0

    def matches(self, tool: str, path: str | None) -> bool:
        if self.tool != tool:
            return False
        if self.path_pattern == "*":
            return True
        if path is None:
            return False
        return _normalize(path).startswith(_normalize(self.path_pattern))

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool, "path_pattern": self.path_pattern, "granted_at": self.granted_at}


def _pattern_regex(pattern: str) -> re.Pattern[str]:
    """Case-insensitive match of ``pattern`` that cannot start or end inside a word.

    Boundaries apply only where the pattern itself begins or ends with a word
    character, so ``dd`` no longer matches ``git add`` while ``:>`` still
    matches anywhere.
    """
    body = re.escape(pattern)
    if re.match(r"\w", pattern):
        body = r"(?<!\w)" + body
    if re.match(r"\w", pattern[-1]):
        body += r"(?!\w)"
    return re.compile(body, re.IGNORECASE)


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.abspath(os.path.expanduser(path)))


def _is_filesystem_root(path: str) -> bool:
    p = Path(path)
    return p == Path(p.anchor)


def _is_within(path: str, folder: str) -> bool:
    try:
        return os.path.commonpath([path, folder]) == folder
    except ValueError:
        # Different drives on Windows
        return False


@dataclass
class PermissionManager:
    """Authorized folders, command blacklist and remembered tool permissions."""

    folders: list[str] = field(default_factory=list)
    command_blacklist: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND_BLACKLIST))
    tool_permissions: list[ToolPermission] = field(default_factory=list)
    store: ValueStore | None = None

    @classmethod
    def from_config(cls, config: PermissionsConfig, store: ValueStore | None = None) -> PermissionManager:
        manager = cls(
            command_blacklist=list(config.command_blacklist),
            tool_permissions=[
                ToolPermission(p.tool, p.path_pattern, p.granted_at) for p in config.allowed_tools
            ],
            store=store,
        )
        for folder in config.authorized_folders:
            try:
                manager._add_folder(folder)
            except ValueError as e:
                log.warning("Ignoring configured folder %s: %s", folder, e)
        return manager

    # -- folders --------------------------------------------------------------

    def _add_folder(self, folder: str, *, first: bool = False) -> str:
        normalized = _normalize(folder)
        if _is_filesystem_root(normalized):
            raise ValueError("Cannot authorize the filesystem root")
        if normalized in self.folders:
            self.folders.remove(normalized)
        if first:
            self.folders.insert(0, normalized)
        else:
            self.folders.append(normalized)
        return normalized

    def authorize_folder(self, folder: str, *, primary: bool = False) -> str:
        """Authorize a folder. ``primary`` makes it the working directory.

        Raises:
            ValueError: For the filesystem root.
        """
        normalized = self._add_folder(folder, first=primary)
        log.info("Authorized folder %s", normalized)
        self._persist_folders()
        return normalized

    def revoke_folder(self, folder: str) -> bool:
        normalized = _normalize(folder)
        if normalized not in self.folders:
            return False
        self.folders.remove(normalized)
        log.info("Revoked folder %s", normalized)
        self._persist_folders()
        return True

    def authorized_folders(self) -> list[str]:
        return list(self.folders)

    @property
    def working_directory(self) -> str | None:
        return self.folders[0] if self.folders else None

    def is_path_authorized(self, path: str) -> bool:
        target = _normalize(path)
        return any(_is_within(target, folder) for folder in self.folders)

    # -- commands -------------------------------------------------------------

    def blocked_reason(self, command: str) -> str | None:
        """The blacklist pattern ``command`` matches, if any."""
        for pattern in self.command_blacklist:
            if pattern and _pattern_regex(pattern).search(command):
                return pattern
        return None

    def is_command_blocked(self, command: str) -> bool:
        return self.blocked_reason(command) is not None

    # -- remembered tools -----------------------------------------------------

    def has_tool_permission(self, tool: str, path: str | None = None) -> bool:
        return any(p.matches(tool, path) for p in self.tool_permissions)

    def remember_tool(self, tool: str, path: str | None = None) -> ToolPermission:
        pattern = _normalize(path) if path else "*"
        for existing in self.tool_permissions:
            if existing.tool == tool and existing.path_pattern == pattern:
                return existing
        permission = ToolPermission(tool=tool, path_pattern=pattern, granted_at=time.time())
        self.tool_permissions.append(permission)
        log.info("Remembered permission for %s on %s", tool, pattern)
        if self.store is not None:
            self.store.set_value(
                "permissions.allowed_tools", [p.to_dict() for p in self.tool_permissions]
            )
        return permission

    def forget_tool(self, tool: str) -> int:
        before = len(self.tool_permissions)
        self.tool_permissions = [p for p in self.tool_permissions if p.tool != tool]
        removed = before - len(self.tool_permissions)
        if removed and self.store is not None:
            self.store.set_value(
                "permissions.allowed_tools", [p.to_dict() for p in self.tool_permissions]
            )
        return removed

    def _persist_folders(self) -> None:
        if self.store is not None:
            self.store.set_value("permissions.authorized_folders", list(self.folders))

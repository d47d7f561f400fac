"""Configuration schema dataclasses for coworker.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults to support partial configs that merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Commands that are never run on behalf of the assistant
DEFAULT_COMMAND_BLACKLIST = [
    "rm -rf",
    "rm -r",
    "rm -fr",
    "rmdir",
    "format",
    "dd",
    "mkfs",
    ":>",  # Truncate file
    "> /dev/",  # Write to device
    "chmod 777",
    "chmod -R 777",
]


class IntegrationMode(Enum):
    """Which worker variant backs a session."""

    API = "api"  # Direct network API (litellm)
    CLI = "cli"  # Spawned CLI process with stream-json output
    SDK = "sdk"  # claude-agent-sdk streaming connection


@dataclass
class AgentConfig:
    """Worker selection and credentials.

    Example config.yaml:
        agent:
          mode: sdk
          model: claude-sonnet-4-5
          api_base: https://api.anthropic.com
    """

    mode: IntegrationMode = IntegrationMode.SDK
    api_key: str | None = None  # Falls back to fetch_secret(credential_env)
    api_base: str | None = None  # Custom endpoint (API mode only)
    model: str | None = None
    max_tokens: int = 4096


@dataclass
class CLIConfig:
    """External CLI used by the spawned-process and SDK workers."""

    executable: str = "claude"
    executable_path: str | None = None  # Explicit override, skips PATH lookup
    credential_env: str = "ANTHROPIC_API_KEY"
    version_timeout: float = 5.0  # Seconds to wait for `--version`


@dataclass
class SDKConfig:
    """Streaming SDK options."""

    permission_mode: str = "bypassPermissions"


@dataclass
class InstallRootConfig:
    """A directory holding versioned runtime installations (e.g. nvm)."""

    path: str
    bin_subdir: str = "bin"


@dataclass
class RuntimeConfig:
    """Compatibility rule and search locations for the CLI's runtime.

    The default rule accepts Node.js 20+ and 18.20.8+ within the 18 line.
    """

    min_major: int = 20
    lts_major: int = 18
    lts_minimum: list[int] = field(default_factory=lambda: [20, 8])
    install_roots: list[InstallRootConfig] = field(default_factory=list)  # Empty = platform defaults
    extra_paths: list[str] = field(default_factory=list)


@dataclass
class ToolPermissionConfig:
    """A remembered "always allow" decision for a tool."""

    tool: str
    path_pattern: str = "*"
    granted_at: float = 0.0


@dataclass
class PermissionsConfig:
    """Authorized folders and command restrictions."""

    authorized_folders: list[str] = field(default_factory=list)
    command_blacklist: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND_BLACKLIST))
    allowed_tools: list[ToolPermissionConfig] = field(default_factory=list)


@dataclass
class SessionsConfig:
    """Session history persistence."""

    directory: str | None = None  # None = no persistence
    restore_history: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path
    buffer_size: int = 500  # Entries kept for the log viewer


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    agent: AgentConfig = field(default_factory=AgentConfig)
    cli: CLIConfig = field(default_factory=CLIConfig)
    sdk: SDKConfig = field(default_factory=SDKConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    permissions: PermissionsConfig = field(default_factory=PermissionsConfig)
    sessions: SessionsConfig = field(default_factory=SessionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)

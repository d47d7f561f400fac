"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from coworker.config.merge import merge_configs
from coworker.config.paths import get_config_paths
from coworker.config.schema import (
    DEFAULT_COMMAND_BLACKLIST,
    AgentConfig,
    CLIConfig,
    Config,
    InstallRootConfig,
    IntegrationMode,
    LoggingConfig,
    PermissionsConfig,
    RuntimeConfig,
    SDKConfig,
    SessionsConfig,
    ToolPermissionConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("coworker.config")

# Global cached config
_cached_config: Config | None = None

# Callbacks to notify on config reload
_reload_callbacks: list[Callable[[Config], None]] = []


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    Note: API keys are NOT loaded here - use fetch_secret() for secrets.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("COWORKER_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    mode = os.environ.get("COWORKER_MODE")
    if mode:
        overrides.setdefault("agent", {})["mode"] = mode

    model = os.environ.get("COWORKER_MODEL")
    if model:
        overrides.setdefault("agent", {})["model"] = model

    return overrides


def _parse_mode(value: Any) -> IntegrationMode:
    try:
        return IntegrationMode(str(value).lower())
    except ValueError:
        _log.warning("Unknown integration mode %r, using %s", value, IntegrationMode.SDK.value)
        return IntegrationMode.SDK


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Args:
        data: Merged configuration dictionary.

    Returns:
        Typed Config object.
    """
    agent_data = data.get("agent", {})
    agent = AgentConfig(
        mode=_parse_mode(agent_data.get("mode", IntegrationMode.SDK.value)),
        api_key=agent_data.get("api_key"),
        api_base=agent_data.get("api_base"),
        model=agent_data.get("model"),
        max_tokens=agent_data.get("max_tokens", 4096),
    )

    cli_data = data.get("cli", {})
    cli = CLIConfig(
        executable=cli_data.get("executable", "claude"),
        executable_path=cli_data.get("executable_path"),
        credential_env=cli_data.get("credential_env", "ANTHROPIC_API_KEY"),
        version_timeout=float(cli_data.get("version_timeout", 5.0)),
    )

    sdk_data = data.get("sdk", {})
    sdk = SDKConfig(
        permission_mode=sdk_data.get("permission_mode", "bypassPermissions"),
    )

    runtime_data = data.get("runtime", {})
    install_roots = [
        InstallRootConfig(path=r["path"], bin_subdir=r.get("bin_subdir", "bin"))
        for r in runtime_data.get("install_roots", [])
        if isinstance(r, dict) and r.get("path")
    ]
    runtime = RuntimeConfig(
        min_major=runtime_data.get("min_major", 20),
        lts_major=runtime_data.get("lts_major", 18),
        lts_minimum=list(runtime_data.get("lts_minimum", [20, 8])),
        install_roots=install_roots,
        extra_paths=[p for p in runtime_data.get("extra_paths", []) if isinstance(p, str)],
    )

    perms_data = data.get("permissions", {})
    allowed_tools = [
        ToolPermissionConfig(
            tool=p.get("tool", ""),
            path_pattern=p.get("path_pattern", "*"),
            granted_at=p.get("granted_at", 0.0),
        )
        for p in perms_data.get("allowed_tools", [])
        if isinstance(p, dict) and p.get("tool")
    ]
    permissions = PermissionsConfig(
        authorized_folders=[f for f in perms_data.get("authorized_folders", []) if isinstance(f, str)],
        command_blacklist=list(perms_data.get("command_blacklist", DEFAULT_COMMAND_BLACKLIST)),
        allowed_tools=allowed_tools,
    )

    sessions_data = data.get("sessions", {})
    sessions = SessionsConfig(
        directory=sessions_data.get("directory"),
        restore_history=sessions_data.get("restore_history", True),
    )

    log_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
        buffer_size=log_data.get("buffer_size", 500),
    )

    known_keys = {"agent", "cli", "sdk", "runtime", "permissions", "sessions", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        agent=agent,
        cli=cli,
        sdk=sdk,
        runtime=runtime,
        permissions=permissions,
        sessions=sessions,
        logging=logging_config,
        extra=extra,
    )


def load_config(session_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($session_root/.coworker/config.yaml)
    3. User config (~/.config/coworker/config.yaml or %APPDATA%)
    4. System config (/etc/coworker/ or %PROGRAMDATA%)

    Args:
        session_root: Project directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and session_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(session_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only global config (no session_root)
    if session_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None


def reload_config(session_root: str | None = None) -> Config:
    """Reload config from files and notify callbacks."""
    config = load_config(session_root=session_root, reload=True)

    for callback in _reload_callbacks:
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a callback to be called when config is reloaded.

    Returns:
        A function to unregister the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister

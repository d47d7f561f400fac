"""Configuration management for coworker.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/coworker/ or %PROGRAMDATA%)
- User-level config (~/.config/coworker/ or %APPDATA%)
- Project-level config ($session_root/.coworker/)
- Environment variable overrides (highest priority)

Example usage:
    from coworker.config import load_config, get_config

    config = load_config(session_root="/path/to/project")
    print(config.agent.mode)

    # Persist a single value into the user config
    from coworker.config import ConfigStore
    ConfigStore().set_value("agent.model", "claude-sonnet-4-5")
"""

from coworker.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from coworker.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
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
from coworker.config.secrets import clear_secret_cache, fetch_secret
from coworker.config.store import ConfigStore

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "ConfigStore",
    # Schema types
    "AgentConfig",
    "CLIConfig",
    "SDKConfig",
    "RuntimeConfig",
    "InstallRootConfig",
    "PermissionsConfig",
    "ToolPermissionConfig",
    "SessionsConfig",
    "LoggingConfig",
    "IntegrationMode",
    "DEFAULT_COMMAND_BLACKLIST",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]

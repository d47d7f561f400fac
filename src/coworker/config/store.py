"""Writable configuration layer.

The host's settings screens change individual values (authorized folders,
remembered tool permissions, integration mode). ConfigStore persists those
into a single YAML file, normally the user-level config, and triggers a
config reload so cached Config objects pick the change up.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from coworker.config.loader import load_yaml_file, reload_config
from coworker.config.merge import get_dotted, set_dotted
from coworker.config.paths import get_user_config_path

_log = logging.getLogger("coworker.config.store")


class ConfigStore:
    """Get/set dotted configuration values backed by one YAML file."""

    def __init__(self, path: Path | None = None, *, reload_on_set: bool = True) -> None:
        resolved = path or get_user_config_path()
        if resolved is None:
            raise ValueError("No writable config path could be determined")
        self._path = resolved
        self._reload_on_set = reload_on_set

    @property
    def path(self) -> Path:
        return self._path

    def get_value(self, key: str, default: Any = None) -> Any:
        """Read ``section.field`` from the backing file."""
        return get_dotted(load_yaml_file(self._path), key, default)

    def set_value(self, key: str, value: Any) -> None:
        """Write ``section.field`` into the backing file atomically."""
        data = set_dotted(load_yaml_file(self._path), key, value)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=".config-", suffix=".yaml.tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        _log.debug("Set %s in %s", key, self._path)
        if self._reload_on_set:
            reload_config()

"""Root pytest configuration for all tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from coworker.config import clear_secret_cache, reset_config

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Keep tests away from real credentials and user config files."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    for name in ("ANTHROPIC_API_KEY", "COWORKER_MODE", "COWORKER_MODEL", "COWORKER_LOG"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()

"""Explicit construction inputs for a worker.

Everything a worker needs from configuration is copied into a frozen
WorkerContext when the worker is created. Workers never read or mutate
os.environ for credentials or search paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from coworker.config.schema import Config, IntegrationMode
from coworker.config.secrets import fetch_secret
from coworker.environment import EnvironmentResolver, InstallRoot, RuntimeRequirement, default_install_roots
from coworker.launcher import ProcessLauncher


class WorkerKind(Enum):
    """Variant tag of a worker."""

    API = "api"
    CLI = "cli"
    SDK = "sdk"


def worker_kind(mode: IntegrationMode | str) -> WorkerKind:
    """Map a configured integration mode to a worker kind.

    Raises:
        ValueError: For an unknown mode.
    """
    value = mode.value if isinstance(mode, IntegrationMode) else str(mode).lower()
    return WorkerKind(value)


@dataclass(frozen=True, slots=True)
class WorkerContext:
    """Per-worker settings resolved once at construction.

    Attributes:
        session_id: Session the worker belongs to
        kind: Which variant to build
        api_key: Credential (API variant; optional for SDK)
        model: Model name, or None for the tool's default
        api_base: Custom base URL (API variant only)
        working_directory: Session working directory, if any
        executable: CLI executable name to look up
        executable_path: Explicit executable location overriding lookup
        credential_env: Environment variable carrying the credential
        permission_mode: SDK permission mode
        requirement: Minimum runtime version rule
        install_roots: Runtime install roots, None for the defaults
        extra_paths: Extra directories for the search path
        host_path: PATH to extend, None for the host's PATH
        probe_timeout: Bound on ``--version`` probes, in seconds
    """

    session_id: str
    kind: WorkerKind
    api_key: str | None = None
    model: str | None = None
    api_base: str | None = None
    max_tokens: int = 4096
    working_directory: str | None = None
    executable: str = "claude"
    executable_path: str | None = None
    credential_env: str = "ANTHROPIC_API_KEY"
    permission_mode: str = "bypassPermissions"
    requirement: RuntimeRequirement = field(default_factory=RuntimeRequirement)
    install_roots: tuple[InstallRoot, ...] | None = None
    extra_paths: tuple[str, ...] = ()
    host_path: str | None = None
    probe_timeout: float = 5.0

    @classmethod
    def from_config(
        cls,
        session_id: str,
        config: Config,
        working_directory: str | None = None,
    ) -> WorkerContext:
        """Build a context from the typed configuration."""
        runtime = config.runtime
        roots: tuple[InstallRoot, ...] | None = None
        if runtime.install_roots:
            configured = [InstallRoot(Path(r.path).expanduser(), r.bin_subdir) for r in runtime.install_roots]
            roots = tuple(configured + default_install_roots())

        lts_minimum = tuple(runtime.lts_minimum[:2]) if len(runtime.lts_minimum) >= 2 else (20, 8)

        return cls(
            session_id=session_id,
            kind=worker_kind(config.agent.mode),
            api_key=config.agent.api_key or fetch_secret(config.cli.credential_env),
            model=config.agent.model,
            api_base=config.agent.api_base,
            max_tokens=config.agent.max_tokens,
            working_directory=working_directory,
            executable=config.cli.executable,
            executable_path=config.cli.executable_path,
            credential_env=config.cli.credential_env,
            permission_mode=config.sdk.permission_mode,
            requirement=RuntimeRequirement(
                min_major=runtime.min_major,
                lts_major=runtime.lts_major,
                lts_minimum=lts_minimum,
            ),
            install_roots=roots,
            extra_paths=tuple(runtime.extra_paths),
            probe_timeout=config.cli.version_timeout,
        )

    def with_working_directory(self, working_directory: str | None) -> WorkerContext:
        return replace(self, working_directory=working_directory)

    def resolver(self, launcher: ProcessLauncher | None = None) -> EnvironmentResolver:
        return EnvironmentResolver(
            self.requirement,
            self.install_roots,
            self.extra_paths,
            self.executable_path,
            host_path=self.host_path,
            launcher=launcher,
        )

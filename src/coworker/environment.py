"""Compatible-runtime discovery and executable lookup.

GUI-launched hosts often inherit a minimal PATH that lacks the user's
version-managed Node.js and the globally installed CLI. The resolver:

1. Scans version-manager install roots (nvm, fnm, configured extras) for
   versioned directories and picks the newest compatible one.
2. Builds an augmented search path: runtime bin, extra paths, npm-global
   locations, the host PATH, then standard system paths.
3. Locates the executable on that path (or at a configured override).

Nothing here is cached: each request recomputes, so an install that happens
while the host is running is picked up on the next message.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import sys
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from coworker.errors import SpawnError
from coworker.launcher import AsyncioProcessLauncher, ProcessLauncher, kill_quietly, read_all
from coworker.logging import get_logger

log = get_logger("environment")

Version = tuple[int, int, int]

INSTALL_HINT = "Install it with `npm install -g @anthropic-ai/claude-code`, or set cli.executable_path in the config."

_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?$")

_STANDARD_PATHS_POSIX = ["/usr/local/bin", "/opt/homebrew/bin", "/usr/bin", "/bin", "/usr/sbin", "/sbin"]


def parse_version(name: str) -> Version | None:
    """Parse ``v18.20.8`` (or ``18.20``, ``v22``) into a version tuple."""
    match = _VERSION_RE.match(name.strip())
    if not match:
        return None
    major, minor, patch = match.groups()
    return (int(major), int(minor or 0), int(patch or 0))


def format_version(version: Version) -> str:
    return "v" + ".".join(str(p) for p in version)


@dataclass(frozen=True, slots=True)
class RuntimeRequirement:
    """Minimum runtime version rule.

    Compatible if ``major >= min_major``, or ``major == lts_major`` and
    ``(minor, patch) >= lts_minimum``.
    """

    min_major: int = 20
    lts_major: int = 18
    lts_minimum: tuple[int, int] = (20, 8)

    def is_compatible(self, version: Version) -> bool:
        major, minor, patch = version
        if major >= self.min_major:
            return True
        return major == self.lts_major and (minor, patch) >= tuple(self.lts_minimum)

    def describe(self) -> str:
        minor, patch = self.lts_minimum
        return f"Node.js >= {self.min_major}, or {self.lts_major}.{minor}.{patch}+"


@dataclass(frozen=True, slots=True)
class InstallRoot:
    """A directory holding one subdirectory per installed runtime version.

    Attributes:
        path: e.g. ``~/.nvm/versions/node``
        bin_subdir: Path from a version directory to its executables
    """

    path: Path
    bin_subdir: str = "bin"


@dataclass(frozen=True, slots=True)
class EnvironmentProbe:
    path: Path
    version: Version
    compatible: bool


@dataclass(frozen=True, slots=True)
class RuntimeLookup:
    """Outcome of find_compatible_runtime(). ``path`` is None on failure."""

    path: Path | None
    version: Version | None = None
    error: str | None = None
    probes: tuple[EnvironmentProbe, ...] = ()


@dataclass(frozen=True, slots=True)
class ExecutableLookup:
    path: str | None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class LaunchEnvironment:
    """Everything needed to start the external CLI."""

    executable: str
    search_path: str
    runtime: RuntimeLookup = field(default_factory=lambda: RuntimeLookup(path=None))

    def build_env(
        self,
        base: Mapping[str, str] | None = None,
        *,
        remove: Iterable[str] = (),
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Copy of the host environment with PATH replaced."""
        env = dict(os.environ if base is None else base)
        env["PATH"] = self.search_path
        for key in remove:
            env.pop(key, None)
        if extra:
            env.update(extra)
        return env


def default_install_roots(home: Path | None = None) -> list[InstallRoot]:
    """Known version-manager layouts for the current user."""
    home = home or Path.home()
    nvm_dir = Path(os.environ.get("NVM_DIR") or home / ".nvm")
    fnm_dir = Path(os.environ.get("FNM_DIR") or home / ".local" / "share" / "fnm")
    roots = [
        InstallRoot(nvm_dir / "versions" / "node"),
        InstallRoot(fnm_dir / "node-versions", bin_subdir="installation/bin"),
    ]
    if sys.platform == "win32":
        nvm_home = os.environ.get("NVM_HOME")
        if nvm_home:
            roots.append(InstallRoot(Path(nvm_home), bin_subdir="."))
    return roots


def find_compatible_runtime(
    roots: Sequence[InstallRoot],
    requirement: RuntimeRequirement | None = None,
) -> RuntimeLookup:
    """Pick the newest compatible runtime across install roots.

    Never raises: every failure is reported through ``RuntimeLookup.error``.
    """
    requirement = requirement or RuntimeRequirement()
    existing = [r for r in roots if r.path.is_dir()]
    if not existing:
        searched = ", ".join(str(r.path) for r in roots) or "no locations configured"
        return RuntimeLookup(path=None, error=f"No Node.js installation directory found (searched: {searched})")

    candidates: list[tuple[Version, InstallRoot, Path]] = []
    for root in existing:
        try:
            entries = list(root.path.iterdir())
        except OSError as e:
            log.warning("Cannot list %s: %s", root.path, e)
            continue
        for entry in entries:
            version = parse_version(entry.name)
            if version is None:
                log.debug("Ignoring non-version directory %s", entry)
                continue
            candidates.append((version, root, entry))

    candidates.sort(key=lambda c: c[0], reverse=True)

    probes: list[EnvironmentProbe] = []
    for version, root, entry in candidates:
        bin_path = entry / root.bin_subdir
        compatible = requirement.is_compatible(version)
        probes.append(EnvironmentProbe(path=bin_path, version=version, compatible=compatible))
        if compatible and bin_path.is_dir():
            log.debug("Selected runtime %s at %s", format_version(version), bin_path)
            return RuntimeLookup(path=bin_path, version=version, probes=tuple(probes))

    found = ", ".join(format_version(v) for v, _, _ in candidates) or "none"
    return RuntimeLookup(
        path=None,
        error=f"No compatible Node.js version found (requires {requirement.describe()}; found: {found})",
        probes=tuple(probes),
    )


def npm_global_paths(home: Path | None = None) -> list[str]:
    home = home or Path.home()
    paths = [str(home / ".npm-global" / "bin"), str(home / ".local" / "bin")]
    prefix = os.environ.get("NPM_CONFIG_PREFIX")
    if prefix:
        paths.insert(0, str(Path(prefix) / "bin"))
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            paths.insert(0, str(Path(appdata) / "npm"))
    return paths


def build_search_path(
    runtime_bin: Path | str | None,
    extra_paths: Sequence[str] = (),
    *,
    host_path: str | None = None,
    include_system: bool = True,
) -> str:
    """Assemble the augmented search path, de-duplicated in order."""
    parts: list[str] = []
    if runtime_bin:
        parts.append(str(runtime_bin))
    parts.extend(os.path.expanduser(p) for p in extra_paths)
    if include_system:
        parts.extend(npm_global_paths())
    host = os.environ.get("PATH", "") if host_path is None else host_path
    parts.extend(p for p in host.split(os.pathsep) if p)
    if include_system and sys.platform != "win32":
        parts.extend(_STANDARD_PATHS_POSIX)

    seen: set[str] = set()
    ordered: list[str] = []
    for p in parts:
        if p not in seen:
            seen.add(p)
            ordered.append(p)
    return os.pathsep.join(ordered)


def resolve_executable(
    name: str,
    search_path: str,
    override: str | None = None,
) -> ExecutableLookup:
    """Find ``name`` at the override path or on ``search_path``."""
    if override:
        candidate = Path(override).expanduser()
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return ExecutableLookup(path=str(candidate))
        log.warning("Configured executable %s is missing or not executable", candidate)

    found = shutil.which(name, path=search_path)
    if found:
        return ExecutableLookup(path=found)

    error = f"Could not find '{name}' on the search path."
    if override:
        error = f"Configured executable '{override}' does not exist and {error[0].lower()}{error[1:]}"
    return ExecutableLookup(path=None, error=error)


async def probe_version(
    executable: str,
    env: Mapping[str, str] | None = None,
    timeout: float = 5.0,
    launcher: ProcessLauncher | None = None,
) -> str | None:
    """Run ``executable --version`` with a bounded wait.

    Returns:
        First line of the version output, or None on timeout or failure.
    """
    launcher = launcher or AsyncioProcessLauncher()
    try:
        process = await launcher.launch([executable, "--version"], env=env)
    except SpawnError as e:
        log.warning("Version probe failed for %s: %s", executable, e)
        return None

    async def collect() -> tuple[bytes, int]:
        out = await read_all(process.stdout)
        await read_all(process.stderr)
        return out, await process.wait()

    try:
        stdout, code = await asyncio.wait_for(collect(), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("Version probe for %s timed out after %.1fs", executable, timeout)
        await kill_quietly(process)
        return None

    if code != 0:
        log.warning("Version probe for %s exited with code %s", executable, code)
        return None
    text = stdout.decode("utf-8", errors="replace").strip()
    return text.splitlines()[0] if text else None


class EnvironmentResolver:
    """Resolve a launchable executable for the external CLI.

    Usage:
        resolver = EnvironmentResolver(RuntimeRequirement())
        launch = resolver.prepare("claude")
        env = launch.build_env(remove=["ANTHROPIC_API_KEY"])
    """

    def __init__(
        self,
        requirement: RuntimeRequirement | None = None,
        install_roots: Sequence[InstallRoot] | None = None,
        extra_paths: Sequence[str] = (),
        executable_override: str | None = None,
        *,
        host_path: str | None = None,
        include_system: bool = True,
        launcher: ProcessLauncher | None = None,
    ) -> None:
        self.requirement = requirement or RuntimeRequirement()
        self._install_roots = list(install_roots) if install_roots is not None else None
        self._extra_paths = list(extra_paths)
        self._override = executable_override
        self._host_path = host_path
        self._include_system = include_system
        self._launcher = launcher

    @property
    def install_roots(self) -> list[InstallRoot]:
        if self._install_roots is not None:
            return list(self._install_roots)
        return default_install_roots()

    def find_runtime(self) -> RuntimeLookup:
        return find_compatible_runtime(self.install_roots, self.requirement)

    def search_path(self, runtime: RuntimeLookup | None = None) -> str:
        runtime = runtime if runtime is not None else self.find_runtime()
        return build_search_path(
            runtime.path,
            self._extra_paths,
            host_path=self._host_path,
            include_system=self._include_system,
        )

    def prepare(self, name: str) -> LaunchEnvironment:
        """Locate ``name`` and the augmented search path to run it with.

        Raises:
            SpawnError: If the executable cannot be located.
        """
        runtime = self.find_runtime()
        if runtime.path is None:
            log.warning("%s; falling back to the host PATH", runtime.error)
        search_path = self.search_path(runtime)

        lookup = resolve_executable(name, search_path, self._override)
        if lookup.path is None:
            raise SpawnError(lookup.error or f"Could not find '{name}'.", remediation=INSTALL_HINT)

        log.debug("Resolved %s -> %s", name, lookup.path)
        return LaunchEnvironment(executable=lookup.path, search_path=search_path, runtime=runtime)

    async def probe_version(
        self,
        executable: str,
        env: Mapping[str, str] | None = None,
        timeout: float = 5.0,
    ) -> str | None:
        return await probe_version(executable, env, timeout, launcher=self._launcher)

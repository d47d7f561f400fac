"""Exception taxonomy and process-failure classification.

Errors fall into a few families:
- ConfigurationError: missing working directory or credential. Handled
  locally by the worker or registry, never a crash.
- WorkerBusyError: a second request while one is in flight.
- SpawnError: the external executable is missing or not runnable.
- ParseError: one malformed protocol line. Logged and skipped.
- TransportError: the connection broke before any content arrived.
- VersionIncompatibilityError: the CLI refused to run on an old runtime.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class CoworkerError(Exception):
    """Base class for all coworker errors."""


class ConfigurationError(CoworkerError):
    """Required configuration (working directory, credential) is missing."""


class WorkerBusyError(CoworkerError):
    """The worker is already processing a message."""

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        super().__init__("Agent is already processing a message")


class SpawnError(CoworkerError):
    """The external executable could not be found or started.

    Attributes:
        remediation: Instructions the user can follow to fix the problem.
    """

    def __init__(self, message: str, remediation: str | None = None) -> None:
        self.remediation = remediation
        super().__init__(message)

    def user_message(self) -> str:
        if self.remediation:
            return f"{self} {self.remediation}"
        return str(self)


class ParseError(CoworkerError):
    """A protocol line could not be decoded."""

    def __init__(self, message: str, line: str) -> None:
        self.line = line
        super().__init__(message)


class TransportError(CoworkerError):
    """The stream or connection ended before producing any content."""


class VersionIncompatibilityError(CoworkerError):
    """The external tool needs a newer runtime than the one it found."""

    def __init__(self, message: str, required_version: str | None = None) -> None:
        self.required_version = required_version
        super().__init__(message)


# -----------------------------------------------------------------------------
# Process failure classification
# -----------------------------------------------------------------------------


class FailureKind(Enum):
    """What a failed CLI run's stderr says went wrong."""

    RUNTIME_TOO_OLD = "runtime_too_old"
    NOT_FOUND = "not_found"
    GENERIC = "generic"


@dataclass(frozen=True, slots=True)
class ProcessFailure:
    """Structured result of classify_process_error()."""

    kind: FailureKind
    message: str
    required_version: str | None = None


_VERSION = r"v?(\d+(?:\.\d+){0,2})"

# Ordered: the first pattern that matches wins.
_RUNTIME_TOO_OLD_PATTERNS = [
    # "requires Node.js >= 18.20.8", "requires node version 20 or higher"
    re.compile(rf"requires?\s+node(?:\.js)?\s*(?:version\s*)?(?:>=?\s*)?{_VERSION}", re.IGNORECASE),
    # "Node.js 18.20.8 or higher is required", "node version >=20 is required"
    re.compile(
        rf"node(?:\.js)?\s*(?:version\s*)?(?:>=?\s*)?{_VERSION}\+?\s*(?:or\s+(?:higher|later|newer)\s+)?(?:is\s+)?required",
        re.IGNORECASE,
    ),
    # npm: 'Unsupported engine ... required: { node: ">=18.20.8" }'
    re.compile(rf"unsupported\s+engine.*?node[\"']?\s*:\s*[\"']?>=?\s*{_VERSION}", re.IGNORECASE | re.DOTALL),
]

_NOT_FOUND_PATTERNS = [
    re.compile(r"command not found", re.IGNORECASE),
    re.compile(r"no such file or directory", re.IGNORECASE),
    re.compile(r"env:\s*node:", re.IGNORECASE),
]


def classify_process_error(text: str) -> ProcessFailure:
    """Classify raw stderr text from a failed CLI run.

    Args:
        text: Captured standard error (may be empty).

    Returns:
        ProcessFailure with the kind, a user-facing message and, for runtime
        version failures, the version the tool asked for.
    """
    stripped = (text or "").strip()

    for pattern in _RUNTIME_TOO_OLD_PATTERNS:
        match = pattern.search(stripped)
        if match:
            required = match.group(1)
            return ProcessFailure(
                kind=FailureKind.RUNTIME_TOO_OLD,
                message=runtime_upgrade_message(required),
                required_version=required,
            )

    for pattern in _NOT_FOUND_PATTERNS:
        if pattern.search(stripped):
            return ProcessFailure(kind=FailureKind.NOT_FOUND, message=stripped)

    return ProcessFailure(kind=FailureKind.GENERIC, message=stripped)


def runtime_upgrade_message(required_version: str) -> str:
    """Build the actionable upgrade text for a too-old runtime."""
    major = required_version.split(".", 1)[0]
    return (
        f"The CLI needs Node.js {required_version} or newer, but an older version was used. "
        f"Install a newer Node.js (for example `nvm install {major}`) and try again."
    )

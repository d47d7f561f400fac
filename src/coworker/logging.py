"""Logging configuration for coworker.

Uses Python's standard logging module with support for:
- File logging via config or COWORKER_LOG environment variable
- Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4)
- Stderr fallback when no log file is configured
- An in-memory ring buffer the host can show in a log viewer
"""

from __future__ import annotations

import logging
import os
import sys
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from coworker.config.schema import LoggingConfig

# Custom log levels
TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

# Module-level logger
logger = logging.getLogger("coworker")

_initialized = False

DEFAULT_BUFFER_SIZE = 500

# Map string level names to logging constants
_LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Map --verbose=N to log levels (0=errors only, 4=everything)
_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One captured log record, as shown in the host's log viewer."""

    timestamp: str
    level: str
    name: str
    message: str


class MemoryLogHandler(logging.Handler):
    """Keeps the most recent log records in memory.

    Older entries are dropped once ``capacity`` is reached.
    """

    def __init__(self, capacity: int = DEFAULT_BUFFER_SIZE) -> None:
        super().__init__()
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        self._entries.append(
            LogEntry(
                timestamp=datetime.fromtimestamp(record.created).isoformat(),
                level=record.levelname.lower(),
                name=record.name,
                message=message,
            )
        )

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


_memory_handler = MemoryLogHandler()
logger.addHandler(_memory_handler)


class _LowercaseLevelFormatter(logging.Formatter):
    """Formatter that emits lowercase level names."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Initialize logging based on configuration.

    Config values take precedence, with env var fallback.
    Call this once at startup. Subsequent calls are no-ops.

    Verbosity levels (--verbose / config.logging.verbose):
        0 = error   - errors only
        1 = warning  - errors + warnings
        2 = info     - normal operation (default)
        3 = verbose  - detailed diagnostics
        4 = trace    - everything

    Args:
        config: Optional LoggingConfig with level, verbose, file and buffer settings.
    """
    global _initialized, _memory_handler
    if _initialized:
        return
    _initialized = True

    # Determine log level: verbose (int) takes precedence over level (str)
    log_level = logging.INFO  # default
    if config:
        if config.verbose is not None:
            log_level = _VERBOSITY_MAP.get(config.verbose, TRACE)
        elif config.level:
            log_level = _LEVEL_MAP.get(config.level.upper(), logging.INFO)

        if config.buffer_size and config.buffer_size != DEFAULT_BUFFER_SIZE:
            logger.removeHandler(_memory_handler)
            _memory_handler = MemoryLogHandler(config.buffer_size)
            logger.addHandler(_memory_handler)

    logger.setLevel(log_level)

    # Format: HH:MM:SS level: message
    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s: %(message)s", datefmt="%H:%M:%S"
    )

    log_path = config.file if config and config.file else os.environ.get("COWORKER_LOG")

    if log_path:
        log_path = os.path.expanduser(log_path)
        try:
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            # Fall back to stderr if file can't be opened (only if real console)
            if sys.stderr.isatty():
                print(f"[coworker] Failed to open log file: {e}", file=sys.stderr)
                _add_stderr_handler(formatter, log_level)
    elif sys.stderr.isatty():
        # Only log to stderr if it's a real console, not a pipe owned by the host
        _add_stderr_handler(formatter, log_level)


def _add_stderr_handler(formatter: logging.Formatter, level: int = logging.DEBUG) -> None:
    """Add a stderr handler to the logger."""
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Optional name for a child logger (e.g., "registry", "worker.cli").
              If None, returns the root coworker logger.

    Returns:
        A configured logger instance.
    """
    if name:
        return logger.getChild(name)
    return logger


def get_logs() -> list[LogEntry]:
    """Return the buffered log entries, oldest first."""
    return _memory_handler.entries


def clear_logs() -> None:
    """Drop all buffered log entries."""
    _memory_handler.clear()
    logger.info("Logs cleared by user")


def mask_secret(value: Any, visible: int = 4) -> str:
    """Mask a credential for log output, keeping the last few characters."""
    if not value:
        return "NOT SET"
    text = str(value)
    if len(text) <= visible:
        return "***"
    return "***" + text[-visible:]

"""coworker: drive AI-assistant workers for desktop sessions.

A SessionRegistry maps each session to one worker backed by a model API
(litellm), a spawned CLI process, or a claude-agent-sdk connection. Workers
broadcast WorkerEvents to the session's observers.
"""

__version__ = "0.1.0"

from coworker.errors import (
    ConfigurationError,
    CoworkerError,
    ParseError,
    SpawnError,
    TransportError,
    VersionIncompatibilityError,
    WorkerBusyError,
    classify_process_error,
)
from coworker.messages import Message, Role, UserInput
from coworker.observers import EventKind, Observer, ObserverRegistry, QueueObserver, WorkerEvent
from coworker.registry import SessionRegistry

__all__ = [
    "__version__",
    "SessionRegistry",
    "Message",
    "Role",
    "UserInput",
    "EventKind",
    "Observer",
    "ObserverRegistry",
    "QueueObserver",
    "WorkerEvent",
    "CoworkerError",
    "ConfigurationError",
    "WorkerBusyError",
    "SpawnError",
    "ParseError",
    "TransportError",
    "VersionIncompatibilityError",
    "classify_process_error",
]

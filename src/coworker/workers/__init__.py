"""Worker variants sharing the Worker contract.

- RemoteAPIWorker: direct model API via litellm
- SpawnedProcessWorker: CLI in print mode, stream-json stdout
- StreamingSDKWorker: claude-agent-sdk connection with resumption
"""

from __future__ import annotations

from collections.abc import Iterable

from coworker.context import WorkerContext, WorkerKind
from coworker.observers import Observer
from coworker.permissions import PermissionManager
from coworker.workers.base import NO_RESPONSE_MESSAGE, NO_WORKING_DIRECTORY_MESSAGE, Worker
from coworker.workers.process import SpawnedProcessWorker
from coworker.workers.remote import RemoteAPIWorker
from coworker.workers.sdk import StreamingSDKWorker
from coworker.workers.tools import describe_tool_use, is_progress_line

WORKER_TYPES: dict[WorkerKind, type[Worker]] = {
    WorkerKind.API: RemoteAPIWorker,
    WorkerKind.CLI: SpawnedProcessWorker,
    WorkerKind.SDK: StreamingSDKWorker,
}


def create_worker(
    context: WorkerContext,
    permissions: PermissionManager | None = None,
    observers: Iterable[Observer] = (),
) -> Worker:
    """Construct the worker variant named by ``context.kind``."""
    return WORKER_TYPES[context.kind](context, permissions, observers)


__all__ = [
    "Worker",
    "RemoteAPIWorker",
    "SpawnedProcessWorker",
    "StreamingSDKWorker",
    "WORKER_TYPES",
    "create_worker",
    "describe_tool_use",
    "is_progress_line",
    "NO_RESPONSE_MESSAGE",
    "NO_WORKING_DIRECTORY_MESSAGE",
]

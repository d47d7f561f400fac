"""Session registry: one worker per session, created lazily.

The host registers an observer (a chat window) for a session before asking
for its worker. Workers are built from configuration on first use, kept for
reuse across requests, and destroyed when the session's surface goes away.

"No worker" is a normal outcome of get_or_create_worker(): no observer yet,
no credential for the API mode, or a construction failure. Callers check for
None instead of catching exceptions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from coworker.config import Config, ConfigStore, get_config
from coworker.context import WorkerContext, WorkerKind
from coworker.logging import get_logger
from coworker.observers import Observer
from coworker.permissions import PermissionManager
from coworker.storage import HistoryPersistenceObserver, SessionStore, YamlSessionStore
from coworker.workers import Worker, create_worker

log = get_logger("registry")

WorkerFactory = Callable[[WorkerContext, PermissionManager, Iterable[Observer]], Worker]


class SessionRegistry:
    """Maps session ids to their observers and single worker."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        permissions: PermissionManager | None = None,
        store: SessionStore | None = None,
        worker_factory: WorkerFactory | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            config: Configuration; the cached global config if not provided
            permissions: Permission collaborator shared by all workers;
                built from ``config.permissions`` if not provided
            store: Session-history persistence; history is restored into
                new workers and saved on every history-update when set
            worker_factory: Override for constructing workers (tests)
        """
        self._config = config
        self._permissions = permissions
        self._store = store
        self._factory: WorkerFactory = worker_factory or create_worker
        self._sinks: dict[str, list[Observer]] = {}
        self._workers: dict[str, Worker] = {}
        self._shared: Observer | None = None
        self._init_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(cls, config: Config | None = None) -> SessionRegistry:
        """Build a registry with the default collaborators for ``config``."""
        config = config or get_config()
        try:
            value_store: ConfigStore | None = ConfigStore()
        except ValueError as e:
            log.warning("Permission changes will not be persisted: %s", e)
            value_store = None
        permissions = PermissionManager.from_config(config.permissions, store=value_store)

        store: SessionStore | None = None
        if config.sessions.directory and config.sessions.restore_history:
            store = YamlSessionStore(config.sessions.directory)
        return cls(config, permissions=permissions, store=store)

    @property
    def config(self) -> Config:
        return self._config or get_config()

    @property
    def permissions(self) -> PermissionManager:
        if self._permissions is None:
            self._permissions = PermissionManager.from_config(self.config.permissions)
        return self._permissions

    # -- observers ------------------------------------------------------------

    def register_observer(self, session_id: str, sink: Observer) -> None:
        sinks = self._sinks.setdefault(session_id, [])
        if not any(s is sink for s in sinks):
            sinks.append(sink)
        worker = self._workers.get(session_id)
        if worker is not None:
            worker.add_observer(sink)

    async def unregister_observer(self, session_id: str) -> str | None:
        """Drop the session's observers and destroy its worker.

        Returns:
            The session id if it was known, else None.
        """
        sinks = self._sinks.pop(session_id, None)
        had_worker = session_id in self._workers
        if sinks is None and not had_worker:
            log.warning("Unregistering unknown session %s", session_id)
            return None
        if had_worker:
            await self.destroy_worker(session_id)
        log.debug("Unregistered session %s", session_id)
        return session_id

    def set_shared_observer(self, sink: Observer | None) -> None:
        """Attach ``sink`` to every existing and future worker (None detaches)."""
        previous = self._shared
        self._shared = sink
        for worker in self._workers.values():
            if previous is not None:
                worker.remove_observer(previous)
            if sink is not None:
                worker.add_observer(sink)

    # -- workers --------------------------------------------------------------

    def get_worker(self, session_id: str) -> Worker | None:
        return self._workers.get(session_id)

    def has_worker(self, session_id: str) -> bool:
        return session_id in self._workers

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    def active_session_ids(self) -> list[str]:
        return list(self._workers)

    def get_or_create_worker(self, session_id: str) -> Worker | None:
        """Return the session's worker, creating it on first use.

        Initialization runs as a background task; its failures are logged.

        Returns:
            The worker, or None when no observer is registered, the API mode
            has no credential, the mode is unknown, or construction fails.
        """
        worker = self._workers.get(session_id)
        if worker is not None:
            return worker

        sinks = self._sinks.get(session_id)
        if not sinks:
            log.warning("No observer registered for session %s; not creating a worker", session_id)
            return None

        config = self.config
        try:
            context = WorkerContext.from_config(session_id, config, self.permissions.working_directory)
        except ValueError:
            log.error("Unknown integration mode %r", config.agent.mode)
            return None

        if context.kind is WorkerKind.API and not context.api_key:
            log.warning("No API key configured; cannot create an API worker for %s", session_id)
            return None

        observers = list(sinks)
        if self._shared is not None:
            observers.append(self._shared)

        try:
            worker = self._factory(context, self.permissions, observers)
        except Exception:
            log.exception("Failed to create %s worker for session %s", context.kind.value, session_id)
            return None

        if self._store is not None:
            messages = self._store.load_messages(session_id)
            if messages:
                log.debug("Restored %d message(s) for session %s", len(messages), session_id)
                worker.load_history(messages)
            worker.add_observer(HistoryPersistenceObserver(self._store))

        self._workers[session_id] = worker
        log.info("Created %s worker for session %s", context.kind.value, session_id)
        self._schedule_initialize(worker)
        return worker

    def _schedule_initialize(self, worker: Worker) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("No running event loop; worker for %s not initialized", worker.session_id)
            return
        task = loop.create_task(self._initialize(worker))
        self._init_tasks.add(task)
        task.add_done_callback(self._init_tasks.discard)

    async def _initialize(self, worker: Worker) -> None:
        try:
            await worker.initialize()
        except Exception:
            log.exception("Initialization failed for session %s", worker.session_id)

    async def destroy_worker(self, session_id: str) -> bool:
        """Abort and clean up the session's worker.

        The entry is removed even if teardown fails.

        Returns:
            True on clean teardown, False on error or unknown session.
        """
        worker = self._workers.pop(session_id, None)
        if worker is None:
            return False

        clean = True
        try:
            await worker.abort()
        except Exception:
            log.exception("Abort failed for session %s", session_id)
            clean = False
        try:
            await worker.cleanup()
        except Exception:
            log.exception("Cleanup failed for session %s", session_id)
            clean = False
        log.debug("Destroyed worker for session %s", session_id)
        return clean

    async def destroy_all(self) -> None:
        """Tear down every worker (best effort) and clear the registry."""
        for task in list(self._init_tasks):
            task.cancel()
        for session_id in list(self._workers):
            try:
                await self.destroy_worker(session_id)
            except Exception:
                log.exception("Teardown failed for session %s", session_id)
        self._workers.clear()
        self._sinks.clear()

    async def rebind_session(self, old_id: str, new_id: str) -> int:
        """Move observers to a new session id, destroying the old worker.

        Returns:
            Number of observers moved.
        """
        sinks = self._sinks.pop(old_id, [])
        if old_id in self._workers:
            await self.destroy_worker(old_id)
        for sink in sinks:
            self.register_observer(new_id, sink)
        log.info("Rebound %d observer(s) from %s to %s", len(sinks), old_id, new_id)
        return len(sinks)

    # -- confirmations --------------------------------------------------------

    def handle_confirm_response(
        self,
        session_id: str,
        confirmation_id: str,
        approved: bool,
        remember: bool = False,
        tool: str | None = None,
        path: str | None = None,
    ) -> bool:
        worker = self._workers.get(session_id)
        if worker is None:
            log.debug("Confirmation %s for unknown session %s", confirmation_id, session_id)
            return False
        return worker.handle_confirm_response_with_remember(confirmation_id, approved, remember, tool, path)

"""Worker contract shared by every variant.

A Worker owns one conversation history, one observer registry, one
confirmation broker and the single-flight processing guard. Variants only
implement ``_run``; the request lifecycle lives here:

    process_user_message(input)
      -> reject if busy (before any await)
      -> append user Message + empty assistant placeholder
      -> emit stream-start
      -> content = await _run(request)
      -> finally: settle placeholder, release guard,
                  emit history-update, emit complete
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any, ClassVar

from coworker.confirmations import ConfirmationBroker
from coworker.context import WorkerContext, WorkerKind
from coworker.errors import CoworkerError, SpawnError, WorkerBusyError
from coworker.logging import get_logger
from coworker.messages import ImageBlock, Message, Role, UserInput, serialize_history
from coworker.observers import EventKind, Observer, ObserverRegistry, WorkerEvent
from coworker.permissions import PermissionManager

log = get_logger("workers")

NO_WORKING_DIRECTORY_MESSAGE = (
    "Please choose a working directory first. "
    "Click the folder icon to select a project directory, then send your message again."
)
NO_RESPONSE_MESSAGE = "No response received."


class Worker(ABC):
    """Abstract base for the api, cli and sdk worker variants."""

    kind: ClassVar[WorkerKind]
    requires_working_directory: ClassVar[bool] = False

    def __init__(
        self,
        context: WorkerContext,
        permissions: PermissionManager | None = None,
        observers: Iterable[Observer] = (),
    ) -> None:
        self.context = context
        self.permissions = permissions or PermissionManager()
        self._observers = ObserverRegistry()
        for observer in observers:
            self._observers.add(observer)
        self._broker = ConfirmationBroker()
        self._history: list[Message] = []
        self._processing = False
        self._placeholder: Message | None = None

    # -- state ----------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def working_directory(self) -> str | None:
        return self.context.working_directory or self.permissions.working_directory

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    # -- observers ------------------------------------------------------------

    def add_observer(self, observer: Observer) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: Observer) -> None:
        self._observers.remove(observer)

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        self._observers.publish(WorkerEvent(kind=kind, session_id=self.session_id, payload=payload))

    def emit_token(self, text: str) -> None:
        self.emit(EventKind.STREAM_TOKEN, text)

    def emit_progress(self, progress: dict[str, Any]) -> None:
        self.emit(EventKind.PROGRESS, progress)

    def emit_error(self, message: str) -> None:
        self.emit(EventKind.ERROR, message)

    def notify_history(self) -> None:
        self.emit(EventKind.HISTORY_UPDATE, serialize_history(self._history))

    # -- history --------------------------------------------------------------

    def get_history(self) -> list[Message]:
        return list(self._history)

    def load_history(self, messages: Iterable[Message | dict[str, Any]]) -> None:
        self._history = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
        self.notify_history()

    def clear_history(self) -> None:
        self._history = []
        self._reset_resumable_state()
        self.notify_history()

    def set_reply(self, content: str) -> None:
        """Update the in-flight placeholder with the text produced so far."""
        if self._placeholder is not None:
            self._placeholder.content = content

    # -- lifecycle ------------------------------------------------------------

    async def initialize(self) -> None:
        """Best-effort startup checks. Failures are logged, never raised."""

    async def abort(self) -> None:
        """Stop the in-flight request's process or connection, if any."""

    async def cleanup(self) -> None:
        """Abort and drop all session state."""
        await self.abort()
        self._history = []
        self._reset_resumable_state()
        self._broker.cancel_all()

    def _reset_resumable_state(self) -> None:
        """Drop state that resumes a previous conversation (SDK only)."""

    async def process_user_message(self, user_input: UserInput | str) -> None:
        """Run one request to completion.

        Raises:
            WorkerBusyError: If a request is already in flight.
        """
        if self._processing:
            raise WorkerBusyError(self.session_id)
        self._processing = True

        try:
            request = UserInput.coerce(user_input)
            self._history.append(self._user_message(request))

            if self.requires_working_directory and not self.working_directory:
                log.warning("Session %s has no working directory configured", self.session_id)
                self._history.append(Message(role=Role.ASSISTANT, content=NO_WORKING_DIRECTORY_MESSAGE))
                return

            self._placeholder = Message(role=Role.ASSISTANT, content="")
            self._history.append(self._placeholder)
            self.emit(EventKind.STREAM_START)

            try:
                content = await self._run(request)
            except CoworkerError as e:
                self._report_failure(e)
            except Exception as e:
                log.exception("Unexpected %s worker failure in session %s", self.kind.value, self.session_id)
                self._report_failure(e)
            else:
                self.set_reply(content)
        finally:
            self._finish()

    @abstractmethod
    async def _run(self, request: UserInput) -> str:
        """Run the variant and return the final assistant content."""

    def _user_message(self, request: UserInput) -> Message:
        message = request.to_message()
        if request.images and isinstance(message.content, list):
            parsed = sum(1 for b in message.content if isinstance(b, ImageBlock))
            if parsed < len(request.images):
                log.warning("Skipped %d unparsable image(s)", len(request.images) - parsed)
        return message

    def _report_failure(self, error: BaseException) -> None:
        text = error.user_message() if isinstance(error, SpawnError) else (str(error) or error.__class__.__name__)
        if isinstance(error, CoworkerError):
            log.warning("%s worker error in session %s: %s", self.kind.value, self.session_id, text)

        placeholder = self._placeholder
        if placeholder is not None:
            if placeholder.is_empty:
                self._remove_placeholder()
            else:
                placeholder.content = f"{placeholder.text()}\n\n[Error] {text}"
        self.emit_error(text)

    def _remove_placeholder(self) -> None:
        placeholder = self._placeholder
        if placeholder is not None:
            self._history = [m for m in self._history if m is not placeholder]
        self._placeholder = None

    def _finish(self) -> None:
        if self._placeholder is not None and self._placeholder.is_empty:
            self._remove_placeholder()
        self._placeholder = None
        self._processing = False
        self.notify_history()
        self.emit(EventKind.COMPLETE)

    # -- confirmations --------------------------------------------------------

    async def request_confirmation(
        self,
        tool: str,
        description: str,
        tool_input: dict[str, Any],
        path: str | None = None,
    ) -> bool:
        """Ask the user to approve a tool call and wait for the answer.

        Returns False if the confirmation is cancelled by cleanup().
        """
        confirmation_id = f"confirm-{uuid.uuid4().hex[:12]}"
        future = self._broker.create(confirmation_id)
        payload: dict[str, Any] = {
            "id": confirmation_id,
            "tool": tool,
            "description": description,
            "input": tool_input,
        }
        if path:
            payload["path"] = path
        self.emit(EventKind.CONFIRM_REQUEST, payload)

        try:
            return await future
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if future.cancelled() and not (task and task.cancelling()):
                log.debug("Confirmation %s cancelled", confirmation_id)
                return False
            raise
        finally:
            self._broker.discard(confirmation_id)

    def handle_confirm_response(self, confirmation_id: str, approved: bool) -> bool:
        return self._broker.resolve(confirmation_id, approved)

    def handle_confirm_response_with_remember(
        self,
        confirmation_id: str,
        approved: bool,
        remember: bool = False,
        tool: str | None = None,
        path: str | None = None,
    ) -> bool:
        if approved and remember and tool:
            self.permissions.remember_tool(tool, path)
        return self._broker.resolve(confirmation_id, approved)

    def pending_confirmations(self) -> list[str]:
        return self._broker.pending_ids()

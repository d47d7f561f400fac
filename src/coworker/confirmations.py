"""Pending-confirmation broker.

When a tool call needs the user's approval the worker registers a pending
entry, emits a ``confirm-request`` event and awaits the entry's future. The
host answers through ``handle_confirm_response`` which resolves the future.

Every id resolves at most once. Answers for unknown or already-answered ids
are ignored.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from coworker.logging import get_logger

log = get_logger("confirmations")


@dataclass(frozen=True, slots=True)
class PendingConfirmation:
    id: str
    future: asyncio.Future[bool]
    created_at: float


class ConfirmationBroker:
    """Registry of outstanding approval requests for one worker."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingConfirmation] = {}

    def create(self, confirmation_id: str) -> asyncio.Future[bool]:
        """Register a pending confirmation and return its future.

        A still-pending entry with the same id is reused, so a retried
        request never leaks a second future.
        """
        existing = self._pending.get(confirmation_id)
        if existing is not None and not existing.future.done():
            return existing.future

        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending[confirmation_id] = PendingConfirmation(
            id=confirmation_id,
            future=future,
            created_at=time.time(),
        )
        return future

    def resolve(self, confirmation_id: str, approved: bool) -> bool:
        """Resolve a pending confirmation.

        Returns:
            True if an entry was found and resolved, False otherwise.
        """
        entry = self._pending.pop(confirmation_id, None)
        if entry is None:
            log.debug("No pending confirmation %s", confirmation_id)
            return False
        if entry.future.done():
            log.debug("Confirmation %s already settled", confirmation_id)
            return False
        entry.future.set_result(bool(approved))
        return True

    def discard(self, confirmation_id: str) -> bool:
        """Drop an entry whose waiter has gone away, cancelling it if unanswered."""
        entry = self._pending.pop(confirmation_id, None)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.cancel()
        return True

    def __contains__(self, confirmation_id: object) -> bool:
        return confirmation_id in self._pending

    def pending_ids(self) -> list[str]:
        return [cid for cid, entry in self._pending.items() if not entry.future.done()]

    def __len__(self) -> int:
        return len(self.pending_ids())

    def cancel_all(self) -> int:
        """Cancel every outstanding confirmation. Returns how many were cancelled."""
        cancelled = 0
        for entry in self._pending.values():
            if not entry.future.done():
                entry.future.cancel()
                cancelled += 1
        self._pending.clear()
        if cancelled:
            log.debug("Cancelled %d pending confirmation(s)", cancelled)
        return cancelled

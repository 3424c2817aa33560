"""
Change notifications for the ledger and the session coordinator.
Listeners are called synchronously, in mutation order, after each change is applied.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    MATCH_CREATED = "match_created"
    MATCH_CONFIRMATION_RECORDED = "match_confirmation_recorded"
    MATCH_CONFIRMED = "match_confirmed"
    MATCH_DISPUTED = "match_disputed"
    MATCH_EXPIRED = "match_expired"
    LEDGER_CLEARED = "ledger_cleared"
    SESSION_STARTED = "session_started"
    ARRANGEMENT_UPDATED = "arrangement_updated"
    TEAMS_LOCKED = "teams_locked"
    TEAMS_UNLOCKED = "teams_unlocked"
    GAME_RECORDED = "game_recorded"
    SESSION_ENDED = "session_ended"
    SESSION_CLEARED = "session_cleared"


@dataclass(frozen=True)
class StoreEvent:
    kind: EventKind
    entity_id: str | None = None
    # match status or session phase after the change
    status: str | None = None


Listener = Callable[[StoreEvent], None]


class Subscribers:
    """Listener set with subscribe/unsubscribe. One per store."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register listener; returns a callable that unsubscribes it."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def notify(self, event: StoreEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # a broken listener must not undo or block the change it observed
                logger.exception("Listener %r failed on %s", listener, event.kind.value)

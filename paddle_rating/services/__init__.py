"""
Service layer: the two stateful owners of core data.
MatchLedger ratifies submitted matches; SessionCoordinator runs the doubles rotation.
Both serialize their mutations and publish StoreEvents to subscribers.
"""
from .events import EventKind, StoreEvent, Subscribers
from .match_ledger import MatchLedger, count_wins
from .session_coordinator import (
    SessionCoordinator,
    build_combo_records,
    validate_arrangement,
    validate_game_score,
)

__all__ = [
    "EventKind",
    "StoreEvent",
    "Subscribers",
    "MatchLedger",
    "count_wins",
    "SessionCoordinator",
    "build_combo_records",
    "validate_arrangement",
    "validate_game_score",
]

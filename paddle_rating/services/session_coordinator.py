"""
Doubles session coordinator: one four-player rotation at a time.
Phase state machine (ready ⇄ arranging, completed on end) and the six-pairing
combo ledger. Mutations are serialized by one lock and observable via subscribe().
"""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from itertools import combinations
from typing import Callable, Sequence

from paddle_rating.config import Settings
from paddle_rating.exceptions import InvalidStateError, NotFoundError, ValidationError
from paddle_rating.models import (
    ComboRecord,
    DoublesSession,
    MatchParticipant,
    SessionGameRecord,
    SessionPhase,
    combo_id,
)
from paddle_rating.services.events import EventKind, Listener, StoreEvent, Subscribers

logger = logging.getLogger(__name__)

SESSION_SIZE = 4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_combo_records(player_ids: Sequence[str]) -> list[ComboRecord]:
    """All C(4,2) = 6 pairings, zeroed, in player order."""
    return [
        ComboRecord(id=combo_id(a, b), player1_id=a, player2_id=b)
        for a, b in combinations(player_ids, 2)
    ]


def validate_arrangement(team_a: Sequence[str], team_b: Sequence[str], player_ids: Sequence[str]) -> None:
    """Raise ValidationError unless team_a/team_b split player_ids two and two."""
    if len(team_a) != 2 or len(team_b) != 2:
        raise ValidationError("Each team must have exactly 2 players")
    if len(set(team_a) | set(team_b)) != SESSION_SIZE:
        raise ValidationError("Teams must not share or repeat players")
    if set(team_a) | set(team_b) != set(player_ids):
        raise ValidationError("Teams must be made of the session's four players")


def validate_game_score(team_a_score: int, team_b_score: int) -> None:
    for s in (team_a_score, team_b_score):
        if isinstance(s, bool) or not isinstance(s, int):
            raise ValidationError(f"Scores must be integers, got {s!r}")
        if s < 0:
            raise ValidationError(f"Scores must be non-negative, got {s}")
    if team_a_score == team_b_score:
        raise ValidationError("A session game must have a winner (scores are tied)")


class SessionCoordinator:
    """
    Owns at most one active DoublesSession.

    Non-strict (default): operations that make no sense in the current phase,
    or with no active session, are logged and ignored (return None).
    Strict: the same cases raise NotFoundError / InvalidStateError.
    ValidationError is raised in both modes.
    """

    def __init__(self, strict: bool = False, clock: Callable[[], datetime] | None = None) -> None:
        self.strict = strict
        self._clock = clock or _utcnow
        self._session: DoublesSession | None = None
        self._lock = threading.RLock()
        self._subscribers = Subscribers()

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionCoordinator:
        return cls(strict=settings.strict)

    # ---------- Observation ----------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._subscribers.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._subscribers.unsubscribe(listener)

    def _notify(self, kind: EventKind, session: DoublesSession) -> None:
        self._subscribers.notify(StoreEvent(kind=kind, entity_id=session.id, status=session.phase.value))

    # ---------- Queries ----------

    @property
    def current_session(self) -> DoublesSession | None:
        """Snapshot of the active session, or None."""
        with self._lock:
            return copy.deepcopy(self._session)

    @property
    def current_session_id(self) -> str | None:
        with self._lock:
            return self._session.id if self._session else None

    def current_combo_records(self) -> tuple[ComboRecord | None, ComboRecord | None]:
        """Combo records for the pairings currently on team A and team B."""
        with self._lock:
            s = self._session
            if s is None:
                return None, None
            rec_a = s.combo(combo_id(*s.team_a))
            rec_b = s.combo(combo_id(*s.team_b))
            return copy.deepcopy(rec_a), copy.deepcopy(rec_b)

    # ---------- Guards ----------

    def _ignore(self, exc_cls: type[Exception], detail: str) -> None:
        if self.strict:
            raise exc_cls(detail)
        logger.warning("Ignored session operation: %s", detail)
        return None

    def _active(self, session_id: str | None) -> DoublesSession | None:
        if self._session is None:
            return self._ignore(NotFoundError, "No active session")
        if session_id is not None and session_id != self._session.id:
            return self._ignore(NotFoundError, f"Session not active: {session_id}")
        return self._session

    # ---------- Lifecycle ----------

    def start_session(
        self,
        players: Sequence[MatchParticipant | str],
        *,
        court_id: str = "",
        court_name: str = "",
    ) -> DoublesSession:
        """
        Start a session for exactly four distinct players.
        Team A = first two, team B = last two; phase starts at ready.
        A still-active session is replaced (strict mode refuses instead).
        """
        participants = [p if isinstance(p, MatchParticipant) else MatchParticipant(id=p, name=p) for p in players]
        ids = [p.id for p in participants]
        if len(ids) != SESSION_SIZE:
            raise ValidationError(f"Doubles session requires exactly {SESSION_SIZE} players, got {len(ids)}")
        if any(not pid for pid in ids):
            raise ValidationError("Player ids must be non-empty")
        if len(set(ids)) != SESSION_SIZE:
            raise ValidationError("Doubles session requires 4 distinct players")

        with self._lock:
            if self._session is not None:
                if self.strict:
                    raise InvalidStateError(f"Session {self._session.id} is still active; end it first")
                logger.warning("Replacing active session %s without ending it", self._session.id)
            session = DoublesSession(
                id=str(uuid.uuid4()),
                court_id=court_id,
                court_name=court_name,
                started_at=self._clock(),
                players=participants,
                team_a=[ids[0], ids[1]],
                team_b=[ids[2], ids[3]],
                phase=SessionPhase.READY,
                combo_records=build_combo_records(ids),
            )
            self._session = session
            logger.info("Session %s started on court %s with %s", session.id, court_id or "-", ", ".join(ids))
            self._notify(EventKind.SESSION_STARTED, session)
            return copy.deepcopy(session)

    def update_arrangement(
        self,
        team_a: Sequence[str],
        team_b: Sequence[str],
        *,
        session_id: str | None = None,
    ) -> DoublesSession | None:
        """Set the two teams. Only while arranging; the partition is re-checked first."""
        with self._lock:
            s = self._active(session_id)
            if s is None:
                return None
            if s.phase != SessionPhase.ARRANGING:
                return self._ignore(InvalidStateError, f"Cannot rearrange teams while {s.phase.value}")
            validate_arrangement(team_a, team_b, s.player_ids)
            s.team_a = list(team_a)
            s.team_b = list(team_b)
            logger.debug("Session %s arrangement %s vs %s", s.id, s.team_a, s.team_b)
            self._notify(EventKind.ARRANGEMENT_UPDATED, s)
            return copy.deepcopy(s)

    def lock_teams(self, *, session_id: str | None = None) -> DoublesSession | None:
        """arranging → ready."""
        with self._lock:
            s = self._active(session_id)
            if s is None:
                return None
            if s.phase != SessionPhase.ARRANGING:
                return self._ignore(InvalidStateError, f"Cannot lock teams while {s.phase.value}")
            s.phase = SessionPhase.READY
            logger.debug("Session %s teams locked", s.id)
            self._notify(EventKind.TEAMS_LOCKED, s)
            return copy.deepcopy(s)

    def unlock_teams(self, *, session_id: str | None = None) -> DoublesSession | None:
        """ready → arranging."""
        with self._lock:
            s = self._active(session_id)
            if s is None:
                return None
            if s.phase != SessionPhase.READY:
                return self._ignore(InvalidStateError, f"Cannot unlock teams while {s.phase.value}")
            s.phase = SessionPhase.ARRANGING
            logger.debug("Session %s teams unlocked", s.id)
            self._notify(EventKind.TEAMS_UNLOCKED, s)
            return copy.deepcopy(s)

    def record_game(
        self,
        team_a_score: int,
        team_b_score: int,
        *,
        session_id: str | None = None,
    ) -> SessionGameRecord | None:
        """
        Record one game for the current arrangement. The winning pairing gains a
        win, the losing pairing a loss; the phase then goes back to arranging.
        """
        with self._lock:
            s = self._active(session_id)
            if s is None:
                return None
            validate_game_score(team_a_score, team_b_score)
            game = SessionGameRecord(
                id=str(uuid.uuid4()),
                team_a_player_ids=(s.team_a[0], s.team_a[1]),
                team_b_player_ids=(s.team_b[0], s.team_b[1]),
                team_a_score=team_a_score,
                team_b_score=team_b_score,
                played_at=self._clock(),
            )
            s.games.append(game)

            team_a_won = team_a_score > team_b_score
            winner = s.combo(combo_id(*s.team_a) if team_a_won else combo_id(*s.team_b))
            loser = s.combo(combo_id(*s.team_b) if team_a_won else combo_id(*s.team_a))
            winner.wins += 1
            loser.losses += 1

            s.phase = SessionPhase.ARRANGING
            logger.info(
                "Session %s game %d: %s %d-%d %s",
                s.id, len(s.games), "/".join(s.team_a), team_a_score, team_b_score, "/".join(s.team_b),
            )
            self._notify(EventKind.GAME_RECORDED, s)
            return game

    def end_session(self, *, session_id: str | None = None) -> DoublesSession | None:
        """
        Complete the active session and stop tracking it. Returns the session for
        archival, or None when there is nothing to end.
        """
        with self._lock:
            s = self._session
            if s is None or (session_id is not None and session_id != s.id):
                if session_id is not None and self.strict:
                    raise NotFoundError(f"Session not active: {session_id}")
                return None
            s.phase = SessionPhase.COMPLETED
            self._session = None
            logger.info("Session %s ended after %d game(s)", s.id, len(s.games))
            self._notify(EventKind.SESSION_ENDED, s)
            return s

    def clear_session(self) -> None:
        """Drop the active session without completing it."""
        with self._lock:
            s = self._session
            self._session = None
            if s is not None:
                self._notify(EventKind.SESSION_CLEARED, s)

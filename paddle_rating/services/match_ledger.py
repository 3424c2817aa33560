"""
Match ledger: submitted results and their ratification.

Each match waits for every designated approver (the submitter, pre-approved, plus
each opponent) before it is confirmed. A single dispute overrides the quorum, and
matches still pending after their TTL expire. Confirmed, disputed and expired are
terminal. All mutations hold one lock, so "record a confirmation" and "check the
quorum" are atomic with respect to each other and to the expiry sweep.
"""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Sequence

from paddle_rating.config import Settings
from paddle_rating.exceptions import InvalidStateError, NotFoundError, ValidationError
from paddle_rating.models import (
    Confirmation,
    ConfirmationState,
    Match,
    MatchGame,
    MatchMode,
    MatchParticipant,
    MatchStatus,
    Page,
)
from paddle_rating.services.events import EventKind, Listener, StoreEvent, Subscribers

logger = logging.getLogger(__name__)

DEFAULT_MATCH_TTL = timedelta(hours=24)
DEFAULT_PAGE_SIZE = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def count_wins(games: Iterable[MatchGame]) -> tuple[int, int]:
    """(team A game wins, team B game wins). Tied games count for neither."""
    a_wins = b_wins = 0
    for g in games:
        if g.team_a_score > g.team_b_score:
            a_wins += 1
        elif g.team_b_score > g.team_a_score:
            b_wins += 1
    return a_wins, b_wins


def _parse_mode(mode: MatchMode | str) -> MatchMode:
    try:
        return MatchMode(mode)
    except ValueError as e:
        raise ValidationError(f"mode must be 'singles' or 'doubles', got {mode!r}") from e


def _parse_participants(side: str, team: Sequence[MatchParticipant | str]) -> list[MatchParticipant]:
    out: list[MatchParticipant] = []
    for p in team:
        participant = p if isinstance(p, MatchParticipant) else MatchParticipant(id=p, name=p)
        if not participant.id:
            raise ValidationError(f"{side} has a participant with an empty id")
        out.append(participant)
    return out


def _parse_games(games: Sequence[MatchGame | tuple[int, int]]) -> list[MatchGame]:
    if not games:
        raise ValidationError("A match needs at least one game")
    out: list[MatchGame] = []
    for g in games:
        if isinstance(g, MatchGame):
            a, b = g.team_a_score, g.team_b_score
        else:
            try:
                a, b = g
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Malformed score pair: {g!r}") from e
        for s in (a, b):
            if isinstance(s, bool) or not isinstance(s, int):
                raise ValidationError(f"Scores must be integers, got {s!r}")
            if s < 0:
                raise ValidationError(f"Scores must be non-negative, got {s}")
        out.append(MatchGame(team_a_score=a, team_b_score=b))
    return out


class MatchLedger:
    """
    In-memory match store, most recent first.

    Non-strict (default): unknown ids and operations on terminal matches are
    logged and ignored (return None). Strict: they raise NotFoundError /
    InvalidStateError. ValidationError is raised in both modes.
    """

    def __init__(
        self,
        strict: bool = False,
        clock: Callable[[], datetime] | None = None,
        ttl: timedelta = DEFAULT_MATCH_TTL,
    ) -> None:
        self.strict = strict
        self.ttl = ttl
        self._clock = clock or _utcnow
        self._matches: list[Match] = []
        self._by_id: dict[str, Match] = {}
        self._lock = threading.RLock()
        self._subscribers = Subscribers()

    @classmethod
    def from_settings(cls, settings: Settings) -> MatchLedger:
        return cls(strict=settings.strict, ttl=timedelta(hours=settings.match_ttl_hours))

    # ---------- Observation ----------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._subscribers.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._subscribers.unsubscribe(listener)

    def _notify(self, kind: EventKind, match: Match) -> None:
        self._subscribers.notify(StoreEvent(kind=kind, entity_id=match.id, status=match.status.value))

    def _ignore(self, exc_cls: type[Exception], detail: str) -> None:
        if self.strict:
            raise exc_cls(detail)
        logger.warning("Ignored match operation: %s", detail)
        return None

    # ---------- Mutations ----------

    def create_match(
        self,
        court_id: str,
        court_name: str,
        mode: MatchMode | str,
        team_a: Sequence[MatchParticipant | str],
        team_b: Sequence[MatchParticipant | str],
        games: Sequence[MatchGame | tuple[int, int]],
        submitter_id: str,
        *,
        rating_delta: int | None = None,
    ) -> Match:
        """
        Record a submitted result as pending. The submitter's confirmation is
        pre-approved; every team B participant gets a pending one.
        """
        match_mode = _parse_mode(mode)
        side_a = _parse_participants("team_a", team_a)
        side_b = _parse_participants("team_b", team_b)
        size = match_mode.team_size
        if len(side_a) != size or len(side_b) != size:
            raise ValidationError(
                f"{match_mode.value} needs {size} player(s) per side, got {len(side_a)} and {len(side_b)}"
            )
        ids = [p.id for p in side_a + side_b]
        if len(set(ids)) != len(ids):
            raise ValidationError("A participant cannot appear twice in one match")
        if not submitter_id:
            raise ValidationError("submitter_id is required")
        if any(p.id == submitter_id for p in side_b):
            raise ValidationError("The submitter must not be on team B")
        parsed_games = _parse_games(games)
        a_wins, b_wins = count_wins(parsed_games)

        with self._lock:
            now = self._clock()
            match = Match(
                id=str(uuid.uuid4()),
                created_at=now,
                court_id=court_id,
                court_name=court_name,
                mode=match_mode,
                team_a=side_a,
                team_b=side_b,
                games=parsed_games,
                team_a_wins=a_wins,
                team_b_wins=b_wins,
                status=MatchStatus.PENDING,
                expires_at=now + self.ttl,
                confirmations=[Confirmation(submitter_id, ConfirmationState.APPROVED)]
                + [Confirmation(p.id, ConfirmationState.PENDING) for p in side_b],
                submitter_id=submitter_id,
                rating_delta=rating_delta,
            )
            self._matches.insert(0, match)
            self._by_id[match.id] = match
            logger.info(
                "Match %s created by %s on %s: %d-%d in games",
                match.id, submitter_id, court_id or "-", a_wins, b_wins,
            )
            self._notify(EventKind.MATCH_CREATED, match)
            return copy.deepcopy(match)

    def confirm_match(self, match_id: str, approver_id: str) -> Match | None:
        """Approve on behalf of approver_id; confirms the match once every entry is approved."""
        with self._lock:
            match = self._by_id.get(match_id)
            if match is None:
                return self._ignore(NotFoundError, f"Match not found: {match_id}")
            if match.is_terminal:
                return self._ignore(InvalidStateError, f"Match {match_id} is already {match.status.value}")
            confirmation = match.confirmation_for(approver_id)
            if confirmation is None:
                return self._ignore(NotFoundError, f"{approver_id} is not an approver of match {match_id}")
            if confirmation.state == ConfirmationState.APPROVED:
                return copy.deepcopy(match)
            confirmation.state = ConfirmationState.APPROVED
            if match.all_approved():
                match.status = MatchStatus.CONFIRMED
                logger.info("Match %s confirmed", match.id)
                self._notify(EventKind.MATCH_CONFIRMED, match)
            else:
                logger.debug("Match %s approved by %s", match.id, approver_id)
                self._notify(EventKind.MATCH_CONFIRMATION_RECORDED, match)
            return copy.deepcopy(match)

    def dispute_match(
        self,
        match_id: str,
        reason: str | None = None,
        *,
        disputer_id: str | None = None,
    ) -> Match | None:
        """Mark a pending match disputed, whatever its confirmations say."""
        with self._lock:
            match = self._by_id.get(match_id)
            if match is None:
                return self._ignore(NotFoundError, f"Match not found: {match_id}")
            if match.is_terminal:
                return self._ignore(InvalidStateError, f"Match {match_id} is already {match.status.value}")
            match.status = MatchStatus.DISPUTED
            match.dispute_reason = reason
            match.disputed_by = disputer_id
            if disputer_id is not None:
                confirmation = match.confirmation_for(disputer_id)
                if confirmation is not None:
                    confirmation.state = ConfirmationState.DECLINED
            logger.info("Match %s disputed by %s: %s", match.id, disputer_id or "unknown", reason or "-")
            self._notify(EventKind.MATCH_DISPUTED, match)
            return copy.deepcopy(match)

    def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Expire pending matches whose expires_at has passed. Returns the expired ids."""
        with self._lock:
            at = now or self._clock()
            expired: list[str] = []
            for match in self._matches:
                if match.status == MatchStatus.PENDING and at > match.expires_at:
                    match.status = MatchStatus.EXPIRED
                    expired.append(match.id)
                    self._notify(EventKind.MATCH_EXPIRED, match)
            if expired:
                logger.info("Expired %d pending match(es)", len(expired))
            return expired

    def clear(self) -> None:
        with self._lock:
            self._matches.clear()
            self._by_id.clear()
            self._subscribers.notify(StoreEvent(kind=EventKind.LEDGER_CLEARED))

    # ---------- Queries ----------

    def get_match(self, match_id: str) -> Match | None:
        with self._lock:
            match = self._by_id.get(match_id)
            return copy.deepcopy(match) if match else None

    def list_matches(self) -> list[Match]:
        with self._lock:
            return copy.deepcopy(self._matches)

    def list_by_status(self, status: MatchStatus | str) -> list[Match]:
        try:
            wanted = MatchStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown match status: {status!r}") from e
        with self._lock:
            return [copy.deepcopy(m) for m in self._matches if m.status == wanted]

    def pending_confirmations(self, user_id: str) -> list[Match]:
        """Pending matches where user_id still has to approve."""
        with self._lock:
            out = []
            for m in self._matches:
                if m.status != MatchStatus.PENDING:
                    continue
                c = m.confirmation_for(user_id)
                if c is not None and c.state == ConfirmationState.PENDING:
                    out.append(copy.deepcopy(m))
            return out

    def pending_confirmation_count(self, user_id: str) -> int:
        return len(self.pending_confirmations(user_id))

    def history(self, user_id: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Page[Match]:
        """Matches the user played in (either side), most recent first."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be >= 1")
        with self._lock:
            mine = [m for m in self._matches if m.involves(user_id)]
            start = (page - 1) * limit
            items = copy.deepcopy(mine[start : start + limit])
            return Page(items=items, total=len(mine), page=page, limit=limit)

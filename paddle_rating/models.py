"""
Data models for the match and session core.
Domain objects only. Stores, locking and the API live elsewhere.

A Match is a submitted result waiting for (or past) opponent ratification.
A DoublesSession is the live partner rotation of four players on one court.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# ---------- Match status (state machine) ----------
class MatchStatus(str, Enum):
    """pending → confirmed | disputed | expired. All three outcomes are terminal."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    EXPIRED = "expired"


TERMINAL_MATCH_STATUSES = frozenset({MatchStatus.CONFIRMED, MatchStatus.DISPUTED, MatchStatus.EXPIRED})


class ConfirmationState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"


class MatchMode(str, Enum):
    SINGLES = "singles"
    DOUBLES = "doubles"

    @property
    def team_size(self) -> int:
        return 1 if self is MatchMode.SINGLES else 2


# ---------- Session phase (state machine) ----------
class SessionPhase(str, Enum):
    """arranging ⇄ ready, repeated once per game; completed is terminal."""
    ARRANGING = "arranging"
    READY = "ready"
    COMPLETED = "completed"


# ---------- Match ----------
@dataclass
class MatchParticipant:
    """One player on one side of a match. Ids and avatar urls are opaque."""
    id: str
    name: str = ""
    avatar_url: str | None = None
    rating_before: int | None = None  # skill score
    rating_after: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "rating_before": self.rating_before,
            "rating_after": self.rating_after,
        }


@dataclass(frozen=True)
class MatchGame:
    team_a_score: int
    team_b_score: int

    def to_dict(self) -> dict[str, int]:
        return {"team_a_score": self.team_a_score, "team_b_score": self.team_b_score}


@dataclass
class Confirmation:
    approver_id: str
    state: ConfirmationState = ConfirmationState.PENDING

    def to_dict(self) -> dict[str, str]:
        return {"approver_id": self.approver_id, "state": self.state.value}


@dataclass
class Match:
    """
    A submitted result. team_a is the submitter's side, team_b the opponents.
    Only confirmations and status (plus dispute details) change after creation.
    """
    id: str
    created_at: datetime
    court_id: str
    court_name: str
    mode: MatchMode
    team_a: list[MatchParticipant]
    team_b: list[MatchParticipant]
    games: list[MatchGame]
    team_a_wins: int
    team_b_wins: int
    status: MatchStatus
    expires_at: datetime
    confirmations: list[Confirmation]
    submitter_id: str = ""
    rating_delta: int | None = None
    dispute_reason: str | None = None
    disputed_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_MATCH_STATUSES

    def confirmation_for(self, user_id: str) -> Confirmation | None:
        for c in self.confirmations:
            if c.approver_id == user_id:
                return c
        return None

    def all_approved(self) -> bool:
        return all(c.state == ConfirmationState.APPROVED for c in self.confirmations)

    def involves(self, user_id: str) -> bool:
        return any(p.id == user_id for p in self.team_a) or any(p.id == user_id for p in self.team_b)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "court_id": self.court_id,
            "court_name": self.court_name,
            "mode": self.mode.value,
            "team_a": [p.to_dict() for p in self.team_a],
            "team_b": [p.to_dict() for p in self.team_b],
            "games": [g.to_dict() for g in self.games],
            "team_a_wins": self.team_a_wins,
            "team_b_wins": self.team_b_wins,
            "status": self.status.value,
            "expires_at": self.expires_at.isoformat(),
            "confirmations": [c.to_dict() for c in self.confirmations],
            "submitter_id": self.submitter_id,
            "rating_delta": self.rating_delta,
            "dispute_reason": self.dispute_reason,
            "disputed_by": self.disputed_by,
        }


# ---------- Doubles session ----------
def combo_id(player1_id: str, player2_id: str) -> str:
    """Order-independent id of a two-player pairing."""
    a, b = sorted((player1_id, player2_id))
    return f"{a}+{b}"


@dataclass
class ComboRecord:
    """Running record of one pairing as partners, whichever side of the net they played."""
    id: str
    player1_id: str
    player2_id: str
    wins: int = 0
    losses: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "player1_id": self.player1_id,
            "player2_id": self.player2_id,
            "wins": self.wins,
            "losses": self.losses,
        }


@dataclass(frozen=True)
class SessionGameRecord:
    id: str
    team_a_player_ids: tuple[str, str]
    team_b_player_ids: tuple[str, str]
    team_a_score: int
    team_b_score: int
    played_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_a_player_ids": list(self.team_a_player_ids),
            "team_b_player_ids": list(self.team_b_player_ids),
            "team_a_score": self.team_a_score,
            "team_b_score": self.team_b_score,
            "played_at": self.played_at.isoformat(),
        }


@dataclass
class DoublesSession:
    """
    Four players rotating partners on one court.
    team_a and team_b always partition the four player ids two and two.
    """
    id: str
    court_id: str
    court_name: str
    started_at: datetime
    players: list[MatchParticipant]
    team_a: list[str]
    team_b: list[str]
    phase: SessionPhase
    games: list[SessionGameRecord] = field(default_factory=list)
    combo_records: list[ComboRecord] = field(default_factory=list)

    @property
    def player_ids(self) -> list[str]:
        return [p.id for p in self.players]

    def combo(self, pairing_id: str) -> ComboRecord | None:
        for r in self.combo_records:
            if r.id == pairing_id:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "court_id": self.court_id,
            "court_name": self.court_name,
            "started_at": self.started_at.isoformat(),
            "players": [p.to_dict() for p in self.players],
            "team_a": list(self.team_a),
            "team_b": list(self.team_b),
            "phase": self.phase.value,
            "games": [g.to_dict() for g in self.games],
            "combo_records": [r.to_dict() for r in self.combo_records],
        }


# ---------- Pagination ----------
@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total

"""
Tests for the match ledger: creation, confirmation quorum, disputes, expiry sweep,
history pagination and the strict/lenient handling of ignored operations.
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from paddle_rating.config import Settings
from paddle_rating.exceptions import InvalidStateError, NotFoundError, ValidationError
from paddle_rating.models import ConfirmationState, MatchGame, MatchMode, MatchParticipant, MatchStatus
from paddle_rating.services import EventKind, MatchLedger, count_wins

START = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
GAMES = [(11, 5), (9, 11), (11, 7)]


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return MatchLedger(clock=clock)


@pytest.fixture
def strict_ledger(clock):
    return MatchLedger(strict=True, clock=clock)


def _doubles(ledger, games=GAMES, submitter="A1"):
    return ledger.create_match("c1", "Court 1", "doubles", ["A1", "A2"], ["B1", "B2"], games, submitter)


def _singles(ledger, a="A1", b="B1"):
    return ledger.create_match("c1", "Court 1", MatchMode.SINGLES, [a], [b], [(11, 3)], a)


def test_create_doubles_match(ledger):
    match = _doubles(ledger)
    assert match.team_a_wins == 2
    assert match.team_b_wins == 1
    assert match.status == MatchStatus.PENDING
    assert match.created_at == START
    assert match.expires_at == START + timedelta(hours=24)
    assert [(c.approver_id, c.state) for c in match.confirmations] == [
        ("A1", ConfirmationState.APPROVED),
        ("B1", ConfirmationState.PENDING),
        ("B2", ConfirmationState.PENDING),
    ]
    assert len(match.confirmations) == 1 + len(match.team_b)


def test_create_accepts_participants_and_games(ledger):
    match = ledger.create_match(
        "c2", "Court 2", MatchMode.SINGLES,
        [MatchParticipant(id="A1", name="Ana", rating_before=1300)],
        [MatchParticipant(id="B1", name="Ben", rating_before=1250)],
        [MatchGame(11, 9)],
        "A1",
        rating_delta=14,
    )
    assert match.team_a[0].name == "Ana"
    assert match.rating_delta == 14
    assert match.team_a_wins == 1


def test_tied_games_count_for_nobody():
    assert count_wins([MatchGame(11, 5), MatchGame(10, 10), MatchGame(3, 11)]) == (1, 1)


def test_most_recent_first(ledger, clock):
    first = _singles(ledger)
    clock.advance(minutes=5)
    second = _singles(ledger, "A2", "B2")
    assert [m.id for m in ledger.list_matches()] == [second.id, first.id]


@pytest.mark.parametrize(
    "mode,team_a,team_b,games,submitter",
    [
        ("triples", ["A1"], ["B1"], GAMES, "A1"),
        ("singles", ["A1", "A2"], ["B1"], GAMES, "A1"),
        ("doubles", ["A1", "A2"], ["B1"], GAMES, "A1"),
        ("doubles", ["A1", "A2"], ["B1", "A1"], GAMES, "A2"),
        ("singles", ["A1"], ["B1"], [], "A1"),
        ("singles", ["A1"], ["B1"], [(11, -2)], "A1"),
        ("singles", ["A1"], ["B1"], [(11, "7")], "A1"),
        ("singles", ["A1"], ["B1"], [(11,)], "A1"),
        ("singles", ["A1"], ["B1"], GAMES, ""),
        ("singles", ["A1"], ["B1"], GAMES, "B1"),
        ("singles", [""], ["B1"], GAMES, "A1"),
    ],
)
def test_create_rejects_malformed_input(ledger, mode, team_a, team_b, games, submitter):
    with pytest.raises(ValidationError):
        ledger.create_match("c1", "Court 1", mode, team_a, team_b, games, submitter)
    assert ledger.list_matches() == []


def test_quorum_needs_every_opponent(ledger):
    match = _doubles(ledger)
    after_first = ledger.confirm_match(match.id, "B1")
    assert after_first.status == MatchStatus.PENDING
    after_second = ledger.confirm_match(match.id, "B2")
    assert after_second.status == MatchStatus.CONFIRMED
    assert after_second.all_approved()


def test_repeat_confirmation_is_idempotent(ledger):
    match = _doubles(ledger)
    ledger.confirm_match(match.id, "B1")
    again = ledger.confirm_match(match.id, "B1")
    assert again.status == MatchStatus.PENDING
    assert ledger.confirm_match(match.id, "A1").status == MatchStatus.PENDING


def test_teammate_is_not_an_approver(ledger):
    match = _doubles(ledger)
    assert ledger.confirm_match(match.id, "A2") is None
    assert ledger.get_match(match.id).confirmation_for("A2") is None


def test_dispute_overrides_quorum(ledger):
    match = _doubles(ledger)
    disputed = ledger.dispute_match(match.id, "Score was 11-9", disputer_id="B1")
    assert disputed.status == MatchStatus.DISPUTED
    assert disputed.dispute_reason == "Score was 11-9"
    assert disputed.disputed_by == "B1"
    assert disputed.confirmation_for("B1").state == ConfirmationState.DECLINED

    assert ledger.confirm_match(match.id, "B2") is None
    assert ledger.get_match(match.id).status == MatchStatus.DISPUTED
    assert ledger.get_match(match.id).confirmation_for("B2").state == ConfirmationState.PENDING


def test_dispute_without_disputer(ledger):
    match = _singles(ledger)
    disputed = ledger.dispute_match(match.id)
    assert disputed.status == MatchStatus.DISPUTED
    assert disputed.disputed_by is None


def test_terminal_status_never_changes(ledger, clock):
    confirmed = _singles(ledger)
    ledger.confirm_match(confirmed.id, "B1")
    disputed = _singles(ledger, "A2", "B2")
    ledger.dispute_match(disputed.id)

    assert ledger.dispute_match(confirmed.id) is None
    assert ledger.confirm_match(disputed.id, "B2") is None
    clock.advance(days=3)
    assert ledger.sweep_expired() == []
    assert ledger.get_match(confirmed.id).status == MatchStatus.CONFIRMED
    assert ledger.get_match(disputed.id).status == MatchStatus.DISPUTED


def test_sweep_expires_only_stale_pending(ledger, clock):
    old = _singles(ledger)
    clock.advance(hours=23)
    fresh = _singles(ledger, "A2", "B2")

    clock.advance(hours=1)
    # exactly at expires_at: not yet
    assert ledger.sweep_expired() == []
    clock.advance(seconds=1)
    assert ledger.sweep_expired() == [old.id]
    assert ledger.get_match(old.id).status == MatchStatus.EXPIRED
    assert ledger.get_match(fresh.id).status == MatchStatus.PENDING
    assert ledger.confirm_match(old.id, "B1") is None


def test_sweep_with_explicit_now(ledger):
    match = _singles(ledger)
    assert ledger.sweep_expired(now=START + timedelta(hours=25)) == [match.id]


def test_custom_ttl_from_settings():
    ledger = MatchLedger.from_settings(Settings(match_ttl_hours=2))
    match = ledger.create_match("c", "C", "singles", ["A"], ["B"], [(11, 1)], "A")
    assert match.expires_at - match.created_at == timedelta(hours=2)


def test_unknown_ids(ledger, strict_ledger):
    assert ledger.confirm_match("missing", "B1") is None
    assert ledger.dispute_match("missing") is None
    assert ledger.get_match("missing") is None
    with pytest.raises(NotFoundError):
        strict_ledger.confirm_match("missing", "B1")
    with pytest.raises(NotFoundError):
        strict_ledger.dispute_match("missing")


def test_strict_terminal_and_approver_errors(strict_ledger):
    match = _singles(strict_ledger)
    with pytest.raises(NotFoundError):
        strict_ledger.confirm_match(match.id, "stranger")
    strict_ledger.confirm_match(match.id, "B1")
    with pytest.raises(InvalidStateError):
        strict_ledger.confirm_match(match.id, "B1")
    with pytest.raises(InvalidStateError):
        strict_ledger.dispute_match(match.id, "late")


def test_list_by_status(ledger):
    a = _singles(ledger)
    b = _singles(ledger, "A2", "B2")
    ledger.confirm_match(a.id, "B1")
    assert [m.id for m in ledger.list_by_status("confirmed")] == [a.id]
    assert [m.id for m in ledger.list_by_status(MatchStatus.PENDING)] == [b.id]
    with pytest.raises(ValidationError):
        ledger.list_by_status("finished")


def test_pending_confirmations(ledger):
    first = _doubles(ledger)
    second = _singles(ledger, "A3", "B1")
    assert [m.id for m in ledger.pending_confirmations("B1")] == [second.id, first.id]
    assert ledger.pending_confirmation_count("B2") == 1
    assert ledger.pending_confirmation_count("A1") == 0
    ledger.confirm_match(first.id, "B1")
    assert ledger.pending_confirmation_count("B1") == 1
    ledger.dispute_match(second.id)
    assert ledger.pending_confirmation_count("B1") == 0


def test_history_pagination(ledger, clock):
    ids = []
    for i in range(5):
        clock.advance(minutes=1)
        ids.append(_singles(ledger, "A1", f"B{i}").id)
    _singles(ledger, "X1", "Y1")

    page1 = ledger.history("A1", page=1, limit=2)
    assert [m.id for m in page1.items] == [ids[4], ids[3]]
    assert page1.total == 5
    assert page1.has_more
    page3 = ledger.history("A1", page=3, limit=2)
    assert [m.id for m in page3.items] == [ids[0]]
    assert not page3.has_more
    assert ledger.history("A1", page=4, limit=2).items == []
    assert ledger.history("B2").total == 1
    with pytest.raises(ValidationError):
        ledger.history("A1", page=0)


def test_snapshots_are_detached(ledger):
    match = _doubles(ledger)
    match.confirmations[1].state = ConfirmationState.APPROVED
    match.status = MatchStatus.CONFIRMED
    stored = ledger.get_match(match.id)
    assert stored.status == MatchStatus.PENDING
    assert stored.confirmations[1].state == ConfirmationState.PENDING


def test_events(ledger, clock):
    seen = []
    ledger.subscribe(lambda e: seen.append(e.kind))
    m1 = _doubles(ledger)
    ledger.confirm_match(m1.id, "B1")
    ledger.confirm_match(m1.id, "B1")
    ledger.confirm_match(m1.id, "B2")
    m2 = _singles(ledger)
    ledger.dispute_match(m2.id)
    _singles(ledger)
    clock.advance(hours=25)
    ledger.sweep_expired()
    ledger.clear()
    assert seen == [
        EventKind.MATCH_CREATED,
        EventKind.MATCH_CONFIRMATION_RECORDED,
        EventKind.MATCH_CONFIRMED,
        EventKind.MATCH_CREATED,
        EventKind.MATCH_DISPUTED,
        EventKind.MATCH_CREATED,
        EventKind.MATCH_EXPIRED,
        EventKind.LEDGER_CLEARED,
    ]
    assert ledger.list_matches() == []


def test_concurrent_confirmations_confirm_once():
    """Racing approvers: exactly one confirmation event, final state confirmed."""
    ledger = MatchLedger()
    match = ledger.create_match("c", "C", "doubles", ["A1", "A2"], ["B1", "B2"], GAMES, "A1")
    confirmed = []
    ledger.subscribe(lambda e: confirmed.append(e) if e.kind == EventKind.MATCH_CONFIRMED else None)
    barrier = threading.Barrier(2)

    def approve(user_id):
        barrier.wait()
        ledger.confirm_match(match.id, user_id)

    threads = [threading.Thread(target=approve, args=(u,)) for u in ("B1", "B2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(confirmed) == 1
    assert ledger.get_match(match.id).status == MatchStatus.CONFIRMED

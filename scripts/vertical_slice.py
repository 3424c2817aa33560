#!/usr/bin/env python3
"""
Vertical slice: Start a doubles session → Rotate partners by drag → Record games →
Submit the result → Opponents confirm → Show rating changes.
Run from project root: python3 scripts/vertical_slice.py
"""
from __future__ import annotations

import json
import sys
from pathlib import Path

# Ensure project root on path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from paddle_rating.config import Settings
from paddle_rating.logging_config import setup_logging
from paddle_rating.models import MatchParticipant
from paddle_rating.rating import RatingEngine
from paddle_rating.services import MatchLedger, SessionCoordinator
from paddle_rating.swap_targeting import Rect, SwapGesture

PLAYERS = [
    MatchParticipant(id="ana", name="Ana", rating_before=1350),
    MatchParticipant(id="ben", name="Ben", rating_before=1200),
    MatchParticipant(id="cho", name="Cho", rating_before=1280),
    MatchParticipant(id="dev", name="Dev", rating_before=1420),
]

# Avatar bounds as a phone screen would report them: team A on top, team B below.
LAYOUT = {
    "ana": Rect(40, 80, 64, 64),
    "ben": Rect(200, 80, 64, 64),
    "cho": Rect(40, 320, 64, 64),
    "dev": Rect(200, 320, 64, 64),
}


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    engine = RatingEngine.from_settings(settings)
    ledger = MatchLedger.from_settings(settings)
    coordinator = SessionCoordinator.from_settings(settings)
    coordinator.subscribe(lambda e: print(f"  [event] {e.kind.value} -> {e.status}"))

    # 1. Start the session: ana/ben vs cho/dev
    session = coordinator.start_session(PLAYERS, court_id="court-3", court_name="Riverside Court 3")
    print(f"Session {session.id}: {session.team_a} vs {session.team_b}")

    # 2. Game 1 as arranged
    coordinator.record_game(11, 8)

    # 3. Drag ben onto cho to swap partners, then lock and play game 2
    gesture = SwapGesture(radius=settings.swap_radius)
    current = coordinator.current_session
    gesture.start("ben", current.team_a, current.team_b)
    for point in [(232, 150), (180, 300), (90, 340)]:
        print(f"  drag ben to {point}: target={gesture.move(point, LAYOUT)}")
    arrangement = gesture.release()
    if arrangement is not None:
        coordinator.update_arrangement(*arrangement)
    coordinator.lock_teams()
    coordinator.record_game(6, 11)

    rec_a, rec_b = coordinator.current_combo_records()
    print(f"Current pairings: {rec_a.id} {rec_a.wins}-{rec_a.losses}, {rec_b.id} {rec_b.wins}-{rec_b.losses}")

    ended = coordinator.end_session()
    print(f"Session ended after {len(ended.games)} games")
    for record in ended.combo_records:
        print(f"  {record.id:<10} {record.wins}W {record.losses}L")

    # 4. Submit game 1 as a match and have the opponents ratify it
    by_id = {p.id: p for p in PLAYERS}
    team_a = [by_id["ana"], by_id["ben"]]
    team_b = [by_id["cho"], by_id["dev"]]
    delta = engine.match_delta([p.rating_before for p in team_a], [p.rating_before for p in team_b], True)
    match = ledger.create_match(
        "court-3", "Riverside Court 3", "doubles", team_a, team_b, [(11, 8)], "ana", rating_delta=delta,
    )
    print(f"Match {match.id} submitted, needs: {[c.approver_id for c in match.confirmations if c.state.value == 'pending']}")
    print(f"  cho's pending confirmations: {ledger.pending_confirmation_count('cho')}")
    ledger.confirm_match(match.id, "cho")
    match = ledger.confirm_match(match.id, "dev")
    print(f"Match status: {match.status.value}")

    # 5. Rating impact for the submitting side
    for p in team_a:
        after = p.rating_before + delta
        print(
            f"  {p.name}: {engine.display_rating(p.rating_before)} -> {engine.display_rating(after)} "
            f"({engine.rating_tier(after)})"
        )

    print(json.dumps(ledger.history("ana").items[0].to_dict(), indent=2))


if __name__ == "__main__":
    main()

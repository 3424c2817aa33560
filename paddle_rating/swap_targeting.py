"""
Swap targeting for the doubles arrangement drag gesture.

While a player avatar is dragged, the nearest avatar on the other team (within a
fixed radius) is the swap target; on release the two players trade places.
Everything here is pure and lock-free so it can run on every pointer-move tick.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Collection, Mapping, NamedTuple, Sequence

DEFAULT_SWAP_RADIUS = 150.0


class Point(NamedTuple):
    x: float
    y: float


class Rect(NamedTuple):
    """On-screen avatar bounds as reported by the front end."""
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)


def find_nearest_opposite(
    point: tuple[float, float],
    registry: Mapping[str, Rect],
    own_set: Collection[str],
    radius: float = DEFAULT_SWAP_RADIUS,
) -> str | None:
    """
    Id of the closest registered avatar not in own_set whose center is strictly
    within radius of point, or None. Equidistant candidates resolve to the
    smallest id, so the answer never depends on mapping order.
    """
    px, py = point
    best_id: str | None = None
    best_dist = radius
    for pid, rect in registry.items():
        if pid in own_set:
            continue
        cx = rect.x + rect.width / 2
        cy = rect.y + rect.height / 2
        dist = math.hypot(px - cx, py - cy)
        if dist >= radius:
            continue
        if dist < best_dist or (dist == best_dist and best_id is not None and pid < best_id):
            best_id = pid
            best_dist = dist
    return best_id


def swap_players(
    team_a: Sequence[str],
    team_b: Sequence[str],
    dragged_id: str,
    target_id: str,
) -> tuple[list[str], list[str]] | None:
    """
    Trade dragged_id and target_id between the two teams, keeping slot positions.
    None when the two ids are not on opposite teams.
    """
    new_a, new_b = list(team_a), list(team_b)
    if dragged_id in new_a and target_id in new_b:
        i, j = new_a.index(dragged_id), new_b.index(target_id)
    elif dragged_id in new_b and target_id in new_a:
        i, j = new_a.index(target_id), new_b.index(dragged_id)
    else:
        return None
    new_a[i], new_b[j] = new_b[j], new_a[i]
    return new_a, new_b


@dataclass
class SwapGesture:
    """
    UI-free drag state: which player is held, from which team, and the current
    target. Feed release() into SessionCoordinator.update_arrangement.
    """
    radius: float = DEFAULT_SWAP_RADIUS
    dragged_id: str | None = None
    target_id: str | None = None
    _team_a: tuple[str, ...] = ()
    _team_b: tuple[str, ...] = ()

    @property
    def active(self) -> bool:
        return self.dragged_id is not None

    def start(self, dragged_id: str, team_a: Sequence[str], team_b: Sequence[str]) -> None:
        if dragged_id not in team_a and dragged_id not in team_b:
            raise ValueError(f"Player {dragged_id} is not on either team")
        self.dragged_id = dragged_id
        self.target_id = None
        self._team_a = tuple(team_a)
        self._team_b = tuple(team_b)

    def own_team(self) -> tuple[str, ...]:
        if self.dragged_id in self._team_a:
            return self._team_a
        return self._team_b

    def move(self, point: tuple[float, float], registry: Mapping[str, Rect]) -> str | None:
        """Retarget on a pointer-move tick; returns the current target."""
        if not self.active:
            return None
        self.target_id = find_nearest_opposite(point, registry, self.own_team(), self.radius)
        return self.target_id

    def release(self) -> tuple[list[str], list[str]] | None:
        """End the drag. Returns the new arrangement, or None if nothing was targeted."""
        if not self.active:
            return None
        result = None
        if self.target_id is not None:
            result = swap_players(self._team_a, self._team_b, self.dragged_id, self.target_id)
        self.cancel()
        return result

    def cancel(self) -> None:
        self.dragged_id = None
        self.target_id = None
        self._team_a = ()
        self._team_b = ()

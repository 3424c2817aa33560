"""
Rating Engine: skill score ⇄ display rating, win probability, Elo deltas.
Pure functions; RatingEngine only bundles the configured scale and K-factor.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from paddle_rating.config import Settings
from paddle_rating.exceptions import ValidationError


@dataclass(frozen=True)
class RatingScale:
    """Linear map from the internal skill range onto the public display range."""
    min_skill: int = 1000
    max_skill: int = 2000
    min_display: float = 2.0
    max_display: float = 6.0
    default_skill: int = 1200

    @property
    def slope(self) -> float:
        return (self.max_display - self.min_display) / (self.max_skill - self.min_skill)


DEFAULT_SCALE = RatingScale()
DEFAULT_K_FACTOR = 32.0

# Upper bounds (exclusive) on the display rating, checked in order.
RATING_TIERS: tuple[tuple[float, str], ...] = (
    (2.5, "Beginner"),
    (3.0, "Novice"),
    (3.5, "Intermediate"),
    (4.0, "Advanced"),
    (4.5, "Expert"),
    (5.0, "Pro"),
)
TOP_TIER = "Elite"

# Larger skill gaps are clamped; the expectation is already 0 or 1 at this distance.
MAX_SKILL_GAP = 40_000


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _parse_rating(rating: float | str) -> float:
    try:
        r = float(rating)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Display rating must be a number, got {rating!r}") from e
    if not math.isfinite(r):
        raise ValidationError(f"Display rating must be finite, got {rating!r}")
    return r


def display_value(skill: float, scale: RatingScale = DEFAULT_SCALE) -> float:
    """Unclamped, unrounded display value for a skill score."""
    return scale.min_display + (skill - scale.min_skill) * scale.slope


def display_rating(skill: float, scale: RatingScale = DEFAULT_SCALE) -> str:
    """Public rating, clamped to the display range and formatted to one decimal."""
    value = max(scale.min_display, min(scale.max_display, display_value(skill, scale)))
    return f"{value:.1f}"


def skill_from_display(rating: float | str, scale: RatingScale = DEFAULT_SCALE) -> int:
    """Inverse of display_value, rounded to the nearest skill point."""
    skill = scale.min_skill + (_parse_rating(rating) - scale.min_display) / scale.slope
    if not math.isfinite(skill):
        raise ValidationError(f"Display rating out of range: {rating!r}")
    return round_half_up(skill)


def expected_score(skill_a: float, skill_b: float) -> float:
    """Logistic expectation that A beats B (0..1)."""
    gap = max(-MAX_SKILL_GAP, min(MAX_SKILL_GAP, skill_b - skill_a))
    return 1 / (1 + math.pow(10, gap / 400))


def win_probability(skill_a: float, skill_b: float) -> int:
    """expected_score as a rounded percentage."""
    return round_half_up(expected_score(skill_a, skill_b) * 100)


def rating_delta(skill_before: float, opponent_skill: float, won: bool, k: float = DEFAULT_K_FACTOR) -> int:
    actual = 1.0 if won else 0.0
    return round_half_up(k * (actual - expected_score(skill_before, opponent_skill)))


def new_skill(skill_before: int, opponent_skill: float, won: bool, k: float = DEFAULT_K_FACTOR) -> int:
    return skill_before + rating_delta(skill_before, opponent_skill, won, k)


def team_skill(skills: Sequence[float], scale: RatingScale = DEFAULT_SCALE) -> float:
    """Average skill of one side. An empty side counts as a default-skill player."""
    if not skills:
        return float(scale.default_skill)
    return sum(skills) / len(skills)


def rating_tier(rating: float | str) -> str:
    r = _parse_rating(rating)
    for upper, name in RATING_TIERS:
        if r < upper:
            return name
    return TOP_TIER


class RatingEngine:
    """
    Configured rating math. Stateless apart from its scale and K-factor.
    The ledger never calls this; callers compute deltas for display and pass
    them into MatchLedger.create_match.
    """

    def __init__(self, scale: RatingScale | None = None, k_factor: float = DEFAULT_K_FACTOR) -> None:
        self.scale = scale or DEFAULT_SCALE
        self.k_factor = k_factor

    @classmethod
    def from_settings(cls, settings: Settings) -> RatingEngine:
        scale = RatingScale(
            min_skill=settings.min_skill,
            max_skill=settings.max_skill,
            min_display=settings.min_display,
            max_display=settings.max_display,
            default_skill=settings.default_skill,
        )
        return cls(scale=scale, k_factor=settings.k_factor)

    def display_value(self, skill: float) -> float:
        return display_value(skill, self.scale)

    def display_rating(self, skill: float) -> str:
        return display_rating(skill, self.scale)

    def skill_from_display(self, rating: float | str) -> int:
        return skill_from_display(rating, self.scale)

    def win_probability(self, skill_a: float, skill_b: float) -> int:
        return win_probability(skill_a, skill_b)

    def rating_delta(self, skill_before: float, opponent_skill: float, won: bool) -> int:
        return rating_delta(skill_before, opponent_skill, won, self.k_factor)

    def new_skill(self, skill_before: int, opponent_skill: float, won: bool) -> int:
        return new_skill(skill_before, opponent_skill, won, self.k_factor)

    def team_skill(self, skills: Sequence[float]) -> float:
        return team_skill(skills, self.scale)

    def rating_tier(self, skill: float) -> str:
        """Tier for a skill score (via its display rating)."""
        return rating_tier(self.display_rating(skill))

    def display_delta(self, skill_before: int, opponent_skill: float, won: bool) -> str:
        """Signed change on the display scale, e.g. "+0.1"."""
        before = float(self.display_rating(skill_before))
        after = float(self.display_rating(self.new_skill(skill_before, opponent_skill, won)))
        diff = round(after - before, 1)
        if diff == 0:
            diff = 0.0
        return f"{diff:+.1f}"

    def match_delta(self, team_a_skills: Sequence[float], team_b_skills: Sequence[float], team_a_won: bool) -> int:
        """Delta for the submitting side, comparing team averages."""
        return self.rating_delta(self.team_skill(team_a_skills), self.team_skill(team_b_skills), team_a_won)

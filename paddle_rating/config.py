"""
Runtime settings, read from the environment.
Stores, the rating engine and the API are all built from one Settings instance.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from paddle_rating.exceptions import ValidationError

DEFAULT_CORS_ORIGINS = (
    "http://localhost:8081",
    "http://127.0.0.1:8081",
    "http://localhost:19006",
)


@dataclass(frozen=True)
class Settings:
    """Tunables for rating math, swap targeting, match expiry and the API."""
    min_skill: int = 1000
    max_skill: int = 2000
    min_display: float = 2.0
    max_display: float = 6.0
    default_skill: int = 1200
    k_factor: float = 32.0
    swap_radius: float = 150.0
    match_ttl_hours: float = 24.0
    sweep_interval_seconds: float = 60.0
    strict: bool = False
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = field(default=DEFAULT_CORS_ORIGINS)

    def __post_init__(self) -> None:
        if self.max_skill <= self.min_skill:
            raise ValidationError("max_skill must be greater than min_skill")
        if self.max_display <= self.min_display:
            raise ValidationError("max_display must be greater than min_display")
        if self.k_factor <= 0:
            raise ValidationError("k_factor must be positive")
        if self.swap_radius <= 0:
            raise ValidationError("swap_radius must be positive")
        if self.match_ttl_hours <= 0:
            raise ValidationError("match_ttl_hours must be positive")
        if self.sweep_interval_seconds <= 0:
            raise ValidationError("sweep_interval_seconds must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        origins = env.get("PADDLE_CORS_ORIGINS", "").strip()
        return cls(
            min_skill=_int(env, "PADDLE_MIN_SKILL", 1000),
            max_skill=_int(env, "PADDLE_MAX_SKILL", 2000),
            min_display=_float(env, "PADDLE_MIN_DISPLAY", 2.0),
            max_display=_float(env, "PADDLE_MAX_DISPLAY", 6.0),
            default_skill=_int(env, "PADDLE_DEFAULT_SKILL", 1200),
            k_factor=_float(env, "PADDLE_K_FACTOR", 32.0),
            swap_radius=_float(env, "PADDLE_SWAP_RADIUS", 150.0),
            match_ttl_hours=_float(env, "PADDLE_MATCH_TTL_HOURS", 24.0),
            sweep_interval_seconds=_float(env, "PADDLE_SWEEP_INTERVAL_SECONDS", 60.0),
            strict=_bool(env, "PADDLE_STRICT", False),
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()) or DEFAULT_CORS_ORIGINS,
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from e


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValidationError(f"{name} must be a boolean, got {raw!r}")

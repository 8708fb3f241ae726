"""Age-based confidence decay for learning events.

Confidence decays linearly from the original value down to
``min_ratio * original`` over ``max_age_days``. Events younger than
``grace_days`` are not decayed. For a fixed original confidence the
adjusted value is non-increasing in age.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 60 * 60 * 24


@dataclass(frozen=True)
class DecayConfig:
    max_age_days: float = 180
    min_ratio: float = 0.5
    grace_days: float = 7

    @classmethod
    def from_settings(cls, settings) -> "DecayConfig":
        return cls(
            max_age_days=settings.learning_decay_max_age_days,
            min_ratio=settings.learning_decay_min_ratio,
            grace_days=settings.learning_decay_grace_days,
        )


@dataclass(frozen=True)
class DecayInfo:
    original_confidence: int
    adjusted_confidence: int
    age_days: float
    decay_percentage: float


def _age_in_days(created_at: datetime, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / SECONDS_PER_DAY)


def adjust_confidence_by_age(
    original_confidence: int,
    created_at: datetime,
    config: DecayConfig = DecayConfig(),
    now: Optional[datetime] = None,
) -> int:
    """Return the decayed confidence, clamped to [1, 100]."""
    age = _age_in_days(created_at, now)
    if age < config.grace_days:
        return original_confidence

    factor = max(config.min_ratio, 1 - (1 - config.min_ratio) * age / config.max_age_days)
    adjusted = round(original_confidence * factor)
    return max(1, min(100, adjusted))


def meets_confidence_threshold(
    original_confidence: int,
    created_at: datetime,
    min_confidence: int,
    config: DecayConfig = DecayConfig(),
    now: Optional[datetime] = None,
) -> bool:
    return adjust_confidence_by_age(original_confidence, created_at, config, now) >= min_confidence


def get_decay_info(
    original_confidence: int,
    created_at: datetime,
    config: DecayConfig = DecayConfig(),
    now: Optional[datetime] = None,
) -> DecayInfo:
    adjusted = adjust_confidence_by_age(original_confidence, created_at, config, now)
    factor = adjusted / original_confidence if original_confidence else 1.0
    return DecayInfo(
        original_confidence=original_confidence,
        adjusted_confidence=adjusted,
        age_days=round(_age_in_days(created_at, now), 1),
        decay_percentage=round((1 - factor) * 100, 1),
    )

"""Credibility score models."""

from enum import Enum

from pydantic import BaseModel

from xcred.models.profile import Tier


class Platform(str, Enum):
    """Client platform derived from the connected-via string."""
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class FactorKind(str, Enum):
    BONUS = "bonus"
    PENALTY = "penalty"
    NEUTRAL = "neutral"
    CRITICAL = "critical"


class ScoreFactor(BaseModel):
    """One contribution to the additive score."""

    name: str
    value: int
    kind: FactorKind = FactorKind.NEUTRAL
    note: str | None = None


class CredibilityScore(BaseModel):
    """Score breakdown for a profile."""

    total: int
    factors: list[ScoreFactor] = []
    instant_tier_override: Tier | None = None
    account_age_years: float = 0.0
    platform: Platform = Platform.WEB

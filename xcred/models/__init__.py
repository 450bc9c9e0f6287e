"""Pydantic models for xcred."""

from xcred.models.profile import CacheSource, Party, ProfileRecord, Tier, parse_created_at
from xcred.models.score import CredibilityScore, FactorKind, Platform, ScoreFactor
from xcred.models.task import BudgetInfo, ValidationTask, ValidatorBudget

__all__ = [
    "ProfileRecord",
    "Party",
    "CacheSource",
    "Tier",
    "parse_created_at",
    "CredibilityScore",
    "ScoreFactor",
    "FactorKind",
    "Platform",
    "ValidationTask",
    "ValidatorBudget",
    "BudgetInfo",
]

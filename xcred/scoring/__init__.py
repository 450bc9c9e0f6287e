"""Credibility scoring."""

from xcred.scoring.scorer import CredibilityScorer, detect_party, platform_for, tier_for_score

__all__ = ["CredibilityScorer", "detect_party", "platform_for", "tier_for_score"]

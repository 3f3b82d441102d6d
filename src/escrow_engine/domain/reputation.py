"""Reputation scoring rules.

Pure functions: the overall score and trust level are derived from a user's
counters and nothing else, so any stored row can be re-derived and checked.
The service layer (services/reputation_service.py) owns persistence.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from escrow_engine.domain.enums import TrustLevel, VerificationStatus

NEUTRAL_SCORE = 0.5
POSITIVE_RATING_MIN = 4
NEGATIVE_RATING_MAX = 2


@dataclass(frozen=True)
class ReputationPolicy:
    """Thresholds that drive score weighting, trust tiers and cooldowns."""

    rating_weight_saturation: int = 10
    strike_threshold: int = 3
    cooldown_base_hours: float = 24.0
    cooldown_max_hours: float = 720.0
    trusted_min_transactions: int = 5
    trusted_min_score: float = 0.6
    elite_min_transactions: int = 50
    elite_min_score: float = 0.9


def compute_overall_score(
    positive_ratings: int,
    negative_ratings: int,
    transaction_count: int = 0,
    saturation: int = 10,
) -> float:
    """Weighted positive ratio, pulled toward neutral until enough ratings exist.

    ``transaction_count`` is accepted so callers can pass a full counter set;
    only rated transactions move the score.
    """
    rated = positive_ratings + negative_ratings
    if rated <= 0:
        return NEUTRAL_SCORE
    weight = min(1.0, rated / saturation)
    ratio = positive_ratings / rated
    score = NEUTRAL_SCORE * (1 - weight) + ratio * weight
    return round(min(1.0, max(0.0, score)), 6)


def classify_rating(rating: int) -> int:
    """Return +1 for a positive rating, -1 for a negative one, 0 for neutral."""
    if rating >= POSITIVE_RATING_MIN:
        return 1
    if rating <= NEGATIVE_RATING_MAX:
        return -1
    return 0


def evaluate_trust_level(
    *,
    overall_score: float,
    transaction_count: int,
    strike_count: int,
    verification_status: str,
    policy: ReputationPolicy,
) -> TrustLevel:
    if strike_count >= policy.strike_threshold:
        return TrustLevel.FLAGGED
    if (
        transaction_count >= policy.elite_min_transactions
        and overall_score >= policy.elite_min_score
    ):
        return TrustLevel.ELITE
    if verification_status == VerificationStatus.VERIFIED:
        return TrustLevel.VERIFIED
    if (
        transaction_count >= policy.trusted_min_transactions
        and overall_score >= policy.trusted_min_score
    ):
        return TrustLevel.TRUSTED
    return TrustLevel.NEW


def cooldown_duration(strike_count: int, policy: ReputationPolicy) -> timedelta | None:
    """Bounded exponential cooldown once the strike threshold is reached."""
    if strike_count < policy.strike_threshold:
        return None
    exponent = strike_count - policy.strike_threshold
    hours = min(policy.cooldown_base_hours * (2**exponent), policy.cooldown_max_hours)
    return timedelta(hours=hours)


def recompute(reputation: Any, policy: ReputationPolicy) -> None:
    """Refresh ``overall_score`` and ``trust_level`` on a reputation row in place."""
    reputation.overall_score = compute_overall_score(
        reputation.positive_ratings,
        reputation.negative_ratings,
        reputation.transaction_count,
        saturation=policy.rating_weight_saturation,
    )
    reputation.trust_level = evaluate_trust_level(
        overall_score=reputation.overall_score,
        transaction_count=reputation.transaction_count,
        strike_count=reputation.strike_count,
        verification_status=reputation.verification_status,
        policy=policy,
    ).value


def register_strike(reputation: Any, policy: ReputationPolicy, now: datetime) -> None:
    """Add a strike and, past the threshold, push ``cooldown_until`` forward."""
    reputation.strike_count += 1
    duration = cooldown_duration(reputation.strike_count, policy)
    if duration is not None:
        candidate = now + duration
        if reputation.cooldown_until is None or reputation.cooldown_until < candidate:
            reputation.cooldown_until = candidate
    recompute(reputation, policy)

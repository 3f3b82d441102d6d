"""Tests for the pure reputation scoring rules."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from escrow_engine.domain.enums import TrustLevel
from escrow_engine.domain.reputation import (
    NEUTRAL_SCORE,
    ReputationPolicy,
    classify_rating,
    compute_overall_score,
    cooldown_duration,
    evaluate_trust_level,
    register_strike,
)

POLICY = ReputationPolicy()
NOW = datetime(2026, 1, 5, tzinfo=UTC)


def _reputation(**overrides: object) -> SimpleNamespace:
    fields = {
        "positive_ratings": 0,
        "negative_ratings": 0,
        "transaction_count": 0,
        "strike_count": 0,
        "cooldown_until": None,
        "verification_status": "unverified",
        "overall_score": NEUTRAL_SCORE,
        "trust_level": "new",
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestOverallScore:
    def test_no_ratings_is_neutral(self) -> None:
        assert compute_overall_score(0, 0) == NEUTRAL_SCORE

    def test_few_ratings_pulled_toward_neutral(self) -> None:
        # One positive rating out of a saturation of 10: 0.5 * 0.9 + 1.0 * 0.1
        assert compute_overall_score(1, 0) == pytest.approx(0.55)

    def test_saturated_ratings_use_raw_ratio(self) -> None:
        assert compute_overall_score(15, 5) == pytest.approx(0.75)

    def test_score_bounded(self) -> None:
        assert 0.0 <= compute_overall_score(0, 40) <= 1.0
        assert compute_overall_score(40, 0) == 1.0


class TestClassifyRating:
    @pytest.mark.parametrize(("rating", "expected"), [(5, 1), (4, 1), (3, 0), (2, -1), (1, -1)])
    def test_classification(self, rating: int, expected: int) -> None:
        assert classify_rating(rating) == expected


class TestTrustLevel:
    def _level(self, **counters: int) -> TrustLevel:
        params = {
            "overall_score": 0.5,
            "transaction_count": 0,
            "strike_count": 0,
            "verification_status": "unverified",
        }
        params.update(counters)
        return evaluate_trust_level(policy=POLICY, **params)

    def test_new(self) -> None:
        assert self._level() is TrustLevel.NEW

    def test_trusted(self) -> None:
        assert self._level(transaction_count=5, overall_score=0.7) is TrustLevel.TRUSTED

    def test_verified(self) -> None:
        assert self._level(verification_status="verified") is TrustLevel.VERIFIED

    def test_elite(self) -> None:
        assert self._level(transaction_count=60, overall_score=0.95) is TrustLevel.ELITE

    def test_strikes_flag_over_everything(self) -> None:
        level = self._level(transaction_count=60, overall_score=0.95, strike_count=3)
        assert level is TrustLevel.FLAGGED


class TestCooldown:
    def test_none_below_threshold(self) -> None:
        assert cooldown_duration(2, POLICY) is None

    def test_doubles_per_strike(self) -> None:
        assert cooldown_duration(3, POLICY) == timedelta(hours=24)
        assert cooldown_duration(4, POLICY) == timedelta(hours=48)

    def test_bounded(self) -> None:
        assert cooldown_duration(20, POLICY) == timedelta(hours=POLICY.cooldown_max_hours)

    def test_register_strike_sets_cooldown_at_threshold(self) -> None:
        rep = _reputation(strike_count=2)
        register_strike(rep, POLICY, NOW)
        assert rep.strike_count == 3
        assert rep.cooldown_until == NOW + timedelta(hours=24)
        assert rep.trust_level == TrustLevel.FLAGGED

    def test_register_strike_never_shortens_cooldown(self) -> None:
        later = NOW + timedelta(days=30)
        rep = _reputation(strike_count=3, cooldown_until=later)
        register_strike(rep, POLICY, NOW)
        assert rep.cooldown_until == later

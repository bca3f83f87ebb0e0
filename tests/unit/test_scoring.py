"""Unit tests for merchant risk scoring logic"""

import pytest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from reserve_engine.domain.models import MccRiskCategory, RiskFactors, RiskLevel
from reserve_engine.domain.scoring import (
    assessment_confidence,
    build_explanation,
    calculate_risk_score,
    determine_risk_level,
    gather_factors,
    next_review_date,
    recommend_actions,
    requires_approval,
)


def make_factors(**overrides) -> RiskFactors:
    """Neutral merchant: every factor contributes zero"""
    values = dict(
        mcc_code="5999",
        mcc_category=MccRiskCategory.STANDARD,
        mcc_label=None,
        business_age_years=3,
        annual_volume=None,
        average_ticket=None,
        chargeback_ratio=0.0,
        refund_ratio=0.0,
        months_active=8,
        lifetime_chargebacks=0,
    )
    values.update(overrides)
    return RiskFactors(**values)


def points_for(result, factor: str) -> int:
    return next(c.points for c in result.contributions if c.factor == factor)


def test_neutral_merchant_scores_baseline():
    """Test a merchant with no risk signals stays at the baseline"""
    result = calculate_risk_score(make_factors())

    assert result.score == 50
    assert result.level == RiskLevel.STANDARD
    assert all(c.points == 0 for c in result.contributions)


def test_worst_case_clamped_to_100():
    """Test stacked risk signals clamp at the top of the range"""
    factors = make_factors(
        mcc_code="7995",
        mcc_category=MccRiskCategory.HIGH,
        business_age_years=0,
        chargeback_ratio=0.025,
        refund_ratio=0.20,
        months_active=1,
    )
    result = calculate_risk_score(factors)

    # 50 + 25 + 15 + 30 + 10 + 10 = 140
    assert result.score == 100
    assert result.level == RiskLevel.VERY_HIGH


def test_best_case_low_risk():
    """Test established low-risk merchant with a clean record"""
    factors = make_factors(
        mcc_code="5411",
        mcc_category=MccRiskCategory.LOW,
        business_age_years=12,
        months_active=30,
        lifetime_chargebacks=0,
    )
    result = calculate_risk_score(factors)

    # 50 - 10 - 15 - 10 = 15
    assert result.score == 15
    assert result.level == RiskLevel.LOW


@pytest.mark.parametrize(
    "ratio,expected",
    [
        (0.0, 0),
        (0.0079, 0),
        (0.008, 8),
        (0.0099, 8),
        (0.010, 15),
        (0.015, 22),
        (0.019, 22),
        (0.020, 30),
        (0.5, 30),
    ],
)
def test_chargeback_ratio_bands(ratio, expected):
    """Test chargeback ratio thresholds map to fixed point bands"""
    result = calculate_risk_score(make_factors(chargeback_ratio=ratio))
    assert points_for(result, "chargeback_ratio") == expected


@pytest.mark.parametrize(
    "age,expected",
    [(None, 0), (0, 15), (1, 10), (2, 0), (4, 0), (5, -10), (9, -10), (10, -15), (40, -15)],
)
def test_business_age_points(age, expected):
    result = calculate_risk_score(make_factors(business_age_years=age))
    assert points_for(result, "business_age") == expected


def test_refund_ratio_must_exceed_threshold():
    """Test refund ratio at exactly 15% adds nothing, above it adds 10"""
    at_threshold = calculate_risk_score(make_factors(refund_ratio=0.15))
    above = calculate_risk_score(make_factors(refund_ratio=0.151))

    assert points_for(at_threshold, "refund_ratio") == 0
    assert points_for(above, "refund_ratio") == 10


@pytest.mark.parametrize(
    "months,lifetime,expected",
    [
        (0, 0, 10),
        (2, 0, 10),
        (3, 0, 5),
        (5, 0, 5),
        (6, 0, 0),
        (12, 3, -5),
        (24, 0, -10),
        (24, 1, -5),
    ],
)
def test_processing_history_points(months, lifetime, expected):
    result = calculate_risk_score(make_factors(months_active=months, lifetime_chargebacks=lifetime))
    assert points_for(result, "processing_history") == expected


def test_scoring_is_deterministic():
    factors = make_factors(chargeback_ratio=0.012, business_age_years=1, months_active=4)
    first = calculate_risk_score(factors)
    second = calculate_risk_score(factors)

    assert first.score == second.score
    assert first.level == second.level


@pytest.mark.parametrize(
    "score,level",
    [
        (100, RiskLevel.VERY_HIGH),
        (85, RiskLevel.VERY_HIGH),
        (84, RiskLevel.HIGH),
        (70, RiskLevel.HIGH),
        (69, RiskLevel.ELEVATED),
        (55, RiskLevel.ELEVATED),
        (54, RiskLevel.STANDARD),
        (40, RiskLevel.STANDARD),
        (39, RiskLevel.LOW),
        (0, RiskLevel.LOW),
    ],
)
def test_determine_risk_level_boundaries(score, level):
    assert determine_risk_level(score) == level


def test_requires_approval():
    """Test level changes and high-risk outcomes need a reviewer"""
    assert requires_approval(RiskLevel.STANDARD, RiskLevel.STANDARD) is False
    assert requires_approval(RiskLevel.LOW, RiskLevel.LOW) is False
    assert requires_approval(RiskLevel.STANDARD, RiskLevel.ELEVATED) is True
    assert requires_approval(RiskLevel.ELEVATED, RiskLevel.LOW) is True
    assert requires_approval(RiskLevel.HIGH, RiskLevel.HIGH) is True
    assert requires_approval(RiskLevel.VERY_HIGH, RiskLevel.VERY_HIGH) is True


def test_next_review_date_by_level():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    assert next_review_date(RiskLevel.LOW, now) == now + timedelta(days=180)
    assert next_review_date(RiskLevel.HIGH, now) == now + timedelta(days=30)
    assert next_review_date(RiskLevel.SUSPENDED, now) == now + timedelta(days=7)


def test_gather_factors_from_profile():
    """Test factor extraction from a profile-shaped object"""
    profile = SimpleNamespace(
        mcc_code="7995",
        mcc_description=None,
        business_age_years=2,
        annual_volume=5_000_000,
        average_ticket=2500,
        chargeback_ratio=0.011,
        refund_ratio=0.02,
        chargeback_count=4,
        created_at=datetime(2025, 1, 15, tzinfo=timezone.utc),
    )
    factors = gather_factors(profile, now=datetime(2026, 2, 20, tzinfo=timezone.utc))

    assert factors.mcc_category == MccRiskCategory.HIGH
    assert factors.mcc_label == "Betting and gambling"
    assert factors.months_active == 13
    assert factors.lifetime_chargebacks == 4
    assert factors.snapshot()["mcc_category"] == "HIGH"


def test_missing_mcc_is_unknown():
    profile = SimpleNamespace(
        mcc_code=None,
        mcc_description=None,
        business_age_years=None,
        annual_volume=None,
        average_ticket=None,
        chargeback_ratio=0.0,
        refund_ratio=0.0,
        chargeback_count=0,
        created_at=None,
    )
    factors = gather_factors(profile, now=datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert factors.mcc_category == MccRiskCategory.UNKNOWN
    assert factors.months_active == 0
    assert "Collect merchant category code" in recommend_actions(factors, RiskLevel.ELEVATED)


def test_recommend_actions():
    """Test escalation and mitigation recommendations"""
    risky = make_factors(chargeback_ratio=0.03, refund_ratio=0.2)
    actions = recommend_actions(risky, RiskLevel.VERY_HIGH)

    assert "Enable enhanced transaction monitoring" in actions
    assert "Review account for possible suspension" in actions
    assert any("pricing threshold" in a for a in actions)
    assert "Review refund policy and fulfilment practices" in actions

    assert recommend_actions(make_factors(), RiskLevel.STANDARD) == ["No action required"]


def test_assessment_confidence_range():
    sparse = make_factors(mcc_code=None, business_age_years=None)
    full = make_factors(annual_volume=1_000_000, average_ticket=5000)

    assert assessment_confidence(sparse) == 0.5
    assert assessment_confidence(full) == 0.95


def test_build_explanation_lists_factors():
    result = calculate_risk_score(make_factors(chargeback_ratio=0.02))
    text = build_explanation(result, RiskLevel.STANDARD)

    assert text.startswith("Baseline score: 50")
    assert "chargeback_ratio: +30" in text
    assert "Final score: 80/100 -> HIGH" in text
    assert "Level change: STANDARD -> HIGH" in text

"""Risk scoring engine - weighted merchant risk score and level mapping"""

from datetime import datetime
from typing import Any, List, Optional
from reserve_engine.domain.models import (
    FactorContribution,
    MccRiskCategory,
    RiskFactors,
    RiskLevel,
    RiskScore,
)
from reserve_engine.domain import reference
from reserve_engine.utils.date_utils import add_days, months_between

BASELINE_SCORE = 50

MCC_POINTS = {
    MccRiskCategory.HIGH: 25,
    MccRiskCategory.STANDARD: 0,
    MccRiskCategory.LOW: -10,
    MccRiskCategory.UNKNOWN: 0,
}

# (minimum ratio, points, label), checked from the top down
CHARGEBACK_BANDS = [
    (reference.CHARGEBACK_CRITICAL, 30, "critical"),
    (reference.CHARGEBACK_HIGH, 22, "high"),
    (reference.CHARGEBACK_ELEVATED, 15, "elevated"),
    (reference.CHARGEBACK_WARNING, 8, "warning"),
]

REFUND_POINTS = 10

APPROVAL_REQUIRED_LEVELS = frozenset({RiskLevel.HIGH, RiskLevel.VERY_HIGH})


def gather_factors(profile: Any, now: datetime) -> RiskFactors:
    """
    Extract scoring inputs from a merchant risk profile.

    `profile` only needs the attributes read here, so ORM rows and test
    doubles both work.
    """
    category, label = reference.classify_mcc(profile.mcc_code)
    return RiskFactors(
        mcc_code=profile.mcc_code,
        mcc_category=category,
        mcc_label=label or profile.mcc_description,
        business_age_years=profile.business_age_years,
        annual_volume=profile.annual_volume,
        average_ticket=profile.average_ticket,
        chargeback_ratio=float(profile.chargeback_ratio or 0.0),
        refund_ratio=float(profile.refund_ratio or 0.0),
        months_active=months_between(profile.created_at, now) if profile.created_at else 0,
        lifetime_chargebacks=profile.chargeback_count or 0,
    )


def _mcc_contribution(factors: RiskFactors) -> FactorContribution:
    points = MCC_POINTS[factors.mcc_category]
    if factors.mcc_category is MccRiskCategory.HIGH:
        detail = f"high-risk MCC {factors.mcc_code} ({factors.mcc_label})"
    elif factors.mcc_category is MccRiskCategory.LOW:
        detail = f"low-risk MCC {factors.mcc_code} ({factors.mcc_label})"
    elif factors.mcc_category is MccRiskCategory.UNKNOWN:
        detail = "no MCC on file"
    else:
        detail = f"standard MCC {factors.mcc_code}"
    return FactorContribution("mcc", points, detail)


def _business_age_contribution(factors: RiskFactors) -> FactorContribution:
    age = factors.business_age_years
    if age is None:
        return FactorContribution("business_age", 0, "business age unknown")
    if age < 1:
        points = 15
    elif age < 2:
        points = 10
    elif age < 5:
        points = 0
    elif age < 10:
        points = -10
    else:
        points = -15
    return FactorContribution("business_age", points, f"{age} year(s) in business")


def _chargeback_contribution(factors: RiskFactors) -> FactorContribution:
    ratio = factors.chargeback_ratio
    for threshold, points, label in CHARGEBACK_BANDS:
        if ratio >= threshold:
            return FactorContribution(
                "chargeback_ratio",
                points,
                f"chargeback ratio {ratio:.2%} at or above {label} threshold {threshold:.1%}",
            )
    return FactorContribution("chargeback_ratio", 0, f"chargeback ratio {ratio:.2%} below warning threshold")


def _refund_contribution(factors: RiskFactors) -> FactorContribution:
    ratio = factors.refund_ratio
    if ratio > reference.REFUND_RATIO_THRESHOLD:
        return FactorContribution("refund_ratio", REFUND_POINTS, f"refund ratio {ratio:.1%} above 15%")
    return FactorContribution("refund_ratio", 0, f"refund ratio {ratio:.1%}")


def _history_contribution(factors: RiskFactors) -> FactorContribution:
    months = factors.months_active
    if months < 3:
        points = 10
    elif months < 6:
        points = 5
    elif months >= 24 and factors.lifetime_chargebacks == 0:
        points = -10
    elif months >= 12:
        points = -5
    else:
        points = 0
    detail = f"{months} month(s) processing, {factors.lifetime_chargebacks} lifetime chargeback(s)"
    return FactorContribution("processing_history", points, detail)


def calculate_risk_score(factors: RiskFactors) -> RiskScore:
    """
    Calculate a merchant risk score from 0 (safest) to 100 (riskiest).

    Starts at a neutral 50 and applies fixed weights:
    - MCC category: high-risk +25, low-risk -10
    - Business age: +15 (<1y) down to -15 (10y+)
    - Chargeback ratio: +8 / +15 / +22 / +30 at 0.8% / 1.0% / 1.5% / 2.0%
    - Refund ratio above 15%: +10
    - Processing history: +10 (<3 months) down to -10 (2y+ with no chargebacks)

    Annual volume and average ticket are captured but carry no weight.
    """
    contributions = [
        _mcc_contribution(factors),
        _business_age_contribution(factors),
        _chargeback_contribution(factors),
        _refund_contribution(factors),
        _history_contribution(factors),
    ]
    raw = BASELINE_SCORE + sum(c.points for c in contributions)
    score = max(0, min(100, raw))
    return RiskScore(score=score, level=determine_risk_level(score), contributions=contributions)


def determine_risk_level(score: int) -> RiskLevel:
    """Map score to risk level; SUSPENDED is never produced by scoring"""
    if score >= 85:
        return RiskLevel.VERY_HIGH
    elif score >= 70:
        return RiskLevel.HIGH
    elif score >= 55:
        return RiskLevel.ELEVATED
    elif score >= 40:
        return RiskLevel.STANDARD
    else:
        return RiskLevel.LOW


def build_explanation(result: RiskScore, previous_level: Optional[RiskLevel] = None) -> str:
    lines = [f"Baseline score: {BASELINE_SCORE}"]
    for c in result.contributions:
        lines.append(f"- {c.factor}: {c.points:+d} ({c.detail})")
    lines.append(f"Final score: {result.score}/100 -> {result.level.value}")
    if previous_level is not None and previous_level != result.level:
        lines.append(f"Level change: {previous_level.value} -> {result.level.value}")
    return "\n".join(lines)


def requires_approval(current_level: RiskLevel, new_level: RiskLevel) -> bool:
    """Level changes and any high-risk outcome go through manual approval"""
    return new_level != current_level or new_level in APPROVAL_REQUIRED_LEVELS


def next_review_date(level: RiskLevel, now: datetime) -> datetime:
    return add_days(now, reference.REVIEW_INTERVAL_DAYS[level])


def recommend_actions(factors: RiskFactors, level: RiskLevel) -> List[str]:
    actions: List[str] = []
    if level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH):
        actions.append("Enable enhanced transaction monitoring")
        actions.append("Increase reserve percentage or extend hold period")
    if level is RiskLevel.VERY_HIGH:
        actions.append("Review account for possible suspension")
    threshold = reference.chargeback_threshold_for(level)
    if factors.chargeback_ratio > threshold:
        actions.append(
            f"Chargeback ratio {factors.chargeback_ratio:.2%} exceeds pricing threshold {threshold:.2%}; "
            "review chargeback mitigation"
        )
    if factors.refund_ratio > reference.REFUND_RATIO_THRESHOLD:
        actions.append("Review refund policy and fulfilment practices")
    if factors.mcc_category is MccRiskCategory.UNKNOWN:
        actions.append("Collect merchant category code")
    if not actions:
        actions.append("No action required")
    return actions


def assessment_confidence(factors: RiskFactors) -> float:
    """0.5 with no optional merchant facts on file, up to 0.95 with all of them"""
    optional = [
        factors.mcc_code,
        factors.business_age_years,
        factors.annual_volume,
        factors.average_ticket,
    ]
    present = sum(1 for value in optional if value is not None)
    return round(0.5 + 0.45 * present / len(optional), 4)

"""Static reference data: MCC risk table, review cadence, chargeback thresholds"""

from typing import Dict, Optional, Tuple
from reserve_engine.domain.models import MccRiskCategory, RiskLevel

# code -> category label
HIGH_RISK_MCC: Dict[str, str] = {
    "4816": "Computer network / information services",
    "4829": "Money transfer",
    "5122": "Drugs and pharmaceuticals",
    "5816": "Digital goods - games",
    "5912": "Drug stores and pharmacies",
    "5933": "Pawn shops",
    "5962": "Direct marketing - travel",
    "5966": "Direct marketing - outbound telemarketing",
    "5967": "Direct marketing - inbound telemarketing",
    "5968": "Direct marketing - continuity / subscription",
    "5993": "Cigar stores and tobacco",
    "6051": "Quasi cash / cryptocurrency",
    "6211": "Security brokers and dealers",
    "7273": "Dating and escort services",
    "7297": "Massage parlors",
    "7995": "Betting and gambling",
}

LOW_RISK_MCC: Dict[str, str] = {
    "4900": "Utilities",
    "5411": "Grocery stores and supermarkets",
    "5541": "Service stations",
    "8062": "Hospitals",
    "8211": "Elementary and secondary schools",
    "9399": "Government services",
}

# Days between scheduled reviews, indexed by risk level
REVIEW_INTERVAL_DAYS: Dict[RiskLevel, int] = {
    RiskLevel.LOW: 180,
    RiskLevel.STANDARD: 90,
    RiskLevel.ELEVATED: 60,
    RiskLevel.HIGH: 30,
    RiskLevel.VERY_HIGH: 14,
    RiskLevel.SUSPENDED: 7,
}

# Chargeback ratio thresholds (fraction of transactions)
CHARGEBACK_WARNING = 0.008
CHARGEBACK_ELEVATED = 0.010
CHARGEBACK_HIGH = 0.015
CHARGEBACK_CRITICAL = 0.020

REFUND_RATIO_THRESHOLD = 0.15

# Pricing-tier chargeback threshold per level; the tiers themselves are owned elsewhere
PRICING_CHARGEBACK_THRESHOLD: Dict[RiskLevel, float] = {
    RiskLevel.LOW: 0.0075,
    RiskLevel.STANDARD: 0.01,
    RiskLevel.ELEVATED: 0.01,
    RiskLevel.HIGH: 0.015,
    RiskLevel.VERY_HIGH: 0.02,
    RiskLevel.SUSPENDED: 0.02,
}
DEFAULT_PRICING_CHARGEBACK_THRESHOLD = 0.01


def classify_mcc(mcc_code: Optional[str]) -> Tuple[MccRiskCategory, Optional[str]]:
    """Return (risk category, label) for a merchant category code"""
    if not mcc_code:
        return MccRiskCategory.UNKNOWN, None
    code = mcc_code.strip()
    if code in HIGH_RISK_MCC:
        return MccRiskCategory.HIGH, HIGH_RISK_MCC[code]
    if code in LOW_RISK_MCC:
        return MccRiskCategory.LOW, LOW_RISK_MCC[code]
    return MccRiskCategory.STANDARD, None


def is_high_risk_mcc(mcc_code: Optional[str]) -> bool:
    return classify_mcc(mcc_code)[0] is MccRiskCategory.HIGH


def chargeback_threshold_for(level: RiskLevel) -> float:
    return PRICING_CHARGEBACK_THRESHOLD.get(level, DEFAULT_PRICING_CHARGEBACK_THRESHOLD)

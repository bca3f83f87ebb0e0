"""Domain models - enums and plain dataclasses shared by services and the API"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class RiskLevel(str, Enum):
    """Ordered merchant risk tiers (LOW is safest, SUSPENDED is worst)"""

    LOW = "LOW"
    STANDARD = "STANDARD"
    ELEVATED = "ELEVATED"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"
    SUSPENDED = "SUSPENDED"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class AccountStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    GOOD_STANDING = "GOOD_STANDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESTRICTED = "RESTRICTED"
    SUSPENDED = "SUSPENDED"
    TERMINATED = "TERMINATED"


class ReserveTransactionType(str, Enum):
    HOLD = "HOLD"
    RELEASE = "RELEASE"
    ADJUSTMENT = "ADJUSTMENT"
    CHARGEBACK_DEBIT = "CHARGEBACK_DEBIT"


class ChargebackStatus(str, Enum):
    RECEIVED = "RECEIVED"
    UNDER_REVIEW = "UNDER_REVIEW"
    REPRESENTMENT = "REPRESENTMENT"
    WON = "WON"
    LOST = "LOST"
    ACCEPTED = "ACCEPTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CHARGEBACK_STATUSES


TERMINAL_CHARGEBACK_STATUSES = frozenset(
    {ChargebackStatus.WON, ChargebackStatus.LOST, ChargebackStatus.ACCEPTED}
)
OPEN_CHARGEBACK_STATUSES = (
    ChargebackStatus.RECEIVED,
    ChargebackStatus.UNDER_REVIEW,
    ChargebackStatus.REPRESENTMENT,
)


class ChargebackReason(str, Enum):
    FRAUD = "FRAUD"
    NOT_RECOGNIZED = "NOT_RECOGNIZED"
    NOT_RECEIVED = "NOT_RECEIVED"
    NOT_AS_DESCRIBED = "NOT_AS_DESCRIBED"
    DUPLICATE = "DUPLICATE"
    CANCELED = "CANCELED"
    CREDIT_NOT_ISSUED = "CREDIT_NOT_ISSUED"
    TECHNICAL = "TECHNICAL"
    OTHER = "OTHER"


class AssessmentType(str, Enum):
    INITIAL = "INITIAL"
    PERIODIC = "PERIODIC"
    TRIGGERED = "TRIGGERED"
    MANUAL = "MANUAL"


class MccRiskCategory(str, Enum):
    HIGH = "HIGH"
    STANDARD = "STANDARD"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"


@dataclass
class RiskFactors:
    """Inputs to the risk score, snapshotted on every assessment"""

    mcc_code: Optional[str]
    mcc_category: MccRiskCategory
    mcc_label: Optional[str]
    business_age_years: Optional[int]
    annual_volume: Optional[int]
    average_ticket: Optional[int]
    chargeback_ratio: float
    refund_ratio: float
    months_active: int
    lifetime_chargebacks: int

    def snapshot(self) -> Dict[str, Any]:
        return {
            "mcc_code": self.mcc_code,
            "mcc_category": self.mcc_category.value,
            "mcc_label": self.mcc_label,
            "business_age_years": self.business_age_years,
            "annual_volume": self.annual_volume,
            "average_ticket": self.average_ticket,
            "chargeback_ratio": self.chargeback_ratio,
            "refund_ratio": self.refund_ratio,
            "months_active": self.months_active,
            "lifetime_chargebacks": self.lifetime_chargebacks,
        }


@dataclass
class FactorContribution:
    """Signed score adjustment attributed to one factor"""

    factor: str
    points: int
    detail: str


@dataclass
class RiskScore:
    """Output of the weighted scoring run"""

    score: int
    level: RiskLevel
    contributions: List[FactorContribution]


@dataclass
class DebitResult:
    """Outcome of a chargeback debit against the reserve"""

    entry: Any  # ReserveTransaction row
    debited_amount: int
    remaining_unfunded: int


@dataclass
class PendingRelease:
    hold_id: Any
    scheduled_date: datetime
    amount: int


@dataclass
class ReserveSummary:
    profile_id: Any
    current_balance: int
    total_held: int
    total_released: int
    total_chargeback_debited: int
    pending_releases: List[PendingRelease]
    recent_transactions: List[Any]


@dataclass
class SettlementResult:
    """Per-hold outcome of a scheduled release run"""

    hold_id: Any
    amount: int
    status: str  # "released" | "error"
    release_id: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "released"


@dataclass
class Pagination:
    skip: int = 0
    take: Optional[int] = None


@dataclass
class Page:
    items: List[Any]
    total: int


@dataclass
class HistoryFilters:
    type: Optional[ReserveTransactionType] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


@dataclass
class ChargebackFilters:
    status: Optional[ChargebackStatus] = None
    reason: Optional[ChargebackReason] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


@dataclass
class NewChargeback:
    """Incoming dispute notification"""

    profile_id: Any
    chargeback_id: str
    amount: int
    fee: int
    reason: ChargebackReason
    received_at: Optional[datetime] = None
    respond_by_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    currency: str = "USD"
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    internal_notes: Optional[str] = None


@dataclass
class ChargebackUpdate:
    """Metadata-only changes; status is driven by dedicated operations"""

    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    respond_by_date: Optional[datetime] = None
    internal_notes: Optional[str] = None


@dataclass
class ChargebackOutcome:
    status: ChargebackStatus
    outcome_amount: Optional[int] = None
    outcome_fee: Optional[int] = None
    impact_reserve: bool = False
    reserve_debit_amount: Optional[int] = None
    internal_notes: Optional[str] = None


@dataclass
class ChargebackResolution:
    chargeback: Any  # ChargebackRecord row
    debit: Optional[DebitResult] = None


@dataclass
class ChargebackStats:
    profile_id: Any
    total_chargebacks: int
    open_chargebacks: int
    won_chargebacks: int
    lost_chargebacks: int
    total_amount: int
    total_fees: int
    recovered_amount: int
    chargeback_ratio: float
    recent_chargebacks: List[Any] = field(default_factory=list)

"""Pydantic schemas for API request/response validation

Money is always an integer count of minor currency units. Amount rules
(positive, non-zero) are enforced by the services so that every caller gets
the same ValidationError.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field
from reserve_engine.domain.models import (
    AccountStatus,
    AssessmentType,
    ChargebackReason,
    ChargebackStatus,
    ReserveTransactionType,
    RiskLevel,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --------------------------------------------------------------------- merchants


class ProfileCreateRequest(BaseModel):
    """Request body for POST /v1/merchants"""

    merchant_id: str = Field(..., min_length=1, description="External merchant identifier")
    risk_level: RiskLevel = RiskLevel.STANDARD
    mcc_code: Optional[str] = Field(None, pattern=r"^\d{4}$")
    mcc_description: Optional[str] = None
    business_type: Optional[str] = None
    business_age_years: Optional[int] = Field(None, ge=0)
    annual_volume: Optional[int] = Field(None, ge=0, description="Minor units")
    average_ticket: Optional[int] = Field(None, ge=0, description="Minor units")
    internal_notes: Optional[str] = None
    actor: Optional[str] = None


class ProfileResponse(ORMModel):
    id: UUID
    merchant_id: str
    risk_level: RiskLevel
    risk_score: int
    account_status: AccountStatus
    mcc_code: Optional[str] = None
    mcc_description: Optional[str] = None
    business_type: Optional[str] = None
    business_age_years: Optional[int] = None
    annual_volume: Optional[int] = None
    average_ticket: Optional[int] = None
    total_processed: int
    transaction_count: int
    refund_count: int
    chargeback_count: int
    chargeback_amount_total: int
    chargeback_ratio: float
    refund_ratio: float
    reserve_balance: int
    reserve_held_total: int
    reserve_released_total: int
    reserve_chargeback_debited_total: int
    reserve_adjusted_total: int
    is_high_risk_mcc: bool
    has_chargeback_history: bool
    requires_monitoring: bool
    last_review_date: Optional[datetime] = None
    next_review_date: Optional[datetime] = None
    review_frequency_days: int
    created_at: datetime
    updated_at: datetime


class ProcessingMetricsRequest(BaseModel):
    """Increments to a merchant's processing totals"""

    processed_amount: int = 0
    transaction_count: int = 0
    refund_count: int = 0
    chargeback_count: int = 0
    chargeback_amount: int = 0
    actor: Optional[str] = None


class SuspendRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    actor: Optional[str] = None


# ---------------------------------------------------------------------- reserve


class HoldRequest(BaseModel):
    """Request body for POST /v1/merchants/{profile_id}/reserve/holds"""

    source_transaction_id: str = Field(..., min_length=1)
    source_amount: int
    reserve_percentage: Decimal = Field(..., description="Fraction in [0, 1], e.g. 0.10")
    hold_days: int
    actor: Optional[str] = None


class ReleaseRequest(BaseModel):
    amount: int
    description: Optional[str] = None
    internal_notes: Optional[str] = None
    actor: Optional[str] = None


class AdjustmentRequest(BaseModel):
    amount: int = Field(..., description="Signed; negative reduces the reserve")
    description: Optional[str] = None
    internal_notes: Optional[str] = None
    actor: Optional[str] = None


class ChargebackDebitRequest(BaseModel):
    chargeback_id: UUID
    amount: int
    actor: Optional[str] = None


class ReserveTransactionResponse(ORMModel):
    id: UUID
    profile_id: UUID
    entry_number: int
    type: ReserveTransactionType
    amount: int
    balance_after: int
    related_transaction_id: Optional[str] = None
    related_chargeback_id: Optional[UUID] = None
    scheduled_release_date: Optional[datetime] = None
    released_at: Optional[datetime] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime


class DebitResponse(BaseModel):
    entry: ReserveTransactionResponse
    debited_amount: int
    remaining_unfunded: int


class PendingReleaseSchema(ORMModel):
    hold_id: UUID
    scheduled_date: datetime
    amount: int


class ReserveSummaryResponse(ORMModel):
    profile_id: UUID
    current_balance: int
    total_held: int
    total_released: int
    total_chargeback_debited: int
    pending_releases: List[PendingReleaseSchema]
    recent_transactions: List[ReserveTransactionResponse]


class ReserveHistoryResponse(BaseModel):
    items: List[ReserveTransactionResponse]
    total: int


class SettlementResultSchema(ORMModel):
    hold_id: UUID
    amount: int
    status: str
    release_id: Optional[UUID] = None
    error: Optional[str] = None


class SettlementRunResponse(BaseModel):
    total_processed: int
    success_count: int
    error_count: int
    results: List[SettlementResultSchema]


# ------------------------------------------------------------------- chargebacks


class ChargebackCreateRequest(BaseModel):
    """Request body for POST /v1/chargebacks"""

    profile_id: UUID
    chargeback_id: str = Field(..., min_length=1, description="Processor dispute id")
    amount: int
    fee: int = 0
    reason: ChargebackReason
    received_at: Optional[datetime] = None
    respond_by_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    currency: str = Field("USD", min_length=3, max_length=3)
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    internal_notes: Optional[str] = None


class ChargebackUpdateRequest(BaseModel):
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    respond_by_date: Optional[datetime] = None
    internal_notes: Optional[str] = None
    actor: Optional[str] = None


class ReviewRequest(BaseModel):
    actor: Optional[str] = None


class RepresentmentRequest(BaseModel):
    evidence: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    actor: Optional[str] = None


class ResolveRequest(BaseModel):
    status: ChargebackStatus
    outcome_amount: Optional[int] = None
    outcome_fee: Optional[int] = None
    impact_reserve: bool = False
    reserve_debit_amount: Optional[int] = None
    internal_notes: Optional[str] = None
    actor: Optional[str] = None


class ChargebackResponse(ORMModel):
    id: UUID
    profile_id: UUID
    chargeback_id: str
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: int
    currency: str
    fee: int
    reason: ChargebackReason
    reason_code: Optional[str] = None
    reason_description: Optional[str] = None
    status: ChargebackStatus
    received_at: datetime
    respond_by_date: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    representment_submitted_at: Optional[datetime] = None
    representment_evidence: Optional[Dict[str, Any]] = None
    representment_notes: Optional[str] = None
    outcome_amount: Optional[int] = None
    outcome_fee: Optional[int] = None
    impacted_reserve: bool
    reserve_debit_amount: Optional[int] = None
    internal_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ChargebackListResponse(BaseModel):
    items: List[ChargebackResponse]
    total: int


class ResolutionResponse(BaseModel):
    chargeback: ChargebackResponse
    debited_amount: int = 0
    remaining_unfunded: int = 0


class ChargebackStatsResponse(ORMModel):
    profile_id: UUID
    total_chargebacks: int
    open_chargebacks: int
    won_chargebacks: int
    lost_chargebacks: int
    total_amount: int
    total_fees: int
    recovered_amount: int
    chargeback_ratio: float
    recent_chargebacks: List[ChargebackResponse]


# ------------------------------------------------------------------------- risk


class AssessmentRequest(BaseModel):
    assessment_type: AssessmentType = AssessmentType.MANUAL
    use_ai: bool = False
    actor: Optional[str] = None


class ApprovalRequest(BaseModel):
    actor: str = Field(..., min_length=1)


class AssessmentResponse(ORMModel):
    id: UUID
    profile_id: UUID
    assessment_type: AssessmentType
    assessed_at: datetime
    assessed_by: Optional[str] = None
    previous_risk_level: RiskLevel
    new_risk_level: RiskLevel
    previous_risk_score: int
    new_risk_score: int
    factors: Dict[str, Any]
    ai_model: Optional[str] = None
    confidence: Optional[float] = None
    explanation: Optional[str] = None
    recommended_actions: List[str]
    requires_approval: bool
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None

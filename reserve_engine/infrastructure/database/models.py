"""SQLAlchemy ORM models for profiles, the reserve ledger, chargebacks and assessments"""

import uuid
from decimal import Decimal
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    Float,
    DateTime,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Numeric,
    Enum,
    UniqueConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator
from reserve_engine.domain.models import (
    AccountStatus,
    AssessmentType,
    ChargebackReason,
    ChargebackStatus,
    ReserveTransactionType,
    RiskLevel,
)
from reserve_engine.utils.date_utils import utcnow

Base = declarative_base()


class MinorUnits(TypeDecorator):
    """Unbounded integer money column: NUMERIC(38,0) on PostgreSQL, BIGINT on SQLite; always loads as int"""

    impl = Numeric(38, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(BigInteger())
        return dialect.type_descriptor(Numeric(38, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return int(value)
        return Decimal(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, native_enum=False, length=32, validate_strings=True)


class MerchantRiskProfile(Base):
    """One row per merchant; reserve aggregates are only written by the reserve ledger"""

    __tablename__ = "merchant_risk_profile"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(Text, nullable=False, unique=True, index=True)

    risk_level = Column(_enum(RiskLevel, "merchant_risk_level"), nullable=False, default=RiskLevel.STANDARD, index=True)
    risk_score = Column(Integer, nullable=False, default=50)
    account_status = Column(
        _enum(AccountStatus, "merchant_account_status"), nullable=False, default=AccountStatus.PENDING_REVIEW
    )

    mcc_code = Column(String(4), nullable=True)
    mcc_description = Column(Text, nullable=True)
    business_type = Column(Text, nullable=True)
    business_age_years = Column(Integer, nullable=True)
    annual_volume = Column(MinorUnits, nullable=True)
    average_ticket = Column(BigInteger, nullable=True)

    total_processed = Column(MinorUnits, nullable=False, default=0)
    transaction_count = Column(BigInteger, nullable=False, default=0)
    refund_count = Column(BigInteger, nullable=False, default=0)
    chargeback_count = Column(BigInteger, nullable=False, default=0)
    chargeback_amount_total = Column(MinorUnits, nullable=False, default=0)
    chargeback_ratio = Column(Float, nullable=False, default=0.0)
    refund_ratio = Column(Float, nullable=False, default=0.0)

    reserve_balance = Column(MinorUnits, nullable=False, default=0)
    reserve_held_total = Column(MinorUnits, nullable=False, default=0)
    reserve_released_total = Column(MinorUnits, nullable=False, default=0)
    reserve_chargeback_debited_total = Column(MinorUnits, nullable=False, default=0)
    reserve_adjusted_total = Column(MinorUnits, nullable=False, default=0)
    ledger_entry_count = Column(Integer, nullable=False, default=0)

    is_high_risk_mcc = Column(Boolean, nullable=False, default=False)
    has_chargeback_history = Column(Boolean, nullable=False, default=False)
    requires_monitoring = Column(Boolean, nullable=False, default=False)

    last_review_date = Column(DateTime(timezone=True), nullable=True)
    next_review_date = Column(DateTime(timezone=True), nullable=True, index=True)
    review_frequency_days = Column(Integer, nullable=False, default=90)

    internal_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    reserve_transactions = relationship("ReserveTransaction", back_populates="profile")
    chargebacks = relationship("ChargebackRecord", back_populates="profile")
    assessments = relationship("RiskAssessment", back_populates="profile")


class ReserveTransaction(Base):
    """Append-only reserve ledger entry; entry_number orders replay per profile"""

    __tablename__ = "reserve_transaction"
    __table_args__ = (
        UniqueConstraint("profile_id", "entry_number", name="uq_reserve_transaction_profile_entry"),
        Index("ix_reserve_transaction_due", "type", "scheduled_release_date", "released_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(UUID(as_uuid=True), ForeignKey("merchant_risk_profile.id"), nullable=False, index=True)
    entry_number = Column(Integer, nullable=False)
    type = Column(_enum(ReserveTransactionType, "reserve_transaction_type"), nullable=False, index=True)
    amount = Column(MinorUnits, nullable=False)  # Signed: holds positive, releases/debits negative
    balance_after = Column(MinorUnits, nullable=False)
    related_transaction_id = Column(Text, nullable=True)
    related_chargeback_id = Column(
        UUID(as_uuid=True), ForeignKey("chargeback_record.id", ondelete="SET NULL"), nullable=True
    )
    scheduled_release_date = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    description = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)
    created_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    profile = relationship("MerchantRiskProfile", back_populates="reserve_transactions")
    chargeback = relationship("ChargebackRecord", back_populates="reserve_transactions")


class ChargebackRecord(Base):
    """Disputed transaction and its resolution"""

    __tablename__ = "chargeback_record"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(UUID(as_uuid=True), ForeignKey("merchant_risk_profile.id"), nullable=False, index=True)
    chargeback_id = Column(Text, nullable=False, unique=True)
    transaction_id = Column(Text, nullable=True, index=True)
    order_id = Column(Text, nullable=True)
    amount = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    fee = Column(BigInteger, nullable=False, default=0)
    reason = Column(_enum(ChargebackReason, "chargeback_reason"), nullable=False)
    reason_code = Column(Text, nullable=True)
    reason_description = Column(Text, nullable=True)
    status = Column(_enum(ChargebackStatus, "chargeback_status"), nullable=False, default=ChargebackStatus.RECEIVED, index=True)
    received_at = Column(DateTime(timezone=True), nullable=False, index=True)
    respond_by_date = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    representment_submitted_at = Column(DateTime(timezone=True), nullable=True)
    representment_evidence = Column(JSON, nullable=True)
    representment_notes = Column(Text, nullable=True)
    outcome_amount = Column(BigInteger, nullable=True)
    outcome_fee = Column(BigInteger, nullable=True)
    impacted_reserve = Column(Boolean, nullable=False, default=False)
    reserve_debit_amount = Column(BigInteger, nullable=True)
    internal_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    profile = relationship("MerchantRiskProfile", back_populates="chargebacks")
    reserve_transactions = relationship("ReserveTransaction", back_populates="chargeback")


class RiskAssessment(Base):
    """Immutable record of a scoring run; only the approval stamp is ever written afterwards"""

    __tablename__ = "risk_assessment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(UUID(as_uuid=True), ForeignKey("merchant_risk_profile.id"), nullable=False, index=True)
    assessment_type = Column(_enum(AssessmentType, "risk_assessment_type"), nullable=False)
    assessed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    assessed_by = Column(Text, nullable=True)
    previous_risk_level = Column(_enum(RiskLevel, "merchant_risk_level"), nullable=False)
    new_risk_level = Column(_enum(RiskLevel, "merchant_risk_level"), nullable=False)
    previous_risk_score = Column(Integer, nullable=False)
    new_risk_score = Column(Integer, nullable=False)
    factors = Column(JSON, nullable=False)
    ai_model = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)
    explanation = Column(Text, nullable=True)
    recommended_actions = Column(JSON, nullable=False, default=list)
    requires_approval = Column(Boolean, nullable=False, default=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Text, nullable=True)

    profile = relationship("MerchantRiskProfile", back_populates="assessments")

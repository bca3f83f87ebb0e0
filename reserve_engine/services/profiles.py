"""Merchant risk profile lifecycle"""

import logging
from datetime import datetime
from typing import Any, List, Optional
from sqlalchemy.exc import IntegrityError
from reserve_engine.config import settings
from reserve_engine.domain import reference
from reserve_engine.domain.exceptions import DuplicateProfileError, NotFoundError, ValidationError
from reserve_engine.domain.models import AccountStatus, RiskLevel
from reserve_engine.domain.reserve import require_minor_units
from reserve_engine.domain.scoring import next_review_date
from reserve_engine.infrastructure.audit import AuditAction, AuditSink, LoggingAuditSink, Notifications
from reserve_engine.infrastructure.database.models import MerchantRiskProfile
from reserve_engine.infrastructure.database.repositories import ProfileRepository
from reserve_engine.infrastructure.database.session import SessionFactory, unit_of_work
from reserve_engine.infrastructure.events import EventPublisher
from reserve_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

PROFILE_FACTS = (
    "mcc_code",
    "mcc_description",
    "business_type",
    "business_age_years",
    "annual_volume",
    "average_ticket",
    "internal_notes",
)


def apply_processing_metrics(
    profile: MerchantRiskProfile,
    processed_amount: int = 0,
    transaction_count: int = 0,
    refund_count: int = 0,
    chargeback_count: int = 0,
    chargeback_amount: int = 0,
) -> None:
    """Add increments to a locked profile and recompute its ratios and flags"""
    increments = {
        "processed_amount": processed_amount,
        "transaction_count": transaction_count,
        "refund_count": refund_count,
        "chargeback_count": chargeback_count,
        "chargeback_amount": chargeback_amount,
    }
    for name, value in increments.items():
        require_minor_units(value, name)
        if value < 0:
            raise ValidationError(f"{name} increment cannot be negative")

    profile.total_processed = (profile.total_processed or 0) + processed_amount
    profile.transaction_count = (profile.transaction_count or 0) + transaction_count
    profile.refund_count = (profile.refund_count or 0) + refund_count
    profile.chargeback_count = (profile.chargeback_count or 0) + chargeback_count
    profile.chargeback_amount_total = (profile.chargeback_amount_total or 0) + chargeback_amount

    if profile.transaction_count > 0:
        profile.chargeback_ratio = profile.chargeback_count / profile.transaction_count
        profile.refund_ratio = profile.refund_count / profile.transaction_count
    else:
        profile.chargeback_ratio = 0.0
        profile.refund_ratio = 0.0

    if profile.chargeback_count > 0:
        profile.has_chargeback_history = True
    if profile.chargeback_ratio >= reference.CHARGEBACK_WARNING:
        profile.requires_monitoring = True


class MerchantProfileService:
    """Creates, reads and maintains merchant risk profiles"""

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        audit_sink: Optional[AuditSink] = None,
        publisher: Optional[EventPublisher] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.publisher = publisher
        self.timeout_ms = timeout_ms if timeout_ms is not None else settings.statement_timeout_ms

    def _unit(self):
        return unit_of_work(self.session_factory, self.timeout_ms)

    def create_profile(
        self,
        merchant_id: str,
        risk_level: RiskLevel = RiskLevel.STANDARD,
        risk_score: int = 50,
        actor: Optional[str] = None,
        **facts: Any,
    ) -> MerchantRiskProfile:
        if not merchant_id:
            raise ValidationError("merchant_id is required")
        unknown = set(facts) - set(PROFILE_FACTS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        if not 0 <= risk_score <= 100:
            raise ValidationError("risk_score must be between 0 and 100")

        now = utcnow()
        notes = Notifications()
        try:
            with self._unit() as db:
                repo = ProfileRepository(db)
                if repo.get_by_merchant(merchant_id) is not None:
                    raise DuplicateProfileError(f"Merchant {merchant_id} already has a risk profile")

                profile = repo.add(
                    MerchantRiskProfile(
                        merchant_id=merchant_id,
                        risk_level=risk_level,
                        risk_score=risk_score,
                        account_status=AccountStatus.PENDING_REVIEW,
                        is_high_risk_mcc=reference.is_high_risk_mcc(facts.get("mcc_code")),
                        next_review_date=next_review_date(risk_level, now),
                        review_frequency_days=reference.REVIEW_INTERVAL_DAYS[risk_level],
                        created_at=now,
                        updated_at=now,
                        **facts,
                    )
                )
                notes.audit(
                    AuditAction.RISK_PROFILE_CREATED,
                    "MerchantRiskProfile",
                    profile.id,
                    actor,
                    {
                        "merchant_id": merchant_id,
                        "risk_level": risk_level.value,
                        "mcc_code": profile.mcc_code,
                        "is_high_risk_mcc": profile.is_high_risk_mcc,
                    },
                )
                notes.event(
                    "risk.profile_created",
                    {"profile_id": str(profile.id), "merchant_id": merchant_id, "risk_level": risk_level.value},
                )
        except IntegrityError as e:
            raise DuplicateProfileError(f"Merchant {merchant_id} already has a risk profile") from e

        notes.dispatch(self.audit_sink, self.publisher)
        logger.info("Risk profile created", extra={"profile_id": str(profile.id), "merchant_id": merchant_id})
        return profile

    def get_profile(self, profile_id: Any) -> MerchantRiskProfile:
        with self._unit() as db:
            profile = ProfileRepository(db).get(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")
            return profile

    def get_profile_by_merchant(self, merchant_id: str) -> MerchantRiskProfile:
        with self._unit() as db:
            profile = ProfileRepository(db).get_by_merchant(merchant_id)
            if profile is None:
                raise NotFoundError(f"No risk profile for merchant {merchant_id}")
            return profile

    def update_processing_metrics(
        self,
        profile_id: Any,
        processed_amount: int = 0,
        transaction_count: int = 0,
        refund_count: int = 0,
        chargeback_count: int = 0,
        chargeback_amount: int = 0,
        actor: Optional[str] = None,
    ) -> MerchantRiskProfile:
        increments = {
            "processed_amount": processed_amount,
            "transaction_count": transaction_count,
            "refund_count": refund_count,
            "chargeback_count": chargeback_count,
            "chargeback_amount": chargeback_amount,
        }
        notes = Notifications()
        with self._unit() as db:
            profile = ProfileRepository(db).get_for_update(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")
            was_monitored = profile.requires_monitoring
            apply_processing_metrics(profile, **increments)
            db.flush()

            notes.audit(
                AuditAction.RISK_PROFILE_METRICS_UPDATED,
                "MerchantRiskProfile",
                profile.id,
                actor,
                {
                    "increments": increments,
                    "chargeback_ratio": profile.chargeback_ratio,
                    "refund_ratio": profile.refund_ratio,
                    "requires_monitoring": profile.requires_monitoring,
                },
            )
            notes.event(
                "risk.metrics_updated",
                {
                    "profile_id": str(profile.id),
                    "transaction_count": profile.transaction_count,
                    "chargeback_ratio": profile.chargeback_ratio,
                    "requires_monitoring": profile.requires_monitoring,
                },
            )

        notes.dispatch(self.audit_sink, self.publisher)
        if profile.requires_monitoring and not was_monitored:
            logger.warning(
                "Chargeback ratio reached monitoring threshold",
                extra={"profile_id": str(profile.id), "chargeback_ratio": profile.chargeback_ratio},
            )
        return profile

    def suspend_profile(self, profile_id: Any, reason: str, actor: Optional[str] = None) -> MerchantRiskProfile:
        if not reason:
            raise ValidationError("A suspension reason is required")
        now = utcnow()
        notes = Notifications()
        with self._unit() as db:
            profile = ProfileRepository(db).get_for_update(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")
            previous_level = profile.risk_level
            profile.risk_level = RiskLevel.SUSPENDED
            profile.account_status = AccountStatus.SUSPENDED
            profile.requires_monitoring = True
            profile.review_frequency_days = reference.REVIEW_INTERVAL_DAYS[RiskLevel.SUSPENDED]
            profile.next_review_date = next_review_date(RiskLevel.SUSPENDED, now)
            db.flush()

            notes.audit(
                AuditAction.RISK_PROFILE_SUSPENDED,
                "MerchantRiskProfile",
                profile.id,
                actor,
                {"reason": reason, "previous_level": previous_level.value},
            )
            notes.event(
                "risk.profile_suspended",
                {"profile_id": str(profile.id), "merchant_id": profile.merchant_id, "reason": reason},
            )

        notes.dispatch(self.audit_sink, self.publisher)
        logger.warning("Merchant suspended", extra={"profile_id": str(profile.id), "reason": reason})
        return profile

    def list_requiring_review(self, now: Optional[datetime] = None) -> List[MerchantRiskProfile]:
        with self._unit() as db:
            return ProfileRepository(db).list_requiring_review(now or utcnow())

"""Data access layer for profiles, ledger entries, chargebacks and assessments"""

import uuid
from datetime import datetime
from typing import Any, List, Optional, Tuple
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from reserve_engine.infrastructure.database.models import (
    ChargebackRecord,
    MerchantRiskProfile,
    ReserveTransaction,
    RiskAssessment,
)
from reserve_engine.domain.exceptions import ConcurrentModificationError, ValidationError
from reserve_engine.domain.models import (
    AccountStatus,
    ChargebackFilters,
    ChargebackStatus,
    HistoryFilters,
    Pagination,
    ReserveTransactionType,
)


def as_uuid(value: Any, label: str = "id") -> uuid.UUID:
    """Accept UUID objects or their string form"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError) as e:
        raise ValidationError(f"Invalid {label}: {value!r}") from e


def _paginate(query, pagination: Optional[Pagination]):
    if pagination is None:
        return query
    if pagination.skip:
        query = query.offset(pagination.skip)
    if pagination.take is not None:
        query = query.limit(pagination.take)
    return query


class ProfileRepository:
    """Repository for merchant risk profiles"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, profile_id: Any) -> Optional[MerchantRiskProfile]:
        return self.db.get(MerchantRiskProfile, as_uuid(profile_id, "profile id"))

    def get_for_update(self, profile_id: Any) -> Optional[MerchantRiskProfile]:
        """Load the profile under a row lock; concurrent writers to the same profile queue here"""
        return (
            self.db.query(MerchantRiskProfile)
            .filter(MerchantRiskProfile.id == as_uuid(profile_id, "profile id"))
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_merchant(self, merchant_id: str) -> Optional[MerchantRiskProfile]:
        return (
            self.db.query(MerchantRiskProfile)
            .filter(MerchantRiskProfile.merchant_id == merchant_id)
            .first()
        )

    def add(self, profile: MerchantRiskProfile) -> MerchantRiskProfile:
        self.db.add(profile)
        self.db.flush()
        return profile

    def list_requiring_review(self, now: datetime) -> List[MerchantRiskProfile]:
        return (
            self.db.query(MerchantRiskProfile)
            .filter(MerchantRiskProfile.account_status != AccountStatus.TERMINATED)
            .filter(
                or_(
                    MerchantRiskProfile.next_review_date.is_(None),
                    MerchantRiskProfile.next_review_date <= now,
                )
            )
            .order_by(MerchantRiskProfile.next_review_date.asc(), MerchantRiskProfile.created_at.asc())
            .all()
        )


class ReserveTransactionRepository:
    """Repository for the append-only reserve ledger"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        profile: MerchantRiskProfile,
        type: ReserveTransactionType,
        amount: int,
        balance_after: int,
        **fields: Any,
    ) -> ReserveTransaction:
        """
        Insert the next ledger entry for a locked profile.

        entry_number is unique per profile, so a writer that raced past the
        row lock fails here instead of silently forking the ledger.
        """
        profile_id = profile.id
        profile.ledger_entry_count = (profile.ledger_entry_count or 0) + 1
        entry = ReserveTransaction(
            profile_id=profile_id,
            entry_number=profile.ledger_entry_count,
            type=type,
            amount=amount,
            balance_after=balance_after,
            **fields,
        )
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise ConcurrentModificationError(
                f"Reserve ledger for profile {profile_id} was modified concurrently"
            ) from e
        return entry

    def get_for_update(self, entry_id: Any) -> Optional[ReserveTransaction]:
        return (
            self.db.query(ReserveTransaction)
            .filter(ReserveTransaction.id == as_uuid(entry_id, "reserve transaction id"))
            .with_for_update()
            .populate_existing()
            .first()
        )

    def find_due_holds(self, now: datetime) -> List[ReserveTransaction]:
        return (
            self.db.query(ReserveTransaction)
            .filter(ReserveTransaction.type == ReserveTransactionType.HOLD)
            .filter(ReserveTransaction.scheduled_release_date <= now)
            .filter(ReserveTransaction.released_at.is_(None))
            .order_by(ReserveTransaction.scheduled_release_date.asc(), ReserveTransaction.entry_number.asc())
            .all()
        )

    def pending_releases(self, profile_id: uuid.UUID, now: datetime) -> List[ReserveTransaction]:
        return (
            self.db.query(ReserveTransaction)
            .filter(ReserveTransaction.profile_id == profile_id)
            .filter(ReserveTransaction.type == ReserveTransactionType.HOLD)
            .filter(ReserveTransaction.scheduled_release_date >= now)
            .filter(ReserveTransaction.released_at.is_(None))
            .order_by(ReserveTransaction.scheduled_release_date.asc())
            .all()
        )

    def recent(self, profile_id: uuid.UUID, limit: int) -> List[ReserveTransaction]:
        return (
            self.db.query(ReserveTransaction)
            .filter(ReserveTransaction.profile_id == profile_id)
            .order_by(ReserveTransaction.entry_number.desc())
            .limit(limit)
            .all()
        )

    def history(
        self,
        profile_id: uuid.UUID,
        filters: Optional[HistoryFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[ReserveTransaction], int]:
        query = self.db.query(ReserveTransaction).filter(ReserveTransaction.profile_id == profile_id)
        if filters is not None:
            if filters.type is not None:
                query = query.filter(ReserveTransaction.type == filters.type)
            if filters.from_date is not None:
                query = query.filter(ReserveTransaction.created_at >= filters.from_date)
            if filters.to_date is not None:
                query = query.filter(ReserveTransaction.created_at <= filters.to_date)

        total = query.count()
        items = _paginate(query.order_by(ReserveTransaction.entry_number.desc()), pagination).all()
        return items, total

    def ledger(self, profile_id: uuid.UUID) -> List[ReserveTransaction]:
        """All entries in creation order, for replay"""
        return (
            self.db.query(ReserveTransaction)
            .filter(ReserveTransaction.profile_id == profile_id)
            .order_by(ReserveTransaction.entry_number.asc())
            .all()
        )


class ChargebackRepository:
    """Repository for chargeback records"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: Any) -> Optional[ChargebackRecord]:
        return self.db.get(ChargebackRecord, as_uuid(record_id, "chargeback id"))

    def get_for_update(self, record_id: Any) -> Optional[ChargebackRecord]:
        return (
            self.db.query(ChargebackRecord)
            .filter(ChargebackRecord.id == as_uuid(record_id, "chargeback id"))
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_by_external_id(self, chargeback_id: str) -> Optional[ChargebackRecord]:
        return (
            self.db.query(ChargebackRecord)
            .filter(ChargebackRecord.chargeback_id == chargeback_id)
            .first()
        )

    def add(self, record: ChargebackRecord) -> ChargebackRecord:
        self.db.add(record)
        self.db.flush()
        return record

    def list(
        self,
        profile_id: Optional[uuid.UUID] = None,
        filters: Optional[ChargebackFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[ChargebackRecord], int]:
        query = self.db.query(ChargebackRecord)
        if profile_id is not None:
            query = query.filter(ChargebackRecord.profile_id == profile_id)
        if filters is not None:
            if filters.status is not None:
                query = query.filter(ChargebackRecord.status == filters.status)
            if filters.reason is not None:
                query = query.filter(ChargebackRecord.reason == filters.reason)
            if filters.from_date is not None:
                query = query.filter(ChargebackRecord.received_at >= filters.from_date)
            if filters.to_date is not None:
                query = query.filter(ChargebackRecord.received_at <= filters.to_date)

        total = query.count()
        items = _paginate(query.order_by(ChargebackRecord.received_at.desc()), pagination).all()
        return items, total

    def count(self, profile_id: uuid.UUID, *statuses: ChargebackStatus) -> int:
        query = self.db.query(func.count(ChargebackRecord.id)).filter(ChargebackRecord.profile_id == profile_id)
        if statuses:
            query = query.filter(ChargebackRecord.status.in_(statuses))
        return query.scalar() or 0

    def sum(self, profile_id: uuid.UUID, column) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(column), 0))
            .filter(ChargebackRecord.profile_id == profile_id)
            .scalar()
        )
        return int(total or 0)

    def recent(self, profile_id: uuid.UUID, limit: int = 5) -> List[ChargebackRecord]:
        return (
            self.db.query(ChargebackRecord)
            .filter(ChargebackRecord.profile_id == profile_id)
            .order_by(ChargebackRecord.received_at.desc())
            .limit(limit)
            .all()
        )

    def approaching_deadline(self, now: datetime, until: datetime) -> List[ChargebackRecord]:
        return (
            self.db.query(ChargebackRecord)
            .filter(ChargebackRecord.status.in_([ChargebackStatus.RECEIVED, ChargebackStatus.UNDER_REVIEW]))
            .filter(ChargebackRecord.respond_by_date >= now)
            .filter(ChargebackRecord.respond_by_date <= until)
            .order_by(ChargebackRecord.respond_by_date.asc())
            .all()
        )


class AssessmentRepository:
    """Repository for risk assessment records"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, assessment: RiskAssessment) -> RiskAssessment:
        self.db.add(assessment)
        self.db.flush()
        return assessment

    def get_for_update(self, assessment_id: Any) -> Optional[RiskAssessment]:
        return (
            self.db.query(RiskAssessment)
            .filter(RiskAssessment.id == as_uuid(assessment_id, "assessment id"))
            .with_for_update()
            .populate_existing()
            .first()
        )

    def pending_approvals(self) -> List[RiskAssessment]:
        return (
            self.db.query(RiskAssessment)
            .filter(RiskAssessment.requires_approval.is_(True))
            .filter(RiskAssessment.approved_at.is_(None))
            .order_by(RiskAssessment.assessed_at.asc())
            .all()
        )

    def has_newer(self, assessment: RiskAssessment) -> bool:
        """True when the profile was assessed again at or after this assessment"""
        return (
            self.db.query(RiskAssessment.id)
            .filter(RiskAssessment.profile_id == assessment.profile_id)
            .filter(RiskAssessment.id != assessment.id)
            .filter(RiskAssessment.assessed_at >= assessment.assessed_at)
            .first()
            is not None
        )

    def for_profile(self, profile_id: uuid.UUID, limit: int = 10) -> List[RiskAssessment]:
        return (
            self.db.query(RiskAssessment)
            .filter(RiskAssessment.profile_id == profile_id)
            .order_by(RiskAssessment.assessed_at.desc())
            .limit(limit)
            .all()
        )

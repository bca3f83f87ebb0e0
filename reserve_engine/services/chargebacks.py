"""Chargeback lifecycle and reconciliation against the reserve ledger"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from reserve_engine.config import settings
from reserve_engine.domain.exceptions import (
    DomainException,
    DuplicateChargebackError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from reserve_engine.domain.models import (
    OPEN_CHARGEBACK_STATUSES,
    ChargebackFilters,
    ChargebackOutcome,
    ChargebackResolution,
    ChargebackStats,
    ChargebackStatus,
    ChargebackUpdate,
    NewChargeback,
    Page,
    Pagination,
)
from reserve_engine.domain.reserve import require_minor_units
from reserve_engine.infrastructure.audit import AuditAction, Notifications
from reserve_engine.infrastructure.database.models import ChargebackRecord
from reserve_engine.infrastructure.database.repositories import (
    ChargebackRepository,
    ProfileRepository,
    as_uuid,
)
from reserve_engine.infrastructure.database.session import unit_of_work
from reserve_engine.infrastructure.observability.metrics import (
    chargeback_created_counter,
    chargeback_resolved_counter,
)
from reserve_engine.services.profiles import apply_processing_metrics
from reserve_engine.services.reserve import ReserveLedger
from reserve_engine.utils.date_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

REPRESENTABLE_STATUSES = (ChargebackStatus.RECEIVED, ChargebackStatus.UNDER_REVIEW)


def _load_locked(db: Session, record_id: Any) -> ChargebackRecord:
    record = ChargebackRepository(db).get_for_update(record_id)
    if record is None:
        raise NotFoundError(f"Chargeback {record_id} not found")
    return record


class ChargebackCoordinator:
    """
    Chargeback state machine:

        RECEIVED -> (UNDER_REVIEW) -> REPRESENTMENT -> WON | LOST | ACCEPTED

    A reserve-impacting resolution debits the reserve ledger inside the same
    transaction as the status change; if the debit fails, the status change
    is rolled back with it.
    """

    def __init__(self, ledger: ReserveLedger):
        self.ledger = ledger

    def _unit(self):
        return unit_of_work(self.ledger.session_factory, self.ledger.timeout_ms)

    def _dispatch(self, notes: Notifications) -> None:
        notes.dispatch(self.ledger.audit_sink, self.ledger.publisher)

    # ----------------------------------------------------------------- create

    def create(self, new: NewChargeback) -> ChargebackRecord:
        if not new.chargeback_id:
            raise ValidationError("External chargeback id is required")
        if new.amount is None or new.fee is None:
            raise ValidationError("Chargeback amount and fee are required")
        require_minor_units(new.amount, "Chargeback amount")
        require_minor_units(new.fee, "Chargeback fee")
        if new.amount <= 0:
            raise ValidationError("Chargeback amount must be positive")
        if new.fee < 0:
            raise ValidationError("Chargeback fee cannot be negative")

        notes = Notifications()
        try:
            with self._unit() as db:
                profile = ProfileRepository(db).get_for_update(new.profile_id)
                if profile is None:
                    raise NotFoundError(f"Merchant risk profile {new.profile_id} not found")

                repo = ChargebackRepository(db)
                if repo.get_by_external_id(new.chargeback_id) is not None:
                    raise DuplicateChargebackError(f"Chargeback {new.chargeback_id} already exists")

                received_at = ensure_utc(new.received_at) or utcnow()
                respond_by = ensure_utc(new.respond_by_date) or received_at + timedelta(
                    days=settings.chargeback_response_days
                )
                record = repo.add(
                    ChargebackRecord(
                        profile_id=profile.id,
                        chargeback_id=new.chargeback_id,
                        transaction_id=new.transaction_id,
                        order_id=new.order_id,
                        amount=new.amount,
                        currency=new.currency or "USD",
                        fee=new.fee,
                        reason=new.reason,
                        reason_code=new.reason_code,
                        reason_description=new.reason_description,
                        status=ChargebackStatus.RECEIVED,
                        received_at=received_at,
                        respond_by_date=respond_by,
                        internal_notes=new.internal_notes,
                    )
                )
                apply_processing_metrics(profile, chargeback_count=1, chargeback_amount=new.amount)
                db.flush()

                notes.audit(
                    AuditAction.CHARGEBACK_CREATED,
                    "ChargebackRecord",
                    record.id,
                    None,
                    {
                        "profile_id": str(profile.id),
                        "chargeback_id": new.chargeback_id,
                        "amount": new.amount,
                        "fee": new.fee,
                        "reason": new.reason.value,
                        "respond_by_date": respond_by.isoformat(),
                    },
                )
                notes.event(
                    "chargeback.received",
                    {
                        "profile_id": str(profile.id),
                        "chargeback_id": new.chargeback_id,
                        "record_id": str(record.id),
                        "amount": new.amount,
                    },
                )
        except IntegrityError as e:
            # Lost a race with a concurrent create for the same external id
            raise DuplicateChargebackError(f"Chargeback {new.chargeback_id} already exists") from e

        chargeback_created_counter.labels(reason=new.reason.value).inc()
        self._dispatch(notes)
        return record

    # ---------------------------------------------------------------- updates

    def update(self, record_id: Any, changes: ChargebackUpdate, actor: Optional[str] = None) -> ChargebackRecord:
        """Metadata-only update; status moves through begin_review / submit_representment / resolve"""
        fields = {k: v for k, v in vars(changes).items() if v is not None}
        notes = Notifications()
        with self._unit() as db:
            record = _load_locked(db, record_id)
            for name, value in fields.items():
                if name == "respond_by_date":
                    value = ensure_utc(value)
                setattr(record, name, value)
            db.flush()
            notes.audit(
                AuditAction.CHARGEBACK_UPDATED,
                "ChargebackRecord",
                record.id,
                actor,
                {"fields": sorted(fields)},
            )
        self._dispatch(notes)
        return record

    def begin_review(self, record_id: Any, actor: Optional[str] = None) -> ChargebackRecord:
        notes = Notifications()
        with self._unit() as db:
            record = _load_locked(db, record_id)
            if record.status is not ChargebackStatus.RECEIVED:
                raise InvalidStateTransitionError(
                    f"Cannot start review for chargeback in {record.status.value} status"
                )
            record.status = ChargebackStatus.UNDER_REVIEW
            db.flush()
            notes.audit(
                AuditAction.CHARGEBACK_REVIEW_STARTED,
                "ChargebackRecord",
                record.id,
                actor,
                {"chargeback_id": record.chargeback_id},
            )
        self._dispatch(notes)
        return record

    def submit_representment(
        self,
        record_id: Any,
        evidence: Dict[str, Any],
        notes_text: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> ChargebackRecord:
        """Attach rebuttal evidence; only open, not-yet-represented disputes qualify"""
        notes = Notifications()
        with self._unit() as db:
            record = _load_locked(db, record_id)
            if record.status not in REPRESENTABLE_STATUSES:
                raise InvalidStateTransitionError(
                    f"Cannot submit representment for chargeback in {record.status.value} status"
                )
            record.status = ChargebackStatus.REPRESENTMENT
            record.representment_submitted_at = utcnow()
            record.representment_evidence = dict(evidence or {})
            record.representment_notes = notes_text
            db.flush()

            notes.audit(
                AuditAction.CHARGEBACK_REPRESENTMENT_SUBMITTED,
                "ChargebackRecord",
                record.id,
                actor,
                {
                    "chargeback_id": record.chargeback_id,
                    "evidence_keys": sorted(record.representment_evidence),
                },
            )
            notes.event(
                "chargeback.representment_submitted",
                {"record_id": str(record.id), "chargeback_id": record.chargeback_id},
            )
        self._dispatch(notes)
        return record

    # ---------------------------------------------------------------- resolve

    def resolve(
        self,
        record_id: Any,
        outcome: ChargebackOutcome,
        actor: Optional[str] = None,
    ) -> ChargebackResolution:
        """
        Close a dispute as WON, LOST or ACCEPTED.

        With impact_reserve and a positive reserve_debit_amount, the reserve
        debit and the status change commit as one unit.
        """
        actor = actor or settings.system_actor
        if not outcome.status.is_terminal:
            raise ValidationError(f"Resolution status must be WON, LOST or ACCEPTED, got {outcome.status.value}")
        for name in ("reserve_debit_amount", "outcome_amount", "outcome_fee"):
            value = getattr(outcome, name)
            if value is None:
                continue
            require_minor_units(value, name)
            if value < 0:
                raise ValidationError(f"{name} cannot be negative")
        if outcome.impact_reserve and outcome.status is ChargebackStatus.WON:
            raise ValidationError("A won chargeback cannot debit the reserve")
        debits_reserve = bool(outcome.impact_reserve and (outcome.reserve_debit_amount or 0) > 0)

        notes = Notifications()
        debit = None
        try:
            with self._unit() as db:
                record = _load_locked(db, record_id)
                if record.status.is_terminal:
                    raise InvalidStateTransitionError(f"Chargeback already resolved as {record.status.value}")

                previous_status = record.status
                now = utcnow()
                record.status = outcome.status
                record.resolved_at = now
                record.outcome_amount = outcome.outcome_amount
                record.outcome_fee = outcome.outcome_fee
                if outcome.internal_notes is not None:
                    record.internal_notes = outcome.internal_notes
                db.flush()

                if debits_reserve:
                    debit = self.ledger.debit_for_chargeback(
                        record.profile_id,
                        record.id,
                        outcome.reserve_debit_amount,
                        actor,
                        db=db,
                        notifications=notes,
                    )
                    record.impacted_reserve = True
                    record.reserve_debit_amount = debit.debited_amount
                    db.flush()

                notes.audit(
                    AuditAction.CHARGEBACK_RESOLVED,
                    "ChargebackRecord",
                    record.id,
                    actor,
                    {
                        "chargeback_id": record.chargeback_id,
                        "previous_status": previous_status.value,
                        "status": record.status.value,
                        "outcome_amount": outcome.outcome_amount,
                        "outcome_fee": outcome.outcome_fee,
                        "impacted_reserve": record.impacted_reserve,
                        "reserve_debit_amount": record.reserve_debit_amount,
                        "remaining_unfunded": debit.remaining_unfunded if debit else 0,
                    },
                )
                notes.event(
                    "chargeback.resolved",
                    {
                        "record_id": str(record.id),
                        "chargeback_id": record.chargeback_id,
                        "profile_id": str(record.profile_id),
                        "status": record.status.value,
                        "reserve_debit_amount": record.reserve_debit_amount or 0,
                        "remaining_unfunded": debit.remaining_unfunded if debit else 0,
                    },
                )
        except DomainException:
            raise
        except Exception:
            logger.error(
                "Chargeback resolution rolled back",
                extra={"record_id": str(record_id), "status": outcome.status.value},
            )
            raise

        if debit is not None:
            self.ledger.record_committed_debit(debit, record.profile_id, actor)
        chargeback_resolved_counter.labels(
            status=record.status.value, impacted_reserve=str(bool(record.impacted_reserve)).lower()
        ).inc()
        self._dispatch(notes)
        return ChargebackResolution(chargeback=record, debit=debit)

    # ------------------------------------------------------------------ reads

    def get(self, record_id: Any) -> ChargebackRecord:
        with self._unit() as db:
            record = ChargebackRepository(db).get(record_id)
            if record is None:
                raise NotFoundError(f"Chargeback {record_id} not found")
            return record

    def get_by_external_id(self, chargeback_id: str) -> ChargebackRecord:
        with self._unit() as db:
            record = ChargebackRepository(db).get_by_external_id(chargeback_id)
            if record is None:
                raise NotFoundError(f"Chargeback with external id {chargeback_id} not found")
            return record

    def list(
        self,
        profile_id: Any = None,
        filters: Optional[ChargebackFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> Page:
        profile_uuid = as_uuid(profile_id, "profile id") if profile_id is not None else None
        with self._unit() as db:
            items, total = ChargebackRepository(db).list(profile_uuid, filters, pagination)
            return Page(items=items, total=total)

    def get_stats(self, profile_id: Any) -> ChargebackStats:
        with self._unit() as db:
            profile = ProfileRepository(db).get(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")
            repo = ChargebackRepository(db)
            return ChargebackStats(
                profile_id=profile.id,
                total_chargebacks=repo.count(profile.id),
                open_chargebacks=repo.count(profile.id, *OPEN_CHARGEBACK_STATUSES),
                won_chargebacks=repo.count(profile.id, ChargebackStatus.WON),
                lost_chargebacks=repo.count(profile.id, ChargebackStatus.LOST),
                total_amount=repo.sum(profile.id, ChargebackRecord.amount),
                total_fees=repo.sum(profile.id, ChargebackRecord.fee),
                recovered_amount=repo.sum(profile.id, ChargebackRecord.outcome_amount),
                chargeback_ratio=float(profile.chargeback_ratio or 0.0),
                recent_chargebacks=repo.recent(profile.id),
            )

    def get_approaching_deadline(self, days_ahead: Optional[int] = None) -> List[ChargebackRecord]:
        """Open disputes whose response deadline falls within the next days_ahead days, soonest first"""
        days = settings.chargeback_deadline_window_days if days_ahead is None else days_ahead
        if days < 0:
            raise ValidationError("days_ahead cannot be negative")
        now = utcnow()
        with self._unit() as db:
            return ChargebackRepository(db).approaching_deadline(now, now + timedelta(days=days))

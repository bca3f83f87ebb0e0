"""Reserve ledger - per-merchant reserve balance and its append-only entry log"""

import logging
from typing import Any, Optional
from sqlalchemy.orm import Session
from reserve_engine.config import settings
from reserve_engine.domain import reserve as reserve_math
from reserve_engine.domain.exceptions import DomainException, NotFoundError, ValidationError
from reserve_engine.domain.models import (
    DebitResult,
    HistoryFilters,
    Page,
    Pagination,
    PendingRelease,
    ReserveSummary,
    ReserveTransactionType,
)
from reserve_engine.infrastructure.audit import AuditAction, AuditSink, LoggingAuditSink, Notifications
from reserve_engine.infrastructure.database.models import MerchantRiskProfile, ReserveTransaction
from reserve_engine.infrastructure.database.repositories import (
    ProfileRepository,
    ReserveTransactionRepository,
    as_uuid,
)
from reserve_engine.infrastructure.database.session import SessionFactory, unit_of_work
from reserve_engine.infrastructure.events import EventPublisher
from reserve_engine.infrastructure.observability.logging import log_reserve_mutation
from reserve_engine.infrastructure.observability.metrics import (
    chargeback_unfunded_counter,
    record_reserve_operation,
)
from reserve_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def _load_locked_profile(db: Session, profile_id: Any) -> MerchantRiskProfile:
    profile = ProfileRepository(db).get_for_update(profile_id)
    if profile is None:
        raise NotFoundError(f"Merchant risk profile {profile_id} not found")
    return profile


class ReserveLedger:
    """
    Hold / release / adjust / chargeback-debit against a merchant's reserve.

    Each mutation is one unit of work: lock the profile row, read the balance,
    append the ledger entry, update the profile aggregates, commit. Audit
    records and events go out after the commit.
    """

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

    def _run(self, operation: str, mutate) -> Any:
        """Execute mutate(db, notifications) atomically and dispatch notifications on success"""
        notifications = Notifications()
        try:
            with self._unit() as db:
                result = mutate(db, notifications)
        except DomainException:
            record_reserve_operation(operation, "rejected")
            raise
        except Exception:
            record_reserve_operation(operation, "failed")
            raise
        notifications.dispatch(self.audit_sink, self.publisher)
        return result

    # ------------------------------------------------------------------ holds

    def create_hold(
        self,
        profile_id: Any,
        source_transaction_id: str,
        source_amount: int,
        reserve_percentage,
        hold_days: int,
        actor: Optional[str] = None,
    ) -> ReserveTransaction:
        """Withhold round(source_amount * reserve_percentage) until now + hold_days"""
        pct = reserve_math.validate_hold_request(source_amount, reserve_percentage, hold_days)
        profile_uuid = as_uuid(profile_id, "profile id")

        def mutate(db: Session, notes: Notifications) -> ReserveTransaction:
            profile = _load_locked_profile(db, profile_uuid)
            now = utcnow()
            hold_amount = reserve_math.compute_hold_amount(source_amount, pct)
            new_balance = profile.reserve_balance + hold_amount
            release_date = reserve_math.scheduled_release_date(now, hold_days)

            entry = ReserveTransactionRepository(db).append(
                profile,
                ReserveTransactionType.HOLD,
                hold_amount,
                new_balance,
                related_transaction_id=source_transaction_id,
                scheduled_release_date=release_date,
                description=f"Reserve hold of {pct * 100:.1f}% from transaction {source_transaction_id}",
                created_by=actor,
                created_at=now,
            )
            profile.reserve_balance = new_balance
            profile.reserve_held_total = profile.reserve_held_total + hold_amount
            db.flush()

            notes.audit(
                AuditAction.RESERVE_HOLD_CREATED,
                "ReserveTransaction",
                entry.id,
                actor,
                {
                    "profile_id": str(profile.id),
                    "transaction_id": source_transaction_id,
                    "hold_amount": hold_amount,
                    "reserve_percentage": str(pct),
                    "hold_days": hold_days,
                    "scheduled_release_date": release_date.isoformat(),
                    "new_balance": str(new_balance),
                },
            )
            notes.event(
                "reserve.hold_created",
                {"profile_id": str(profile.id), "entry_id": str(entry.id), "amount": hold_amount},
            )
            return entry

        entry = self._run("hold", mutate)
        record_reserve_operation("hold", "committed", entry.amount)
        log_reserve_mutation("hold", profile_uuid, entry.id, entry.amount, entry.balance_after, actor)
        return entry

    # --------------------------------------------------------------- releases

    def release(
        self,
        profile_id: Any,
        amount: int,
        description: Optional[str] = None,
        actor: Optional[str] = None,
        internal_notes: Optional[str] = None,
    ) -> ReserveTransaction:
        """Return withheld funds to the merchant; never more than the current balance"""
        reserve_math.require_positive(amount, "Release amount must be positive")
        profile_uuid = as_uuid(profile_id, "profile id")

        def mutate(db: Session, notes: Notifications) -> ReserveTransaction:
            return self.release_within(db, notes, profile_uuid, amount, description, actor, internal_notes)

        entry = self._run("release", mutate)
        record_reserve_operation("release", "committed", amount)
        log_reserve_mutation("release", profile_uuid, entry.id, entry.amount, entry.balance_after, actor)
        return entry

    def release_within(
        self,
        db: Session,
        notes: Notifications,
        profile_id: Any,
        amount: int,
        description: Optional[str] = None,
        actor: Optional[str] = None,
        internal_notes: Optional[str] = None,
    ) -> ReserveTransaction:
        """Release inside a caller-owned transaction (used by scheduled settlement)"""
        reserve_math.require_positive(amount, "Release amount must be positive")
        profile = _load_locked_profile(db, profile_id)
        previous_balance = profile.reserve_balance
        new_balance = reserve_math.balance_after_release(previous_balance, amount)
        now = utcnow()

        entry = ReserveTransactionRepository(db).append(
            profile,
            ReserveTransactionType.RELEASE,
            -amount,
            new_balance,
            released_at=now,
            description=description or "Scheduled reserve release",
            internal_notes=internal_notes,
            created_by=actor,
            created_at=now,
        )
        profile.reserve_balance = new_balance
        profile.reserve_released_total = profile.reserve_released_total + amount
        db.flush()

        notes.audit(
            AuditAction.RESERVE_RELEASED,
            "ReserveTransaction",
            entry.id,
            actor,
            {
                "profile_id": str(profile.id),
                "release_amount": amount,
                "description": entry.description,
                "previous_balance": str(previous_balance),
                "new_balance": str(new_balance),
            },
        )
        notes.event(
            "reserve.released",
            {"profile_id": str(profile.id), "entry_id": str(entry.id), "amount": amount},
        )
        return entry

    # ------------------------------------------------------------ adjustments

    def adjust(
        self,
        profile_id: Any,
        amount: int,
        description: Optional[str] = None,
        actor: Optional[str] = None,
        internal_notes: Optional[str] = None,
    ) -> ReserveTransaction:
        """Manual signed correction; rejected if it would take the balance below zero"""
        reserve_math.require_minor_units(amount, "Adjustment amount")
        if amount == 0:
            raise ValidationError("Adjustment amount cannot be zero")
        profile_uuid = as_uuid(profile_id, "profile id")

        def mutate(db: Session, notes: Notifications) -> ReserveTransaction:
            profile = _load_locked_profile(db, profile_uuid)
            previous_balance = profile.reserve_balance
            new_balance = reserve_math.balance_after_adjustment(previous_balance, amount)

            entry = ReserveTransactionRepository(db).append(
                profile,
                ReserveTransactionType.ADJUSTMENT,
                amount,
                new_balance,
                description=description,
                internal_notes=internal_notes,
                created_by=actor,
                created_at=utcnow(),
            )
            profile.reserve_balance = new_balance
            profile.reserve_adjusted_total = profile.reserve_adjusted_total + amount
            db.flush()

            notes.audit(
                AuditAction.RESERVE_ADJUSTED,
                "ReserveTransaction",
                entry.id,
                actor,
                {
                    "profile_id": str(profile.id),
                    "adjustment_amount": amount,
                    "adjustment_type": "CREDIT" if amount > 0 else "DEBIT",
                    "description": description,
                    "previous_balance": str(previous_balance),
                    "new_balance": str(new_balance),
                },
            )
            notes.event(
                "reserve.adjusted",
                {"profile_id": str(profile.id), "entry_id": str(entry.id), "amount": amount},
            )
            return entry

        entry = self._run("adjust", mutate)
        record_reserve_operation("adjust", "committed", amount)
        log_reserve_mutation("adjust", profile_uuid, entry.id, entry.amount, entry.balance_after, actor)
        return entry

    # -------------------------------------------------------- chargeback debit

    def debit_for_chargeback(
        self,
        profile_id: Any,
        chargeback_id: Any,
        requested_amount: int,
        actor: Optional[str] = None,
        *,
        db: Optional[Session] = None,
        notifications: Optional[Notifications] = None,
    ) -> DebitResult:
        """
        Debit a lost chargeback from the reserve, up to the available balance.

        Any shortfall comes back as remaining_unfunded for out-of-band
        collection. Pass `db` to join a transaction the caller already owns;
        notifications are then appended to the caller's collector and nothing
        is committed here.
        """
        reserve_math.require_positive(requested_amount, "Chargeback amount must be positive")

        if db is not None:
            notes = notifications if notifications is not None else Notifications()
            return self._debit(db, notes, profile_id, chargeback_id, requested_amount, actor)

        result = self._run(
            "chargeback_debit",
            lambda session, notes: self._debit(session, notes, profile_id, chargeback_id, requested_amount, actor),
        )
        self.record_committed_debit(result, profile_id, actor)
        return result

    def _debit(
        self,
        db: Session,
        notes: Notifications,
        profile_id: Any,
        chargeback_id: Any,
        requested_amount: int,
        actor: Optional[str],
    ) -> DebitResult:
        profile = _load_locked_profile(db, profile_id)
        previous_balance = profile.reserve_balance
        debited, unfunded = reserve_math.split_chargeback_debit(previous_balance, requested_amount)
        new_balance = previous_balance - debited
        chargeback_uuid = as_uuid(chargeback_id, "chargeback id")

        entry = ReserveTransactionRepository(db).append(
            profile,
            ReserveTransactionType.CHARGEBACK_DEBIT,
            -debited,
            new_balance,
            related_chargeback_id=chargeback_uuid,
            description=f"Reserve debited for chargeback {chargeback_uuid}",
            created_by=actor,
            created_at=utcnow(),
        )
        profile.reserve_balance = new_balance
        profile.reserve_chargeback_debited_total = profile.reserve_chargeback_debited_total + debited
        db.flush()

        notes.audit(
            AuditAction.RESERVE_CHARGEBACK_DEBIT,
            "ReserveTransaction",
            entry.id,
            actor,
            {
                "profile_id": str(profile.id),
                "chargeback_id": str(chargeback_uuid),
                "requested_amount": requested_amount,
                "debited_amount": debited,
                "remaining_unfunded": unfunded,
                "previous_balance": str(previous_balance),
                "new_balance": str(new_balance),
            },
        )
        notes.event(
            "reserve.chargeback_debited",
            {
                "profile_id": str(profile.id),
                "chargeback_id": str(chargeback_uuid),
                "debited_amount": debited,
                "remaining_unfunded": unfunded,
            },
        )
        if unfunded:
            logger.warning(
                "Chargeback debit exceeded reserve balance",
                extra={"profile_id": str(profile.id), "chargeback_id": str(chargeback_uuid), "unfunded": unfunded},
            )
        return DebitResult(entry=entry, debited_amount=debited, remaining_unfunded=unfunded)

    def record_committed_debit(self, result: DebitResult, profile_id: Any, actor: Optional[str]) -> None:
        record_reserve_operation("chargeback_debit", "committed", result.debited_amount)
        if result.remaining_unfunded:
            chargeback_unfunded_counter.inc(result.remaining_unfunded)
        log_reserve_mutation(
            "chargeback_debit", profile_id, result.entry.id, result.entry.amount, result.entry.balance_after, actor
        )

    # ------------------------------------------------------------------ reads

    def get_summary(self, profile_id: Any, recent_limit: Optional[int] = None) -> ReserveSummary:
        limit = settings.summary_recent_entries if recent_limit is None else recent_limit
        if limit < 0:
            raise ValidationError("Recent entry limit cannot be negative")
        with self._unit() as db:
            profile = ProfileRepository(db).get(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")
            repo = ReserveTransactionRepository(db)
            pending = repo.pending_releases(profile.id, utcnow())
            recent = repo.recent(profile.id, limit)

            return ReserveSummary(
                profile_id=profile.id,
                current_balance=profile.reserve_balance,
                total_held=profile.reserve_held_total,
                total_released=profile.reserve_released_total,
                total_chargeback_debited=profile.reserve_chargeback_debited_total,
                pending_releases=[
                    PendingRelease(hold_id=h.id, scheduled_date=h.scheduled_release_date, amount=h.amount)
                    for h in pending
                ],
                recent_transactions=recent,
            )

    def get_history(
        self,
        profile_id: Any,
        filters: Optional[HistoryFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> Page:
        with self._unit() as db:
            profile = ProfileRepository(db).get(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")
            items, total = ReserveTransactionRepository(db).history(profile.id, filters, pagination)
            return Page(items=items, total=total)

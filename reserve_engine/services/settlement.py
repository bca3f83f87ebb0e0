"""Scheduled settlement - releases reserve holds whose hold period has elapsed"""

import logging
import time
from datetime import datetime
from typing import List, Optional
from reserve_engine.config import settings
from reserve_engine.domain.models import SettlementResult
from reserve_engine.infrastructure.audit import AuditAction, Notifications
from reserve_engine.infrastructure.database.repositories import ReserveTransactionRepository
from reserve_engine.infrastructure.database.session import unit_of_work
from reserve_engine.infrastructure.observability.logging import log_settlement_batch
from reserve_engine.infrastructure.observability.metrics import (
    record_reserve_operation,
    settlement_duration_histogram,
    settlement_result_counter,
)
from reserve_engine.services.reserve import ReserveLedger
from reserve_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class SettlementRunner:
    """
    Batch release of due holds, one transaction per hold.

    A failing hold becomes an error result and the run moves on; the batch
    itself never aborts. Invoked by an external scheduler.
    """

    def __init__(self, ledger: ReserveLedger):
        self.ledger = ledger

    def process_due_releases(self, now: Optional[datetime] = None) -> List[SettlementResult]:
        now = now or utcnow()
        start_time = time.time()

        with unit_of_work(self.ledger.session_factory, self.ledger.timeout_ms) as db:
            due = [(hold.id, hold.amount) for hold in ReserveTransactionRepository(db).find_due_holds(now)]

        results: List[SettlementResult] = []
        for hold_id, amount in due:
            try:
                results.append(self._release_hold(hold_id, now))
            except Exception as e:
                logger.error(
                    f"Scheduled release failed for hold {hold_id}: {e}",
                    extra={"hold_id": str(hold_id), "amount": amount},
                )
                record_reserve_operation("release", "rejected")
                results.append(SettlementResult(hold_id=hold_id, amount=amount, status="error", error=str(e)))

        for result in results:
            settlement_result_counter.labels(status=result.status).inc()

        if results:
            self._audit_batch(results, now)

        duration = time.time() - start_time
        settlement_duration_histogram.observe(duration)
        log_settlement_batch(
            total=len(results),
            released=sum(1 for r in results if r.ok),
            failed=sum(1 for r in results if not r.ok),
            duration_ms=duration * 1000,
        )
        return results

    def _release_hold(self, hold_id, now: datetime) -> SettlementResult:
        """Release one hold and stamp it, atomically"""
        notes = Notifications()
        with unit_of_work(self.ledger.session_factory, self.ledger.timeout_ms) as db:
            hold = ReserveTransactionRepository(db).get_for_update(hold_id)
            if hold is None:
                raise LookupError(f"Hold {hold_id} disappeared before release")
            if hold.released_at is not None:
                # Another run got here first
                return SettlementResult(hold_id=hold.id, amount=hold.amount, status="released")

            release_id = None
            if hold.amount > 0:
                release = self.ledger.release_within(
                    db,
                    notes,
                    hold.profile_id,
                    hold.amount,
                    description=f"Scheduled release of hold from {hold.created_at.isoformat()}",
                    actor=settings.system_actor,
                )
                release_id = release.id
            hold.released_at = now
            db.flush()
            result = SettlementResult(hold_id=hold.id, amount=hold.amount, status="released", release_id=release_id)

        notes.dispatch(self.ledger.audit_sink, self.ledger.publisher)
        if result.release_id is not None:
            record_reserve_operation("release", "committed", result.amount)
        return result

    def _audit_batch(self, results: List[SettlementResult], now: datetime) -> None:
        notes = Notifications()
        released = sum(1 for r in results if r.ok)
        notes.audit(
            AuditAction.RESERVE_SCHEDULED_RELEASE,
            "ReserveTransaction",
            None,
            settings.system_actor,
            {
                "total_processed": len(results),
                "success_count": released,
                "error_count": len(results) - released,
                "processed_at": now.isoformat(),
                "results": [
                    {"hold_id": str(r.hold_id), "status": r.status, "amount": r.amount} for r in results
                ],
            },
        )
        notes.event(
            "reserve.settlement_completed",
            {"total_processed": len(results), "success_count": released, "error_count": len(results) - released},
        )
        notes.dispatch(self.ledger.audit_sink, self.ledger.publisher)

"""Integration tests for the reserve ledger against SQLite"""

import uuid
import pytest
from datetime import timedelta
from decimal import Decimal
from reserve_engine.domain.exceptions import (
    ConcurrentModificationError,
    InsufficientReserveError,
    NotFoundError,
    ValidationError,
)
from reserve_engine.domain.models import HistoryFilters, Pagination, ReserveTransactionType
from reserve_engine.infrastructure.audit import AuditAction
from reserve_engine.infrastructure.database.repositories import (
    ProfileRepository,
    ReserveTransactionRepository,
)
from reserve_engine.services.reserve import ReserveLedger
from reserve_engine.utils.date_utils import ensure_utc, utcnow


def ledger_entries(session_factory, profile_id):
    with session_factory() as db:
        return ReserveTransactionRepository(db).ledger(profile_id)


def assert_balance_invariants(session_factory, profiles, profile_id):
    """Balance equals both the replayed ledger and the aggregate totals"""
    profile = profiles.get_profile(profile_id)
    entries = ledger_entries(session_factory, profile_id)

    assert profile.reserve_balance >= 0
    assert sum(e.amount for e in entries) == profile.reserve_balance
    assert (
        profile.reserve_held_total
        - profile.reserve_released_total
        - profile.reserve_chargeback_debited_total
        + profile.reserve_adjusted_total
        == profile.reserve_balance
    )
    assert [e.entry_number for e in entries] == list(range(1, len(entries) + 1))
    if entries:
        assert entries[-1].balance_after == profile.reserve_balance
    return profile


def test_create_hold_withholds_percentage(profile, ledger, profiles, session_factory):
    """Test 10% of 10000 is held for 90 days"""
    before = utcnow()
    entry = ledger.create_hold(profile.id, "txn_1", 10000, Decimal("0.10"), 90, actor="ops")

    assert entry.type == ReserveTransactionType.HOLD
    assert entry.amount == 1000
    assert entry.balance_after == 1000
    assert entry.related_transaction_id == "txn_1"
    assert entry.released_at is None
    release_date = ensure_utc(entry.scheduled_release_date)
    assert before + timedelta(days=90) <= release_date <= utcnow() + timedelta(days=90)

    updated = assert_balance_invariants(session_factory, profiles, profile.id)
    assert updated.reserve_held_total == 1000


def test_create_hold_rejects_bad_input_before_writing(profile, ledger, session_factory):
    with pytest.raises(ValidationError):
        ledger.create_hold(profile.id, "txn_1", 0, Decimal("0.10"), 90)
    with pytest.raises(ValidationError):
        ledger.create_hold(profile.id, "txn_1", 10000, Decimal("1.5"), 90)
    with pytest.raises(ValidationError):
        ledger.create_hold(profile.id, "txn_1", 10000, Decimal("0.10"), 0)

    assert ledger_entries(session_factory, profile.id) == []


def test_unknown_profile_is_not_found(ledger):
    missing = uuid.uuid4()

    with pytest.raises(NotFoundError):
        ledger.create_hold(missing, "txn_1", 10000, Decimal("0.10"), 90)
    with pytest.raises(NotFoundError):
        ledger.release(missing, 100)
    with pytest.raises(NotFoundError):
        ledger.adjust(missing, 100)
    with pytest.raises(NotFoundError):
        ledger.debit_for_chargeback(missing, uuid.uuid4(), 100)
    with pytest.raises(NotFoundError):
        ledger.get_summary(missing)
    with pytest.raises(NotFoundError):
        ledger.get_history(missing)


def test_malformed_profile_id_is_validation_error(ledger):
    with pytest.raises(ValidationError):
        ledger.get_summary("not-a-uuid")


def test_release_reduces_balance(funded_profile, ledger, profiles, session_factory):
    entry = ledger.release(funded_profile.id, 400, description="Early release", actor="ops")

    assert entry.type == ReserveTransactionType.RELEASE
    assert entry.amount == -400
    assert entry.balance_after == 600
    assert entry.released_at is not None

    updated = assert_balance_invariants(session_factory, profiles, funded_profile.id)
    assert updated.reserve_released_total == 400


def test_release_beyond_balance_is_rejected(funded_profile, ledger, profiles, session_factory):
    """Test non-negativity is enforced by rejection, never clamping"""
    with pytest.raises(InsufficientReserveError):
        ledger.release(funded_profile.id, 1001)

    updated = assert_balance_invariants(session_factory, profiles, funded_profile.id)
    assert updated.reserve_balance == 1000
    assert len(ledger_entries(session_factory, funded_profile.id)) == 1


def test_release_requires_positive_amount(funded_profile, ledger):
    with pytest.raises(ValidationError):
        ledger.release(funded_profile.id, 0)
    with pytest.raises(ValidationError):
        ledger.release(funded_profile.id, -5)


def test_adjust_credit_and_debit(funded_profile, ledger, profiles, session_factory):
    credit = ledger.adjust(funded_profile.id, 250, description="Top-up", actor="ops")
    debit = ledger.adjust(funded_profile.id, -750, description="Correction", actor="ops")

    assert credit.type == ReserveTransactionType.ADJUSTMENT
    assert credit.balance_after == 1250
    assert debit.amount == -750
    assert debit.balance_after == 500

    updated = assert_balance_invariants(session_factory, profiles, funded_profile.id)
    assert updated.reserve_adjusted_total == -500


def test_adjust_rejects_zero_and_overdraft(funded_profile, ledger, profiles):
    with pytest.raises(ValidationError):
        ledger.adjust(funded_profile.id, 0)
    with pytest.raises(InsufficientReserveError):
        ledger.adjust(funded_profile.id, -1001)

    assert profiles.get_profile(funded_profile.id).reserve_balance == 1000


def test_chargeback_debit_within_balance(funded_profile, ledger, profiles, session_factory):
    chargeback_id = uuid.uuid4()
    result = ledger.debit_for_chargeback(funded_profile.id, chargeback_id, 400, actor="disputes")

    assert result.debited_amount == 400
    assert result.remaining_unfunded == 0
    assert result.entry.type == ReserveTransactionType.CHARGEBACK_DEBIT
    assert result.entry.amount == -400
    assert result.entry.related_chargeback_id == chargeback_id

    updated = assert_balance_invariants(session_factory, profiles, funded_profile.id)
    assert updated.reserve_chargeback_debited_total == 400


def test_chargeback_debit_partial_when_underfunded(funded_profile, ledger, profiles, session_factory, publisher):
    """Test debit is capped at the balance and the shortfall is reported"""
    result = ledger.debit_for_chargeback(funded_profile.id, uuid.uuid4(), 1500)

    assert result.debited_amount == 1000
    assert result.remaining_unfunded == 500
    assert result.entry.balance_after == 0

    updated = assert_balance_invariants(session_factory, profiles, funded_profile.id)
    assert updated.reserve_balance == 0

    event = publisher.of_type("reserve.chargeback_debited")[-1]
    assert event.payload["remaining_unfunded"] == 500


def test_chargeback_debit_requires_positive_amount(funded_profile, ledger):
    with pytest.raises(ValidationError):
        ledger.debit_for_chargeback(funded_profile.id, uuid.uuid4(), 0)


def test_mixed_operations_preserve_invariants(profile, ledger, profiles, session_factory):
    """Test replayed ledger matches the stored balance after every kind of entry"""
    ledger.create_hold(profile.id, "txn_1", 10000, Decimal("0.10"), 90)
    ledger.create_hold(profile.id, "txn_2", 5005, Decimal("0.10"), 30)  # 500.5 -> 501
    ledger.release(profile.id, 300)
    ledger.adjust(profile.id, 99)
    ledger.debit_for_chargeback(profile.id, uuid.uuid4(), 2000)
    ledger.adjust(profile.id, 10)

    updated = assert_balance_invariants(session_factory, profiles, profile.id)
    assert updated.reserve_held_total == 1501
    assert updated.reserve_balance == 10


def test_summary_lists_pending_releases(profile, ledger):
    ledger.create_hold(profile.id, "txn_late", 20000, Decimal("0.05"), 60)
    ledger.create_hold(profile.id, "txn_early", 10000, Decimal("0.10"), 30)
    ledger.release(profile.id, 100)

    summary = ledger.get_summary(profile.id)

    assert summary.current_balance == 1900
    assert summary.total_held == 2000
    assert summary.total_released == 100
    assert summary.total_chargeback_debited == 0
    assert [p.amount for p in summary.pending_releases] == [1000, 1000]
    scheduled = [ensure_utc(p.scheduled_date) for p in summary.pending_releases]
    assert scheduled == sorted(scheduled)
    assert [t.type for t in summary.recent_transactions] == [
        ReserveTransactionType.RELEASE,
        ReserveTransactionType.HOLD,
        ReserveTransactionType.HOLD,
    ]


def test_summary_recent_limit(profile, ledger):
    for i in range(5):
        ledger.create_hold(profile.id, f"txn_{i}", 1000, Decimal("0.10"), 30)

    summary = ledger.get_summary(profile.id, recent_limit=2)

    assert len(summary.recent_transactions) == 2
    assert summary.recent_transactions[0].related_transaction_id == "txn_4"


def test_history_filters_and_pagination(profile, ledger):
    for i in range(4):
        ledger.create_hold(profile.id, f"txn_{i}", 1000, Decimal("0.10"), 30)
    ledger.release(profile.id, 50)
    ledger.adjust(profile.id, 5)

    holds = ledger.get_history(profile.id, HistoryFilters(type=ReserveTransactionType.HOLD))
    assert holds.total == 4
    assert all(e.type == ReserveTransactionType.HOLD for e in holds.items)

    page = ledger.get_history(profile.id, pagination=Pagination(skip=1, take=2))
    assert page.total == 6
    assert [e.entry_number for e in page.items] == [5, 4]

    future = ledger.get_history(profile.id, HistoryFilters(from_date=utcnow() + timedelta(days=1)))
    assert future.total == 0
    assert future.items == []


def test_mutations_emit_audit_and_events(profile, ledger, audit_sink, publisher):
    entry = ledger.create_hold(profile.id, "txn_1", 10000, Decimal("0.10"), 90, actor="ops")
    ledger.adjust(profile.id, -100, actor="ops")

    hold_audit = audit_sink.of_action(AuditAction.RESERVE_HOLD_CREATED)
    assert len(hold_audit) == 1
    assert hold_audit[0]["entity_id"] == str(entry.id)
    assert hold_audit[0]["actor"] == "ops"
    assert hold_audit[0]["metadata"]["hold_amount"] == 1000
    assert len(audit_sink.of_action(AuditAction.RESERVE_ADJUSTED)) == 1

    reserve_events = [e.event_type for e in publisher.events if e.event_type.startswith("reserve.")]
    assert reserve_events == ["reserve.hold_created", "reserve.adjusted"]


def test_rejected_mutation_emits_nothing(funded_profile, ledger, audit_sink, publisher):
    audit_sink.records.clear()
    publisher.events.clear()

    with pytest.raises(InsufficientReserveError):
        ledger.release(funded_profile.id, 5000)

    assert audit_sink.records == []
    assert publisher.events == []


class FailingSink:
    def log(self, *args, **kwargs):
        raise RuntimeError("audit store unavailable")


def test_audit_failure_does_not_undo_commit(profile, session_factory, profiles):
    """Test a failing audit sink after commit leaves the money movement in place"""
    ledger = ReserveLedger(session_factory, audit_sink=FailingSink())

    entry = ledger.create_hold(profile.id, "txn_1", 10000, Decimal("0.10"), 90)

    assert entry.amount == 1000
    assert profiles.get_profile(profile.id).reserve_balance == 1000


def test_ledger_sequence_rejects_racing_writer(profile, session_factory):
    """Test a stale entry counter fails on the unique sequence instead of forking the ledger"""
    with session_factory() as db:
        locked = ProfileRepository(db).get_for_update(profile.id)
        repo = ReserveTransactionRepository(db)
        repo.append(locked, ReserveTransactionType.HOLD, 100, 100, created_at=utcnow())

        # Simulate a writer that read the profile before the first append
        locked.ledger_entry_count = 0
        with pytest.raises(ConcurrentModificationError):
            repo.append(locked, ReserveTransactionType.HOLD, 100, 200, created_at=utcnow())
        db.rollback()


def test_second_session_with_stale_profile_is_rejected(profile, profiles, session_factory):
    """Test two sessions read the same profile; only the first writer extends the ledger"""
    first = session_factory()
    second = session_factory()
    try:
        mine = ProfileRepository(first).get_for_update(profile.id)
        theirs = ProfileRepository(second).get_for_update(profile.id)

        ReserveTransactionRepository(first).append(mine, ReserveTransactionType.HOLD, 100, 100, created_at=utcnow())
        mine.reserve_balance = 100
        mine.reserve_held_total = 100
        first.commit()

        theirs.reserve_balance = 250
        theirs.reserve_held_total = 250
        with pytest.raises(ConcurrentModificationError):
            ReserveTransactionRepository(second).append(
                theirs, ReserveTransactionType.HOLD, 250, 250, created_at=utcnow()
            )
        second.rollback()
    finally:
        first.close()
        second.close()

    kept = assert_balance_invariants(session_factory, profiles, profile.id)
    assert kept.reserve_balance == 100
    assert [e.amount for e in ledger_entries(session_factory, profile.id)] == [100]


@pytest.mark.parametrize("amount", [10.5, 10.0, Decimal("10"), True, "10"])
def test_non_integer_amounts_rejected(funded_profile, ledger, profiles, session_factory, amount):
    """Test money that is not whole minor units never reaches the ledger"""
    with pytest.raises(ValidationError):
        ledger.release(funded_profile.id, amount)
    with pytest.raises(ValidationError):
        ledger.adjust(funded_profile.id, amount)
    with pytest.raises(ValidationError):
        ledger.debit_for_chargeback(funded_profile.id, uuid.uuid4(), amount)
    with pytest.raises(ValidationError):
        ledger.create_hold(funded_profile.id, "txn_bad", amount, Decimal("1"), 1)

    profile = assert_balance_invariants(session_factory, profiles, funded_profile.id)
    assert profile.reserve_balance == 1000
    assert len(ledger_entries(session_factory, funded_profile.id)) == 1


def test_fractional_hold_days_rejected(profile, ledger):
    with pytest.raises(ValidationError):
        ledger.create_hold(profile.id, "txn_1", 10000, Decimal("0.10"), 1.5)


def test_summary_with_zero_recent_limit(funded_profile, ledger):
    summary = ledger.get_summary(funded_profile.id, recent_limit=0)

    assert summary.current_balance == 1000
    assert summary.recent_transactions == []
    assert len(ledger.get_summary(funded_profile.id).recent_transactions) == 1

    with pytest.raises(ValidationError):
        ledger.get_summary(funded_profile.id, recent_limit=-1)

"""/v1 reserve ledger routes - holds, releases, adjustments, chargeback debits and settlement"""

import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from reserve_engine.api.dependencies import get_request_id, get_reserve_ledger, get_settlement_runner
from reserve_engine.api.v1.schemas import (
    AdjustmentRequest,
    ChargebackDebitRequest,
    DebitResponse,
    HoldRequest,
    ReleaseRequest,
    ReserveHistoryResponse,
    ReserveSummaryResponse,
    ReserveTransactionResponse,
    SettlementResultSchema,
    SettlementRunResponse,
)
from reserve_engine.domain.models import HistoryFilters, Pagination, ReserveTransactionType
from reserve_engine.services.reserve import ReserveLedger
from reserve_engine.services.settlement import SettlementRunner

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/merchants/{profile_id}/reserve/holds", response_model=ReserveTransactionResponse, status_code=201)
def create_hold(
    profile_id: str,
    request_body: HoldRequest,
    ledger: ReserveLedger = Depends(get_reserve_ledger),
):
    """Withhold a percentage of a processed transaction until hold_days from now"""
    return ledger.create_hold(
        profile_id,
        request_body.source_transaction_id,
        request_body.source_amount,
        request_body.reserve_percentage,
        request_body.hold_days,
        actor=request_body.actor,
    )


@router.post("/merchants/{profile_id}/reserve/releases", response_model=ReserveTransactionResponse, status_code=201)
def release(
    profile_id: str,
    request_body: ReleaseRequest,
    ledger: ReserveLedger = Depends(get_reserve_ledger),
):
    return ledger.release(
        profile_id,
        request_body.amount,
        description=request_body.description,
        actor=request_body.actor,
        internal_notes=request_body.internal_notes,
    )


@router.post(
    "/merchants/{profile_id}/reserve/adjustments", response_model=ReserveTransactionResponse, status_code=201
)
def adjust(
    profile_id: str,
    request_body: AdjustmentRequest,
    ledger: ReserveLedger = Depends(get_reserve_ledger),
):
    return ledger.adjust(
        profile_id,
        request_body.amount,
        description=request_body.description,
        actor=request_body.actor,
        internal_notes=request_body.internal_notes,
    )


@router.post("/merchants/{profile_id}/reserve/chargeback-debits", response_model=DebitResponse, status_code=201)
def debit_for_chargeback(
    profile_id: str,
    request_body: ChargebackDebitRequest,
    ledger: ReserveLedger = Depends(get_reserve_ledger),
):
    result = ledger.debit_for_chargeback(
        profile_id, request_body.chargeback_id, request_body.amount, actor=request_body.actor
    )
    return DebitResponse(
        entry=ReserveTransactionResponse.model_validate(result.entry),
        debited_amount=result.debited_amount,
        remaining_unfunded=result.remaining_unfunded,
    )


@router.get("/merchants/{profile_id}/reserve", response_model=ReserveSummaryResponse)
def get_summary(
    profile_id: str,
    recent: Optional[int] = Query(None, ge=1, le=100, description="Number of recent entries"),
    ledger: ReserveLedger = Depends(get_reserve_ledger),
):
    summary = ledger.get_summary(profile_id, recent_limit=recent)
    return ReserveSummaryResponse.model_validate(summary)


@router.get("/merchants/{profile_id}/reserve/transactions", response_model=ReserveHistoryResponse)
def get_history(
    profile_id: str,
    type: Optional[ReserveTransactionType] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    take: Optional[int] = Query(None, ge=1, le=500),
    ledger: ReserveLedger = Depends(get_reserve_ledger),
):
    """Newest first; total counts every matching entry regardless of paging"""
    page = ledger.get_history(
        profile_id,
        HistoryFilters(type=type, from_date=from_date, to_date=to_date),
        Pagination(skip=skip, take=take),
    )
    return ReserveHistoryResponse(
        items=[ReserveTransactionResponse.model_validate(e) for e in page.items],
        total=page.total,
    )


@router.post("/reserve/settlements/run", response_model=SettlementRunResponse)
def process_due_releases(
    request: Request,
    runner: SettlementRunner = Depends(get_settlement_runner),
):
    """Release every hold whose scheduled date has passed; normally driven by a scheduler"""
    results = runner.process_due_releases()
    success_count = sum(1 for r in results if r.ok)
    logger.info(
        "Settlement run triggered over HTTP",
        extra={"request_id": get_request_id(request), "total": len(results)},
    )
    return SettlementRunResponse(
        total_processed=len(results),
        success_count=success_count,
        error_count=len(results) - success_count,
        results=[SettlementResultSchema.model_validate(r) for r in results],
    )

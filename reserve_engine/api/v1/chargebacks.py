"""/v1/chargebacks - dispute intake, representment and resolution"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from reserve_engine.api.dependencies import get_chargeback_coordinator
from reserve_engine.api.v1.schemas import (
    ChargebackCreateRequest,
    ChargebackListResponse,
    ChargebackResponse,
    ChargebackStatsResponse,
    ChargebackUpdateRequest,
    RepresentmentRequest,
    ResolutionResponse,
    ResolveRequest,
    ReviewRequest,
)
from reserve_engine.domain.models import (
    ChargebackFilters,
    ChargebackOutcome,
    ChargebackReason,
    ChargebackStatus,
    ChargebackUpdate,
    NewChargeback,
    Pagination,
)
from reserve_engine.services.chargebacks import ChargebackCoordinator

router = APIRouter()


@router.post("/chargebacks", response_model=ChargebackResponse, status_code=201)
def create_chargeback(
    request_body: ChargebackCreateRequest,
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    """Record an incoming dispute; 409 if the processor id was already seen"""
    return coordinator.create(NewChargeback(**request_body.model_dump()))


@router.get("/chargebacks", response_model=ChargebackListResponse)
def list_chargebacks(
    profile_id: Optional[str] = Query(None),
    status: Optional[ChargebackStatus] = Query(None),
    reason: Optional[ChargebackReason] = Query(None),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    take: Optional[int] = Query(None, ge=1, le=500),
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    page = coordinator.list(
        profile_id,
        ChargebackFilters(status=status, reason=reason, from_date=from_date, to_date=to_date),
        Pagination(skip=skip, take=take),
    )
    return ChargebackListResponse(
        items=[ChargebackResponse.model_validate(c) for c in page.items],
        total=page.total,
    )


@router.get("/chargebacks/approaching-deadline", response_model=List[ChargebackResponse])
def get_approaching_deadline(
    days_ahead: Optional[int] = Query(None, ge=0),
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    return coordinator.get_approaching_deadline(days_ahead)


@router.get("/chargebacks/external/{chargeback_id}", response_model=ChargebackResponse)
def get_by_external_id(
    chargeback_id: str,
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    return coordinator.get_by_external_id(chargeback_id)


@router.get("/chargebacks/{record_id}", response_model=ChargebackResponse)
def get_chargeback(record_id: str, coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator)):
    return coordinator.get(record_id)


@router.patch("/chargebacks/{record_id}", response_model=ChargebackResponse)
def update_chargeback(
    record_id: str,
    request_body: ChargebackUpdateRequest,
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    changes = ChargebackUpdate(**request_body.model_dump(exclude={"actor"}))
    return coordinator.update(record_id, changes, actor=request_body.actor)


@router.post("/chargebacks/{record_id}/review", response_model=ChargebackResponse)
def begin_review(
    record_id: str,
    request_body: ReviewRequest,
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    return coordinator.begin_review(record_id, actor=request_body.actor)


@router.post("/chargebacks/{record_id}/representment", response_model=ChargebackResponse)
def submit_representment(
    record_id: str,
    request_body: RepresentmentRequest,
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    return coordinator.submit_representment(
        record_id, request_body.evidence, request_body.notes, actor=request_body.actor
    )


@router.post("/chargebacks/{record_id}/resolve", response_model=ResolutionResponse)
def resolve_chargeback(
    record_id: str,
    request_body: ResolveRequest,
    coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator),
):
    """
    Close the dispute. With impact_reserve, the reserve debit commits
    together with the status change or not at all.
    """
    outcome = ChargebackOutcome(**request_body.model_dump(exclude={"actor"}))
    resolution = coordinator.resolve(record_id, outcome, actor=request_body.actor)
    debit = resolution.debit
    return ResolutionResponse(
        chargeback=ChargebackResponse.model_validate(resolution.chargeback),
        debited_amount=debit.debited_amount if debit else 0,
        remaining_unfunded=debit.remaining_unfunded if debit else 0,
    )


@router.get("/merchants/{profile_id}/chargebacks/stats", response_model=ChargebackStatsResponse)
def get_stats(profile_id: str, coordinator: ChargebackCoordinator = Depends(get_chargeback_coordinator)):
    return ChargebackStatsResponse.model_validate(coordinator.get_stats(profile_id))

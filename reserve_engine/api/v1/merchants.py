"""/v1/merchants - risk profiles, processing metrics and risk assessments"""

from typing import List
from fastapi import APIRouter, Depends
from reserve_engine.api.dependencies import get_profile_service, get_risk_service
from reserve_engine.api.v1.schemas import (
    ApprovalRequest,
    AssessmentRequest,
    AssessmentResponse,
    ProcessingMetricsRequest,
    ProfileCreateRequest,
    ProfileResponse,
    SuspendRequest,
)
from reserve_engine.services.profiles import MerchantProfileService
from reserve_engine.services.risk import RiskAssessmentService

router = APIRouter()


@router.post("/merchants", response_model=ProfileResponse, status_code=201)
def create_profile(
    request_body: ProfileCreateRequest,
    profiles: MerchantProfileService = Depends(get_profile_service),
):
    facts = request_body.model_dump(exclude={"merchant_id", "risk_level", "actor"}, exclude_none=True)
    return profiles.create_profile(
        request_body.merchant_id,
        risk_level=request_body.risk_level,
        actor=request_body.actor,
        **facts,
    )


# Declared before /merchants/{profile_id} so the literal path wins
@router.get("/merchants/review-queue", response_model=List[ProfileResponse])
def list_requiring_review(profiles: MerchantProfileService = Depends(get_profile_service)):
    """Profiles whose next review date has passed or was never set"""
    return profiles.list_requiring_review()


@router.get("/merchants/by-merchant/{merchant_id}", response_model=ProfileResponse)
def get_profile_by_merchant(merchant_id: str, profiles: MerchantProfileService = Depends(get_profile_service)):
    return profiles.get_profile_by_merchant(merchant_id)


@router.get("/merchants/{profile_id}", response_model=ProfileResponse)
def get_profile(profile_id: str, profiles: MerchantProfileService = Depends(get_profile_service)):
    return profiles.get_profile(profile_id)


@router.post("/merchants/{profile_id}/processing-metrics", response_model=ProfileResponse)
def update_processing_metrics(
    profile_id: str,
    request_body: ProcessingMetricsRequest,
    profiles: MerchantProfileService = Depends(get_profile_service),
):
    return profiles.update_processing_metrics(profile_id, **request_body.model_dump())


@router.post("/merchants/{profile_id}/suspend", response_model=ProfileResponse)
def suspend_profile(
    profile_id: str,
    request_body: SuspendRequest,
    profiles: MerchantProfileService = Depends(get_profile_service),
):
    return profiles.suspend_profile(profile_id, request_body.reason, request_body.actor)


@router.post("/merchants/{profile_id}/assessments", response_model=AssessmentResponse, status_code=201)
def perform_assessment(
    profile_id: str,
    request_body: AssessmentRequest,
    risk: RiskAssessmentService = Depends(get_risk_service),
):
    """
    Score the merchant now.

    Escalations and any HIGH / VERY_HIGH outcome come back with
    requires_approval=true and are not applied until approved.
    """
    return risk.perform_assessment(
        profile_id,
        assessment_type=request_body.assessment_type,
        actor=request_body.actor,
        use_ai=request_body.use_ai,
    )


@router.get("/assessments/pending", response_model=List[AssessmentResponse])
def list_pending_approvals(risk: RiskAssessmentService = Depends(get_risk_service)):
    return risk.list_pending_approvals()


@router.post("/assessments/{assessment_id}/approve", response_model=AssessmentResponse)
def approve_assessment(
    assessment_id: str,
    request_body: ApprovalRequest,
    risk: RiskAssessmentService = Depends(get_risk_service),
):
    return risk.approve_assessment(assessment_id, request_body.actor)

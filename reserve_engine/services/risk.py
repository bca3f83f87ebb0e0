"""Risk assessment - scores a merchant and gates escalations behind manual approval"""

import logging
from typing import Any, List, Optional
from reserve_engine.config import settings
from reserve_engine.domain import reference, scoring
from reserve_engine.domain.exceptions import ConflictError, NotFoundError, ValidationError
from reserve_engine.domain.models import AssessmentType
from reserve_engine.infrastructure.audit import AuditAction, AuditSink, LoggingAuditSink, Notifications
from reserve_engine.infrastructure.database.models import MerchantRiskProfile, RiskAssessment
from reserve_engine.infrastructure.database.repositories import AssessmentRepository, ProfileRepository
from reserve_engine.infrastructure.database.session import SessionFactory, unit_of_work
from reserve_engine.infrastructure.events import EventPublisher
from reserve_engine.infrastructure.observability.metrics import risk_assessment_counter
from reserve_engine.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

AI_EXPLANATION_PREFIX = "[AI-assisted review]"


def _apply_level(profile: MerchantRiskProfile, assessment: RiskAssessment) -> None:
    profile.risk_level = assessment.new_risk_level
    profile.risk_score = assessment.new_risk_score
    profile.review_frequency_days = reference.REVIEW_INTERVAL_DAYS[assessment.new_risk_level]


class RiskAssessmentService:
    """
    Runs the scoring engine against a profile and records the result.

    Outcomes that change the level, or land on HIGH / VERY_HIGH, are stored
    as pending and only reach the profile through approve_assessment.
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

    def perform_assessment(
        self,
        profile_id: Any,
        assessment_type: AssessmentType = AssessmentType.MANUAL,
        actor: Optional[str] = None,
        use_ai: bool = False,
    ) -> RiskAssessment:
        if not isinstance(assessment_type, AssessmentType):
            try:
                assessment_type = AssessmentType(assessment_type)
            except ValueError as e:
                raise ValidationError(f"Unknown assessment type: {assessment_type}") from e

        now = utcnow()
        notes = Notifications()
        with self._unit() as db:
            profile = ProfileRepository(db).get_for_update(profile_id)
            if profile is None:
                raise NotFoundError(f"Merchant risk profile {profile_id} not found")

            factors = scoring.gather_factors(profile, now)
            result = scoring.calculate_risk_score(factors)
            previous_level = profile.risk_level
            previous_score = profile.risk_score
            needs_approval = scoring.requires_approval(previous_level, result.level)

            explanation = scoring.build_explanation(result, previous_level)
            if use_ai:
                explanation = f"{AI_EXPLANATION_PREFIX} {explanation}"

            assessment = AssessmentRepository(db).add(
                RiskAssessment(
                    profile_id=profile.id,
                    assessment_type=assessment_type,
                    assessed_at=now,
                    assessed_by=actor,
                    previous_risk_level=previous_level,
                    new_risk_level=result.level,
                    previous_risk_score=previous_score,
                    new_risk_score=result.score,
                    factors=factors.snapshot(),
                    ai_model=settings.risk_ai_model if use_ai else None,
                    confidence=scoring.assessment_confidence(factors),
                    explanation=explanation,
                    recommended_actions=scoring.recommend_actions(factors, result.level),
                    requires_approval=needs_approval,
                )
            )

            if not needs_approval:
                _apply_level(profile, assessment)
            profile.last_review_date = now
            profile.next_review_date = scoring.next_review_date(result.level, now)
            db.flush()

            notes.audit(
                AuditAction.RISK_ASSESSMENT_PERFORMED,
                "RiskAssessment",
                assessment.id,
                actor,
                {
                    "profile_id": str(profile.id),
                    "assessment_type": assessment_type.value,
                    "previous_level": previous_level.value,
                    "new_level": result.level.value,
                    "new_score": result.score,
                    "requires_approval": needs_approval,
                    "ai_model": assessment.ai_model,
                },
            )
            notes.event(
                "risk.assessment_performed",
                {
                    "profile_id": str(profile.id),
                    "assessment_id": str(assessment.id),
                    "new_level": result.level.value,
                    "requires_approval": needs_approval,
                },
            )

        risk_assessment_counter.labels(
            level=result.level.value, requires_approval=str(needs_approval).lower()
        ).inc()
        notes.dispatch(self.audit_sink, self.publisher)
        logger.info(
            "Risk assessment recorded",
            extra={
                "profile_id": str(assessment.profile_id),
                "assessment_id": str(assessment.id),
                "score": result.score,
                "level": result.level.value,
                "requires_approval": needs_approval,
            },
        )
        return assessment

    def approve_assessment(self, assessment_id: Any, actor: str) -> RiskAssessment:
        if not actor:
            raise ValidationError("Approver is required")

        notes = Notifications()
        with self._unit() as db:
            assessment = AssessmentRepository(db).get_for_update(assessment_id)
            if assessment is None:
                raise NotFoundError(f"Risk assessment {assessment_id} not found")
            if not assessment.requires_approval:
                raise ConflictError(f"Risk assessment {assessment_id} does not require approval")
            if assessment.approved_at is not None:
                raise ConflictError(f"Risk assessment {assessment_id} is already approved")

            profile = ProfileRepository(db).get_for_update(assessment.profile_id)
            # Only the latest assessment of an unchanged profile may be applied
            if profile.risk_level != assessment.previous_risk_level:
                raise ConflictError(
                    f"Profile moved to {profile.risk_level.value} after risk assessment {assessment_id} was taken"
                )
            if AssessmentRepository(db).has_newer(assessment):
                raise ConflictError(f"Risk assessment {assessment_id} was superseded by a newer assessment")
            assessment.approved_at = utcnow()
            assessment.approved_by = actor
            _apply_level(profile, assessment)
            db.flush()

            notes.audit(
                AuditAction.RISK_ASSESSMENT_APPROVED,
                "RiskAssessment",
                assessment.id,
                actor,
                {
                    "profile_id": str(profile.id),
                    "previous_level": assessment.previous_risk_level.value,
                    "new_level": assessment.new_risk_level.value,
                    "new_score": assessment.new_risk_score,
                },
            )
            notes.event(
                "risk.level_changed",
                {
                    "profile_id": str(profile.id),
                    "assessment_id": str(assessment.id),
                    "previous_level": assessment.previous_risk_level.value,
                    "new_level": assessment.new_risk_level.value,
                },
            )

        notes.dispatch(self.audit_sink, self.publisher)
        return assessment

    def list_pending_approvals(self) -> List[RiskAssessment]:
        with self._unit() as db:
            return AssessmentRepository(db).pending_approvals()

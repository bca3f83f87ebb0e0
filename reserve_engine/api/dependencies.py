"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from typing import Optional
from fastapi import Depends, Request
from reserve_engine.config import settings
from reserve_engine.infrastructure.audit import AuditSink, LoggingAuditSink
from reserve_engine.infrastructure.clients.webhook import WebhookEventPublisher
from reserve_engine.infrastructure.database.session import SessionFactory, SessionLocal
from reserve_engine.infrastructure.events import EventPublisher
from reserve_engine.services.chargebacks import ChargebackCoordinator
from reserve_engine.services.profiles import MerchantProfileService
from reserve_engine.services.reserve import ReserveLedger
from reserve_engine.services.risk import RiskAssessmentService
from reserve_engine.services.settlement import SettlementRunner


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_audit_sink() -> AuditSink:
    return LoggingAuditSink()


@lru_cache(maxsize=1)
def get_event_publisher() -> Optional[EventPublisher]:
    """Shared webhook publisher; events are dropped when no URL is configured"""
    if not settings.event_webhook_url:
        return None
    return WebhookEventPublisher(settings.event_webhook_url)


def get_reserve_ledger(
    session_factory: SessionFactory = Depends(get_session_factory),
    audit_sink: AuditSink = Depends(get_audit_sink),
    publisher: Optional[EventPublisher] = Depends(get_event_publisher),
) -> ReserveLedger:
    return ReserveLedger(session_factory, audit_sink, publisher)


def get_settlement_runner(ledger: ReserveLedger = Depends(get_reserve_ledger)) -> SettlementRunner:
    return SettlementRunner(ledger)


def get_chargeback_coordinator(ledger: ReserveLedger = Depends(get_reserve_ledger)) -> ChargebackCoordinator:
    return ChargebackCoordinator(ledger)


def get_profile_service(
    session_factory: SessionFactory = Depends(get_session_factory),
    audit_sink: AuditSink = Depends(get_audit_sink),
    publisher: Optional[EventPublisher] = Depends(get_event_publisher),
) -> MerchantProfileService:
    return MerchantProfileService(session_factory, audit_sink, publisher)


def get_risk_service(
    session_factory: SessionFactory = Depends(get_session_factory),
    audit_sink: AuditSink = Depends(get_audit_sink),
    publisher: Optional[EventPublisher] = Depends(get_event_publisher),
) -> RiskAssessmentService:
    return RiskAssessmentService(session_factory, audit_sink, publisher)

"""Pytest fixtures for testing"""

import pytest
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from reserve_engine.api.main import create_app
from reserve_engine.api.dependencies import get_audit_sink, get_event_publisher, get_session_factory
from reserve_engine.infrastructure.database.models import Base
from reserve_engine.infrastructure.events import InMemoryEventPublisher
from reserve_engine.services.chargebacks import ChargebackCoordinator
from reserve_engine.services.profiles import MerchantProfileService
from reserve_engine.services.reserve import ReserveLedger
from reserve_engine.services.risk import RiskAssessmentService
from reserve_engine.services.settlement import SettlementRunner


class RecordingAuditSink:
    """Keeps every audit record in memory"""

    def __init__(self):
        self.records = []

    def log(self, action, entity_type, entity_id, *, actor, classification, metadata):
        self.records.append(
            {
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor": actor,
                "classification": classification,
                "metadata": metadata,
            }
        )

    def of_action(self, action):
        return [r for r in self.records if r["action"] == action]


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    """Fresh SQLite database file per test"""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine: Engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def ledger(session_factory, audit_sink, publisher) -> ReserveLedger:
    return ReserveLedger(session_factory, audit_sink, publisher)


@pytest.fixture
def runner(ledger: ReserveLedger) -> SettlementRunner:
    return SettlementRunner(ledger)


@pytest.fixture
def coordinator(ledger: ReserveLedger) -> ChargebackCoordinator:
    return ChargebackCoordinator(ledger)


@pytest.fixture
def profiles(session_factory, audit_sink, publisher) -> MerchantProfileService:
    return MerchantProfileService(session_factory, audit_sink, publisher)


@pytest.fixture
def risk(session_factory, audit_sink, publisher) -> RiskAssessmentService:
    return RiskAssessmentService(session_factory, audit_sink, publisher)


@pytest.fixture
def profile(profiles: MerchantProfileService):
    """Standard-risk merchant with no reserve activity"""
    return profiles.create_profile(
        "merchant_001",
        mcc_code="5999",
        business_type="retail",
        business_age_years=3,
    )


@pytest.fixture
def funded_profile(profile, ledger: ReserveLedger):
    """Merchant with 1000 minor units held in reserve"""
    ledger.create_hold(profile.id, "txn_seed", 10000, Decimal("0.10"), 90, actor="seed")
    return profile


@pytest.fixture
def client(session_factory, audit_sink, publisher) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    return TestClient(app)

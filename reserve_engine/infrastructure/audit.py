"""Audit sink and post-commit notification dispatch

Money movement is authoritative and audit is best-effort: records are queued
while a transaction runs and only handed to the sink after commit. Sink and
publisher failures are logged and counted, never raised.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
from reserve_engine.infrastructure.events import DomainEvent, EventPublisher
from reserve_engine.infrastructure.observability.metrics import dispatch_failure_counter

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    RESERVE_HOLD_CREATED = "RESERVE_HOLD_CREATED"
    RESERVE_RELEASED = "RESERVE_RELEASED"
    RESERVE_ADJUSTED = "RESERVE_ADJUSTED"
    RESERVE_CHARGEBACK_DEBIT = "RESERVE_CHARGEBACK_DEBIT"
    RESERVE_SCHEDULED_RELEASE = "RESERVE_SCHEDULED_RELEASE"
    CHARGEBACK_CREATED = "CHARGEBACK_CREATED"
    CHARGEBACK_UPDATED = "CHARGEBACK_UPDATED"
    CHARGEBACK_REVIEW_STARTED = "CHARGEBACK_REVIEW_STARTED"
    CHARGEBACK_REPRESENTMENT_SUBMITTED = "CHARGEBACK_REPRESENTMENT_SUBMITTED"
    CHARGEBACK_RESOLVED = "CHARGEBACK_RESOLVED"
    RISK_PROFILE_CREATED = "RISK_PROFILE_CREATED"
    RISK_PROFILE_SUSPENDED = "RISK_PROFILE_SUSPENDED"
    RISK_PROFILE_METRICS_UPDATED = "RISK_PROFILE_METRICS_UPDATED"
    RISK_ASSESSMENT_PERFORMED = "RISK_ASSESSMENT_PERFORMED"
    RISK_ASSESSMENT_APPROVED = "RISK_ASSESSMENT_APPROVED"


class DataClassification(str, Enum):
    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    RESTRICTED = "RESTRICTED"


class AuditSink(Protocol):
    def log(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[str],
        *,
        actor: Optional[str],
        classification: DataClassification,
        metadata: Dict[str, Any],
    ) -> None: ...


class LoggingAuditSink:
    """Writes audit records as structured log lines on the reserve_engine.audit logger"""

    def __init__(self, logger_name: str = "reserve_engine.audit"):
        self._logger = logging.getLogger(logger_name)

    def log(self, action, entity_type, entity_id, *, actor, classification, metadata) -> None:
        self._logger.info(
            action.value,
            extra={
                "audit_action": action.value,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "actor": actor,
                "classification": classification.value,
                "metadata": metadata,
            },
        )


@dataclass
class AuditRecord:
    action: AuditAction
    entity_type: str
    entity_id: Optional[str]
    actor: Optional[str]
    metadata: Dict[str, Any]
    classification: DataClassification = DataClassification.CONFIDENTIAL


@dataclass
class Notifications:
    """Audit records and events queued inside a transaction, dispatched after it commits"""

    audit_records: List[AuditRecord] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)

    def audit(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: Any,
        actor: Optional[str],
        metadata: Dict[str, Any],
    ) -> None:
        self.audit_records.append(
            AuditRecord(
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id is not None else None,
                actor=actor,
                metadata=metadata,
            )
        )

    def event(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.append(DomainEvent(event_type=event_type, payload=payload))

    def dispatch(self, sink: AuditSink, publisher: Optional[EventPublisher] = None) -> None:
        for record in self.audit_records:
            try:
                sink.log(
                    record.action,
                    record.entity_type,
                    record.entity_id,
                    actor=record.actor,
                    classification=record.classification,
                    metadata=record.metadata,
                )
            except Exception as e:
                dispatch_failure_counter.labels(target="audit").inc()
                logger.error(
                    f"Audit sink failed: {e}",
                    extra={"audit_action": record.action.value, "entity_id": record.entity_id},
                )

        if publisher is None:
            return
        for event in self.events:
            try:
                publisher.publish(event)
            except Exception as e:
                dispatch_failure_counter.labels(target="events").inc()
                logger.error(f"Event publish failed: {e}", extra={"event_type": event.event_type})

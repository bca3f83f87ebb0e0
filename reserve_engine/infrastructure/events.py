"""Outbound domain events"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Protocol
from reserve_engine.utils.date_utils import utcnow


@dataclass
class DomainEvent:
    event_type: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
            **self.payload,
        }


class EventPublisher(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventPublisher:
    """Collects events in order; used in tests and when no webhook is configured"""

    def __init__(self):
        self.events: List[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]

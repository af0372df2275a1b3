"""Domain events consumed by the engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from core.constants import EventType
from core.exceptions import ValidationError
from core.utils import utc_now


@dataclass
class DomainEvent:
    """A typed business event emitted by the surrounding CRUD layer.

    The engine only consumes these; stage changes it causes through an
    action are re-emitted by the surrounding system as new events.
    """

    type: EventType
    organization_id: str
    subject_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=utc_now)

    @property
    def message_text(self) -> str:
        return str(self.payload.get("message") or self.payload.get("text") or "")

    def to_dict(self) -> dict:
        """Serialize for storage on the run and for queueing."""
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "organization_id": self.organization_id,
            "subject_id": self.subject_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainEvent":
        """Parse an event dict, rejecting unknown event types."""
        try:
            event_type = EventType(data["type"])
        except (KeyError, ValueError):
            raise ValidationError(f"Unknown event type: {data.get('type')!r}")
        if not data.get("organization_id"):
            raise ValidationError("Event is missing organization_id")

        event = cls(
            type=event_type,
            organization_id=data["organization_id"],
            subject_id=data.get("subject_id"),
            payload=dict(data.get("payload") or {}),
        )
        if data.get("event_id"):
            event.event_id = data["event_id"]
        if data.get("occurred_at"):
            try:
                event.occurred_at = datetime.fromisoformat(data["occurred_at"])
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid occurred_at timestamp: {data['occurred_at']!r}")
        return event

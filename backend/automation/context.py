"""Read-only views handed to conditions and action handlers."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class SubjectSnapshot:
    """Current state of a subject (lead) as seen by the engine."""

    id: str
    organization_id: Optional[str] = None
    name: str = ""
    phone: str = ""
    email: str = ""
    stage_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    tag_ids: frozenset = frozenset()
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        """Named attribute, falling back to the free-form attribute map."""
        if name in ("id", "name", "phone", "email", "stage_id", "assigned_user_id"):
            return getattr(self, name)
        if name == "tag_ids":
            return sorted(self.tag_ids)
        return self.attributes.get(name)

    @classmethod
    def from_dict(cls, data: dict) -> "SubjectSnapshot":
        known = {"id", "organization_id", "name", "phone", "email", "stage_id", "assigned_user_id", "tag_ids"}
        return cls(
            id=str(data["id"]),
            organization_id=data.get("organization_id"),
            name=data.get("name") or "",
            phone=data.get("phone") or "",
            email=data.get("email") or "",
            stage_id=data.get("stage_id"),
            assigned_user_id=data.get("assigned_user_id"),
            tag_ids=frozenset(data.get("tag_ids") or ()),
            attributes=MappingProxyType({k: v for k, v in data.items() if k not in known}),
        )


@dataclass(frozen=True)
class ConditionContext:
    """Everything a condition predicate may look at.

    Built once per step from the subject snapshot and the triggering event
    so that evaluation stays pure.
    """

    subject: Optional[SubjectSnapshot]
    event_type: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def message_text(self) -> str:
        return str(self.payload.get("message") or self.payload.get("text") or "")


@dataclass(frozen=True)
class ActionContext:
    """Inputs to an action handler for one node visit."""

    organization_id: str
    run_id: str
    graph_id: str
    node_id: str
    subject: Optional[SubjectSnapshot]
    trigger: Mapping[str, Any] = field(default_factory=dict)
    attempt: int = 1

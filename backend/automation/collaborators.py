"""Interfaces to the systems the engine acts upon.

The engine reads subject state and performs side effects only through
these collaborators. Production wiring uses the CRM API client and the
Evolution WhatsApp transport from ``integrations``; the in-memory
implementations back tests and local development.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import uuid4

from automation.context import SubjectSnapshot


class SubjectRepository(ABC):
    """Subject (lead) state accessor and mutator."""

    @abstractmethod
    async def get_snapshot(self, organization_id: str, subject_id: str) -> Optional[SubjectSnapshot]:
        """Current state of a subject, or None if it no longer exists."""

    @abstractmethod
    async def set_stage(self, organization_id: str, subject_id: str, stage_id: str) -> None:
        ...

    @abstractmethod
    async def add_tag(self, organization_id: str, subject_id: str, tag_id: str) -> None:
        ...

    @abstractmethod
    async def remove_tag(self, organization_id: str, subject_id: str, tag_id: str) -> None:
        ...

    @abstractmethod
    async def assign_user(self, organization_id: str, subject_id: str, user_id: str) -> None:
        ...

    @abstractmethod
    async def create_task(self, organization_id: str, subject_id: str, task: dict) -> str:
        """Create a follow-up task and return its id."""


class MessagingTransport(ABC):
    """Outbound chat messages (WhatsApp)."""

    @abstractmethod
    async def send_text(
        self,
        organization_id: str,
        phone: str,
        text: str,
        session_id: Optional[str] = None,
    ) -> dict:
        """Send ``text`` to ``phone``; returns transport metadata (message id...)."""


class NotificationTransport(ABC):
    """In-app notifications to CRM users."""

    @abstractmethod
    async def notify(
        self,
        organization_id: str,
        user_id: str,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> None:
        ...


# ─── In-memory implementations ────────────────────────────────


class InMemorySubjectRepository(SubjectRepository):
    """Dict-backed subjects keyed by id."""

    def __init__(self, subjects: Optional[list[dict]] = None):
        self.subjects: dict[str, dict[str, Any]] = {}
        self.tasks: list[dict] = []
        for subject in subjects or []:
            self.put(subject)

    def put(self, subject: dict) -> None:
        data = dict(subject)
        data["tag_ids"] = set(data.get("tag_ids") or ())
        self.subjects[str(data["id"])] = data

    def _get(self, subject_id: str) -> dict:
        try:
            return self.subjects[str(subject_id)]
        except KeyError:
            raise LookupError(f"Subject {subject_id} not found")

    async def get_snapshot(self, organization_id: str, subject_id: str) -> Optional[SubjectSnapshot]:
        data = self.subjects.get(str(subject_id))
        if data is None:
            return None
        if data.get("organization_id") not in (None, organization_id):
            return None
        return SubjectSnapshot.from_dict(data)

    async def set_stage(self, organization_id: str, subject_id: str, stage_id: str) -> None:
        self._get(subject_id)["stage_id"] = stage_id

    async def add_tag(self, organization_id: str, subject_id: str, tag_id: str) -> None:
        self._get(subject_id)["tag_ids"].add(tag_id)

    async def remove_tag(self, organization_id: str, subject_id: str, tag_id: str) -> None:
        self._get(subject_id)["tag_ids"].discard(tag_id)

    async def assign_user(self, organization_id: str, subject_id: str, user_id: str) -> None:
        self._get(subject_id)["assigned_user_id"] = user_id

    async def create_task(self, organization_id: str, subject_id: str, task: dict) -> str:
        task_id = str(uuid4())
        self.tasks.append({"id": task_id, "organization_id": organization_id, "subject_id": subject_id, **task})
        return task_id


class InMemoryMessagingTransport(MessagingTransport):
    """Records sent messages. Queue exceptions in ``failures`` to make sends fail."""

    def __init__(self):
        self.sent: list[dict] = []
        self.failures: list[Exception] = []

    async def send_text(self, organization_id, phone, text, session_id=None) -> dict:
        if self.failures:
            raise self.failures.pop(0)
        message = {
            "id": str(uuid4()),
            "organization_id": organization_id,
            "phone": phone,
            "text": text,
            "session_id": session_id,
        }
        self.sent.append(message)
        return {"message_id": message["id"]}


class InMemoryNotificationTransport(NotificationTransport):
    """Records notifications."""

    def __init__(self):
        self.notifications: list[dict] = []

    async def notify(self, organization_id, user_id, title, message, data=None) -> None:
        self.notifications.append(
            {
                "organization_id": organization_id,
                "user_id": user_id,
                "title": title,
                "message": message,
                "data": data or {},
            }
        )

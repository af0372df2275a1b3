"""Wiring of the engine, scheduler and their collaborators."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from actions.base_action import ActionDependencies
from actions.registry import ActionDispatcher
from app.config import get_settings
from automation.collaborators import (
    InMemoryMessagingTransport,
    InMemoryNotificationTransport,
    InMemorySubjectRepository,
    MessagingTransport,
    NotificationTransport,
    SubjectRepository,
)
from automation.engine import ExecutionEngine
from automation.scheduler import Scheduler
from core.utils import utc_now
from services.graph_service import GraphStore

logger = structlog.get_logger(__name__)


@dataclass
class Collaborators:
    subjects: SubjectRepository
    messaging: MessagingTransport
    notifications: NotificationTransport

    async def close(self) -> None:
        closed = set()
        for collaborator in (self.subjects, self.messaging, self.notifications):
            if id(collaborator) in closed or not hasattr(collaborator, "close"):
                continue
            closed.add(id(collaborator))
            await collaborator.close()


def default_collaborators() -> Collaborators:
    """CRM API / Evolution clients when configured, in-memory stand-ins otherwise."""
    settings = get_settings()
    settings.validate_collaborators()

    if settings.CRM_API_URL:
        from integrations.crm_client import CrmApiClient

        crm = CrmApiClient()
        subjects, notifications = crm, crm
    else:
        logger.warning("CRM_API_URL not set, using in-memory subject store")
        subjects, notifications = InMemorySubjectRepository(), InMemoryNotificationTransport()

    if settings.EVOLUTION_API_URL:
        from integrations.evolution import EvolutionMessagingTransport

        messaging = EvolutionMessagingTransport()
    else:
        messaging = InMemoryMessagingTransport()

    return Collaborators(subjects=subjects, messaging=messaging, notifications=notifications)


@dataclass
class AutomationRuntime:
    engine: ExecutionEngine
    scheduler: Scheduler
    graph_store: GraphStore
    collaborators: Collaborators


def build_runtime(
    session_factory,
    collaborators: Optional[Collaborators] = None,
    clock: Callable[[], datetime] = utc_now,
    http_client=None,
    **engine_options,
) -> AutomationRuntime:
    """Assemble an engine and scheduler sharing one session factory and clock."""
    settings = get_settings()
    collaborators = collaborators or default_collaborators()
    graph_store = GraphStore(session_factory)
    dispatcher = ActionDispatcher(
        ActionDependencies(
            subjects=collaborators.subjects,
            messaging=collaborators.messaging,
            notifications=collaborators.notifications,
            http_client=http_client,
            signing_secret=settings.WEBHOOK_SIGNING_SECRET or None,
        ),
        timeout=settings.ACTION_TIMEOUT_SECONDS,
    )
    engine = ExecutionEngine(
        session_factory,
        graph_store,
        dispatcher,
        collaborators.subjects,
        clock=clock,
        **engine_options,
    )
    scheduler = Scheduler(session_factory, engine, clock=clock)
    return AutomationRuntime(
        engine=engine,
        scheduler=scheduler,
        graph_store=graph_store,
        collaborators=collaborators,
    )

"""Celery task for queued domain events.

The events endpoint hands an event here when called with ``queue=true``;
the worker matches it against enabled graphs and starts the runs.
"""

import asyncio
import logging

from core.exceptions import ValidationError
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _handle_event(event_data: dict) -> list[str]:
    from automation.events import DomainEvent
    from automation.factory import build_runtime
    from db.worker_session import worker_session_factory

    event = DomainEvent.from_dict(event_data)
    async with worker_session_factory() as session_factory:
        runtime = build_runtime(session_factory)
        try:
            return await runtime.engine.handle_event(event)
        finally:
            await runtime.collaborators.close()


@celery_app.task(
    name="worker.tasks.events.process_event",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    queue="events",
)
def process_event(self, event_data: dict):
    """Start a run for every graph the event triggers.

    Only infrastructure failures (e.g. database unreachable) are retried;
    run failures are recorded on the runs themselves.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        run_ids = loop.run_until_complete(_handle_event(event_data))
        logger.info("Event %s started %d run(s)", event_data.get("event_id"), len(run_ids))
        return {"event_id": event_data.get("event_id"), "run_ids": run_ids}
    except ValidationError as exc:
        logger.warning("Event %s rejected: %s", event_data.get("event_id"), exc.message)
        return {"event_id": event_data.get("event_id"), "run_ids": [], "rejected": exc.message}
    except Exception as exc:
        logger.error("Event %s failed: %s", event_data.get("event_id"), exc, exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()

"""Domain event ingestion endpoint.

The CRM posts its business events here. Matching graphs start runs
either inline (default) or on the Celery worker when ``queue=true``.
When ``WEBHOOK_SIGNING_SECRET`` is set every request must carry a valid
signature over its raw body.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status as http_status

from api.schemas.event import EventAccepted, EventIngest
from app.config import get_settings
from app.dependencies import get_engine
from automation.engine import ExecutionEngine
from automation.events import DomainEvent
from core.webhook_signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


async def verify_signature(request: Request) -> None:
    """Reject unsigned or forged events when a signing secret is configured."""
    secret = get_settings().WEBHOOK_SIGNING_SECRET
    if not secret:
        return
    body = await request.body()
    if not verify_webhook_signature(
        body,
        secret,
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(TIMESTAMP_HEADER),
    ):
        logger.warning("Rejected event with invalid signature from %s", request.client.host if request.client else "?")
        raise HTTPException(
            status_code=http_status.HTTP_401_UNAUTHORIZED,
            detail="Invalid event signature",
        )


@router.post(
    "/",
    response_model=EventAccepted,
    status_code=http_status.HTTP_202_ACCEPTED,
    dependencies=[Depends(verify_signature)],
)
async def ingest_event(
    body: EventIngest,
    queue: bool = Query(False, description="Hand the event to the worker instead of running inline"),
    engine: ExecutionEngine = Depends(get_engine),
) -> EventAccepted:
    """
    Ingest a domain event and start a run for every matching trigger.
    """
    event = DomainEvent.from_dict(body.model_dump(mode="json", exclude_none=True))

    if queue:
        from worker.tasks.events import process_event

        process_event.delay(event.to_dict())
        logger.info("Event %s (%s) queued", event.event_id, event.type.value)
        return EventAccepted(event_id=event.event_id, queued=True)

    run_ids = await engine.handle_event(event)
    logger.info("Event %s (%s) started %d run(s)", event.event_id, event.type.value, len(run_ids))
    return EventAccepted(event_id=event.event_id, run_ids=run_ids)

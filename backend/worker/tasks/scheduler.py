"""Celery tasks driving the continuation scheduler.

``poll_continuations`` runs every minute via Celery Beat and resumes
every waiting run whose continuation is due. ``recover_stale_runs``
hands runs abandoned by a crashed worker back to the poller.
"""

import asyncio
import logging

from worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_poll_cycle() -> dict:
    """One poll over a task-scoped database engine."""
    from automation.factory import build_runtime
    from db.worker_session import worker_session_factory

    async with worker_session_factory() as session_factory:
        runtime = build_runtime(session_factory)
        try:
            result = await runtime.scheduler.poll()
        finally:
            await runtime.collaborators.close()
    return result.to_dict()


async def run_stale_recovery() -> dict:
    from automation.factory import build_runtime
    from db.worker_session import worker_session_factory

    async with worker_session_factory() as session_factory:
        runtime = build_runtime(session_factory)
        try:
            recovered = await runtime.scheduler.recover_stale_runs()
        finally:
            await runtime.collaborators.close()
    return {"recovered": recovered}


@celery_app.task(
    name="worker.tasks.scheduler.poll_continuations",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="scheduler",
)
def poll_continuations(self):
    """Resume waiting runs whose continuation is due."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(run_poll_cycle())
        if result["due"]:
            logger.info("Continuation poll done: %s", result)
        return result
    except Exception as exc:
        logger.error("Continuation poll failed: %s", exc, exc_info=True)
        raise self.retry(exc=exc)
    finally:
        loop.close()


@celery_app.task(
    name="worker.tasks.scheduler.recover_stale_runs",
    queue="scheduler",
)
def recover_stale_runs():
    """Move runs stuck in running/pending back to waiting."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(run_stale_recovery())
        if result["recovered"]:
            logger.warning("Recovered %d stale run(s)", result["recovered"])
        return result
    finally:
        loop.close()

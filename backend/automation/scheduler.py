"""Scheduler: durable continuations for delayed runs.

A delay node never blocks a worker. The engine writes a
``ScheduledContinuation`` row in the same transaction that moves the run
to ``waiting``; a recurring ``poll`` claims due rows and hands them back
to the engine. Everything lives in the database, so a restart between
scheduling and resuming loses nothing: the next poll picks up overdue
continuations.

Consuming a continuation and claiming its run are one transaction in
``ExecutionEngine.claim``: both compare-and-sets commit together or not at
all, so concurrent pollers never resume the same continuation twice and a
crash never leaves a waiting run without a pending continuation. Losing
the claim is a silent skip.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core import metrics
from core.constants import RunStatus
from core.utils import utc_now
from db.models.automation_run import AutomationRun
from db.models.continuation import ScheduledContinuation

logger = structlog.get_logger(__name__)


async def schedule_continuation(
    session: AsyncSession,
    run_id: str,
    organization_id: str,
    resume_at: datetime,
    resume_node_id: str,
) -> ScheduledContinuation:
    """Add a continuation row to the caller's transaction."""
    continuation = ScheduledContinuation(
        run_id=run_id,
        organization_id=organization_id,
        resume_at=resume_at,
        resume_node_id=resume_node_id,
    )
    session.add(continuation)
    return continuation


async def consume_pending(session: AsyncSession, run_id: str, now: datetime) -> int:
    """Mark every unconsumed continuation of a run as consumed."""
    result = await session.execute(
        update(ScheduledContinuation)
        .where(
            ScheduledContinuation.run_id == run_id,
            ScheduledContinuation.consumed_at.is_(None),
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


@dataclass
class PollResult:
    """Outcome of one poll cycle."""

    due: int = 0
    resumed: int = 0
    skipped: int = 0
    errors: int = 0
    run_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "due": self.due,
            "resumed": self.resumed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class Scheduler:
    """Polls due continuations and resumes their runs through the engine."""

    def __init__(
        self,
        session_factory,
        engine,
        clock: Callable[[], datetime] = utc_now,
        batch_size: Optional[int] = None,
        stale_after: Optional[timedelta] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.engine = engine
        self.clock = clock
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE
        self.stale_after = stale_after or timedelta(minutes=settings.STALE_RUN_MINUTES)

    async def schedule(
        self, run_id: str, organization_id: str, resume_at: datetime, resume_node_id: str
    ) -> str:
        """Persist a continuation in its own transaction; returns its id."""
        async with self.session_factory() as session:
            continuation = await schedule_continuation(
                session, run_id, organization_id, resume_at, resume_node_id
            )
            await session.commit()
            return continuation.id

    async def due_continuations(self, now: datetime, limit: int) -> list[ScheduledContinuation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ScheduledContinuation)
                .where(
                    ScheduledContinuation.consumed_at.is_(None),
                    ScheduledContinuation.resume_at <= now,
                )
                .order_by(ScheduledContinuation.resume_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def poll(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> PollResult:
        """Resume every run whose continuation is due at ``now``.

        A failure while resuming one run is counted and logged; the cycle
        carries on with the remaining continuations.
        """
        now = now or self.clock()
        outcome = PollResult()

        due = await self.due_continuations(now, limit or self.batch_size)
        outcome.due = len(due)

        for continuation in due:
            try:
                resumed = await self.engine.resume(
                    continuation.run_id, continuation.resume_node_id, continuation_id=continuation.id
                )
            except Exception as e:
                outcome.errors += 1
                logger.error(
                    "Failed to resume run",
                    run_id=continuation.run_id,
                    continuation_id=continuation.id,
                    error=str(e),
                    exc_info=True,
                )
                continue
            if resumed:
                outcome.resumed += 1
                outcome.run_ids.append(continuation.run_id)
            else:
                outcome.skipped += 1

        metrics.record_poll(outcome.resumed, outcome.skipped, outcome.errors)
        if outcome.due:
            logger.info("Scheduler poll finished", **outcome.to_dict())
        return outcome

    async def recover_stale_runs(self, older_than: Optional[timedelta] = None) -> int:
        """Hand stuck runs back to the poller.

        Runs left ``running`` by a crashed worker (or ``pending`` because the
        process died between creating and claiming them) are moved to
        ``waiting`` with a continuation at their current node, due
        immediately. The visit is replayed, so actions are at-least-once.
        """
        now = self.clock()
        threshold = now - (older_than or self.stale_after)
        recovered = 0

        async with self.session_factory() as session:
            result = await session.execute(
                select(AutomationRun).where(
                    or_(
                        (AutomationRun.status == RunStatus.RUNNING.value)
                        & (AutomationRun.claimed_at < threshold),
                        (AutomationRun.status == RunStatus.PENDING.value)
                        & (AutomationRun.created_at < threshold),
                    )
                )
            )
            stale = list(result.scalars().all())

            for run in stale:
                moved = await session.execute(
                    update(AutomationRun)
                    .where(
                        AutomationRun.id == run.id,
                        AutomationRun.status == run.status,
                        AutomationRun.claim_token.is_(None)
                        if run.claim_token is None
                        else AutomationRun.claim_token == run.claim_token,
                    )
                    .values(status=RunStatus.WAITING.value, claim_token=None)
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount != 1:
                    continue
                await schedule_continuation(
                    session,
                    run.id,
                    run.organization_id,
                    resume_at=now,
                    resume_node_id=run.current_node_id or run.trigger_node_id,
                )
                recovered += 1
                logger.warning(
                    "Recovered stale run",
                    run_id=run.id,
                    previous_status=run.status,
                    node_id=run.current_node_id,
                )

            await session.commit()

        metrics.record_recovered(recovered)
        return recovered

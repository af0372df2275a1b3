"""Run Ledger: append-only execution log of node visits.

Entries are keyed by (run_id, node_id, attempt) where ``attempt`` is the
visit ordinal of the node within the run. A visit replayed after a crash
or a stale-run recovery maps onto the key already written, so the
ledger never holds two entries for the same logical step.
"""

from typing import Callable, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from automation.graph import NodeSpec
from core.utils import utc_now
from db.models.automation_run import RunLogEntry

logger = structlog.get_logger(__name__)


class RunLedger:
    """Reads and appends run log entries inside the caller's session."""

    def __init__(self, clock: Callable = utc_now):
        self.clock = clock

    async def next_attempt(self, session: AsyncSession, run_id: str, node_id: str) -> int:
        """Visit ordinal the next entry for ``node_id`` would carry."""
        count = await session.scalar(
            select(func.count())
            .select_from(RunLogEntry)
            .where(RunLogEntry.run_id == run_id, RunLogEntry.node_id == node_id)
        )
        return (count or 0) + 1

    async def find(
        self, session: AsyncSession, run_id: str, node_id: str, attempt: int
    ) -> Optional[RunLogEntry]:
        return await session.scalar(
            select(RunLogEntry).where(
                RunLogEntry.run_id == run_id,
                RunLogEntry.node_id == node_id,
                RunLogEntry.attempt == attempt,
            )
        )

    async def record(
        self,
        session: AsyncSession,
        run_id: str,
        node: NodeSpec,
        kind: str,
        outcome: str,
        result: Optional[dict] = None,
        attempt: Optional[int] = None,
    ) -> RunLogEntry:
        """Append one entry, or return the existing entry for the same visit.

        The insert runs in a savepoint; the caller commits.
        """
        if attempt is None:
            attempt = await self.next_attempt(session, run_id, node.id)

        existing = await self.find(session, run_id, node.id, attempt)
        if existing is not None:
            logger.info("Ledger entry already recorded for visit", run_id=run_id, node_id=node.id, attempt=attempt)
            return existing

        last = await session.scalar(
            select(func.max(RunLogEntry.sequence)).where(RunLogEntry.run_id == run_id)
        )
        entry = RunLogEntry(
            run_id=run_id,
            sequence=(last or 0) + 1,
            node_id=node.id,
            node_kind=node.kind,
            kind=kind,
            outcome=outcome,
            attempt=attempt,
            result=result or {},
            logged_at=self.clock(),
        )
        try:
            async with session.begin_nested():
                session.add(entry)
        except IntegrityError:
            # Another episode of the same run wrote this visit first
            existing = await self.find(session, run_id, node.id, attempt)
            if existing is None:
                raise
            logger.info("Ledger entry already recorded for visit", run_id=run_id, node_id=node.id, attempt=attempt)
            return existing
        return entry

    async def entries(self, session: AsyncSession, run_id: str) -> list[RunLogEntry]:
        """All entries of a run in visit order."""
        result = await session.execute(
            select(RunLogEntry)
            .where(RunLogEntry.run_id == run_id)
            .order_by(RunLogEntry.sequence)
        )
        return list(result.scalars().all())

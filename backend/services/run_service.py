"""Run history queries for operators."""

from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.ledger import RunLedger
from core.exceptions import NotFoundError
from db.models.automation_run import AutomationRun, RunLogEntry
from db.models.continuation import ScheduledContinuation
from services.base import BaseService


class RunService(BaseService[AutomationRun]):
    """Read access to runs, their ledgers and pending continuations."""

    def __init__(self, db: AsyncSession):
        super().__init__(AutomationRun, db)
        self.ledger = RunLedger()

    async def list_runs(
        self,
        organization_id: str,
        graph_id: Optional[str] = None,
        status: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[AutomationRun], int]:
        return await self.list(
            organization_id=organization_id,
            offset=offset,
            limit=limit,
            filters={"graph_id": graph_id, "status": status},
        )

    async def get_run(self, run_id: str, organization_id: Optional[str] = None) -> AutomationRun:
        if organization_id:
            run = await self.get_by_id_and_org(run_id, organization_id)
        else:
            run = await self.get_by_id(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        return run

    async def get_ledger(self, run_id: str) -> list[RunLogEntry]:
        return await self.ledger.entries(self.db, run_id)

    async def pending_continuation(self, run_id: str) -> Optional[ScheduledContinuation]:
        return await self.db.scalar(
            select(ScheduledContinuation).where(
                ScheduledContinuation.run_id == run_id,
                ScheduledContinuation.consumed_at.is_(None),
            )
        )

    async def status_counts(self, organization_id: str, graph_id: Optional[str] = None) -> dict[str, int]:
        query = (
            select(AutomationRun.status, func.count())
            .where(AutomationRun.organization_id == organization_id)
            .group_by(AutomationRun.status)
        )
        if graph_id:
            query = query.where(AutomationRun.graph_id == graph_id)
        result = await self.db.execute(query)
        return {status: count for status, count in result.all()}

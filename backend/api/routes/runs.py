"""Automation run history and management endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import MessageResponse, PaginationParams
from api.schemas.run import (
    RetriggerResponse,
    RunDetailResponse,
    RunListResponse,
    RunLogEntryResponse,
    RunResponse,
)
from app.dependencies import get_db, get_engine
from automation.engine import ExecutionEngine
from services.run_service import RunService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])


@router.get("/", response_model=RunListResponse)
async def list_runs(
    organization_id: str = Query(..., description="Organization scope"),
    pagination: PaginationParams = Depends(),
    graph_id: Optional[str] = Query(None, description="Filter by graph ID"),
    run_status: Optional[str] = Query(None, alias="status", description="Filter by run status"),
    db: AsyncSession = Depends(get_db),
) -> RunListResponse:
    """
    List automation runs (paginated, newest first).
    """
    runs, total = await RunService(db).list_runs(
        organization_id,
        graph_id=graph_id,
        status=run_status,
        offset=pagination.offset,
        limit=pagination.per_page,
    )
    return RunListResponse(
        runs=[RunResponse.model_validate(run) for run in runs],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/{run_id}", response_model=RunDetailResponse)
async def get_run(
    run_id: str,
    organization_id: str = Query(..., description="Organization scope"),
    db: AsyncSession = Depends(get_db),
) -> RunDetailResponse:
    """
    Get a run with its ledger and, for waiting runs, when it resumes.
    """
    svc = RunService(db)
    run = await svc.get_run(run_id, organization_id)
    entries = await svc.get_ledger(run_id)
    continuation = await svc.pending_continuation(run_id)

    return RunDetailResponse(
        **RunResponse.model_validate(run).model_dump(),
        trigger_event=run.trigger_event,
        resume_at=continuation.resume_at if continuation else None,
        ledger=[RunLogEntryResponse.model_validate(e) for e in entries],
    )


@router.post("/{run_id}/cancel", response_model=MessageResponse)
async def cancel_run(
    run_id: str,
    organization_id: str = Query(..., description="Organization scope"),
    engine: ExecutionEngine = Depends(get_engine),
) -> MessageResponse:
    """
    Cancel a pending or waiting run.
    """
    await engine.cancel(run_id, organization_id)
    return MessageResponse(message=f"Run {run_id} cancelled", resource_id=run_id)


@router.post("/{run_id}/retrigger", response_model=RetriggerResponse)
async def retrigger_run(
    run_id: str,
    organization_id: str = Query(..., description="Organization scope"),
    engine: ExecutionEngine = Depends(get_engine),
) -> RetriggerResponse:
    """
    Start a new run from a finished run's trigger event.
    """
    new_run_id = await engine.retrigger(run_id, organization_id)
    logger.info("Run %s re-triggered as %s", run_id, new_run_id)
    return RetriggerResponse(run_id=new_run_id, retry_of_run_id=run_id)

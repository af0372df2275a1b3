"""Automation run and ledger schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any


class RunResponse(BaseModel):
    """Automation run information response."""

    id: str = Field(description="Run ID")
    graph_id: str = Field(description="Graph being executed")
    organization_id: str = Field(description="Owning organization")
    trigger_node_id: str = Field(description="Trigger node that fired")
    subject_id: Optional[str] = Field(default=None, description="Business entity the run acts upon")
    status: str = Field(description="pending, running, waiting, completed or failed")
    current_node_id: Optional[str] = Field(default=None, description="Node being visited or resumed at")
    step_count: int = Field(default=0, description="Node visits performed so far")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_kind: Optional[str] = Field(default=None, description="Stable failure kind")
    error_message: Optional[str] = None
    failed_node_id: Optional[str] = None
    retry_of_run_id: Optional[str] = Field(default=None, description="Run this one re-triggers")

    class Config:
        from_attributes = True


class RunLogEntryResponse(BaseModel):
    """One ledger entry of a run."""

    sequence: int
    node_id: str
    node_kind: str
    kind: str
    outcome: str
    attempt: int
    result: Optional[Dict[str, Any]] = None
    logged_at: datetime

    class Config:
        from_attributes = True


class RunDetailResponse(RunResponse):
    """Run with its ledger and pending resume time."""

    trigger_event: Optional[Dict[str, Any]] = None
    resume_at: Optional[datetime] = Field(default=None, description="When a waiting run resumes")
    ledger: List[RunLogEntryResponse] = Field(default_factory=list)


class RunListResponse(BaseModel):
    """Paginated list of runs."""

    runs: List[RunResponse] = Field(description="List of runs")
    total: int = Field(description="Total number of runs")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class RetriggerResponse(BaseModel):
    run_id: str = Field(description="The new run")
    retry_of_run_id: str

"""Run and run-ledger models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RunStatus
from db.base import BaseModel


class AutomationRun(BaseModel):
    """One execution of an automation graph for one subject.

    Created when a trigger fires; mutated only by the execution engine;
    terminal once status is completed or failed.

    Attributes:
        graph_id: Graph being executed
        organization_id: Owning organization
        trigger_node_id: Trigger node that fired
        subject_id: Business entity the run acts upon (typically a lead)
        status: pending, running, waiting, completed, failed
        current_node_id: Node being (or about to be) visited
        trigger_event: Snapshot of the event that created the run
        step_count: Node visits performed so far (step budget)
        claimed_at: When the current running episode was claimed
        claim_token: Fencing token of the current running episode
        error_message / error_kind / failed_node_id: Failure detail
        retry_of_run_id: Run this one re-triggers, if any
    """

    __tablename__ = "automation_runs"

    graph_id: Mapped[str] = mapped_column(
        ForeignKey("automation_graphs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    trigger_node_id: Mapped[str] = mapped_column(nullable=False)
    subject_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(default=RunStatus.PENDING.value, index=True)
    current_node_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    trigger_event: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
    step_count: Mapped[int] = mapped_column(default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    claim_token: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    failed_node_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    retry_of_run_id: Mapped[Optional[str]] = mapped_column(nullable=True)

    log_entries: Mapped[list["RunLogEntry"]] = relationship(
        "RunLogEntry",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunLogEntry.sequence",
        lazy="noload",
    )

    __table_args__ = (
        Index("ix_runs_status_claimed", "status", "claimed_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return RunStatus(self.status).is_terminal


class RunLogEntry(BaseModel):
    """Append-only ledger entry: one node visit of one run.

    ``attempt`` is the visit ordinal of ``node_id`` within the run, so a
    visit replayed after a crash maps onto the same (run, node, attempt)
    key and is written only once.
    """

    __tablename__ = "automation_run_log"

    run_id: Mapped[str] = mapped_column(
        ForeignKey("automation_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    node_id: Mapped[str] = mapped_column(nullable=False)
    node_kind: Mapped[str] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(nullable=False)
    outcome: Mapped[str] = mapped_column(nullable=False)
    attempt: Mapped[int] = mapped_column(default=1)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
    logged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    run: Mapped["AutomationRun"] = relationship(
        "AutomationRun", back_populates="log_entries", lazy="noload"
    )

    __table_args__ = (
        UniqueConstraint("run_id", "node_id", "attempt", name="uq_run_log_visit"),
        UniqueConstraint("run_id", "sequence", name="uq_run_log_sequence"),
    )

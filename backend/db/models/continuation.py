"""ScheduledContinuation model: durable timer for waiting runs."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class ScheduledContinuation(BaseModel):
    """Where and when to resume a waiting run.

    Written in the same transaction that moves the run to ``waiting``;
    consumed exactly once by setting ``consumed_at`` with a
    compare-and-set update.

    Attributes:
        run_id: Run to resume
        organization_id: Owning organization
        resume_at: Earliest time the run may resume
        resume_node_id: Node to resume at (the delay node's successor)
        consumed_at: Set when a poller claims the continuation
    """

    __tablename__ = "scheduled_continuations"

    run_id: Mapped[str] = mapped_column(
        ForeignKey("automation_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    resume_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resume_node_id: Mapped[str] = mapped_column(nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    __table_args__ = (
        Index("ix_continuations_due", "consumed_at", "resume_at"),
    )

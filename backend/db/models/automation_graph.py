"""Automation graph models: the authored workflow definition."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import EventType
from db.base import BaseModel, SoftDeleteMixin


class AutomationGraph(SoftDeleteMixin, BaseModel):
    """An operator-authored automation: a graph of nodes and edges.

    Attributes:
        organization_id: Owning organization (tenant)
        name: Display name
        description: Free text description
        is_enabled: Whether new Runs may be created from this graph
        trigger_type: Event type the graph's trigger node(s) listen to
        version: Incremented on every structural edit
    """

    __tablename__ = "automation_graphs"

    organization_id: Mapped[str] = mapped_column(nullable=False, index=True)
    name: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(nullable=False, default="")
    is_enabled: Mapped[bool] = mapped_column(default=False, index=True)
    trigger_type: Mapped[str] = mapped_column(
        default=EventType.MANUAL.value, index=True
    )
    version: Mapped[int] = mapped_column(default=1)

    # "noload" relationships: async sessions must not lazy-load,
    # the graph store loads nodes and edges explicitly.
    nodes: Mapped[list["AutomationNode"]] = relationship(
        "AutomationNode",
        back_populates="graph",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    edges: Mapped[list["AutomationEdge"]] = relationship(
        "AutomationEdge",
        back_populates="graph",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    __table_args__ = (
        Index("ix_graphs_org_trigger", "organization_id", "trigger_type", "is_enabled"),
    )


class AutomationNode(BaseModel):
    """A single node of an automation graph.

    ``config`` is a free-form payload whose meaning depends on ``kind``.
    Position is presentation-only.
    """

    __tablename__ = "automation_nodes"

    graph_id: Mapped[str] = mapped_column(
        ForeignKey("automation_graphs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(nullable=False)
    label: Mapped[str] = mapped_column(nullable=False, default="")
    config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
    position_x: Mapped[float] = mapped_column(default=0.0)
    position_y: Mapped[float] = mapped_column(default=0.0)

    graph: Mapped["AutomationGraph"] = relationship(
        "AutomationGraph", back_populates="nodes", lazy="noload"
    )


class AutomationEdge(BaseModel):
    """Directed edge between two nodes of the same graph.

    ``branch_key`` selects the edge when leaving a condition node;
    ``None`` means default/unconditional.
    """

    __tablename__ = "automation_edges"

    graph_id: Mapped[str] = mapped_column(
        ForeignKey("automation_graphs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_node_id: Mapped[str] = mapped_column(nullable=False, index=True)
    target_node_id: Mapped[str] = mapped_column(nullable=False)
    branch_key: Mapped[Optional[str]] = mapped_column(nullable=True)

    graph: Mapped["AutomationGraph"] = relationship(
        "AutomationGraph", back_populates="edges", lazy="noload"
    )

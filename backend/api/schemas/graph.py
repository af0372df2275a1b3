"""Automation graph authoring schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any


class GraphCreate(BaseModel):
    """Request to create an automation graph."""

    name: str = Field(min_length=1, description="Graph name")
    description: str = Field(default="", description="Graph description")
    trigger_type: str = Field(description="Event type the trigger nodes listen to")


class GraphResponse(BaseModel):
    """Automation graph information response."""

    id: str = Field(description="Graph ID")
    organization_id: str = Field(description="Owning organization")
    name: str = Field(description="Graph name")
    description: str = Field(description="Graph description")
    trigger_type: str = Field(description="Event type the trigger nodes listen to")
    is_enabled: bool = Field(description="Whether new runs may start from this graph")
    version: int = Field(description="Incremented on every structural edit")
    created_at: datetime = Field(description="Creation timestamp")

    class Config:
        from_attributes = True


class GraphListResponse(BaseModel):
    """Paginated list of graphs."""

    graphs: List[GraphResponse] = Field(description="List of graphs")
    total: int = Field(description="Total number of graphs")
    page: int = Field(description="Current page number")
    per_page: int = Field(description="Items per page")


class NodeCreate(BaseModel):
    """Request to add a node to a graph."""

    kind: str = Field(description="trigger, condition, action or delay")
    label: str = Field(default="", description="Display label")
    config: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific configuration")
    position_x: float = Field(default=0.0)
    position_y: float = Field(default=0.0)


class NodeUpdate(BaseModel):
    """Request to replace a node's configuration."""

    config: Dict[str, Any] = Field(description="Kind-specific configuration")
    label: Optional[str] = Field(default=None, description="Display label")


class NodeResponse(BaseModel):
    id: str
    graph_id: str
    kind: str
    label: str
    config: Optional[Dict[str, Any]] = None
    position_x: float
    position_y: float

    class Config:
        from_attributes = True


class EdgeCreate(BaseModel):
    """Request to connect two nodes of a graph."""

    source_node_id: str
    target_node_id: str
    branch_key: Optional[str] = Field(
        default=None, description="Condition branch selecting this edge; empty for the default edge"
    )


class EdgeResponse(BaseModel):
    id: str
    graph_id: str
    source_node_id: str
    target_node_id: str
    branch_key: Optional[str] = None

    class Config:
        from_attributes = True


class GraphDetailResponse(GraphResponse):
    """Graph with its nodes and edges."""

    nodes: List[NodeResponse] = Field(default_factory=list)
    edges: List[EdgeResponse] = Field(default_factory=list)


class ValidationReportResponse(BaseModel):
    """Result of validating a graph."""

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    dead_node_ids: List[str] = Field(default_factory=list)


class DeleteGraphResponse(BaseModel):
    deleted: bool = True
    hard_deleted: bool = Field(description="False when the graph was kept as soft-deleted for its runs")

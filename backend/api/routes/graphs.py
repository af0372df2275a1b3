"""Automation graph authoring endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status as http_status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import MessageResponse, PaginationParams
from api.schemas.graph import (
    DeleteGraphResponse,
    EdgeCreate,
    EdgeResponse,
    GraphCreate,
    GraphDetailResponse,
    GraphListResponse,
    GraphResponse,
    NodeCreate,
    NodeResponse,
    NodeUpdate,
    ValidationReportResponse,
)
from app.dependencies import get_db
from db.models.automation_graph import AutomationEdge, AutomationNode
from services.graph_service import GraphService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["graphs"])

OrgScope = Query(..., description="Organization scope")


@router.post("/", response_model=GraphResponse, status_code=http_status.HTTP_201_CREATED)
async def create_graph(
    body: GraphCreate,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> GraphResponse:
    """
    Create a disabled automation graph.
    """
    graph = await GraphService(db).create_graph(
        organization_id, body.name, body.trigger_type, body.description
    )
    return GraphResponse.model_validate(graph)


@router.get("/", response_model=GraphListResponse)
async def list_graphs(
    organization_id: str = OrgScope,
    pagination: PaginationParams = Depends(),
    trigger_type: Optional[str] = Query(None, description="Filter by trigger type"),
    is_enabled: Optional[bool] = Query(None, description="Filter by enabled flag"),
    db: AsyncSession = Depends(get_db),
) -> GraphListResponse:
    """
    List the organization's graphs (paginated, newest first). Deleted graphs are hidden.
    """
    graphs, total = await GraphService(db).list(
        organization_id=organization_id,
        offset=pagination.offset,
        limit=pagination.per_page,
        filters={"trigger_type": trigger_type, "is_enabled": is_enabled},
    )
    return GraphListResponse(
        graphs=[GraphResponse.model_validate(g) for g in graphs],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/{graph_id}", response_model=GraphDetailResponse)
async def get_graph(
    graph_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> GraphDetailResponse:
    graph = await GraphService(db).get_graph(graph_id, organization_id)
    nodes = await db.scalars(select(AutomationNode).where(AutomationNode.graph_id == graph_id))
    edges = await db.scalars(select(AutomationEdge).where(AutomationEdge.graph_id == graph_id))
    return GraphDetailResponse(
        **GraphResponse.model_validate(graph).model_dump(),
        nodes=[NodeResponse.model_validate(n) for n in nodes],
        edges=[EdgeResponse.model_validate(e) for e in edges],
    )


@router.delete("/{graph_id}", response_model=DeleteGraphResponse)
async def delete_graph(
    graph_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> DeleteGraphResponse:
    """
    Delete a graph. Graphs with runs are disabled and soft-deleted.
    """
    hard = await GraphService(db).delete_graph(graph_id, organization_id)
    return DeleteGraphResponse(hard_deleted=hard)


@router.post("/{graph_id}/validate", response_model=ValidationReportResponse)
async def validate_graph(
    graph_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> ValidationReportResponse:
    """
    Validate a graph without changing it.
    """
    report = await GraphService(db).validate(graph_id, organization_id)
    return ValidationReportResponse(**report.to_dict())


@router.post("/{graph_id}/enable", response_model=ValidationReportResponse)
async def enable_graph(
    graph_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> ValidationReportResponse:
    """
    Enable a graph; refused with 422 and the report when it is invalid.
    """
    report = await GraphService(db).enable(graph_id, organization_id)
    return ValidationReportResponse(**report.to_dict())


@router.post("/{graph_id}/disable", response_model=GraphResponse)
async def disable_graph(
    graph_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> GraphResponse:
    graph = await GraphService(db).disable(graph_id, organization_id)
    return GraphResponse.model_validate(graph)


# ─── Nodes & edges ────────────────────────────────────────


@router.post("/{graph_id}/nodes", response_model=NodeResponse, status_code=http_status.HTTP_201_CREATED)
async def add_node(
    graph_id: str,
    body: NodeCreate,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> NodeResponse:
    node = await GraphService(db).add_node(
        graph_id,
        body.kind,
        body.config,
        body.label,
        organization_id=organization_id,
        position=(body.position_x, body.position_y),
    )
    return NodeResponse.model_validate(node)


@router.put("/{graph_id}/nodes/{node_id}", response_model=NodeResponse)
async def update_node(
    graph_id: str,
    node_id: str,
    body: NodeUpdate,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> NodeResponse:
    node = await GraphService(db).update_node_config(node_id, body.config, body.label, organization_id)
    return NodeResponse.model_validate(node)


@router.delete("/{graph_id}/nodes/{node_id}", response_model=MessageResponse)
async def remove_node(
    graph_id: str,
    node_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await GraphService(db).remove_node(node_id, organization_id)
    return MessageResponse(message=f"Node {node_id} removed", resource_id=node_id)


@router.post("/{graph_id}/edges", response_model=EdgeResponse, status_code=http_status.HTTP_201_CREATED)
async def add_edge(
    graph_id: str,
    body: EdgeCreate,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> EdgeResponse:
    edge = await GraphService(db).add_edge(
        graph_id,
        body.source_node_id,
        body.target_node_id,
        body.branch_key,
        organization_id=organization_id,
    )
    return EdgeResponse.model_validate(edge)


@router.delete("/{graph_id}/edges/{edge_id}", response_model=MessageResponse)
async def remove_edge(
    graph_id: str,
    edge_id: str,
    organization_id: str = OrgScope,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await GraphService(db).remove_edge(edge_id, organization_id)
    return MessageResponse(message=f"Edge {edge_id} removed", resource_id=edge_id)

"""Graph Store: authoring and loading of automation graphs."""

import logging
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.graph import GraphDefinition, ValidationReport, validate_graph
from core.constants import EventType, NodeKind
from core.exceptions import GraphValidationError, NotFoundError, ValidationError
from db.models.automation_graph import AutomationEdge, AutomationGraph, AutomationNode
from db.models.automation_run import AutomationRun
from services.base import BaseService

logger = logging.getLogger(__name__)

_NODE_KINDS = {k.value for k in NodeKind}


class GraphService(BaseService[AutomationGraph]):
    """Graph authoring inside the caller's session.

    Every structural edit bumps the graph version. Edits to an enabled
    graph are re-validated and refused if they would leave it invalid.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(AutomationGraph, db)

    # ─── Graphs ────────────────────────────────────────────

    async def create_graph(
        self,
        organization_id: str,
        name: str,
        trigger_type: str,
        description: str = "",
    ) -> AutomationGraph:
        """Create a new, disabled graph."""
        try:
            EventType(trigger_type)
        except ValueError:
            raise ValidationError(f"Unknown trigger type: {trigger_type!r}")
        return await self.create({
            "organization_id": organization_id,
            "name": name,
            "description": description,
            "trigger_type": trigger_type,
            "is_enabled": False,
            "version": 1,
        })

    async def get_graph(
        self, graph_id: str, organization_id: Optional[str] = None, include_deleted: bool = False
    ) -> AutomationGraph:
        if organization_id:
            graph = await self.get_by_id_and_org(graph_id, organization_id, include_deleted)
        else:
            graph = await self.get_by_id(graph_id, include_deleted)
        if graph is None:
            raise NotFoundError(f"Automation graph {graph_id} not found")
        return graph

    async def load_definition(self, graph_id: str, organization_id: Optional[str] = None) -> GraphDefinition:
        """Load a graph's nodes and edges into an in-memory definition.

        Soft-deleted graphs still load so their waiting runs can finish.
        """
        graph = await self.get_graph(graph_id, organization_id, include_deleted=True)
        nodes = await self.db.scalars(
            select(AutomationNode).where(AutomationNode.graph_id == graph_id).order_by(AutomationNode.created_at)
        )
        edges = await self.db.scalars(
            select(AutomationEdge).where(AutomationEdge.graph_id == graph_id).order_by(AutomationEdge.created_at)
        )
        return GraphDefinition.from_rows(graph, list(nodes), list(edges))

    async def validate(self, graph_id: str, organization_id: Optional[str] = None) -> ValidationReport:
        return validate_graph(await self.load_definition(graph_id, organization_id))

    async def enable(self, graph_id: str, organization_id: Optional[str] = None) -> ValidationReport:
        """Enable a graph after validating it.

        Raises:
            GraphValidationError: If the graph has validation errors
        """
        graph = await self.get_graph(graph_id, organization_id)
        report = await self.validate(graph_id, organization_id)
        if not report.is_valid:
            raise GraphValidationError(report)
        graph.is_enabled = True
        await self.db.flush()
        logger.info("Automation graph %s enabled (version %d)", graph_id, graph.version)
        return report

    async def disable(self, graph_id: str, organization_id: Optional[str] = None) -> AutomationGraph:
        """Stop creating new runs. Runs already waiting are left to finish."""
        graph = await self.get_graph(graph_id, organization_id)
        graph.is_enabled = False
        await self.db.flush()
        logger.info("Automation graph %s disabled", graph_id)
        return graph

    async def delete_graph(self, graph_id: str, organization_id: Optional[str] = None) -> bool:
        """Delete a graph.

        Graphs with run history are disabled and soft-deleted so the runs
        keep resolving; graphs that never ran are removed with their
        nodes and edges.

        Returns:
            True if the graph was hard-deleted
        """
        graph = await self.get_graph(graph_id, organization_id)
        runs = await self.db.scalar(
            select(func.count()).select_from(AutomationRun).where(AutomationRun.graph_id == graph_id)
        )
        if runs:
            graph.is_enabled = False
            graph.soft_delete()
            await self.db.flush()
            return False

        await self.db.execute(delete(AutomationEdge).where(AutomationEdge.graph_id == graph_id))
        await self.db.execute(delete(AutomationNode).where(AutomationNode.graph_id == graph_id))
        await self.hard_delete(graph)
        return True

    async def _touch(self, graph: AutomationGraph) -> None:
        graph.version += 1
        await self.db.flush()
        if graph.is_enabled:
            report = await self.validate(graph.id)
            if not report.is_valid:
                raise GraphValidationError(report)

    # ─── Nodes ─────────────────────────────────────────────

    async def add_node(
        self,
        graph_id: str,
        kind: str,
        config: Optional[dict[str, Any]] = None,
        label: str = "",
        organization_id: Optional[str] = None,
        position: tuple[float, float] = (0.0, 0.0),
    ) -> AutomationNode:
        graph = await self.get_graph(graph_id, organization_id)
        if kind not in _NODE_KINDS:
            raise ValidationError(f"Unknown node kind: {kind!r}")
        node = AutomationNode(
            graph_id=graph.id,
            kind=kind,
            config=dict(config or {}),
            label=label,
            position_x=position[0],
            position_y=position[1],
        )
        self.db.add(node)
        await self._touch(graph)
        return node

    async def _get_node(self, node_id: str) -> AutomationNode:
        node = await self.db.get(AutomationNode, node_id)
        if node is None:
            raise NotFoundError(f"Automation node {node_id} not found")
        return node

    async def update_node_config(
        self,
        node_id: str,
        config: dict[str, Any],
        label: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> AutomationNode:
        node = await self._get_node(node_id)
        graph = await self.get_graph(node.graph_id, organization_id)
        node.config = dict(config)
        if label is not None:
            node.label = label
        await self._touch(graph)
        return node

    async def remove_node(self, node_id: str, organization_id: Optional[str] = None) -> None:
        """Remove a node together with every edge touching it."""
        node = await self._get_node(node_id)
        graph = await self.get_graph(node.graph_id, organization_id)
        await self.db.execute(
            delete(AutomationEdge).where(
                AutomationEdge.graph_id == graph.id,
                or_(AutomationEdge.source_node_id == node_id, AutomationEdge.target_node_id == node_id),
            )
        )
        await self.db.delete(node)
        await self._touch(graph)

    # ─── Edges ─────────────────────────────────────────────

    async def add_edge(
        self,
        graph_id: str,
        source_node_id: str,
        target_node_id: str,
        branch_key: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> AutomationEdge:
        graph = await self.get_graph(graph_id, organization_id)
        for node_id in (source_node_id, target_node_id):
            node = await self.db.get(AutomationNode, node_id)
            if node is None or node.graph_id != graph.id:
                raise ValidationError(f"Node {node_id} does not belong to graph {graph.id}")
        edge = AutomationEdge(
            graph_id=graph.id,
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            branch_key=branch_key,
        )
        self.db.add(edge)
        await self._touch(graph)
        return edge

    async def remove_edge(self, edge_id: str, organization_id: Optional[str] = None) -> None:
        edge = await self.db.get(AutomationEdge, edge_id)
        if edge is None:
            raise NotFoundError(f"Automation edge {edge_id} not found")
        graph = await self.get_graph(edge.graph_id, organization_id)
        await self.db.delete(edge)
        await self._touch(graph)


class GraphStore:
    """Read side of the graph store used by the engine and matcher.

    Opens its own short-lived sessions; graphs are read-only during
    execution.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def load(self, graph_id: str) -> GraphDefinition:
        async with self.session_factory() as session:
            return await GraphService(session).load_definition(graph_id)

    async def candidate_graphs(self, organization_id: str, event_type: str) -> list[GraphDefinition]:
        """Enabled, non-deleted graphs of the organization triggered by ``event_type``.

        Loads every candidate's nodes and edges in two queries.
        """
        async with self.session_factory() as session:
            graphs = list(
                await session.scalars(
                    select(AutomationGraph).where(
                        AutomationGraph.organization_id == organization_id,
                        AutomationGraph.trigger_type == event_type,
                        AutomationGraph.is_enabled == True,  # noqa: E712
                        AutomationGraph.is_deleted == False,  # noqa: E712
                    )
                )
            )
            if not graphs:
                return []

            ids = [g.id for g in graphs]
            nodes = await session.scalars(
                select(AutomationNode).where(AutomationNode.graph_id.in_(ids)).order_by(AutomationNode.created_at)
            )
            edges = await session.scalars(
                select(AutomationEdge).where(AutomationEdge.graph_id.in_(ids)).order_by(AutomationEdge.created_at)
            )

            nodes_by_graph: dict[str, list] = {gid: [] for gid in ids}
            for node in nodes:
                nodes_by_graph[node.graph_id].append(node)
            edges_by_graph: dict[str, list] = {gid: [] for gid in ids}
            for edge in edges:
                edges_by_graph[edge.graph_id].append(edge)

            return [GraphDefinition.from_rows(g, nodes_by_graph[g.id], edges_by_graph[g.id]) for g in graphs]

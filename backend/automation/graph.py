"""In-memory automation graph and its validation.

Graphs are stored as node and edge rows; the engine loads them once per
advance call into a ``GraphDefinition`` (nodes indexed by id, outgoing
edges as adjacency lists) and never mutates them.

Node config shapes:

    trigger:    {"event_type": "lead_stage_changed", "to_stage_id": "..."}
    condition:  {"condition_type": "has_tag", "tag_id": "..."}
    action:     {"action_type": "send_message", "message": "Olá {{lead.name}}"}
    delay:      {"delay_value": 2, "delay_type": "days"}
                (legacy: {"delay_minutes": 30, "delay_hours": 1, "delay_days": 0})
"""

import math
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from automation.retry_strategies import RetryStrategy
from core.constants import (
    ACTION_ALIASES,
    ActionKind,
    ConditionKind,
    DelayUnit,
    NodeKind,
)
from core.exceptions import ConfigurationError, MissingNodeError


@dataclass(frozen=True)
class NodeSpec:
    """Execution-relevant view of a node row."""

    id: str
    kind: str
    config: dict[str, Any] = field(default_factory=dict)
    label: str = ""


@dataclass(frozen=True)
class EdgeSpec:
    """Execution-relevant view of an edge row."""

    source: str
    target: str
    branch_key: Optional[str] = None


class GraphDefinition:
    """Adjacency structure for one automation graph."""

    def __init__(
        self,
        graph_id: str,
        nodes: list[NodeSpec],
        edges: list[EdgeSpec],
        trigger_type: Optional[str] = None,
        organization_id: Optional[str] = None,
        name: str = "",
    ):
        self.graph_id = graph_id
        self.trigger_type = trigger_type
        self.organization_id = organization_id
        self.name = name
        self.nodes: dict[str, NodeSpec] = {n.id: n for n in nodes}
        self.edges = list(edges)
        self._outgoing: dict[str, list[EdgeSpec]] = {n.id: [] for n in nodes}
        self._incoming: dict[str, int] = {n.id: 0 for n in nodes}
        for edge in self.edges:
            self._outgoing.setdefault(edge.source, []).append(edge)
            self._incoming[edge.target] = self._incoming.get(edge.target, 0) + 1

    @classmethod
    def from_rows(cls, graph, nodes, edges) -> "GraphDefinition":
        """Build from ORM rows (AutomationGraph, AutomationNode, AutomationEdge)."""
        return cls(
            graph_id=graph.id,
            trigger_type=graph.trigger_type,
            organization_id=graph.organization_id,
            name=graph.name,
            nodes=[
                NodeSpec(id=n.id, kind=n.kind, config=dict(n.config or {}), label=n.label or "")
                for n in nodes
            ],
            edges=[
                EdgeSpec(source=e.source_node_id, target=e.target_node_id, branch_key=e.branch_key)
                for e in edges
            ],
        )

    # ─── Lookup ───────────────────────────────────────────────

    def node(self, node_id: str) -> NodeSpec:
        """Return a node, raising a fatal error if the graph lacks it."""
        spec = self.nodes.get(node_id)
        if spec is None:
            raise MissingNodeError(f"Node {node_id} not found in graph {self.graph_id}", node_id=node_id)
        return spec

    def outgoing(self, node_id: str) -> list[EdgeSpec]:
        return list(self._outgoing.get(node_id, []))

    def incoming_count(self, node_id: str) -> int:
        return self._incoming.get(node_id, 0)

    def trigger_nodes(self) -> list[NodeSpec]:
        return [n for n in self.nodes.values() if n.kind == NodeKind.TRIGGER.value]

    def single_successor(self, node_id: str) -> Optional[str]:
        """Target of the node's only outgoing edge, or None at a terminal node."""
        edges = self.outgoing(node_id)
        if not edges:
            return None
        if len(edges) > 1:
            raise ConfigurationError(
                f"Node {node_id} must have at most one outgoing edge, has {len(edges)}",
                node_id=node_id,
            )
        return edges[0].target

    def branch_target(self, node_id: str, branch_key: str) -> Optional[str]:
        """Target of the edge labelled ``branch_key``, else of the unlabelled default edge."""
        default = None
        for edge in self.outgoing(node_id):
            if edge.branch_key == branch_key:
                return edge.target
            if edge.branch_key is None and default is None:
                default = edge.target
        return default

    def reachable_from_triggers(self) -> set[str]:
        """Breadth-first walk from every trigger node."""
        seen: set[str] = set()
        queue = deque(n.id for n in self.trigger_nodes())
        while queue:
            node_id = queue.popleft()
            if node_id in seen:
                continue
            seen.add(node_id)
            for edge in self._outgoing.get(node_id, []):
                if edge.target in self.nodes and edge.target not in seen:
                    queue.append(edge.target)
        return seen


# ─── Node config helpers ──────────────────────────────────────

_UNIT_SECONDS = {
    DelayUnit.MINUTES.value: 60,
    DelayUnit.HOURS.value: 3600,
    DelayUnit.DAYS.value: 86400,
}


def delay_duration(config: dict) -> timedelta:
    """Duration expressed by a delay node's config.

    Accepts ``delay_value`` + ``delay_type`` (minutes/hours/days), or the
    older ``delay_minutes`` / ``delay_hours`` / ``delay_days`` fields.
    """
    if "delay_value" in config or "delay_type" in config:
        unit = str(config.get("delay_type") or DelayUnit.MINUTES.value).lower()
        if unit not in _UNIT_SECONDS:
            raise ConfigurationError(f"Unknown delay unit: {unit!r}")
        amount = _as_number(config.get("delay_value", 0), "delay_value")
        seconds = amount * _UNIT_SECONDS[unit]
    else:
        seconds = (
            _as_number(config.get("delay_minutes", config.get("minutes", 0)), "delay_minutes") * 60
            + _as_number(config.get("delay_hours", config.get("hours", 0)), "delay_hours") * 3600
            + _as_number(config.get("delay_days", config.get("days", 0)), "delay_days") * 86400
        )
    if seconds < 0:
        raise ConfigurationError("Delay duration must not be negative")
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise ConfigurationError(f"Delay of {seconds:g} seconds is too long")


def _as_number(value: Any, name: str) -> float:
    try:
        number = float(value or 0)
    except (TypeError, ValueError, OverflowError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ConfigurationError(f"{name} must be a finite number, got {value!r}")
    return number


def action_kind_of(config: dict) -> str:
    """Canonical action kind named by an action node config."""
    raw = config.get("action_type") or config.get("type")
    if not raw:
        raise ConfigurationError("Action node has no action_type")
    return ACTION_ALIASES.get(raw, raw)


def condition_kind_of(config: dict) -> str:
    return config.get("condition_type") or config.get("type") or ""


# ─── Validation ───────────────────────────────────────────────

@dataclass
class ValidationReport:
    """Outcome of validating a graph before it is enabled."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dead_node_ids: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "dead_node_ids": self.dead_node_ids,
        }


_SINGLE_EXIT_KINDS = (NodeKind.TRIGGER.value, NodeKind.ACTION.value, NodeKind.DELAY.value)
_KNOWN_KINDS = {k.value for k in NodeKind}
_KNOWN_ACTIONS = {k.value for k in ActionKind}
_KNOWN_CONDITIONS = {k.value for k in ConditionKind}


def validate_graph(graph: GraphDefinition) -> ValidationReport:
    """Check a graph against the structural invariants.

    Unreachable nodes are permitted but flagged as dead; they are never
    executed because traversal only follows edges from trigger nodes.
    """
    report = ValidationReport()

    triggers = graph.trigger_nodes()
    if not triggers:
        report.errors.append("Graph has no trigger node")

    for edge in graph.edges:
        for end in (edge.source, edge.target):
            if end not in graph.nodes:
                report.errors.append(f"Edge {edge.source}->{edge.target} references missing node {end}")

    for node in graph.nodes.values():
        if node.kind not in _KNOWN_KINDS:
            report.errors.append(f"Node {node.id} has unknown kind {node.kind!r}")
            continue

        outgoing = graph.outgoing(node.id)
        if node.kind in _SINGLE_EXIT_KINDS and len(outgoing) > 1:
            report.errors.append(f"{node.kind.capitalize()} node {node.id} has {len(outgoing)} outgoing edges")

        if node.kind == NodeKind.TRIGGER.value:
            _validate_trigger(graph, node, report)
        elif node.kind == NodeKind.CONDITION.value:
            _validate_condition(node, outgoing, report)
        elif node.kind == NodeKind.ACTION.value:
            try:
                kind = action_kind_of(node.config)
            except ConfigurationError as e:
                report.errors.append(f"Action node {node.id}: {e.message}")
            else:
                if kind not in _KNOWN_ACTIONS:
                    report.errors.append(f"Action node {node.id} has unknown action kind {kind!r}")
            retry = node.config.get("retry")
            if isinstance(retry, dict):
                try:
                    RetryStrategy.from_dict(retry)
                except ConfigurationError as e:
                    report.errors.append(f"Action node {node.id}: {e.message}")
        elif node.kind == NodeKind.DELAY.value:
            try:
                delay_duration(node.config)
            except ConfigurationError as e:
                report.errors.append(f"Delay node {node.id}: {e.message}")

    reachable = graph.reachable_from_triggers()
    for node_id in graph.nodes:
        if node_id not in reachable:
            report.dead_node_ids.append(node_id)
            report.warnings.append(f"Node {node_id} is unreachable from any trigger and will never run")

    return report


def _validate_trigger(graph: GraphDefinition, node: NodeSpec, report: ValidationReport) -> None:
    if graph.incoming_count(node.id):
        report.errors.append(f"Trigger node {node.id} has incoming edges")
    event_type = node.config.get("event_type")
    if event_type and graph.trigger_type and event_type != graph.trigger_type:
        report.errors.append(
            f"Trigger node {node.id} listens to {event_type!r} but the graph triggers on {graph.trigger_type!r}"
        )


def _validate_condition(node: NodeSpec, outgoing: list[EdgeSpec], report: ValidationReport) -> None:
    kind = condition_kind_of(node.config)
    if kind not in _KNOWN_CONDITIONS:
        report.errors.append(f"Condition node {node.id} has unknown predicate {kind!r}")

    keys = [e.branch_key for e in outgoing]
    duplicates = {k for k in keys if keys.count(k) > 1}
    if duplicates:
        report.errors.append(f"Condition node {node.id} has duplicate branch keys {sorted(map(str, duplicates))}")

    if None in keys:
        return
    for branch in ("true", "false"):
        if branch not in keys:
            report.warnings.append(f"Condition node {node.id} leaves branch {branch!r} unwired")

"""Trigger Matcher.

Maps an incoming domain event to the (graph, trigger node) pairs that
should start a Run. Candidate graphs come from the graph store; each
trigger node is then checked by a side-effect-free filter chosen by the
event type.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from automation.events import DomainEvent
from automation.graph import GraphDefinition, NodeSpec
from core.constants import EventType

logger = logging.getLogger(__name__)

TriggerFilter = Callable[[dict, DomainEvent, str], bool]

DEFAULT_INACTIVITY_DAYS = 7


@dataclass(frozen=True)
class TriggerMatch:
    graph_id: str
    trigger_node_id: str


def _optional_equals(config: dict, key: str, payload: dict, payload_key: str = None) -> bool:
    """True when the node does not constrain ``key`` or the payload agrees."""
    expected = config.get(key)
    if expected in (None, ""):
        return True
    return str(payload.get(payload_key or key)) == str(expected)


def _message_received(config: dict, event: DomainEvent, graph_id: str) -> bool:
    keyword = (config.get("keyword") or "").strip().lower()
    if keyword and keyword not in event.message_text.lower():
        return False
    return _optional_equals(config, "session_id", event.payload)


def _lead_created(config: dict, event: DomainEvent, graph_id: str) -> bool:
    return True


def _lead_stage_changed(config: dict, event: DomainEvent, graph_id: str) -> bool:
    return _optional_equals(config, "to_stage_id", event.payload) and _optional_equals(
        config, "from_stage_id", event.payload
    )


def _tag_added(config: dict, event: DomainEvent, graph_id: str) -> bool:
    return _optional_equals(config, "tag_id", event.payload)


def _manual(config: dict, event: DomainEvent, graph_id: str) -> bool:
    target = event.payload.get("graph_id")
    return not target or str(target) == graph_id


def _scheduled_tick(config: dict, event: DomainEvent, graph_id: str) -> bool:
    return _optional_equals(config, "schedule_key", event.payload)


def _inactivity_check(config: dict, event: DomainEvent, graph_id: str) -> bool:
    try:
        threshold = int(config.get("days") or DEFAULT_INACTIVITY_DAYS)
        inactive = int(event.payload.get("inactive_days") or 0)
    except (TypeError, ValueError):
        return False
    if inactive < threshold:
        return False
    return _optional_equals(config, "stage_id", event.payload)


FILTERS: dict[str, TriggerFilter] = {
    EventType.MESSAGE_RECEIVED.value: _message_received,
    EventType.LEAD_CREATED.value: _lead_created,
    EventType.LEAD_STAGE_CHANGED.value: _lead_stage_changed,
    EventType.TAG_ADDED.value: _tag_added,
    EventType.MANUAL.value: _manual,
    EventType.SCHEDULED_TICK.value: _scheduled_tick,
    EventType.INACTIVITY_CHECK.value: _inactivity_check,
}


def trigger_fires(graph: GraphDefinition, node: NodeSpec, event: DomainEvent) -> bool:
    """Whether one trigger node of ``graph`` fires for ``event``."""
    listens_to = node.config.get("event_type") or graph.trigger_type
    if listens_to != event.type.value:
        return False
    return FILTERS[event.type.value](node.config, event, graph.graph_id)


def match_graphs(graphs: list[GraphDefinition], event: DomainEvent) -> list[TriggerMatch]:
    """Pure matching over already-loaded candidate graphs."""
    matches: list[TriggerMatch] = []
    for graph in graphs:
        for node in graph.trigger_nodes():
            if trigger_fires(graph, node, event):
                matches.append(TriggerMatch(graph_id=graph.graph_id, trigger_node_id=node.id))
    return matches


class TriggerMatcher:
    """Finds the trigger nodes an event fires, across an organization's graphs."""

    def __init__(self, graph_store):
        self.graph_store = graph_store

    async def match(self, event: DomainEvent) -> list[TriggerMatch]:
        graphs = await self.graph_store.candidate_graphs(event.organization_id, event.type.value)
        matches = match_graphs(graphs, event)
        logger.debug(
            "Event %s (%s) matched %d trigger(s) across %d candidate graph(s)",
            event.event_id,
            event.type.value,
            len(matches),
            len(graphs),
        )
        return matches

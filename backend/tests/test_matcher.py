"""Tests for trigger matching."""

import pytest

from automation.events import DomainEvent
from automation.graph import EdgeSpec, GraphDefinition, NodeSpec
from automation.matcher import TriggerMatch, TriggerMatcher, match_graphs
from core.constants import EventType
from core.exceptions import ValidationError


def _graph(graph_id, trigger_type, trigger_configs):
    nodes = [NodeSpec(id=f"{graph_id}-t{i}", kind="trigger", config=c) for i, c in enumerate(trigger_configs)]
    nodes.append(NodeSpec(id=f"{graph_id}-a", kind="action", config={"action_type": "add_tag", "tag_id": "x"}))
    edges = [EdgeSpec(source=n.id, target=f"{graph_id}-a") for n in nodes if n.kind == "trigger"]
    return GraphDefinition(graph_id, nodes, edges, trigger_type=trigger_type, organization_id="org-1")


def _event(event_type, **payload):
    return DomainEvent(type=event_type, organization_id="org-1", subject_id="lead-1", payload=payload)


@pytest.mark.unit
class TestMatchGraphs:
    def test_stage_change_to_configured_stage(self):
        graph = _graph("g1", "lead_stage_changed", [{"to_stage_id": "stage-qualified"}])
        matches = match_graphs([graph], _event(EventType.LEAD_STAGE_CHANGED, to_stage_id="stage-qualified"))
        assert matches == [TriggerMatch(graph_id="g1", trigger_node_id="g1-t0")]

    def test_stage_change_to_other_stage(self):
        graph = _graph("g1", "lead_stage_changed", [{"to_stage_id": "stage-qualified"}])
        assert match_graphs([graph], _event(EventType.LEAD_STAGE_CHANGED, to_stage_id="stage-lost")) == []

    def test_unconstrained_trigger_matches_any_stage(self):
        graph = _graph("g1", "lead_stage_changed", [{}])
        assert len(match_graphs([graph], _event(EventType.LEAD_STAGE_CHANGED, to_stage_id="anything"))) == 1

    def test_message_keyword(self):
        graph = _graph("g1", "message_received", [{"keyword": "orçamento"}])
        assert match_graphs([graph], _event(EventType.MESSAGE_RECEIVED, message="Quero um ORÇAMENTO"))
        assert not match_graphs([graph], _event(EventType.MESSAGE_RECEIVED, message="bom dia"))

    def test_inactivity_threshold(self):
        graph = _graph("g1", "inactivity_check", [{"days": 7}])
        assert match_graphs([graph], _event(EventType.INACTIVITY_CHECK, inactive_days=10))
        assert not match_graphs([graph], _event(EventType.INACTIVITY_CHECK, inactive_days=3))

    def test_inactivity_default_threshold(self):
        graph = _graph("g1", "inactivity_check", [{}])
        assert not match_graphs([graph], _event(EventType.INACTIVITY_CHECK, inactive_days=6))
        assert match_graphs([graph], _event(EventType.INACTIVITY_CHECK, inactive_days=7))

    def test_manual_event_targets_one_graph(self):
        g1 = _graph("g1", "manual", [{}])
        g2 = _graph("g2", "manual", [{}])
        matches = match_graphs([g1, g2], _event(EventType.MANUAL, graph_id="g2"))
        assert [m.graph_id for m in matches] == ["g2"]

    def test_tag_added(self):
        graph = _graph("g1", "tag_added", [{"tag_id": "tag-vip"}])
        assert match_graphs([graph], _event(EventType.TAG_ADDED, tag_id="tag-vip"))
        assert not match_graphs([graph], _event(EventType.TAG_ADDED, tag_id="tag-cold"))

    def test_trigger_listening_to_other_event_type(self):
        graph = _graph("g1", "lead_created", [{"event_type": "lead_created"}])
        assert match_graphs([graph], _event(EventType.LEAD_STAGE_CHANGED)) == []

    def test_every_firing_trigger_yields_a_match(self):
        graph = _graph("g1", "lead_created", [{}, {}])
        matches = match_graphs([graph], _event(EventType.LEAD_CREATED))
        assert {m.trigger_node_id for m in matches} == {"g1-t0", "g1-t1"}


class _Store:
    def __init__(self, graphs):
        self.graphs = graphs
        self.calls = []

    async def candidate_graphs(self, organization_id, event_type):
        self.calls.append((organization_id, event_type))
        return self.graphs


@pytest.mark.unit
class TestTriggerMatcher:
    async def test_queries_store_by_org_and_type(self):
        store = _Store([_graph("g1", "lead_created", [{}])])
        matches = await TriggerMatcher(store).match(_event(EventType.LEAD_CREATED))
        assert store.calls == [("org-1", "lead_created")]
        assert matches == [TriggerMatch(graph_id="g1", trigger_node_id="g1-t0")]


@pytest.mark.unit
class TestDomainEvent:
    def test_round_trip_through_dict(self):
        event = _event(EventType.TAG_ADDED, tag_id="tag-vip")
        restored = DomainEvent.from_dict(event.to_dict())
        assert restored.type is EventType.TAG_ADDED
        assert restored.event_id == event.event_id
        assert restored.payload == {"tag_id": "tag-vip"}

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            DomainEvent.from_dict({"type": "lead_exploded", "organization_id": "org-1"})

    def test_organization_required(self):
        with pytest.raises(ValidationError):
            DomainEvent.from_dict({"type": "lead_created"})

    @pytest.mark.parametrize("occurred_at", ["yesterday", "2026-13-45T00:00:00", 1700000000])
    def test_malformed_timestamp_rejected(self, occurred_at):
        with pytest.raises(ValidationError, match="occurred_at"):
            DomainEvent.from_dict({"type": "lead_created", "organization_id": "org-1", "occurred_at": occurred_at})

    def test_timestamp_parsed(self):
        event = DomainEvent.from_dict(
            {"type": "lead_created", "organization_id": "org-1", "occurred_at": "2026-03-02T12:00:00+00:00"}
        )
        assert event.occurred_at.year == 2026
        assert event.occurred_at.utcoffset().total_seconds() == 0

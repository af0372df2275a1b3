"""Tests for the in-memory graph and its validation."""

from datetime import timedelta

import pytest

from automation.graph import (
    EdgeSpec,
    GraphDefinition,
    NodeSpec,
    action_kind_of,
    delay_duration,
    validate_graph,
)
from core.exceptions import ConfigurationError, MissingNodeError


def _graph(nodes, edges, trigger_type="lead_created"):
    return GraphDefinition(
        "g1",
        [NodeSpec(id=i, kind=k, config=c) for i, (k, c) in nodes.items()],
        [EdgeSpec(source=s, target=t, branch_key=b) for s, t, b in edges],
        trigger_type=trigger_type,
    )


TAG_ACTION = ("action", {"action_type": "add_tag", "tag_id": "tag-x"})


@pytest.mark.unit
class TestTraversalHelpers:
    def test_single_successor(self):
        graph = _graph({"t": ("trigger", {}), "a": TAG_ACTION}, [("t", "a", None)])
        assert graph.single_successor("t") == "a"
        assert graph.single_successor("a") is None

    def test_single_successor_rejects_fan_out(self):
        graph = _graph(
            {"t": ("trigger", {}), "a": TAG_ACTION, "b": TAG_ACTION},
            [("t", "a", None), ("t", "b", None)],
        )
        with pytest.raises(ConfigurationError):
            graph.single_successor("t")

    def test_branch_target_prefers_exact_key(self):
        graph = _graph(
            {"c": ("condition", {}), "yes": TAG_ACTION, "other": TAG_ACTION},
            [("c", "yes", "true"), ("c", "other", None)],
        )
        assert graph.branch_target("c", "true") == "yes"
        assert graph.branch_target("c", "false") == "other"

    def test_branch_target_without_match(self):
        graph = _graph({"c": ("condition", {}), "yes": TAG_ACTION}, [("c", "yes", "true")])
        assert graph.branch_target("c", "false") is None

    def test_missing_node(self):
        graph = _graph({"t": ("trigger", {})}, [])
        with pytest.raises(MissingNodeError):
            graph.node("ghost")


@pytest.mark.unit
class TestDelayDuration:
    def test_value_and_unit(self):
        assert delay_duration({"delay_value": 2, "delay_type": "days"}) == timedelta(days=2)
        assert delay_duration({"delay_value": 90, "delay_type": "minutes"}) == timedelta(minutes=90)

    def test_unit_defaults_to_minutes(self):
        assert delay_duration({"delay_value": 5}) == timedelta(minutes=5)

    def test_legacy_fields_add_up(self):
        config = {"delay_minutes": 30, "delay_hours": 1, "delay_days": 1}
        assert delay_duration(config) == timedelta(days=1, hours=1, minutes=30)

    def test_empty_config_is_zero(self):
        assert delay_duration({}) == timedelta(0)

    def test_unknown_unit(self):
        with pytest.raises(ConfigurationError, match="Unknown delay unit"):
            delay_duration({"delay_value": 1, "delay_type": "fortnights"})

    def test_negative(self):
        with pytest.raises(ConfigurationError):
            delay_duration({"delay_value": -1, "delay_type": "hours"})

    def test_not_a_number(self):
        with pytest.raises(ConfigurationError):
            delay_duration({"delay_value": "soon"})

    @pytest.mark.parametrize("value", ["nan", "inf", float("-inf")])
    def test_not_finite(self, value):
        with pytest.raises(ConfigurationError, match="finite"):
            delay_duration({"delay_value": value, "delay_type": "days"})

    def test_too_long(self):
        with pytest.raises(ConfigurationError, match="too long"):
            delay_duration({"delay_value": 1e300, "delay_type": "days"})
        with pytest.raises(ConfigurationError):
            delay_duration({"delay_days": 10**12})


@pytest.mark.unit
class TestActionKind:
    def test_legacy_alias(self):
        assert action_kind_of({"action_type": "send_whatsapp"}) == "send_message"

    def test_missing(self):
        with pytest.raises(ConfigurationError):
            action_kind_of({})


@pytest.mark.unit
class TestValidateGraph:
    def test_valid_linear_graph(self):
        report = validate_graph(_graph({"t": ("trigger", {}), "a": TAG_ACTION}, [("t", "a", None)]))
        assert report.is_valid
        assert report.warnings == []

    def test_requires_trigger(self):
        report = validate_graph(_graph({"a": TAG_ACTION}, []))
        assert "Graph has no trigger node" in report.errors

    def test_trigger_with_incoming_edge(self):
        report = validate_graph(
            _graph({"t": ("trigger", {}), "a": TAG_ACTION}, [("t", "a", None), ("a", "t", None)])
        )
        assert any("incoming" in e for e in report.errors)

    def test_action_with_two_exits(self):
        report = validate_graph(
            _graph(
                {"t": ("trigger", {}), "a": TAG_ACTION, "b": TAG_ACTION, "c": TAG_ACTION},
                [("t", "a", None), ("a", "b", None), ("a", "c", None)],
            )
        )
        assert not report.is_valid

    def test_dangling_edge(self):
        report = validate_graph(_graph({"t": ("trigger", {})}, [("t", "ghost", None)]))
        assert any("ghost" in e for e in report.errors)

    def test_unknown_predicate_and_action(self):
        report = validate_graph(
            _graph(
                {
                    "t": ("trigger", {}),
                    "c": ("condition", {"condition_type": "lead_score_above"}),
                    "a": ("action", {"action_type": "launch_rocket"}),
                },
                [("t", "c", None), ("c", "a", "true"), ("c", "a", "false")],
            )
        )
        assert len(report.errors) == 2

    def test_duplicate_branch_keys(self):
        report = validate_graph(
            _graph(
                {
                    "t": ("trigger", {}),
                    "c": ("condition", {"condition_type": "has_tag", "tag_id": "x"}),
                    "a": TAG_ACTION,
                    "b": TAG_ACTION,
                },
                [("t", "c", None), ("c", "a", "true"), ("c", "b", "true")],
            )
        )
        assert any("duplicate branch" in e for e in report.errors)

    def test_unwired_branch_is_a_warning(self):
        report = validate_graph(
            _graph(
                {
                    "t": ("trigger", {}),
                    "c": ("condition", {"condition_type": "has_tag", "tag_id": "x"}),
                    "a": TAG_ACTION,
                },
                [("t", "c", None), ("c", "a", "true")],
            )
        )
        assert report.is_valid
        assert any("'false'" in w for w in report.warnings)

    def test_bad_delay_config(self):
        report = validate_graph(
            _graph(
                {"t": ("trigger", {}), "d": ("delay", {"delay_value": 1, "delay_type": "weeks"})},
                [("t", "d", None)],
            )
        )
        assert not report.is_valid

    def test_nan_delay_is_reported(self):
        report = validate_graph(
            _graph(
                {"t": ("trigger", {}), "d": ("delay", {"delay_value": "nan", "delay_type": "days"})},
                [("t", "d", None)],
            )
        )
        assert not report.is_valid
        assert any("Delay node d" in e for e in report.errors)

    def test_bad_retry_block(self):
        action = ("action", {"action_type": "call_webhook", "url": "https://example.test", "retry": {"policy": "forever"}})
        report = validate_graph(_graph({"t": ("trigger", {}), "a": action}, [("t", "a", None)]))
        assert not report.is_valid
        assert any(e.startswith("Action node a:") for e in report.errors)

        action[1]["retry"] = {"policy": "fixed", "max_attempts": 0}
        assert not validate_graph(_graph({"t": ("trigger", {}), "a": action}, [("t", "a", None)])).is_valid

    def test_trigger_event_type_must_match_graph(self):
        report = validate_graph(_graph({"t": ("trigger", {"event_type": "tag_added"})}, []))
        assert not report.is_valid

    def test_unreachable_nodes_are_dead(self):
        report = validate_graph(
            _graph({"t": ("trigger", {}), "a": TAG_ACTION, "orphan": TAG_ACTION}, [("t", "a", None)])
        )
        assert report.is_valid
        assert report.dead_node_ids == ["orphan"]

    def test_report_dict(self):
        report = validate_graph(_graph({"a": TAG_ACTION}, []))
        data = report.to_dict()
        assert data["valid"] is False
        assert data["dead_node_ids"] == ["a"]

"""Tests for condition predicates."""

import pytest

from automation.conditions import PREDICATES, evaluate
from automation.context import ConditionContext, SubjectSnapshot
from core.exceptions import ConfigurationError


def _context(tags=(), stage_id="stage-new", message="", subject=True):
    snapshot = None
    if subject:
        snapshot = SubjectSnapshot(id="lead-1", stage_id=stage_id, tag_ids=frozenset(tags))
    return ConditionContext(subject=snapshot, event_type="message_received", payload={"message": message})


@pytest.mark.unit
class TestHasTag:
    def test_true_when_tag_present(self):
        assert evaluate({"condition_type": "has_tag", "tag_id": "tag-vip"}, _context(tags=["tag-vip"])) == "true"

    def test_false_when_tag_absent(self):
        assert evaluate({"condition_type": "has_tag", "tag_id": "tag-vip"}, _context(tags=["tag-cold"])) == "false"

    def test_legacy_operand_field(self):
        config = {"condition_type": "has_tag", "condition_value": "tag-vip"}
        assert evaluate(config, _context(tags=["tag-vip"])) == "true"

    def test_false_without_subject(self):
        assert evaluate({"condition_type": "has_tag", "tag_id": "tag-vip"}, _context(subject=False)) == "false"

    def test_missing_operand_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            evaluate({"condition_type": "has_tag"}, _context())


@pytest.mark.unit
class TestInStage:
    def test_matches_current_stage(self):
        assert evaluate({"condition_type": "in_stage", "stage_id": "stage-new"}, _context()) == "true"

    def test_other_stage(self):
        assert evaluate({"condition_type": "in_stage", "stage_id": "stage-won"}, _context()) == "false"

    def test_subject_without_stage(self):
        assert evaluate({"condition_type": "in_stage", "stage_id": "stage-new"}, _context(stage_id=None)) == "false"


@pytest.mark.unit
class TestMessageContains:
    def test_case_insensitive(self):
        config = {"condition_type": "message_contains", "value": "PREÇO"}
        assert evaluate(config, _context(message="Qual o preço do plano?")) == "true"

    def test_absent(self):
        config = {"condition_type": "message_contains", "value": "cancelar"}
        assert evaluate(config, _context(message="Quero contratar")) == "false"

    def test_reads_text_field(self):
        context = ConditionContext(subject=None, event_type="message_received", payload={"text": "oi, tudo bem"})
        assert evaluate({"condition_type": "message_contains", "keyword": "oi"}, context) == "true"


@pytest.mark.unit
class TestEvaluate:
    def test_unknown_predicate(self):
        with pytest.raises(ConfigurationError, match="Unknown condition type"):
            evaluate({"condition_type": "lead_score_above", "value": 10}, _context())

    def test_closed_predicate_set(self):
        assert set(PREDICATES) == {"has_tag", "in_stage", "message_contains"}

    def test_evaluation_does_not_mutate_inputs(self):
        config = {"condition_type": "has_tag", "tag_id": "tag-vip"}
        context = _context(tags=["tag-vip"])
        evaluate(config, context)
        assert config == {"condition_type": "has_tag", "tag_id": "tag-vip"}
        assert context.subject.tag_ids == frozenset({"tag-vip"})

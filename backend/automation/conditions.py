"""Condition predicates.

Each predicate is a pure function ``(config, context) -> bool`` registered
in ``PREDICATES``. ``evaluate`` maps the boolean to a branch key.
"""

from typing import Callable

from automation.context import ConditionContext
from core.constants import BranchKey, ConditionKind
from core.exceptions import ConfigurationError

Predicate = Callable[[dict, ConditionContext], bool]


def _operand(config: dict, *names: str) -> str:
    for name in names:
        value = config.get(name)
        if value not in (None, ""):
            return str(value)
    raise ConfigurationError(f"Condition is missing required field {names[0]!r}")


def has_tag(config: dict, context: ConditionContext) -> bool:
    tag_id = _operand(config, "tag_id", "value", "condition_value")
    if context.subject is None:
        return False
    return tag_id in {str(t) for t in context.subject.tag_ids}


def in_stage(config: dict, context: ConditionContext) -> bool:
    stage_id = _operand(config, "stage_id", "value", "condition_value")
    if context.subject is None or context.subject.stage_id is None:
        return False
    return str(context.subject.stage_id) == stage_id


def message_contains(config: dict, context: ConditionContext) -> bool:
    needle = _operand(config, "value", "condition_value", "keyword")
    return needle.lower() in context.message_text.lower()


PREDICATES: dict[str, Predicate] = {
    ConditionKind.HAS_TAG.value: has_tag,
    ConditionKind.IN_STAGE.value: in_stage,
    ConditionKind.MESSAGE_CONTAINS.value: message_contains,
}


def evaluate(config: dict, context: ConditionContext) -> str:
    """Evaluate a condition node config, returning ``"true"`` or ``"false"``."""
    kind = config.get("condition_type") or config.get("type")
    predicate = PREDICATES.get(kind)
    if predicate is None:
        raise ConfigurationError(f"Unknown condition type: {kind!r}")
    return BranchKey.TRUE.value if predicate(config, context) else BranchKey.FALSE.value

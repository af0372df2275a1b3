"""Constants and enums for the automation engine."""

from enum import Enum


class RunStatus(str, Enum):
    """Automation run status."""

    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


# Statuses a worker may claim (compare-and-set into RUNNING)
CLAIMABLE_STATUSES = (RunStatus.PENDING.value, RunStatus.WAITING.value)


class NodeKind(str, Enum):
    """Kind of node in an automation graph."""

    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"


class EventType(str, Enum):
    """Domain events the engine reacts to."""

    MESSAGE_RECEIVED = "message_received"
    LEAD_CREATED = "lead_created"
    LEAD_STAGE_CHANGED = "lead_stage_changed"
    TAG_ADDED = "tag_added"
    SCHEDULED_TICK = "scheduled_tick"
    MANUAL = "manual"
    INACTIVITY_CHECK = "inactivity_check"


class ConditionKind(str, Enum):
    """Closed set of condition predicates."""

    HAS_TAG = "has_tag"
    IN_STAGE = "in_stage"
    MESSAGE_CONTAINS = "message_contains"


class ActionKind(str, Enum):
    """Action handler kinds."""

    SEND_MESSAGE = "send_message"
    MOVE_STAGE = "move_stage"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    ASSIGN_USER = "assign_user"
    CREATE_TASK = "create_task"
    CALL_WEBHOOK = "call_webhook"
    SEND_NOTIFICATION = "send_notification"
    ALERT = "alert"


# Legacy action names still found in stored graphs
ACTION_ALIASES = {
    "send_whatsapp": ActionKind.SEND_MESSAGE.value,
}


class DelayUnit(str, Enum):
    """Units a delay node may express its duration in."""

    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ErrorKind(str, Enum):
    """Stable error classification stored on failed runs."""

    CONFIGURATION = "configuration"
    ACTION_FAILED = "action_failed"
    TRANSIENT_ACTION = "transient_action"
    STEP_LIMIT_EXCEEDED = "step_limit_exceeded"
    MISSING_NODE = "missing_node"
    EPISODE_TIMEOUT = "episode_timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"

    @property
    def is_retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT_ACTION, ErrorKind.EPISODE_TIMEOUT)


class LogOutcome(str, Enum):
    """Outcome recorded on a run ledger entry."""

    ROUTED = "routed"
    BRANCHED = "branched"
    NO_MATCH = "no_match"
    SUCCEEDED = "succeeded"
    SCHEDULED = "scheduled"
    FAILED = "failed"


class BranchKey(str, Enum):
    """Branch keys produced by the condition evaluator."""

    TRUE = "true"
    FALSE = "false"

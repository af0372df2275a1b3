"""
Base interface for action handlers.

Every action kind (send_message, move_stage, call_webhook, ...) inherits
from BaseAction and implements execute(). Handlers raise on failure:
ActionConfigurationError for bad config, TransientActionError for
failures worth retrying, ActionError for everything else.

Handlers may be invoked more than once for the same node visit when a
run is replayed after a crash, so each one must be safe to repeat.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

from automation.collaborators import (
    MessagingTransport,
    NotificationTransport,
    SubjectRepository,
)
from automation.context import ActionContext
from core import metrics
from core.exceptions import ActionConfigurationError, ActionError

logger = structlog.get_logger(__name__)


class ActionResult:
    """Standardized result of a successful action."""

    def __init__(self, output: Optional[Dict[str, Any]] = None, duration_ms: float = 0):
        self.output = output or {}
        self.duration_ms = duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output": self.output,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class ActionDependencies:
    """Collaborators shared by all handlers of one dispatcher."""

    subjects: SubjectRepository
    messaging: Optional[MessagingTransport] = None
    notifications: Optional[NotificationTransport] = None
    http_client: Any = None
    signing_secret: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class BaseAction(ABC):
    """
    Abstract base class for action handlers.

    Subclasses set ``action_type`` / ``display_name`` and implement
    execute(config, context) -> ActionResult.
    """

    action_type: str = "base"
    display_name: str = "Base Action"
    description: str = "Abstract action"
    requires_subject: bool = True

    def __init__(self, deps: ActionDependencies):
        self.deps = deps

    @abstractmethod
    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        """
        Perform the action.

        Args:
            config: Action node config
            context: Run, node and subject the action applies to

        Returns:
            ActionResult describing what was done
        """

    async def run(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        """
        Run the action with timing, logging and metrics.

        This is the entry point used by the dispatcher. Errors are logged
        and re-raised for the engine to classify.
        """
        if self.requires_subject and context.subject is None:
            raise ActionError(f"{self.action_type} needs a subject but the run has none", node_id=context.node_id)

        start = time.monotonic()
        try:
            result = await self.execute(config, context)
        except Exception as e:
            duration = time.monotonic() - start
            metrics.record_action(self.action_type, duration, success=False)
            logger.warning(
                "Action failed",
                action_type=self.action_type,
                node_id=context.node_id,
                error=str(e),
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.monotonic() - start
        result.duration_ms = duration * 1000
        metrics.record_action(self.action_type, duration, success=True)
        logger.info(
            "Action completed",
            action_type=self.action_type,
            node_id=context.node_id,
            duration_ms=round(result.duration_ms, 2),
        )
        return result

    @staticmethod
    def require(config: Dict[str, Any], *names: str) -> Any:
        """First non-empty value among ``names`` or ActionConfigurationError."""
        for name in names:
            value = config.get(name)
            if value not in (None, ""):
                return value
        raise ActionConfigurationError(f"Missing required config: {names[0]}")

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """JSON schema of the node config, used by the authoring surface."""
        return {"type": "object", "properties": {}}

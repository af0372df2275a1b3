"""
Action Dispatcher: maps action kinds to their handlers.

Each kind is served by exactly one handler class, looked up in a table.
Legacy names (``send_whatsapp``) resolve to their current kind.
"""

import asyncio
from typing import Any, Dict, Optional, Type

from actions.base_action import ActionDependencies, ActionResult, BaseAction
from actions.implementations.messaging import MESSAGING_ACTION_TYPES
from actions.implementations.subject import SUBJECT_ACTION_TYPES
from actions.implementations.webhook import WEBHOOK_ACTION_TYPES
from automation.context import ActionContext
from core.constants import ACTION_ALIASES
from core.exceptions import ActionConfigurationError, TransientActionError

BUILTIN_ACTION_TYPES: Dict[str, Type[BaseAction]] = {
    **MESSAGING_ACTION_TYPES,
    **SUBJECT_ACTION_TYPES,
    **WEBHOOK_ACTION_TYPES,
}


class ActionDispatcher:
    """Runs the handler registered for an action kind.

    ``timeout`` bounds every handler call; expiry is a transient error so
    the engine's retry policy applies to hung collaborators.
    """

    def __init__(self, deps: ActionDependencies, timeout: Optional[float] = None):
        self.deps = deps
        self.timeout = timeout
        self._handlers: Dict[str, BaseAction] = {}
        for action_type, action_class in BUILTIN_ACTION_TYPES.items():
            self.register(action_type, action_class)

    def register(self, action_type: str, action_class: Type[BaseAction]) -> None:
        """Register (or replace) the handler for an action kind."""
        self._handlers[action_type] = action_class(self.deps)

    def get(self, action_type: str) -> Optional[BaseAction]:
        return self._handlers.get(ACTION_ALIASES.get(action_type, action_type))

    async def dispatch(self, action_type: str, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        """Run one action.

        Raises:
            ActionConfigurationError: Unknown kind or bad config
            TransientActionError: Retryable failure (timeouts included)
            ActionError: Permanent failure
        """
        handler = self.get(action_type)
        if handler is None:
            raise ActionConfigurationError(f"Unknown action type: {action_type!r}", node_id=context.node_id)

        if self.timeout is None:
            return await handler.run(config, context)
        try:
            return await asyncio.wait_for(handler.run(config, context), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TransientActionError(
                f"Action {action_type} timed out after {self.timeout}s", node_id=context.node_id
            )

    def list_all(self) -> list:
        """Registered kinds with metadata for the authoring surface."""
        return [
            {
                "action_type": action_type,
                "display_name": handler.display_name,
                "description": handler.description,
                "config_schema": handler.get_config_schema(),
            }
            for action_type, handler in self._handlers.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._handlers.keys())

"""Actions that talk to people: WhatsApp messages and in-app notifications."""

from typing import Any, Dict

from actions.base_action import ActionResult, BaseAction
from automation.context import ActionContext
from automation.templating import render
from core.exceptions import ActionConfigurationError, ActionError

DEFAULT_NOTIFICATION_TITLE = "Notificação de automação"
DEFAULT_ALERT_TITLE = "Lead sem atividade"
DEFAULT_ALERT_MESSAGE = "O lead {{lead.name}} está sem atividade e precisa de atenção."


class SendMessageAction(BaseAction):
    """Send a WhatsApp message to the lead.

    Config:
        message (alias template_content): Text with template variables
        session_id: WhatsApp session to send from (defaults to the triggering one)

    Best effort: a replayed visit may send the message twice.
    """

    action_type = "send_message"
    display_name = "Send WhatsApp message"
    description = "Send a templated WhatsApp message to the lead"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        template = self.require(config, "message", "template_content")
        if self.deps.messaging is None:
            raise ActionConfigurationError("No messaging transport configured")

        phone = context.trigger.get("contact_phone") or context.subject.phone
        if not phone:
            raise ActionError(f"Lead {context.subject.id} has no phone number", node_id=context.node_id)

        text = render(template, context)
        session_id = config.get("session_id") or context.trigger.get("session_id")
        sent = await self.deps.messaging.send_text(context.organization_id, phone, text, session_id=session_id)
        return ActionResult(output={"phone": phone, "text": text, **(sent or {})})

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["message"],
            "properties": {
                "message": {"type": "string", "description": "Supports {{lead.name}}, {{date}}..."},
                "session_id": {"type": "string"},
            },
        }


class SendNotificationAction(BaseAction):
    """Notify a CRM user.

    Config:
        notify_user_id (alias user_id): Recipient
        notification_title / notification_content: Text with template variables
    """

    action_type = "send_notification"
    display_name = "Send notification"
    description = "Send an in-app notification to a user"
    requires_subject = False

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        user_id = str(self.require(config, "notify_user_id", "user_id"))
        if self.deps.notifications is None:
            raise ActionConfigurationError("No notification transport configured")

        title = render(config.get("notification_title") or DEFAULT_NOTIFICATION_TITLE, context)
        content = render(config.get("notification_content") or "", context)
        await self.deps.notifications.notify(
            context.organization_id,
            user_id,
            title,
            content,
            data={"run_id": context.run_id, "lead_id": context.subject.id if context.subject else None},
        )
        return ActionResult(output={"user_id": user_id, "title": title})


class AlertAction(BaseAction):
    """Alert the lead's assignee, typically after an inactivity check.

    Config:
        message: Alert text with template variables (optional)
        fallback_user_id: Recipient when the lead has no assignee
    """

    action_type = "alert"
    display_name = "Alert assignee"
    description = "Notify the user responsible for the lead"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        user_id = context.subject.assigned_user_id or config.get("fallback_user_id")
        if not user_id:
            raise ActionError(f"Lead {context.subject.id} has no assignee to alert", node_id=context.node_id)
        if self.deps.notifications is None:
            raise ActionConfigurationError("No notification transport configured")

        title = render(config.get("title") or DEFAULT_ALERT_TITLE, context)
        message = render(config.get("message") or DEFAULT_ALERT_MESSAGE, context)
        await self.deps.notifications.notify(
            context.organization_id,
            str(user_id),
            title,
            message,
            data={"run_id": context.run_id, "lead_id": context.subject.id, "kind": "alert"},
        )
        return ActionResult(output={"user_id": str(user_id), "message": message})


MESSAGING_ACTION_TYPES = {
    "send_message": SendMessageAction,
    "send_notification": SendNotificationAction,
    "alert": AlertAction,
}

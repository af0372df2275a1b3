"""Actions that update the subject (lead) record.

Stage, tag and assignee updates set a value, so repeating them after a
replay is a no-op.
"""

from datetime import timedelta
from typing import Any, Dict

from actions.base_action import ActionResult, BaseAction
from automation.context import ActionContext
from automation.templating import render
from core.exceptions import ActionConfigurationError, ActionError
from core.utils import utc_now

DEFAULT_TASK_TITLE = "Tarefa automática"


class _SubjectAction(BaseAction):
    async def _call(self, method: str, context: ActionContext, *args):
        try:
            return await getattr(self.deps.subjects, method)(context.organization_id, context.subject.id, *args)
        except LookupError as e:
            raise ActionError(str(e), node_id=context.node_id)


class MoveStageAction(_SubjectAction):
    """Move the subject to another pipeline stage.

    Config:
        stage_id (alias target_stage_id): Destination stage
    """

    action_type = "move_stage"
    display_name = "Move stage"
    description = "Move the lead to a pipeline stage"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        stage_id = str(self.require(config, "stage_id", "target_stage_id"))
        await self._call("set_stage", context, stage_id)
        return ActionResult(output={"stage_id": stage_id, "previous_stage_id": context.subject.stage_id})

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["stage_id"],
            "properties": {"stage_id": {"type": "string"}, "target_stage_id": {"type": "string"}},
        }


class AddTagAction(_SubjectAction):
    action_type = "add_tag"
    display_name = "Add tag"
    description = "Add a tag to the lead"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        tag_id = str(self.require(config, "tag_id"))
        await self._call("add_tag", context, tag_id)
        return ActionResult(output={"tag_id": tag_id})


class RemoveTagAction(_SubjectAction):
    action_type = "remove_tag"
    display_name = "Remove tag"
    description = "Remove a tag from the lead"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        tag_id = str(self.require(config, "tag_id"))
        await self._call("remove_tag", context, tag_id)
        return ActionResult(output={"tag_id": tag_id})


class AssignUserAction(_SubjectAction):
    action_type = "assign_user"
    display_name = "Assign user"
    description = "Assign the lead to a user"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        user_id = str(self.require(config, "user_id", "assigned_user_id"))
        await self._call("assign_user", context, user_id)
        return ActionResult(output={"user_id": user_id})


class CreateTaskAction(_SubjectAction):
    """Create a follow-up task for the lead.

    Config:
        task_title: Title, supports template variables (default "Tarefa automática")
        task_description: Description, supports template variables
        task_type: Free-form task category (default "task")
        due_days: Days from now until the task is due (no due date when absent)
        user_id: Assignee; defaults to the lead's assignee

    Not idempotent: a replayed visit may create a second task.
    """

    action_type = "create_task"
    display_name = "Create task"
    description = "Create a follow-up task"

    async def execute(self, config: Dict[str, Any], context: ActionContext) -> ActionResult:
        due_date = None
        if config.get("due_days") not in (None, ""):
            try:
                due_date = (utc_now() + timedelta(days=int(config["due_days"]))).isoformat()
            except (TypeError, ValueError):
                raise ActionConfigurationError(f"due_days must be an integer, got {config['due_days']!r}")

        task = {
            "title": render(config.get("task_title") or DEFAULT_TASK_TITLE, context),
            "description": render(config.get("task_description") or "", context),
            "task_type": config.get("task_type") or "task",
            "due_date": due_date,
            "assigned_user_id": config.get("user_id") or context.subject.assigned_user_id,
            "automation_run_id": context.run_id,
        }
        task_id = await self._call("create_task", context, task)
        return ActionResult(output={"task_id": task_id, "title": task["title"]})


SUBJECT_ACTION_TYPES = {
    "move_stage": MoveStageAction,
    "add_tag": AddTagAction,
    "remove_tag": RemoveTagAction,
    "assign_user": AssignUserAction,
    "create_task": CreateTaskAction,
}

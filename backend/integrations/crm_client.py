"""
CRM API client.

Reads lead state and performs lead updates, task creation and user
notifications through the surrounding CRM's REST API.

Endpoints used (all scoped by ``organization_id`` query parameter):
    GET    /leads/{id}?include=organization,customer
    PATCH  /leads/{id}                  {"stage_id"} | {"assigned_user_id"}
    POST   /leads/{id}/tags             {"tag_id"}
    DELETE /leads/{id}/tags/{tag_id}
    POST   /leads/{id}/tasks            {"title", "description", "type", "due_date", ...}
    POST   /notifications               {"user_id", "title", "content", "type", "data"}
"""

from typing import Optional

import httpx
import structlog

from app.config import get_settings
from automation.collaborators import NotificationTransport, SubjectRepository
from automation.context import SubjectSnapshot
from integrations.http import send

logger = structlog.get_logger(__name__)


class CrmApiClient(SubjectRepository, NotificationTransport):
    """httpx-backed subject repository and notification transport."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.CRM_API_URL,
            headers={
                "Authorization": f"Bearer {api_key or settings.CRM_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=timeout or settings.ACTION_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, path: str, organization_id: str, **kwargs) -> httpx.Response:
        params = {"organization_id": organization_id, **kwargs.pop("params", {})}
        return await send(self._client, method, path, params=params, **kwargs)

    async def _call_existing(self, method: str, path: str, organization_id: str, **kwargs) -> httpx.Response:
        response = await self._call(method, path, organization_id, **kwargs)
        if response.status_code == 404:
            raise LookupError(f"{path} not found")
        return response

    # ─── SubjectRepository ────────────────────────────────

    async def get_snapshot(self, organization_id: str, subject_id: str) -> Optional[SubjectSnapshot]:
        response = await self._call(
            "GET", f"/leads/{subject_id}", organization_id, params={"include": "organization,customer"}
        )
        if response.status_code == 404:
            return None
        data = response.json()
        if "tag_ids" not in data and "tags" in data:
            data["tag_ids"] = [t["id"] if isinstance(t, dict) else t for t in data.pop("tags") or []]
        if "customer" not in data and "telecom_customer" in data:
            data["customer"] = data.pop("telecom_customer")
        data.setdefault("id", subject_id)
        data.setdefault("organization_id", organization_id)
        return SubjectSnapshot.from_dict(data)

    async def set_stage(self, organization_id: str, subject_id: str, stage_id: str) -> None:
        await self._call_existing("PATCH", f"/leads/{subject_id}", organization_id, json={"stage_id": stage_id})

    async def add_tag(self, organization_id: str, subject_id: str, tag_id: str) -> None:
        response = await self._call_existing(
            "POST", f"/leads/{subject_id}/tags", organization_id, json={"tag_id": tag_id}
        )
        logger.debug("Tag added", subject_id=subject_id, tag_id=tag_id, status=response.status_code)

    async def remove_tag(self, organization_id: str, subject_id: str, tag_id: str) -> None:
        # A tag that is already gone is fine
        await self._call("DELETE", f"/leads/{subject_id}/tags/{tag_id}", organization_id)

    async def assign_user(self, organization_id: str, subject_id: str, user_id: str) -> None:
        await self._call_existing(
            "PATCH", f"/leads/{subject_id}", organization_id, json={"assigned_user_id": user_id}
        )

    async def create_task(self, organization_id: str, subject_id: str, task: dict) -> str:
        body = {
            "title": task.get("title"),
            "description": task.get("description") or None,
            "type": task.get("task_type"),
            "due_date": task.get("due_date"),
            "assigned_user_id": task.get("assigned_user_id"),
            "automation_run_id": task.get("automation_run_id"),
        }
        response = await self._call_existing("POST", f"/leads/{subject_id}/tasks", organization_id, json=body)
        return str(response.json().get("id", ""))

    # ─── NotificationTransport ────────────────────────────

    async def notify(self, organization_id, user_id, title, message, data=None) -> None:
        await self._call(
            "POST",
            "/notifications",
            organization_id,
            json={
                "user_id": user_id,
                "title": title,
                "content": message,
                "type": "automation",
                "data": data or {},
            },
        )

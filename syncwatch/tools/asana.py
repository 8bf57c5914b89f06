import logging
from typing import Optional

import httpx

from syncwatch.config import Settings
from syncwatch.detection.models import ConnectorType
from syncwatch.errors import GatewayError
from syncwatch.tasks.models import RemoteTask
from syncwatch.time_utils import parse_timestamp

logger = logging.getLogger(__name__)

TASK_FIELDS = "name,completed,assignee.name,due_on,modified_at,permalink_url"

# Asana has no workflow states, only a completed flag
COMPLETED_STATUSES = ("completed", "complete", "done")


class AsanaClient:
    """PM gateway backed by the Asana REST API (1.0)."""

    connector_type = ConnectorType.ASANA

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _headers(self) -> dict:
        token = self._settings.asana_access_token
        if not token:
            raise GatewayError("ASANA", "Asana access token not configured. Set ASANA_ACCESS_TOKEN in .env")
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.asana_api_url,
            headers=self._headers(),
            timeout=30.0,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise GatewayError("ASANA", f"Not found: {path}", status_code=404)
            raise GatewayError(
                "ASANA",
                f"Asana API error: {e.response.text}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise GatewayError("ASANA", f"Failed to connect to Asana: {str(e)}")
        return response

    async def _fetch_all(self, client: httpx.AsyncClient, path: str, params: dict) -> list[dict]:
        """Follow Asana's offset pagination until next_page is empty."""
        items: list[dict] = []
        params = {**params, "limit": 100}
        while True:
            body = (await self._request(client, "GET", path, params=params)).json()
            items.extend(body.get("data") or [])
            next_page = body.get("next_page") or {}
            if not next_page.get("offset"):
                return items
            params = {**params, "offset": next_page["offset"]}

    async def _project_ids(self, client: httpx.AsyncClient) -> list[str]:
        if self._settings.asana_project_ids:
            return list(self._settings.asana_project_ids)
        project_ids = []
        for workspace in await self._fetch_all(client, "/workspaces", {}):
            projects = await self._fetch_all(client, f"/workspaces/{workspace['gid']}/projects", {})
            project_ids.extend(project["gid"] for project in projects)
        return project_ids

    async def fetch_tasks(self) -> list[RemoteTask]:
        """Tasks of the configured projects, or of every accessible project."""
        tasks: dict[str, RemoteTask] = {}
        async with self._client() as client:
            for project_id in await self._project_ids(client):
                for task in await self._fetch_all(client, f"/projects/{project_id}/tasks", {"opt_fields": TASK_FIELDS}):
                    gid = task.get("gid")
                    # A task can live in several projects
                    if not gid or gid in tasks:
                        continue
                    tasks[gid] = RemoteTask(
                        external_id=gid,
                        source_system=ConnectorType.ASANA,
                        title=task.get("name") or "Untitled Task",
                        status="completed" if task.get("completed") else "open",
                        assignee=(task.get("assignee") or {}).get("name"),
                        url=task.get("permalink_url"),
                        due_date=parse_timestamp(task.get("due_on")),
                        modified_at=parse_timestamp(task.get("modified_at")),
                    )
        logger.debug(f"Fetched {len(tasks)} task(s) from Asana")
        return list(tasks.values())

    async def update_status(self, external_id: str, status: str) -> None:
        """
        Asana only knows completed or not: a done-like status completes the
        task, anything else is left as a comment asking for the change.
        """
        if status.strip().lower() in COMPLETED_STATUSES:
            await self.complete_task(external_id)
            return
        await self.add_comment(external_id, f"Task status should be updated to: {status}")

    async def complete_task(self, external_id: str) -> None:
        async with self._client() as client:
            await self._request(client, "PUT", f"/tasks/{external_id}", json={"data": {"completed": True}})
        logger.info(f"Marked Asana task {external_id} as complete")

    async def add_comment(self, external_id: str, text: str) -> None:
        async with self._client() as client:
            await self._request(client, "POST", f"/tasks/{external_id}/stories", json={"data": {"text": text}})
        logger.info(f"Added comment to Asana task {external_id}")

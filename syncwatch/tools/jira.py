import logging
from typing import Optional

import httpx

from syncwatch.config import Settings
from syncwatch.detection.models import ConnectorType
from syncwatch.errors import GatewayError
from syncwatch.tasks.models import RemoteTask
from syncwatch.time_utils import parse_timestamp

logger = logging.getLogger(__name__)


def _to_adf(text: str) -> dict:
    """Convert plain text to Atlassian Document Format for Jira v3."""
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {
                "type": "paragraph",
                "content": [
                    {
                        "type": "text",
                        "text": text
                    }
                ]
            }
        ]
    }


class JiraClient:
    """PM gateway backed by the Jira Cloud REST API (v3)."""

    connector_type = ConnectorType.JIRA

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _auth(self) -> httpx.BasicAuth:
        """Jira authentication credentials."""
        user = self._settings.jira_api_user
        token = self._settings.jira_api_token
        if not user or not token:
            raise GatewayError("JIRA", "Jira credentials not configured. Set JIRA_API_USER and JIRA_API_TOKEN.")
        return httpx.BasicAuth(user, token)

    def _base_url(self) -> str:
        url = self._settings.jira_base_url
        if not url:
            raise GatewayError("JIRA", "Jira base URL not configured. Set JIRA_BASE_URL.")
        return url.rstrip("/")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url(),
            auth=self._auth(),
            timeout=30.0,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise GatewayError("JIRA", f"Not found: {path}", status_code=404)
            raise GatewayError(
                "JIRA",
                f"Jira API error: {e.response.text}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise GatewayError("JIRA", f"Failed to connect to Jira: {str(e)}")
        return response

    async def fetch_tasks(self) -> list[RemoteTask]:
        """Fetch issues matching the configured JQL."""
        async with self._client() as client:
            response = await self._request(
                client, "POST", "/rest/api/3/search",
                json={
                    "jql": self._settings.jira_jql,
                    "maxResults": 100,
                    "fields": ["summary", "status", "assignee", "duedate", "updated"]
                }
            )

        base_url = self._base_url()
        tasks = []
        for issue in response.json().get("issues", []):
            issue_key = issue.get("key")
            if not issue_key:
                continue
            fields = issue.get("fields", {})
            try:
                tasks.append(RemoteTask(
                    external_id=issue_key,
                    source_system=ConnectorType.JIRA,
                    title=fields.get("summary") or issue_key,
                    status=(fields.get("status") or {}).get("name"),
                    assignee=(fields.get("assignee") or {}).get("displayName"),
                    url=f"{base_url}/browse/{issue_key}",
                    due_date=parse_timestamp(fields.get("duedate")),
                    modified_at=parse_timestamp(fields.get("updated")),
                ))
            except ValueError as e:
                logger.warning(f"Skipping malformed issue {issue_key}: {e}")
        return tasks

    async def _transition(self, client: httpx.AsyncClient, issue_key: str, transition: dict):
        await self._request(
            client, "POST", f"/rest/api/3/issue/{issue_key}/transitions",
            json={"transition": {"id": transition["id"]}}
        )

    async def _transitions(self, client: httpx.AsyncClient, issue_key: str) -> list[dict]:
        response = await self._request(client, "GET", f"/rest/api/3/issue/{issue_key}/transitions")
        return response.json().get("transitions", [])

    async def update_status(self, external_id: str, status: str) -> None:
        """Move an issue to the status with the given name."""
        async with self._client() as client:
            transitions = await self._transitions(client, external_id)
            for transition in transitions:
                if transition.get("to", {}).get("name", "").lower() == status.lower():
                    await self._transition(client, external_id, transition)
                    logger.info(f"Moved Jira issue {external_id} to '{status}'")
                    return
        available = [t.get("to", {}).get("name") for t in transitions]
        raise GatewayError("JIRA", f"Status transition to '{status}' not available. Available: {available}")

    async def complete_task(self, external_id: str) -> None:
        """Move an issue into the first status of the Done category."""
        async with self._client() as client:
            transitions = await self._transitions(client, external_id)
            for transition in transitions:
                category = transition.get("to", {}).get("statusCategory", {}).get("key")
                if category == "done":
                    await self._transition(client, external_id, transition)
                    logger.info(f"Completed Jira issue {external_id}")
                    return
        raise GatewayError("JIRA", f"No transition to a done status available for {external_id}")

    async def add_comment(self, external_id: str, text: str) -> None:
        async with self._client() as client:
            await self._request(
                client, "POST", f"/rest/api/3/issue/{external_id}/comment",
                json={"body": _to_adf(text)}
            )
        logger.info(f"Added comment to Jira issue {external_id}")

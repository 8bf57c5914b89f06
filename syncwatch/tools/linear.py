import logging
from typing import Optional

import httpx

from syncwatch.config import Settings
from syncwatch.detection.models import ConnectorType
from syncwatch.errors import GatewayError
from syncwatch.tasks.models import RemoteTask
from syncwatch.time_utils import parse_timestamp

logger = logging.getLogger(__name__)

ISSUES_QUERY = """
query($cursor: String) {
    issues(first: 100, after: $cursor) {
        nodes {
            id
            identifier
            title
            url
            dueDate
            updatedAt
            state { name type }
            assignee { name }
        }
        pageInfo { hasNextPage endCursor }
    }
}
"""

TEAM_STATES_QUERY = """
query($issueId: String!) {
    issue(id: $issueId) {
        team { states { nodes { id name type } } }
    }
}
"""

ISSUE_UPDATE_MUTATION = """
mutation($issueId: String!, $stateId: String!) {
    issueUpdate(id: $issueId, input: { stateId: $stateId }) { success }
}
"""

COMMENT_CREATE_MUTATION = """
mutation($issueId: String!, $body: String!) {
    commentCreate(input: { issueId: $issueId, body: $body }) { success }
}
"""

MAX_PAGES = 20


class LinearClient:
    """PM gateway backed by the Linear GraphQL API."""

    connector_type = ConnectorType.LINEAR

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _headers(self) -> dict:
        api_key = self._settings.linear_api_key
        if not api_key:
            raise GatewayError("LINEAR", "Linear API key not configured. Set LINEAR_API_KEY in .env")
        # Personal API keys are sent without a Bearer prefix
        return {"Authorization": api_key, "Content-Type": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers(), timeout=30.0, transport=self._transport)

    async def _graphql(self, client: httpx.AsyncClient, query: str, variables: Optional[dict] = None) -> dict:
        """Run one query and return its data. GraphQL errors are raised like HTTP errors."""
        try:
            response = await client.post(
                self._settings.linear_api_url,
                json={"query": query, "variables": variables or {}},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                "LINEAR",
                f"Linear API error: {e.response.text}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise GatewayError("LINEAR", f"Failed to connect to Linear: {str(e)}")

        body = response.json()
        if body.get("errors"):
            messages = "; ".join(error.get("message", "unknown error") for error in body["errors"])
            raise GatewayError("LINEAR", f"GraphQL error: {messages}")
        return body.get("data") or {}

    async def fetch_tasks(self) -> list[RemoteTask]:
        tasks: list[RemoteTask] = []
        cursor = None
        async with self._client() as client:
            for _ in range(MAX_PAGES):
                issues = (await self._graphql(client, ISSUES_QUERY, {"cursor": cursor})).get("issues") or {}
                for issue in issues.get("nodes") or []:
                    # identifier (ENG-12) is what PRs reference, and the API accepts it as an id
                    external_id = issue.get("identifier") or issue.get("id")
                    if not external_id:
                        continue
                    tasks.append(RemoteTask(
                        external_id=external_id,
                        source_system=ConnectorType.LINEAR,
                        title=issue.get("title") or external_id,
                        status=(issue.get("state") or {}).get("name"),
                        assignee=(issue.get("assignee") or {}).get("name"),
                        url=issue.get("url"),
                        due_date=parse_timestamp(issue.get("dueDate")),
                        modified_at=parse_timestamp(issue.get("updatedAt")),
                    ))
                page_info = issues.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                cursor = page_info.get("endCursor")
            else:
                logger.warning(f"Stopped Linear issue fetch after {MAX_PAGES} pages")
        logger.debug(f"Fetched {len(tasks)} issue(s) from Linear")
        return tasks

    async def _team_states(self, client: httpx.AsyncClient, issue_id: str) -> list[dict]:
        issue = (await self._graphql(client, TEAM_STATES_QUERY, {"issueId": issue_id})).get("issue")
        if not issue:
            raise GatewayError("LINEAR", f"Not found: issue {issue_id}", status_code=404)
        return ((issue.get("team") or {}).get("states") or {}).get("nodes") or []

    async def _move(self, client: httpx.AsyncClient, issue_id: str, state: dict):
        data = await self._graphql(client, ISSUE_UPDATE_MUTATION, {"issueId": issue_id, "stateId": state["id"]})
        if not (data.get("issueUpdate") or {}).get("success"):
            raise GatewayError("LINEAR", f"Failed to move issue {issue_id} to '{state.get('name')}'")

    async def update_status(self, external_id: str, status: str) -> None:
        """Move an issue to the team workflow state with the given name."""
        async with self._client() as client:
            states = await self._team_states(client, external_id)
            for state in states:
                if (state.get("name") or "").lower() == status.lower():
                    await self._move(client, external_id, state)
                    logger.info(f"Moved Linear issue {external_id} to '{state['name']}'")
                    return
        available = [state.get("name") for state in states]
        raise GatewayError("LINEAR", f"Workflow state '{status}' not available. Available: {available}")

    async def complete_task(self, external_id: str) -> None:
        """Move an issue into the team's first completed-type state."""
        async with self._client() as client:
            for state in await self._team_states(client, external_id):
                if state.get("type") == "completed":
                    await self._move(client, external_id, state)
                    logger.info(f"Completed Linear issue {external_id}")
                    return
        raise GatewayError("LINEAR", f"No completed workflow state available for {external_id}")

    async def add_comment(self, external_id: str, text: str) -> None:
        async with self._client() as client:
            data = await self._graphql(client, COMMENT_CREATE_MUTATION, {"issueId": external_id, "body": text})
        if not (data.get("commentCreate") or {}).get("success"):
            raise GatewayError("LINEAR", f"Failed to add comment to issue {external_id}")
        logger.info(f"Added comment to Linear issue {external_id}")

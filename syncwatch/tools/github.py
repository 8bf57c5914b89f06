import logging
import re
from datetime import timedelta
from typing import Optional

import httpx
from pydantic import BaseModel

from syncwatch.config import Settings
from syncwatch.detection.models import PrSnapshot
from syncwatch.errors import GatewayError
from syncwatch.time_utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

# Task references like SIG-123, ENG-7 in PR titles/bodies
TASK_REFERENCE_PATTERN = re.compile(r"([A-Z]{2,10}-\d+)", re.IGNORECASE)

# https://github.com/<owner>/<repo>/pull/<number>
PR_URL_PATTERN = re.compile(r"^(?:https?://[^/]+/)?([^/\s]+)/([^/\s]+)/pull/(\d+)(?:[/?#].*)?$")


class PullRequestRef(BaseModel):
    """owner/repo/number identity of a PR."""
    owner: str
    repo: str
    number: int


def parse_pull_request_url(url: str | None) -> PullRequestRef | None:
    """Parse an owner/repo/pull/number URL. Returns None when it doesn't match."""
    if not url:
        return None
    match = PR_URL_PATTERN.match(url.strip())
    if not match:
        return None
    owner, repo, number = match.groups()
    return PullRequestRef(owner=owner, repo=repo, number=int(number))


def extract_task_references(text: str) -> list[str]:
    """Upper-cased task identifiers in order of first appearance."""
    seen: list[str] = []
    for match in TASK_REFERENCE_PATTERN.finditer(text or ""):
        identifier = match.group(1).upper()
        if identifier not in seen:
            seen.append(identifier)
    return seen


def _to_snapshot(pr: dict, repository: str) -> PrSnapshot:
    return PrSnapshot(
        id=pr["id"],
        number=pr["number"],
        title=pr.get("title") or "",
        body=pr.get("body"),
        state=pr.get("state", "open"),
        draft=bool(pr.get("draft", False)),
        merged=bool(pr.get("merged") or pr.get("merged_at")),
        mergeable_state=pr.get("mergeable_state"),
        author=(pr.get("user") or {}).get("login"),
        head_branch=(pr.get("head") or {}).get("ref"),
        created_at=parse_timestamp(pr.get("created_at")),
        updated_at=parse_timestamp(pr.get("updated_at")),
        html_url=pr.get("html_url"),
        repository=repository,
    )


class GitHubClient:
    """PR gateway backed by the GitHub REST API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _headers(self) -> dict:
        """GitHub API headers with authentication."""
        token = self._settings.github_token
        if not token:
            raise GatewayError("GITHUB", "GitHub token not configured. Set GITHUB_TOKEN in .env")
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28"
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.github_api_url,
            headers=self._headers(),
            timeout=30.0,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                "GITHUB",
                f"GitHub API error on {method} {path}: {e.response.text}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise GatewayError("GITHUB", f"Failed to connect to GitHub: {str(e)}")
        return response

    async def _list_pulls(self, client: httpx.AsyncClient, repository: str, state: str, max_pages: int) -> list[dict]:
        pulls: list[dict] = []
        per_page = 100
        for page in range(1, max_pages + 1):
            response = await self._request(
                client, "GET", f"/repos/{repository}/pulls",
                params={"state": state, "page": page, "per_page": per_page,
                        "sort": "updated", "direction": "desc"},
            )
            batch = response.json()
            pulls.extend(batch)
            if len(batch) < per_page:
                break
        return pulls

    async def fetch_open_pull_requests(self) -> list[PrSnapshot]:
        """
        Open PRs of every configured repository, plus PRs merged within the
        lookback window so merged-but-task-open discrepancies stay visible.

        The list endpoint omits mergeable_state and merged, so each PR is
        re-fetched individually. A failing detail fetch falls back to the
        list data for that PR only.
        """
        snapshots: list[PrSnapshot] = []
        merged_since = utcnow() - timedelta(hours=self._settings.github_merged_lookback_hours)

        async with self._client() as client:
            for repository in self._settings.github_repositories:
                if repository.count("/") != 1:
                    logger.warning(f"Skipping malformed repository name: {repository}")
                    continue

                pulls = await self._list_pulls(client, repository, "open", max_pages=10)
                closed = await self._list_pulls(client, repository, "closed", max_pages=1)
                for pr in closed:
                    merged_at = parse_timestamp(pr.get("merged_at"))
                    if merged_at and merged_at >= merged_since:
                        pulls.append(pr)

                for pr in pulls:
                    try:
                        detail = await self._request(client, "GET", f"/repos/{repository}/pulls/{pr['number']}")
                        snapshots.append(_to_snapshot(detail.json(), repository))
                    except GatewayError as e:
                        logger.warning(f"Could not fetch details of {repository}#{pr['number']}: {e}")
                        snapshots.append(_to_snapshot(pr, repository))

        logger.debug(f"Fetched {len(snapshots)} pull request(s) from GitHub")
        return snapshots

    def extract_linked_task_ids(self, pr: PrSnapshot) -> list[str]:
        """Task identifiers referenced in the PR title or body."""
        return extract_task_references(f"{pr.title or ''} {pr.body or ''}")

    async def add_comment(self, owner: str, repo: str, number: int, text: str) -> None:
        """Post an issue comment on a PR."""
        async with self._client() as client:
            await self._request(client, "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": text})
        logger.info(f"Added comment to PR #{number} in {owner}/{repo}")

    async def approve(self, owner: str, repo: str, number: int, body: str) -> None:
        """Submit an APPROVE review."""
        async with self._client() as client:
            await self._request(
                client, "POST", f"/repos/{owner}/{repo}/pulls/{number}/reviews",
                json={"event": "APPROVE", "body": body or ""},
            )
        logger.info(f"Approved PR #{number} in {owner}/{repo}")

    async def set_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> None:
        """Replace the PR's labels."""
        async with self._client() as client:
            await self._request(client, "PUT", f"/repos/{owner}/{repo}/issues/{number}/labels", json={"labels": labels})
        logger.info(f"Updated labels on PR #{number} in {owner}/{repo}: {labels}")

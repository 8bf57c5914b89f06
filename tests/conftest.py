"""Shared fixtures: in-memory database and fake gateways."""

from datetime import timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from syncwatch.alerts.service import AlertService
from syncwatch.config import Settings
from syncwatch.db import create_session_factory, init_db
from syncwatch.detection.models import ConnectorType, PrSnapshot
from syncwatch.errors import GatewayError
from syncwatch.tasks.models import RemoteTask
from syncwatch.tasks.repository import TaskRepository
from syncwatch.time_utils import utcnow
from syncwatch.tools.github import extract_task_references
from syncwatch.tools.registry import ConnectorRegistry


def make_pr(
    number: int = 42,
    title: str = "Fix login SIG-7",
    body: Optional[str] = None,
    state: str = "open",
    draft: bool = False,
    merged: bool = False,
    mergeable_state: Optional[str] = "dirty",
    age_days: float = 1,
    repository: str = "acme/api",
    author: Optional[str] = "octocat",
) -> PrSnapshot:
    now = utcnow()
    return PrSnapshot(
        id=1000 + number,
        number=number,
        title=title,
        body=body,
        state=state,
        draft=draft,
        merged=merged,
        mergeable_state=mergeable_state,
        author=author,
        head_branch=f"feature/{number}",
        created_at=now - timedelta(days=age_days),
        updated_at=now - timedelta(hours=1),
        html_url=f"https://github.com/{repository}/pull/{number}",
        repository=repository,
    )


def make_remote_task(
    external_id: str = "SIG-7",
    source_system: ConnectorType = ConnectorType.ASANA,
    title: Optional[str] = None,
    status: Optional[str] = "in progress",
    assignee: Optional[str] = "alice",
) -> RemoteTask:
    return RemoteTask(
        external_id=external_id,
        source_system=source_system,
        title=title or f"Task {external_id}",
        status=status,
        assignee=assignee,
        url=f"https://pm.example/{external_id}",
    )


class FakePrGateway:
    """In-memory PR gateway recording write calls."""

    def __init__(self, pull_requests: Optional[List[PrSnapshot]] = None):
        self.pull_requests = pull_requests or []
        self.calls: List[tuple] = []
        self.fetch_error: Optional[Exception] = None
        self.fail_for: set = set()  # PR numbers whose reference extraction blows up

    async def fetch_open_pull_requests(self) -> List[PrSnapshot]:
        self.calls.append(("fetch",))
        if self.fetch_error:
            raise self.fetch_error
        return list(self.pull_requests)

    def extract_linked_task_ids(self, pr: PrSnapshot) -> List[str]:
        if pr.number in self.fail_for:
            raise GatewayError("GITHUB", f"boom on #{pr.number}")
        return extract_task_references(f"{pr.title or ''} {pr.body or ''}")

    async def add_comment(self, owner: str, repo: str, number: int, text: str) -> None:
        self.calls.append(("add_comment", owner, repo, number, text))

    async def approve(self, owner: str, repo: str, number: int, body: str) -> None:
        self.calls.append(("approve", owner, repo, number, body))

    async def set_labels(self, owner: str, repo: str, number: int, labels: List[str]) -> None:
        self.calls.append(("set_labels", owner, repo, number, labels))

    def write_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] != "fetch"]


class FakePmGateway:
    """In-memory PM gateway recording write calls."""

    def __init__(self, connector_type: ConnectorType, tasks: Optional[List[RemoteTask]] = None):
        self.connector_type = connector_type
        self.tasks = tasks or []
        self.calls: List[tuple] = []
        self.fail_on: set = set()  # method names that raise

    def _maybe_fail(self, name: str):
        if name in self.fail_on:
            raise GatewayError(self.connector_type.value, f"{name} failed")

    async def fetch_tasks(self) -> List[RemoteTask]:
        self._maybe_fail("fetch_tasks")
        return list(self.tasks)

    async def update_status(self, external_id: str, status: str) -> None:
        self._maybe_fail("update_status")
        self.calls.append(("update_status", external_id, status))

    async def add_comment(self, external_id: str, text: str) -> None:
        self._maybe_fail("add_comment")
        self.calls.append(("add_comment", external_id, text))

    async def complete_task(self, external_id: str) -> None:
        self._maybe_fail("complete_task")
        self.calls.append(("complete_task", external_id))


class FakeOllama:
    """Inference gateway stub with canned responses and call counters."""

    def __init__(self, text: Optional[str] = "Move the task to In Review.", json_responses: Optional[List] = None):
        self.text = text
        self.json_responses = list(json_responses or [])
        self.default_json: Optional[str] = None
        self.text_calls: List[str] = []
        self.json_calls: List[str] = []
        self.json_max_tokens: List[Optional[int]] = []

    async def generate_text(self, prompt: str) -> Optional[str]:
        self.text_calls.append(prompt)
        return self.text

    async def generate_json(self, prompt: str, max_tokens: Optional[int] = None) -> Optional[str]:
        self.json_calls.append(prompt)
        self.json_max_tokens.append(max_tokens)
        if self.json_responses:
            response = self.json_responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self.default_json


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        ai_enabled=True,
        ollama_model="llama3",
        analysis_batch_size=5,
        enrichment_queue_size=100,
    )


@pytest.fixture
def alert_service(session_factory) -> AlertService:
    return AlertService(session_factory)


@pytest.fixture
def task_repository(session_factory) -> TaskRepository:
    return TaskRepository(session_factory)


@pytest.fixture
def pr_gateway() -> FakePrGateway:
    return FakePrGateway()


@pytest.fixture
def pm_gateways() -> Dict[ConnectorType, FakePmGateway]:
    return {
        ConnectorType.ASANA: FakePmGateway(ConnectorType.ASANA),
        ConnectorType.JIRA: FakePmGateway(ConnectorType.JIRA),
    }


@pytest.fixture
def registry(pr_gateway, pm_gateways) -> ConnectorRegistry:
    registry = ConnectorRegistry(pr_gateway=pr_gateway)
    for gateway in pm_gateways.values():
        registry.register_pm(gateway)
    return registry

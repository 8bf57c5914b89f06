"""Tests for the GitHub, PM and Ollama clients against mocked HTTP."""

import json
from datetime import timedelta

import httpx
import pytest

from syncwatch.config import Settings
from syncwatch.detection.models import ConnectorType
from syncwatch.errors import GatewayError
from syncwatch.time_utils import utcnow
from syncwatch.tools.asana import AsanaClient
from syncwatch.tools.github import GitHubClient, extract_task_references, parse_pull_request_url
from syncwatch.tools.jira import JiraClient
from syncwatch.tools.linear import LinearClient
from syncwatch.tools.ollama import SYSTEM_PROMPT, OllamaClient


def _pull(number: int, **overrides) -> dict:
    pull = {
        "id": 1000 + number,
        "number": number,
        "title": f"PR {number}",
        "body": None,
        "state": "open",
        "draft": False,
        "user": {"login": "octocat"},
        "head": {"ref": f"feature/{number}"},
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": "2024-05-02T10:00:00Z",
        "html_url": f"https://github.com/acme/api/pull/{number}",
    }
    pull.update(overrides)
    return pull


# =============================================================================
# GitHub
# =============================================================================

def test_extract_task_references_is_case_insensitive_and_ordered():
    assert extract_task_references("fixes sig-7 and ENG-12, also SIG-7") == ["SIG-7", "ENG-12"]
    assert extract_task_references("") == []
    assert extract_task_references("A-1 is too short") == []


def test_parse_pull_request_url():
    ref = parse_pull_request_url("https://github.com/acme/api/pull/42")
    assert (ref.owner, ref.repo, ref.number) == ("acme", "api", 42)
    assert parse_pull_request_url("https://github.com/acme/api/pull/42/files").number == 42
    assert parse_pull_request_url("https://github.com/acme/api/issues/42") is None
    assert parse_pull_request_url(None) is None


@pytest.mark.asyncio
async def test_fetch_includes_details_and_recent_merges():
    """Ensure open PRs get detail data and recently merged PRs are included."""
    recent = (utcnow() - timedelta(hours=2)).isoformat()
    old = (utcnow() - timedelta(days=5)).isoformat()
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path == "/repos/acme/api/pulls":
            if request.url.params["state"] == "open":
                return httpx.Response(200, json=[_pull(1)])
            return httpx.Response(200, json=[
                _pull(2, state="closed", merged_at=recent),
                _pull(3, state="closed", merged_at=old),
                _pull(4, state="closed", merged_at=None),
            ])
        if path == "/repos/acme/api/pulls/1":
            return httpx.Response(200, json=_pull(1, mergeable_state="clean", merged=False))
        if path == "/repos/acme/api/pulls/2":
            return httpx.Response(500, text="boom")
        return httpx.Response(404)

    settings = Settings(github_token="t0k3n", github_repositories=["acme/api"])
    client = GitHubClient(settings, transport=httpx.MockTransport(handler))

    pulls = await client.fetch_open_pull_requests()

    assert [pr.number for pr in pulls] == [1, 2]
    assert pulls[0].mergeable_state == "clean"
    assert pulls[0].author == "octocat"
    assert pulls[0].repository == "acme/api"
    # detail fetch failed, list data used
    assert pulls[1].merged is True
    assert requests[0].headers["Authorization"] == "Bearer t0k3n"


@pytest.mark.asyncio
async def test_github_write_calls():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    client = GitHubClient(Settings(github_token="t"), transport=httpx.MockTransport(handler))

    await client.add_comment("acme", "api", 42, "hello")
    await client.approve("acme", "api", 42, "lgtm")
    await client.set_labels("acme", "api", 42, ["sync"])

    assert requests == [
        ("POST", "/repos/acme/api/issues/42/comments", {"body": "hello"}),
        ("POST", "/repos/acme/api/pulls/42/reviews", {"event": "APPROVE", "body": "lgtm"}),
        ("PUT", "/repos/acme/api/issues/42/labels", {"labels": ["sync"]}),
    ]


@pytest.mark.asyncio
async def test_github_errors_become_gateway_errors():
    client = GitHubClient(Settings(github_token="t"), transport=httpx.MockTransport(
        lambda request: httpx.Response(403, text="forbidden")
    ))

    with pytest.raises(GatewayError) as excinfo:
        await client.add_comment("acme", "api", 1, "x")
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_github_requires_token():
    with pytest.raises(GatewayError):
        await GitHubClient(Settings()).add_comment("acme", "api", 1, "x")


# =============================================================================
# Jira
# =============================================================================

def _jira_settings() -> Settings:
    return Settings(jira_base_url="https://acme.atlassian.net/", jira_api_user="bot@acme.io", jira_api_token="secret")


@pytest.mark.asyncio
async def test_jira_fetch_tasks():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rest/api/3/search"
        return httpx.Response(200, json={"issues": [
            {"key": "SIG-7", "fields": {
                "summary": "Login fix",
                "status": {"name": "In Progress"},
                "assignee": {"displayName": "Alice"},
                "duedate": None,
                "updated": "2024-05-02T10:00:00.000+0000",
            }},
            {"fields": {"summary": "no key"}},
        ]})

    tasks = await JiraClient(_jira_settings(), transport=httpx.MockTransport(handler)).fetch_tasks()

    assert len(tasks) == 1
    task = tasks[0]
    assert task.external_id == "SIG-7"
    assert task.source_system == ConnectorType.JIRA
    assert task.status == "In Progress"
    assert task.assignee == "Alice"
    assert task.url == "https://acme.atlassian.net/browse/SIG-7"


@pytest.mark.asyncio
async def test_jira_update_status_and_complete_use_transitions():
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"transitions": [
                {"id": "21", "to": {"name": "In Review", "statusCategory": {"key": "indeterminate"}}},
                {"id": "31", "to": {"name": "Done", "statusCategory": {"key": "done"}}},
            ]})
        posted.append((request.url.path, json.loads(request.content)))
        return httpx.Response(204)

    client = JiraClient(_jira_settings(), transport=httpx.MockTransport(handler))

    await client.update_status("SIG-7", "in review")
    await client.complete_task("SIG-7")
    await client.add_comment("SIG-7", "hello")

    assert posted[0] == ("/rest/api/3/issue/SIG-7/transitions", {"transition": {"id": "21"}})
    assert posted[1] == ("/rest/api/3/issue/SIG-7/transitions", {"transition": {"id": "31"}})
    assert posted[2][0] == "/rest/api/3/issue/SIG-7/comment"
    assert posted[2][1]["body"]["content"][0]["content"][0]["text"] == "hello"


@pytest.mark.asyncio
async def test_jira_unknown_status_raises():
    client = JiraClient(_jira_settings(), transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"transitions": []})
    ))

    with pytest.raises(GatewayError):
        await client.update_status("SIG-7", "Blocked")


# =============================================================================
# Asana
# =============================================================================

def _asana_settings(**overrides) -> Settings:
    values = dict(asana_access_token="asana-secret", asana_api_url="https://asana.test/api/1.0")
    values.update(overrides)
    return Settings(**values)


@pytest.mark.asyncio
async def test_asana_fetch_tasks_follows_pages_and_dedups():
    """Ensure every page is read and a task shared by two projects is returned once."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer asana-secret"
        path = request.url.path
        offset = request.url.params.get("offset")
        seen.append((path, offset))
        if path == "/api/1.0/projects/P1/tasks" and offset is None:
            assert "permalink_url" in request.url.params["opt_fields"]
            return httpx.Response(200, json={
                "data": [{
                    "gid": "111", "name": "Login fix", "completed": False,
                    "assignee": {"name": "Alice"}, "due_on": "2024-05-10",
                    "modified_at": "2024-05-02T10:00:00.000Z",
                    "permalink_url": "https://app.asana.com/0/P1/111",
                }],
                "next_page": {"offset": "abc"},
            })
        if path == "/api/1.0/projects/P1/tasks":
            return httpx.Response(200, json={
                "data": [{"gid": "112", "name": None, "completed": True, "assignee": None}],
                "next_page": None,
            })
        if path == "/api/1.0/projects/P2/tasks":
            return httpx.Response(200, json={"data": [{"gid": "111", "name": "Login fix"}]})
        return httpx.Response(404)

    client = AsanaClient(_asana_settings(asana_project_ids=["P1", "P2"]), transport=httpx.MockTransport(handler))
    tasks = await client.fetch_tasks()

    assert ("/api/1.0/projects/P1/tasks", "abc") in seen
    assert [task.external_id for task in tasks] == ["111", "112"]
    first, second = tasks
    assert first.source_system == ConnectorType.ASANA
    assert first.status == "open"
    assert first.assignee == "Alice"
    assert first.url == "https://app.asana.com/0/P1/111"
    assert first.due_date.date().isoformat() == "2024-05-10"
    assert second.title == "Untitled Task"
    assert second.status == "completed"


@pytest.mark.asyncio
async def test_asana_discovers_projects_when_none_configured():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/1.0/workspaces":
            return httpx.Response(200, json={"data": [{"gid": "W1"}]})
        if path == "/api/1.0/workspaces/W1/projects":
            return httpx.Response(200, json={"data": [{"gid": "P9"}]})
        if path == "/api/1.0/projects/P9/tasks":
            return httpx.Response(200, json={"data": [{"gid": "900", "name": "Docs"}]})
        return httpx.Response(404)

    tasks = await AsanaClient(_asana_settings(), transport=httpx.MockTransport(handler)).fetch_tasks()

    assert [task.external_id for task in tasks] == ["900"]


@pytest.mark.asyncio
async def test_asana_status_updates_complete_or_comment():
    """Ensure a done-like status completes the task and any other status becomes a comment."""
    writes = []

    def handler(request: httpx.Request) -> httpx.Response:
        writes.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"data": {}})

    client = AsanaClient(_asana_settings(), transport=httpx.MockTransport(handler))

    await client.update_status("111", "Done")
    await client.update_status("111", "In Review")

    assert writes[0] == ("PUT", "/api/1.0/tasks/111", {"data": {"completed": True}})
    assert writes[1] == (
        "POST", "/api/1.0/tasks/111/stories", {"data": {"text": "Task status should be updated to: In Review"}}
    )


@pytest.mark.asyncio
async def test_asana_errors_become_gateway_errors():
    client = AsanaClient(_asana_settings(), transport=httpx.MockTransport(lambda request: httpx.Response(404)))

    with pytest.raises(GatewayError) as exc:
        await client.complete_task("404")
    assert exc.value.status_code == 404

    with pytest.raises(GatewayError):
        await AsanaClient(Settings()).add_comment("111", "hello")


# =============================================================================
# Linear
# =============================================================================

def _linear_settings() -> Settings:
    return Settings(linear_api_key="lin_api_key", linear_api_url="https://linear.test/graphql")


def _linear_handler(responses: dict, sent: list):
    """Answer each GraphQL operation by a keyword found in its query text."""
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "lin_api_key"
        body = json.loads(request.content)
        sent.append(body)
        for keyword, response in responses.items():
            if keyword in body["query"]:
                return httpx.Response(200, json=response(body["variables"]) if callable(response) else response)
        return httpx.Response(400, text="unexpected query")
    return handler


WORKFLOW_STATES = {"data": {"issue": {"team": {"states": {"nodes": [
    {"id": "s-todo", "name": "Todo", "type": "unstarted"},
    {"id": "s-review", "name": "In Review", "type": "started"},
    {"id": "s-done", "name": "Done", "type": "completed"},
]}}}}}


@pytest.mark.asyncio
async def test_linear_fetch_tasks_pages_through_issues():
    def issues(variables):
        if variables["cursor"] is None:
            return {"data": {"issues": {
                "nodes": [{
                    "id": "uuid-1", "identifier": "ENG-12", "title": "Login fix",
                    "url": "https://linear.app/acme/issue/ENG-12",
                    "dueDate": "2024-05-10", "updatedAt": "2024-05-02T10:00:00.000Z",
                    "state": {"name": "In Progress", "type": "started"},
                    "assignee": {"name": "Alice"},
                }],
                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
            }}}
        return {"data": {"issues": {
            "nodes": [{"id": "uuid-2", "identifier": "ENG-13", "title": "Docs", "state": None, "assignee": None}],
            "pageInfo": {"hasNextPage": False, "endCursor": None},
        }}}

    sent = []
    client = LinearClient(_linear_settings(), transport=httpx.MockTransport(_linear_handler({"issues(": issues}, sent)))
    tasks = await client.fetch_tasks()

    assert [body["variables"]["cursor"] for body in sent] == [None, "c1"]
    assert [task.external_id for task in tasks] == ["ENG-12", "ENG-13"]
    assert tasks[0].source_system == ConnectorType.LINEAR
    assert tasks[0].status == "In Progress"
    assert tasks[0].assignee == "Alice"
    assert tasks[1].status is None


@pytest.mark.asyncio
async def test_linear_status_changes_resolve_workflow_state_ids():
    """Ensure the mutation receives the state id, matched by name or by completed type."""
    sent = []
    client = LinearClient(_linear_settings(), transport=httpx.MockTransport(_linear_handler({
        "team {": WORKFLOW_STATES,
        "issueUpdate": {"data": {"issueUpdate": {"success": True}}},
    }, sent)))

    await client.update_status("ENG-12", "in review")
    await client.complete_task("ENG-12")

    updates = [body["variables"] for body in sent if "issueUpdate" in body["query"]]
    assert updates == [
        {"issueId": "ENG-12", "stateId": "s-review"},
        {"issueId": "ENG-12", "stateId": "s-done"},
    ]


@pytest.mark.asyncio
async def test_linear_unknown_state_raises():
    client = LinearClient(_linear_settings(), transport=httpx.MockTransport(_linear_handler({
        "team {": WORKFLOW_STATES,
    }, [])))

    with pytest.raises(GatewayError) as exc:
        await client.update_status("ENG-12", "Blocked")
    assert "In Review" in str(exc.value)


@pytest.mark.asyncio
async def test_linear_graphql_and_mutation_failures_raise():
    client = LinearClient(_linear_settings(), transport=httpx.MockTransport(_linear_handler({
        "team {": {"errors": [{"message": "Entity not found"}], "data": None},
        "commentCreate": {"data": {"commentCreate": {"success": False}}},
    }, [])))

    with pytest.raises(GatewayError) as exc:
        await client.complete_task("ENG-404")
    assert "Entity not found" in str(exc.value)

    with pytest.raises(GatewayError):
        await client.add_comment("ENG-12", "hello")

    with pytest.raises(GatewayError):
        await LinearClient(Settings()).fetch_tasks()


# =============================================================================
# Ollama
# =============================================================================

@pytest.mark.asyncio
async def test_ollama_json_request_shape():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"response": '{"findings": []}'})

    client = OllamaClient(Settings(ollama_model="llama3"), transport=httpx.MockTransport(handler))

    assert await client.generate_json("prompt", 1500) == '{"findings": []}'
    body = bodies[0]
    assert body["stream"] is False
    assert body["format"] == "json"
    assert body["system"] == SYSTEM_PROMPT
    assert body["options"]["num_predict"] == 1500
    assert body["options"]["temperature"] == 0.1


@pytest.mark.asyncio
async def test_ollama_baked_model_skips_system_prompt():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"response": "Move the task."})

    settings = Settings(ollama_model="syncwatch-llama3", ollama_system_prompt_baked=True)
    client = OllamaClient(settings, transport=httpx.MockTransport(handler))

    assert await client.generate_text("prompt") == "Move the task."
    assert "system" not in bodies[0]
    assert "format" not in bodies[0]
    assert bodies[0]["options"]["temperature"] == 0.4


@pytest.mark.asyncio
async def test_ollama_failures_are_unavailable():
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    for transport in (
        httpx.MockTransport(timeout),
        httpx.MockTransport(lambda request: httpx.Response(500, text="error")),
        httpx.MockTransport(lambda request: httpx.Response(200, text="not json")),
        httpx.MockTransport(lambda request: httpx.Response(200, json={"response": "   "})),
    ):
        client = OllamaClient(Settings(), transport=transport)
        assert await client.generate_text("prompt") is None

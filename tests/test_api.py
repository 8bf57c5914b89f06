"""HTTP API tests against an in-memory database and fake connectors."""

import pytest
from fastapi.testclient import TestClient

from syncwatch.alerts.models import AlertCandidate, AlertSeverity, AlertType
from syncwatch.alerts.service import AlertService
from syncwatch.config import Settings
from syncwatch.detection.models import ConnectorType
from syncwatch.main import create_app
from tests.conftest import make_pr, make_remote_task


@pytest.fixture
def client(session_factory, registry):
    app = create_app(
        settings=Settings(),
        session_factory=session_factory,
        registry=registry,
        start_background=False,
    )
    with TestClient(app) as test_client:
        yield test_client


def _alert(session_factory, source_id="1042"):
    alert, _ = AlertService(session_factory).create_alert(AlertCandidate(
        alert_type=AlertType.PR_MERGED_TASK_OPEN,
        severity=AlertSeverity.CRITICAL,
        title="PR merged but task still open",
        source_system=ConnectorType.GITHUB,
        source_id=source_id,
        source_url="https://github.com/acme/api/pull/42",
        target_system=ConnectorType.ASANA,
        target_id="SIG-7",
    ))
    return alert


def test_health_reports_connectors(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["github"] is True
    assert sorted(body["pm_connectors"]) == ["ASANA", "JIRA"]
    assert body["ai_enabled"] is False


def test_alert_listing_and_read_flow(client, session_factory):
    alert = _alert(session_factory)

    assert client.get("/alerts/unread/count").json() == {"count": 1}
    listed = client.get("/alerts").json()
    assert [item["id"] for item in listed] == [alert.id]
    assert listed[0]["alert_type"] == "PR_MERGED_TASK_OPEN"

    assert client.post(f"/alerts/{alert.id}/read").status_code == 200
    assert client.get("/alerts/unread").json() == []
    assert client.get(f"/alerts/{alert.id}").json()["is_read"] is True


def test_unknown_alert_is_404(client):
    assert client.get("/alerts/9999").status_code == 404
    assert client.post("/alerts/9999/resolve").status_code == 404
    assert client.post("/alerts/9999/execute").status_code == 404


def test_resolve_removes_alert_from_listing(client, session_factory):
    alert = _alert(session_factory)

    resolved = client.post(f"/alerts/{alert.id}/resolve").json()

    assert resolved["is_resolved"] is True
    assert client.get("/alerts").json() == []


def test_execute_runs_rule_based_action(client, session_factory, pm_gateways):
    """Ensure an unenriched merged-PR alert completes the task through the API."""
    alert = _alert(session_factory)

    response = client.post(f"/alerts/{alert.id}/execute")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["action_taken"] == "COMPLETE_TASK"
    assert pm_gateways[ConnectorType.ASANA].calls[0] == ("complete_task", "SIG-7")


def test_manual_triggers(client, pr_gateway, pm_gateways):
    pm_gateways[ConnectorType.ASANA].tasks = [make_remote_task("SIG-7", status="To Do")]
    pr_gateway.pull_requests = [make_pr()]

    synced = client.post("/sync/tasks").json()
    assert {item["source_system"] for item in synced} == {"ASANA", "JIRA"}

    assert client.post("/sync/detect").json() == {"new_alerts": 1}
    # AI is disabled in these settings
    assert client.post("/ai/analyze").status_code == 503

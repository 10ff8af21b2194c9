import json

import pytest
from fastapi.testclient import TestClient

from aks_deployer.adapters import PipelineDispatcher
from aks_deployer.fastapi_app import create_app
from aks_deployer.github_integration import sign_payload
from aks_deployer.pipeline import PipelineRun, RunStatus

COMMIT = "3f9c2a1b7d4e5f60718293a4b5c6d7e8f9012345"
SECRET = "webhook-secret"


class CountingPipeline:
    """Stands in for DeploymentPipeline; records every run request."""

    def __init__(self, runs):
        self.runs = runs

    def run(self, trigger="manual", commit=None, run_id=None):
        self.runs.append((run_id, trigger, commit))
        return PipelineRun(
            run_id=run_id, app="web", trigger=trigger, branch="main", commit=commit, status=RunStatus.SUCCESS
        )


@pytest.fixture
def started():
    return []


@pytest.fixture
def client(settings, started):
    settings.GITHUB_WEBHOOK_SECRET = SECRET
    dispatcher = PipelineDispatcher(lambda: CountingPipeline(started), tracked_branch="main")
    return TestClient(create_app(settings, dispatcher))


def push_payload(ref="refs/heads/main", after=COMMIT, **extra):
    payload = {
        "ref": ref,
        "before": "0" * 40,
        "after": after,
        "repository": {"full_name": "acme/web", "clone_url": "https://github.com/acme/web.git"},
        "pusher": {"name": "octocat"},
    }
    payload.update(extra)
    return json.dumps(payload).encode()


def deliver(client, body, event="push", delivery="d-1", secret=SECRET):
    headers = {"X-GitHub-Event": event, "X-GitHub-Delivery": delivery, "Content-Type": "application/json"}
    if secret:
        headers["X-Hub-Signature-256"] = sign_payload(secret, body)
    return client.post("/github-webhook/", content=body, headers=headers)


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/api/health").json()["branch"] == "main"


def test_push_to_tracked_branch_triggers_exactly_one_run(client, started):
    response = deliver(client, push_payload())

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "queued"
    assert data["commit"] == COMMIT
    assert started == [(data["run_id"], "webhook", COMMIT)]

    run = client.get(f"/api/runs/{data['run_id']}").json()
    assert run["status"] == "success"
    assert [r["run_id"] for r in client.get("/api/runs").json()] == [data["run_id"]]


def test_redelivery_does_not_start_another_run(client, started):
    first = deliver(client, push_payload(), delivery="d-42").json()
    second = deliver(client, push_payload(), delivery="d-42")

    assert second.status_code == 202
    assert second.json()["status"] == "ignored"
    assert second.json()["run_id"] == first["run_id"]
    assert len(started) == 1


def test_distinct_pushes_each_start_a_run(client, started):
    deliver(client, push_payload(), delivery="d-1")
    deliver(client, push_payload(after="a" * 40), delivery="d-2")

    assert [commit for _, _, commit in started] == [COMMIT, "a" * 40]


def test_push_to_other_branch_is_ignored(client, started):
    response = deliver(client, push_payload(ref="refs/heads/feature/login"))

    assert response.json()["status"] == "ignored"
    assert started == []


def test_branch_deletion_is_ignored(client, started):
    response = deliver(client, push_payload(after="0" * 40, deleted=True))

    assert response.json()["reason"] == "branch deletion"
    assert started == []


def test_bad_signature_is_rejected(client, started):
    response = deliver(client, push_payload(), secret="wrong")

    assert response.status_code == 401
    assert started == []


def test_missing_signature_is_rejected(client, started):
    assert deliver(client, push_payload(), secret=None).status_code == 401


def test_ping_event(client):
    response = deliver(client, b'{"zen": "Keep it logically awesome."}', event="ping")

    assert response.json() == {"status": "pong"}


def test_other_events_are_ignored(client, started):
    response = deliver(client, b'{"action": "opened"}', event="pull_request")

    assert response.status_code == 202
    assert response.json()["status"] == "ignored"
    assert started == []


def test_malformed_push_payload(client):
    response = deliver(client, b'{"before": "x"}')

    assert response.status_code == 400


def test_unknown_run_is_404(client):
    assert client.get("/api/runs/nope").status_code == 404


def test_manual_trigger(client, started):
    response = client.post("/api/runs", json={"commit": COMMIT})

    assert response.status_code == 202
    assert started == [(response.json()["run_id"], "manual", COMMIT)]


def test_unsigned_deliveries_accepted_without_secret(settings, started):
    settings.GITHUB_WEBHOOK_SECRET = None
    dispatcher = PipelineDispatcher(lambda: CountingPipeline(started), tracked_branch="main")
    client = TestClient(create_app(settings, dispatcher))

    response = deliver(client, push_payload(), secret=None)

    assert response.status_code == 202
    assert len(started) == 1


def test_custom_webhook_path(settings, started):
    settings.WEBHOOK_PATH = "/hooks/github"
    dispatcher = PipelineDispatcher(lambda: CountingPipeline(started), tracked_branch="main")
    client = TestClient(create_app(settings, dispatcher))

    body = push_payload()
    response = client.post(
        "/hooks/github",
        content=body,
        headers={"X-GitHub-Event": "push", "X-GitHub-Delivery": "d-9"},
    )

    assert response.status_code == 202
    assert len(started) == 1

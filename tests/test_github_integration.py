from types import SimpleNamespace

import pytest

from aks_deployer import github_integration
from aks_deployer.errors import GitHubApiError
from aks_deployer.github_integration import GitHubWebhooks, PushEvent, sign_payload, verify_signature


def test_verify_signature_accepts_matching_digest():
    body = b'{"ref": "refs/heads/main"}'
    assert verify_signature("topsecret", body, sign_payload("topsecret", body))


def test_verify_signature_rejects_tampering_and_missing_header():
    body = b'{"ref": "refs/heads/main"}'
    header = sign_payload("topsecret", body)

    assert not verify_signature("topsecret", body + b" ", header)
    assert not verify_signature("other", body, header)
    assert not verify_signature("topsecret", body, None)


def test_verify_signature_is_open_without_secret():
    assert verify_signature(None, b"{}", None)


def test_push_event_branch_and_deletion():
    event = PushEvent.model_validate({
        "ref": "refs/heads/main",
        "after": "3f9c2a1b7d4e5f60718293a4b5c6d7e8f9012345",
        "repository": {"full_name": "acme/web", "clone_url": "https://github.com/acme/web.git"},
        "pusher": {"name": "octocat"},
        "head_commit": {"message": "ignored field"},
    })

    assert event.branch == "main"
    assert not event.is_branch_deletion
    assert event.repository.full_name == "acme/web"

    tag_push = PushEvent(ref="refs/tags/v1.0.0")
    assert tag_push.branch is None

    deletion = PushEvent(ref="refs/heads/main", deleted=True)
    assert deletion.is_branch_deletion


class FakeRequests:
    def __init__(self, hooks, create_status=201, pages=None):
        self.pages = pages or [hooks]
        self.create_status = create_status
        self.posts = []
        self.gets = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.get_headers = headers
        self.gets.append((url, params))
        page = len(self.gets) - 1
        links = {}
        if page + 1 < len(self.pages):
            links["next"] = {"url": f"https://api.github.com/repositories/1/hooks?per_page=100&page={page + 2}"}
        return SimpleNamespace(status_code=200, json=lambda: self.pages[page], links=links, text="")

    def post(self, url, headers=None, json=None, timeout=None):
        self.posts.append((url, json))
        if url.endswith("/pings"):
            return SimpleNamespace(status_code=204, json=lambda: {}, text="")
        return SimpleNamespace(status_code=self.create_status, json=lambda: {"id": 42, **json}, text="bad")


def test_ensure_webhook_creates_push_hook(monkeypatch):
    fake = FakeRequests(hooks=[])
    monkeypatch.setattr(github_integration, "requests", fake)

    hook = GitHubWebhooks("ghp_token", "acme", "web").ensure_push_webhook(
        "https://ci.example.com/github-webhook/", secret="s3"
    )

    assert hook["id"] == 42
    url, body = fake.posts[0]
    assert url == "https://api.github.com/repos/acme/web/hooks"
    assert body["events"] == ["push"]
    assert body["config"] == {
        "url": "https://ci.example.com/github-webhook/",
        "content_type": "json",
        "insecure_ssl": "0",
        "secret": "s3",
    }
    assert fake.get_headers["Authorization"] == "token ghp_token"


def test_ensure_webhook_is_idempotent(monkeypatch):
    existing = {"id": 7, "config": {"url": "https://ci.example.com/github-webhook/"}}
    fake = FakeRequests(hooks=[existing])
    monkeypatch.setattr(github_integration, "requests", fake)

    hook = GitHubWebhooks("ghp_token", "acme", "web").ensure_push_webhook("https://ci.example.com/github-webhook/")

    assert hook == existing
    assert fake.posts == []


def test_ensure_webhook_raises_on_api_error(monkeypatch):
    monkeypatch.setattr(github_integration, "requests", FakeRequests(hooks=[], create_status=422))

    with pytest.raises(GitHubApiError):
        GitHubWebhooks("ghp_token", "acme", "web").ensure_push_webhook("https://ci.example.com/github-webhook/")


def test_ping(monkeypatch):
    fake = FakeRequests(hooks=[])
    monkeypatch.setattr(github_integration, "requests", fake)

    GitHubWebhooks("ghp_token", "acme", "web").ping(42)

    assert fake.posts[0][0] == "https://api.github.com/repos/acme/web/hooks/42/pings"


def test_existing_hook_on_a_later_page_is_found(monkeypatch):
    other = [{"id": n, "config": {"url": f"https://other.example.com/{n}"}} for n in range(100)]
    existing = {"id": 7, "config": {"url": "https://ci.example.com/github-webhook/"}}
    fake = FakeRequests(hooks=None, pages=[other, [existing]])
    monkeypatch.setattr(github_integration, "requests", fake)

    hook = GitHubWebhooks("ghp_token", "acme", "web").ensure_push_webhook("https://ci.example.com/github-webhook/")

    assert hook == existing
    assert fake.posts == []
    assert fake.gets[0] == ("https://api.github.com/repos/acme/web/hooks", {"per_page": 100})
    assert fake.gets[1] == ("https://api.github.com/repositories/1/hooks?per_page=100&page=2", None)

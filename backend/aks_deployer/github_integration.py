"""
GitHub push webhook handling and webhook provisioning via the REST API.
"""
import hashlib
import hmac
import logging
from typing import Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from .errors import GitHubApiError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
ZERO_SHA = "0" * 40


class Repository(BaseModel):
    full_name: str = ""
    clone_url: str = ""
    html_url: str = ""


class Pusher(BaseModel):
    name: str = ""
    email: Optional[str] = None


class PushEvent(BaseModel):
    """Subset of the GitHub push payload the pipeline needs."""
    ref: str
    before: str = ZERO_SHA
    after: str = ZERO_SHA
    deleted: bool = False
    repository: Repository = Field(default_factory=Repository)
    pusher: Pusher = Field(default_factory=Pusher)

    @property
    def branch(self) -> Optional[str]:
        prefix = "refs/heads/"
        if self.ref.startswith(prefix):
            return self.ref[len(prefix):]
        return None

    @property
    def is_branch_deletion(self) -> bool:
        return self.deleted or self.after == ZERO_SHA


def sign_payload(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: Optional[str], body: bytes, header: Optional[str]) -> bool:
    """Check X-Hub-Signature-256; always true when no secret is configured."""
    if not secret:
        return True
    if not header:
        return False
    return hmac.compare_digest(sign_payload(secret, body), header)


class GitHubWebhooks:
    """Manage the repository push webhook that triggers the pipeline."""

    def __init__(self, github_token: str, owner: str, repository: str, api_url: str = GITHUB_API_URL):
        self.owner = owner
        self.repository = repository
        self.hooks_url = f"{api_url}/repos/{owner}/{repository}/hooks"
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
        }
        if github_token:
            self.headers["Authorization"] = f"token {github_token}"

    def list_hooks(self) -> List[Dict]:
        """All repository hooks, following the Link header across pages."""
        hooks: List[Dict] = []
        url: Optional[str] = self.hooks_url
        params: Optional[Dict] = {"per_page": 100}
        while url:
            response = requests.get(url, headers=self.headers, params=params, timeout=10)
            if response.status_code != 200:
                raise GitHubApiError(f"listing hooks failed: {response.status_code} {response.text}")
            hooks.extend(response.json())
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None
        return hooks

    def find_hook(self, url: str) -> Optional[Dict]:
        for hook in self.list_hooks():
            if hook.get("config", {}).get("url") == url:
                return hook
        return None

    def ensure_push_webhook(self, url: str, secret: Optional[str] = None) -> Dict:
        """
        Create a JSON push webhook pointing at ``url`` unless one already exists.

        Returns the existing or newly created hook.
        """
        existing = self.find_hook(url)
        if existing:
            logger.info(f"Webhook to {url} already exists (id {existing.get('id')})")
            return existing

        config = {"url": url, "content_type": "json", "insecure_ssl": "0"}
        if secret:
            config["secret"] = secret
        body = {"name": "web", "active": True, "events": ["push"], "config": config}

        response = requests.post(self.hooks_url, headers=self.headers, json=body, timeout=10)
        if response.status_code != 201:
            raise GitHubApiError(f"creating hook failed: {response.status_code} {response.text}")
        hook = response.json()
        logger.info(f"✅ Created push webhook {hook.get('id')} on {self.owner}/{self.repository}")
        return hook

    def ping(self, hook_id: int) -> None:
        response = requests.post(f"{self.hooks_url}/{hook_id}/pings", headers=self.headers, timeout=10)
        if response.status_code != 204:
            raise GitHubApiError(f"ping failed: {response.status_code} {response.text}")

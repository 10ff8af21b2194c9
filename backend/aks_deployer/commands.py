"""
Wrappers around the git, docker, az and kubectl command line tools.

Every call blocks until the command exits. A nonzero exit status raises
CommandError; there are no retries.
"""
import json
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import CommandError
from .kube_types import AzureCredentials, ImageReference, RegistryCredentials

logger = logging.getLogger(__name__)

REDACTED = "******"


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str


def _redact(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class CommandRunner:
    """Runs external commands with a shared environment and timeout."""

    def __init__(self, timeout: Optional[int] = 900, env: Optional[Dict[str, str]] = None):
        self.timeout = timeout
        if env is None:
            env = os.environ.copy()
            env["PATH"] = f"{os.path.expanduser('~/.local/bin')}{os.pathsep}{env.get('PATH', '')}"
        self.env = env

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[os.PathLike] = None,
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        args = [str(a) for a in args]
        shown = [_redact(a, secrets) for a in args]
        logger.info(f"$ {' '.join(shown)}")

        try:
            result = subprocess.run(
                args,
                cwd=str(cwd) if cwd else None,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
                env=self.env,
            )
        except FileNotFoundError:
            raise CommandError(shown, 127, stderr=f"{args[0]}: command not found")
        except subprocess.TimeoutExpired:
            raise CommandError(shown, 124, stderr=f"timed out after {timeout or self.timeout}s")

        stdout = _redact(result.stdout or "", secrets)
        stderr = _redact(result.stderr or "", secrets)
        if result.returncode != 0:
            logger.error(f"❌ {shown[0]} exited with {result.returncode}: {stderr.strip()}")
            raise CommandError(shown, result.returncode, stdout, stderr)
        return CommandResult(shown, result.returncode, stdout, stderr)


class GitCli:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def clone(self, url: str, dest: Path, branch: str) -> None:
        self.runner.run(["git", "clone", "--branch", branch, "--single-branch", url, dest])

    def checkout(self, dest: Path, commit: str) -> None:
        # Single-branch clones may not contain older commits yet.
        self.runner.run(["git", "fetch", "origin", commit], cwd=dest)
        self.runner.run(["git", "checkout", "--detach", commit], cwd=dest)

    def head_commit(self, dest: Path) -> str:
        return self.runner.run(["git", "rev-parse", "HEAD"], cwd=dest).stdout.strip()

    def publish(self, source_dir: Path, message: str, branch: str, remote: str = "origin") -> str:
        """Commit everything in ``source_dir`` and push it; returns the pushed commit."""
        self.runner.run(["git", "add", "--all"], cwd=source_dir)
        status = self.runner.run(["git", "status", "--porcelain"], cwd=source_dir).stdout
        if status.strip():
            self.runner.run(["git", "commit", "-m", message], cwd=source_dir)
        else:
            logger.info("Nothing to commit, pushing current HEAD")
        self.runner.run(["git", "push", remote, f"HEAD:{branch}"], cwd=source_dir)
        return self.head_commit(source_dir)


class DockerCli:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def login(self, credentials: RegistryCredentials) -> None:
        self.runner.run(
            ["docker", "login", credentials.server, "--username", credentials.username, "--password-stdin"],
            input_text=credentials.password,
            secrets=[credentials.password],
        )

    def build(self, image: ImageReference, context: Path, dockerfile: Path) -> None:
        self.runner.run(["docker", "build", "-t", image.ref, "-f", dockerfile, context])

    def tag(self, source: ImageReference, target: ImageReference) -> None:
        self.runner.run(["docker", "tag", source.ref, target.ref])

    def push(self, image: ImageReference) -> None:
        self.runner.run(["docker", "push", image.ref])


class AzureCli:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def login(self, credentials: AzureCredentials) -> None:
        self.runner.run(
            [
                "az", "login", "--service-principal",
                "--username", credentials.client_id,
                "--password", credentials.client_secret,
                "--tenant", credentials.tenant_id,
                "--output", "none",
            ],
            secrets=[credentials.client_secret],
        )

    def set_subscription(self, subscription: str) -> None:
        self.runner.run(["az", "account", "set", "--subscription", subscription])

    def get_aks_credentials(self, resource_group: str, cluster: str, overwrite: bool = True) -> None:
        args = ["az", "aks", "get-credentials", "--resource-group", resource_group, "--name", cluster]
        if overwrite:
            args.append("--overwrite-existing")
        self.runner.run(args)


class Kubectl:
    def __init__(self, runner: CommandRunner, namespace: str = "default", context: Optional[str] = None):
        self.runner = runner
        self.namespace = namespace
        self.context = context

    def _base(self) -> List[str]:
        args = ["kubectl"]
        if self.context:
            args += ["--context", self.context]
        return args + ["--namespace", self.namespace]

    def apply(self, path: Path) -> str:
        return self.runner.run(self._base() + ["apply", "-f", path]).stdout

    def rollout_restart(self, deployment: str) -> None:
        self.runner.run(self._base() + ["rollout", "restart", f"deployment/{deployment}"])

    def rollout_status(self, deployment: str, timeout_s: int) -> str:
        return self.runner.run(
            self._base() + ["rollout", "status", f"deployment/{deployment}", f"--timeout={timeout_s}s"],
            timeout=timeout_s + 30,
        ).stdout

    def get_pods(self, selector: Optional[str] = None) -> List[Dict[str, Any]]:
        args = self._base() + ["get", "pods", "-o", "json"]
        if selector:
            args += ["--selector", selector]
        data = json.loads(self.runner.run(args).stdout or "{}")
        return data.get("items", [])

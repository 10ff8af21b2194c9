"""
Exceptions raised by the deployment pipeline.
"""
from typing import Sequence


class DeployerError(Exception):
    """Base class for pipeline failures."""


class CommandError(DeployerError):
    """An external command exited with a nonzero status."""

    def __init__(self, args: Sequence[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"`{' '.join(self.args_list)}` exited with status {returncode}"
        detail = (stderr or stdout).strip()
        if detail:
            message = f"{message}: {detail.splitlines()[-1]}"
        super().__init__(message)


class ManifestError(DeployerError):
    """Rendered manifests are missing or reference the wrong image."""


class ScaffoldError(DeployerError):
    """Scaffolding would overwrite existing files."""


class RolloutTimeout(DeployerError):
    """Deployment did not become ready in time."""


class VerificationError(DeployerError):
    """Pods did not reach the declared replica count."""


class GitHubApiError(DeployerError):
    """GitHub REST API call failed."""

import json
import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from aks_deployer import commands
from aks_deployer.commands import AzureCli, CommandRunner, DockerCli, GitCli, Kubectl
from aks_deployer.errors import CommandError
from aks_deployer.kube_types import AzureCredentials, ImageReference, RegistryCredentials


class FakeSubprocess:
    """Replaces subprocess.run; answers by command prefix."""

    def __init__(self, responses=None):
        self.calls = []
        self.responses = responses or {}

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        for prefix, response in self.responses.items():
            if " ".join(args).startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                code, out, err = response
                return SimpleNamespace(returncode=code, stdout=out, stderr=err)
        return SimpleNamespace(returncode=0, stdout="", stderr="")


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeSubprocess()
    monkeypatch.setattr(commands.subprocess, "run", fake)
    return fake


@pytest.fixture
def runner():
    return CommandRunner(timeout=60, env={"PATH": "/usr/bin"})


def test_run_returns_output_of_successful_command(fake_run, runner):
    fake_run.responses["git rev-parse"] = (0, "abc123\n", "")

    result = runner.run(["git", "rev-parse", "HEAD"], cwd=Path("/src"))

    assert result.stdout == "abc123\n"
    args, kwargs = fake_run.calls[0]
    assert args == ["git", "rev-parse", "HEAD"]
    assert kwargs["cwd"] == str(Path("/src"))
    assert kwargs["capture_output"] is True
    assert kwargs["timeout"] == 60
    assert kwargs["env"] == {"PATH": "/usr/bin"}


def test_nonzero_exit_raises_command_error(fake_run, runner):
    fake_run.responses["docker build"] = (1, "", "Step 3/7 failed\nno such file: package.json\n")

    with pytest.raises(CommandError) as excinfo:
        runner.run(["docker", "build", "."])

    assert excinfo.value.returncode == 1
    assert "no such file: package.json" in str(excinfo.value)


def test_missing_binary_is_reported_as_127(fake_run, runner):
    fake_run.responses["kubectl"] = FileNotFoundError("kubectl")

    with pytest.raises(CommandError) as excinfo:
        runner.run(["kubectl", "version"])

    assert excinfo.value.returncode == 127
    assert "command not found" in str(excinfo.value)


def test_timeout_is_reported_as_124(fake_run, runner):
    fake_run.responses["docker push"] = subprocess.TimeoutExpired(["docker", "push"], 60)

    with pytest.raises(CommandError) as excinfo:
        runner.run(["docker", "push", "x"])

    assert excinfo.value.returncode == 124


def test_secrets_are_redacted_from_errors(fake_run, runner):
    fake_run.responses["az login"] = (1, "", "invalid client secret hunter2\n")

    with pytest.raises(CommandError) as excinfo:
        runner.run(["az", "login", "--password", "hunter2"], secrets=["hunter2"])

    assert "hunter2" not in str(excinfo.value)
    assert "hunter2" not in " ".join(excinfo.value.args_list)


def test_docker_login_sends_password_on_stdin(fake_run, runner):
    DockerCli(runner).login(RegistryCredentials("docker.io", "acme", "tok3n"))

    args, kwargs = fake_run.calls[0]
    assert args == ["docker", "login", "docker.io", "--username", "acme", "--password-stdin"]
    assert kwargs["input"] == "tok3n"


def test_docker_build_tag_and_push(fake_run, runner):
    docker = DockerCli(runner)
    image = ImageReference("docker.io", "acme/web", "abc1234")

    docker.build(image, Path("/src"), Path("/src/Dockerfile"))
    docker.tag(image, image.with_tag("latest"))
    docker.push(image)

    assert [c[0] for c in fake_run.calls] == [
        ["docker", "build", "-t", "acme/web:abc1234", "-f", str(Path("/src/Dockerfile")), str(Path("/src"))],
        ["docker", "tag", "acme/web:abc1234", "acme/web:latest"],
        ["docker", "push", "acme/web:abc1234"],
    ]


def test_azure_commands(fake_run, runner):
    az = AzureCli(runner)
    az.login(AzureCredentials("app-id", "sp-secret", "tenant-id"))
    az.set_subscription("sub-1")
    az.get_aks_credentials("rg", "aks")

    login, account, creds = [c[0] for c in fake_run.calls]
    assert login[:3] == ["az", "login", "--service-principal"]
    assert "sp-secret" in login
    assert account == ["az", "account", "set", "--subscription", "sub-1"]
    assert creds == [
        "az", "aks", "get-credentials", "--resource-group", "rg", "--name", "aks", "--overwrite-existing",
    ]


def test_kubectl_binds_namespace_and_context(fake_run, runner):
    kubectl = Kubectl(runner, namespace="prod", context="aks-web")
    kubectl.apply(Path("deployment.yaml"))
    kubectl.rollout_restart("web")
    kubectl.rollout_status("web", 120)

    apply_args, restart_args, status_args = [c[0] for c in fake_run.calls]
    assert apply_args == ["kubectl", "--context", "aks-web", "--namespace", "prod", "apply", "-f", "deployment.yaml"]
    assert restart_args[-3:] == ["rollout", "restart", "deployment/web"]
    assert status_args[-1] == "--timeout=120s"
    assert fake_run.calls[2][1]["timeout"] == 150


def test_kubectl_get_pods_parses_json(fake_run, runner):
    payload = {"items": [{"metadata": {"name": "web-1"}}, {"metadata": {"name": "web-2"}}]}
    fake_run.responses["kubectl --namespace default get pods"] = (0, json.dumps(payload), "")

    pods = Kubectl(runner).get_pods("app=web")

    assert [p["metadata"]["name"] for p in pods] == ["web-1", "web-2"]
    assert fake_run.calls[0][0][-2:] == ["--selector", "app=web"]


def test_git_publish_skips_commit_when_clean(fake_run, runner):
    fake_run.responses["git status"] = (0, "", "")
    fake_run.responses["git rev-parse"] = (0, "feedbeef\n", "")

    commit = GitCli(runner).publish(Path("/src"), "Update", "main")

    issued = [" ".join(c[0]) for c in fake_run.calls]
    assert not any(cmd.startswith("git commit") for cmd in issued)
    assert "git push origin HEAD:main" in issued
    assert commit == "feedbeef"


def test_git_publish_commits_changes(fake_run, runner):
    fake_run.responses["git status"] = (0, " M app.js\n", "")

    GitCli(runner).publish(Path("/src"), "Add health route", "main", remote="upstream")

    issued = [" ".join(c[0]) for c in fake_run.calls]
    assert "git commit -m Add health route" in issued
    assert "git push upstream HEAD:main" in issued

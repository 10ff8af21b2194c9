"""
Sequential clone -> build -> push -> deploy -> verify pipeline.

Stages run in a fixed order. The first failing stage stops the run, the
remaining stages are marked skipped, and one notification is sent either way.
"""
import logging
import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .commands import AzureCli, CommandRunner, DockerCli, GitCli, Kubectl
from .errors import DeployerError, VerificationError
from .kube_client import KubeClient
from .kube_types import ImageReference
from .manifests import ManifestSet, prepare_manifests
from .notifier import build_notifier

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    CLONE = "clone"
    BUILD = "build"
    PUSH = "push"
    DEPLOY = "deploy"
    VERIFY = "verify"


STAGE_ORDER = (Stage.CLONE, Stage.BUILD, Stage.PUSH, Stage.DEPLOY, Stage.VERIFY)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StageResult:
    stage: Stage
    status: RunStatus = RunStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    detail: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "detail": self.detail,
            "error": self.error,
        }


@dataclass
class PipelineRun:
    run_id: str
    app: str
    trigger: str
    branch: str
    commit: Optional[str] = None
    image: Optional[ImageReference] = None
    status: RunStatus = RunStatus.PENDING
    stages: List[StageResult] = field(default_factory=lambda: [StageResult(s) for s in STAGE_ORDER])
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def stage(self, stage: Stage) -> StageResult:
        return self.stages[STAGE_ORDER.index(stage)]

    @property
    def failed_stage(self) -> Optional[Stage]:
        for result in self.stages:
            if result.status == RunStatus.FAILURE:
                return result.stage
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "app": self.app,
            "trigger": self.trigger,
            "branch": self.branch,
            "commit": self.commit,
            "image": self.image.ref if self.image else None,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "stages": [s.to_dict() for s in self.stages],
        }


def new_run_id() -> str:
    return f"{_now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6]}"


class DeploymentPipeline:
    """Runs one deployment end to end against the external tools."""

    def __init__(
        self,
        settings,
        git: GitCli,
        docker: DockerCli,
        azure: AzureCli,
        kubectl: Kubectl,
        kube_factory: Callable[[], KubeClient],
        notifier,
    ):
        self.settings = settings
        self.git = git
        self.docker = docker
        self.azure = azure
        self.kubectl = kubectl
        self.kube_factory = kube_factory
        self.notifier = notifier

    @classmethod
    def from_settings(cls, settings, notifier=None) -> "DeploymentPipeline":
        runner = CommandRunner(timeout=settings.COMMAND_TIMEOUT_SECS)
        return cls(
            settings=settings,
            git=GitCli(runner),
            docker=DockerCli(runner),
            azure=AzureCli(runner),
            kubectl=Kubectl(runner, namespace=settings.K8S_NAMESPACE, context=settings.K8S_CONTEXT),
            kube_factory=lambda: KubeClient(namespace=settings.K8S_NAMESPACE, context=settings.K8S_CONTEXT),
            notifier=notifier or build_notifier(settings),
        )

    @property
    def workspace(self) -> Path:
        return Path(self.settings.WORKSPACE_DIR)

    def resolve_image(self, commit: Optional[str]) -> ImageReference:
        """One image reference per run: explicit tag, else short commit, else timestamp."""
        tag = self.settings.IMAGE_TAG or (commit[:7] if commit else _now().strftime("%Y%m%d%H%M%S"))
        return ImageReference(registry=self.settings.REGISTRY, repository=self.settings.IMAGE_NAME, tag=tag)

    def run(
        self,
        trigger: str = "manual",
        commit: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> PipelineRun:
        run = PipelineRun(
            run_id=run_id or new_run_id(),
            app=self.settings.APP_NAME,
            trigger=trigger,
            branch=self.settings.GIT_BRANCH,
            commit=commit,
            status=RunStatus.RUNNING,
            started_at=_now(),
        )
        logger.info(f"🚀 Starting pipeline run {run.run_id} ({trigger}) for {run.app}")

        steps = {
            Stage.CLONE: self._clone,
            Stage.BUILD: self._build,
            Stage.PUSH: self._push,
            Stage.DEPLOY: self._deploy,
            Stage.VERIFY: self._verify,
        }
        context: Dict[str, Any] = {}

        try:
            for stage in STAGE_ORDER:
                result = run.stage(stage)
                if run.status == RunStatus.FAILURE:
                    result.status = RunStatus.SKIPPED
                    continue

                result.status = RunStatus.RUNNING
                result.started_at = _now()
                logger.info(f"▶️ [{run.run_id}] stage {stage.value}")
                try:
                    result.detail = steps[stage](run, context) or ""
                    result.status = RunStatus.SUCCESS
                    logger.info(f"✅ [{run.run_id}] stage {stage.value} succeeded")
                except DeployerError as e:
                    result.status = RunStatus.FAILURE
                    result.error = str(e)
                    run.status = RunStatus.FAILURE
                    logger.error(f"❌ [{run.run_id}] stage {stage.value} failed: {e}")
                except Exception as e:
                    result.status = RunStatus.FAILURE
                    result.error = f"{type(e).__name__}: {e}"
                    run.status = RunStatus.FAILURE
                    logger.exception(f"❌ [{run.run_id}] stage {stage.value} raised unexpectedly")
                finally:
                    result.finished_at = _now()

            if run.status != RunStatus.FAILURE:
                run.status = RunStatus.SUCCESS
            run.finished_at = _now()
            logger.info(f"Pipeline run {run.run_id} finished: {run.status.value}")

            try:
                self.notifier.notify(run)
            except Exception as e:
                logger.error(f"❌ Failed to send notification for run {run.run_id}: {e}")
        finally:
            # Checkout and rendered manifests live only as long as the run
            shutil.rmtree(self.workspace / run.run_id, ignore_errors=True)

        return run

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _clone(self, run: PipelineRun, context: Dict[str, Any]) -> str:
        source = self.workspace / run.run_id / "source"
        if source.exists():
            shutil.rmtree(source)
        source.parent.mkdir(parents=True, exist_ok=True)

        self.git.clone(self.settings.GIT_REPOSITORY_URL, source, self.settings.GIT_BRANCH)
        if run.commit:
            self.git.checkout(source, run.commit)
        run.commit = self.git.head_commit(source)
        run.image = self.resolve_image(run.commit)
        context["source"] = source
        return f"checked out {run.commit[:7]} from {self.settings.GIT_BRANCH}"

    def _build(self, run: PipelineRun, context: Dict[str, Any]) -> str:
        source: Path = context["source"]
        self.docker.build(
            run.image,
            context=source / self.settings.BUILD_CONTEXT,
            dockerfile=source / self.settings.DOCKERFILE,
        )
        return f"built {run.image.ref}"

    def _push(self, run: PipelineRun, context: Dict[str, Any]) -> str:
        credentials = self.settings.registry_credentials()
        if credentials:
            self.docker.login(credentials)
        self.docker.push(run.image)
        pushed = [run.image.ref]
        if self.settings.PUSH_LATEST and run.image.tag != "latest":
            latest = run.image.with_tag("latest")
            self.docker.tag(run.image, latest)
            self.docker.push(latest)
            pushed.append(latest.ref)
        context["pushed"] = run.image
        return f"pushed {', '.join(pushed)}"

    def _deploy(self, run: PipelineRun, context: Dict[str, Any]) -> str:
        manifests: ManifestSet = prepare_manifests(
            context["source"], self.settings, context["pushed"], self.workspace / run.run_id / "manifests"
        )

        credentials = self.settings.azure_credentials()
        if credentials:
            self.azure.login(credentials)
        if self.settings.AZURE_SUBSCRIPTION:
            self.azure.set_subscription(self.settings.AZURE_SUBSCRIPTION)
        self.azure.get_aks_credentials(self.settings.AZURE_RESOURCE_GROUP, self.settings.AKS_CLUSTER_NAME)

        self.kubectl.apply(manifests.deployment)
        self.kubectl.apply(manifests.service)
        self.kubectl.rollout_restart(self.settings.DEPLOYMENT_NAME)
        self.kubectl.rollout_status(self.settings.DEPLOYMENT_NAME, self.settings.ROLLOUT_TIMEOUT_SECS)
        context["selector"] = manifests.selector
        return f"applied {manifests.deployment.name}, {manifests.service.name} with {manifests.image.ref}"

    def _verify(self, run: PipelineRun, context: Dict[str, Any]) -> str:
        kube = self.kube_factory()
        kube.wait_for_rollout(
            self.settings.DEPLOYMENT_NAME,
            timeout_s=self.settings.ROLLOUT_TIMEOUT_SECS,
            interval_s=self.settings.POLL_INTERVAL_SECS,
        )
        report = kube.verify_deployment(
            self.settings.DEPLOYMENT_NAME,
            label_selector=",".join(f"{k}={v}" for k, v in context["selector"].items()),
            expected_replicas=self.settings.REPLICAS,
            service=self.settings.SERVICE_NAME,
        )
        if not report.ok:
            raise VerificationError(
                f"{report.ready_pods} ready pods of {report.total_pods}, "
                f"expected {report.expected_replicas}"
            )
        detail = f"{report.ready_pods}/{report.expected_replicas} pods ready"
        if report.service and report.service.external_ip:
            detail += f", service at {report.service.external_ip}"
        return detail

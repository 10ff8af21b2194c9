"""
Kubernetes client for rollout and verification checks.
"""
import logging
import time
from typing import Callable, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .errors import RolloutTimeout
from .kube_types import Pod, RolloutStatus, ServiceStatus, VerificationReport

logger = logging.getLogger(__name__)


def _pod_ready(pod) -> bool:
    for condition in (pod.status.conditions or []):
        if condition.type == "Ready":
            return condition.status == "True"
    return False


class KubeClient:
    """Kubernetes client for deployment verification."""

    def __init__(
        self,
        namespace: str,
        in_cluster: bool = False,
        context: Optional[str] = None,
        core_api=None,
        apps_api=None,
    ):
        """
        Initialize Kubernetes client.

        Args:
            namespace: Target Kubernetes namespace
            in_cluster: Whether running inside cluster (default: False)
            context: Kubernetes context name (optional)
            core_api, apps_api: Preconfigured API objects; skips kubeconfig loading
        """
        self.namespace = namespace
        self.in_cluster = in_cluster

        if core_api is not None and apps_api is not None:
            self.v1 = core_api
            self.apps_v1 = apps_api
            return

        try:
            if in_cluster:
                config.load_incluster_config()
            elif context:
                config.load_kube_config(context=context)
            else:
                config.load_kube_config()

            self.v1 = client.CoreV1Api()
            self.apps_v1 = client.AppsV1Api()
            logger.info(f"✅ Kubernetes client initialized for namespace: {namespace}")

        except Exception as e:
            logger.error(f"❌ Failed to initialize Kubernetes client: {e}")
            raise

    def get_pods(self, label_selector: Optional[str] = None) -> List[Pod]:
        """
        Get pods in the namespace.

        Args:
            label_selector: Optional label selector for filtering

        Returns:
            List of Pod objects
        """
        try:
            pods = self.v1.list_namespaced_pod(
                namespace=self.namespace,
                label_selector=label_selector
            )
        except ApiException as e:
            logger.error(f"Failed to get pods: {e}")
            raise

        pod_list = []
        for pod in pods.items:
            # Pods being replaced by a rollout still show up until they are gone.
            if pod.metadata.deletion_timestamp:
                continue
            pod_list.append(Pod(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                status=pod.status.phase,
                labels=pod.metadata.labels or {},
                ready=_pod_ready(pod),
                creation_timestamp=pod.metadata.creation_timestamp
            ))

        logger.info(f"Retrieved {len(pod_list)} pods from namespace {self.namespace}")
        return pod_list

    def rollout_status(self, deployment: str) -> RolloutStatus:
        """Current replica counts of a deployment."""
        try:
            deployment_obj = self.apps_v1.read_namespaced_deployment(
                name=deployment,
                namespace=self.namespace
            )
        except ApiException as e:
            logger.error(f"Failed to get rollout status for {deployment}: {e}")
            raise

        ready_replicas = deployment_obj.status.ready_replicas or 0
        desired_replicas = deployment_obj.spec.replicas or 0
        updated_replicas = deployment_obj.status.updated_replicas or 0

        status = RolloutStatus(
            deployment=deployment,
            namespace=self.namespace,
            status="pending",
            ready_replicas=ready_replicas,
            desired_replicas=desired_replicas,
            updated_replicas=updated_replicas
        )
        if status.is_complete:
            status.status = "ready"
        return status

    def wait_for_rollout(
        self,
        deployment: str,
        timeout_s: float = 300,
        interval_s: float = 5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> RolloutStatus:
        """Poll the deployment until every desired replica is updated and ready."""
        deadline = clock() + timeout_s
        while True:
            status = self.rollout_status(deployment)
            if status.is_complete:
                logger.info(
                    f"✅ Rollout of {deployment} complete: "
                    f"{status.ready_replicas}/{status.desired_replicas} ready"
                )
                return status
            if clock() >= deadline:
                raise RolloutTimeout(
                    f"{deployment} not ready after {timeout_s}s "
                    f"({status.ready_replicas}/{status.desired_replicas} ready, "
                    f"{status.updated_replicas} updated)"
                )
            logger.info(
                f"Waiting for {deployment}: {status.ready_replicas}/{status.desired_replicas} ready"
            )
            sleep(interval_s)

    def get_service(self, name: str) -> ServiceStatus:
        try:
            svc = self.v1.read_namespaced_service(name=name, namespace=self.namespace)
        except ApiException as e:
            logger.error(f"Failed to get service {name}: {e}")
            raise

        external_ip = None
        ingress = svc.status.load_balancer.ingress if svc.status and svc.status.load_balancer else None
        if ingress:
            external_ip = ingress[0].ip or ingress[0].hostname

        return ServiceStatus(
            name=svc.metadata.name,
            namespace=svc.metadata.namespace,
            service_type=svc.spec.type,
            cluster_ip=svc.spec.cluster_ip,
            external_ip=external_ip,
            ports=[p.port for p in (svc.spec.ports or [])],
        )

    def verify_deployment(
        self,
        deployment: str,
        label_selector: str,
        expected_replicas: int,
        service: Optional[str] = None,
    ) -> VerificationReport:
        """Count ready pods behind a deployment and look up its service."""
        pods = self.get_pods(label_selector=label_selector)
        report = VerificationReport(
            deployment=deployment,
            expected_replicas=expected_replicas,
            ready_pods=sum(1 for p in pods if p.ready),
            total_pods=len(pods),
        )
        if service:
            report.service = self.get_service(service)
        return report

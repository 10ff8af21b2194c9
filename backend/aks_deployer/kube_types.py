"""
Type definitions for images, credentials and Kubernetes objects.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional
from datetime import datetime


DEFAULT_REGISTRIES = ("", "docker.io", "index.docker.io")


@dataclass(frozen=True)
class ImageReference:
    """Container image name plus tag, shared by the build and deploy stages."""
    registry: str
    repository: str
    tag: str = "latest"

    @property
    def name(self) -> str:
        """Image name without the tag."""
        if self.registry in DEFAULT_REGISTRIES:
            return self.repository
        return f"{self.registry}/{self.repository}"

    @property
    def ref(self) -> str:
        return f"{self.name}:{self.tag}"

    def with_tag(self, tag: str) -> "ImageReference":
        return replace(self, tag=tag)

    @classmethod
    def parse(cls, text: str) -> "ImageReference":
        """
        Parse a reference such as ``myacr.azurecr.io/team/app:1.2``.

        The first path segment is treated as a registry host when it holds
        a dot or a port, or is ``localhost``.
        """
        text = text.strip()
        if not text:
            raise ValueError("empty image reference")

        registry = ""
        remainder = text
        first, sep, rest = text.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, remainder = first, rest

        tag = "latest"
        last_slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > last_slash:
            remainder, tag = remainder[:colon], remainder[colon + 1:]
        if not remainder or not tag:
            raise ValueError(f"invalid image reference: {text!r}")
        return cls(registry=registry, repository=remainder, tag=tag)

    def __str__(self) -> str:
        return self.ref


@dataclass
class DeploymentDescriptor:
    """Desired state of the application Deployment."""
    name: str
    namespace: str
    image: ImageReference
    replicas: int
    container_port: int
    container_name: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.replicas < 1:
            raise ValueError("replicas must be at least 1")
        if not self.container_name:
            self.container_name = self.name
        if not self.labels:
            self.labels = {"app": self.name}


@dataclass
class ServiceDescriptor:
    """Service exposing the Deployment's pods."""
    name: str
    namespace: str
    selector: Dict[str, str]
    port: int
    target_port: int
    service_type: str = "LoadBalancer"


@dataclass(frozen=True)
class RegistryCredentials:
    server: str
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class AzureCredentials:
    client_id: str
    client_secret: str = field(repr=False)
    tenant_id: str = ""


@dataclass
class Pod:
    """Kubernetes Pod representation."""
    name: str
    namespace: str
    status: str
    labels: Dict[str, str]
    ready: bool = False
    creation_timestamp: Optional[datetime] = None


@dataclass
class RolloutStatus:
    """Deployment rollout status."""
    deployment: str
    namespace: str
    status: str  # "ready", "pending"
    ready_replicas: int
    desired_replicas: int
    updated_replicas: int

    @property
    def is_complete(self) -> bool:
        return (
            self.desired_replicas > 0
            and self.ready_replicas == self.desired_replicas
            and self.updated_replicas == self.desired_replicas
        )


@dataclass
class ServiceStatus:
    """Kubernetes Service representation."""
    name: str
    namespace: str
    service_type: str
    cluster_ip: Optional[str] = None
    external_ip: Optional[str] = None
    ports: List[int] = field(default_factory=list)


@dataclass
class VerificationReport:
    """Outcome of checking pods after a rollout."""
    deployment: str
    expected_replicas: int
    ready_pods: int
    total_pods: int
    service: Optional[ServiceStatus] = None

    @property
    def ok(self) -> bool:
        return self.ready_pods == self.expected_replicas

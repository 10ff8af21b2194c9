"""
Configuration settings for the deployment pipeline.
"""
from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional

from .kube_types import AzureCredentials, RegistryCredentials


class Settings(BaseSettings):
    """Pipeline settings from environment variables."""

    # Application
    APP_NAME: str = Field(default="nodejs-app", description="Application name")
    APP_ENV: str = Field(default="dev", description="Environment: dev|staging|prod")
    LOG_LEVEL: str = Field(default="info", description="Log level: info|debug|warning")

    # HTTP Configuration
    HTTP_HOST: str = Field(default="0.0.0.0", description="Webhook listener address")
    HTTP_PORT: int = Field(default=8080, description="Webhook listener port")

    # Source Configuration
    GIT_REPOSITORY_URL: str = Field(default="", description="Clone URL of the application repository")
    GIT_BRANCH: str = Field(default="main", description="Tracked branch")
    WORKSPACE_DIR: str = Field(default=".aks-deployer/workspace", description="Checkout directory")

    # Image Configuration
    REGISTRY: str = Field(default="docker.io", description="Container registry host")
    IMAGE_NAME: str = Field(default="nodejs-app", description="Image repository, e.g. user/app")
    IMAGE_TAG: Optional[str] = Field(default=None, description="Fixed tag; defaults to commit SHA")
    DOCKERFILE: str = Field(default="Dockerfile", description="Dockerfile path inside the source")
    BUILD_CONTEXT: str = Field(default=".", description="Build context inside the source")
    PUSH_LATEST: bool = Field(default=True, description="Also tag and push :latest")

    # Registry Credentials
    REGISTRY_USERNAME: Optional[str] = Field(default=None, description="Registry user")
    REGISTRY_PASSWORD: Optional[str] = Field(default=None, description="Registry password or token")

    # Azure Configuration
    AZURE_SUBSCRIPTION: Optional[str] = Field(default=None, description="Subscription name or id")
    AZURE_RESOURCE_GROUP: str = Field(default="", description="AKS resource group")
    AKS_CLUSTER_NAME: str = Field(default="", description="AKS cluster name")
    AZURE_CLIENT_ID: Optional[str] = Field(default=None, description="Service principal app id")
    AZURE_CLIENT_SECRET: Optional[str] = Field(default=None, description="Service principal secret")
    AZURE_TENANT_ID: Optional[str] = Field(default=None, description="Service principal tenant")

    # Kubernetes Configuration
    K8S_NAMESPACE: str = Field(default="default", description="Kubernetes namespace")
    K8S_CONTEXT: Optional[str] = Field(default=None, description="Kubernetes context")
    DEPLOYMENT_NAME: str = Field(default="nodejs-app", description="Deployment name")
    CONTAINER_NAME: str = Field(default="nodejs-app", description="Container name in the pod")
    SERVICE_NAME: str = Field(default="nodejs-app-service", description="Service name")
    REPLICAS: int = Field(default=2, ge=1, description="Desired replica count")
    CONTAINER_PORT: int = Field(default=3000, description="Port the Node.js app listens on")
    SERVICE_PORT: int = Field(default=80, description="Service port")
    SERVICE_TYPE: str = Field(default="LoadBalancer", description="ClusterIP|NodePort|LoadBalancer")
    DEPLOYMENT_MANIFEST: str = Field(default="k8s/deployment.yaml", description="Deployment manifest path")
    SERVICE_MANIFEST: str = Field(default="k8s/service.yaml", description="Service manifest path")

    # Timeouts
    COMMAND_TIMEOUT_SECS: int = Field(default=900, description="Timeout for each CLI call")
    ROLLOUT_TIMEOUT_SECS: int = Field(default=300, description="Rollout wait timeout")
    POLL_INTERVAL_SECS: float = Field(default=5.0, description="Rollout poll interval")

    # Webhook Configuration
    WEBHOOK_PATH: str = Field(default="/github-webhook/", description="Push webhook endpoint")
    GITHUB_WEBHOOK_SECRET: Optional[str] = Field(default=None, description="Shared webhook secret")
    RUN_HISTORY_SIZE: int = Field(default=50, description="Pipeline runs kept in memory")

    # GitHub Configuration
    GITHUB_TOKEN: Optional[str] = Field(default=None, description="GitHub API token")
    GITHUB_OWNER: str = Field(default="", description="GitHub owner")
    GITHUB_REPOSITORY: str = Field(default="", description="GitHub repository")
    WEBHOOK_PUBLIC_URL: Optional[str] = Field(default=None, description="Public URL GitHub delivers to")

    # Notification Configuration
    NOTIFY_ENABLED: bool = Field(default=True, description="Send email on run completion")
    SMTP_HOST: str = Field(default="localhost", description="SMTP server")
    SMTP_PORT: int = Field(default=587, description="SMTP port")
    SMTP_USE_TLS: bool = Field(default=True, description="Use STARTTLS")
    SMTP_USERNAME: Optional[str] = Field(default=None, description="SMTP user")
    SMTP_PASSWORD: Optional[str] = Field(default=None, description="SMTP password")
    NOTIFY_FROM: str = Field(default="jenkins@localhost", description="Sender address")
    NOTIFY_RECIPIENTS: str = Field(default="", description="Comma separated recipient list")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def tracked_ref(self) -> str:
        return f"refs/heads/{self.GIT_BRANCH}"

    @property
    def notify_recipients(self) -> List[str]:
        return [r.strip() for r in self.NOTIFY_RECIPIENTS.split(",") if r.strip()]

    def registry_credentials(self) -> Optional[RegistryCredentials]:
        """Registry login, or None when the registry needs no authentication."""
        if not self.REGISTRY_USERNAME or not self.REGISTRY_PASSWORD:
            return None
        return RegistryCredentials(
            server=self.REGISTRY,
            username=self.REGISTRY_USERNAME,
            password=self.REGISTRY_PASSWORD,
        )

    def azure_credentials(self) -> Optional[AzureCredentials]:
        """Service principal, or None to reuse an existing `az login` session."""
        if not (self.AZURE_CLIENT_ID and self.AZURE_CLIENT_SECRET and self.AZURE_TENANT_ID):
            return None
        return AzureCredentials(
            client_id=self.AZURE_CLIENT_ID,
            client_secret=self.AZURE_CLIENT_SECRET,
            tenant_id=self.AZURE_TENANT_ID,
        )


# Global settings instance
settings = Settings()

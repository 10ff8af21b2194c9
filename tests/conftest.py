import pytest

from aks_deployer.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        APP_NAME="web",
        GIT_REPOSITORY_URL="https://github.com/acme/web.git",
        GIT_BRANCH="main",
        WORKSPACE_DIR=str(tmp_path / "workspace"),
        REGISTRY="docker.io",
        IMAGE_NAME="acme/web",
        IMAGE_TAG=None,
        REGISTRY_USERNAME="acme",
        REGISTRY_PASSWORD="s3cret-token",
        AZURE_SUBSCRIPTION="sub-1",
        AZURE_RESOURCE_GROUP="rg-web",
        AKS_CLUSTER_NAME="aks-web",
        AZURE_CLIENT_ID=None,
        AZURE_CLIENT_SECRET=None,
        AZURE_TENANT_ID=None,
        K8S_NAMESPACE="default",
        K8S_CONTEXT=None,
        DEPLOYMENT_NAME="web",
        CONTAINER_NAME="web",
        SERVICE_NAME="web-svc",
        REPLICAS=2,
        CONTAINER_PORT=3000,
        SERVICE_PORT=80,
        POLL_INTERVAL_SECS=0,
        GITHUB_WEBHOOK_SECRET=None,
        NOTIFY_RECIPIENTS="",
    )

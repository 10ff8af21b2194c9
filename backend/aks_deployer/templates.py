"""
Starter Dockerfile, Jenkinsfile and Kubernetes manifests for a Node.js app.

The manifests keep ${IMAGE} as a placeholder; the pipeline substitutes the
image it pushed before applying them.
"""
import logging
from pathlib import Path
from typing import List

from .errors import ScaffoldError
from .kube_types import DEFAULT_REGISTRIES, ImageReference
from .manifests import (
    build_deployment_manifest,
    build_service_manifest,
    descriptors_from_settings,
    render_manifest,
)

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER = "${IMAGE}"


def dockerfile_template(node_version: str = "18", port: int = 3000) -> str:
    """Node.js runtime Dockerfile"""
    return f'''FROM node:{node_version}-alpine

WORKDIR /usr/src/app

COPY package*.json ./
RUN npm ci --omit=dev

COPY . .

ENV PORT={port}
EXPOSE {port}

CMD ["npm", "start"]
'''


def dockerignore_template() -> str:
    return "node_modules\nnpm-debug.log\n.git\nk8s\nJenkinsfile\n"


def jenkinsfile_template(
    image_name: str,
    registry: str = "docker.io",
    branch: str = "main",
    deployment: str = "nodejs-app",
    namespace: str = "default",
    resource_group: str = "",
    cluster: str = "",
    recipients: str = "",
    registry_credentials_id: str = "dockerhub-creds",
    azure_credentials_id: str = "azure-sp",
) -> str:
    """Declarative Jenkinsfile running clone, build, push, deploy and verify."""
    image_prefix = "" if registry in DEFAULT_REGISTRIES else "${REGISTRY}/"
    return f'''pipeline {{
    agent any

    triggers {{
        githubPush()
    }}

    environment {{
        REGISTRY        = '{registry}'
        IMAGE_NAME      = '{image_name}'
        IMAGE_TAG       = "${{env.GIT_COMMIT.take(7)}}"
        IMAGE           = "{image_prefix}${{IMAGE_NAME}}:${{IMAGE_TAG}}"
        RESOURCE_GROUP  = '{resource_group}'
        AKS_CLUSTER     = '{cluster}'
        K8S_NAMESPACE   = '{namespace}'
        DEPLOYMENT      = '{deployment}'
    }}

    stages {{
        stage('Clone') {{
            steps {{
                git branch: '{branch}', url: scm.userRemoteConfigs[0].url
            }}
        }}

        stage('Build') {{
            steps {{
                sh 'docker build -t $IMAGE .'
            }}
        }}

        stage('Push') {{
            steps {{
                withCredentials([usernamePassword(credentialsId: '{registry_credentials_id}', usernameVariable: 'REG_USER', passwordVariable: 'REG_PASS')]) {{
                    sh 'echo $REG_PASS | docker login $REGISTRY --username $REG_USER --password-stdin'
                    sh 'docker push $IMAGE'
                }}
            }}
        }}

        stage('Deploy') {{
            steps {{
                withCredentials([azureServicePrincipal('{azure_credentials_id}')]) {{
                    sh 'az login --service-principal -u $AZURE_CLIENT_ID -p $AZURE_CLIENT_SECRET -t $AZURE_TENANT_ID --output none'
                    sh 'az account set --subscription $AZURE_SUBSCRIPTION_ID'
                    sh 'az aks get-credentials --resource-group $RESOURCE_GROUP --name $AKS_CLUSTER --overwrite-existing'
                }}
                sh 'sed -i "s|\\\\${{IMAGE}}|$IMAGE|g" k8s/deployment.yaml'
                sh 'kubectl apply -n $K8S_NAMESPACE -f k8s/deployment.yaml'
                sh 'kubectl apply -n $K8S_NAMESPACE -f k8s/service.yaml'
                sh 'kubectl rollout restart -n $K8S_NAMESPACE deployment/$DEPLOYMENT'
            }}
        }}

        stage('Verify') {{
            steps {{
                sh 'kubectl rollout status -n $K8S_NAMESPACE deployment/$DEPLOYMENT --timeout=300s'
                sh 'kubectl get pods -n $K8S_NAMESPACE'
                sh 'kubectl get svc -n $K8S_NAMESPACE'
            }}
        }}
    }}

    post {{
        success {{
            emailext to: '{recipients}',
                subject: "[${{env.JOB_NAME}}] Pipeline SUCCESS: run ${{env.BUILD_NUMBER}}",
                body: "Deployed ${{IMAGE}} to ${{AKS_CLUSTER}}.\\n${{env.BUILD_URL}}"
        }}
        failure {{
            emailext to: '{recipients}',
                subject: "[${{env.JOB_NAME}}] Pipeline FAILURE: run ${{env.BUILD_NUMBER}}",
                body: "Pipeline failed.\\n${{env.BUILD_URL}}console"
        }}
    }}
}}
'''


def scaffold(dest: Path, settings, force: bool = False) -> List[Path]:
    """
    Write the starter files into ``dest`` and return their paths.

    Raises ScaffoldError listing every file that already exists, unless
    ``force`` is set.
    """
    dest = Path(dest)
    placeholder = ImageReference(registry="", repository="placeholder")
    deployment_desc, service_desc = descriptors_from_settings(settings, placeholder)

    deployment_yaml = render_manifest(build_deployment_manifest(deployment_desc)).replace(
        placeholder.ref, IMAGE_PLACEHOLDER
    )

    files = {
        "Dockerfile": dockerfile_template(port=settings.CONTAINER_PORT),
        ".dockerignore": dockerignore_template(),
        "Jenkinsfile": jenkinsfile_template(
            image_name=settings.IMAGE_NAME,
            registry=settings.REGISTRY,
            branch=settings.GIT_BRANCH,
            deployment=settings.DEPLOYMENT_NAME,
            namespace=settings.K8S_NAMESPACE,
            resource_group=settings.AZURE_RESOURCE_GROUP,
            cluster=settings.AKS_CLUSTER_NAME,
            recipients=", ".join(settings.notify_recipients),
        ),
        settings.DEPLOYMENT_MANIFEST: deployment_yaml,
        settings.SERVICE_MANIFEST: render_manifest(build_service_manifest(service_desc)),
    }

    existing = [name for name in files if (dest / name).exists()]
    if existing and not force:
        raise ScaffoldError(f"refusing to overwrite existing files: {', '.join(sorted(existing))}")

    written = []
    for name, content in files.items():
        path = dest / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        written.append(path)
        logger.info(f"✅ Wrote {path}")
    return written

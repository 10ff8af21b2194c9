"""
Kubernetes manifest generation and image substitution.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional

import yaml

from .errors import ManifestError
from .kube_types import DeploymentDescriptor, ImageReference, ServiceDescriptor

logger = logging.getLogger(__name__)


@dataclass
class ManifestSet:
    deployment: Path
    service: Path
    image: ImageReference
    selector: Dict[str, str] = field(default_factory=dict)


def build_deployment_manifest(descriptor: DeploymentDescriptor) -> Dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": descriptor.name,
            "namespace": descriptor.namespace,
            "labels": dict(descriptor.labels),
        },
        "spec": {
            "replicas": descriptor.replicas,
            "selector": {"matchLabels": dict(descriptor.labels)},
            "template": {
                "metadata": {"labels": dict(descriptor.labels)},
                "spec": {
                    "containers": [{
                        "name": descriptor.container_name,
                        "image": descriptor.image.ref,
                        "imagePullPolicy": "Always",
                        "ports": [{"containerPort": descriptor.container_port}],
                    }]
                },
            },
        },
    }


def build_service_manifest(descriptor: ServiceDescriptor) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": descriptor.name, "namespace": descriptor.namespace},
        "spec": {
            "type": descriptor.service_type,
            "selector": dict(descriptor.selector),
            "ports": [{
                "protocol": "TCP",
                "port": descriptor.port,
                "targetPort": descriptor.target_port,
            }],
        },
    }


def render_manifest(manifest: Dict[str, Any]) -> str:
    return yaml.safe_dump(manifest, sort_keys=False, default_flow_style=False)


def substitute_image(text: str, image: ImageReference) -> str:
    """Fill ${IMAGE}, ${IMAGE_NAME} and ${IMAGE_TAG}; other placeholders are left alone."""
    return Template(text).safe_substitute(
        IMAGE=image.ref,
        IMAGE_NAME=image.name,
        IMAGE_TAG=image.tag,
    )


def referenced_images(text: str) -> List[str]:
    """Container images named by the Deployment documents in a manifest stream."""
    images = []
    for doc in yaml.safe_load_all(text):
        if not isinstance(doc, dict) or doc.get("kind") != "Deployment":
            continue
        pod_spec = (((doc.get("spec") or {}).get("template") or {}).get("spec") or {})
        for container in pod_spec.get("containers") or []:
            if container.get("image"):
                images.append(container["image"])
    return images


def deployment_selector(text: str) -> Optional[Dict[str, str]]:
    """``spec.selector.matchLabels`` of the first Deployment in a manifest stream."""
    for doc in yaml.safe_load_all(text):
        if not isinstance(doc, dict) or doc.get("kind") != "Deployment":
            continue
        labels = (((doc.get("spec") or {}).get("selector") or {}).get("matchLabels") or {})
        return {str(k): str(v) for k, v in labels.items()} or None
    return None


def _parse_image(ref: str) -> Optional[ImageReference]:
    try:
        return ImageReference.parse(ref)
    except ValueError:
        return None


def descriptors_from_settings(settings, image: ImageReference):
    deployment = DeploymentDescriptor(
        name=settings.DEPLOYMENT_NAME,
        namespace=settings.K8S_NAMESPACE,
        image=image,
        replicas=settings.REPLICAS,
        container_port=settings.CONTAINER_PORT,
        container_name=settings.CONTAINER_NAME,
        labels={"app": settings.APP_NAME},
    )
    service = ServiceDescriptor(
        name=settings.SERVICE_NAME,
        namespace=settings.K8S_NAMESPACE,
        selector=dict(deployment.labels),
        port=settings.SERVICE_PORT,
        target_port=settings.CONTAINER_PORT,
        service_type=settings.SERVICE_TYPE,
    )
    return deployment, service


def prepare_manifests(workspace: Path, settings, image: ImageReference, out_dir: Path) -> ManifestSet:
    """
    Write the deployment and service manifests for ``image`` into ``out_dir``.

    Manifests shipped with the application source are used as templates;
    missing ones are generated from settings. The rendered deployment must
    reference exactly ``image``.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    deployment_desc, service_desc = descriptors_from_settings(settings, image)

    rendered = {}
    for key, rel_path, generated in (
        ("deployment", settings.DEPLOYMENT_MANIFEST, build_deployment_manifest(deployment_desc)),
        ("service", settings.SERVICE_MANIFEST, build_service_manifest(service_desc)),
    ):
        source = Path(workspace) / rel_path
        if source.is_file():
            logger.info(f"Using {key} manifest from source: {rel_path}")
            text = substitute_image(source.read_text(encoding="utf-8"), image)
        else:
            logger.info(f"No {key} manifest at {rel_path}, generating one")
            text = render_manifest(generated)
        target = out_dir / f"{key}.yaml"
        target.write_text(text, encoding="utf-8")
        rendered[key] = (target, text)

    # docker.io/acme/web:1 and acme/web:1 name the same image
    images = referenced_images(rendered["deployment"][1])
    parsed = [p for p in map(_parse_image, images) if p is not None and p.name == image.name]
    matches = [p for p in parsed if p.tag == image.tag]
    if not matches or len(matches) != len(parsed):
        raise ManifestError(
            f"deployment manifest references {images or 'no image'}, expected {image.ref}"
        )

    selector = deployment_selector(rendered["deployment"][1]) or dict(deployment_desc.labels)
    return ManifestSet(
        deployment=rendered["deployment"][0],
        service=rendered["service"][0],
        image=image,
        selector=selector,
    )

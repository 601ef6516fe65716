"""
Validation and normalization for RabbitmqCluster specs.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from kubernetes.utils import parse_quantity

from .errors import InvalidSpec

SERVICE_TYPES = ("ClusterIP", "NodePort", "LoadBalancer")
DEFAULT_SERVICE_TYPE = "ClusterIP"
DEFAULT_STORAGE = "10Gi"
DEFAULT_RESOURCES: Dict[str, Dict[str, str]] = {
    "requests": {"cpu": "1", "memory": "2Gi"},
    "limits": {"cpu": "2", "memory": "2Gi"},
}

_DNS1123_SUBDOMAIN = re.compile(
    r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
)


@dataclass(frozen=True)
class ClusterSpec:
    """The user-declared desired state of one RabbitmqCluster, after defaulting."""

    replicas: int
    image: str
    generation: int = 0
    image_pull_secret: Optional[str] = None
    service_type: str = DEFAULT_SERVICE_TYPE
    tls_secret: Optional[str] = None
    storage_class: Optional[str] = None
    storage: str = DEFAULT_STORAGE
    resources: Dict[str, Dict[str, str]] = field(default_factory=dict)


def _validate_reference(value: Any, path: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or len(value) > 253 or not _DNS1123_SUBDOMAIN.match(value):
        raise InvalidSpec(f"{path} '{value}' is not a valid object name.")
    return value


def _validate_quantity(value: Any, path: str) -> str:
    try:
        parse_quantity(value)
    except (ValueError, TypeError) as e:
        raise InvalidSpec(f"{path} '{value}' is not a valid quantity: {e}")
    return str(value)


def _validate_resources(resources: Any) -> Dict[str, Dict[str, str]]:
    if resources is None:
        return {section: dict(values) for section, values in DEFAULT_RESOURCES.items()}
    if not isinstance(resources, dict):
        raise InvalidSpec("spec.resources must be a mapping.")

    normalized: Dict[str, Dict[str, str]] = {}
    for section in ("requests", "limits"):
        values = resources.get(section)
        if values is None:
            continue
        if not isinstance(values, dict):
            raise InvalidSpec(f"spec.resources.{section} must be a mapping.")
        normalized[section] = {
            name: _validate_quantity(quantity, f"spec.resources.{section}.{name}")
            for name, quantity in sorted(values.items())
        }
    return normalized


def parse_cluster_spec(
    spec: Dict[str, Any],
    generation: int,
    default_image: str,
    logger: Optional[logging.Logger] = None,
) -> ClusterSpec:
    """
    Validate a RabbitmqCluster spec and apply defaults.

    Only the syntax of references to other objects is checked here; whether
    the referenced Secret or StorageClass exists is left to the API server.

    Raises:
        InvalidSpec: if any field is malformed.
    """
    logger = logger or logging.getLogger(__name__)
    try:
        replicas = spec.get("replicas", 1)
        if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas <= 0:
            raise InvalidSpec(f"spec.replicas must be a positive integer, got '{replicas}'.")

        image = spec.get("image") or default_image
        if not isinstance(image, str) or not image.strip():
            raise InvalidSpec("spec.image must be a non-empty string.")

        service = spec.get("service") or {}
        service_type = service.get("type") or DEFAULT_SERVICE_TYPE
        if service_type not in SERVICE_TYPES:
            raise InvalidSpec(
                f"spec.service.type '{service_type}' must be one of {', '.join(SERVICE_TYPES)}."
            )

        tls = spec.get("tls") or {}
        persistence = spec.get("persistence") or {}

        return ClusterSpec(
            replicas=replicas,
            image=image,
            generation=generation,
            image_pull_secret=_validate_reference(
                spec.get("imagePullSecret"), "spec.imagePullSecret"
            ),
            service_type=service_type,
            tls_secret=_validate_reference(tls.get("secretName"), "spec.tls.secretName"),
            storage_class=_validate_reference(
                persistence.get("storageClassName"), "spec.persistence.storageClassName"
            ),
            storage=_validate_quantity(
                persistence.get("storage", DEFAULT_STORAGE), "spec.persistence.storage"
            ),
            resources=_validate_resources(spec.get("resources")),
        )
    except InvalidSpec as e:
        logger.error(f"Invalid RabbitmqCluster spec: {e}")
        raise

"""
Shared helpers for configuring and talking to the Kubernetes Python client.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Dict, List, Literal, Optional

from kubernetes import client, config as kube_config


class KubernetesConfigurationError(RuntimeError):
    """Raised when the Kubernetes client cannot be configured."""


def configure_kube_client(
    logger: Optional[logging.Logger] = None,
) -> Literal["in-cluster", "kubeconfig"]:
    """
    Configure the Kubernetes client for the operator process.

    In-cluster service account credentials win; the default kubeconfig is the
    fallback for running the operator from a workstation.

    Returns:
        A string describing the configuration source used.

    Raises:
        KubernetesConfigurationError: If the client could not be configured.
    """

    effective_logger = logger or logging.getLogger(__name__)

    try:
        kube_config.load_incluster_config()
        effective_logger.info("Using in-cluster Kubernetes configuration.")
        return "in-cluster"
    except kube_config.ConfigException as incluster_error:
        try:
            kube_config.load_kube_config()
            effective_logger.info("Using local kubeconfig.")
            return "kubeconfig"
        except kube_config.ConfigException as kubeconfig_error:
            message = (
                "Unable to configure Kubernetes client using either "
                "in-cluster credentials or the default kubeconfig."
            )
            effective_logger.error(message)
            effective_logger.debug("In-cluster configuration error: %s", incluster_error)
            effective_logger.debug("Default kubeconfig error: %s", kubeconfig_error)
            raise KubernetesConfigurationError(message) from kubeconfig_error


@functools.lru_cache(maxsize=1)
def _serializer() -> client.ApiClient:
    return client.ApiClient()


def to_dict(obj: Any) -> Dict[str, Any]:
    """
    Convert a Kubernetes model object into its camelCase wire representation.

    Plain dictionaries pass through unchanged, so callers can treat objects
    read through the typed client and raw manifests the same way.
    """
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return _serializer().sanitize_for_serialization(obj)


def owner_references(obj: Dict[str, Any]) -> List[Dict[str, Any]]:
    return obj.get("metadata", {}).get("ownerReferences") or []


def owner_name(obj: Dict[str, Any], kind: str) -> Optional[str]:
    """Return the name of the first owner of the given kind, if any."""
    for ref in owner_references(obj):
        if ref.get("kind") == kind:
            return ref.get("name")
    return None


def is_solely_owned_by(obj: Dict[str, Any], uid: str) -> bool:
    """True when the object has exactly one owner reference and it points at uid."""
    refs = owner_references(obj)
    return len(refs) == 1 and refs[0].get("uid") == uid

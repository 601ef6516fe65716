from typing import Any, Dict

from ....crds.rabbitmqcluster import ClusterIdentity
from ..validation import ClusterSpec
from .common import (
    AMQP_PORT,
    AMQPS_PORT,
    CLUSTER_LINKS_PORT,
    EPMD_PORT,
    MANAGEMENT_PORT,
    PROMETHEUS_PORT,
    SUFFIX_HEADLESS,
    SUFFIX_INGRESS,
    child_metadata,
    selector_labels,
)

METRICS_SCRAPE_ANNOTATION = "metrics-scrape"
METRICS_PORT_ANNOTATION = "metrics-port"
METRICS_ANNOTATIONS = {
    METRICS_SCRAPE_ANNOTATION: "true",
    METRICS_PORT_ANNOTATION: str(PROMETHEUS_PORT),
}


def build_ingress_service(
    identity: ClusterIdentity, spec: ClusterSpec, metrics_enabled: bool
) -> Dict[str, Any]:
    """Builds the client-facing Service, exposed according to spec.service.type."""
    metadata = child_metadata(identity, SUFFIX_INGRESS)
    if metrics_enabled:
        metadata["annotations"] = dict(METRICS_ANNOTATIONS)

    ports = [
        {"name": "amqp", "port": AMQP_PORT, "targetPort": AMQP_PORT, "protocol": "TCP"},
        {"name": "management", "port": MANAGEMENT_PORT, "targetPort": MANAGEMENT_PORT, "protocol": "TCP"},
        {"name": "prometheus", "port": PROMETHEUS_PORT, "targetPort": PROMETHEUS_PORT, "protocol": "TCP"},
    ]
    if spec.tls_secret:
        ports.append(
            {"name": "amqps", "port": AMQPS_PORT, "targetPort": AMQPS_PORT, "protocol": "TCP"}
        )

    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": metadata,
        "spec": {
            "type": spec.service_type,
            "selector": selector_labels(identity.name),
            "ports": ports,
        },
    }


def build_headless_service(identity: ClusterIdentity) -> Dict[str, Any]:
    """Builds the headless Service that gives each broker pod a stable DNS name."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": child_metadata(identity, SUFFIX_HEADLESS),
        "spec": {
            "clusterIP": "None",
            "publishNotReadyAddresses": True,
            "selector": selector_labels(identity.name),
            "ports": [
                {"name": "epmd", "port": EPMD_PORT, "targetPort": EPMD_PORT, "protocol": "TCP"},
                {
                    "name": "cluster-links",
                    "port": CLUSTER_LINKS_PORT,
                    "targetPort": CLUSTER_LINKS_PORT,
                    "protocol": "TCP",
                },
            ],
        },
    }

from typing import Any, Dict

import kopf

from ....crds.rabbitmqcluster import ClusterIdentity

MANAGED_BY = "rabbitmq-cluster-operator"
LABEL_NAME = "app.kubernetes.io/name"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_PART_OF = "app.kubernetes.io/part-of"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"

AMQP_PORT = 5672
AMQPS_PORT = 5671
MANAGEMENT_PORT = 15672
PROMETHEUS_PORT = 15692
EPMD_PORT = 4369
CLUSTER_LINKS_PORT = 25672

SUFFIX_STATEFULSET = "server"
SUFFIX_CONFIGMAP = "server-conf"
SUFFIX_INGRESS = "ingress"
SUFFIX_HEADLESS = "headless"
SUFFIX_DEFAULT_USER = "default-user"


def child_name(cluster_name: str, suffix: str) -> str:
    return f"{cluster_name}-{suffix}"


def selector_labels(cluster_name: str) -> Dict[str, str]:
    return {
        LABEL_NAME: cluster_name,
        LABEL_COMPONENT: "rabbitmq",
    }


def child_labels(cluster_name: str) -> Dict[str, str]:
    labels = selector_labels(cluster_name)
    labels[LABEL_PART_OF] = "rabbitmq"
    labels[LABEL_MANAGED_BY] = MANAGED_BY
    return labels


def child_metadata(identity: ClusterIdentity, suffix: str) -> Dict[str, Any]:
    """Metadata shared by every child: name, namespace and labels."""
    return {
        "name": child_name(identity.name, suffix),
        "namespace": identity.namespace,
        "labels": child_labels(identity.name),
    }


def adopt(obj: Dict[str, Any], identity: ClusterIdentity) -> Dict[str, Any]:
    """Give obj a single controller owner reference pointing at the cluster."""
    kopf.append_owner_reference(obj, owner=identity.owner_body())
    return obj


def pod_fqdn(identity: ClusterIdentity, ordinal: int, cluster_domain: str) -> str:
    sts = child_name(identity.name, SUFFIX_STATEFULSET)
    headless = child_name(identity.name, SUFFIX_HEADLESS)
    return f"{sts}-{ordinal}.{headless}.{identity.namespace}.svc.{cluster_domain}"

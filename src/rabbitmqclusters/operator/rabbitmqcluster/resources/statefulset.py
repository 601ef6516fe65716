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
    SUFFIX_CONFIGMAP,
    SUFFIX_DEFAULT_USER,
    SUFFIX_HEADLESS,
    SUFFIX_STATEFULSET,
    adopt,
    child_labels,
    child_metadata,
    child_name,
    selector_labels,
)
from .configmap import TLS_MOUNT_PATH
from .secret import PASSWORD_KEY, USERNAME_KEY

PERSISTENCE_VOLUME = "persistence"
MNESIA_PATH = "/var/lib/rabbitmq/mnesia"


def _secret_env(name: str, secret_name: str, key: str) -> Dict[str, Any]:
    return {
        "name": name,
        "valueFrom": {"secretKeyRef": {"name": secret_name, "key": key}},
    }


def build_statefulset(
    identity: ClusterIdentity, spec: ClusterSpec, cluster_domain: str
) -> Dict[str, Any]:
    """Builds the StatefulSet running the broker nodes."""
    name = identity.name
    default_user = child_name(name, SUFFIX_DEFAULT_USER)
    headless = child_name(name, SUFFIX_HEADLESS)

    statefulset_spec: Dict[str, Any] = {
        "replicas": spec.replicas,
        "serviceName": headless,
        "podManagementPolicy": "Parallel",
        "selector": {"matchLabels": selector_labels(name)},
        "template": {
            "metadata": {"labels": child_labels(name)},
            "spec": {
                "terminationGracePeriodSeconds": 150,
                "containers": [
                    {
                        "name": "rabbitmq",
                        "image": spec.image,
                        "ports": [
                            {"name": "amqp", "containerPort": AMQP_PORT},
                            {"name": "management", "containerPort": MANAGEMENT_PORT},
                            {"name": "prometheus", "containerPort": PROMETHEUS_PORT},
                            {"name": "epmd", "containerPort": EPMD_PORT},
                            {"name": "cluster-links", "containerPort": CLUSTER_LINKS_PORT},
                        ],
                        "env": [
                            {
                                "name": "MY_POD_NAME",
                                "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}},
                            },
                            {
                                "name": "MY_POD_NAMESPACE",
                                "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}},
                            },
                            {"name": "RABBITMQ_USE_LONGNAME", "value": "true"},
                            {
                                "name": "RABBITMQ_NODENAME",
                                "value": (
                                    f"rabbit@$(MY_POD_NAME).{headless}"
                                    f".$(MY_POD_NAMESPACE).svc.{cluster_domain}"
                                ),
                            },
                            _secret_env("RABBITMQ_DEFAULT_USER", default_user, USERNAME_KEY),
                            _secret_env("RABBITMQ_DEFAULT_PASS", default_user, PASSWORD_KEY),
                            # Nodes only cluster when they share a cookie; the
                            # default-user password is already a per-cluster secret.
                            _secret_env("RABBITMQ_ERLANG_COOKIE", default_user, PASSWORD_KEY),
                        ],
                        "resources": {
                            section: dict(values) for section, values in spec.resources.items()
                        },
                        "readinessProbe": {
                            "tcpSocket": {"port": "amqp"},
                            "initialDelaySeconds": 10,
                            "periodSeconds": 10,
                            "timeoutSeconds": 5,
                            "failureThreshold": 3,
                        },
                        "volumeMounts": [
                            {"name": PERSISTENCE_VOLUME, "mountPath": MNESIA_PATH},
                            {
                                "name": "server-conf",
                                "mountPath": "/etc/rabbitmq/rabbitmq.conf",
                                "subPath": "rabbitmq.conf",
                            },
                            {
                                "name": "server-conf",
                                "mountPath": "/etc/rabbitmq/enabled_plugins",
                                "subPath": "enabled_plugins",
                            },
                        ],
                    }
                ],
                "volumes": [
                    {
                        "name": "server-conf",
                        "configMap": {"name": child_name(name, SUFFIX_CONFIGMAP)},
                    },
                ],
            },
        },
        "volumeClaimTemplates": [
            {
                "metadata": {
                    "name": PERSISTENCE_VOLUME,
                    "namespace": identity.namespace,
                    "labels": child_labels(name),
                },
                "spec": {
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": spec.storage}},
                },
            }
        ],
    }

    pod_spec = statefulset_spec["template"]["spec"]
    container = pod_spec["containers"][0]

    claim_template = statefulset_spec["volumeClaimTemplates"][0]
    # The claim outlives the pod; pointing it at the cluster lets the garbage
    # collector remove persistence-<cluster>-server-N with the cluster.
    adopt(claim_template, identity)
    if spec.storage_class:
        claim_template["spec"]["storageClassName"] = spec.storage_class

    if spec.image_pull_secret:
        pod_spec["imagePullSecrets"] = [{"name": spec.image_pull_secret}]

    if spec.tls_secret:
        pod_spec["volumes"].append(
            {"name": "rabbitmq-tls", "secret": {"secretName": spec.tls_secret}}
        )
        container["volumeMounts"].append(
            {"name": "rabbitmq-tls", "mountPath": TLS_MOUNT_PATH, "readOnly": True}
        )
        container["ports"].append({"name": "amqps", "containerPort": AMQPS_PORT})

    if not container["resources"]:
        container.pop("resources")

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": child_metadata(identity, SUFFIX_STATEFULSET),
        "spec": statefulset_spec,
    }

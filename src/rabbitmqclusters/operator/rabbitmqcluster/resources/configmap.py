from typing import Any, Dict

from ....crds.rabbitmqcluster import ClusterIdentity
from ..validation import ClusterSpec
from .common import PROMETHEUS_PORT, AMQPS_PORT, SUFFIX_CONFIGMAP, child_metadata, pod_fqdn

TLS_MOUNT_PATH = "/etc/rabbitmq-tls"

ENABLED_PLUGINS = (
    "rabbitmq_federation",
    "rabbitmq_federation_management",
    "rabbitmq_management",
    "rabbitmq_peer_discovery_common",
    "rabbitmq_peer_discovery_k8s",
    "rabbitmq_prometheus",
    "rabbitmq_shovel",
    "rabbitmq_shovel_management",
)


def build_rabbitmq_conf(identity: ClusterIdentity, spec: ClusterSpec, cluster_domain: str) -> str:
    lines = [
        "cluster_formation.peer_discovery_backend = rabbit_peer_discovery_classic_config",
    ]
    for ordinal in range(spec.replicas):
        lines.append(
            f"cluster_formation.classic_config.nodes.{ordinal + 1} = "
            f"rabbit@{pod_fqdn(identity, ordinal, cluster_domain)}"
        )
    lines += [
        "cluster_partition_handling = pause_minority",
        "queue_master_locator = min-masters",
        "disk_free_limit.absolute = 2GB",
        f"prometheus.tcp.port = {PROMETHEUS_PORT}",
    ]
    if spec.tls_secret:
        lines += [
            f"listeners.ssl.default = {AMQPS_PORT}",
            f"ssl_options.certfile = {TLS_MOUNT_PATH}/tls.crt",
            f"ssl_options.keyfile = {TLS_MOUNT_PATH}/tls.key",
            "ssl_options.verify = verify_none",
            "ssl_options.fail_if_no_peer_cert = false",
        ]
    return "\n".join(lines) + "\n"


def build_server_configmap(
    identity: ClusterIdentity, spec: ClusterSpec, cluster_domain: str
) -> Dict[str, Any]:
    """Builds the ConfigMap holding rabbitmq.conf and the enabled plugin list."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": child_metadata(identity, SUFFIX_CONFIGMAP),
        "data": {
            "enabled_plugins": "[" + ",".join(ENABLED_PLUGINS) + "].",
            "rabbitmq.conf": build_rabbitmq_conf(identity, spec, cluster_domain),
        },
    }

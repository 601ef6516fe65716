"""
Desired-state calculation for a RabbitmqCluster.

Everything here is a pure function of the cluster identity and its parsed
spec: no API calls, no randomness, no clock. Calling build_desired_state
twice with the same input yields identical descriptors.
"""
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from ....crds.rabbitmqcluster import ClusterIdentity
from ..validation import ClusterSpec
from .common import adopt
from .configmap import build_server_configmap
from .secret import build_default_user_secret
from .services import build_headless_service, build_ingress_service
from .statefulset import build_statefulset

KIND_CREDENTIAL = "Credential"
KIND_CONFIGURATION = "Configuration"
KIND_NETWORK_EXPOSURE = "NetworkExposure"
KIND_NETWORK_IDENTITY = "NetworkIdentity"
KIND_STATEFUL_WORKLOAD = "StatefulWorkload"


@dataclass(frozen=True)
class ChildResourceDescriptor:
    kind: str
    name: str
    body: Dict[str, Any]


@dataclass(frozen=True)
class DesiredState:
    identity: ClusterIdentity
    spec: ClusterSpec
    children: Tuple[ChildResourceDescriptor, ...]

    def child(self, kind: str) -> ChildResourceDescriptor:
        for descriptor in self.children:
            if descriptor.kind == kind:
                return descriptor
        raise KeyError(kind)


def _descriptor(kind: str, body: Dict[str, Any], identity: ClusterIdentity) -> ChildResourceDescriptor:
    adopt(body, identity)
    return ChildResourceDescriptor(kind=kind, name=body["metadata"]["name"], body=body)


def build_desired_state(
    identity: ClusterIdentity,
    spec: ClusterSpec,
    *,
    metrics_enabled: bool = True,
    cluster_domain: str = "cluster.local",
) -> DesiredState:
    """
    Compute every child object a RabbitmqCluster needs, in reconcile order.

    Credentials come first so later objects can reference them; the
    StatefulSet comes last so it only starts once its configuration and
    network identity exist.
    """
    children = (
        _descriptor(KIND_CREDENTIAL, build_default_user_secret(identity), identity),
        _descriptor(
            KIND_CONFIGURATION, build_server_configmap(identity, spec, cluster_domain), identity
        ),
        _descriptor(
            KIND_NETWORK_EXPOSURE,
            build_ingress_service(identity, spec, metrics_enabled),
            identity,
        ),
        _descriptor(KIND_NETWORK_IDENTITY, build_headless_service(identity), identity),
        _descriptor(
            KIND_STATEFUL_WORKLOAD, build_statefulset(identity, spec, cluster_domain), identity
        ),
    )
    return DesiredState(identity=identity, spec=spec, children=children)

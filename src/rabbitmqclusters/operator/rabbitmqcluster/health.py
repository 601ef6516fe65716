"""
Cluster health evaluation.

Health combines what Kubernetes knows (how many broker pods are ready) with
what the brokers themselves report through the management API (whether the
default vhost answers and how many nodes have joined the cluster).
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

from ...crds.rabbitmqcluster import ClusterIdentity
from ...utils.conditions import is_condition_true
from .errors import ProbeFailure
from .resources.common import MANAGEMENT_PORT, SUFFIX_INGRESS, child_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    alive: bool
    joined_nodes: int = 0


@dataclass(frozen=True)
class ClusterHealth:
    desired_replicas: int
    ready_replicas: int
    available: bool
    degraded: bool
    reason: str
    message: str

    @property
    def all_replicas_ready(self) -> bool:
        return self.ready_replicas == self.desired_replicas


class ManagementProbe:
    """Asks a cluster's management API whether it is serving and clustered."""

    def __init__(
        self,
        timeout: float = 5.0,
        cluster_domain: str = "cluster.local",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.cluster_domain = cluster_domain
        self.transport = transport

    def base_url(self, identity: ClusterIdentity) -> str:
        host = (
            f"{child_name(identity.name, SUFFIX_INGRESS)}.{identity.namespace}"
            f".svc.{self.cluster_domain}"
        )
        return f"http://{host}:{MANAGEMENT_PORT}"

    async def probe(
        self, identity: ClusterIdentity, replicas: int, credentials: Tuple[str, str]
    ) -> ProbeResult:
        """
        Runs the aliveness test and, for multi-node clusters, counts running members.

        Raises:
            ProbeFailure: if the management API is unreachable or answers
                with anything other than a healthy response.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url(identity),
                auth=credentials,
                timeout=self.timeout,
                transport=self.transport,
            ) as http:
                response = await http.get("/api/aliveness-test/%2F")
                response.raise_for_status()
                answer = response.json()
                if not isinstance(answer, dict):
                    raise ProbeFailure(f"Unexpected aliveness-test answer: {answer!r}")
                alive = answer.get("status") == "ok"
                if not alive:
                    return ProbeResult(alive=False)

                if replicas == 1:
                    return ProbeResult(alive=True, joined_nodes=1)

                response = await http.get("/api/nodes")
                response.raise_for_status()
                nodes = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProbeFailure(f"Management API probe failed: {e}") from e

        if not isinstance(nodes, list) or not all(isinstance(node, dict) for node in nodes):
            raise ProbeFailure(f"Unexpected /api/nodes answer: {nodes!r}")
        joined = sum(1 for node in nodes if node.get("running"))
        return ProbeResult(alive=True, joined_nodes=joined)


def _ready_replicas(statefulset: Optional[Dict[str, Any]]) -> int:
    if not statefulset:
        return 0
    return (statefulset.get("status") or {}).get("readyReplicas") or 0


async def evaluate_health(
    identity: ClusterIdentity,
    replicas: int,
    statefulset: Optional[Dict[str, Any]],
    credentials: Optional[Tuple[str, str]],
    previous_status: Dict[str, Any],
    probe: ManagementProbe,
) -> ClusterHealth:
    """
    Derive the health of a cluster from its StatefulSet and a management API probe.

    Degraded only applies to a cluster that has been Available before: a
    cluster that is still coming up for the first time is not degraded,
    just not available yet.
    """
    ready = _ready_replicas(statefulset)
    conditions = previous_status.get("conditions") or []
    was_available = is_condition_true(conditions, "Available")
    was_degraded = is_condition_true(conditions, "Degraded")
    degraded = (was_available or was_degraded) and ready < replicas

    def health(available: bool, reason: str, message: str) -> ClusterHealth:
        return ClusterHealth(
            desired_replicas=replicas,
            ready_replicas=ready,
            available=available,
            degraded=degraded,
            reason=reason,
            message=message,
        )

    if ready == 0:
        return health(False, "NoReplicasReady", f"0/{replicas} replicas ready.")

    if credentials is None:
        return health(False, "ProbeFailed", "Default-user credentials are not readable.")

    try:
        result = await probe.probe(identity, replicas, credentials)
    except ProbeFailure as e:
        logger.info(f"Cluster {identity.namespace}/{identity.name}: {e}")
        return health(False, ProbeFailure.reason, str(e))

    if not result.alive:
        return health(False, "ProbeFailed", "Aliveness test did not report ok.")
    if ready != replicas:
        return health(False, "NotAllReplicasReady", f"{ready}/{replicas} replicas ready.")
    if replicas > 1 and result.joined_nodes != replicas:
        return health(
            False,
            "ClusterFormationIncomplete",
            f"{result.joined_nodes}/{replicas} nodes have joined the cluster.",
        )
    return health(True, "AllNodesAvailable", f"{ready}/{replicas} nodes running and clustered.")

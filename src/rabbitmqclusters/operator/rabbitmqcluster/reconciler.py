"""
Kubernetes resource reconciliation for RabbitmqCluster resources.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import kopf
import urllib3
from kubernetes import client

from ...crds.rabbitmqcluster import RabbitmqCluster
from ...utils.kube import is_solely_owned_by
from .credentials import read_credentials
from .errors import OwnershipConflict, api_error
from .health import ManagementProbe, evaluate_health
from .kinds import ChildKind, build_child_kinds
from .pause import is_paused
from .resources.desired import KIND_CREDENTIAL, KIND_STATEFUL_WORKLOAD, DesiredState, build_desired_state
from .status import build_status, write_status
from .validation import parse_cluster_spec

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ChildOutcome:
    kind: str
    name: str
    action: str
    live: Dict[str, Any]


@dataclass
class ReconcileResult:
    requeue_after: Optional[float] = None
    outcomes: List[ChildOutcome] = field(default_factory=list)


class ObjectReconciler:
    """
    Brings each child object in line with its descriptor, one kind at a time.

    Kinds are processed in order and the first failure stops the pass, so a
    StatefulSet is never written before its Secret and ConfigMap exist.
    """

    def __init__(self, kinds: Sequence[ChildKind]):
        self.kinds = list(kinds)

    async def reconcile(
        self, state: DesiredState, logger: logging.Logger, established: bool = False
    ) -> List[ChildOutcome]:
        """
        Args:
            state: The desired state of every child
            logger: Logger instance
            established: Whether the cluster converged before; a missing
                default-user Secret then means its credentials are lost.
        """
        return [await self.reconcile_child(kind, state, logger, established) for kind in self.kinds]

    async def reconcile_child(
        self,
        kind: ChildKind,
        state: DesiredState,
        logger: logging.Logger,
        established: bool = False,
    ) -> ChildOutcome:
        identity = state.identity
        descriptor = kind.desired(state)
        live = await kind.fetch(identity.namespace, descriptor.name)

        if live is None:
            if kind.kind == KIND_CREDENTIAL and established:
                logger.warning(
                    f"Secret '{descriptor.name}' was deleted; generating new default-user "
                    "credentials. Clients using the old credentials will be rejected."
                )
            created = await kind.create(
                identity.namespace, kind.body_for_create(descriptor.body, logger)
            )
            logger.info(f"{kind.resource} '{descriptor.name}' created.")
            return ChildOutcome(kind.kind, descriptor.name, ACTION_CREATED, created)

        if not is_solely_owned_by(live, identity.uid):
            logger.warning(
                f"{kind.resource} '{descriptor.name}' exists but is not owned by "
                f"RabbitmqCluster '{identity.namespace}/{identity.name}'."
            )
            raise OwnershipConflict(
                f"{kind.resource} '{descriptor.name}' already exists and is not owned by "
                f"this RabbitmqCluster (uid {identity.uid})."
            )

        patch = kind.diff(descriptor.body, live)
        if not patch:
            return ChildOutcome(kind.kind, descriptor.name, ACTION_UNCHANGED, live)

        updated = await kind.update(identity.namespace, descriptor.name, patch)
        logger.info(f"{kind.resource} '{descriptor.name}' updated.")
        return ChildOutcome(kind.kind, descriptor.name, ACTION_UPDATED, updated)


class ClusterReconciler:
    """
    Runs one reconcile pass for a RabbitmqCluster key.

    A pass reads the custom resource, checks the pause label, computes the
    desired children, converges them, evaluates health and writes status.
    Retryable errors propagate to the caller; permanent ones end up in the
    ReconcileSuccess condition.
    """

    def __init__(
        self,
        config: Any,
        custom_objects_api: Optional[client.CustomObjectsApi] = None,
        core_v1: Optional[client.CoreV1Api] = None,
        apps_v1: Optional[client.AppsV1Api] = None,
        probe: Optional[ManagementProbe] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.api = custom_objects_api or client.CustomObjectsApi()
        self.objects = ObjectReconciler(
            build_child_kinds(core_v1, apps_v1, config.request_timeout)
        )
        self.probe = probe or ManagementProbe(config.probe_timeout, config.cluster_domain)
        self.logger = logger or logging.getLogger(__name__)

    async def get_cluster(self, namespace: str, name: str) -> Optional[RabbitmqCluster]:
        try:
            return await asyncio.to_thread(
                RabbitmqCluster.get,
                name,
                namespace,
                api=self.api,
                request_timeout=self.config.request_timeout,
            )
        except client.ApiException as e:
            if e.status == 404:
                return None
            raise api_error(e, f"Reading RabbitmqCluster '{namespace}/{name}'") from e
        except urllib3.exceptions.HTTPError as e:
            raise api_error(e, f"Reading RabbitmqCluster '{namespace}/{name}'") from e

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        logger = self.logger
        cluster = await self.get_cluster(namespace, name)
        if cluster is None:
            logger.debug(f"RabbitmqCluster '{namespace}/{name}' no longer exists.")
            return ReconcileResult()
        if cluster.is_deleting:
            # Children are removed by the garbage collector via owner references.
            logger.info(f"RabbitmqCluster '{namespace}/{name}' is being deleted.")
            return ReconcileResult()
        if is_paused(cluster, logger):
            return ReconcileResult()

        logger.info(f"Reconciling RabbitmqCluster '{namespace}/{name}'...")
        established = cluster.status.get("observedGeneration") is not None
        try:
            spec = parse_cluster_spec(
                cluster.spec, cluster.generation, self.config.default_image, logger
            )
            state = build_desired_state(
                cluster.identity,
                spec,
                metrics_enabled=self.config.metrics_enabled,
                cluster_domain=self.config.cluster_domain,
            )
            outcomes = await self.objects.reconcile(state, logger, established)
        except kopf.PermanentError as e:
            logger.error(f"RabbitmqCluster '{namespace}/{name}' cannot be reconciled: {e}")
            status = build_status(cluster.status, cluster.generation, None, error=e)
            await write_status(cluster, status, logger, self.config.request_timeout)
            return ReconcileResult()

        by_kind = {outcome.kind: outcome for outcome in outcomes}
        health = await evaluate_health(
            cluster.identity,
            spec.replicas,
            by_kind[KIND_STATEFUL_WORKLOAD].live,
            self._credentials(by_kind[KIND_CREDENTIAL].live, logger),
            cluster.status,
            self.probe,
        )
        status = build_status(cluster.status, cluster.generation, health)
        await write_status(cluster, status, logger, self.config.request_timeout)

        requeue_after = None if health.available else self.config.health_requeue_interval
        return ReconcileResult(requeue_after=requeue_after, outcomes=outcomes)

    async def record_failure(self, namespace: str, name: str, error: Exception) -> None:
        """Persist an error that kept failing after every retry as ReconcileSuccess=False."""
        cluster = await self.get_cluster(namespace, name)
        if cluster is None or cluster.is_deleting or cluster.is_paused:
            return
        status = build_status(cluster.status, cluster.generation, None, error=error)
        await write_status(cluster, status, self.logger, self.config.request_timeout)

    @staticmethod
    def _credentials(
        secret: Dict[str, Any], logger: logging.Logger
    ) -> Optional[Tuple[str, str]]:
        try:
            return read_credentials(secret)
        except ValueError as e:
            logger.warning(str(e))
            return None

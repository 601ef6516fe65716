"""
Status derivation and persistence for RabbitmqCluster resources.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import urllib3
from kubernetes import client

from ...crds.rabbitmqcluster import RabbitmqCluster
from ...utils.conditions import build_condition, find_condition
from .errors import api_error
from .health import ClusterHealth

ALL_REPLICAS_READY = "AllReplicasReady"
AVAILABLE = "Available"
DEGRADED = "Degraded"
RECONCILE_SUCCESS = "ReconcileSuccess"
CONDITION_TYPES = (ALL_REPLICAS_READY, AVAILABLE, DEGRADED, RECONCILE_SUCCESS)

PHASE_CREATING = "creating"
PHASE_CREATED = "created"
PHASE_RESTARTING = "restarting"
PHASE_FAILED = "failed"


def cluster_phase(health: Optional[ClusterHealth], error: Optional[Exception]) -> str:
    if error is not None:
        return PHASE_FAILED
    if health is not None and health.available:
        return PHASE_CREATED
    if health is not None and health.degraded:
        return PHASE_RESTARTING
    return PHASE_CREATING


def _health_conditions(
    existing: List[Dict[str, Any]], health: ClusterHealth, now: Optional[str]
) -> List[Dict[str, Any]]:
    ready_message = f"{health.ready_replicas}/{health.desired_replicas} replicas ready."
    return [
        build_condition(
            existing,
            ALL_REPLICAS_READY,
            health.all_replicas_ready,
            "AllPodsAreReady" if health.all_replicas_ready else "NotAllPodsReady",
            ready_message,
            now,
        ),
        build_condition(existing, AVAILABLE, health.available, health.reason, health.message, now),
        build_condition(
            existing,
            DEGRADED,
            health.degraded,
            "ReplicasUnavailable" if health.degraded else "NoDegradation",
            ready_message if health.degraded else "",
            now,
        ),
    ]


def build_status(
    previous: Dict[str, Any],
    generation: int,
    health: Optional[ClusterHealth],
    error: Optional[Exception] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Compute the status a cluster should have after a reconcile pass.

    When the pass failed before health could be evaluated, the previously
    persisted health conditions are carried over as they were.
    observedGeneration only advances on a pass that ended without error.
    """
    existing = previous.get("conditions") or []

    if health is not None:
        conditions = _health_conditions(existing, health, now)
    else:
        conditions = []
        for condition_type in (ALL_REPLICAS_READY, AVAILABLE, DEGRADED):
            kept = find_condition(existing, condition_type)
            conditions.append(
                kept
                if kept is not None
                else build_condition(existing, condition_type, False, "Unknown", "", now)
            )

    if error is None:
        conditions.append(
            build_condition(
                existing,
                RECONCILE_SUCCESS,
                True,
                "Success",
                f"Generation {generation} reconciled.",
                now,
            )
        )
    else:
        conditions.append(
            build_condition(
                existing,
                RECONCILE_SUCCESS,
                False,
                getattr(error, "reason", "Error"),
                str(error),
                now,
            )
        )

    status: Dict[str, Any] = {
        "conditions": conditions,
        "clusterStatus": cluster_phase(health, error),
    }
    observed = generation if error is None else previous.get("observedGeneration")
    if observed is not None:
        status["observedGeneration"] = observed
    return status


def status_changed(persisted: Dict[str, Any], status: Dict[str, Any]) -> bool:
    return any(persisted.get(key) != value for key, value in status.items())


async def write_status(
    cluster: RabbitmqCluster,
    status: Dict[str, Any],
    logger: logging.Logger,
    request_timeout: Optional[float] = None,
) -> bool:
    """
    Persist status through the status subresource, skipping no-op writes.

    Returns:
        True when a write was issued.
    """
    if not status_changed(cluster.status, status):
        return False

    try:
        await asyncio.to_thread(cluster.patch_status, status, request_timeout)
    except (client.ApiException, urllib3.exceptions.HTTPError) as e:
        raise api_error(e, f"Updating status of RabbitmqCluster '{cluster.metadata.name}'") from e

    logger.info(
        f"RabbitmqCluster '{cluster.metadata.namespace}/{cluster.metadata.name}' "
        f"status is now '{status['clusterStatus']}'."
    )
    return True

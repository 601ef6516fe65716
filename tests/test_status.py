import logging
from unittest.mock import MagicMock

import pytest

from rabbitmqclusters.crds.rabbitmqcluster import RabbitmqCluster
from rabbitmqclusters.operator.rabbitmqcluster.errors import OwnershipConflict, Retryable
from rabbitmqclusters.operator.rabbitmqcluster.health import ClusterHealth
from rabbitmqclusters.operator.rabbitmqcluster.status import (
    CONDITION_TYPES,
    build_status,
    cluster_phase,
    write_status,
)
from rabbitmqclusters.utils.conditions import find_condition
from tests.helpers import api_exception

T0 = "2024-01-01T00:00:00Z"
T1 = "2024-01-01T00:05:00Z"


def _health(ready=1, desired=1, available=True, degraded=False):
    return ClusterHealth(
        desired_replicas=desired,
        ready_replicas=ready,
        available=available,
        degraded=degraded,
        reason="AllNodesAvailable" if available else "NotAllReplicasReady",
        message="",
    )


def test_conditions_are_complete_and_ordered():
    status = build_status({}, 1, _health(), now=T0)
    assert [c["type"] for c in status["conditions"]] == list(CONDITION_TYPES)
    assert all(c["lastTransitionTime"] == T0 for c in status["conditions"])


def test_available_pass():
    status = build_status({}, 4, _health(), now=T0)
    assert status["clusterStatus"] == "created"
    assert status["observedGeneration"] == 4
    assert find_condition(status["conditions"], "Available")["status"] == "True"
    assert find_condition(status["conditions"], "ReconcileSuccess")["status"] == "True"


def test_transition_time_only_moves_on_flip():
    first = build_status({}, 1, _health(available=False, ready=0), now=T0)
    same = build_status(first, 1, _health(available=False, ready=0), now=T1)
    assert same == first

    flipped = build_status(first, 1, _health(), now=T1)
    assert find_condition(flipped["conditions"], "Available")["lastTransitionTime"] == T1
    assert find_condition(flipped["conditions"], "ReconcileSuccess")["lastTransitionTime"] == T0


def test_error_keeps_observed_generation_and_health():
    converged = build_status({}, 1, _health(), now=T0)

    failed = build_status(
        converged, 2, None, error=OwnershipConflict("Service 'x' is not ours"), now=T1
    )

    assert failed["clusterStatus"] == "failed"
    assert failed["observedGeneration"] == 1
    success = find_condition(failed["conditions"], "ReconcileSuccess")
    assert success["status"] == "False"
    assert success["reason"] == "OwnershipConflict"
    assert success["lastTransitionTime"] == T1
    assert find_condition(failed["conditions"], "Available") == find_condition(
        converged["conditions"], "Available"
    )


def test_error_before_any_success_has_no_observed_generation():
    status = build_status({}, 1, None, error=Retryable("boom", reason="Timeout"), now=T0)
    assert "observedGeneration" not in status
    assert find_condition(status["conditions"], "ReconcileSuccess")["reason"] == "Timeout"
    assert find_condition(status["conditions"], "Available")["reason"] == "Unknown"


@pytest.mark.parametrize(
    "health, error, phase",
    [
        (_health(), None, "created"),
        (_health(available=False, degraded=True, ready=0), None, "restarting"),
        (_health(available=False, ready=0), None, "creating"),
        (None, None, "creating"),
        (_health(), RuntimeError("x"), "failed"),
    ],
)
def test_cluster_phase(health, error, phase):
    assert cluster_phase(health, error) == phase


def _cluster(status):
    data = {
        "metadata": {"name": "rmq", "namespace": "default", "uid": "u", "generation": 1},
        "spec": {},
        "status": status,
    }
    return RabbitmqCluster.from_dict(data, api=MagicMock())


@pytest.mark.asyncio
async def test_write_status_skips_unchanged():
    status = build_status({}, 1, _health(), now=T0)
    cluster = _cluster(status)

    wrote = await write_status(cluster, status, logging.getLogger(__name__))

    assert wrote is False
    cluster.api.patch_namespaced_custom_object_status.assert_not_called()


@pytest.mark.asyncio
async def test_write_status_uses_status_subresource():
    status = build_status({}, 1, _health(), now=T0)
    cluster = _cluster({})
    cluster.api.patch_namespaced_custom_object_status.return_value = {
        "metadata": {"name": "rmq"},
        "status": status,
    }

    wrote = await write_status(cluster, status, logging.getLogger(__name__), request_timeout=3)

    assert wrote is True
    call = cluster.api.patch_namespaced_custom_object_status.call_args
    assert call.kwargs["body"] == {"status": status}
    assert call.kwargs["_request_timeout"] == 3
    cluster.api.patch_namespaced_custom_object.assert_not_called()
    assert cluster.status == status


@pytest.mark.asyncio
async def test_write_status_failures_are_retryable():
    cluster = _cluster({})
    cluster.api.patch_namespaced_custom_object_status.side_effect = api_exception(500)

    with pytest.raises(Retryable):
        await write_status(cluster, build_status({}, 1, _health()), logging.getLogger(__name__))

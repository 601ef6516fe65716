"""
This file contains shared fixtures for all tests.
"""
import logging
from typing import Any, Dict

import pytest
from kubernetes import client
from unittest.mock import MagicMock

from rabbitmqclusters.crds.rabbitmqcluster import RabbitmqCluster
from rabbitmqclusters.operator.rabbitmqcluster.reconciler import ClusterReconciler
from tests.helpers import NAMESPACE, FakeConfig, FakeKube, FakeProbe

TEST_CLUSTER_NAME = "hello-rabbit"


@pytest.fixture
def kube() -> FakeKube:
    return FakeKube()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def operator_config() -> FakeConfig:
    return FakeConfig()


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("tests.rabbitmqclusters")


@pytest.fixture
def reconciler(
    kube: FakeKube, probe: FakeProbe, operator_config: FakeConfig, logger: logging.Logger
) -> ClusterReconciler:
    return ClusterReconciler(
        operator_config,
        custom_objects_api=kube,
        core_v1=kube,
        apps_v1=kube,
        probe=probe,
        logger=logger,
    )


@pytest.fixture
def cluster_body(kube: FakeKube) -> Dict[str, Any]:
    """A freshly created single-replica RabbitmqCluster."""
    return kube.add_cluster(TEST_CLUSTER_NAME, {"replicas": 1})


@pytest.fixture
def cluster(kube: FakeKube, cluster_body: Dict[str, Any]) -> RabbitmqCluster:
    return RabbitmqCluster.from_dict(cluster_body, api=kube)


@pytest.fixture
def mock_k8s_api() -> MagicMock:
    """
    Provides a MagicMock for the Kubernetes CustomObjectsApi, suitable for unit tests.
    """
    return MagicMock(spec=client.CustomObjectsApi)

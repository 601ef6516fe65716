"""
Kubernetes operator for RabbitmqCluster custom resources.

The kopf handlers are kept thin and delegate to specialized modules for:
- Validation (rabbitmqcluster/validation.py)
- Desired state (rabbitmqcluster/resources/)
- Child reconciliation (rabbitmqcluster/kinds.py, rabbitmqcluster/reconciler.py)
- Health and status (rabbitmqcluster/health.py, rabbitmqcluster/status.py)
- Scheduling and leadership (workqueue.py, controller.py, leadership.py)
"""
import logging
from typing import Any

import kopf
from kubernetes import client

from ..utils.kube import KubernetesConfigurationError, configure_kube_client
# NOTE: This is what registers our operator's functions with kopf so that
#       `kopf run -m rabbitmqclusters.operator` can work. If you add more
#       handler modules, you must import them here.
# ruff: noqa: F401
from .rabbitmqcluster import handler
from .config import config as operator_config
from .controller import ClusterController
from .leadership import LeaseElector
from .rabbitmqcluster.reconciler import ClusterReconciler


def build_controller(config: Any, logger: logging.Logger) -> ClusterController:
    reconciler = ClusterReconciler(config, logger=logger)
    elector = None
    if config.leader_election:
        elector = LeaseElector(
            config.lease_name,
            config.lease_namespace,
            lease_duration=config.lease_duration,
            renew_interval=config.lease_renew_interval,
            api=client.CoordinationV1Api(),
            request_timeout=config.request_timeout,
        )
    return ClusterController(config, reconciler, elector=elector, logger=logger)


@kopf.on.startup()
async def on_startup(
    settings: kopf.OperatorSettings,
    memo: kopf.Memo,
    logger: logging.Logger,
    **kwargs: Any,
) -> None:
    """
    Handle the startup of the operator.

    This sets operator-wide settings and starts the reconcile controller.
    """
    try:
        configure_kube_client(logger)
    except KubernetesConfigurationError as exc:
        raise kopf.PermanentError(str(exc)) from exc

    # Handlers only enqueue keys, so kopf itself needs very little concurrency.
    # The default worker limit is unbounded which can flood the API server on
    # restart.
    settings.batching.worker_limit = operator_config.worker_limit

    # All logs by default go to the k8s event api. Disable event posting to
    # reduce API load.
    settings.posting.enabled = operator_config.posting_enabled

    # Leadership is decided by our own Lease, not by kopf peering.
    settings.peering.standalone = True

    settings.networking.request_timeout = operator_config.request_timeout

    memo.controller = build_controller(operator_config, logger)
    await memo.controller.start()
    logger.info("Operator started.")


@kopf.on.cleanup()
async def on_cleanup(memo: kopf.Memo, logger: logging.Logger, **kwargs: Any) -> None:
    controller = getattr(memo, "controller", None)
    if controller is not None:
        await controller.stop()
    logger.info("Operator stopped.")

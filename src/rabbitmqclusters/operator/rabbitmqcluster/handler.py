"""
Event sources for RabbitmqCluster reconciliation.

The kopf handlers here never touch the cluster themselves: every event on a
RabbitmqCluster or on one of its children is reduced to the owning cluster
key and handed to the controller's work queue.
"""
import logging
from typing import Any, Dict

import kopf

from ...crds.const import (
    CRD_GROUP,
    CRD_KIND_RABBITMQCLUSTER,
    CRD_PLURAL_RABBITMQCLUSTER,
    CRD_VERSION,
)
from ...utils.kube import owner_name
from .resources.common import LABEL_MANAGED_BY, MANAGED_BY

MANAGED_CHILDREN = {LABEL_MANAGED_BY: MANAGED_BY}


def _enqueue(memo: kopf.Memo, namespace: str, name: str, logger: logging.Logger) -> None:
    controller = getattr(memo, "controller", None)
    if controller is None:
        logger.debug(f"Controller not started; dropping event for '{namespace}/{name}'.")
        return
    controller.enqueue(namespace, name)


@kopf.on.event(CRD_GROUP, CRD_VERSION, CRD_PLURAL_RABBITMQCLUSTER)
async def rabbitmqcluster_event(
    name: str, namespace: str, memo: kopf.Memo, logger: logging.Logger, **kwargs: Any
) -> None:
    _enqueue(memo, namespace, name, logger)


@kopf.on.event("v1", "secrets", labels=MANAGED_CHILDREN)
@kopf.on.event("v1", "configmaps", labels=MANAGED_CHILDREN)
@kopf.on.event("v1", "services", labels=MANAGED_CHILDREN)
@kopf.on.event("apps", "v1", "statefulsets", labels=MANAGED_CHILDREN)
async def child_event(
    body: Dict[str, Any],
    namespace: str,
    memo: kopf.Memo,
    logger: logging.Logger,
    **kwargs: Any,
) -> None:
    """Maps a change to a child object (including its deletion) to its owning cluster."""
    owner = owner_name(body, CRD_KIND_RABBITMQCLUSTER)
    if owner is None:
        return
    _enqueue(memo, namespace, owner, logger)

"""
Periodic resync of RabbitmqCluster resources.

Watch events can be missed (operator restarts, dropped watches, changes to
the brokers that Kubernetes never sees), so every cluster is enqueued again
on a fixed interval.
"""
import asyncio
import logging
from typing import Callable, Optional

import urllib3
from kubernetes import client

from ...crds.rabbitmqcluster import RabbitmqCluster


async def enqueue_all_clusters(
    enqueue: Callable[[str, str], None],
    custom_objects_api: client.CustomObjectsApi,
    logger: logging.Logger,
    request_timeout: Optional[float] = None,
) -> int:
    """
    Lists every RabbitmqCluster in the cluster and enqueues its key.

    Returns:
        The number of clusters enqueued.
    """
    clusters = await asyncio.to_thread(
        RabbitmqCluster.list, api=custom_objects_api, request_timeout=request_timeout
    )
    for cluster in clusters:
        enqueue(cluster.metadata.namespace, cluster.metadata.name)
    logger.debug(f"Resync enqueued {len(clusters)} RabbitmqCluster(s).")
    return len(clusters)


async def resync_clusters_periodically(
    enqueue: Callable[[str, str], None],
    custom_objects_api: client.CustomObjectsApi,
    logger: logging.Logger,
    interval_seconds: int = 60,
    request_timeout: Optional[float] = None,
) -> None:
    """
    Enqueue every RabbitmqCluster on a fixed interval.

    This is a long-running background task; it only ends when cancelled.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await enqueue_all_clusters(enqueue, custom_objects_api, logger, request_timeout)
        except (client.ApiException, urllib3.exceptions.HTTPError) as e:
            logger.error(f"API error during RabbitmqCluster resync: {e}")
        except Exception as e:
            logger.error(
                f"An unexpected error occurred during RabbitmqCluster resync: {e}",
                exc_info=True,
            )

import logging

from ...crds.const import PAUSE_LABEL
from ...crds.rabbitmqcluster import RabbitmqCluster


def is_paused(cluster: RabbitmqCluster, logger: logging.Logger) -> bool:
    """
    True when the cluster carries the pause label.

    A paused cluster gets no child writes and no status writes until the
    label is removed.
    """
    if not cluster.is_paused:
        return False
    logger.info(
        f"RabbitmqCluster '{cluster.metadata.namespace}/{cluster.metadata.name}' "
        f"is paused ({PAUSE_LABEL}=true); skipping reconciliation."
    )
    return True

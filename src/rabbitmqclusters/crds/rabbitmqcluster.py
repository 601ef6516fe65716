from dataclasses import dataclass
from typing import Any, Dict

from .base import BaseCustomResource
from .const import (
    CRD_GROUP,
    CRD_KIND_RABBITMQCLUSTER,
    CRD_PLURAL_RABBITMQCLUSTER,
    CRD_VERSION,
    PAUSE_LABEL,
)


@dataclass(frozen=True)
class ClusterIdentity:
    """The parts of a RabbitmqCluster that child objects are derived from."""

    name: str
    namespace: str
    uid: str

    @property
    def key(self) -> tuple:
        return (self.namespace, self.name)

    def owner_body(self) -> Dict[str, Any]:
        """A minimal owner body, suitable for kopf.append_owner_reference."""
        return {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": CRD_KIND_RABBITMQCLUSTER,
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "uid": self.uid,
            },
        }


class RabbitmqCluster(BaseCustomResource):
    group = CRD_GROUP
    version = CRD_VERSION
    plural = CRD_PLURAL_RABBITMQCLUSTER

    @property
    def identity(self) -> ClusterIdentity:
        if not self.metadata.namespace or not self.metadata.uid:
            raise ValueError(
                f"RabbitmqCluster '{self.metadata.name}' has no namespace or uid; "
                "it must be read from the API server."
            )
        return ClusterIdentity(
            name=self.metadata.name,
            namespace=self.metadata.namespace,
            uid=self.metadata.uid,
        )

    @property
    def generation(self) -> int:
        return self.metadata.generation or 0

    @property
    def is_paused(self) -> bool:
        return self.metadata.labels.get(PAUSE_LABEL, "").lower() == "true"

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletionTimestamp is not None

    def pause(self) -> "RabbitmqCluster":
        """Sets the pause label so the operator stops mutating this cluster."""
        return self.patch({"metadata": {"labels": {PAUSE_LABEL: "true"}}})

    def resume(self) -> "RabbitmqCluster":
        """Removes the pause label; reconciliation resumes on the next pass."""
        return self.patch({"metadata": {"labels": {PAUSE_LABEL: None}}})

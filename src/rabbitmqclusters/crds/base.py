from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Type, TypeVar

from kubernetes import client

from ..utils.kube import KubernetesConfigurationError, configure_kube_client

from .errors import KubeConfigError

# A generic type for BaseCustomResource subclasses
T = TypeVar("T", bound="BaseCustomResource")


def _get_k8s_api() -> client.CustomObjectsApi:
    """
    Initializes and returns the Kubernetes CustomObjectsApi client.

    This function will raise a KubeConfigError with a helpful message if the
    Kubernetes configuration cannot be loaded.
    """
    try:
        configure_kube_client()
    except KubernetesConfigurationError as exc:
        raise KubeConfigError(
            "Kubernetes configuration not found. Please ensure you have a valid "
            "kubeconfig file or are running in-cluster."
        ) from exc

    return client.CustomObjectsApi()


@dataclass
class ObjectMeta:
    name: str
    namespace: Optional[str] = None
    uid: Optional[str] = None
    generation: Optional[int] = None
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    deletionTimestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        """
        Constructs an ObjectMeta from a dictionary, ignoring unknown fields.
        This makes it robust to extra metadata from the Kubernetes API.
        """
        known_field_names = {f.name for f in fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in known_field_names}
        if filtered_data.get("labels") is None:
            filtered_data.pop("labels", None)
        if filtered_data.get("annotations") is None:
            filtered_data.pop("annotations", None)
        return cls(**filtered_data)


class BaseCustomResource:
    """Thin wrapper around the CustomObjectsApi for one namespaced custom resource."""

    group: str
    version: str
    plural: str

    metadata: ObjectMeta
    spec: Dict[str, Any]
    status: Dict[str, Any]

    def __init__(
        self,
        metadata: ObjectMeta,
        spec: Dict[str, Any],
        status: Optional[Dict[str, Any]] = None,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        self.api = api or _get_k8s_api()
        self.metadata = metadata
        self.spec = spec
        self.status = status or {}

    @classmethod
    def from_dict(
        cls: Type[T], data: Dict[str, Any], api: Optional[client.CustomObjectsApi] = None
    ) -> T:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=data.get("spec") or {},
            status=data.get("status") or {},
            api=api,
        )

    @classmethod
    def get(
        cls: Type[T],
        name: str,
        namespace: str,
        *,
        api: Optional[client.CustomObjectsApi] = None,
        request_timeout: Optional[float] = None,
    ) -> T:
        api_instance = api or _get_k8s_api()
        data = api_instance.get_namespaced_custom_object(
            group=cls.group,
            version=cls.version,
            namespace=namespace,
            plural=cls.plural,
            name=name,
            _request_timeout=request_timeout,
        )
        return cls.from_dict(data, api=api_instance)

    @classmethod
    def list(
        cls: Type[T],
        namespace: Optional[str] = None,
        api: Optional[client.CustomObjectsApi] = None,
        request_timeout: Optional[float] = None,
    ) -> List[T]:
        """Lists resources in one namespace, or across all namespaces when none is given."""
        api_instance = api or _get_k8s_api()

        if namespace:
            result = api_instance.list_namespaced_custom_object(
                group=cls.group,
                version=cls.version,
                namespace=namespace,
                plural=cls.plural,
                _request_timeout=request_timeout,
            )
        else:
            result = api_instance.list_cluster_custom_object(
                group=cls.group,
                version=cls.version,
                plural=cls.plural,
                _request_timeout=request_timeout,
            )

        return [cls.from_dict(item, api=api_instance) for item in result["items"]]

    def patch(self: T, patch_body: Dict[str, Any]) -> T:
        """Patches the main resource (metadata and spec)."""
        patched_obj = self.api.patch_namespaced_custom_object(
            group=self.group,
            version=self.version,
            namespace=self.metadata.namespace,
            plural=self.plural,
            name=self.metadata.name,
            body=patch_body,
            _content_type="application/merge-patch+json",
        )
        self._refresh_from(patched_obj)
        return self

    def patch_status(
        self: T, status: Dict[str, Any], request_timeout: Optional[float] = None
    ) -> T:
        """
        Patches the status subresource only.

        Status writes go through their own endpoint so they never contend
        with spec edits on the main resource's resourceVersion.
        """
        patched_obj = self.api.patch_namespaced_custom_object_status(
            group=self.group,
            version=self.version,
            namespace=self.metadata.namespace,
            plural=self.plural,
            name=self.metadata.name,
            body={"status": status},
            _request_timeout=request_timeout,
            _content_type="application/merge-patch+json",
        )
        self.status = patched_obj.get("status") or {}
        return self

    def _refresh_from(self, data: Dict[str, Any]) -> None:
        self.metadata = ObjectMeta.from_dict(data["metadata"])
        self.spec = data.get("spec") or {}
        self.status = data.get("status") or {}

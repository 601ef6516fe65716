"""
Child object kinds managed for a RabbitmqCluster.

Each kind implements the same capability set: pick its descriptor out of
the desired state, fetch the live object, diff live against desired over
the fields the operator manages, and create or update the object. The
reconciler walks CHILD_KIND_ORDER and never branches on the kind itself.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import urllib3
from kubernetes import client
from kubernetes.utils import parse_quantity

from ...utils.kube import to_dict
from .credentials import provision_credentials
from .errors import ImmutableFieldConflict, api_error
from .resources.desired import (
    KIND_CONFIGURATION,
    KIND_CREDENTIAL,
    KIND_NETWORK_EXPOSURE,
    KIND_NETWORK_IDENTITY,
    KIND_STATEFUL_WORKLOAD,
    ChildResourceDescriptor,
    DesiredState,
)
from .resources.services import METRICS_ANNOTATIONS

MERGE_PATCH = "application/merge-patch+json"


def _normalize_quantities(values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {name: parse_quantity(q) for name, q in (values or {}).items()}


def _normalize_resources(resources: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    resources = resources or {}
    return {
        section: _normalize_quantities(resources.get(section))
        for section in ("requests", "limits")
        if resources.get(section)
    }


def _normalize_env(env: Optional[List[Dict[str, Any]]]) -> List[Tuple]:
    normalized = []
    for var in env or []:
        source = var.get("valueFrom") or {}
        secret_ref = source.get("secretKeyRef") or {}
        field_ref = source.get("fieldRef") or {}
        normalized.append(
            (
                var.get("name"),
                var.get("value"),
                secret_ref.get("name"),
                secret_ref.get("key"),
                field_ref.get("fieldPath"),
            )
        )
    return normalized


def _normalize_service_ports(ports: Optional[List[Dict[str, Any]]]) -> List[Tuple]:
    return sorted(
        (
            p.get("name"),
            p.get("port"),
            str(p.get("targetPort", p.get("port"))),
            p.get("protocol", "TCP"),
        )
        for p in ports or []
    )


def _labels_patch(desired: Dict[str, Any], live: Dict[str, Any]) -> Dict[str, Any]:
    wanted = desired.get("metadata", {}).get("labels") or {}
    actual = live.get("metadata", {}).get("labels") or {}
    return {k: v for k, v in wanted.items() if actual.get(k) != v}


class ChildKind:
    """A kind of child object: how to read, write and compare it."""

    kind: str
    resource: str

    def __init__(
        self,
        core_v1: Optional[client.CoreV1Api] = None,
        apps_v1: Optional[client.AppsV1Api] = None,
        request_timeout: Optional[float] = None,
    ):
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.apps_v1 = apps_v1 or client.AppsV1Api()
        self.request_timeout = request_timeout

    # API hooks, implemented per kind.
    def _read(self, name: str, namespace: str, **kwargs: Any) -> Any:
        raise NotImplementedError

    def _create(self, namespace: str, body: Dict[str, Any], **kwargs: Any) -> Any:
        raise NotImplementedError

    def _patch(self, name: str, namespace: str, body: Dict[str, Any], **kwargs: Any) -> Any:
        raise NotImplementedError

    def diff_fields(self, desired: Dict[str, Any], live: Dict[str, Any]) -> Dict[str, Any]:
        """Return a merge patch for the kind-specific fields, or {} when converged."""
        raise NotImplementedError

    def desired(self, state: DesiredState) -> ChildResourceDescriptor:
        return state.child(self.kind)

    def body_for_create(self, desired: Dict[str, Any], logger: logging.Logger) -> Dict[str, Any]:
        return desired

    def diff(self, desired: Dict[str, Any], live: Dict[str, Any]) -> Dict[str, Any]:
        patch = self.diff_fields(desired, live)
        labels = _labels_patch(desired, live)
        if labels:
            patch.setdefault("metadata", {})["labels"] = labels
        return patch

    async def _call(self, action: str, fn: Callable[..., Any], **kwargs: Any) -> Dict[str, Any]:
        try:
            obj = await asyncio.to_thread(fn, _request_timeout=self.request_timeout, **kwargs)
        except (client.ApiException, urllib3.exceptions.HTTPError) as e:
            raise api_error(e, action) from e
        return to_dict(obj)

    async def fetch(self, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            obj = await asyncio.to_thread(
                self._read, name=name, namespace=namespace, _request_timeout=self.request_timeout
            )
        except client.ApiException as e:
            if e.status == 404:
                return None
            raise api_error(e, f"Reading {self.resource} '{name}'") from e
        except urllib3.exceptions.HTTPError as e:
            raise api_error(e, f"Reading {self.resource} '{name}'") from e
        return to_dict(obj)

    async def create(self, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        return await self._call(
            f"Creating {self.resource} '{name}'", self._create, namespace=namespace, body=body
        )

    async def update(self, namespace: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            f"Updating {self.resource} '{name}'",
            self._patch,
            name=name,
            namespace=namespace,
            body=patch,
            _content_type=MERGE_PATCH,
        )


class CredentialKind(ChildKind):
    kind = KIND_CREDENTIAL
    resource = "Secret"

    def _read(self, name, namespace, **kwargs):
        return self.core_v1.read_namespaced_secret(name=name, namespace=namespace, **kwargs)

    def _create(self, namespace, body, **kwargs):
        return self.core_v1.create_namespaced_secret(namespace=namespace, body=body, **kwargs)

    def _patch(self, name, namespace, body, **kwargs):
        return self.core_v1.patch_namespaced_secret(
            name=name, namespace=namespace, body=body, **kwargs
        )

    def body_for_create(self, desired, logger):
        return provision_credentials(desired)

    def diff(self, desired, live):
        # The default-user Secret is write-once.
        return {}

    def diff_fields(self, desired, live):
        return {}


class ConfigurationKind(ChildKind):
    kind = KIND_CONFIGURATION
    resource = "ConfigMap"

    def _read(self, name, namespace, **kwargs):
        return self.core_v1.read_namespaced_config_map(name=name, namespace=namespace, **kwargs)

    def _create(self, namespace, body, **kwargs):
        return self.core_v1.create_namespaced_config_map(namespace=namespace, body=body, **kwargs)

    def _patch(self, name, namespace, body, **kwargs):
        return self.core_v1.patch_namespaced_config_map(
            name=name, namespace=namespace, body=body, **kwargs
        )

    def diff_fields(self, desired, live):
        wanted = desired.get("data") or {}
        actual = live.get("data") or {}
        if wanted == actual:
            return {}
        data: Dict[str, Any] = {k: v for k, v in wanted.items() if actual.get(k) != v}
        for stale in set(actual) - set(wanted):
            data[stale] = None
        return {"data": data}


class _ServiceKind(ChildKind):
    resource = "Service"
    managed_annotations: Tuple[str, ...] = ()

    def _read(self, name, namespace, **kwargs):
        return self.core_v1.read_namespaced_service(name=name, namespace=namespace, **kwargs)

    def _create(self, namespace, body, **kwargs):
        return self.core_v1.create_namespaced_service(namespace=namespace, body=body, **kwargs)

    def _patch(self, name, namespace, body, **kwargs):
        return self.core_v1.patch_namespaced_service(
            name=name, namespace=namespace, body=body, **kwargs
        )

    def diff_fields(self, desired, live):
        patch: Dict[str, Any] = {}
        wanted = desired["spec"]
        actual = live.get("spec") or {}

        if wanted.get("clusterIP") == "None" and actual.get("clusterIP") != "None":
            raise ImmutableFieldConflict(
                f"Service '{desired['metadata']['name']}' must be headless; "
                "delete it so it can be recreated."
            )

        spec_patch: Dict[str, Any] = {}
        if wanted.get("type", "ClusterIP") != actual.get("type", "ClusterIP"):
            spec_patch["type"] = wanted.get("type", "ClusterIP")
        if wanted.get("selector") != actual.get("selector"):
            spec_patch["selector"] = wanted.get("selector")
        if _normalize_service_ports(wanted.get("ports")) != _normalize_service_ports(
            actual.get("ports")
        ):
            spec_patch["ports"] = wanted.get("ports")
        if bool(wanted.get("publishNotReadyAddresses")) != bool(
            actual.get("publishNotReadyAddresses")
        ):
            spec_patch["publishNotReadyAddresses"] = wanted.get("publishNotReadyAddresses")
        if spec_patch:
            patch["spec"] = spec_patch

        wanted_annotations = desired["metadata"].get("annotations") or {}
        actual_annotations = live.get("metadata", {}).get("annotations") or {}
        annotations = {}
        for key in self.managed_annotations:
            value = wanted_annotations.get(key)
            if actual_annotations.get(key) != value:
                annotations[key] = value
        if annotations:
            patch["metadata"] = {"annotations": annotations}
        return patch


class NetworkExposureKind(_ServiceKind):
    kind = KIND_NETWORK_EXPOSURE
    managed_annotations = tuple(METRICS_ANNOTATIONS)


class NetworkIdentityKind(_ServiceKind):
    kind = KIND_NETWORK_IDENTITY


def _claim_template_view(spec: Dict[str, Any]) -> Tuple:
    templates = spec.get("volumeClaimTemplates") or [{}]
    claim_spec = templates[0].get("spec") or {}
    storage = (claim_spec.get("resources") or {}).get("requests", {}).get("storage")
    return (
        claim_spec.get("storageClassName"),
        parse_quantity(storage) if storage is not None else None,
    )


def _pod_view(template: Dict[str, Any]) -> Dict[str, Any]:
    pod = template.get("spec") or {}
    container = (pod.get("containers") or [{}])[0]
    return {
        "labels": (template.get("metadata") or {}).get("labels") or {},
        "image": container.get("image"),
        "env": _normalize_env(container.get("env")),
        "resources": _normalize_resources(container.get("resources")),
        "ports": sorted((p.get("name"), p.get("containerPort")) for p in container.get("ports") or []),
        "volumeMounts": sorted(
            (m.get("name"), m.get("mountPath"), m.get("subPath") or "")
            for m in container.get("volumeMounts") or []
        ),
        "volumes": sorted(
            (
                v.get("name"),
                (v.get("secret") or {}).get("secretName"),
                (v.get("configMap") or {}).get("name"),
            )
            for v in pod.get("volumes") or []
        ),
        "imagePullSecrets": sorted(s.get("name") for s in pod.get("imagePullSecrets") or []),
    }


class StatefulWorkloadKind(ChildKind):
    kind = KIND_STATEFUL_WORKLOAD
    resource = "StatefulSet"

    def _read(self, name, namespace, **kwargs):
        return self.apps_v1.read_namespaced_stateful_set(name=name, namespace=namespace, **kwargs)

    def _create(self, namespace, body, **kwargs):
        return self.apps_v1.create_namespaced_stateful_set(namespace=namespace, body=body, **kwargs)

    def _patch(self, name, namespace, body, **kwargs):
        return self.apps_v1.patch_namespaced_stateful_set(
            name=name, namespace=namespace, body=body, **kwargs
        )

    def diff_fields(self, desired, live):
        name = desired["metadata"]["name"]
        wanted = desired["spec"]
        actual = live.get("spec") or {}

        immutable = {
            "spec.selector": (wanted.get("selector"), actual.get("selector")),
            "spec.serviceName": (wanted.get("serviceName"), actual.get("serviceName")),
            "spec.podManagementPolicy": (
                wanted.get("podManagementPolicy"),
                actual.get("podManagementPolicy", "OrderedReady"),
            ),
            "spec.volumeClaimTemplates (storage class, size)": (
                _claim_template_view(wanted),
                _claim_template_view(actual),
            ),
        }
        changed = [field for field, (want, have) in immutable.items() if want != have]
        if changed:
            raise ImmutableFieldConflict(
                f"StatefulSet '{name}' cannot change {', '.join(changed)} in place; "
                "the cluster must be recreated to apply this change."
            )

        spec_patch: Dict[str, Any] = {}
        if wanted.get("replicas") != actual.get("replicas"):
            spec_patch["replicas"] = wanted.get("replicas")
        if _pod_view(wanted["template"]) != _pod_view(actual.get("template") or {}):
            spec_patch["template"] = wanted["template"]
        return {"spec": spec_patch} if spec_patch else {}


CHILD_KIND_ORDER = (
    CredentialKind,
    ConfigurationKind,
    NetworkExposureKind,
    NetworkIdentityKind,
    StatefulWorkloadKind,
)


def build_child_kinds(
    core_v1: Optional[client.CoreV1Api] = None,
    apps_v1: Optional[client.AppsV1Api] = None,
    request_timeout: Optional[float] = None,
) -> List[ChildKind]:
    core_v1 = core_v1 or client.CoreV1Api()
    apps_v1 = apps_v1 or client.AppsV1Api()
    return [kind(core_v1, apps_v1, request_timeout) for kind in CHILD_KIND_ORDER]

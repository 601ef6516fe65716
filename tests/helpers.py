import asyncio
import copy
import time
import uuid
from typing import Any, Callable, Coroutine, Dict, List, Optional, Tuple, TypeVar

import pytest
from kubernetes import client

from rabbitmqclusters.crds.const import (
    CRD_GROUP,
    CRD_KIND_RABBITMQCLUSTER,
    CRD_VERSION,
)
import rabbitmqclusters.operator.config as config_module
from rabbitmqclusters.operator.rabbitmqcluster.errors import ProbeFailure
from rabbitmqclusters.operator.rabbitmqcluster.health import ManagementProbe, ProbeResult

# Constants for polling
POLL_INTERVAL = 0.01

NAMESPACE = "rabbitmq-test"

T = TypeVar("T")


async def async_wait_for(
    callable: Callable[[], Coroutine[Any, Any, T]],
    timeout: float = 5,
    interval: float = POLL_INTERVAL,
    failure_message: str = "Condition not met within timeout",
) -> T:
    """
    Polls an awaitable callable until it returns a truthy value or the
    timeout is reached.
    """
    start_time = time.time()
    while time.time() - start_time < timeout:
        result = await callable()
        if result:
            return result
        await asyncio.sleep(interval)
    pytest.fail(failure_message)


def merge_patch(target: Any, patch: Any) -> Any:
    """RFC 7386 JSON merge patch: maps merge, None deletes, everything else replaces."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def api_exception(status: int, reason: str = "") -> client.ApiException:
    return client.ApiException(status=status, reason=reason or str(status))


Key = Tuple[str, str, str]


class FakeKube:
    """
    An in-memory stand-in for the parts of the Kubernetes API the operator uses.

    One instance serves as CoreV1Api, AppsV1Api, CustomObjectsApi and
    CoordinationV1Api at once. Every write is recorded in `writes` as
    (verb, kind, namespace, name). Failures can be injected per method name
    through `failures`.
    """

    def __init__(self) -> None:
        self.objects: Dict[Key, Dict[str, Any]] = {}
        self.writes: List[Tuple[str, str, str, str]] = []
        self.failures: Dict[str, List[Exception]] = {}
        self._resource_version = 0

    # Bookkeeping

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method: str) -> None:
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self.objects.get((kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def writes_of(self, kind: str) -> List[Tuple[str, str, str, str]]:
        return [w for w in self.writes if w[1] == kind]

    def _create(self, kind: str, namespace: str, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        if (kind, namespace, name) in self.objects:
            raise api_exception(409, "AlreadyExists")
        obj = copy.deepcopy(body)
        meta = obj["metadata"]
        meta["namespace"] = namespace
        meta["uid"] = str(uuid.uuid4())
        meta["resourceVersion"] = self._next_version()
        meta.setdefault("generation", 1)
        self.objects[(kind, namespace, name)] = obj
        self.writes.append(("create", kind, namespace, name))
        return copy.deepcopy(obj)

    def _read(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        obj = self.objects.get((kind, namespace, name))
        if obj is None:
            raise api_exception(404, "Not Found")
        return copy.deepcopy(obj)

    def _patch(self, kind: str, namespace: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        current = self._read(kind, namespace, name)
        patched = merge_patch(current, body)
        if "spec" in body and patched.get("spec") != current.get("spec"):
            patched["metadata"]["generation"] = current["metadata"].get("generation", 1) + 1
        patched["metadata"]["resourceVersion"] = self._next_version()
        self.objects[(kind, namespace, name)] = patched
        self.writes.append(("patch", kind, namespace, name))
        return copy.deepcopy(patched)

    def delete(self, kind: str, namespace: str, name: str) -> None:
        self.objects.pop((kind, namespace, name), None)

    def mutate(self, kind: str, namespace: str, name: str, fn: Callable[[Dict[str, Any]], None]) -> None:
        """Changes a stored object without recording a write, like another actor would."""
        fn(self.objects[(kind, namespace, name)])

    # CoreV1Api

    def read_namespaced_secret(self, name, namespace, **kwargs):
        self._maybe_fail("read_namespaced_secret")
        return self._read("Secret", namespace, name)

    def create_namespaced_secret(self, namespace, body, **kwargs):
        self._maybe_fail("create_namespaced_secret")
        return self._create("Secret", namespace, body)

    def patch_namespaced_secret(self, name, namespace, body, **kwargs):
        self._maybe_fail("patch_namespaced_secret")
        return self._patch("Secret", namespace, name, body)

    def read_namespaced_config_map(self, name, namespace, **kwargs):
        self._maybe_fail("read_namespaced_config_map")
        return self._read("ConfigMap", namespace, name)

    def create_namespaced_config_map(self, namespace, body, **kwargs):
        self._maybe_fail("create_namespaced_config_map")
        return self._create("ConfigMap", namespace, body)

    def patch_namespaced_config_map(self, name, namespace, body, **kwargs):
        self._maybe_fail("patch_namespaced_config_map")
        return self._patch("ConfigMap", namespace, name, body)

    def read_namespaced_service(self, name, namespace, **kwargs):
        self._maybe_fail("read_namespaced_service")
        return self._read("Service", namespace, name)

    def create_namespaced_service(self, namespace, body, **kwargs):
        self._maybe_fail("create_namespaced_service")
        return self._create("Service", namespace, body)

    def patch_namespaced_service(self, name, namespace, body, **kwargs):
        self._maybe_fail("patch_namespaced_service")
        return self._patch("Service", namespace, name, body)

    # AppsV1Api

    def read_namespaced_stateful_set(self, name, namespace, **kwargs):
        self._maybe_fail("read_namespaced_stateful_set")
        return self._read("StatefulSet", namespace, name)

    def create_namespaced_stateful_set(self, namespace, body, **kwargs):
        self._maybe_fail("create_namespaced_stateful_set")
        return self._create("StatefulSet", namespace, body)

    def patch_namespaced_stateful_set(self, name, namespace, body, **kwargs):
        self._maybe_fail("patch_namespaced_stateful_set")
        return self._patch("StatefulSet", namespace, name, body)

    # CustomObjectsApi

    def get_namespaced_custom_object(self, group, version, namespace, plural, name, **kwargs):
        self._maybe_fail("get_namespaced_custom_object")
        return self._read(CRD_KIND_RABBITMQCLUSTER, namespace, name)

    def list_namespaced_custom_object(self, group, version, namespace, plural, **kwargs):
        self._maybe_fail("list_namespaced_custom_object")
        return {
            "items": [
                copy.deepcopy(obj)
                for (kind, ns, _), obj in sorted(self.objects.items())
                if kind == CRD_KIND_RABBITMQCLUSTER and ns == namespace
            ]
        }

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        self._maybe_fail("list_cluster_custom_object")
        return {
            "items": [
                copy.deepcopy(obj)
                for (kind, _, _), obj in sorted(self.objects.items())
                if kind == CRD_KIND_RABBITMQCLUSTER
            ]
        }

    def patch_namespaced_custom_object(self, group, version, namespace, plural, name, body, **kwargs):
        self._maybe_fail("patch_namespaced_custom_object")
        body = {k: v for k, v in body.items() if k != "status"}
        return self._patch(CRD_KIND_RABBITMQCLUSTER, namespace, name, body)

    def patch_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body, **kwargs
    ):
        self._maybe_fail("patch_namespaced_custom_object_status")
        current = self._read(CRD_KIND_RABBITMQCLUSTER, namespace, name)
        current["status"] = merge_patch(current.get("status") or {}, body.get("status") or {})
        current["metadata"]["resourceVersion"] = self._next_version()
        self.objects[(CRD_KIND_RABBITMQCLUSTER, namespace, name)] = current
        self.writes.append(("status", CRD_KIND_RABBITMQCLUSTER, namespace, name))
        return copy.deepcopy(current)

    # CoordinationV1Api

    def read_namespaced_lease(self, name, namespace, **kwargs):
        self._maybe_fail("read_namespaced_lease")
        return self._read("Lease", namespace, name)

    def create_namespaced_lease(self, namespace, body, **kwargs):
        self._maybe_fail("create_namespaced_lease")
        return self._create("Lease", namespace, body)

    def replace_namespaced_lease(self, name, namespace, body, **kwargs):
        self._maybe_fail("replace_namespaced_lease")
        current = self._read("Lease", namespace, name)
        sent = body.get("metadata", {}).get("resourceVersion")
        if sent != current["metadata"]["resourceVersion"]:
            raise api_exception(409, "Conflict")
        obj = copy.deepcopy(body)
        obj["metadata"]["resourceVersion"] = self._next_version()
        self.objects[("Lease", namespace, name)] = obj
        self.writes.append(("replace", "Lease", namespace, name))
        return copy.deepcopy(obj)

    # Convenience

    def add_cluster(
        self,
        name: str,
        spec: Optional[Dict[str, Any]] = None,
        namespace: str = NAMESPACE,
        labels: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        body = {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": CRD_KIND_RABBITMQCLUSTER,
            "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
            "spec": spec or {},
        }
        obj = self._create(CRD_KIND_RABBITMQCLUSTER, namespace, body)
        self.writes.clear()
        return obj

    def edit_cluster(self, name: str, patch: Dict[str, Any], namespace: str = NAMESPACE) -> None:
        self._patch(CRD_KIND_RABBITMQCLUSTER, namespace, name, patch)
        self.writes.clear()

    def cluster(self, name: str, namespace: str = NAMESPACE) -> Dict[str, Any]:
        return self._read(CRD_KIND_RABBITMQCLUSTER, namespace, name)

    def set_ready_replicas(self, statefulset: str, ready: int, namespace: str = NAMESPACE) -> None:
        self.mutate(
            "StatefulSet",
            namespace,
            statefulset,
            lambda sts: sts.setdefault("status", {}).update({"readyReplicas": ready}),
        )


class FakeProbe(ManagementProbe):
    """A management API probe whose answers are set by the test."""

    def __init__(self, alive: bool = True, joined: Optional[int] = None, error: Optional[str] = None):
        super().__init__()
        self.alive = alive
        self.joined = joined
        self.error = error
        self.calls: List[Tuple[str, int, Tuple[str, str]]] = []

    async def probe(self, identity, replicas, credentials):
        self.calls.append((identity.name, replicas, credentials))
        if self.error:
            raise ProbeFailure(self.error)
        joined = replicas if self.joined is None else self.joined
        return ProbeResult(alive=self.alive, joined_nodes=joined if self.alive else 0)


class FakeConfig:
    """Operator configuration with the shipped defaults, overridable per test."""

    def __init__(self, **overrides: Any) -> None:
        self.worker_count = config_module.DEFAULT_WORKER_COUNT
        self.worker_limit = config_module.DEFAULT_WORKER_LIMIT
        self.resync_interval = config_module.DEFAULT_RESYNC_INTERVAL
        self.max_retries = config_module.DEFAULT_MAX_RETRIES
        self.retry_base_delay = 0.01
        self.retry_max_delay = 0.05
        self.request_timeout = config_module.DEFAULT_REQUEST_TIMEOUT
        self.probe_timeout = config_module.DEFAULT_PROBE_TIMEOUT
        self.health_requeue_interval = config_module.DEFAULT_HEALTH_REQUEUE_INTERVAL
        self.drain_timeout = 1.0
        self.default_image = config_module.DEFAULT_IMAGE
        self.metrics_enabled = config_module.DEFAULT_METRICS_ENABLED
        self.cluster_domain = config_module.DEFAULT_CLUSTER_DOMAIN
        self.posting_enabled = config_module.DEFAULT_POSTING_ENABLED
        self.leader_election = False
        self.lease_name = config_module.DEFAULT_LEASE_NAME
        self.lease_namespace = NAMESPACE
        self.lease_duration = config_module.DEFAULT_LEASE_DURATION
        self.lease_renew_interval = config_module.DEFAULT_LEASE_RENEW_INTERVAL
        for key, value in overrides.items():
            setattr(self, key, value)

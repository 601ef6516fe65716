"""
Leader election on a coordination.k8s.io/v1 Lease.

Only the replica holding the lease runs reconcile workers, so two operator
pods never write the same children concurrently.
"""
import asyncio
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import urllib3
from kubernetes import client

from ..utils.kube import to_dict

logger = logging.getLogger(__name__)

MICRO_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def default_identity() -> str:
    pod_name = os.environ.get("POD_NAME") or socket.gethostname()
    return f"{pod_name}_{uuid.uuid4().hex[:8]}"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class LeaseElector:
    def __init__(
        self,
        name: str,
        namespace: str,
        identity: Optional[str] = None,
        lease_duration: int = 15,
        renew_interval: float = 5,
        api: Optional[client.CoordinationV1Api] = None,
        request_timeout: Optional[float] = None,
    ):
        self.name = name
        self.namespace = namespace
        self.identity = identity or default_identity()
        self.lease_duration = lease_duration
        self.renew_interval = renew_interval
        self.api = api or client.CoordinationV1Api()
        self.request_timeout = request_timeout
        self.is_leader = False
        self.observed_holder: Optional[str] = None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _spec(self, now: datetime, previous: Dict[str, Any]) -> Dict[str, Any]:
        spec = dict(previous)
        if previous.get("holderIdentity") != self.identity:
            spec["acquireTime"] = now.strftime(MICRO_TIME_FORMAT)
            spec["leaseTransitions"] = (previous.get("leaseTransitions") or 0) + (
                1 if previous.get("holderIdentity") else 0
            )
        spec["holderIdentity"] = self.identity
        spec["leaseDurationSeconds"] = self.lease_duration
        spec["renewTime"] = now.strftime(MICRO_TIME_FORMAT)
        return spec

    async def _read(self) -> Optional[Dict[str, Any]]:
        try:
            lease = await asyncio.to_thread(
                self.api.read_namespaced_lease,
                name=self.name,
                namespace=self.namespace,
                _request_timeout=self.request_timeout,
            )
        except client.ApiException as e:
            if e.status == 404:
                return None
            raise
        return to_dict(lease)

    async def try_acquire_or_renew(self) -> bool:
        """
        Takes the lease if it is free or expired, or renews it if we already hold it.

        Returns:
            True when this process holds the lease afterwards.
        """
        now = self._now()
        try:
            lease = await self._read()
            if lease is None:
                body = {
                    "apiVersion": "coordination.k8s.io/v1",
                    "kind": "Lease",
                    "metadata": {"name": self.name, "namespace": self.namespace},
                    "spec": self._spec(now, {}),
                }
                await asyncio.to_thread(
                    self.api.create_namespaced_lease,
                    namespace=self.namespace,
                    body=body,
                    _request_timeout=self.request_timeout,
                )
                return True

            spec = lease.get("spec") or {}
            holder = spec.get("holderIdentity")
            self.observed_holder = holder
            renewed = _parse_time(spec.get("renewTime"))
            duration = spec.get("leaseDurationSeconds") or self.lease_duration
            if (
                holder
                and holder != self.identity
                and renewed is not None
                and renewed + timedelta(seconds=duration) > now
            ):
                return False

            lease["spec"] = self._spec(now, spec)
            await asyncio.to_thread(
                self.api.replace_namespaced_lease,
                name=self.name,
                namespace=self.namespace,
                body=lease,
                _request_timeout=self.request_timeout,
            )
            return True
        except client.ApiException as e:
            if e.status == 409:
                # Someone else wrote the lease between our read and write.
                return False
            logger.warning(f"Lease '{self.namespace}/{self.name}' update failed: {e.status} {e.reason}")
            return False
        except urllib3.exceptions.HTTPError as e:
            logger.warning(f"Lease '{self.namespace}/{self.name}' update failed: {e}")
            return False

    async def acquire(self) -> None:
        """Blocks until this process holds the lease."""
        logger.info(f"Waiting for leadership on lease '{self.namespace}/{self.name}' as '{self.identity}'.")
        while not await self.try_acquire_or_renew():
            await asyncio.sleep(self.renew_interval)
        self.is_leader = True
        logger.info(f"Acquired leadership as '{self.identity}'.")

    async def hold(self) -> None:
        """
        Keeps renewing the lease; returns once it can no longer be renewed.

        Failed renewals are retried until the lease would have expired, so
        a single slow API call does not cost leadership.
        """
        last_renewal = self._now()
        while True:
            await asyncio.sleep(self.renew_interval)
            if await self.try_acquire_or_renew():
                last_renewal = self._now()
                continue
            taken = self.observed_holder not in (None, self.identity)
            if taken or self._now() - last_renewal >= timedelta(seconds=self.lease_duration):
                self.is_leader = False
                logger.warning(f"Lost leadership on lease '{self.namespace}/{self.name}'.")
                return

    async def release(self) -> None:
        """Gives the lease up so another replica can take over without waiting for expiry."""
        if not self.is_leader:
            return
        self.is_leader = False
        try:
            lease = await self._read()
            if lease is None or (lease.get("spec") or {}).get("holderIdentity") != self.identity:
                return
            lease["spec"]["holderIdentity"] = None
            lease["spec"]["leaseDurationSeconds"] = 1
            await asyncio.to_thread(
                self.api.replace_namespaced_lease,
                name=self.name,
                namespace=self.namespace,
                body=lease,
                _request_timeout=self.request_timeout,
            )
            logger.info(f"Released lease '{self.namespace}/{self.name}'.")
        except (client.ApiException, urllib3.exceptions.HTTPError) as e:
            logger.warning(f"Could not release lease '{self.namespace}/{self.name}': {e}")

"""
The process-wide controller: leadership, the work queue and its workers.
"""
import asyncio
import logging
from typing import Any, List, Optional, Tuple

import kopf
import urllib3
from kubernetes import client

from .leadership import LeaseElector
from .rabbitmqcluster.errors import Retryable
from .rabbitmqcluster.lifecycle import enqueue_all_clusters, resync_clusters_periodically
from .rabbitmqcluster.reconciler import ClusterReconciler
from .workqueue import WorkQueue

Key = Tuple[str, str]


class ClusterController:
    """
    Owns everything that lives for the whole operator process.

    Workers only run while this process is the leader. Each leadership term
    gets a fresh queue seeded by a full resync, so nothing queued under a
    previous term leaks into the next one.
    """

    def __init__(
        self,
        config: Any,
        reconciler: ClusterReconciler,
        elector: Optional[LeaseElector] = None,
        custom_objects_api: Optional[client.CustomObjectsApi] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.reconciler = reconciler
        self.elector = elector
        self.api = custom_objects_api or reconciler.api
        self.logger = logger or logging.getLogger(__name__)
        self.queue: Optional[WorkQueue] = None
        self._lead_task: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._workers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self.queue is not None and not self.queue.shutting_down

    def enqueue(self, namespace: str, name: str) -> None:
        if not self.running:
            self.logger.debug(f"Not leading; ignoring event for '{namespace}/{name}'.")
            return
        self.queue.add((namespace, name))

    async def start(self) -> None:
        if self._lead_task is not None:
            return
        self._lead_task = asyncio.create_task(self._lead())

    async def stop(self) -> None:
        if self._lead_task is not None:
            self._lead_task.cancel()
            await asyncio.gather(self._lead_task, return_exceptions=True)
            self._lead_task = None
        if self.elector is not None:
            await self.elector.release()
        self.logger.info("Controller stopped.")

    async def _lead(self) -> None:
        while True:
            if self.elector is not None:
                await self.elector.acquire()
            try:
                await self._start_workers()
                if self.elector is not None:
                    await self.elector.hold()
                else:
                    await asyncio.Event().wait()
            finally:
                await self._stop_workers()

    async def _start_workers(self) -> None:
        self.queue = WorkQueue(self.config.retry_base_delay, self.config.retry_max_delay)
        try:
            count = await enqueue_all_clusters(
                self.enqueue, self.api, self.logger, self.config.request_timeout
            )
            self.logger.info(f"Initial resync enqueued {count} RabbitmqCluster(s).")
        except (client.ApiException, urllib3.exceptions.HTTPError) as e:
            self.logger.error(f"Initial RabbitmqCluster resync failed: {e}")

        queue = self.queue
        self._workers = [
            asyncio.create_task(self._worker(queue)) for _ in range(self.config.worker_count)
        ]
        self._resync_task = asyncio.create_task(
            resync_clusters_periodically(
                self.enqueue,
                self.api,
                self.logger,
                interval_seconds=self.config.resync_interval,
                request_timeout=self.config.request_timeout,
            )
        )
        self.logger.info(f"Started {len(self._workers)} reconcile worker(s).")

    async def _stop_workers(self) -> None:
        if self._resync_task is not None:
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
            self._resync_task = None

        if self.queue is not None:
            self.queue.shutdown(len(self._workers))
        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=self.config.drain_timeout)
            if pending:
                self.logger.warning(
                    f"{len(pending)} worker(s) still busy after {self.config.drain_timeout}s; cancelling."
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []
        self.queue = None

    async def _worker(self, queue: WorkQueue) -> None:
        while True:
            key = await queue.get()
            if key is None:
                return
            try:
                await self._process(queue, key)
            finally:
                queue.done(key)

    async def _process(self, queue: WorkQueue, key: Key) -> None:
        namespace, name = key
        try:
            result = await self.reconciler.reconcile(namespace, name)
        except Retryable as e:
            self.logger.warning(f"Reconcile of '{namespace}/{name}' failed ({e.reason}): {e}")
            await self._retry(queue, key, e)
        except Exception as e:
            self.logger.error(
                f"An unexpected error occurred reconciling '{namespace}/{name}': {e}",
                exc_info=True,
            )
            await self._retry(queue, key, e)
        else:
            queue.forget(key)
            if result.requeue_after:
                queue.add_after(key, result.requeue_after)

    async def _retry(self, queue: WorkQueue, key: Key, error: Exception) -> None:
        namespace, name = key
        if queue.num_requeues(key) < self.config.max_retries:
            delay = queue.add_rate_limited(key)
            self.logger.info(
                f"Retrying '{namespace}/{name}' in {delay:.1f}s "
                f"(attempt {queue.num_requeues(key)}/{self.config.max_retries})."
            )
            return

        self.logger.error(
            f"Giving up on '{namespace}/{name}' after {self.config.max_retries} retries: {error}"
        )
        queue.forget(key)
        try:
            await self.reconciler.record_failure(namespace, name, error)
        except (kopf.TemporaryError, kopf.PermanentError) as e:
            self.logger.error(f"Could not record failure for '{namespace}/{name}': {e}")

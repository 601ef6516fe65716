"""
A coalescing, rate-limited work queue of cluster keys.

Keys move through Idle -> Queued -> Running -> Idle. While a key is queued,
further adds are absorbed; while it is running, adds mark it dirty and it is
queued again once the running pass calls done(). No key is ever handed to
two workers at once.
"""
import asyncio
import logging
import threading
from typing import Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


class WorkQueue:
    def __init__(self, base_delay: float = 1.0, max_delay: float = 60.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: "asyncio.Queue[Optional[Hashable]]" = asyncio.Queue()
        self._lock = threading.Lock()
        self._queued: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._dirty: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._timers: Set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queued)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        with self._lock:
            if self._shutting_down or key in self._queued:
                return
            if key in self._processing:
                self._dirty.add(key)
                return
            self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, key: Hashable) -> float:
        """Schedules a retry of key with exponential backoff; returns the delay used."""
        attempts = self._failures.get(key, 0) + 1
        self._failures[key] = attempts
        delay = min(self.base_delay * 2 ** (attempts - 1), self.max_delay)
        self.add_after(key, delay)
        return delay

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        self._failures.pop(key, None)

    async def get(self) -> Optional[Hashable]:
        """
        Waits for the next key and marks it running.

        Returns None once the queue has been shut down.
        """
        while True:
            key = await self._queue.get()
            if key is None:
                return None
            with self._lock:
                if key not in self._queued:
                    continue
                self._queued.discard(key)
                self._processing.add(key)
            return key

    def done(self, key: Hashable) -> None:
        with self._lock:
            self._processing.discard(key)
            requeue = key in self._dirty
            self._dirty.discard(key)
        if requeue:
            self.add(key)

    def is_processing(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._processing

    def shutdown(self, workers: int) -> None:
        """Cancels pending delayed adds and wakes every worker with a stop sentinel."""
        with self._lock:
            self._shutting_down = True
            self._queued.clear()
            self._dirty.clear()
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        for _ in range(workers):
            self._queue.put_nowait(None)

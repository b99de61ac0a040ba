"""
Rate-limited work queue of resource keys.

Semantics:

- a key is queued at most once, however many times it is added;
- a key being processed is never handed to a second worker. Adding it while
  it is processed marks it dirty, and it is queued again when ``done`` is
  called;
- ``add_after`` delays an add, keeping the earliest pending delay per key;
- ``add_rate_limited`` delays by an exponential backoff per key until
  ``forget`` is called.

All methods must be called from the event loop thread. Watch threads hand
keys over with ``loop.call_soon_threadsafe(queue.add, key)``.
"""

import asyncio
import logging
from typing import Optional

from . import metrics

logger = logging.getLogger(__name__)

_SHUTDOWN = None


class WorkQueue:
    """Deduplicating work queue with delayed and rate-limited adds."""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0):
        """
        Initialize work queue.

        Args:
            base_delay: Backoff after the first failure (seconds)
            max_delay: Backoff cap (seconds)
        """
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._delayed: dict[str, tuple[float, asyncio.TimerHandle]] = {}
        self._shutting_down = False

    def add(self, key: str) -> None:
        """Queue a key unless it is already queued."""
        if self._shutting_down or key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            return

        self._queue.put_nowait(key)
        metrics.workqueue_depth.set(self._queue.qsize())

    def add_after(self, key: str, delay: float) -> None:
        """
        Queue a key after a delay.

        Args:
            key: Resource key
            delay: Delay in seconds (queued immediately when <= 0)
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay

        pending = self._delayed.get(key)
        if pending is not None:
            if pending[0] <= when:
                return
            pending[1].cancel()

        handle = loop.call_at(when, self._fire, key)
        self._delayed[key] = (when, handle)

    def _fire(self, key: str) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: str) -> float:
        """
        Queue a key after its backoff delay.

        Returns:
            The delay applied, in seconds
        """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of a key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        """Consecutive rate-limited adds of a key since it was last forgotten."""
        return self._failures.get(key, 0)

    async def get(self) -> Optional[str]:
        """
        Wait for the next key and mark it processing.

        Returns:
            The key, or None once the queue is shut down
        """
        if self._shutting_down:
            return None

        key = await self._queue.get()
        if key is _SHUTDOWN:
            # Wake the next waiting worker too
            self._queue.put_nowait(_SHUTDOWN)
            return None

        self._dirty.discard(key)
        self._processing.add(key)
        metrics.workqueue_depth.set(self._queue.qsize())
        return key

    def done(self, key: str) -> None:
        """Mark a key finished; requeue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)
            metrics.workqueue_depth.set(self._queue.qsize())

    def shut_down(self) -> None:
        """Stop handing out keys and cancel pending delayed adds."""
        if self._shutting_down:
            return
        self._shutting_down = True

        for _, handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()

        self._queue.put_nowait(_SHUTDOWN)
        logger.info("Work queue shut down")

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_processing(self, key: str) -> bool:
        return key in self._processing

    def __len__(self) -> int:
        """Number of keys waiting to be handed out."""
        return len(self._dirty - self._processing)

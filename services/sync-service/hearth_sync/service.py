"""
Sync service: keeps the cache and the status store in step with the cluster.

Three sources feed one work queue: the event consumer, the polling timer
(only while the broker is unavailable) and the drift timer. A single
processing task takes items off the queue and is the only writer of the
cache, so events and full diffs never interleave.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional, Union

from hearth_common import BrokerUnavailableError, PersistenceError, ServerStateEvent
from hearth_k8s import ServerWorkloadClient

from . import metrics
from .cache import CacheChange, CacheEntry, ServerCache
from .config import Settings
from .consumer import EventConsumer
from .diff import diff_snapshots
from .store import StatusStore

logger = logging.getLogger(__name__)

RESYNC = "resync"
_STOP = None

WorkItem = Union[ServerStateEvent, str, None]


class SyncService:
    """Orchestrates the listing, subscription, polling and drift correction."""

    def __init__(
        self,
        settings: Settings,
        workloads: ServerWorkloadClient,
        store: StatusStore,
        consumer: Optional[EventConsumer] = None,
        cache: Optional[ServerCache] = None,
    ):
        """
        Initialize sync service.

        Args:
            settings: Application settings
            workloads: ServerWorkload client used for full listings
            store: Persistent status store
            consumer: Event consumer (polling only when omitted)
            cache: Server cache (created when omitted)
        """
        self.settings = settings
        self.workloads = workloads
        self.store = store
        self.consumer = consumer
        self.cache = cache if cache is not None else ServerCache()
        self.cache.register_callback(self._record_change)

        self._queue: asyncio.Queue[WorkItem] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._pending_upserts: dict[str, CacheEntry] = {}
        self._pending_deletes: dict[str, CacheEntry] = {}
        self._removed: dict[str, datetime] = {}
        self._mode = "starting"
        self._ready = False
        self._running = False

    @property
    def mode(self) -> str:
        """``starting``, ``subscribed`` or ``polling``."""
        return self._mode

    @property
    def ready(self) -> bool:
        """Whether the initial listing has been loaded."""
        return self._ready

    @property
    def dirty_keys(self) -> set[str]:
        """Keys whose store write failed and awaits the next drift pass."""
        return set(self._pending_upserts) | set(self._pending_deletes)

    async def start(self) -> None:
        """
        Load the initial listing, then subscribe.

        The cache is populated from empty before the subscription starts, so
        every existing server is reported as added. If the subscription
        cannot be established the service polls instead.
        """
        if self._running:
            logger.warning("Sync service already running")
            return

        self._running = True
        self._set_mode("starting")

        changes = await self.resync()
        self._ready = True
        logger.info(f"✓ Initial listing loaded {len(changes)} servers")

        self._tasks.append(asyncio.create_task(self._process(), name="sync-processor"))

        if self.consumer is None:
            self._start_polling()
        else:
            try:
                await self.consumer.start()
            except BrokerUnavailableError as e:
                logger.warning(f"{e}; falling back to polling")
                self._start_polling()
            else:
                self._set_mode("subscribed")
                self._tasks.append(asyncio.create_task(self._consume(), name="sync-consumer"))

        self._tasks.append(asyncio.create_task(self._drift_loop(), name="sync-drift"))

    async def stop(self) -> None:
        """Stop timers and the subscription, then drain the work queue."""
        if not self._running:
            return

        logger.info("Stopping sync service...")
        self._running = False

        processor = [t for t in self._tasks if t.get_name() == "sync-processor"]
        others = [t for t in self._tasks if t not in processor]
        for task in others:
            task.cancel()
        await asyncio.gather(*others, return_exceptions=True)

        if self.consumer is not None:
            await self.consumer.stop()

        self._queue.put_nowait(_STOP)
        await asyncio.gather(*processor, return_exceptions=True)
        self._tasks.clear()
        self._poll_task = None

        logger.info("Sync service stopped")

    def _set_mode(self, mode: str) -> None:
        self._mode = mode
        metrics.sync_mode.state(mode)

    def _start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._set_mode("polling")
        logger.info(f"Polling every {self.settings.poll_interval_seconds}s")
        self._poll_task = asyncio.create_task(self._poll_loop(), name="sync-poll")
        self._tasks.append(self._poll_task)

    async def submit_event(self, event: ServerStateEvent) -> None:
        """Queue an event for the processing task."""
        self._queue.put_nowait(event)

    def request_resync(self) -> None:
        """Queue a full diff for the processing task."""
        self._queue.put_nowait(RESYNC)

    async def _consume(self) -> None:
        try:
            await self.consumer.run(self.submit_event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Event consumer failed: {e}", exc_info=True)

        if self._running:
            logger.warning("Event subscription lost; falling back to polling")
            self._start_polling()

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.poll_interval_seconds)
            self.request_resync()

    async def _drift_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.drift_interval_seconds)
            self.request_resync()

    async def _process(self) -> None:
        """The single writer: apply queued items one at a time."""
        while True:
            item = await self._queue.get()
            if item is _STOP:
                break
            try:
                if isinstance(item, ServerStateEvent):
                    await self.apply_event(item)
                else:
                    await self.resync()
            except Exception as e:
                logger.error(f"Error applying {item!r}: {e}", exc_info=True)

    async def apply_event(self, event: ServerStateEvent) -> Optional[CacheChange]:
        """
        Apply one event to the cache and the store.

        Each event type has its own topic, so events can arrive out of order.
        An event older than the cached entry, or older than the full diff
        that removed its server, is dropped.

        Returns:
            The cache change, or None if nothing client-visible changed
        """
        previous = self.cache.get(event.key)
        if self._is_stale(event, previous):
            logger.debug(f"Dropping stale {event.type.value} event for {event.key}")
            metrics.stale_events_total.inc()
            return None

        self._removed.pop(event.key, None)
        entry = CacheEntry.from_event(event, previous)
        change = self.cache.put(entry)

        if entry != previous:
            await self._upsert(entry)
        return change

    def _is_stale(self, event: ServerStateEvent, previous: Optional[CacheEntry]) -> bool:
        if previous is not None:
            return event.timestamp < previous.updated_at
        removed_at = self._removed.get(event.key)
        return removed_at is not None and event.timestamp <= removed_at

    async def resync(self) -> list[CacheChange]:
        """
        Diff a full listing against the cache and apply the result.

        Store writes that failed earlier are retried here.

        Returns:
            The changes applied
        """
        listed_at = datetime.now(timezone.utc)
        listing = await asyncio.to_thread(self.workloads.list_all)
        after = {
            workload.key: CacheEntry.from_workload(workload, listed_at) for workload in listing
        }
        before = self.cache.snapshot()

        changes = diff_snapshots(before, after)
        self.cache.replace(after, changes)
        if changes:
            logger.info(f"Full diff applied {len(changes)} changes")
        self._track_removals(before, after, listed_at)

        await self._persist_listing(before, after)
        return changes

    def _track_removals(
        self,
        before: Mapping[str, CacheEntry],
        after: Mapping[str, CacheEntry],
        listed_at: datetime,
    ) -> None:
        horizon = listed_at - timedelta(seconds=self.settings.removed_server_ttl_seconds)
        self._removed = {
            key: removed_at
            for key, removed_at in self._removed.items()
            if key not in after and removed_at > horizon
        }
        for key in before:
            if key not in after:
                self._removed[key] = listed_at

    async def _persist_listing(
        self, before: Mapping[str, CacheEntry], after: Mapping[str, CacheEntry]
    ) -> None:
        for key, entry in before.items():
            if key not in after:
                self._pending_deletes[key] = entry
                self._pending_upserts.pop(key, None)

        for key, entry in after.items():
            if before.get(key) != entry or key in self._pending_upserts:
                self._pending_upserts[key] = entry
            self._pending_deletes.pop(key, None)

        for key, entry in list(self._pending_deletes.items()):
            try:
                await self.store.delete(entry.server_id, entry.tenant_id)
            except PersistenceError as e:
                self._persistence_failed(key, e)
            else:
                del self._pending_deletes[key]

        for entry in list(self._pending_upserts.values()):
            await self._upsert(entry)

    async def _upsert(self, entry: CacheEntry) -> None:
        try:
            await self.store.upsert(entry)
        except PersistenceError as e:
            self._pending_upserts[entry.key] = entry
            self._persistence_failed(entry.key, e)
        else:
            self._pending_upserts.pop(entry.key, None)

    @staticmethod
    def _persistence_failed(key: str, error: PersistenceError) -> None:
        logger.warning(f"{error}; {key} will be retried on the next drift pass")
        metrics.persistence_failures_total.inc()

    def _record_change(self, change: CacheChange) -> None:
        metrics.changes_total.labels(type=change.type.value).inc()
        metrics.cache_entries.set(len(self.cache))

"""Controller wiring watches, the work queue and reconcile workers together."""

import asyncio
import logging
import threading
from typing import Callable, Optional

from hearth_k8s import (
    LABEL_WORKLOAD,
    ResourceWatcher,
    ServerWorkloadClient,
    WatchEvent,
    make_key,
)

from .config import Settings
from .reconciler import ServerWorkloadReconciler
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)

CHILD_KINDS = {"statefulset": "StatefulSet", "service": "Service"}


class Controller:
    """
    Runs the operator control loop.

    Watch threads feed keys into the work queue; ``worker_count`` workers
    reconcile them, at most one worker per key; a periodic resync lists every
    workload so nothing is missed if a watch event is lost.
    """

    def __init__(
        self,
        settings: Settings,
        reconciler: ServerWorkloadReconciler,
        workloads: ServerWorkloadClient,
        watcher: ResourceWatcher,
        queue: Optional[WorkQueue] = None,
    ):
        """
        Initialize controller.

        Args:
            settings: Application settings
            reconciler: ServerWorkload reconciler
            workloads: ServerWorkload client used for listing and watching
            watcher: Resource watcher
            queue: Work queue (created from settings when omitted)
        """
        self.settings = settings
        self.reconciler = reconciler
        self.workloads = workloads
        self.watcher = watcher
        self.queue = queue or WorkQueue(
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._workers: list[asyncio.Task] = []
        self._tasks: list[asyncio.Task] = []
        self._threads: list[threading.Thread] = []

    async def start(self, watch: bool = True) -> None:
        """
        Start workers, watches and the periodic resync.

        Args:
            watch: Start the watch threads (disabled in tests)
        """
        if self._running:
            logger.warning("Controller already running")
            return

        self._running = True
        self._loop = asyncio.get_running_loop()

        logger.info(
            f"Starting controller with {self.settings.worker_count} workers, "
            f"namespace: {self.settings.watch_namespace or 'all'}"
        )

        if watch:
            self._start_watches()

        for i in range(self.settings.worker_count):
            self._workers.append(asyncio.create_task(self._worker(i), name=f"worker-{i}"))

        self._tasks.append(asyncio.create_task(self._periodic_resync(), name="resync"))

    def _start_watches(self) -> None:
        for resource_type in ("serverworkload", *CHILD_KINDS):
            self.watcher.register_handler(resource_type, self._handle_event)

        namespace = self.settings.watch_namespace
        targets: list[tuple[str, Callable[[], None]]] = [
            ("serverworkloads", lambda: self.watcher.watch_workloads(self.workloads)),
            ("statefulsets", lambda: self.watcher.watch_statefulsets(namespace)),
            ("services", lambda: self.watcher.watch_services(namespace)),
        ]
        for name, target in targets:
            # Daemon threads: a blocked stream must not hold up process exit
            thread = threading.Thread(target=target, name=f"watch-{name}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def _handle_event(self, event: WatchEvent) -> None:
        """Called from watch threads; hands the event to the event loop."""
        if self._loop is None or not self._running:
            return
        self._loop.call_soon_threadsafe(self.enqueue_event, event)

    def enqueue_event(self, event: WatchEvent) -> None:
        """
        Queue the workload an event concerns.

        Child events are mapped to their owner through the owner index,
        falling back to the workload label.
        """
        if event.resource_type == "serverworkload":
            self.queue.add(event.key)
            return

        kind = CHILD_KINDS.get(event.resource_type)
        owner = None
        if kind:
            owner = self.reconciler.owner_index.owner_of(f"{kind}/{event.key}")
        if owner is None and event.labels.get(LABEL_WORKLOAD):
            owner = make_key(event.namespace, event.labels[LABEL_WORKLOAD])
        if owner is not None:
            self.queue.add(owner)

    async def resync(self) -> int:
        """
        Queue every existing workload.

        Returns:
            Number of workloads queued
        """
        workloads = await asyncio.to_thread(self.workloads.list_all)
        for workload in workloads:
            self.queue.add(workload.key)
        logger.debug(f"Resync queued {len(workloads)} workloads")
        return len(workloads)

    async def _periodic_resync(self) -> None:
        """List all workloads now and then every resync interval."""
        while self._running:
            try:
                await self.resync()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic resync: {e}", exc_info=True)

            try:
                await asyncio.sleep(self.settings.resync_interval_seconds)
            except asyncio.CancelledError:
                break

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Worker {worker_id} started")
        while True:
            key = await self.queue.get()
            if key is None:
                break
            try:
                await self.process(key)
            finally:
                self.queue.done(key)
        logger.debug(f"Worker {worker_id} stopped")

    async def process(self, key: str) -> None:
        """Reconcile one key and schedule its next pass."""
        try:
            result = await self.reconciler.reconcile(key, self.queue.num_requeues(key))
        except Exception as e:
            logger.error(f"Unhandled error reconciling {key}: {e}", exc_info=True)
            self.queue.add_rate_limited(key)
            return

        if result.failed:
            delay = self.queue.add_rate_limited(key)
            logger.debug(f"Requeued {key} with backoff {delay:.1f}s")
            return

        self.queue.forget(key)
        if result.requeue_after:
            self.queue.add_after(key, result.requeue_after)

    async def stop(self) -> None:
        """
        Stop accepting work and let in-flight passes finish.

        Passes still running after ``shutdown_grace_seconds`` are cancelled.
        """
        if not self._running:
            return

        logger.info("Stopping controller")
        self._running = False
        self.watcher.stop()
        self.queue.shut_down()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._workers:
            _, pending = await asyncio.wait(
                self._workers, timeout=self.settings.shutdown_grace_seconds
            )
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} reconciles after the grace period")
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers.clear()

        self._threads.clear()
        logger.info("Controller stopped")

    @property
    def running(self) -> bool:
        return self._running

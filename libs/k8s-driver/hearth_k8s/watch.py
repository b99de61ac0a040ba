"""Kubernetes watch functionality."""

import logging
import threading
from typing import Any, Callable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException

from .builders import LABEL_MANAGED_BY, MANAGED_BY
from .cluster import ClusterConnection
from .models import WatchEvent
from .workloads import ServerWorkloadClient

logger = logging.getLogger(__name__)

CHILD_SELECTOR = f"{LABEL_MANAGED_BY}={MANAGED_BY}"


class ResourceWatcher:
    """
    Watches Kubernetes resources for changes.

    Each ``watch_*`` method blocks and is meant to run in its own thread. A
    stream that expires (410 Gone) or times out is restarted until ``stop``
    is called.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        timeout_seconds: int = 300,
        retry_delay_seconds: float = 5.0,
    ):
        """
        Initialize resource watcher.

        Args:
            cluster: Cluster connection
            timeout_seconds: Server-side timeout of each watch stream
            retry_delay_seconds: Pause before restarting a failed stream
        """
        self.cluster = cluster
        self.timeout_seconds = timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._handlers: dict[str, list[Callable[[WatchEvent], None]]] = {}
        self._watches: list[k8s_watch.Watch] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def register_handler(
        self,
        resource_type: str,
        handler: Callable[[WatchEvent], None],
    ) -> None:
        """
        Register a handler for watch events.

        Handlers are called from the watch thread.

        Args:
            resource_type: Type of resource (serverworkload, statefulset, service)
            handler: Callback function that takes WatchEvent
        """
        self._handlers.setdefault(resource_type, []).append(handler)

    def _emit_event(self, event: WatchEvent) -> None:
        for handler in self._handlers.get(event.resource_type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in watch event handler: {e}", exc_info=True)

    def watch_workloads(self, workloads: ServerWorkloadClient) -> None:
        """Watch ServerWorkload objects in the client's namespace(s)."""
        self._run(
            "serverworkload",
            workloads.watch_func(),
            workloads.list_kwargs(),
            lambda obj: (obj.get("metadata") or {}),
        )

    def watch_statefulsets(self, namespace: Optional[str] = None) -> None:
        """Watch StatefulSets managed by the operator."""
        apps_v1 = self.cluster.apps_v1
        if namespace:
            func, kwargs = apps_v1.list_namespaced_stateful_set, {"namespace": namespace}
        else:
            func, kwargs = apps_v1.list_stateful_set_for_all_namespaces, {}
        self._run("statefulset", func, {**kwargs, "label_selector": CHILD_SELECTOR}, _typed_meta)

    def watch_services(self, namespace: Optional[str] = None) -> None:
        """Watch Services managed by the operator."""
        core_v1 = self.cluster.core_v1
        if namespace:
            func, kwargs = core_v1.list_namespaced_service, {"namespace": namespace}
        else:
            func, kwargs = core_v1.list_service_for_all_namespaces, {}
        self._run("service", func, {**kwargs, "label_selector": CHILD_SELECTOR}, _typed_meta)

    def _run(
        self,
        resource_type: str,
        list_func: Callable[..., Any],
        kwargs: dict[str, Any],
        metadata_of: Callable[[Any], dict[str, Any]],
    ) -> None:
        logger.info(f"Starting watch on {resource_type}s")

        while not self._stopped.is_set():
            stream = k8s_watch.Watch()
            with self._lock:
                self._watches.append(stream)
            try:
                for event in stream.stream(
                    list_func, timeout_seconds=self.timeout_seconds, **kwargs
                ):
                    obj = event["object"]
                    metadata = metadata_of(obj)
                    self._emit_event(
                        WatchEvent(
                            event_type=event["type"],
                            resource_type=resource_type,
                            name=metadata.get("name", ""),
                            namespace=metadata.get("namespace", ""),
                            labels=metadata.get("labels") or {},
                            object=obj if isinstance(obj, dict) else obj.to_dict(),
                        )
                    )
            except ApiException as e:
                if e.status == 410:  # Resource version too old
                    logger.warning(f"Watch on {resource_type}s expired, restarting...")
                else:
                    logger.error(f"Error watching {resource_type}s: {e}", exc_info=True)
                    self._stopped.wait(self.retry_delay_seconds)
            except Exception as e:
                logger.error(f"Watch on {resource_type}s failed: {e}", exc_info=True)
                self._stopped.wait(self.retry_delay_seconds)
            finally:
                with self._lock:
                    self._watches.remove(stream)

        logger.info(f"Watch on {resource_type}s stopped")

    def stop(self) -> None:
        """Stop all active watches."""
        self._stopped.set()
        with self._lock:
            for stream in self._watches:
                stream.stop()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()


def _typed_meta(obj: Any) -> dict[str, Any]:
    return {
        "name": obj.metadata.name,
        "namespace": obj.metadata.namespace,
        "labels": obj.metadata.labels,
    }

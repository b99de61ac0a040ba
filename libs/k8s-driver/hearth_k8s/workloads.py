"""ServerWorkload custom resource operations."""

import logging
from typing import Any, Callable, Optional

from kubernetes.client.exceptions import ApiException
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .cluster import ClusterConnection
from .errors import is_transient
from .models import FINALIZER, GROUP, PLURAL, VERSION, ServerWorkload, ServerWorkloadStatus

logger = logging.getLogger(__name__)


class ServerWorkloadClient:
    """Reads ServerWorkload objects and writes their finalizers and status."""

    def __init__(
        self,
        cluster: ClusterConnection,
        namespace: Optional[str] = None,
        group: str = GROUP,
        version: str = VERSION,
        plural: str = PLURAL,
    ):
        """
        Initialize workload client.

        Args:
            cluster: Cluster connection
            namespace: Namespace to list and watch (None for all namespaces)
            group: CRD API group
            version: CRD API version
            plural: CRD plural name
        """
        self.cluster = cluster
        self.custom_objects = cluster.custom_objects
        self.namespace = namespace
        self.group = group
        self.version = version
        self.plural = plural

    def get(self, namespace: str, name: str) -> Optional[ServerWorkload]:
        """
        Get a workload.

        Args:
            namespace: Kubernetes namespace
            name: Workload name

        Returns:
            ServerWorkload or None if not found

        Raises:
            ApiException: If the API call fails
        """
        try:
            obj = self.custom_objects.get_namespaced_custom_object(
                self.group, self.version, namespace, self.plural, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return ServerWorkload.from_k8s(obj)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(is_transient),
        reraise=True,
    )
    def list_all(self) -> list[ServerWorkload]:
        """
        List all workloads in the watched namespace(s).

        Objects that fail to parse are logged and skipped.

        Returns:
            List of workloads

        Raises:
            ApiException: If the API call keeps failing
        """
        result = self._list_func()(**self.list_kwargs())

        workloads = []
        for obj in result.get("items", []):
            try:
                workloads.append(ServerWorkload.from_k8s(obj))
            except ValueError as e:
                name = obj.get("metadata", {}).get("name")
                logger.warning(f"Skipping malformed workload {name}: {e}")
        return workloads

    def _list_func(self) -> Callable[..., Any]:
        if self.namespace:
            return self.custom_objects.list_namespaced_custom_object
        return self.custom_objects.list_cluster_custom_object

    def list_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for the list call, shared with the watch."""
        kwargs = {"group": self.group, "version": self.version, "plural": self.plural}
        if self.namespace:
            kwargs["namespace"] = self.namespace
        return kwargs

    def watch_func(self) -> Callable[..., Any]:
        """List function to stream watch events from."""
        return self._list_func()

    def patch_status(self, workload: ServerWorkload, status: ServerWorkloadStatus) -> None:
        """
        Write the status subresource.

        Args:
            workload: Workload to update
            status: New status

        Raises:
            ApiException: If the API call fails
        """
        self.custom_objects.patch_namespaced_custom_object_status(
            self.group,
            self.version,
            workload.namespace,
            self.plural,
            workload.name,
            body={"status": status.to_k8s()},
        )

    def add_finalizer(self, workload: ServerWorkload, finalizer: str = FINALIZER) -> None:
        """
        Add a finalizer if it is not present.

        Raises:
            ApiException: If the API call fails (409 on a stale resourceVersion)
        """
        if workload.has_finalizer(finalizer):
            return
        self._patch_finalizers(workload, workload.metadata.finalizers + [finalizer])
        workload.metadata.finalizers.append(finalizer)
        logger.info(f"Added finalizer to {workload.key}")

    def remove_finalizer(self, workload: ServerWorkload, finalizer: str = FINALIZER) -> None:
        """
        Remove a finalizer if it is present.

        Raises:
            ApiException: If the API call fails (404 is ignored)
        """
        if not workload.has_finalizer(finalizer):
            return
        remaining = [f for f in workload.metadata.finalizers if f != finalizer]
        try:
            self._patch_finalizers(workload, remaining)
        except ApiException as e:
            if e.status != 404:
                raise
        workload.metadata.finalizers = remaining
        logger.info(f"Removed finalizer from {workload.key}")

    def _patch_finalizers(self, workload: ServerWorkload, finalizers: list[str]) -> None:
        metadata: dict[str, Any] = {"finalizers": finalizers}
        if workload.metadata.resource_version:
            # Conflicts surface as 409 instead of overwriting a concurrent edit
            metadata["resourceVersion"] = workload.metadata.resource_version
        body = {"metadata": metadata}
        self.custom_objects.patch_namespaced_custom_object(
            self.group,
            self.version,
            workload.namespace,
            self.plural,
            workload.name,
            body=body,
        )

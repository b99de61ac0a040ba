"""Kubernetes client connection management."""

from typing import Optional

from kubernetes import config
from kubernetes.client import (
    ApiClient,
    AppsV1Api,
    CoreV1Api,
    CustomObjectsApi,
    NetworkingV1Api,
)

from .models import ClusterConfig


class ClusterConnection:
    """
    API clients for the cluster the operator manages.

    The typed APIs share one ApiClient and are dropped together on close().
    """

    def __init__(self, cluster_config: Optional[ClusterConfig] = None):
        """
        Initialize cluster connection.

        Args:
            cluster_config: Cluster configuration (in-cluster when omitted)

        Raises:
            ValueError: If no usable kubeconfig or service account is found
        """
        self.config = cluster_config or ClusterConfig()
        self._api_client: Optional[ApiClient] = None
        self._apis: dict[type, object] = {}

        self._load_config()
        self._api_client = ApiClient()

    def _load_config(self) -> None:
        try:
            if self.config.kubeconfig_path:
                config.load_kube_config(
                    config_file=self.config.kubeconfig_path,
                    context=self.config.context,
                )
            else:
                config.load_incluster_config()
        except (config.ConfigException, OSError) as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    def _api(self, api_class):
        if self._api_client is None:
            raise RuntimeError("Cluster connection is closed")
        if api_class not in self._apis:
            self._apis[api_class] = api_class(self._api_client)
        return self._apis[api_class]

    @property
    def core_v1(self) -> CoreV1Api:
        """Pods, Services, Secrets and PersistentVolumeClaims."""
        return self._api(CoreV1Api)

    @property
    def apps_v1(self) -> AppsV1Api:
        """StatefulSets."""
        return self._api(AppsV1Api)

    @property
    def networking_v1(self) -> NetworkingV1Api:
        """NetworkPolicies."""
        return self._api(NetworkingV1Api)

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """ServerWorkload custom resources."""
        return self._api(CustomObjectsApi)

    def close(self):
        """Close the underlying API client."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
        self._apis.clear()

"""Kubernetes resource models for Hearth."""

from datetime import datetime, timezone
from typing import Any, Optional

from kubernetes.client import V1OwnerReference
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from hearth_common import Phase

GROUP = "hearth.dev"
VERSION = "v1"
PLURAL = "serverworkloads"
KIND = "ServerWorkload"

FINALIZER = f"{GROUP}/finalizer"

DEFAULT_IMAGE = "itzg/minecraft-server:latest"
DEFAULT_VERSION = "1.20.1"
DEFAULT_STORAGE_CLASS = "standard"


def make_key(namespace: str, name: str) -> str:
    """Build the ``namespace/name`` key of a resource."""
    return f"{namespace}/{name}"


def split_key(key: str) -> tuple[str, str]:
    """
    Split a ``namespace/name`` key.

    Raises:
        ValueError: If the key is malformed
    """
    namespace, sep, name = key.partition("/")
    if not sep or not namespace or not name:
        raise ValueError(f"Invalid resource key: {key!r}")
    return namespace, name


class CamelModel(BaseModel):
    """Model read from and written to camelCase Kubernetes JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClusterConfig(BaseModel):
    """Cluster connection configuration."""

    kubeconfig_path: Optional[str] = None  # None means in-cluster config
    context: Optional[str] = None  # Specific context to use


class ResourceSpec(CamelModel):
    """Compute and storage requests of a server."""

    cpu_request: str = "500m"
    cpu_limit: str = "2"
    memory_request: str = "2Gi"
    memory_limit: str = "4Gi"
    storage: str = "10Gi"
    memory: Optional[str] = None  # JVM heap, e.g. "3G"


class PluginSpec(CamelModel):
    """A plugin to install on a server."""

    name: str
    version: Optional[str] = None
    url: Optional[str] = None
    enabled: bool = True
    config: dict[str, str] = Field(default_factory=dict)


class BackupSpec(CamelModel):
    """Backup policy of a server."""

    enabled: bool = False
    schedule: str = "0 2 * * *"
    retention_days: int = 7
    storage_class: Optional[str] = None


class ServerWorkloadSpec(CamelModel):
    """Desired state of a game server."""

    server_id: str
    tenant_id: str
    image: str = DEFAULT_IMAGE
    version: str = DEFAULT_VERSION
    resources: ResourceSpec = Field(default_factory=ResourceSpec)
    stopped: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    plugins: list[PluginSpec] = Field(default_factory=list)
    backup: Optional[BackupSpec] = None
    storage_class: str = DEFAULT_STORAGE_CLASS

    @property
    def desired_replicas(self) -> int:
        """Replica count of the workload unit: 0 when stopped, else 1."""
        return 0 if self.stopped else 1


class ServerWorkloadStatus(CamelModel):
    """Observed state of a game server, written only by the reconciler."""

    phase: Optional[Phase] = None
    message: str = ""
    last_transition_time: Optional[str] = None
    # to_camel would produce externalIp
    external_ip: Optional[str] = Field(default=None, alias="externalIP")
    external_port: Optional[int] = None
    player_count: int = 0
    max_players: Optional[int] = None
    players: list[str] = Field(default_factory=list)
    ready_replicas: int = 0
    desired_replicas: int = 0
    last_backup: Optional[str] = None
    observed_generation: Optional[int] = None

    def to_k8s(self) -> dict[str, Any]:
        """Serialize for the status subresource."""
        return self.model_dump(mode="json", by_alias=True)


class ObjectMeta(CamelModel):
    """The subset of object metadata the operator reads."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    deletion_timestamp: Optional[str] = None
    finalizers: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)


class ServerWorkload(CamelModel):
    """A ``ServerWorkload`` custom resource."""

    api_version: str = f"{GROUP}/{VERSION}"
    kind: str = KIND
    metadata: ObjectMeta
    spec: ServerWorkloadSpec
    status: ServerWorkloadStatus = Field(default_factory=ServerWorkloadStatus)

    @classmethod
    def from_k8s(cls, obj: dict[str, Any]) -> "ServerWorkload":
        """
        Parse a custom object as returned by the API.

        Args:
            obj: Object dict from CustomObjectsApi

        Returns:
            Parsed workload
        """
        data = dict(obj)
        # A freshly created object has no status yet
        if not data.get("status"):
            data["status"] = {}
        return cls.model_validate(data)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """``namespace/name`` key used by queues, caches and indexes."""
        return make_key(self.metadata.namespace, self.metadata.name)

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str = FINALIZER) -> bool:
        return finalizer in self.metadata.finalizers

    def owner_reference(self) -> V1OwnerReference:
        """Owner reference placed on every child object."""
        return V1OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.metadata.name,
            uid=self.metadata.uid,
            controller=True,
            block_owner_deletion=True,
        )


class WatchEvent(BaseModel):
    """Kubernetes watch event."""

    event_type: str  # ADDED, MODIFIED, DELETED
    resource_type: str
    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    object: dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        return make_key(self.namespace, self.name)

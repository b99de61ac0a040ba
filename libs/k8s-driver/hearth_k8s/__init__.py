"""Hearth Kubernetes Driver - ServerWorkload resources and their children."""

from .builders import (
    ANNOTATION_SPEC_HASH,
    LABEL_MANAGED_BY,
    LABEL_SERVER_ID,
    LABEL_TENANT_ID,
    LABEL_WORKLOAD,
    BuildOptions,
    DesiredChild,
    build_children,
    compute_spec_hash,
    configured_max_players,
    decode_rcon_password,
    rcon_secret_name,
    render_server_properties,
)
from .children import ChildResourceManager, EnsureResult, OwnerIndex, child_key
from .cluster import ClusterConnection
from .errors import classify, is_transient
from .models import (
    FINALIZER,
    ClusterConfig,
    ServerWorkload,
    ServerWorkloadSpec,
    ServerWorkloadStatus,
    WatchEvent,
    make_key,
    split_key,
)
from .observe import external_address, replica_state
from .watch import ResourceWatcher
from .workloads import ServerWorkloadClient

__version__ = "0.1.0"

__all__ = [
    # Cluster management
    "ClusterConnection",
    # Workloads
    "ServerWorkloadClient",
    # Children
    "ChildResourceManager",
    "EnsureResult",
    "OwnerIndex",
    "child_key",
    "BuildOptions",
    "DesiredChild",
    "build_children",
    "compute_spec_hash",
    "configured_max_players",
    "decode_rcon_password",
    "rcon_secret_name",
    "render_server_properties",
    "replica_state",
    "external_address",
    # Labels
    "ANNOTATION_SPEC_HASH",
    "LABEL_MANAGED_BY",
    "LABEL_SERVER_ID",
    "LABEL_TENANT_ID",
    "LABEL_WORKLOAD",
    # Watch
    "ResourceWatcher",
    # Errors
    "classify",
    "is_transient",
    # Models
    "FINALIZER",
    "ClusterConfig",
    "ServerWorkload",
    "ServerWorkloadSpec",
    "ServerWorkloadStatus",
    "WatchEvent",
    "make_key",
    "split_key",
]

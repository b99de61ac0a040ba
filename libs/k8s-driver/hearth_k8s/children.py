"""Create and converge the child objects of a ServerWorkload."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from kubernetes.client.exceptions import ApiException

from hearth_common import ReconcileError

from .builders import (
    ANNOTATION_SPEC_HASH,
    LABEL_SERVER_ID,
    LABEL_TENANT_ID,
    DesiredChild,
)
from .cluster import ClusterConnection
from .models import ServerWorkload, make_key

logger = logging.getLogger(__name__)


@dataclass
class ChildOperations:
    """API calls for one child kind: read(name, ns), create(ns, body), patch(name, ns, body)."""

    read: Callable[..., Any]
    create: Callable[..., Any]
    patch: Optional[Callable[..., Any]] = None


@dataclass
class EnsureResult:
    """Outcome of converging a workload's children."""

    created: list[str] = field(default_factory=list)
    patched: list[str] = field(default_factory=list)
    observed: dict[str, Any] = field(default_factory=dict)

    @property
    def children_created(self) -> bool:
        return bool(self.created)

    def get(self, kind: str, name: str) -> Any:
        """Observed object of a child, or None."""
        return self.observed.get(child_key(kind, name))


def child_key(kind: str, name: str) -> str:
    return f"{kind}/{name}"


class OwnerIndex:
    """
    Index from owner key to the keys of its children.

    Children are keyed ``Kind/namespace/name``; owners ``namespace/name``.
    """

    def __init__(self):
        self._children: dict[str, set[str]] = {}
        self._owners: dict[str, str] = {}

    def record(self, owner_key: str, child: str) -> None:
        """Record that ``child`` is owned by ``owner_key``."""
        self._children.setdefault(owner_key, set()).add(child)
        self._owners[child] = owner_key

    def children_of(self, owner_key: str) -> set[str]:
        return set(self._children.get(owner_key, ()))

    def owner_of(self, child: str) -> Optional[str]:
        return self._owners.get(child)

    def forget(self, owner_key: str) -> set[str]:
        """
        Drop an owner and its children.

        Returns:
            The child keys that were indexed for the owner
        """
        children = self._children.pop(owner_key, set())
        for child in children:
            self._owners.pop(child, None)
        return children

    def __len__(self) -> int:
        return len(self._children)


class ChildResourceManager:
    """Ensures desired children exist and match their spec hash."""

    def __init__(self, cluster: ClusterConnection, owner_index: Optional[OwnerIndex] = None):
        """
        Initialize child resource manager.

        Args:
            cluster: Cluster connection
            owner_index: Index updated with every child observed
        """
        self.cluster = cluster
        self.owner_index = owner_index if owner_index is not None else OwnerIndex()

        core_v1 = cluster.core_v1
        apps_v1 = cluster.apps_v1
        networking_v1 = cluster.networking_v1

        self._operations: dict[str, ChildOperations] = {
            "StatefulSet": ChildOperations(
                read=apps_v1.read_namespaced_stateful_set,
                create=apps_v1.create_namespaced_stateful_set,
                patch=apps_v1.patch_namespaced_stateful_set,
            ),
            "Service": ChildOperations(
                read=core_v1.read_namespaced_service,
                create=core_v1.create_namespaced_service,
                patch=core_v1.patch_namespaced_service,
            ),
            "NetworkPolicy": ChildOperations(
                read=networking_v1.read_namespaced_network_policy,
                create=networking_v1.create_namespaced_network_policy,
                patch=networking_v1.patch_namespaced_network_policy,
            ),
            "ConfigMap": ChildOperations(
                read=core_v1.read_namespaced_config_map,
                create=core_v1.create_namespaced_config_map,
                patch=core_v1.patch_namespaced_config_map,
            ),
            "PersistentVolumeClaim": ChildOperations(
                read=core_v1.read_namespaced_persistent_volume_claim,
                create=core_v1.create_namespaced_persistent_volume_claim,
            ),
            "Secret": ChildOperations(
                read=core_v1.read_namespaced_secret,
                create=core_v1.create_namespaced_secret,
            ),
        }

    def read(self, kind: str, name: str, namespace: str) -> Optional[Any]:
        """
        Read a child object.

        Returns:
            The object or None if not found

        Raises:
            ApiException: If the API call fails
        """
        try:
            return self._operations[kind].read(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def ensure(self, workload: ServerWorkload, desired: list[DesiredChild]) -> EnsureResult:
        """
        Create missing children and patch drifted ones.

        Create-only children (volume claims, secrets) are never patched.

        Args:
            workload: Owning workload
            desired: Desired children from the builders

        Returns:
            EnsureResult with created/patched names and observed objects

        Raises:
            ReconcileError: If an existing child belongs to another server or owner
            ApiException: If an API call fails
        """
        result = EnsureResult()
        namespace = workload.namespace

        for child in desired:
            key = child_key(child.kind, child.name)
            operations = self._operations[child.kind]
            existing = self.read(child.kind, child.name, namespace)

            if existing is None:
                observed = operations.create(namespace, child.body)
                result.created.append(key)
                logger.info(f"Created {key} for {workload.key}")
            else:
                self._check_identity(workload, child, existing)
                observed = existing
                if not child.create_only and self._spec_hash(existing) != child.spec_hash:
                    observed = operations.patch(child.name, namespace, child.body)
                    result.patched.append(key)
                    logger.info(f"Patched drifted {key} for {workload.key}")

            result.observed[key] = observed
            self.owner_index.record(workload.key, f"{child.kind}/{make_key(namespace, child.name)}")

        return result

    @staticmethod
    def _spec_hash(obj: Any) -> Optional[str]:
        annotations = obj.metadata.annotations or {}
        return annotations.get(ANNOTATION_SPEC_HASH)

    @staticmethod
    def _check_identity(workload: ServerWorkload, child: DesiredChild, existing: Any) -> None:
        key = child_key(child.kind, child.name)

        owners = existing.metadata.owner_references or []
        if workload.metadata.uid and not any(ref.uid == workload.metadata.uid for ref in owners):
            raise ReconcileError(f"{key} exists but is not owned by {workload.key}")

        labels = existing.metadata.labels or {}
        expected = {
            LABEL_SERVER_ID: workload.spec.server_id,
            LABEL_TENANT_ID: workload.spec.tenant_id,
        }
        for label, value in expected.items():
            if labels.get(label, value) != value:
                raise ReconcileError(
                    f"{key} has {label}={labels[label]} but {workload.key} "
                    f"declares {value}; server and tenant identity are immutable"
                )

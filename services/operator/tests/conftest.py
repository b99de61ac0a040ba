"""Pytest configuration and fixtures for operator tests."""

import base64
from unittest.mock import MagicMock

import pytest
from kubernetes.client import (
    V1LoadBalancerIngress,
    V1LoadBalancerStatus,
    V1Secret,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
    V1ServiceStatus,
    V1StatefulSet,
    V1StatefulSetStatus,
)

from hearth_k8s import (
    ChildResourceManager,
    EnsureResult,
    OwnerIndex,
    ServerWorkload,
    ServerWorkloadClient,
    child_key,
)
from hearth_operator.config import Settings
from hearth_operator.events import EventPublisher
from hearth_operator.reconciler import ServerWorkloadReconciler
from hearth_operator.sessions import RconSessionRegistry


@pytest.fixture
def settings():
    """Settings with short timeouts and no broker retries."""
    return Settings(
        worker_count=2,
        resync_interval_seconds=3600,
        error_threshold=3,
        shutdown_grace_seconds=1.0,
        kafka_connect_attempts=1,
        kafka_publish_timeout_seconds=0.5,
        kafka_reconnect_interval_seconds=30.0,
    )


def _make_workload(phase=None, stopped=False, deleting=False, **status):
    """Build a parsed ServerWorkload in namespace games."""
    obj = {
        "metadata": {
            "name": "survival",
            "namespace": "games",
            "uid": "6f1c2a8e-0000-4000-8000-000000000001",
            "generation": 3,
            "finalizers": ["hearth.dev/finalizer"],
        },
        "spec": {
            "serverId": "srv-1",
            "tenantId": "tenant-a",
            "version": "1.20.4",
            "stopped": stopped,
            "config": {"max-players": 20},
        },
        "status": dict(status, phase=phase) if phase else status,
    }
    if deleting:
        obj["metadata"]["deletionTimestamp"] = "2026-01-01T00:00:00Z"
    return ServerWorkload.from_k8s(obj)


def _make_observed(ready=0, replicas=None, ingress_ip=None, password="hunter2", created=False):
    """Build the EnsureResult the child manager would return."""
    stateful_set = V1StatefulSet(
        status=V1StatefulSetStatus(
            replicas=ready if replicas is None else replicas,
            ready_replicas=ready,
        )
    )
    ingress = [V1LoadBalancerIngress(ip=ingress_ip)] if ingress_ip else None
    service = V1Service(
        spec=V1ServiceSpec(ports=[V1ServicePort(name="game", port=25565)]),
        status=V1ServiceStatus(load_balancer=V1LoadBalancerStatus(ingress=ingress)),
    )
    secret = V1Secret(
        data={"password": base64.b64encode(password.encode()).decode()} if password else None
    )

    result = EnsureResult()
    result.observed = {
        child_key("StatefulSet", "survival"): stateful_set,
        child_key("Service", "survival"): service,
        child_key("Secret", "survival-rcon"): secret,
    }
    if created:
        result.created = list(result.observed)
    return result


@pytest.fixture
def workloads():
    """Mock ServerWorkload client."""
    return MagicMock(spec=ServerWorkloadClient)


@pytest.fixture
def children():
    """Mock child resource manager."""
    return MagicMock(spec=ChildResourceManager)


@pytest.fixture
def publisher():
    """Mock event publisher collecting emitted events."""
    return MagicMock(spec=EventPublisher)


@pytest.fixture
def sessions():
    """Mock RCON session registry."""
    return MagicMock(spec=RconSessionRegistry)


@pytest.fixture
def owner_index():
    return OwnerIndex()


@pytest.fixture
def reconciler(settings, workloads, children, publisher, sessions, owner_index):
    """Reconciler wired to mocks."""
    return ServerWorkloadReconciler(
        settings, workloads, children, publisher, sessions, owner_index
    )


def _emitted(publisher):
    """Events handed to the publisher, in order."""
    return [call.args[0] for call in publisher.emit.call_args_list]


@pytest.fixture
def make_workload():
    """Factory for parsed workloads."""
    return _make_workload


@pytest.fixture
def make_observed():
    """Factory for child manager results."""
    return _make_observed


@pytest.fixture
def emitted(publisher):
    """Callable returning the events emitted so far."""
    return lambda: _emitted(publisher)

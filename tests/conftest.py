"""Pytest configuration for integration tests."""

import base64
import copy
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

from hearth_k8s import ChildResourceManager, EnsureResult, ServerWorkload, child_key
from hearth_operator.config import Settings as OperatorSettings
from hearth_operator.sessions import RconSessionRegistry
from hearth_sync.config import Settings as SyncSettings
from hearth_sync.database import Database


class FakeWorkloads:
    """The API server's copy of a single ServerWorkload."""

    def __init__(self, obj):
        self.obj = obj
        self.patched = []

    def get(self, namespace, name):
        meta = self.obj["metadata"]
        if (meta["namespace"], meta["name"]) != (namespace, name):
            return None
        return ServerWorkload.from_k8s(copy.deepcopy(self.obj))

    def list_all(self):
        return [ServerWorkload.from_k8s(copy.deepcopy(self.obj))]

    def add_finalizer(self, workload):
        finalizers = self.obj["metadata"].setdefault("finalizers", [])
        if "hearth.dev/finalizer" not in finalizers:
            finalizers.append("hearth.dev/finalizer")

    def remove_finalizer(self, workload):
        self.obj["metadata"]["finalizers"] = []

    def patch_status(self, workload, status):
        self.obj["status"] = status.to_k8s()
        self.patched.append(status)


@pytest.fixture
def operator_settings():
    return OperatorSettings(
        error_threshold=3,
        kafka_connect_attempts=1,
        kafka_publish_timeout_seconds=0.5,
        kafka_reconnect_interval_seconds=30.0,
    )


@pytest.fixture
def sync_settings(tmp_path):
    return SyncSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/status.db",
        kafka_connect_attempts=1,
        poll_interval_seconds=0.05,
        drift_interval_seconds=3600.0,
    )


@pytest.fixture
async def database(sync_settings):
    database = Database(sync_settings.database_url)
    await database.init_db()
    yield database
    await database.close_db()


@pytest.fixture
def cluster():
    """A freshly created ServerWorkload with no status."""
    return FakeWorkloads(
        {
            "apiVersion": "hearth.dev/v1",
            "kind": "ServerWorkload",
            "metadata": {
                "name": "survival",
                "namespace": "games",
                "uid": "6f1c2a8e-0000-4000-8000-000000000001",
                "generation": 1,
            },
            "spec": {
                "serverId": "srv-1",
                "tenantId": "tenant-a",
                "config": {"max-players": 20},
            },
        }
    )


@pytest.fixture
def make_observed():
    """Factory for the children the child manager reports."""

    def make(ready=0, ingress_ip=None, created=False):
        ingress = [V1LoadBalancerIngress(ip=ingress_ip)] if ingress_ip else None
        result = EnsureResult()
        result.observed = {
            child_key("StatefulSet", "survival"): V1StatefulSet(
                status=V1StatefulSetStatus(replicas=1, ready_replicas=ready)
            ),
            child_key("Service", "survival"): V1Service(
                spec=V1ServiceSpec(ports=[V1ServicePort(name="game", port=25565)]),
                status=V1ServiceStatus(load_balancer=V1LoadBalancerStatus(ingress=ingress)),
            ),
            child_key("Secret", "survival-rcon"): V1Secret(
                data={"password": base64.b64encode(b"hunter2").decode()}
            ),
        }
        if created:
            result.created = list(result.observed)
        return result

    return make


@pytest.fixture
def children():
    return MagicMock(spec=ChildResourceManager)


@pytest.fixture
def sessions():
    return MagicMock(spec=RconSessionRegistry)

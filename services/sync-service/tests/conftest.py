"""Pytest configuration and fixtures for sync service tests."""

from unittest.mock import MagicMock

import pytest
from jose import jwt

from hearth_common import EventType, Phase, ServerStateEvent
from hearth_k8s import ServerWorkload, ServerWorkloadClient
from hearth_sync.cache import CacheEntry
from hearth_sync.config import Settings
from hearth_sync.store import StatusStore

TEST_SECRET = "test-secret-key"


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/status.db",
        kafka_connect_attempts=1,
        poll_interval_seconds=0.05,
        drift_interval_seconds=3600.0,
        jwt_secret_key=TEST_SECRET,
        live_queue_size=10,
    )


def _make_workload(name="survival", server_id="srv-1", tenant_id="tenant-a", **status):
    obj = {
        "apiVersion": "hearth.dev/v1",
        "kind": "ServerWorkload",
        "metadata": {"name": name, "namespace": "games", "uid": f"uid-{name}"},
        "spec": {"serverId": server_id, "tenantId": tenant_id},
        "status": status,
    }
    return ServerWorkload.from_k8s(obj)


def _make_event(
    event_type=EventType.SERVER_RUNNING,
    phase=Phase.RUNNING,
    name="survival",
    server_id="srv-1",
    tenant_id="tenant-a",
    **fields,
):
    return ServerStateEvent(
        type=event_type,
        server_id=server_id,
        tenant_id=tenant_id,
        namespace="games",
        resource_name=name,
        phase=phase,
        **fields,
    )


def _make_entry(name="survival", server_id="srv-1", tenant_id="tenant-a", **fields):
    return CacheEntry(
        key=f"games/{name}",
        server_id=server_id,
        tenant_id=tenant_id,
        namespace="games",
        resource_name=name,
        **fields,
    )


@pytest.fixture
def make_workload():
    """Factory for ServerWorkloads; status fields are camelCase."""
    return _make_workload


@pytest.fixture
def make_event():
    """Factory for ServerStateEvents in namespace ``games``."""
    return _make_event


@pytest.fixture
def make_entry():
    """Factory for CacheEntries in namespace ``games``."""
    return _make_entry


@pytest.fixture
def make_token():
    """Factory for signed tokens."""

    def make(tenant_id="tenant-a", secret=TEST_SECRET, **claims):
        if tenant_id is not None:
            claims.setdefault("tenant_id", tenant_id)
        return jwt.encode(claims, secret, algorithm="HS256")

    return make


@pytest.fixture
def mock_workloads(make_workload):
    workloads = MagicMock(spec=ServerWorkloadClient)
    workloads.list_all.return_value = [
        make_workload("survival", "srv-1", "tenant-a", phase="Running", playerCount=3),
        make_workload("creative", "srv-2", "tenant-a", phase="Starting"),
        make_workload("skyblock", "srv-3", "tenant-b", phase="Stopped"),
    ]
    return workloads


@pytest.fixture
def mock_store():
    return MagicMock(spec=StatusStore)

"""Pytest configuration and fixtures for K8s driver tests."""

import pytest
from unittest.mock import MagicMock
from kubernetes import client


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.networking_v1 = MagicMock(spec=client.NetworkingV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    return mock_conn


@pytest.fixture
def sample_workload_object():
    """ServerWorkload as returned by CustomObjectsApi."""
    return {
        "apiVersion": "hearth.dev/v1",
        "kind": "ServerWorkload",
        "metadata": {
            "name": "survival",
            "namespace": "games",
            "uid": "6f1c2a8e-0000-4000-8000-000000000001",
            "generation": 2,
            "resourceVersion": "1234",
            "finalizers": [],
        },
        "spec": {
            "serverId": "srv-1",
            "tenantId": "tenant-a",
            "version": "1.20.4",
            "resources": {
                "cpuRequest": "1",
                "cpuLimit": "2",
                "memoryRequest": "2Gi",
                "memoryLimit": "4Gi",
                "storage": "20Gi",
                "memory": "3G",
            },
            "config": {"max-players": 50, "motd": "Welcome", "pvp": False},
            "plugins": [{"name": "essentials", "version": "2.20.1"}],
        },
    }


@pytest.fixture
def sample_workload(sample_workload_object):
    """Parsed ServerWorkload."""
    from hearth_k8s import ServerWorkload

    return ServerWorkload.from_k8s(sample_workload_object)


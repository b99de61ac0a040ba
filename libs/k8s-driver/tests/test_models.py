"""Tests for ServerWorkload models."""

import pytest

from hearth_common import Phase
from hearth_k8s import FINALIZER, ServerWorkload, ServerWorkloadStatus, split_key


class TestServerWorkload:
    """Test cases for parsing ServerWorkload objects."""

    def test_from_k8s(self, sample_workload):
        """Test camelCase fields are parsed."""
        assert sample_workload.key == "games/survival"
        assert sample_workload.spec.server_id == "srv-1"
        assert sample_workload.spec.tenant_id == "tenant-a"
        assert sample_workload.spec.resources.memory_request == "2Gi"
        assert sample_workload.spec.resources.memory == "3G"
        assert sample_workload.spec.plugins[0].enabled is True
        assert sample_workload.metadata.resource_version == "1234"
        assert sample_workload.status.phase is None

    def test_defaults(self, sample_workload_object):
        """Test omitted fields take their defaults."""
        sample_workload_object["spec"] = {"serverId": "srv-2", "tenantId": "tenant-b"}

        workload = ServerWorkload.from_k8s(sample_workload_object)

        assert workload.spec.image == "itzg/minecraft-server:latest"
        assert workload.spec.version == "1.20.1"
        assert workload.spec.storage_class == "standard"
        assert workload.spec.stopped is False
        assert workload.spec.backup is None
        assert workload.spec.desired_replicas == 1

    def test_stopped_has_no_replicas(self, sample_workload):
        """Test a stopped workload wants zero replicas."""
        sample_workload.spec.stopped = True
        assert sample_workload.spec.desired_replicas == 0

    def test_existing_status(self, sample_workload_object):
        """Test status written by a previous pass is parsed."""
        sample_workload_object["status"] = {
            "phase": "Running",
            "externalIP": "203.0.113.10",
            "playerCount": 3,
        }

        workload = ServerWorkload.from_k8s(sample_workload_object)

        assert workload.status.phase == Phase.RUNNING
        assert workload.status.external_ip == "203.0.113.10"
        assert workload.status.player_count == 3

    def test_missing_identity_rejected(self, sample_workload_object):
        """Test a workload without identity fields does not parse."""
        del sample_workload_object["spec"]["tenantId"]

        with pytest.raises(ValueError):
            ServerWorkload.from_k8s(sample_workload_object)

    def test_deletion_and_finalizer(self, sample_workload_object):
        """Test deletion and finalizer helpers."""
        sample_workload_object["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        sample_workload_object["metadata"]["finalizers"] = [FINALIZER]

        workload = ServerWorkload.from_k8s(sample_workload_object)

        assert workload.is_deleting
        assert workload.has_finalizer()

    def test_owner_reference(self, sample_workload):
        """Test the owner reference points back at the workload."""
        ref = sample_workload.owner_reference()

        assert ref.kind == "ServerWorkload"
        assert ref.api_version == "hearth.dev/v1"
        assert ref.uid == sample_workload.metadata.uid
        assert ref.controller is True
        assert ref.block_owner_deletion is True


class TestServerWorkloadStatus:
    """Test cases for status serialization."""

    def test_to_k8s_uses_api_field_names(self):
        """Test status is written with the CRD field names."""
        status = ServerWorkloadStatus(
            phase=Phase.RUNNING,
            external_ip="203.0.113.10",
            external_port=25565,
            ready_replicas=1,
        )

        body = status.to_k8s()

        assert body["phase"] == "Running"
        assert body["externalIP"] == "203.0.113.10"
        assert body["externalPort"] == 25565
        assert body["readyReplicas"] == 1
        assert body["lastTransitionTime"] is None


def test_split_key():
    """Test key parsing."""
    assert split_key("games/survival") == ("games", "survival")
    with pytest.raises(ValueError):
        split_key("survival")

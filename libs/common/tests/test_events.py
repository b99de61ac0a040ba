"""Tests for the event wire format."""

import json
from datetime import datetime, timezone

import pytest

from hearth_common import (
    PHASE_EVENT_TYPES,
    EventCategory,
    EventType,
    Phase,
    ServerStateEvent,
    all_topics,
    topic_for,
)


@pytest.fixture
def running_event():
    """Sample running event."""
    return ServerStateEvent(
        type=EventType.SERVER_RUNNING,
        server_id="srv-1",
        tenant_id="tenant-a",
        namespace="games",
        resource_name="survival",
        phase=Phase.RUNNING,
        message="Server is running and ready",
        external_ip="203.0.113.10",
        external_port=25565,
        ready_replicas=1,
        desired_replicas=1,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_topic_naming():
    """Topics are named <category>.<event_type>."""
    assert topic_for(EventType.SERVER_RUNNING) == "running.server_running"
    assert topic_for(EventType.SERVER_STOPPING) == "stopped.server_stopping"
    assert (
        topic_for(EventType.PLAYER_COUNT_UPDATED)
        == "player-count-update.player_count_updated"
    )
    assert topic_for(EventType.SERVER_ERROR, prefix="hearth.") == "hearth.error.server_error"


def test_all_topics_cover_every_type():
    """Every event type has exactly one topic."""
    topics = all_topics()
    assert len(topics) == len(EventType)
    assert len(set(topics)) == len(topics)


def test_pending_is_not_published():
    """Pending has no event type."""
    assert Phase.PENDING not in PHASE_EVENT_TYPES
    assert PHASE_EVENT_TYPES[Phase.STARTING] == EventType.SERVER_STARTING


def test_wire_format_fields(running_event):
    """The wire payload carries the documented fields."""
    payload = json.loads(running_event.to_wire())

    assert payload["type"] == "server_running"
    assert payload["server_id"] == "srv-1"
    assert payload["tenant_id"] == "tenant-a"
    assert payload["namespace"] == "games"
    assert payload["resource_name"] == "survival"
    assert payload["phase"] == "Running"
    assert payload["external_port"] == 25565
    assert payload["ready_replicas"] == 1
    assert payload["desired_replicas"] == 1
    # Absent optional fields are omitted
    assert "player_count" not in payload


def test_decode_from_wire(running_event):
    """Events decode from the JSON another process produced."""
    raw = json.dumps(
        {
            "type": "player_count_updated",
            "server_id": "srv-1",
            "tenant_id": "tenant-a",
            "namespace": "games",
            "resource_name": "survival",
            "phase": "Running",
            "message": "",
            "player_count": 3,
            "ready_replicas": 1,
            "desired_replicas": 1,
            "timestamp": "2024-01-01T00:00:00Z",
        }
    ).encode()

    event = ServerStateEvent.from_wire(raw)

    assert event.type == EventType.PLAYER_COUNT_UPDATED
    assert event.category == EventCategory.PLAYER_COUNT_UPDATE
    assert event.player_count == 3
    assert event.external_ip is None
    assert event.key == "games/survival"

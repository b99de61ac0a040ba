"""Event wire format shared by the operator and the sync service."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .phase import Phase


class EventCategory(str, Enum):
    """Topic category of a state event."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    PLAYER_COUNT_UPDATE = "player-count-update"


class EventType(str, Enum):
    """Type of a state event."""

    SERVER_STARTING = "server_starting"
    SERVER_RUNNING = "server_running"
    SERVER_STOPPING = "server_stopping"
    SERVER_STOPPED = "server_stopped"
    SERVER_ERROR = "server_error"
    PLAYER_COUNT_UPDATED = "player_count_updated"


EVENT_CATEGORIES: dict[EventType, EventCategory] = {
    EventType.SERVER_STARTING: EventCategory.STARTING,
    EventType.SERVER_RUNNING: EventCategory.RUNNING,
    EventType.SERVER_STOPPING: EventCategory.STOPPED,
    EventType.SERVER_STOPPED: EventCategory.STOPPED,
    EventType.SERVER_ERROR: EventCategory.ERROR,
    EventType.PLAYER_COUNT_UPDATED: EventCategory.PLAYER_COUNT_UPDATE,
}

# Pending is never published: nothing exists for clients to act on yet.
PHASE_EVENT_TYPES: dict[Phase, EventType] = {
    Phase.STARTING: EventType.SERVER_STARTING,
    Phase.RUNNING: EventType.SERVER_RUNNING,
    Phase.STOPPING: EventType.SERVER_STOPPING,
    Phase.STOPPED: EventType.SERVER_STOPPED,
    Phase.ERROR: EventType.SERVER_ERROR,
}


def topic_for(event_type: EventType, prefix: str = "") -> str:
    """
    Build the topic name for an event type.

    Topics follow ``<category>.<event_type>``, optionally prefixed.

    Args:
        event_type: Event type
        prefix: Optional topic prefix (e.g. "hearth.")

    Returns:
        Topic name
    """
    category = EVENT_CATEGORIES[event_type]
    return f"{prefix}{category.value}.{event_type.value}"


def all_topics(prefix: str = "") -> list[str]:
    """List every topic an event may be published to."""
    return [topic_for(event_type, prefix) for event_type in EventType]


class ServerStateEvent(BaseModel):
    """Snapshot of a phase transition or player count change."""

    type: EventType
    server_id: str
    tenant_id: str
    namespace: str
    resource_name: str
    phase: Phase
    message: str = ""
    external_ip: Optional[str] = None
    external_port: Optional[int] = None
    player_count: Optional[int] = None
    ready_replicas: int = 0
    desired_replicas: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def category(self) -> EventCategory:
        """Topic category of this event."""
        return EVENT_CATEGORIES[self.type]

    @property
    def key(self) -> str:
        """Cache key of the resource this event describes."""
        return f"{self.namespace}/{self.resource_name}"

    def topic(self, prefix: str = "") -> str:
        """Topic this event is published to."""
        return topic_for(self.type, prefix)

    def to_wire(self) -> bytes:
        """Encode as JSON, omitting absent optional fields."""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_wire(cls, data: bytes) -> "ServerStateEvent":
        """Decode from JSON bytes."""
        return cls.model_validate_json(data)

"""Hearth common - phase model, event wire types and error taxonomy."""

from .errors import (
    BrokerUnavailableError,
    HearthError,
    PersistenceError,
    ReconcileError,
    TransientInfraError,
)
from .events import (
    EVENT_CATEGORIES,
    PHASE_EVENT_TYPES,
    EventCategory,
    EventType,
    ServerStateEvent,
    all_topics,
    topic_for,
)
from .phase import (
    NORMALIZED_STATUS,
    TRANSITIONING_PHASES,
    TRANSITIONS,
    Phase,
    ReplicaState,
    derive_phase,
    is_valid_transition,
    next_phase,
)

__version__ = "0.1.0"

__all__ = [
    # Phase
    "Phase",
    "ReplicaState",
    "TRANSITIONS",
    "TRANSITIONING_PHASES",
    "NORMALIZED_STATUS",
    "derive_phase",
    "next_phase",
    "is_valid_transition",
    # Events
    "ServerStateEvent",
    "EventCategory",
    "EventType",
    "EVENT_CATEGORIES",
    "PHASE_EVENT_TYPES",
    "topic_for",
    "all_topics",
    # Errors
    "HearthError",
    "TransientInfraError",
    "ReconcileError",
    "BrokerUnavailableError",
    "PersistenceError",
]

"""Server lifecycle phase and its transition table."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Coarse lifecycle state of a game server."""

    PENDING = "Pending"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"
    ERROR = "Error"


# Allowed transitions. Error is reachable from and can recover to any phase.
TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PENDING: frozenset({Phase.STARTING, Phase.STOPPED, Phase.ERROR}),
    Phase.STARTING: frozenset(
        {Phase.RUNNING, Phase.STOPPING, Phase.STOPPED, Phase.PENDING, Phase.ERROR}
    ),
    Phase.RUNNING: frozenset(
        {Phase.STARTING, Phase.STOPPING, Phase.STOPPED, Phase.PENDING, Phase.ERROR}
    ),
    Phase.STOPPING: frozenset({Phase.STOPPED, Phase.STARTING, Phase.PENDING, Phase.ERROR}),
    Phase.STOPPED: frozenset({Phase.STARTING, Phase.PENDING, Phase.ERROR}),
    Phase.ERROR: frozenset(
        {
            Phase.PENDING,
            Phase.STARTING,
            Phase.RUNNING,
            Phase.STOPPING,
            Phase.STOPPED,
        }
    ),
}

TRANSITIONING_PHASES = frozenset({Phase.PENDING, Phase.STARTING, Phase.STOPPING})

# Phase -> normalized status stored for clients
NORMALIZED_STATUS: dict[Phase, str] = {
    Phase.PENDING: "deploying",
    Phase.STARTING: "deploying",
    Phase.RUNNING: "running",
    Phase.STOPPING: "stopped",
    Phase.STOPPED: "stopped",
    Phase.ERROR: "failed",
}


@dataclass(frozen=True)
class ReplicaState:
    """Replica counts observed on the workload unit."""

    desired: int
    ready: int
    actual: int


def is_valid_transition(previous: Optional[Phase], current: Phase) -> bool:
    """
    Check a transition against the table.

    A workload without a previous phase may enter any phase, and staying in
    the same phase is always valid.
    """
    if previous is None or previous == current:
        return True
    return current in TRANSITIONS[previous]


def derive_phase(
    stopped: bool,
    replicas: ReplicaState,
    children_created: bool = False,
) -> tuple[Phase, str]:
    """
    Derive the phase of a workload from its observed children.

    Args:
        stopped: Whether the workload is requested to be stopped
        replicas: Replica counts observed on the workload unit
        children_created: Whether any child was created during this pass

    Returns:
        Tuple of (phase, human readable message)
    """
    if children_created:
        return Phase.PENDING, "Creating server resources"

    if stopped:
        if replicas.actual > 0 or replicas.ready > 0:
            return Phase.STOPPING, "Server is stopping"
        return Phase.STOPPED, "Server is stopped"

    if replicas.desired > 0 and replicas.ready == replicas.desired:
        return Phase.RUNNING, "Server is running and ready"

    return (
        Phase.STARTING,
        f"Server is starting ({replicas.ready}/{replicas.desired} replicas ready)",
    )


def next_phase(
    previous: Optional[Phase],
    stopped: bool,
    replicas: ReplicaState,
    children_created: bool = False,
) -> tuple[Phase, str]:
    """Derive the next phase and log transitions missing from the table."""
    phase, message = derive_phase(stopped, replicas, children_created)
    if not is_valid_transition(previous, phase):
        logger.warning(
            f"Unexpected phase transition {previous.value} -> {phase.value} "
            f"(stopped={stopped}, replicas={replicas})"
        )
    return phase, message

"""Read observed state off child objects."""

from typing import Any, Optional

from hearth_common import ReplicaState


def replica_state(stateful_set: Optional[Any], desired: int) -> ReplicaState:
    """
    Replica counts of a workload unit.

    Args:
        stateful_set: Observed V1StatefulSet, or None if it does not exist yet
        desired: Desired replica count from the workload spec

    Returns:
        ReplicaState
    """
    if stateful_set is None or stateful_set.status is None:
        return ReplicaState(desired=desired, ready=0, actual=0)

    status = stateful_set.status
    return ReplicaState(
        desired=desired,
        ready=status.ready_replicas or 0,
        actual=status.replicas or 0,
    )


def external_address(service: Optional[Any], game_port: int) -> tuple[Optional[str], Optional[int]]:
    """
    External address of the game endpoint.

    The host is the first LoadBalancer ingress IP, else its hostname. The
    port is the node port of the game port when one is assigned, else the
    game port itself.

    Returns:
        Tuple of (host or None, port or None when there is no service)
    """
    if service is None:
        return None, None

    host = None
    load_balancer = service.status.load_balancer if service.status else None
    ingress = (load_balancer.ingress if load_balancer else None) or []
    if ingress:
        host = ingress[0].ip or ingress[0].hostname

    port = game_port
    for service_port in (service.spec.ports if service.spec else None) or []:
        if service_port.name == "game" and service_port.node_port:
            port = service_port.node_port

    return host, port

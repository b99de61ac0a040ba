"""ServerWorkload reconciliation."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from hearth_common import (
    PHASE_EVENT_TYPES,
    TRANSITIONING_PHASES,
    EventType,
    HearthError,
    Phase,
    ServerStateEvent,
    TransientInfraError,
    next_phase,
)
from hearth_k8s import (
    BuildOptions,
    ChildResourceManager,
    EnsureResult,
    OwnerIndex,
    ServerWorkload,
    ServerWorkloadClient,
    ServerWorkloadStatus,
    build_children,
    classify,
    configured_max_players,
    decode_rcon_password,
    external_address,
    rcon_secret_name,
    replica_state,
    split_key,
)
from hearth_rcon import PlayerList, RconError

from . import metrics
from .config import Settings
from .events import EventPublisher
from .sessions import RconSessionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """What the controller should do with a key after a pass."""

    requeue_after: Optional[float] = None
    failed: bool = False  # requeue with backoff


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ServerWorkloadReconciler:
    """
    Converges one ServerWorkload per call.

    A pass never sleeps: waiting is expressed as a requeue delay in the
    returned ReconcileResult. Kubernetes calls run in worker threads.
    """

    def __init__(
        self,
        settings: Settings,
        workloads: ServerWorkloadClient,
        children: ChildResourceManager,
        publisher: EventPublisher,
        sessions: RconSessionRegistry,
        owner_index: Optional[OwnerIndex] = None,
    ):
        """
        Initialize reconciler.

        Args:
            settings: Application settings
            workloads: ServerWorkload client
            children: Child resource manager
            publisher: Event publisher (fire-and-forget)
            sessions: RCON session registry
            owner_index: Owner to children index (defaults to the manager's)
        """
        self.settings = settings
        self.workloads = workloads
        self.children = children
        self.publisher = publisher
        self.sessions = sessions
        self.owner_index = owner_index if owner_index is not None else children.owner_index
        self.build_options = BuildOptions(
            game_port=settings.game_port,
            control_port=settings.control_port,
            operator_pod_labels=dict(settings.operator_pod_labels),
            operator_namespace=settings.operator_namespace,
        )

    async def reconcile(self, key: str, failures: int = 0) -> ReconcileResult:
        """
        Run one reconcile pass.

        Args:
            key: ``namespace/name`` of the workload
            failures: Consecutive failed passes of this key so far

        Returns:
            ReconcileResult telling the controller when to come back
        """
        start = time.monotonic()
        try:
            result = await self._reconcile(key, failures)
        finally:
            metrics.reconcile_duration_seconds.observe(time.monotonic() - start)

        metrics.reconcile_total.labels(result="error" if result.failed else "success").inc()
        return result

    async def _reconcile(self, key: str, failures: int) -> ReconcileResult:
        namespace, name = split_key(key)

        try:
            workload = await asyncio.to_thread(self.workloads.get, namespace, name)
        except Exception as e:
            error = classify(e)
            logger.warning(f"Failed to fetch {key}: {error}")
            return ReconcileResult(failed=True)

        if workload is None:
            logger.info(f"{key} no longer exists, releasing its resources")
            await self._release(key)
            return ReconcileResult()

        if workload.is_deleting:
            return await self._finalize(workload)

        try:
            return await self._converge(workload)
        except Exception as e:
            return await self._handle_failure(workload, classify(e), failures)

    async def _release(self, key: str) -> None:
        await self.sessions.release(key)
        children = self.owner_index.forget(key)
        if children:
            logger.debug(f"Forgot {len(children)} children of {key}")

    async def _finalize(self, workload: ServerWorkload) -> ReconcileResult:
        """Release external resources, then let garbage collection take over."""
        logger.info(f"{workload.key} is being deleted")
        await self._release(workload.key)

        try:
            await asyncio.to_thread(self.workloads.remove_finalizer, workload)
        except Exception as e:
            logger.warning(f"Failed to remove finalizer from {workload.key}: {classify(e)}")
            return ReconcileResult(failed=True)
        return ReconcileResult()

    async def _converge(self, workload: ServerWorkload) -> ReconcileResult:
        await asyncio.to_thread(self.workloads.add_finalizer, workload)

        desired = build_children(workload, self.build_options)
        ensured = await asyncio.to_thread(self.children.ensure, workload, desired)

        replicas = replica_state(
            ensured.get("StatefulSet", workload.name), workload.spec.desired_replicas
        )
        previous = workload.status.phase
        phase, message = next_phase(
            previous, workload.spec.stopped, replicas, ensured.children_created
        )
        host, port = external_address(
            ensured.get("Service", workload.name), self.settings.game_port
        )

        current = workload.status
        player_count, players = 0, []
        max_players = configured_max_players(workload)
        if phase == Phase.RUNNING:
            player_list = await self._query_players(workload, ensured)
            if player_list is not None:
                player_count, players = player_list.online, player_list.players
                max_players = player_list.max
            elif previous == Phase.RUNNING:
                # Keep the last known counts
                player_count, players = current.player_count, list(current.players)
                max_players = current.max_players or max_players

        status = ServerWorkloadStatus(
            phase=phase,
            message=message,
            last_transition_time=(
                current.last_transition_time
                if phase == previous and current.last_transition_time
                else _now()
            ),
            external_ip=host,
            external_port=port,
            player_count=player_count,
            max_players=max_players,
            players=players,
            ready_replicas=replicas.ready,
            desired_replicas=replicas.desired,
            last_backup=current.last_backup,
            observed_generation=workload.metadata.generation,
        )

        if status != current:
            await asyncio.to_thread(self.workloads.patch_status, workload, status)

        if phase != previous:
            logger.info(
                f"{workload.key} phase {previous.value if previous else None} -> {phase.value}"
            )
            event_type = PHASE_EVENT_TYPES.get(phase)
            if event_type is not None:
                self._emit(event_type, workload, status)
        elif phase == Phase.RUNNING and player_count != current.player_count:
            self._emit(EventType.PLAYER_COUNT_UPDATED, workload, status)

        if phase in TRANSITIONING_PHASES:
            return ReconcileResult(requeue_after=self.settings.requeue_transitioning_seconds)
        return ReconcileResult(requeue_after=self.settings.requeue_stable_seconds)

    async def _query_players(
        self, workload: ServerWorkload, ensured: EnsureResult
    ) -> Optional[PlayerList]:
        """Ask the server who is online. Failures are logged and return None."""
        secret = ensured.get("Secret", rcon_secret_name(workload))
        password = decode_rcon_password(secret) if secret is not None else None
        if not password:
            logger.warning(f"No RCON password available for {workload.key}")
            metrics.rcon_queries_total.labels(result="no_secret").inc()
            return None

        host = self.settings.rcon_host_template.format(
            name=workload.name, namespace=workload.namespace
        )
        try:
            player_list = await self.sessions.list_players(
                workload.key, host, self.settings.control_port, password
            )
        except RconError as e:
            logger.warning(f"Player query for {workload.key} failed: {type(e).__name__}: {e}")
            metrics.rcon_queries_total.labels(result=type(e).__name__).inc()
            return None

        metrics.rcon_queries_total.labels(result="success").inc()
        return player_list

    async def _handle_failure(
        self, workload: ServerWorkload, error: HearthError, failures: int
    ) -> ReconcileResult:
        """
        Requeue with backoff; surface phase Error once retrying stops helping.

        Transient errors only set Error after ``error_threshold`` consecutive
        failures. Non-transient errors set it immediately.
        """
        attempts = failures + 1
        transient = isinstance(error, TransientInfraError)
        if transient and attempts < self.settings.error_threshold:
            logger.warning(
                f"Transient failure reconciling {workload.key} "
                f"({attempts}/{self.settings.error_threshold}): {error}"
            )
            return ReconcileResult(failed=True)

        logger.error(f"Reconciling {workload.key} failed: {error}")

        previous = workload.status.phase
        status = workload.status.model_copy(
            update={
                "phase": Phase.ERROR,
                "message": str(error),
                "last_transition_time": (
                    workload.status.last_transition_time
                    if previous == Phase.ERROR and workload.status.last_transition_time
                    else _now()
                ),
                "observed_generation": workload.metadata.generation,
            }
        )

        if status != workload.status:
            try:
                await asyncio.to_thread(self.workloads.patch_status, workload, status)
            except Exception as e:
                logger.warning(f"Failed to record Error status on {workload.key}: {classify(e)}")

        if previous != Phase.ERROR:
            self._emit(EventType.SERVER_ERROR, workload, status)

        return ReconcileResult(failed=True)

    def _emit(
        self, event_type: EventType, workload: ServerWorkload, status: ServerWorkloadStatus
    ) -> None:
        self.publisher.emit(
            ServerStateEvent(
                type=event_type,
                server_id=workload.spec.server_id,
                tenant_id=workload.spec.tenant_id,
                namespace=workload.namespace,
                resource_name=workload.name,
                phase=status.phase,
                message=status.message,
                external_ip=status.external_ip,
                external_port=status.external_port,
                player_count=status.player_count if status.phase == Phase.RUNNING else None,
                ready_replicas=status.ready_replicas,
                desired_replicas=status.desired_replicas,
            )
        )

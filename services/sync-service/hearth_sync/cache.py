"""In-memory cache of server state, keyed by ``namespace/name``."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from hearth_common import NORMALIZED_STATUS, Phase, ServerStateEvent
from hearth_k8s import ServerWorkload

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of one server as last seen by the sync service."""

    key: str
    server_id: str
    tenant_id: str
    namespace: str
    resource_name: str
    phase: Optional[Phase] = None
    message: str = ""
    external_ip: Optional[str] = None
    external_port: Optional[int] = None
    player_count: int = 0
    max_players: Optional[int] = None
    players: tuple[str, ...] = ()
    ready_replicas: int = 0
    desired_replicas: int = 0
    updated_at: datetime = field(default_factory=_now, compare=False)

    @property
    def status(self) -> str:
        """Normalized status stored for clients."""
        if self.phase is None:
            return NORMALIZED_STATUS[Phase.PENDING]
        return NORMALIZED_STATUS[self.phase]

    def differs(self, other: "CacheEntry") -> bool:
        """Whether a client-visible change happened: phase or player count."""
        return self.phase != other.phase or self.player_count != other.player_count

    @classmethod
    def from_workload(
        cls, workload: ServerWorkload, listed_at: Optional[datetime] = None
    ) -> "CacheEntry":
        """Build an entry from a listed workload's status, as of ``listed_at``."""
        status = workload.status
        return cls(
            key=workload.key,
            server_id=workload.spec.server_id,
            tenant_id=workload.spec.tenant_id,
            namespace=workload.namespace,
            resource_name=workload.name,
            phase=status.phase,
            message=status.message,
            external_ip=status.external_ip,
            external_port=status.external_port,
            player_count=status.player_count,
            max_players=status.max_players,
            players=tuple(status.players),
            ready_replicas=status.ready_replicas,
            desired_replicas=status.desired_replicas,
            updated_at=listed_at or _now(),
        )

    @classmethod
    def from_event(
        cls, event: ServerStateEvent, previous: Optional["CacheEntry"] = None
    ) -> "CacheEntry":
        """
        Build an entry from a state event.

        Events only carry a player count while Running; otherwise the count
        drops to 0. Player names and max players are not part of events and
        are carried over from the previous entry.
        """
        player_count = event.player_count if event.player_count is not None else 0
        players: tuple[str, ...] = ()
        if previous is not None and event.player_count is not None:
            if previous.player_count == player_count:
                players = previous.players

        return cls(
            key=event.key,
            server_id=event.server_id,
            tenant_id=event.tenant_id,
            namespace=event.namespace,
            resource_name=event.resource_name,
            phase=event.phase,
            message=event.message,
            external_ip=event.external_ip,
            external_port=event.external_port,
            player_count=player_count,
            max_players=previous.max_players if previous else None,
            players=players,
            ready_replicas=event.ready_replicas,
            desired_replicas=event.desired_replicas,
            updated_at=event.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation sent to clients."""
        return {
            "server_id": self.server_id,
            "tenant_id": self.tenant_id,
            "namespace": self.namespace,
            "resource_name": self.resource_name,
            "status": self.status,
            "phase": self.phase.value if self.phase else None,
            "message": self.message,
            "external_ip": self.external_ip,
            "external_port": self.external_port,
            "player_count": self.player_count,
            "max_players": self.max_players,
            "players": list(self.players),
            "ready_replicas": self.ready_replicas,
            "desired_replicas": self.desired_replicas,
            "updated_at": self.updated_at.isoformat(),
        }


class ChangeType(str, Enum):
    """Kind of cache change."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class CacheChange:
    """One change to the cache. ``entry`` is the removed entry for deletions."""

    type: ChangeType
    entry: CacheEntry
    previous: Optional[CacheEntry] = None

    @property
    def key(self) -> str:
        return self.entry.key

    @property
    def tenant_id(self) -> str:
        return self.entry.tenant_id


CacheCallback = Callable[[CacheChange], None]


class ServerCache:
    """
    Copy-on-write cache of server entries.

    Every mutation builds a new mapping and swaps it in, so a reader holding
    ``snapshot()`` always sees a complete state. Only one task may mutate the
    cache. Callbacks run synchronously, in registration order, after each
    mutation; a failing callback is logged and does not stop the others.
    """

    def __init__(self):
        self._entries: Mapping[str, CacheEntry] = MappingProxyType({})
        self._callbacks: list[CacheCallback] = []

    def register_callback(self, callback: CacheCallback) -> Callable[[], None]:
        """
        Register a change callback.

        Returns:
            A function that unregisters the callback
        """
        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    def snapshot(self) -> Mapping[str, CacheEntry]:
        """Immutable view of the current entries."""
        return self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def find(self, server_id: str, tenant_id: Optional[str] = None) -> Optional[CacheEntry]:
        """Look up an entry by server id, optionally restricted to a tenant."""
        for entry in self._entries.values():
            if entry.server_id == server_id and (tenant_id is None or entry.tenant_id == tenant_id):
                return entry
        return None

    def for_tenant(self, tenant_id: str) -> list[CacheEntry]:
        """Entries of one tenant, ordered by key."""
        return sorted(
            (e for e in self._entries.values() if e.tenant_id == tenant_id),
            key=lambda e: e.key,
        )

    def put(self, entry: CacheEntry) -> Optional[CacheChange]:
        """
        Store an entry.

        Returns:
            The change, or None when neither phase nor player count changed.
            The entry is stored either way.
        """
        previous = self._entries.get(entry.key)
        if previous is None:
            change: Optional[CacheChange] = CacheChange(ChangeType.ADDED, entry)
        elif entry.differs(previous):
            change = CacheChange(ChangeType.MODIFIED, entry, previous)
        else:
            change = None

        entries = dict(self._entries)
        entries[entry.key] = entry
        self._commit(entries, [change] if change else [])
        return change

    def remove(self, key: str) -> Optional[CacheChange]:
        """Remove an entry. Returns the deletion, or None if absent."""
        previous = self._entries.get(key)
        if previous is None:
            return None

        entries = dict(self._entries)
        del entries[key]
        change = CacheChange(ChangeType.DELETED, previous, previous)
        self._commit(entries, [change])
        return change

    def replace(self, entries: Mapping[str, CacheEntry], changes: list[CacheChange]) -> None:
        """
        Swap in a full listing and announce the given changes.

        Args:
            entries: The complete new contents
            changes: Changes between the old and new contents
        """
        self._commit(dict(entries), changes)

    def _commit(self, entries: dict[str, CacheEntry], changes: list[CacheChange]) -> None:
        self._entries = MappingProxyType(entries)
        for change in changes:
            for callback in list(self._callbacks):
                try:
                    callback(change)
                except Exception as e:
                    logger.error(f"Error in cache callback: {e}", exc_info=True)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

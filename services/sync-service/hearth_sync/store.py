"""Persistent store of normalized server status."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, delete, select
from sqlalchemy.exc import SQLAlchemyError

from hearth_common import PersistenceError

from .cache import CacheEntry
from .database import Base, Database

logger = logging.getLogger(__name__)


class ServerStatusRecord(Base):
    """Normalized status row of one server."""

    __tablename__ = "server_status"

    server_id = Column(String(255), primary_key=True)
    tenant_id = Column(String(255), primary_key=True)
    namespace = Column(String(255), nullable=False)
    resource_name = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False)  # running, deploying, stopped, failed
    phase = Column(String(50))
    message = Column(Text, default="", nullable=False)
    external_ip = Column(String(255))
    external_port = Column(Integer)
    player_count = Column(Integer, default=0, nullable=False)
    max_players = Column(Integer)
    players = Column(JSON, default=list, nullable=False)
    ready_replicas = Column(Integer, default=0, nullable=False)
    desired_replicas = Column(Integer, default=0, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "ServerStatusRecord":
        return cls(
            server_id=entry.server_id,
            tenant_id=entry.tenant_id,
            namespace=entry.namespace,
            resource_name=entry.resource_name,
            status=entry.status,
            phase=entry.phase.value if entry.phase else None,
            message=entry.message,
            external_ip=entry.external_ip,
            external_port=entry.external_port,
            player_count=entry.player_count,
            max_players=entry.max_players,
            players=list(entry.players),
            ready_replicas=entry.ready_replicas,
            desired_replicas=entry.desired_replicas,
            updated_at=entry.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation, shaped like a cache entry's."""
        return {
            "server_id": self.server_id,
            "tenant_id": self.tenant_id,
            "namespace": self.namespace,
            "resource_name": self.resource_name,
            "status": self.status,
            "phase": self.phase,
            "message": self.message,
            "external_ip": self.external_ip,
            "external_port": self.external_port,
            "player_count": self.player_count,
            "max_players": self.max_players,
            "players": list(self.players or []),
            "ready_replicas": self.ready_replicas,
            "desired_replicas": self.desired_replicas,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ServerStatusRecord(server_id={self.server_id}, status={self.status})>"


class StatusStore:
    """
    Upserts and reads server status rows.

    Every database failure is raised as PersistenceError.
    """

    def __init__(self, database: Database):
        """
        Initialize status store.

        Args:
            database: Database to write to
        """
        self.database = database

    async def upsert(self, entry: CacheEntry) -> None:
        """Insert or update the row of a server."""
        try:
            async with self.database.session() as session:
                await session.merge(ServerStatusRecord.from_entry(entry))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store status of {entry.server_id}: {e}") from e

    async def delete(self, server_id: str, tenant_id: str) -> None:
        """Delete the row of a server, if present."""
        try:
            async with self.database.session() as session:
                await session.execute(
                    delete(ServerStatusRecord).where(
                        ServerStatusRecord.server_id == server_id,
                        ServerStatusRecord.tenant_id == tenant_id,
                    )
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete status of {server_id}: {e}") from e

    async def list_all(self, tenant_id: Optional[str] = None) -> list[ServerStatusRecord]:
        """List stored rows, optionally of one tenant only."""
        query = select(ServerStatusRecord).order_by(
            ServerStatusRecord.tenant_id, ServerStatusRecord.server_id
        )
        if tenant_id is not None:
            query = query.where(ServerStatusRecord.tenant_id == tenant_id)

        try:
            async with self.database.session() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list server status: {e}") from e

    async def get(
        self, server_id: str, tenant_id: Optional[str] = None
    ) -> Optional[ServerStatusRecord]:
        """
        Get the row of a server by id.

        Args:
            server_id: Server id
            tenant_id: Restrict to this tenant

        Returns:
            The row or None
        """
        query = select(ServerStatusRecord).where(ServerStatusRecord.server_id == server_id)
        if tenant_id is not None:
            query = query.where(ServerStatusRecord.tenant_id == tenant_id)

        try:
            async with self.database.session() as session:
                result = await session.execute(query.limit(1))
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read status of {server_id}: {e}") from e

"""Registry of open remote-console sessions, one per workload."""

import logging

from hearth_rcon import PlayerList, RconClient, RconError

logger = logging.getLogger(__name__)


class RconSessionRegistry:
    """
    Keeps one authenticated RCON session per workload key.

    A session is reused across reconcile passes while it works, dropped on
    any failure and released when its workload is deleted. Only one worker
    reconciles a key at a time, so a session is never used concurrently.
    """

    def __init__(self, connect_timeout: float = 5.0, command_timeout: float = 10.0):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._sessions: dict[str, RconClient] = {}

    async def list_players(self, key: str, host: str, port: int, password: str) -> PlayerList:
        """
        Query the players of a workload's server.

        Args:
            key: Workload key
            host: Control endpoint host
            port: Control endpoint port
            password: Per-instance RCON password

        Returns:
            Parsed player list

        Raises:
            RconError: On connect, auth, timeout or parse failure
        """
        client = await self._session(key, host, port, password)
        try:
            return await client.list_players()
        except RconError:
            await self.release(key)
            raise

    async def _session(self, key: str, host: str, port: int, password: str) -> RconClient:
        client = self._sessions.get(key)
        if client is not None:
            if client.connected and client.targets(host, port, password):
                return client
            await self.release(key)

        client = RconClient(
            host,
            port,
            password,
            connect_timeout=self.connect_timeout,
            command_timeout=self.command_timeout,
        )
        await client.connect()
        self._sessions[key] = client
        return client

    async def release(self, key: str) -> None:
        """Close and forget the session of a workload, if any."""
        client = self._sessions.pop(key, None)
        if client is not None:
            await client.close()
            logger.debug(f"Released RCON session for {key}")

    async def close_all(self) -> None:
        """Close every open session."""
        keys = list(self._sessions)
        for key in keys:
            await self.release(key)
        if keys:
            logger.info(f"Closed {len(keys)} RCON sessions")

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

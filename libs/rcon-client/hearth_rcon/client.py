"""Async remote-console client."""

import asyncio
import logging
from typing import Optional

from .exceptions import AuthenticationError, ConnectError, RconError, RconTimeoutError
from .players import PlayerList, parse_player_list
from .protocol import (
    AUTH_FAILED_ID,
    TYPE_AUTH,
    TYPE_COMMAND,
    TYPE_RESPONSE,
    Frame,
    encode_frame,
    read_frame,
)

logger = logging.getLogger(__name__)


class RconClient:
    """
    Short-lived authenticated session to a server's control port.

    Each connect/auth and each command runs under its own deadline, so a hung
    server can never block the caller for longer than those timeouts.

    Example:
        >>> async with RconClient("10.0.0.5", 25575, "secret") as rcon:
        ...     players = await rcon.list_players()
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        connect_timeout: float = 5.0,
        command_timeout: float = 10.0,
    ):
        """
        Initialize client.

        Args:
            host: Control endpoint host
            port: Control endpoint port
            password: Remote-console password
            connect_timeout: Deadline for TCP connect plus authentication
            command_timeout: Deadline for each command round trip
        """
        self.host = host
        self.port = port
        self._password = password
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._next_id = 1
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        """Whether an authenticated connection is open."""
        return self._writer is not None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def targets(self, host: str, port: int, password: str) -> bool:
        """Whether this client was created for the given endpoint and password."""
        return (self.host, self.port, self._password) == (host, port, password)

    async def connect(self) -> None:
        """
        Open the connection and authenticate.

        Raises:
            ConnectError: If the connection could not be opened
            AuthenticationError: If the password was rejected
            RconTimeoutError: If connect plus auth exceeded the deadline
        """
        if self.connected:
            return

        try:
            await asyncio.wait_for(self._connect_and_auth(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise RconTimeoutError(
                f"Connecting to {self.address} timed out after {self.connect_timeout}s"
            ) from e
        except RconError:
            await self.close()
            raise
        except OSError as e:
            await self.close()
            raise ConnectError(f"Failed to connect to {self.address}: {e}") from e

        logger.debug(f"Authenticated to {self.address}")

    async def _connect_and_auth(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(self.host, self.port)

        request_id = await self._send(TYPE_AUTH, self._password)
        frame = await read_frame(self._reader)

        # Some servers send an empty RESPONSE frame ahead of the auth result
        if frame.type == TYPE_RESPONSE and not frame.payload and frame.request_id == request_id:
            frame = await read_frame(self._reader)

        if frame.request_id == AUTH_FAILED_ID:
            raise AuthenticationError(f"Authentication to {self.address} failed")

    async def _send(self, frame_type: int, payload: str) -> int:
        request_id = self._next_id
        self._next_id += 1

        self._writer.write(encode_frame(request_id, frame_type, payload))
        await self._writer.drain()
        return request_id

    async def command(self, text: str) -> str:
        """
        Execute a command and return its response text.

        Args:
            text: Command line, without a leading slash

        Returns:
            Response payload

        Raises:
            ConnectError: If not connected or the connection dropped
            RconTimeoutError: If the round trip exceeded the deadline
            ParseError: If the response frame was malformed
        """
        if not self.connected:
            raise ConnectError(f"Not connected to {self.address}")

        async with self._lock:
            try:
                frame = await asyncio.wait_for(
                    self._round_trip(text), timeout=self.command_timeout
                )
            except asyncio.TimeoutError as e:
                # The stream is out of sync once a response is abandoned
                await self.close()
                raise RconTimeoutError(
                    f"Command {text!r} on {self.address} timed out "
                    f"after {self.command_timeout}s"
                ) from e
            except RconError:
                await self.close()
                raise
            except OSError as e:
                await self.close()
                raise ConnectError(f"Connection to {self.address} lost: {e}") from e

        return frame.payload

    async def _round_trip(self, text: str) -> Frame:
        await self._send(TYPE_COMMAND, text)
        return await read_frame(self._reader)

    async def list_players(self) -> PlayerList:
        """
        Query the connected players.

        Raises:
            RconError: On any connection, timeout or parse failure
        """
        response = await self.command("list")
        return parse_player_list(response)

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        writer = self._writer
        self._writer = None
        self._reader = None

        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection to {self.address}: {e}")

    async def __aenter__(self) -> "RconClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

"""Pytest fixtures for RCON client tests."""

import asyncio
import struct

import pytest

from hearth_rcon.protocol import TYPE_AUTH, TYPE_AUTH_RESPONSE, TYPE_RESPONSE, encode_frame


class FakeRconServer:
    """In-process remote-console server speaking the real wire format."""

    def __init__(self, password: str = "secret"):
        self.password = password
        self.responses = {"list": "There are 2 of a max of 20 players online: Alice, Bob"}
        self.source_style = False
        self.hang_on_command = False
        self.raw_reply: bytes = b""
        self.received: list[tuple[int, int, str]] = []
        self.port = 0
        self._server = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            while True:
                (length,) = struct.unpack("<i", await reader.readexactly(4))
                data = await reader.readexactly(length)
                request_id, frame_type = struct.unpack_from("<ii", data)
                payload = data[8:-2].decode()
                self.received.append((request_id, frame_type, payload))

                if frame_type == TYPE_AUTH:
                    if self.source_style:
                        writer.write(encode_frame(request_id, TYPE_RESPONSE, ""))
                    reply_id = request_id if payload == self.password else -1
                    writer.write(encode_frame(reply_id, TYPE_AUTH_RESPONSE, ""))
                elif self.hang_on_command:
                    # Never answer; wait for the client to give up
                    await reader.read()
                    return
                elif self.raw_reply:
                    writer.write(self.raw_reply)
                else:
                    reply = self.responses.get(payload, f"Unknown command: {payload}")
                    writer.write(encode_frame(request_id, TYPE_RESPONSE, reply))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


@pytest.fixture
async def rcon_server():
    """Running fake RCON server."""
    server = FakeRconServer()
    await server.start()
    yield server
    await server.stop()

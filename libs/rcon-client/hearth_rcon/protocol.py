"""
Frame codec for the remote-console protocol.

A frame on the wire is::

    int32 length | int32 request_id | int32 type | payload | 0x00 0x00

All integers are little-endian. ``length`` counts every byte after itself,
so it equals ``10 + len(payload)``.
"""

import asyncio
import struct
from dataclasses import dataclass

from .exceptions import ConnectError, ParseError

HEADER = struct.Struct("<iii")
LENGTH = struct.Struct("<i")

TYPE_RESPONSE = 0
TYPE_COMMAND = 2
TYPE_AUTH_RESPONSE = 2
TYPE_AUTH = 3

AUTH_FAILED_ID = -1

MIN_FRAME_LENGTH = 10
MAX_FRAME_LENGTH = 1024 * 1024

ENCODING = "utf-8"


@dataclass
class Frame:
    """A decoded protocol frame."""

    request_id: int
    type: int
    payload: str


def encode_frame(request_id: int, frame_type: int, payload: str) -> bytes:
    """
    Encode a frame for sending.

    Args:
        request_id: Request identifier echoed back by the server
        frame_type: Frame type (AUTH, COMMAND)
        payload: Text payload

    Returns:
        Encoded frame bytes
    """
    body = payload.encode(ENCODING)
    length = MIN_FRAME_LENGTH + len(body)
    return HEADER.pack(length, request_id, frame_type) + body + b"\x00\x00"


def decode_body(length: int, data: bytes) -> Frame:
    """
    Decode the bytes following the length prefix.

    Args:
        length: Value of the length prefix
        data: Exactly ``length`` bytes read after the prefix

    Returns:
        Decoded frame

    Raises:
        ParseError: If the length is out of bounds or the frame is malformed
    """
    if length < MIN_FRAME_LENGTH or length > MAX_FRAME_LENGTH:
        raise ParseError(f"Frame length {length} out of bounds")
    if len(data) != length:
        raise ParseError(f"Expected {length} bytes, got {len(data)}")

    request_id, frame_type = struct.unpack_from("<ii", data)
    body = data[8:-2]
    if data[-2:] != b"\x00\x00":
        raise ParseError("Frame is missing its null terminator")

    try:
        payload = body.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise ParseError(f"Invalid payload encoding: {e}") from e

    return Frame(request_id=request_id, type=frame_type, payload=payload)


async def read_frame(reader: asyncio.StreamReader) -> Frame:
    """
    Read one frame from a stream.

    Raises:
        ConnectError: If the connection closed mid-frame
        ParseError: If the frame is malformed
    """
    try:
        prefix = await reader.readexactly(LENGTH.size)
        (length,) = LENGTH.unpack(prefix)
        if length < MIN_FRAME_LENGTH or length > MAX_FRAME_LENGTH:
            raise ParseError(f"Frame length {length} out of bounds")
        data = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ConnectError("Connection closed while reading frame") from e

    return decode_body(length, data)

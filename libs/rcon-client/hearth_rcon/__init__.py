"""Hearth RCON - async remote-console protocol client."""

from .client import RconClient
from .exceptions import (
    AuthenticationError,
    ConnectError,
    ParseError,
    RconError,
    RconTimeoutError,
)
from .players import PlayerList, parse_player_list
from .protocol import (
    MAX_FRAME_LENGTH,
    TYPE_AUTH,
    TYPE_COMMAND,
    TYPE_RESPONSE,
    Frame,
    decode_body,
    encode_frame,
    read_frame,
)

__version__ = "0.1.0"

__all__ = [
    # Client
    "RconClient",
    # Players
    "PlayerList",
    "parse_player_list",
    # Protocol
    "Frame",
    "encode_frame",
    "decode_body",
    "read_frame",
    "TYPE_AUTH",
    "TYPE_COMMAND",
    "TYPE_RESPONSE",
    "MAX_FRAME_LENGTH",
    # Exceptions
    "RconError",
    "ConnectError",
    "AuthenticationError",
    "RconTimeoutError",
    "ParseError",
]

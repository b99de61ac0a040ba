"""Parsing of the ``list`` command response."""

import re
from dataclasses import dataclass, field

from .exceptions import ParseError

PLAYER_LIST_PATTERN = re.compile(
    r"There are (\d+) of a max(?: of)? (\d+) players online:?(.*)",
    re.DOTALL,
)


@dataclass
class PlayerList:
    """Players currently connected to a server."""

    online: int
    max: int
    players: list[str] = field(default_factory=list)


def parse_player_list(text: str) -> PlayerList:
    """
    Parse the response of the ``list`` command.

    Example:
        >>> parse_player_list("There are 2 of a max of 20 players online: Alice, Bob")
        PlayerList(online=2, max=20, players=['Alice', 'Bob'])

    Args:
        text: Raw response text

    Returns:
        Parsed player list

    Raises:
        ParseError: If the text does not look like a player list
    """
    match = PLAYER_LIST_PATTERN.search(text)
    if not match:
        raise ParseError(f"Could not parse player list: {text!r}")

    names = [name.strip() for name in match.group(3).split(",")]

    return PlayerList(
        online=int(match.group(1)),
        max=int(match.group(2)),
        players=[name for name in names if name],
    )

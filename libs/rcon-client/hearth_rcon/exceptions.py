"""Exceptions raised by the remote-console client."""


class RconError(Exception):
    """Base exception for remote-console failures."""


class ConnectError(RconError):
    """The TCP connection could not be opened or was lost."""


class AuthenticationError(RconError):
    """The server rejected the password."""


class RconTimeoutError(RconError, TimeoutError):
    """A connect, auth or command deadline expired."""


class ParseError(RconError):
    """A frame or a command response could not be parsed."""

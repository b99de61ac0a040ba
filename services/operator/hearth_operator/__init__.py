"""Hearth operator - converges ServerWorkload resources to game servers."""

__version__ = "0.1.0"

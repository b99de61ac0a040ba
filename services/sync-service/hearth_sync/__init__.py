"""Hearth sync service - keeps the status store and live clients in step with the cluster."""

__version__ = "0.1.0"

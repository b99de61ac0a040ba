"""Error taxonomy shared by the operator and the sync service."""

from typing import Optional


class HearthError(Exception):
    """Base class for Hearth errors."""


class TransientInfraError(HearthError):
    """
    A platform call failed in a way that is expected to clear on its own.

    Reconciliation is requeued with backoff and the workload phase is left
    untouched until the failure repeats past the error threshold.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ReconcileError(HearthError):
    """A non-transient reconcile failure, surfaced to users as phase Error."""


class BrokerUnavailableError(HearthError):
    """The event broker could not be reached."""


class PersistenceError(HearthError):
    """A write to or read from the status store failed."""

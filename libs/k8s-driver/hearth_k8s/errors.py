"""Classification of Kubernetes API failures."""

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from hearth_common import HearthError, ReconcileError, TransientInfraError

TRANSIENT_STATUSES = frozenset({409, 429})


def is_transient(error: BaseException) -> bool:
    """
    Check whether an API failure is worth retrying.

    Connection failures, conflicts (409), throttling (429) and server
    errors (5xx) are transient. Everything else needs a spec or cluster change.
    """
    if isinstance(error, TransientInfraError):
        return True
    if isinstance(error, ApiException):
        # status 0 means no HTTP response was received
        status = error.status or 0
        return status == 0 or status in TRANSIENT_STATUSES or status >= 500
    return isinstance(error, (Urllib3HTTPError, ConnectionError, TimeoutError))


def classify(error: BaseException) -> HearthError:
    """
    Map an API failure to the error taxonomy.

    Args:
        error: Exception raised by a Kubernetes call

    Returns:
        TransientInfraError or ReconcileError wrapping the cause
    """
    if isinstance(error, HearthError):
        return error

    status = getattr(error, "status", None)
    reason = getattr(error, "reason", None) or str(error) or type(error).__name__
    message = f"Kubernetes API error ({status}): {reason}" if status else reason

    if is_transient(error):
        return TransientInfraError(message, status=status)
    return ReconcileError(message)

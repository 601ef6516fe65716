"""
Error taxonomy for RabbitmqCluster reconciliation.

Permanent errors are surfaced as a ReconcileSuccess=False condition right
away and are not retried until something changes. Retryable errors go back
to the work queue with backoff.
"""
from typing import Optional

import kopf
import urllib3
from kubernetes import client


class InvalidSpec(kopf.PermanentError):
    reason = "InvalidSpec"


class OwnershipConflict(kopf.PermanentError):
    reason = "OwnershipConflict"


class ImmutableFieldConflict(kopf.PermanentError):
    reason = "ImmutableFieldConflict"


class Retryable(kopf.TemporaryError):
    def __init__(self, message: str, reason: str = "ApiError", delay: float = 1.0) -> None:
        super().__init__(message, delay=delay)
        self.reason = reason


class ProbeFailure(Exception):
    reason = "ProbeFailed"


def api_error(exc: Exception, action: str) -> kopf.PermanentError | Retryable:
    """
    Translate a Kubernetes client failure into the reconcile error taxonomy.

    Args:
        exc: An ApiException or a urllib3 transport error
        action: Short description of what was attempted, used in the message

    Returns:
        InvalidSpec for requests the API server rejected as invalid,
        Retryable for everything else.
    """
    if isinstance(exc, client.ApiException):
        status: Optional[int] = exc.status
        detail = f"{action} failed: {status} {exc.reason}"
        if status == 422:
            return InvalidSpec(detail)
        if status == 409:
            return Retryable(detail, reason="VersionConflict")
        if status in (429, 500, 502, 503, 504):
            return Retryable(detail, reason="ApiUnavailable")
        return Retryable(detail, reason="ApiError")

    if isinstance(exc, (urllib3.exceptions.TimeoutError, TimeoutError)):
        return Retryable(f"{action} timed out: {exc}", reason="Timeout")
    return Retryable(f"{action} failed: {exc}", reason="ApiUnavailable")

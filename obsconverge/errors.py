"""
Error classes for obsconverge reconciliation.

These error types let the scheduler apply one backoff policy to every stage:
- NotFoundError: Object is absent (expected on delete/cleanup, treated as success)
- ConflictError: Concurrent mutation detected (retried inside the applier)
- TransientError: Safe to retry the whole tick later (network, timeout, deadline)
- PermanentError: Do not retry quickly (malformed spec, irrecoverable store error)

Stages raise these errors. Stage.run_reconcile catches at the boundary and
records the classification on the StageResult.
"""

from enum import Enum
from typing import Optional


class ObsConvergeError(Exception):
    """Base exception for obsconverge."""
    pass


class NotFoundError(ObsConvergeError):
    """
    The addressed object does not exist in the store.

    Deletes and cleanups swallow this error: an absent object is the
    desired end state.
    """

    def __init__(self, message: str, identity=None):
        super().__init__(message)
        self.identity = identity


class ConflictError(ObsConvergeError):
    """
    The store rejected a write because of concurrent mutation.

    Reasons:
    - already_exists: create() raced with another writer
    - stale_token: update() carried an outdated resource version
    """

    ALREADY_EXISTS = "already_exists"
    STALE_TOKEN = "stale_token"

    def __init__(self, message: str, reason: str = STALE_TOKEN, identity=None):
        super().__init__(message)
        self.reason = reason
        self.identity = identity


class TransientError(ObsConvergeError):
    """
    Transient error - safe to retry on a later tick.

    Examples:
    - Network timeout
    - API server temporarily unavailable
    - Tick deadline exceeded
    - Throttling (429)
    """
    pass


class PermanentError(ObsConvergeError):
    """
    Permanent error - requires operator intervention.

    Examples:
    - Malformed desired specification
    - Forbidden (403) or invalid request (422)
    - Unknown resource kind
    """
    pass


class ErrorClass(str, Enum):
    """Classification used by the scheduler's requeue policy."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify_error(error: Optional[BaseException]) -> Optional[ErrorClass]:
    """
    Classify an exception into the reconciliation error taxonomy.

    Builtin TimeoutError and ConnectionError are transient. Anything not
    explicitly classified is fatal so that unknown failures back off
    instead of retry-storming.

    Args:
        error: The exception raised by a stage, or None

    Returns:
        The ErrorClass, or None when there is no error
    """
    if error is None:
        return None
    if isinstance(error, NotFoundError):
        return ErrorClass.NOT_FOUND
    if isinstance(error, ConflictError):
        return ErrorClass.CONFLICT
    if isinstance(error, (TransientError, TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT
    return ErrorClass.FATAL

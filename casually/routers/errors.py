"""Translation of task-core exceptions into HTTP errors.

Every router wraps its manager call in ``try``/``except TaskError`` (plus
``ValueError`` for bad input) and re-raises the result of ``to_http_exception``
with ``from exc`` so the original traceback is preserved in the logs.
"""

import logging

from fastapi import HTTPException

from casually.services.task_store import StorageError
from casually.state_machine import (
    CompletedBlockerError,
    CyclicDependencyError,
    InvalidTransitionError,
    NotFoundError,
    ProtectedTaskError,
)

logger = logging.getLogger(__name__)

# Requests the state machine or the blocker graph refuse are the client's
# mistake, like any other invalid input.
_REJECTED = (InvalidTransitionError, CyclicDependencyError, CompletedBlockerError)


def to_http_exception(exc: Exception) -> HTTPException:
    """Map a task-core exception to the ``HTTPException`` a client should see.

    Args:
        exc: Exception raised by the ``TaskManager``.

    Returns:
        An ``HTTPException`` carrying the status code and the exception message.
    """
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, _REJECTED):
        logger.warning("Rejected request: %s", exc)
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ProtectedTaskError):
        logger.warning("Rejected request: %s", exc)
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StorageError):
        return HTTPException(status_code=500, detail="Task storage is unavailable")
    logger.error("Unexpected task error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))

"""Health-check endpoint.

Reports service status and whether the SQLite database answers queries.  This
is the first endpoint a client should hit to verify connectivity.
"""

import logging

from fastapi import APIRouter, HTTPException

from casually.models import HealthResponse
from casually.services.task_manager import TaskManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_task_manager: TaskManager | None = None


def set_task_manager(manager: TaskManager) -> None:
    """Wire the shared ``TaskManager`` into this router module.

    Args:
        manager: The application-wide ``TaskManager`` instance.
    """
    global _task_manager
    _task_manager = manager


def _get_manager() -> TaskManager:
    if _task_manager is None:
        raise HTTPException(status_code=503, detail="TaskManager not initialised")
    return _task_manager


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Return service health and database reachability.

    Returns:
        A ``HealthResponse`` with status ``ok`` when the database answers a
        trivial query, ``degraded`` otherwise.
    """
    manager = _get_manager()
    reachable = manager.store.ping()
    if not reachable:
        logger.warning("Database %s is not reachable", manager.store.db_path)

    status = "ok" if reachable else "degraded"
    return HealthResponse(status=status, database=str(manager.store.db_path), database_reachable=reachable)

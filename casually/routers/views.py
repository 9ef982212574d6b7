"""Cross-kind views: everything that is blocked, and the archive of finished work."""

import logging

from fastapi import APIRouter, HTTPException

from casually.models import TaskOverview
from casually.routers.errors import to_http_exception
from casually.services.task_manager import TaskManager
from casually.state_machine import TaskError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["views"])

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


@router.get("/blocked", response_model=TaskOverview)
def list_blocked() -> TaskOverview:
    """Return every BLOCKED project, subtask and routine."""
    manager = _get_manager()
    try:
        return manager.list_blocked()
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/archive", response_model=TaskOverview)
def list_archive() -> TaskOverview:
    """Return every DONE project, subtask and routine."""
    manager = _get_manager()
    try:
        return manager.list_done()
    except TaskError as exc:
        raise to_http_exception(exc) from exc

"""Routine section endpoints.

Sections are named groups of routines.  Deleting a section keeps its routines
and leaves them ungrouped.
"""

import logging

from fastapi import APIRouter, HTTPException

from casually.models import CreateSectionRequest, DeleteResponse, RoutineSection, UpdateSectionRequest
from casually.routers.errors import to_http_exception
from casually.services.task_manager import TaskManager
from casually.state_machine import TaskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routine-sections", tags=["routine-sections"])

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


@router.get("", response_model=list[RoutineSection])
def list_sections() -> list[RoutineSection]:
    manager = _get_manager()
    try:
        return manager.list_sections()
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=RoutineSection, status_code=201)
def create_section(request: CreateSectionRequest) -> RoutineSection:
    """Create a routine section.

    Raises:
        HTTPException: 400 if the name is blank.
    """
    manager = _get_manager()
    try:
        return manager.create_section(request.name, order=request.order)
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{section_id}", response_model=RoutineSection)
def update_section(section_id: str, request: UpdateSectionRequest) -> RoutineSection:
    manager = _get_manager()
    try:
        return manager.update_section(section_id, name=request.name, order=request.order)
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{section_id}", response_model=DeleteResponse)
def delete_section(section_id: str) -> DeleteResponse:
    """Delete a section.  Its routines stay and become ungrouped."""
    manager = _get_manager()
    try:
        manager.delete_section(section_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return DeleteResponse()

"""Routine endpoints.

Routines are recurring tasks, optionally grouped into routine sections.  They
share the state machine and blocker graph with the other task kinds, but a
routine can only be blocked by another routine.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query

from casually.models import (
    AddBlockerRequest,
    CreateRoutineRequest,
    DeleteResponse,
    Interval,
    NextStatesResponse,
    Routine,
    StateChangeRequest,
    TaskKind,
    TaskState,
    UpdateRoutineRequest,
)
from casually.routers.errors import to_http_exception
from casually.services.task_manager import TaskManager
from casually.state_machine import TaskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routines", tags=["routines"])

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


@router.get("", response_model=list[Routine])
def list_routines(
    section_id: Annotated[str | None, Query(description="Only routines in this section")] = None,
    state: Annotated[TaskState | None, Query(description="Only routines in this state")] = None,
    interval: Annotated[Interval | None, Query(description="Only routines with this interval")] = None,
) -> list[Routine]:
    """List routines in display order, optionally filtered."""
    manager = _get_manager()
    try:
        return manager.list_routines(section_id=section_id, state=state, interval=interval)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=Routine, status_code=201)
def create_routine(request: CreateRoutineRequest) -> Routine:
    """Create a routine.  New routines start ACTIVE.

    Raises:
        HTTPException: 404 if the section does not exist, 400 if the title is
            blank.
    """
    manager = _get_manager()
    try:
        return manager.create_routine(
            request.title,
            request.priority,
            section_id=request.section_id,
            interval=request.interval,
            custom_interval=request.custom_interval,
            description=request.description,
            emoji=request.emoji,
            order=request.order,
        )
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.get("/{routine_id}", response_model=Routine)
def get_routine(routine_id: str) -> Routine:
    manager = _get_manager()
    try:
        return manager.get_routine(routine_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{routine_id}", response_model=Routine)
def update_routine(routine_id: str, request: UpdateRoutineRequest) -> Routine:
    """Edit descriptive fields, including the routine's section.

    Sending ``section_id: null`` ungroups the routine; leaving it out keeps the
    current section.
    """
    manager = _get_manager()
    try:
        return manager.update_routine(routine_id, **request.model_dump(exclude_unset=True))
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{routine_id}", response_model=DeleteResponse)
def delete_routine(routine_id: str) -> DeleteResponse:
    manager = _get_manager()
    try:
        manager.delete_routine(routine_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return DeleteResponse()


@router.patch("/{routine_id}/state", response_model=Routine)
def change_routine_state(routine_id: str, request: StateChangeRequest) -> Routine:
    """Request a state change for a routine.

    Raises:
        HTTPException: 404 if the routine does not exist, 400 if the transition
            is illegal.
    """
    manager = _get_manager()
    try:
        return manager.change_state(TaskKind.ROUTINE, routine_id, request.state)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{routine_id}/next-states", response_model=NextStatesResponse)
def routine_next_states(routine_id: str) -> NextStatesResponse:
    manager = _get_manager()
    try:
        routine, next_states = manager.valid_next_states(TaskKind.ROUTINE, routine_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return NextStatesResponse(task_id=routine.id, state=routine.state, next_states=next_states)


@router.post("/{routine_id}/block", response_model=Routine)
def add_routine_blocker(routine_id: str, request: AddBlockerRequest) -> Routine:
    """Make another routine block this one.

    Raises:
        HTTPException: 404 if either routine does not exist, 400 if the edge
            would create a circular dependency or the blocker is done.
    """
    manager = _get_manager()
    try:
        return manager.add_blocker(TaskKind.ROUTINE, routine_id, request.blocker_task_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{routine_id}/block/{blocker_id}", response_model=Routine)
def remove_routine_blocker(routine_id: str, blocker_id: str) -> Routine:
    manager = _get_manager()
    try:
        return manager.remove_blocker(TaskKind.ROUTINE, routine_id, blocker_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc

"""Subtask endpoints.

Subtasks always belong to a project.  Besides CRUD this router exposes state
changes, blocker edges between subtasks, and moving a subtask to another
project, which re-derives its parent block.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query

from casually.models import (
    AddBlockerRequest,
    CreateSubtaskRequest,
    DeleteResponse,
    MoveSubtaskRequest,
    NextStatesResponse,
    Priority,
    StateChangeRequest,
    Subtask,
    TaskKind,
    TaskState,
    UpdateSubtaskRequest,
)
from casually.routers.errors import to_http_exception
from casually.services.task_manager import TaskManager
from casually.state_machine import TaskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subtasks", tags=["subtasks"])

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


@router.get("", response_model=list[Subtask])
def list_subtasks(
    parent_id: Annotated[str | None, Query(description="Only subtasks of this project")] = None,
    state: Annotated[TaskState | None, Query(description="Only subtasks in this state")] = None,
    priority: Annotated[Priority | None, Query(description="Only subtasks with this priority")] = None,
) -> list[Subtask]:
    """List subtasks in display order, optionally filtered."""
    manager = _get_manager()
    try:
        return manager.list_subtasks(parent_id=parent_id, state=state, priority=priority)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=Subtask, status_code=201)
def create_subtask(request: CreateSubtaskRequest) -> Subtask:
    """Create a subtask.

    Without a ``parent_id`` the subtask is filed under the one-off project.
    Under a project that is not ACTIVE it starts BLOCKED.

    Args:
        request: Title, priority, optional parent and descriptive fields.

    Returns:
        The created ``Subtask``.

    Raises:
        HTTPException: 404 if the parent project does not exist, 400 if the
            title is blank.
    """
    manager = _get_manager()
    try:
        return manager.create_subtask(
            request.title,
            request.priority,
            parent_id=request.parent_id,
            description=request.description,
            emoji=request.emoji,
            order=request.order,
        )
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.get("/{subtask_id}", response_model=Subtask)
def get_subtask(subtask_id: str) -> Subtask:
    manager = _get_manager()
    try:
        return manager.get_subtask(subtask_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{subtask_id}", response_model=Subtask)
def update_subtask(subtask_id: str, request: UpdateSubtaskRequest) -> Subtask:
    """Edit descriptive fields.  Fields missing from the body are left unchanged."""
    manager = _get_manager()
    try:
        return manager.update_subtask(subtask_id, **request.model_dump(exclude_unset=True))
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{subtask_id}", response_model=DeleteResponse)
def delete_subtask(subtask_id: str) -> DeleteResponse:
    """Delete a subtask.  Subtasks it was blocking are released first."""
    manager = _get_manager()
    try:
        manager.delete_subtask(subtask_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return DeleteResponse()


@router.patch("/{subtask_id}/state", response_model=Subtask)
def change_subtask_state(subtask_id: str, request: StateChangeRequest) -> Subtask:
    """Request a state change for a subtask.

    Completing a subtask releases the subtasks it blocked.  A subtask that
    still has blockers stays BLOCKED unless it is being completed.

    Raises:
        HTTPException: 404 if the subtask does not exist, 400 if the transition
            is illegal.
    """
    manager = _get_manager()
    try:
        return manager.change_state(TaskKind.SUBTASK, subtask_id, request.state)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{subtask_id}/next-states", response_model=NextStatesResponse)
def subtask_next_states(subtask_id: str) -> NextStatesResponse:
    manager = _get_manager()
    try:
        subtask, next_states = manager.valid_next_states(TaskKind.SUBTASK, subtask_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return NextStatesResponse(task_id=subtask.id, state=subtask.state, next_states=next_states)


@router.post("/{subtask_id}/block", response_model=Subtask)
def add_subtask_blocker(subtask_id: str, request: AddBlockerRequest) -> Subtask:
    """Make another subtask block this one.

    Raises:
        HTTPException: 404 if either subtask does not exist, 400 if the edge
            would create a circular dependency or the blocker is done.
    """
    manager = _get_manager()
    try:
        return manager.add_blocker(TaskKind.SUBTASK, subtask_id, request.blocker_task_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{subtask_id}/block/{blocker_id}", response_model=Subtask)
def remove_subtask_blocker(subtask_id: str, blocker_id: str) -> Subtask:
    manager = _get_manager()
    try:
        return manager.remove_blocker(TaskKind.SUBTASK, subtask_id, blocker_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{subtask_id}/move", response_model=Subtask)
def move_subtask(subtask_id: str, request: MoveSubtaskRequest) -> Subtask:
    """Move a subtask under another project.

    The subtask's parent block follows it: moving under an inactive project
    leaves it BLOCKED, moving under an ACTIVE project clears the old block.

    Raises:
        HTTPException: 404 if the subtask or the new parent does not exist.
    """
    manager = _get_manager()
    try:
        return manager.move_subtask(subtask_id, request.new_parent_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc

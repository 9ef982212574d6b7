"""Project endpoints.

CRUD for projects plus the state-machine operations that apply to them:
state changes (which cascade to the project's subtasks), blocker edges between
projects, and the list of states a project can move to next.

Handlers here and in the sibling routers are plain ``def``: every one of them
blocks on SQLite, so FastAPI runs them in its threadpool instead of on the
event loop.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query

from casually.models import (
    AddBlockerRequest,
    CreateProjectRequest,
    DeleteResponse,
    NextStatesResponse,
    Priority,
    Project,
    ProjectDetail,
    StateChangeRequest,
    TaskKind,
    TaskState,
    UpdateProjectRequest,
)
from casually.routers.errors import to_http_exception
from casually.services.task_manager import TaskManager
from casually.state_machine import TaskError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])

_task_manager: TaskManager | None = None


def set_task_manager(manager: TaskManager) -> None:
    """Wire the shared ``TaskManager`` into this router module.

    Args:
        manager: The application-wide ``TaskManager`` instance.
    """
    global _task_manager
    _task_manager = manager


def _get_manager() -> TaskManager:
    """Return the wired ``TaskManager`` or raise if not initialised.

    Raises:
        HTTPException: If the manager has not been set yet.
    """
    if _task_manager is None:
        raise HTTPException(status_code=503, detail="TaskManager not initialised")
    return _task_manager


@router.get("", response_model=list[Project])
def list_projects(
    state: Annotated[TaskState | None, Query(description="Only projects in this state")] = None,
    priority: Annotated[Priority | None, Query(description="Only projects with this priority")] = None,
) -> list[Project]:
    """List projects in display order, optionally filtered by state and priority."""
    manager = _get_manager()
    try:
        return manager.list_projects(state=state, priority=priority)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.post("", response_model=Project, status_code=201)
def create_project(request: CreateProjectRequest) -> Project:
    """Create a project.  New projects start ACTIVE with no blockers.

    Args:
        request: Title, priority and optional descriptive fields.

    Returns:
        The created ``Project``.

    Raises:
        HTTPException: 400 if the title is blank.
    """
    manager = _get_manager()
    try:
        return manager.create_project(
            request.title,
            request.priority,
            description=request.description,
            emoji=request.emoji,
            order=request.order,
        )
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.get("/one-off", response_model=Project)
def get_one_off_project() -> Project:
    """Return the project that holds subtasks created without a parent."""
    manager = _get_manager()
    try:
        return manager.get_or_create_one_off_project()
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{project_id}", response_model=ProjectDetail)
def get_project(project_id: str) -> ProjectDetail:
    """Return a project together with its subtasks.

    Raises:
        HTTPException: 404 if the project does not exist.
    """
    manager = _get_manager()
    try:
        return manager.get_project_detail(project_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{project_id}", response_model=Project)
def update_project(project_id: str, request: UpdateProjectRequest) -> Project:
    """Edit descriptive fields.  Fields missing from the body are left unchanged."""
    manager = _get_manager()
    try:
        return manager.update_project(project_id, **request.model_dump(exclude_unset=True))
    except (TaskError, ValueError) as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{project_id}", response_model=DeleteResponse)
def delete_project(project_id: str) -> DeleteResponse:
    """Delete a project and its subtasks.

    Projects it was blocking are released first.

    Raises:
        HTTPException: 404 if the project does not exist, 409 for the one-off
            project.
    """
    manager = _get_manager()
    try:
        manager.delete_project(project_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return DeleteResponse()


@router.patch("/{project_id}/state", response_model=Project)
def change_project_state(project_id: str, request: StateChangeRequest) -> Project:
    """Request a state change for a project.

    Leaving ACTIVE blocks every subtask of the project; entering ACTIVE
    releases them.  Completing the project releases the projects it blocked.

    Args:
        project_id: Project to change.
        request: Requested target state.

    Returns:
        The project as persisted.  Its state may differ from the requested one
        when blockers remain.

    Raises:
        HTTPException: 404 if the project does not exist, 400 if the transition
            is illegal.
    """
    manager = _get_manager()
    try:
        return manager.change_state(TaskKind.PROJECT, project_id, request.state)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{project_id}/next-states", response_model=NextStatesResponse)
def project_next_states(project_id: str) -> NextStatesResponse:
    """Return the states the project can be moved to right now."""
    manager = _get_manager()
    try:
        project, next_states = manager.valid_next_states(TaskKind.PROJECT, project_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc
    return NextStatesResponse(task_id=project.id, state=project.state, next_states=next_states)


@router.post("/{project_id}/block", response_model=Project)
def add_project_blocker(project_id: str, request: AddBlockerRequest) -> Project:
    """Make another project block this one.

    Raises:
        HTTPException: 404 if either project does not exist, 400 if the edge
            would create a circular dependency or the blocker is done.
    """
    manager = _get_manager()
    try:
        return manager.add_blocker(TaskKind.PROJECT, project_id, request.blocker_task_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{project_id}/block/{blocker_id}", response_model=Project)
def remove_project_blocker(project_id: str, blocker_id: str) -> Project:
    """Stop *blocker_id* from blocking this project."""
    manager = _get_manager()
    try:
        return manager.remove_blocker(TaskKind.PROJECT, project_id, blocker_id)
    except TaskError as exc:
        raise to_http_exception(exc) from exc

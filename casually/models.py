"""Pydantic models for tasks, blocker entries, and every API contract.

This module defines the three task kinds (projects, subtasks, routines), the
routine sections that group routines, the ``BlockEntry`` tagged union that
forms the edges of the blocker graph, and every request and response body used
by the HTTP layer.  All structured data flows through these models -- no loose
dicts.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TaskState(enum.StrEnum):
    """All possible states a task can occupy.

    Only certain transitions are legal.  See ``casually.state_machine`` for
    the transition table and the rules that reconcile a requested state with
    the task's outstanding blockers.
    """

    ACTIVE = "ACTIVE"
    WAITING = "WAITING"
    BLOCKED = "BLOCKED"
    DONE = "DONE"


class TaskKind(enum.StrEnum):
    """The three task populations.

    The blocker graph is partitioned by kind: a project can only be blocked by
    another project, a subtask by another subtask, a routine by another routine.
    """

    PROJECT = "project"
    SUBTASK = "subtask"
    ROUTINE = "routine"

    @property
    def label(self) -> str:
        """Human-readable name used in log lines and error messages."""
        return self.value.capitalize()


class Priority(enum.StrEnum):
    """Descriptive priority levels, highest first."""

    HIGHEST = "HIGHEST"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    LOWEST = "LOWEST"


class Interval(enum.StrEnum):
    """Recurrence interval of a routine."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    CUSTOM = "CUSTOM"


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Blocker graph edges
# ---------------------------------------------------------------------------


class TaskBlock(BaseModel):
    """The owning task is blocked by another task of the same kind.

    Removed automatically when the referenced task is completed or deleted.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["task_block"] = "task_block"
    task_id: str = Field(description="Identifier of the blocking task")


class ParentBlock(BaseModel):
    """A subtask is blocked because its owning project is not ACTIVE.

    At most one such entry exists per subtask, and it always references the
    subtask's current parent.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["parent_block"] = "parent_block"
    task_id: str = Field(description="Identifier of the inactive parent project")


BlockEntry = Annotated[TaskBlock | ParentBlock, Field(discriminator="type")]

BLOCK_ENTRIES: TypeAdapter[list[BlockEntry]] = TypeAdapter(list[BlockEntry])


# ---------------------------------------------------------------------------
# Task records
# ---------------------------------------------------------------------------


class TaskBase(BaseModel):
    """Fields shared by projects, subtasks and routines.

    ``state`` and ``blocked_by`` are co-owned: the core never changes one
    without re-deriving the other.  Everything else is descriptive and is not
    interpreted by the state machine.
    """

    id: str = Field(description="Unique task identifier")
    title: str = Field(description="Short task title")
    description: str | None = Field(default=None, description="Optional longer description")
    emoji: str | None = Field(default=None, description="Optional emoji shown next to the title")
    priority: Priority = Field(default=Priority.MEDIUM, description="Descriptive priority")
    state: TaskState = Field(default=TaskState.WAITING, description="Current lifecycle state")
    order: int = Field(default=0, description="Display position among siblings")
    blocked_by: list[BlockEntry] = Field(default_factory=list, description="Outstanding blocker entries")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last modification timestamp")


class Project(TaskBase):
    """A long-running task that owns subtasks."""

    is_one_off: bool = Field(default=False, description="True for the built-in 'One-Off Tasks' container")


class Subtask(TaskBase):
    """A short-running task owned by exactly one project."""

    parent_id: str = Field(description="Identifier of the owning project")


class Routine(TaskBase):
    """A recurring task, optionally grouped into a routine section."""

    section_id: str | None = Field(default=None, description="Owning section, or None when ungrouped")
    interval: Interval | None = Field(default=None, description="Recurrence interval")
    custom_interval: str | None = Field(default=None, description="Free-text interval when interval is CUSTOM")


class RoutineSection(BaseModel):
    """A named group of routines."""

    id: str = Field(description="Unique section identifier")
    name: str = Field(description="Section name")
    order: int = Field(default=0, description="Display position among sections")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last modification timestamp")


class ProjectDetail(Project):
    """A project together with its subtasks, as returned by ``GET /projects/{id}``."""

    subtasks: list[Subtask] = Field(default_factory=list, description="Child subtasks ordered by position")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response payload for ``GET /health``."""

    status: str = Field(description="Service health status string, e.g. 'ok' or 'degraded'")
    database: str = Field(description="Path of the SQLite database in use")
    database_reachable: bool = Field(description="True when a trivial query against the database succeeds")


# ---------------------------------------------------------------------------
# Create / update bodies
# ---------------------------------------------------------------------------


class CreateProjectRequest(BaseModel):
    """Request body for ``POST /projects``."""

    title: str = Field(description="Project title")
    priority: Priority = Field(description="Project priority")
    description: str | None = Field(default=None, description="Optional description")
    emoji: str | None = Field(default=None, description="Optional emoji")
    order: int = Field(default=0, description="Display position")


class UpdateProjectRequest(BaseModel):
    """Request body for ``PATCH /projects/{id}``.  Omitted fields are left unchanged."""

    title: str | None = None
    description: str | None = None
    emoji: str | None = None
    priority: Priority | None = None
    order: int | None = None


class CreateSubtaskRequest(BaseModel):
    """Request body for ``POST /subtasks``.

    When ``parent_id`` is omitted the subtask is filed under the one-off
    project.
    """

    title: str = Field(description="Subtask title")
    priority: Priority = Field(description="Subtask priority")
    parent_id: str | None = Field(default=None, description="Owning project; defaults to the one-off project")
    description: str | None = Field(default=None, description="Optional description")
    emoji: str | None = Field(default=None, description="Optional emoji")
    order: int = Field(default=0, description="Display position")


class UpdateSubtaskRequest(BaseModel):
    """Request body for ``PATCH /subtasks/{id}``.  Omitted fields are left unchanged."""

    title: str | None = None
    description: str | None = None
    emoji: str | None = None
    priority: Priority | None = None
    order: int | None = None


class CreateRoutineRequest(BaseModel):
    """Request body for ``POST /routines``."""

    title: str = Field(description="Routine title")
    priority: Priority = Field(description="Routine priority")
    section_id: str | None = Field(default=None, description="Owning section, if any")
    interval: Interval | None = Field(default=None, description="Recurrence interval")
    custom_interval: str | None = Field(default=None, description="Free-text interval for CUSTOM")
    description: str | None = Field(default=None, description="Optional description")
    emoji: str | None = Field(default=None, description="Optional emoji")
    order: int = Field(default=0, description="Display position")


class UpdateRoutineRequest(BaseModel):
    """Request body for ``PATCH /routines/{id}``.  Omitted fields are left unchanged.

    Sending ``section_id: null`` explicitly moves the routine out of its
    section.
    """

    title: str | None = None
    description: str | None = None
    emoji: str | None = None
    priority: Priority | None = None
    order: int | None = None
    section_id: str | None = None
    interval: Interval | None = None
    custom_interval: str | None = None


class CreateSectionRequest(BaseModel):
    """Request body for ``POST /routine-sections``."""

    name: str = Field(description="Section name")
    order: int = Field(default=0, description="Display position")


class UpdateSectionRequest(BaseModel):
    """Request body for ``PATCH /routine-sections/{id}``."""

    name: str | None = None
    order: int | None = None


# ---------------------------------------------------------------------------
# State machine / blocker bodies
# ---------------------------------------------------------------------------


class StateChangeRequest(BaseModel):
    """Request body for ``PATCH /<kind>/{id}/state``."""

    state: TaskState = Field(description="Requested target state")


class NextStatesResponse(BaseModel):
    """Response payload for ``GET /<kind>/{id}/next-states``."""

    task_id: str = Field(description="Task identifier")
    state: TaskState = Field(description="Current state")
    next_states: list[TaskState] = Field(default_factory=list, description="States reachable in one transition")


class AddBlockerRequest(BaseModel):
    """Request body for ``POST /<kind>/{id}/block``."""

    blocker_task_id: str = Field(description="Task (of the same kind) that should block this one")


class MoveSubtaskRequest(BaseModel):
    """Request body for ``PATCH /subtasks/{id}/move``."""

    new_parent_id: str = Field(description="Project the subtask should move under")


# ---------------------------------------------------------------------------
# Aggregate views
# ---------------------------------------------------------------------------


class TaskOverview(BaseModel):
    """Tasks of every kind sharing one state, as shown by the blocked and archive views."""

    projects: list[Project] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)
    routines: list[Routine] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Response payload for every ``DELETE`` endpoint."""

    success: bool = Field(default=True, description="True when the record was removed")

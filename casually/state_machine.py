"""Task state machine: transition table, state derivation, and the error taxonomy.

Every task, whatever its kind, moves through the same four states.  Any
illegal transition is rejected with an ``InvalidTransitionError``.  A task that
still has blockers cannot leave ``BLOCKED`` by asking for it; ``derive_state``
is the single place that reconciles what a caller asked for with what the
blocker graph allows.

Everything in this module is pure: no storage, no I/O.
"""

from collections.abc import Sequence

from casually.models import BlockEntry, TaskKind, TaskState

# Explicit map of every legal transition.  If a (current, target) pair is not
# present here, the transition is forbidden.  BLOCKED cannot go straight to
# ACTIVE: its blockers have to clear first.
ALLOWED_TRANSITIONS: dict[TaskState, tuple[TaskState, ...]] = {
    TaskState.ACTIVE: (TaskState.WAITING, TaskState.BLOCKED, TaskState.DONE),
    TaskState.WAITING: (TaskState.ACTIVE, TaskState.BLOCKED, TaskState.DONE),
    TaskState.BLOCKED: (TaskState.WAITING, TaskState.DONE),
    TaskState.DONE: (TaskState.ACTIVE,),
}


class TaskError(Exception):
    """Base class for every error the task core raises."""


class NotFoundError(TaskError, KeyError):
    """Raised when a referenced task, blocker, parent or section does not exist.

    Subclasses ``KeyError`` so callers that treat a missing record as a
    lookup failure keep working.

    Attributes:
        entity: Kind of record that was looked up.
        entity_id: Identifier that could not be resolved.
    """

    def __init__(self, entity: TaskKind | str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        label = entity.label if isinstance(entity, TaskKind) else entity
        super().__init__(f"{label} {entity_id!r} not found")

    def __str__(self) -> str:
        return str(self.args[0])


class InvalidTransitionError(TaskError):
    """Raised when a caller attempts an illegal task-state transition.

    Attributes:
        current: The state the task is currently in.
        target: The state the caller attempted to transition to.
    """

    def __init__(self, current: TaskState, target: TaskState) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Transition from {current.value!r} to {target.value!r} is not allowed")


class CyclicDependencyError(TaskError):
    """Raised when adding a blocker would close a loop in the blocker graph.

    Attributes:
        target_id: Task that would have been blocked.
        blocker_id: Task that would have become its blocker.
    """

    def __init__(self, target_id: str, blocker_id: str) -> None:
        self.target_id = target_id
        self.blocker_id = blocker_id
        super().__init__(f"Adding {blocker_id!r} as a blocker of {target_id!r} would create a circular dependency")


class CompletedBlockerError(TaskError):
    """Raised when a DONE task is named as a new blocker.

    Completion is what releases a blocker, so an edge to a task that is
    already done would never be released.

    Attributes:
        target_id: Task that would have been blocked.
        blocker_id: The completed task.
    """

    def __init__(self, target_id: str, blocker_id: str) -> None:
        self.target_id = target_id
        self.blocker_id = blocker_id
        super().__init__(f"{blocker_id!r} is already done and cannot block {target_id!r}")


class ProtectedTaskError(TaskError):
    """Raised when a caller tries to delete a task the service relies on."""


def is_valid_transition(current: TaskState, target: TaskState) -> bool:
    """Return whether moving from *current* to *target* is legal.

    Self-transitions are never legal: asking for the state a task is already
    in is rejected, not silently accepted.
    """
    if current == target:
        return False
    return target in ALLOWED_TRANSITIONS.get(current, ())


def get_valid_next_states(state: TaskState | str) -> list[TaskState]:
    """Return the states reachable from *state* in one transition.

    Unknown states yield an empty list rather than an error.
    """
    return list(ALLOWED_TRANSITIONS.get(state, ()))


def validate_transition(current: TaskState, target: TaskState) -> bool:
    """Check whether transitioning from *current* to *target* is legal.

    If the transition is allowed the function returns ``True``.  If it is
    forbidden an ``InvalidTransitionError`` is raised -- the function never
    returns ``False`` so callers do not need to handle that branch.

    Args:
        current: The state the task occupies right now.
        target: The desired next state.

    Returns:
        ``True`` when the transition is permitted.

    Raises:
        InvalidTransitionError: When the transition violates the state machine.
    """
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(current, target)
    return True


def _blocked_by_request_only(current: TaskState, blocked_by: Sequence[BlockEntry]) -> bool:
    return current == TaskState.BLOCKED and not blocked_by


def task_next_states(current: TaskState, blocked_by: Sequence[BlockEntry]) -> list[TaskState]:
    """Return the states a concrete task can move to in one transition.

    A task that is ``BLOCKED`` with nothing left in ``blocked_by`` was blocked
    on request only; its blockers are clear, so it may also go to ``ACTIVE``.
    """
    states = get_valid_next_states(current)
    if _blocked_by_request_only(current, blocked_by):
        states.append(TaskState.ACTIVE)
    return states


def validate_task_transition(current: TaskState, target: TaskState, blocked_by: Sequence[BlockEntry]) -> bool:
    """Like ``validate_transition``, for a task whose blocker list is known.

    Raises:
        InvalidTransitionError: When *target* is not in ``task_next_states``.
    """
    if target not in task_next_states(current, blocked_by):
        raise InvalidTransitionError(current, target)
    return True


def derive_state(blocked_by: Sequence[BlockEntry], desired_state: TaskState) -> TaskState:
    """Compute the state a task actually ends up in.

    Args:
        blocked_by: The task's outstanding blocker entries.
        desired_state: The state the caller asked for.

    Returns:
        ``DONE`` when *desired_state* is ``DONE`` (force-complete wins over
        blockers), ``BLOCKED`` when blockers remain, otherwise
        *desired_state* unchanged.
    """
    if desired_state == TaskState.DONE:
        return TaskState.DONE
    if blocked_by:
        return TaskState.BLOCKED
    return desired_state

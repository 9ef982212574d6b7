"""Cascading state engine -- state changes and the consequences they ripple out to.

Changing a task's state can affect other tasks:

- A project leaving ``ACTIVE`` blocks every one of its subtasks with a
  ``ParentBlock``; a project entering ``ACTIVE`` releases them again.
- A task reaching ``DONE`` stops blocking the tasks of its kind that were
  waiting on it.
- Moving a subtask to another project swaps the parent block for one that
  reflects the new project's state.
- Deleting a task repairs every reference to it before the row goes away.

Each public operation runs inside a single ``TaskStore.atomic()`` block: the
target task and every cascaded peer or child commit together or not at all.
Validation happens before the first write, so a rejected request leaves no
trace.
"""

import logging

from casually.models import ParentBlock, Project, Routine, Subtask, TaskBase, TaskBlock, TaskKind, TaskState
from casually.services.blocker_graph import state_after_unblock, with_entry, without_entry, without_parent_blocks
from casually.services.task_store import StoreSession, TaskStore, TaskTable
from casually.state_machine import derive_state, validate_task_transition

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Cascade helpers (run inside an open session)
# ------------------------------------------------------------------


def _cascade_unblock(table: TaskTable[TaskBase], released_id: str) -> int:
    """Remove every ``TaskBlock`` on *released_id* from the tasks in *table*.

    This is a full scan of the kind's population.  Each affected task keeps
    ``DONE`` if it was done, otherwise becomes ``BLOCKED`` or ``WAITING``
    depending on whether entries remain.

    Returns:
        Number of tasks that were updated.
    """
    entry = TaskBlock(task_id=released_id)
    affected = 0
    for task in table.find_many():
        if entry not in task.blocked_by:
            continue
        remaining = without_entry(task.blocked_by, entry)
        new_state = state_after_unblock(task.state, remaining)
        table.update(task.id, blocked_by=remaining, state=new_state)
        logger.debug("Released %s from %s (state=%s)", task.id, released_id, new_state.value)
        affected += 1
    return affected


def _block_children(session: StoreSession, project_id: str) -> int:
    """Give every subtask of *project_id* a parent block and force it to ``BLOCKED``."""
    entry = ParentBlock(task_id=project_id)
    children = session.subtasks.find_many(parent_id=project_id)
    for child in children:
        session.subtasks.update(
            child.id,
            blocked_by=with_entry(child.blocked_by, entry),
            state=TaskState.BLOCKED,
        )
    return len(children)


def _release_children(session: StoreSession, project_id: str) -> int:
    """Remove the parent block of *project_id* from every one of its subtasks.

    Each subtask ends up ``BLOCKED`` if other entries remain, ``WAITING``
    otherwise.
    """
    entry = ParentBlock(task_id=project_id)
    children = session.subtasks.find_many(parent_id=project_id)
    for child in children:
        remaining = without_entry(child.blocked_by, entry)
        session.subtasks.update(
            child.id,
            blocked_by=remaining,
            state=TaskState.BLOCKED if remaining else TaskState.WAITING,
        )
    return len(children)


def _apply_state(table: TaskTable[TaskBase], task_id: str, new_state: TaskState) -> tuple[TaskState, TaskBase]:
    """Validate and persist a requested state for one task.

    Returns:
        The state the task was in before, and the task as persisted.
    """
    task = table.get(task_id)
    validate_task_transition(task.state, new_state, task.blocked_by)
    actual = derive_state(task.blocked_by, new_state)
    updated = table.update(task_id, state=actual)
    if actual != new_state:
        logger.info("%s requested %s but has blockers; kept %s", task_id, new_state.value, actual.value)
    return task.state, updated


# ------------------------------------------------------------------
# State changes
# ------------------------------------------------------------------


def change_project_state(store: TaskStore, task_id: str, new_state: TaskState) -> Project:
    """Change a project's state and cascade to its subtasks and to other projects.

    Args:
        store: Task store to write to.
        task_id: Project to change.
        new_state: Requested target state.

    Returns:
        The project as persisted.

    Raises:
        NotFoundError: If the project does not exist.
        InvalidTransitionError: If the transition is illegal.
    """
    with store.atomic() as session:
        previous, project = _apply_state(session.projects, task_id, new_state)

        was_active = previous == TaskState.ACTIVE
        is_active = project.state == TaskState.ACTIVE
        if was_active and not is_active:
            count = _block_children(session, task_id)
            logger.info("Project %s left ACTIVE; blocked %d subtask(s)", task_id, count)
        elif is_active and not was_active:
            count = _release_children(session, task_id)
            logger.info("Project %s became ACTIVE; released %d subtask(s)", task_id, count)

        if project.state == TaskState.DONE:
            count = _cascade_unblock(session.projects, task_id)
            logger.info("Project %s done; unblocked %d project(s)", task_id, count)

    logger.info("Project %s transitioned %s -> %s", task_id, previous.value, project.state.value)
    return project


def _change_leaf_state(store: TaskStore, kind: TaskKind, task_id: str, new_state: TaskState) -> TaskBase:
    with store.atomic() as session:
        table = session.table(kind)
        previous, task = _apply_state(table, task_id, new_state)
        if task.state == TaskState.DONE:
            count = _cascade_unblock(table, task_id)
            logger.info("%s %s done; unblocked %d %s(s)", kind.label, task_id, count, kind.value)

    logger.info("%s %s transitioned %s -> %s", kind.label, task_id, previous.value, task.state.value)
    return task


def change_subtask_state(store: TaskStore, task_id: str, new_state: TaskState) -> Subtask:
    """Change a subtask's state; completing it unblocks the subtasks waiting on it.

    Raises:
        NotFoundError: If the subtask does not exist.
        InvalidTransitionError: If the transition is illegal.
    """
    return _change_leaf_state(store, TaskKind.SUBTASK, task_id, new_state)


def change_routine_state(store: TaskStore, task_id: str, new_state: TaskState) -> Routine:
    """Change a routine's state; completing it unblocks the routines waiting on it.

    Raises:
        NotFoundError: If the routine does not exist.
        InvalidTransitionError: If the transition is illegal.
    """
    return _change_leaf_state(store, TaskKind.ROUTINE, task_id, new_state)


def change_state(store: TaskStore, kind: TaskKind, task_id: str, new_state: TaskState) -> TaskBase:
    """Dispatch to the state-change operation for *kind*."""
    if kind == TaskKind.PROJECT:
        return change_project_state(store, task_id, new_state)
    if kind == TaskKind.SUBTASK:
        return change_subtask_state(store, task_id, new_state)
    return change_routine_state(store, task_id, new_state)


def cascade_on_complete(store: TaskStore, task_id: str, kind: TaskKind) -> int:
    """Remove *task_id* from the blockers of every task of *kind* that references it.

    Returns:
        Number of tasks that were updated.
    """
    with store.atomic() as session:
        return _cascade_unblock(session.table(kind), task_id)


# ------------------------------------------------------------------
# Move and delete
# ------------------------------------------------------------------


def move_subtask(store: TaskStore, task_id: str, new_parent_id: str) -> Subtask:
    """Re-parent a subtask and re-derive its parent block and state.

    Moving under a project that is not ``ACTIVE`` always leaves the subtask
    ``BLOCKED`` by that project.  Moving under an ``ACTIVE`` project only
    changes the state of a subtask that was ``BLOCKED``: it becomes
    ``WAITING`` if nothing else blocks it.  ``ACTIVE`` and ``DONE`` subtasks
    keep their state in that case.

    Args:
        store: Task store to write to.
        task_id: Subtask to move.
        new_parent_id: Project to move it under.

    Returns:
        The subtask as persisted (unchanged if it already belongs to
        *new_parent_id*).

    Raises:
        NotFoundError: If the subtask or the new parent does not exist.
    """
    with store.atomic() as session:
        task = session.subtasks.get(task_id)
        if task.parent_id == new_parent_id:
            return task

        new_parent = session.projects.get(new_parent_id)
        entries = without_parent_blocks(task.blocked_by)

        if new_parent.state != TaskState.ACTIVE:
            entries.append(ParentBlock(task_id=new_parent_id))
            new_state = TaskState.BLOCKED
        elif entries:
            new_state = TaskState.BLOCKED
        elif task.state == TaskState.BLOCKED:
            new_state = TaskState.WAITING
        else:
            new_state = task.state

        moved = session.subtasks.update(
            task_id,
            parent_id=new_parent_id,
            blocked_by=entries,
            state=new_state,
        )

    logger.info(
        "Moved subtask %s from project %s to %s (state %s -> %s)",
        task_id,
        task.parent_id,
        new_parent_id,
        task.state.value,
        moved.state.value,
    )
    return moved


def cascade_on_delete(store: TaskStore, task_id: str, kind: TaskKind) -> None:
    """Repair every reference to a task that is about to be deleted.

    Tasks of the same kind that were blocked by it lose that entry and have
    their state re-derived.  For a project, its subtasks also lose their parent
    block on it.  Deleting the row itself is left to the caller, which should
    do so in the same ``atomic()`` block.

    Args:
        store: Task store to write to.
        task_id: Task about to be deleted.
        kind: Kind of the task.
    """
    with store.atomic() as session:
        unblocked = _cascade_unblock(session.table(kind), task_id)
        released = 0
        if kind == TaskKind.PROJECT:
            released = _release_children(session, task_id)

    logger.info(
        "Repaired references to %s %s: %d peer(s) unblocked, %d subtask(s) released",
        kind.value,
        task_id,
        unblocked,
        released,
    )

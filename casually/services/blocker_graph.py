"""Blocker graph -- dependency edges between tasks of the same kind.

Each task carries a ``blocked_by`` list of ``BlockEntry`` values.  A
``TaskBlock`` entry is an edge "the referenced task blocks this one"; a
``ParentBlock`` entry records that a subtask's project is inactive.  The list
behaves as a set keyed by ``(type, task_id)`` that keeps insertion order.

The ``task_block`` edges of each kind must stay acyclic.  ``add_blocker``
refuses any edge that would close a loop, so the check runs inside the same
transaction as the write.
"""

import logging
from collections import deque
from collections.abc import Sequence

from casually.models import BlockEntry, ParentBlock, TaskBase, TaskBlock, TaskKind, TaskState
from casually.services.task_store import TaskStore, TaskTable
from casually.state_machine import CompletedBlockerError, CyclicDependencyError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure helpers on blocker lists
# ---------------------------------------------------------------------------


def with_entry(entries: Sequence[BlockEntry], entry: BlockEntry) -> list[BlockEntry]:
    """Return *entries* with *entry* appended, unless it is already present."""
    if entry in entries:
        return list(entries)
    return [*entries, entry]


def without_entry(entries: Sequence[BlockEntry], entry: BlockEntry) -> list[BlockEntry]:
    """Return *entries* minus every occurrence of *entry*."""
    return [existing for existing in entries if existing != entry]


def without_parent_blocks(entries: Sequence[BlockEntry]) -> list[BlockEntry]:
    """Return *entries* minus every ``ParentBlock``, whichever project it names."""
    return [existing for existing in entries if not isinstance(existing, ParentBlock)]


def task_block_ids(entries: Sequence[BlockEntry]) -> list[str]:
    """Return the ids of the tasks referenced by ``TaskBlock`` entries, in order."""
    return [entry.task_id for entry in entries if isinstance(entry, TaskBlock)]


def state_after_unblock(current: TaskState, remaining: Sequence[BlockEntry]) -> TaskState:
    """State of a task that just lost a blocker.

    A completed task stays completed; otherwise the task is ``BLOCKED`` while
    any entry remains and ``WAITING`` once none do.
    """
    if current == TaskState.DONE:
        return TaskState.DONE
    return TaskState.BLOCKED if remaining else TaskState.WAITING


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------


def _reaches(table: TaskTable[TaskBase], start_id: str, goal_id: str) -> bool:
    """Breadth-first walk from *start_id* along "is blocked by" edges.

    Returns True if *goal_id* is reachable.  Missing tasks are dead ends.
    """
    visited: set[str] = set()
    frontier: deque[str] = deque([start_id])

    while frontier:
        current_id = frontier.popleft()
        if current_id == goal_id:
            return True
        if current_id in visited:
            continue
        visited.add(current_id)

        task = table.find_by_id(current_id)
        if task is None:
            continue
        frontier.extend(blocker_id for blocker_id in task_block_ids(task.blocked_by) if blocker_id not in visited)

    return False


def would_create_cycle(store: TaskStore, target_id: str, blocker_id: str, kind: TaskKind) -> bool:
    """Return whether "*blocker_id* blocks *target_id*" would create a cycle.

    A task blocking itself is the trivial cycle.  Otherwise the edge closes a
    loop exactly when *target_id* already blocks *blocker_id*, directly or
    transitively, i.e. when *target_id* is reachable from *blocker_id* by
    following what blocks it.

    Args:
        store: Task store to read from.
        target_id: Task that would gain the blocker.
        blocker_id: Task that would become the blocker.
        kind: Kind of both tasks.

    Returns:
        ``True`` if adding the edge would make the graph cyclic.
    """
    if target_id == blocker_id:
        return True
    with store.snapshot() as session:
        return _reaches(session.table(kind), blocker_id, target_id)


# ---------------------------------------------------------------------------
# Adding and removing blockers
# ---------------------------------------------------------------------------


def add_blocker(store: TaskStore, target_id: str, blocker_id: str, kind: TaskKind) -> TaskBase:
    """Record that *blocker_id* blocks *target_id* and force the target to ``BLOCKED``.

    Adding an edge that is already present changes nothing.  The target is set
    to ``BLOCKED`` whatever its previous state, including ``DONE``.  The
    blocker itself must not be ``DONE``: nothing would ever release the edge.

    Args:
        store: Task store to write to.
        target_id: Task that gains the blocker.
        blocker_id: Task that becomes the blocker.
        kind: Kind of both tasks.

    Returns:
        The target task as persisted.

    Raises:
        NotFoundError: If either task does not exist.
        CyclicDependencyError: If the edge would create a cycle.
        CompletedBlockerError: If the blocker is already ``DONE``.
    """
    with store.atomic() as session:
        table = session.table(kind)
        target = table.get(target_id)
        blocker = table.get(blocker_id)

        if target_id == blocker_id or _reaches(table, blocker_id, target_id):
            logger.warning("Rejected %s blocker %s -> %s: cycle", kind.value, blocker_id, target_id)
            raise CyclicDependencyError(target_id, blocker_id)
        if blocker.state == TaskState.DONE:
            logger.warning("Rejected %s blocker %s -> %s: blocker is done", kind.value, blocker_id, target_id)
            raise CompletedBlockerError(target_id, blocker_id)

        entry = TaskBlock(task_id=blocker_id)
        if entry in target.blocked_by:
            logger.debug("%s %s already blocked by %s", kind.label, target_id, blocker_id)
            return target

        updated = table.update(
            target_id,
            blocked_by=[*target.blocked_by, entry],
            state=TaskState.BLOCKED,
        )

    logger.info("%s %s is now blocked by %s", kind.label, target_id, blocker_id)
    return updated


def remove_blocker(store: TaskStore, target_id: str, blocker_id: str, kind: TaskKind) -> TaskBase:
    """Drop the "*blocker_id* blocks *target_id*" edge and re-derive the target's state.

    Removing an edge that does not exist is not an error.  A ``DONE`` target
    stays ``DONE``; otherwise it becomes ``WAITING`` once no entries remain.

    Args:
        store: Task store to write to.
        target_id: Task that loses the blocker.
        blocker_id: Task that no longer blocks it.
        kind: Kind of both tasks.

    Returns:
        The target task as persisted.

    Raises:
        NotFoundError: If the target task does not exist.
    """
    with store.atomic() as session:
        table = session.table(kind)
        target = table.get(target_id)
        remaining = without_entry(target.blocked_by, TaskBlock(task_id=blocker_id))
        updated = table.update(
            target_id,
            blocked_by=remaining,
            state=state_after_unblock(target.state, remaining),
        )

    logger.info("%s %s no longer blocked by %s (state=%s)", kind.label, target_id, blocker_id, updated.state.value)
    return updated

"""Tests for the blocker graph: adding and removing edges and cycle detection."""

from pathlib import Path

import pytest

from casually.models import ParentBlock, Priority, Project, Routine, Subtask, TaskBlock, TaskKind, TaskState
from casually.services.blocker_graph import (
    add_blocker,
    remove_blocker,
    with_entry,
    without_entry,
    without_parent_blocks,
    would_create_cycle,
)
from casually.services.task_store import TaskStore
from casually.state_machine import CompletedBlockerError, CyclicDependencyError, NotFoundError


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    """Create a ``TaskStore`` holding three WAITING routines ``a``, ``b``, ``c``.

    Args:
        tmp_path: Pytest-provided temporary directory.

    Returns:
        A populated ``TaskStore``.
    """
    store = TaskStore(tmp_path / "tasks.sqlite3")
    with store.atomic() as session:
        for routine_id in ("a", "b", "c"):
            session.routines.insert(Routine(id=routine_id, title=routine_id.upper(), state=TaskState.WAITING))
    return store


def _routine(store: TaskStore, routine_id: str) -> Routine:
    with store.atomic() as session:
        return session.routines.get(routine_id)


def test_add_blocker_blocks_target(store: TaskStore) -> None:
    """Adding an edge records the entry and forces the target to BLOCKED.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    updated = add_blocker(store, "a", "b", TaskKind.ROUTINE)
    assert updated.state == TaskState.BLOCKED
    assert updated.blocked_by == [TaskBlock(task_id="b")]
    assert _routine(store, "b").state == TaskState.WAITING


def test_add_blocker_is_idempotent(store: TaskStore) -> None:
    """Adding the same edge twice leaves a single entry.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    add_blocker(store, "a", "b", TaskKind.ROUTINE)
    again = add_blocker(store, "a", "b", TaskKind.ROUTINE)
    assert again.blocked_by == [TaskBlock(task_id="b")]


def test_add_blocker_reblocks_done_task(store: TaskStore) -> None:
    """A DONE target is forced back to BLOCKED when it gains a blocker.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    with store.atomic() as session:
        session.routines.update("a", state=TaskState.DONE)
    assert add_blocker(store, "a", "b", TaskKind.ROUTINE).state == TaskState.BLOCKED


def test_done_blocker_is_rejected(store: TaskStore) -> None:
    """A completed task cannot become a blocker, and the target is left alone.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    with store.atomic() as session:
        session.routines.update("b", state=TaskState.DONE)

    with pytest.raises(CompletedBlockerError):
        add_blocker(store, "a", "b", TaskKind.ROUTINE)

    target = _routine(store, "a")
    assert target.blocked_by == []
    assert target.state == TaskState.WAITING


def test_self_block_is_rejected(store: TaskStore) -> None:
    """A task cannot block itself, and the rejection writes nothing.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    assert would_create_cycle(store, "a", "a", TaskKind.ROUTINE) is True
    with pytest.raises(CyclicDependencyError):
        add_blocker(store, "a", "a", TaskKind.ROUTINE)
    assert _routine(store, "a").blocked_by == []


def test_direct_cycle_is_rejected(store: TaskStore) -> None:
    """If ``b`` blocks ``a``, ``a`` cannot block ``b``.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    add_blocker(store, "a", "b", TaskKind.ROUTINE)
    with pytest.raises(CyclicDependencyError) as exc_info:
        add_blocker(store, "b", "a", TaskKind.ROUTINE)
    assert exc_info.value.target_id == "b"
    assert exc_info.value.blocker_id == "a"
    assert _routine(store, "b").state == TaskState.WAITING


def test_transitive_cycle_is_rejected(store: TaskStore) -> None:
    """A chain ``c`` blocks ``b`` blocks ``a`` cannot be closed by ``a`` blocking ``c``.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    add_blocker(store, "a", "b", TaskKind.ROUTINE)
    add_blocker(store, "b", "c", TaskKind.ROUTINE)
    assert would_create_cycle(store, "c", "a", TaskKind.ROUTINE) is True
    with pytest.raises(CyclicDependencyError):
        add_blocker(store, "c", "a", TaskKind.ROUTINE)
    assert _routine(store, "c").blocked_by == []


def test_diamond_is_not_a_cycle(store: TaskStore) -> None:
    """Two paths to the same blocker are fine.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    add_blocker(store, "a", "b", TaskKind.ROUTINE)
    add_blocker(store, "b", "c", TaskKind.ROUTINE)
    assert would_create_cycle(store, "a", "c", TaskKind.ROUTINE) is False
    updated = add_blocker(store, "a", "c", TaskKind.ROUTINE)
    assert updated.blocked_by == [TaskBlock(task_id="b"), TaskBlock(task_id="c")]


def test_missing_nodes_are_dead_ends(store: TaskStore) -> None:
    """A dangling reference in the graph does not break cycle detection.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    with store.atomic() as session:
        session.routines.update("b", blocked_by=[TaskBlock(task_id="gone")], state=TaskState.BLOCKED)
    assert would_create_cycle(store, "a", "b", TaskKind.ROUTINE) is False


def test_cycle_check_does_not_wait_for_writers(store: TaskStore) -> None:
    """The read-only walk runs while another connection is mid-write.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    add_blocker(store, "a", "b", TaskKind.ROUTINE)
    writer = TaskStore(store.db_path)
    with writer.atomic() as session:
        session.routines.update("c", title="C2")
        assert would_create_cycle(store, "b", "a", TaskKind.ROUTINE) is True
        assert would_create_cycle(store, "c", "a", TaskKind.ROUTINE) is False


@pytest.mark.parametrize(("target", "blocker"), [("missing", "a"), ("a", "missing")])
def test_add_blocker_missing_task(store: TaskStore, target: str, blocker: str) -> None:
    """Both ends of the edge must exist.

    Args:
        store: Fixture-provided ``TaskStore``.
        target: Task to block.
        blocker: Task to block it with.
    """
    with pytest.raises(NotFoundError):
        add_blocker(store, target, blocker, TaskKind.ROUTINE)


def test_blockers_do_not_cross_kinds(store: TaskStore) -> None:
    """A project cannot be blocked by a routine, even with a matching id.

    Args:
        store: Fixture-provided ``TaskStore``.
    """
    with store.atomic() as session:
        session.projects.insert(Project(id="p", title="P", priority=Priority.LOW, state=TaskState.ACTIVE))
    with pytest.raises(NotFoundError):
        add_blocker(store, "p", "a", TaskKind.PROJECT)


class TestRemoveBlocker:
    """Verify state re-derivation when an edge is dropped."""

    def test_last_blocker_removed_waits(self, store: TaskStore) -> None:
        """A task that loses its only blocker becomes WAITING.

        Args:
            store: Fixture-provided ``TaskStore``.
        """
        add_blocker(store, "a", "b", TaskKind.ROUTINE)
        updated = remove_blocker(store, "a", "b", TaskKind.ROUTINE)
        assert updated.state == TaskState.WAITING
        assert updated.blocked_by == []

    def test_remaining_blockers_keep_blocked(self, store: TaskStore) -> None:
        """A task with other entries stays BLOCKED.

        Args:
            store: Fixture-provided ``TaskStore``.
        """
        add_blocker(store, "a", "b", TaskKind.ROUTINE)
        add_blocker(store, "a", "c", TaskKind.ROUTINE)
        updated = remove_blocker(store, "a", "b", TaskKind.ROUTINE)
        assert updated.state == TaskState.BLOCKED
        assert updated.blocked_by == [TaskBlock(task_id="c")]

    def test_done_task_stays_done(self, store: TaskStore) -> None:
        """Removing a blocker never reopens a finished task.

        Args:
            store: Fixture-provided ``TaskStore``.
        """
        with store.atomic() as session:
            session.routines.update("a", state=TaskState.DONE, blocked_by=[TaskBlock(task_id="b")])
        assert remove_blocker(store, "a", "b", TaskKind.ROUTINE).state == TaskState.DONE

    def test_missing_target(self, store: TaskStore) -> None:
        with pytest.raises(NotFoundError):
            remove_blocker(store, "missing", "a", TaskKind.ROUTINE)


def test_subtask_parent_block_survives_unrelated_removal(tmp_path: Path) -> None:
    """Dropping a task edge keeps a subtask's parent block and BLOCKED state.

    Args:
        tmp_path: Pytest-provided temporary directory.
    """
    store = TaskStore(tmp_path / "tasks.sqlite3")
    with store.atomic() as session:
        session.projects.insert(Project(id="p", title="P", priority=Priority.LOW, state=TaskState.WAITING))
        session.subtasks.insert(Subtask(id="s1", title="S1", parent_id="p"))
        session.subtasks.insert(
            Subtask(
                id="s2",
                title="S2",
                parent_id="p",
                state=TaskState.BLOCKED,
                blocked_by=[ParentBlock(task_id="p"), TaskBlock(task_id="s1")],
            )
        )
    updated = remove_blocker(store, "s2", "s1", TaskKind.SUBTASK)
    assert updated.state == TaskState.BLOCKED
    assert updated.blocked_by == [ParentBlock(task_id="p")]


class TestEntryHelpers:
    """Verify the pure helpers that edit blocker lists."""

    def test_with_entry_deduplicates(self) -> None:
        entries = [TaskBlock(task_id="a")]
        assert with_entry(entries, TaskBlock(task_id="a")) == entries
        assert with_entry(entries, ParentBlock(task_id="a")) == [TaskBlock(task_id="a"), ParentBlock(task_id="a")]

    def test_without_entry_matches_type_and_id(self) -> None:
        entries = [TaskBlock(task_id="a"), ParentBlock(task_id="a")]
        assert without_entry(entries, TaskBlock(task_id="a")) == [ParentBlock(task_id="a")]

    def test_without_parent_blocks(self) -> None:
        entries = [ParentBlock(task_id="p1"), TaskBlock(task_id="s"), ParentBlock(task_id="p2")]
        assert without_parent_blocks(entries) == [TaskBlock(task_id="s")]

"""Tests for the task state machine.

Covers every legal transition (should succeed), every illegal one (should
raise ``InvalidTransitionError``), the next-state lists, and the rule that
reconciles a requested state with outstanding blockers.
"""

import pytest

from casually.models import ParentBlock, TaskBlock, TaskState
from casually.state_machine import (
    InvalidTransitionError,
    derive_state,
    get_valid_next_states,
    is_valid_transition,
    task_next_states,
    validate_task_transition,
    validate_transition,
)


class TestValidTransitions:
    """Verify that all explicitly allowed transitions return True."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (TaskState.ACTIVE, TaskState.WAITING),
            (TaskState.ACTIVE, TaskState.BLOCKED),
            (TaskState.ACTIVE, TaskState.DONE),
            (TaskState.WAITING, TaskState.ACTIVE),
            (TaskState.WAITING, TaskState.BLOCKED),
            (TaskState.WAITING, TaskState.DONE),
            (TaskState.BLOCKED, TaskState.WAITING),
            (TaskState.BLOCKED, TaskState.DONE),
            (TaskState.DONE, TaskState.ACTIVE),
        ],
    )
    def test_allowed_transition(self, current: TaskState, target: TaskState) -> None:
        """Each legal (current, target) pair should return True without raising.

        Args:
            current: Starting state.
            target: Target state.
        """
        assert is_valid_transition(current, target) is True
        assert validate_transition(current, target) is True


class TestInvalidTransitions:
    """Verify that illegal transitions raise ``InvalidTransitionError``."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            # Blockers have to clear first
            (TaskState.BLOCKED, TaskState.ACTIVE),
            # Reopening a finished task goes through ACTIVE
            (TaskState.DONE, TaskState.WAITING),
            (TaskState.DONE, TaskState.BLOCKED),
            # Self-transitions are rejected
            (TaskState.ACTIVE, TaskState.ACTIVE),
            (TaskState.WAITING, TaskState.WAITING),
            (TaskState.BLOCKED, TaskState.BLOCKED),
            (TaskState.DONE, TaskState.DONE),
        ],
    )
    def test_invalid_transition_raises(self, current: TaskState, target: TaskState) -> None:
        """Each illegal (current, target) pair should raise InvalidTransitionError.

        Args:
            current: Starting state.
            target: Target state.
        """
        assert is_valid_transition(current, target) is False
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target


class TestNextStates:
    """Verify the adjacency lists exposed to clients."""

    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            (TaskState.ACTIVE, [TaskState.WAITING, TaskState.BLOCKED, TaskState.DONE]),
            (TaskState.WAITING, [TaskState.ACTIVE, TaskState.BLOCKED, TaskState.DONE]),
            (TaskState.BLOCKED, [TaskState.WAITING, TaskState.DONE]),
            (TaskState.DONE, [TaskState.ACTIVE]),
        ],
    )
    def test_next_states_in_table_order(self, state: TaskState, expected: list[TaskState]) -> None:
        """Each state lists its successors in table order.

        Args:
            state: State to query.
            expected: Its successors.
        """
        assert get_valid_next_states(state) == expected

    def test_unknown_state_has_no_successors(self) -> None:
        """An unrecognised state yields an empty list instead of an error."""
        assert get_valid_next_states("ARCHIVED") == []

    def test_request_only_block_can_reactivate(self) -> None:
        """A task BLOCKED with no entries left may go straight back to ACTIVE."""
        assert TaskState.ACTIVE in task_next_states(TaskState.BLOCKED, [])
        assert validate_task_transition(TaskState.BLOCKED, TaskState.ACTIVE, []) is True

    def test_real_blockers_prevent_reactivation(self) -> None:
        """A task with outstanding entries cannot request ACTIVE."""
        entries = [TaskBlock(task_id="other")]
        assert task_next_states(TaskState.BLOCKED, entries) == [TaskState.WAITING, TaskState.DONE]
        with pytest.raises(InvalidTransitionError):
            validate_task_transition(TaskState.BLOCKED, TaskState.ACTIVE, entries)


class TestDeriveState:
    """Verify how a requested state is reconciled with blockers."""

    def test_done_wins_over_blockers(self) -> None:
        assert derive_state([TaskBlock(task_id="x")], TaskState.DONE) == TaskState.DONE

    @pytest.mark.parametrize("desired", [TaskState.ACTIVE, TaskState.WAITING, TaskState.BLOCKED])
    def test_blockers_force_blocked(self, desired: TaskState) -> None:
        """Any non-DONE request on a blocked task resolves to BLOCKED.

        Args:
            desired: Requested state.
        """
        assert derive_state([ParentBlock(task_id="p")], desired) == TaskState.BLOCKED

    @pytest.mark.parametrize("desired", list(TaskState))
    def test_no_blockers_keeps_request(self, desired: TaskState) -> None:
        """Without blockers the requested state is used as-is.

        Args:
            desired: Requested state.
        """
        assert derive_state([], desired) == desired

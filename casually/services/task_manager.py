"""Task manager -- creates, reads, edits and deletes tasks and routine sections.

The ``TaskManager`` is the object every router talks to.  It owns the
``TaskStore``, handles the descriptive CRUD the state machine does not care
about, and delegates every change to ``state`` or ``blocked_by`` to the
blocker-graph and state-engine modules so those two fields are never edited
directly.

Deletions run the reference-repair cascade and the row deletion inside one
transaction.
"""

import logging
import uuid
from typing import Any

from casually.models import (
    Interval,
    ParentBlock,
    Priority,
    Project,
    ProjectDetail,
    Routine,
    RoutineSection,
    Subtask,
    TaskBase,
    TaskKind,
    TaskOverview,
    TaskState,
)
from casually.services import blocker_graph, state_engine
from casually.services.task_store import TaskStore
from casually.state_machine import ProtectedTaskError, task_next_states

logger = logging.getLogger(__name__)

ONE_OFF_TITLE = "One-Off Tasks"

# Fields callers may edit through ``update_*``.  ``state`` and ``blocked_by``
# are deliberately absent.
_EDITABLE_FIELDS: dict[TaskKind, frozenset[str]] = {
    TaskKind.PROJECT: frozenset({"title", "description", "emoji", "priority", "order"}),
    TaskKind.SUBTASK: frozenset({"title", "description", "emoji", "priority", "order"}),
    TaskKind.ROUTINE: frozenset(
        {"title", "description", "emoji", "priority", "order", "section_id", "interval", "custom_interval"}
    ),
}


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _clean_title(title: str, what: str = "title") -> str:
    clean = title.strip() if isinstance(title, str) else ""
    if not clean:
        raise ValueError(f"{what} cannot be empty")
    return clean


def _clean_optional(value: str | None) -> str | None:
    """Trim optional text; blank strings are stored as ``None``."""
    if value is None:
        return None
    return value.strip() or None


class TaskManager:
    """Descriptive CRUD plus the entry points into the state machine.

    Attributes:
        store: The task store every operation reads from and writes to.
    """

    def __init__(self, store: TaskStore) -> None:
        """Initialise the task manager.

        Args:
            store: Backing ``TaskStore``.
        """
        self.store = store

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        title: str,
        priority: Priority,
        *,
        description: str | None = None,
        emoji: str | None = None,
        order: int = 0,
    ) -> Project:
        """Create a new project in the ACTIVE state with no blockers.

        Raises:
            ValueError: If *title* is blank.
        """
        project = Project(
            id=_new_id(),
            title=_clean_title(title),
            description=_clean_optional(description),
            emoji=_clean_optional(emoji),
            priority=priority,
            state=TaskState.ACTIVE,
            order=order,
        )
        with self.store.atomic() as session:
            session.projects.insert(project)
        logger.info("Created project %s (%s)", project.id, project.title)
        return project

    def get_or_create_one_off_project(self) -> Project:
        """Return the container project for loose subtasks, creating it on first use."""
        with self.store.atomic() as session:
            existing = session.projects.find_many(is_one_off=True)
            if existing:
                return existing[0]
            project = Project(
                id=_new_id(),
                title=ONE_OFF_TITLE,
                priority=Priority.MEDIUM,
                state=TaskState.ACTIVE,
                is_one_off=True,
            )
            session.projects.insert(project)
        logger.info("Created one-off project %s", project.id)
        return project

    def get_project(self, project_id: str) -> Project:
        """Retrieve a project by its identifier.

        Raises:
            NotFoundError: If no project with the given ID exists.
        """
        with self.store.snapshot() as session:
            return session.projects.get(project_id)

    def get_project_detail(self, project_id: str) -> ProjectDetail:
        """Retrieve a project together with its subtasks.

        Raises:
            NotFoundError: If no project with the given ID exists.
        """
        with self.store.snapshot() as session:
            project = session.projects.get(project_id)
            subtasks = session.subtasks.find_many(parent_id=project_id)
        return ProjectDetail(**dict(project), subtasks=subtasks)

    def list_projects(self, *, state: TaskState | None = None, priority: Priority | None = None) -> list[Project]:
        filters = {key: value for key, value in (("state", state), ("priority", priority)) if value is not None}
        with self.store.snapshot() as session:
            return session.projects.find_many(**filters)

    def update_project(self, project_id: str, **fields: Any) -> Project:
        """Edit descriptive fields of a project.

        Raises:
            NotFoundError: If the project does not exist.
            ValueError: If a field is not editable or the title is blank.
        """
        return self._update(TaskKind.PROJECT, project_id, fields)

    def delete_project(self, project_id: str) -> None:
        """Delete a project and its subtasks after repairing every reference to them.

        Raises:
            NotFoundError: If the project does not exist.
            ProtectedTaskError: If the project is the one-off container.
        """
        with self.store.atomic() as session:
            project = session.projects.get(project_id)
            if project.is_one_off:
                raise ProtectedTaskError(f"Cannot delete the {ONE_OFF_TITLE} project")
            children = session.subtasks.find_many(parent_id=project_id)
            for child in children:
                state_engine.cascade_on_delete(self.store, child.id, TaskKind.SUBTASK)
            state_engine.cascade_on_delete(self.store, project_id, TaskKind.PROJECT)
            # Subtasks go with the project via ON DELETE CASCADE.
            session.projects.delete(project_id)
        logger.info("Deleted project %s with %d subtask(s)", project_id, len(children))

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    def create_subtask(
        self,
        title: str,
        priority: Priority,
        *,
        parent_id: str | None = None,
        description: str | None = None,
        emoji: str | None = None,
        order: int = 0,
    ) -> Subtask:
        """Create a subtask under *parent_id*, or under the one-off project when omitted.

        A subtask created under a project that is not ACTIVE starts BLOCKED
        by that project; otherwise it starts WAITING.

        Raises:
            NotFoundError: If the parent project does not exist.
            ValueError: If *title* is blank.
        """
        clean_title = _clean_title(title)
        if parent_id is None:
            parent_id = self.get_or_create_one_off_project().id

        with self.store.atomic() as session:
            parent = session.projects.get(parent_id)
            if parent.state == TaskState.ACTIVE:
                blocked_by, state = [], TaskState.WAITING
            else:
                blocked_by, state = [ParentBlock(task_id=parent.id)], TaskState.BLOCKED
            subtask = Subtask(
                id=_new_id(),
                title=clean_title,
                description=_clean_optional(description),
                emoji=_clean_optional(emoji),
                priority=priority,
                state=state,
                order=order,
                blocked_by=blocked_by,
                parent_id=parent.id,
            )
            session.subtasks.insert(subtask)
        logger.info("Created subtask %s under project %s (state=%s)", subtask.id, parent_id, state.value)
        return subtask

    def get_subtask(self, subtask_id: str) -> Subtask:
        """Retrieve a subtask by its identifier.

        Raises:
            NotFoundError: If no subtask with the given ID exists.
        """
        with self.store.snapshot() as session:
            return session.subtasks.get(subtask_id)

    def list_subtasks(
        self,
        *,
        parent_id: str | None = None,
        state: TaskState | None = None,
        priority: Priority | None = None,
    ) -> list[Subtask]:
        filters = {
            key: value
            for key, value in (("parent_id", parent_id), ("state", state), ("priority", priority))
            if value is not None
        }
        with self.store.snapshot() as session:
            return session.subtasks.find_many(**filters)

    def update_subtask(self, subtask_id: str, **fields: Any) -> Subtask:
        """Edit descriptive fields of a subtask.  Use ``move_subtask`` to change its parent."""
        return self._update(TaskKind.SUBTASK, subtask_id, fields)

    def delete_subtask(self, subtask_id: str) -> None:
        """Delete a subtask after removing it from every other subtask's blockers.

        Raises:
            NotFoundError: If the subtask does not exist.
        """
        self._delete_leaf(TaskKind.SUBTASK, subtask_id)

    def move_subtask(self, subtask_id: str, new_parent_id: str) -> Subtask:
        """Move a subtask under another project.  See ``state_engine.move_subtask``."""
        return state_engine.move_subtask(self.store, subtask_id, new_parent_id)

    # ------------------------------------------------------------------
    # Routines
    # ------------------------------------------------------------------

    def create_routine(
        self,
        title: str,
        priority: Priority,
        *,
        section_id: str | None = None,
        interval: Interval | None = None,
        custom_interval: str | None = None,
        description: str | None = None,
        emoji: str | None = None,
        order: int = 0,
    ) -> Routine:
        """Create a routine in the ACTIVE state, optionally inside a section.

        Raises:
            NotFoundError: If *section_id* does not name an existing section.
            ValueError: If *title* is blank.
        """
        routine = Routine(
            id=_new_id(),
            title=_clean_title(title),
            description=_clean_optional(description),
            emoji=_clean_optional(emoji),
            priority=priority,
            state=TaskState.ACTIVE,
            order=order,
            section_id=section_id,
            interval=interval,
            custom_interval=_clean_optional(custom_interval),
        )
        with self.store.atomic() as session:
            if section_id is not None:
                session.sections.get(section_id)
            session.routines.insert(routine)
        logger.info("Created routine %s (section=%s)", routine.id, section_id)
        return routine

    def get_routine(self, routine_id: str) -> Routine:
        """Retrieve a routine by its identifier.

        Raises:
            NotFoundError: If no routine with the given ID exists.
        """
        with self.store.snapshot() as session:
            return session.routines.get(routine_id)

    def list_routines(
        self,
        *,
        section_id: str | None = None,
        state: TaskState | None = None,
        interval: Interval | None = None,
    ) -> list[Routine]:
        filters = {
            key: value
            for key, value in (("section_id", section_id), ("state", state), ("interval", interval))
            if value is not None
        }
        with self.store.snapshot() as session:
            return session.routines.find_many(**filters)

    def update_routine(self, routine_id: str, **fields: Any) -> Routine:
        """Edit descriptive fields of a routine, including its section.

        Raises:
            NotFoundError: If the routine, or a new section it names, does not exist.
        """
        return self._update(TaskKind.ROUTINE, routine_id, fields)

    def delete_routine(self, routine_id: str) -> None:
        """Delete a routine after removing it from every other routine's blockers."""
        self._delete_leaf(TaskKind.ROUTINE, routine_id)

    # ------------------------------------------------------------------
    # Routine sections
    # ------------------------------------------------------------------

    def create_section(self, name: str, *, order: int = 0) -> RoutineSection:
        section = RoutineSection(id=_new_id(), name=_clean_title(name, "name"), order=order)
        with self.store.atomic() as session:
            session.sections.insert(section)
        logger.info("Created routine section %s (%s)", section.id, section.name)
        return section

    def list_sections(self) -> list[RoutineSection]:
        with self.store.snapshot() as session:
            return session.sections.find_many()

    def update_section(self, section_id: str, *, name: str | None = None, order: int | None = None) -> RoutineSection:
        """Rename or reposition a section.

        Raises:
            NotFoundError: If the section does not exist.
        """
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = _clean_title(name, "name")
        if order is not None:
            fields["order"] = order
        with self.store.atomic() as session:
            if not fields:
                return session.sections.get(section_id)
            return session.sections.update(section_id, **fields)

    def delete_section(self, section_id: str) -> None:
        """Delete a section.  Its routines are kept and become ungrouped.

        Raises:
            NotFoundError: If the section does not exist.
        """
        with self.store.atomic() as session:
            session.sections.get(section_id)
            session.sections.delete(section_id)
        logger.info("Deleted routine section %s", section_id)

    # ------------------------------------------------------------------
    # State machine entry points
    # ------------------------------------------------------------------

    def change_state(self, kind: TaskKind, task_id: str, new_state: TaskState) -> TaskBase:
        """Request a state change.  See ``state_engine.change_state``."""
        return state_engine.change_state(self.store, kind, task_id, new_state)

    def valid_next_states(self, kind: TaskKind, task_id: str) -> tuple[TaskBase, list[TaskState]]:
        """Return a task and the states it may move to next.

        Raises:
            NotFoundError: If the task does not exist.
        """
        with self.store.snapshot() as session:
            task = session.table(kind).get(task_id)
        return task, task_next_states(task.state, task.blocked_by)

    def add_blocker(self, kind: TaskKind, task_id: str, blocker_id: str) -> TaskBase:
        """Make *blocker_id* block *task_id*.  See ``blocker_graph.add_blocker``."""
        return blocker_graph.add_blocker(self.store, task_id, blocker_id, kind)

    def remove_blocker(self, kind: TaskKind, task_id: str, blocker_id: str) -> TaskBase:
        """Stop *blocker_id* from blocking *task_id*.  See ``blocker_graph.remove_blocker``."""
        return blocker_graph.remove_blocker(self.store, task_id, blocker_id, kind)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def overview(self, state: TaskState) -> TaskOverview:
        """Return every task, of every kind, currently in *state*."""
        with self.store.snapshot() as session:
            return TaskOverview(
                projects=session.projects.find_many(state=state),
                subtasks=session.subtasks.find_many(state=state),
                routines=session.routines.find_many(state=state),
            )

    def list_blocked(self) -> TaskOverview:
        return self.overview(TaskState.BLOCKED)

    def list_done(self) -> TaskOverview:
        return self.overview(TaskState.DONE)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _update(self, kind: TaskKind, task_id: str, fields: dict[str, Any]) -> Any:
        unknown = set(fields) - _EDITABLE_FIELDS[kind]
        if unknown:
            raise ValueError(f"cannot edit {', '.join(sorted(unknown))} on a {kind.value}")

        values = dict(fields)
        if "title" in values:
            values["title"] = _clean_title(values["title"])
        for key in ("description", "emoji", "custom_interval"):
            if key in values:
                values[key] = _clean_optional(values[key])
        if "order" in values and values["order"] is None:
            raise ValueError("order must be a number")
        if "priority" in values and values["priority"] is None:
            raise ValueError("priority cannot be empty")

        with self.store.atomic() as session:
            table = session.table(kind)
            if not values:
                return table.get(task_id)
            table.get(task_id)
            if values.get("section_id") is not None:
                session.sections.get(values["section_id"])
            updated = table.update(task_id, **values)
        logger.info("Updated %s %s fields=%s", kind.value, task_id, sorted(values))
        return updated

    def _delete_leaf(self, kind: TaskKind, task_id: str) -> None:
        with self.store.atomic() as session:
            table = session.table(kind)
            table.get(task_id)
            state_engine.cascade_on_delete(self.store, task_id, kind)
            table.delete(task_id)
        logger.info("Deleted %s %s", kind.value, task_id)

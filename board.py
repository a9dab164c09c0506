"""
Client view-state for one project's task board.

The board owns the in-memory task list. Dragging a card writes the new status
into the list right away and then asks the server to confirm it; if the
server refuses, only that card goes back to where it was.

    pending = board.begin_move(task_id, "column-done")   # list updated now
    ...                                                   # API call
    board.confirm(pending)  or  board.rollback(pending)

move_task() runs the whole sequence.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from client import ApiError, TaskRecord
from enums import TaskStatus, TaskPriority

logger = logging.getLogger(__name__)

COLUMN_PREFIX = "column-"

TargetId = Union[int, str]

SORT_FIELDS = ("title", "status", "priority", "due_date", "assigned_to", "created_at")

_STATUS_INDEX = {status: index for index, status in enumerate(TaskStatus)}


def column_id(status: TaskStatus) -> str:
    """Drop-target id of a board column."""
    return f"{COLUMN_PREFIX}{TaskStatus.parse(status).value}"


@dataclass(frozen=True)
class PendingMutation:
    """Status change applied locally but not yet confirmed by the server."""
    task_id: int
    previous_value: TaskStatus
    pending_value: TaskStatus


def _sort_key(field: str) -> Callable[[TaskRecord], object]:
    if field == "title":
        return lambda t: t.title.lower()
    if field == "status":
        return lambda t: _STATUS_INDEX[t.status]
    if field == "priority":
        return lambda t: t.priority.weight
    if field == "due_date":
        # tasks without a due date sort as the earliest
        return lambda t: (t.due_date is not None, t.due_date or datetime.min)
    if field == "assigned_to":
        return lambda t: (t.assigned_to.display_name.lower() if t.assigned_to else "")
    if field == "created_at":
        return lambda t: (t.created_at or datetime.min, t.id)
    raise ValueError(f"Unknown sort field: {field}")


class TaskBoard:
    """
    In-memory task list for one project.

    `api` needs get_project_tasks, create_task, update_task,
    update_task_status and delete_task (see client.AgileboardClient).
    Nothing else writes to `tasks`.
    """

    def __init__(self, api, project_id: int):
        self.api = api
        self.project_id = project_id
        self.tasks: List[TaskRecord] = []

    # -------------------- loading --------------------

    def load(self) -> List[TaskRecord]:
        """Replace the list with the server's copy. Errors propagate."""
        self.tasks = list(self.api.get_project_tasks(self.project_id))
        logger.debug("Loaded %d tasks for project %s", len(self.tasks), self.project_id)
        return self.tasks

    # -------------------- queries --------------------

    def find(self, task_id: int) -> Optional[TaskRecord]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def columns(self) -> Dict[TaskStatus, List[TaskRecord]]:
        grouped: Dict[TaskStatus, List[TaskRecord]] = {status: [] for status in TaskStatus}
        for task in self.tasks:
            grouped[task.status].append(task)
        return grouped

    def _set_status(self, task_id: int, status: TaskStatus) -> bool:
        for index, task in enumerate(self.tasks):
            if task.id == task_id:
                self.tasks[index] = replace(task, status=status)
                return True
        return False

    def _put(self, record: TaskRecord) -> None:
        for index, task in enumerate(self.tasks):
            if task.id == record.id:
                self.tasks[index] = record
                return
        self.tasks.append(record)

    # -------------------- drag and drop --------------------

    def resolve_target_status(self, target_id: TargetId) -> Optional[TaskStatus]:
        """
        Status a drop on `target_id` means.

        "column-<status>" is a column; an int or a digit-only string is a
        card id, and the drop takes that card's status. Returns None otherwise.
        """
        if isinstance(target_id, str) and target_id.startswith(COLUMN_PREFIX):
            raw = target_id[len(COLUMN_PREFIX):]
            try:
                return TaskStatus.parse(raw)
            except ValueError:
                logger.error("Invalid status in drop target %r", target_id)
                return None

        if isinstance(target_id, int) and not isinstance(target_id, bool):
            target_task_id = target_id
        elif isinstance(target_id, str) and target_id.isascii() and target_id.isdigit():
            target_task_id = int(target_id)
        else:
            logger.error("Unrecognized drop target %r", target_id)
            return None

        target = self.find(target_task_id)
        if target is None:
            logger.warning("Drop target task %s is not on the board", target_task_id)
            return None
        return target.status

    def begin_move(self, task_id: int, target_id: TargetId) -> Optional[PendingMutation]:
        """
        Apply a drop locally.

        Returns the pending mutation, or None when nothing should happen:
        invalid target, unknown task, or a drop on the task's own status.
        """
        new_status = self.resolve_target_status(target_id)
        if new_status is None:
            return None

        task = self.find(task_id)
        if task is None:
            logger.warning("Dragged task %s is not on the board", task_id)
            return None

        if task.status == new_status:
            return None

        pending = PendingMutation(task_id=task.id, previous_value=task.status,
                                  pending_value=new_status)
        self._set_status(task.id, new_status)
        return pending

    def confirm(self, pending: PendingMutation) -> None:
        # the list already shows pending_value
        logger.debug("Task %s confirmed at %s", pending.task_id, pending.pending_value.value)

    def rollback(self, pending: PendingMutation) -> None:
        """Put one task back to the status it had before the drop."""
        if not self._set_status(pending.task_id, pending.previous_value):
            logger.warning("Task %s left the board before rollback", pending.task_id)

    def move_task(self, task_id: int, target_id: TargetId) -> bool:
        """
        Handle a drop end to end.

        Sends exactly one status update when the move is valid. On failure
        the move is undone and logged; the error is not raised. Returns True
        when the server accepted the new status.
        """
        pending = self.begin_move(task_id, target_id)
        if pending is None:
            return False

        try:
            self.api.update_task_status(pending.task_id, pending.pending_value)
        except (ApiError, ValueError) as e:
            # ValueError: the reply did not parse into a TaskRecord
            logger.error("Moving task %s to %s failed: %r", pending.task_id,
                         pending.pending_value.value, e)
            self.rollback(pending)
            return False

        self.confirm(pending)
        return True

    # -------------------- modal create / edit / delete --------------------

    def add_task(self, **fields) -> Optional[TaskRecord]:
        """Create through the API and add the server's record to the board."""
        try:
            record = self.api.create_task(self.project_id, **fields)
        except (ApiError, ValueError) as e:
            logger.error("Creating task in project %s failed: %s", self.project_id, e)
            return None
        self._put(record)
        return record

    def edit_task(self, task_id: int, **fields) -> Optional[TaskRecord]:
        """Update through the API and replace the local copy with the server's record."""
        try:
            record = self.api.update_task(task_id, **fields)
        except (ApiError, ValueError) as e:
            logger.error("Updating task %s failed: %s", task_id, e)
            return None
        self._put(record)
        return record

    def remove_task(self, task_id: int) -> bool:
        try:
            self.api.delete_task(task_id)
        except ApiError as e:
            logger.error("Deleting task %s failed: %s", task_id, e)
            return False
        self.tasks = [t for t in self.tasks if t.id != task_id]
        return True

    def remove_tasks(self, task_ids: Iterable[int]) -> List[int]:
        """Bulk delete. Only the ids the server deleted leave the board."""
        return [task_id for task_id in list(task_ids) if self.remove_task(task_id)]

    # -------------------- backlog view --------------------

    def backlog(self, search: str = "", status: Optional[TaskStatus] = None,
                priority: Optional[TaskPriority] = None, sort_field: str = "created_at",
                direction: str = "desc") -> List[TaskRecord]:
        """Filtered and sorted rows for the table view."""
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unknown sort direction: {direction}")
        key = _sort_key(sort_field)

        status = TaskStatus.parse(status) if status is not None else None
        priority = TaskPriority.parse(priority) if priority is not None else None
        needle = search.strip().lower()

        rows = []
        for task in self.tasks:
            if status is not None and task.status != status:
                continue
            if priority is not None and task.priority != priority:
                continue
            if needle and needle not in task.title.lower() \
                    and needle not in (task.description or "").lower():
                continue
            rows.append(task)

        return sorted(rows, key=key, reverse=(direction == "desc"))

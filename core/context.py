"""
Session Context

Explicit replacement for ambient global stores: the auth token, the credit
balance and the shared task list are handed to the orchestrator on
construction instead of being read from module-level singletons.
"""

from typing import Iterable, List, Optional, Tuple

import structlog

from core.models import Task

# Configure structured logger
logger = structlog.get_logger(__name__)


class TaskStore:
    """Shared task list plus the current selection."""

    def __init__(self, tasks: Optional[Iterable[Task]] = None):
        self._tasks: Tuple[Task, ...] = tuple(tasks or ())
        self.selected_task: Optional[Task] = None
        self.stale = False

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    def get(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def set_selected_task(self, task: Optional[Task]) -> None:
        self.selected_task = task

    def add_task(self, task: Task) -> None:
        if self.get(task.id) is not None:
            self.update_task(task)
            return
        self._tasks = (task,) + self._tasks

    def update_task(self, task: Task) -> None:
        """Replace the stored copy of a task wholesale"""
        if self.get(task.id) is None:
            self._tasks = (task,) + self._tasks
            return
        self._tasks = tuple(task if t.id == task.id else t for t in self._tasks)

    def replace_all(self, tasks: Iterable[Task]) -> None:
        self._tasks = tuple(tasks)
        self.stale = False
        logger.debug("Task list refreshed", task_count=len(self._tasks))

    def invalidate(self) -> None:
        """Mark the list stale so the next consumer refetches it"""
        self.stale = True
        logger.debug("Task list invalidated")


class SessionContext:
    """Per-user state the orchestrator depends on."""

    def __init__(self, token: Optional[str] = None, credits: int = 0, store: Optional[TaskStore] = None):
        self.token = token
        self.credits = credits
        self.store = store or TaskStore()

    @property
    def has_credits(self) -> bool:
        return self.credits > 0

"""Application state for the task list.

The view state is an immutable ``TaskListState`` advanced by the pure
``reduce`` function. ``TaskStateStore`` owns the current state, is the sink
the synchronizer pushes reconciled tasks into, and notifies subscribers
after every dispatch.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Tuple

from .task import Category, Task
from .utils.datetime import max_utc, min_utc


logger = logging.getLogger(__name__)


FILTERS = ("all", "completed", "pending", "daily", "weekly", "monthly")
SORT_FIELDS = ("createdAt", "dueDate", "priority", "title")
SORT_ORDERS = ("asc", "desc")

PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2}


class ActionType(Enum):
    """State transitions understood by ``reduce``."""
    SET_LOADING = "SET_LOADING"
    SET_TASKS = "SET_TASKS"
    ADD_TASK = "ADD_TASK"
    UPDATE_TASK = "UPDATE_TASK"
    DELETE_TASK = "DELETE_TASK"
    REPLACE_TASK_ID = "REPLACE_TASK_ID"
    SET_FILTER = "SET_FILTER"
    SET_SORT = "SET_SORT"
    SET_SEARCH = "SET_SEARCH"
    SET_CATEGORY = "SET_CATEGORY"


@dataclass(frozen=True)
class Action:
    type: ActionType
    payload: Any = None


@dataclass(frozen=True)
class TaskListState:
    """Everything the task list view renders from."""
    tasks: Tuple[Task, ...] = ()
    is_loading: bool = False
    filter: str = "all"
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    search_query: str = ""
    selected_category: str = "all"

    def find(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


def _upsert(tasks: Tuple[Task, ...], task: Task, prepend: bool) -> Tuple[Task, ...]:
    if any(t.id == task.id for t in tasks):
        return tuple(task if t.id == task.id else t for t in tasks)
    return (task,) + tasks if prepend else tasks + (task,)


def _dedupe(tasks) -> Tuple[Task, ...]:
    by_id = {}
    for task in tasks:
        by_id[task.id] = task
    return tuple(by_id.values())


def reduce(state: TaskListState, action: Action) -> TaskListState:
    """Apply one action and return the next state."""
    kind, payload = action.type, action.payload

    if kind == ActionType.SET_LOADING:
        return replace(state, is_loading=bool(payload))
    if kind == ActionType.SET_TASKS:
        return replace(state, tasks=_dedupe(payload), is_loading=False)
    if kind == ActionType.ADD_TASK:
        return replace(state, tasks=_upsert(state.tasks, payload, prepend=True))
    if kind == ActionType.UPDATE_TASK:
        return replace(state, tasks=_upsert(state.tasks, payload, prepend=False))
    if kind == ActionType.DELETE_TASK:
        return replace(state, tasks=tuple(t for t in state.tasks if t.id != payload))
    if kind == ActionType.REPLACE_TASK_ID:
        old_id, task = payload
        if state.find(old_id) is None:
            return replace(state, tasks=_upsert(state.tasks, task, prepend=True))
        tasks = []
        for t in state.tasks:
            if t.id == old_id:
                tasks.append(task)
            elif t.id != task.id:
                tasks.append(t)
        return replace(state, tasks=tuple(tasks))
    if kind == ActionType.SET_FILTER:
        if payload not in FILTERS:
            raise ValueError(f"Unknown filter: {payload}")
        return replace(state, filter=payload)
    if kind == ActionType.SET_SORT:
        sort_by, sort_order = payload
        if sort_by not in SORT_FIELDS or sort_order not in SORT_ORDERS:
            raise ValueError(f"Unknown sort: {sort_by} {sort_order}")
        return replace(state, sort_by=sort_by, sort_order=sort_order)
    if kind == ActionType.SET_SEARCH:
        return replace(state, search_query=payload or "")
    if kind == ActionType.SET_CATEGORY:
        if payload != "all":
            Category(payload)
        return replace(state, selected_category=payload)

    return state


def _matches(state: TaskListState, task: Task) -> bool:
    if state.selected_category != "all" and task.category.value != state.selected_category:
        return False

    if state.filter == "completed" and not task.completed:
        return False
    if state.filter == "pending" and task.completed:
        return False
    if state.filter in ("daily", "weekly", "monthly") and task.frequency.value != state.filter:
        return False

    if state.search_query:
        query = state.search_query.lower()
        return query in task.title.lower() or query in (task.description or "").lower()

    return True


def _sort_key(sort_by: str, descending: bool):
    # Missing due dates sort last in either direction
    missing_due = min_utc() if descending else max_utc()

    def key(task: Task):
        if sort_by == "dueDate":
            return task.due_date or missing_due
        if sort_by == "priority":
            return PRIORITY_RANK[task.priority.value]
        if sort_by == "title":
            return task.title.lower()
        return task.created_at
    return key


def visible_tasks(state: TaskListState) -> List[Task]:
    """Filter, search and sort the task list the way the list view shows it."""
    descending = state.sort_order == "desc"
    tasks = [t for t in state.tasks if _matches(state, t)]
    return sorted(tasks, key=_sort_key(state.sort_by, descending), reverse=descending)


class TaskSink(Protocol):
    """What the synchronizer pushes reconciled task data into.

    Every method is a replace-by-identifier operation, so repeating a call
    leaves the same result.
    """

    def replace_tasks(self, tasks: List[Task]) -> None: ...

    def upsert_task(self, task: Task) -> None: ...

    def remove_task(self, task_id: str) -> None: ...

    def replace_task_id(self, old_id: str, task: Task) -> None: ...


Listener = Callable[[TaskListState, Action], None]


class TaskStateStore:
    """Holds the current ``TaskListState`` and dispatches actions to it."""

    def __init__(self, initial: Optional[TaskListState] = None):
        self.state = initial or TaskListState()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def dispatch(self, action: Action) -> TaskListState:
        self.state = reduce(self.state, action)
        for listener in list(self._listeners):
            listener(self.state, action)
        return self.state

    @property
    def visible(self) -> List[Task]:
        return visible_tasks(self.state)

    # Sink interface

    def replace_tasks(self, tasks: List[Task]) -> None:
        self.dispatch(Action(ActionType.SET_TASKS, list(tasks)))

    def upsert_task(self, task: Task) -> None:
        if self.state.find(task.id) is None:
            self.dispatch(Action(ActionType.ADD_TASK, task))
        else:
            self.dispatch(Action(ActionType.UPDATE_TASK, task))

    def remove_task(self, task_id: str) -> None:
        self.dispatch(Action(ActionType.DELETE_TASK, task_id))

    def replace_task_id(self, old_id: str, task: Task) -> None:
        self.dispatch(Action(ActionType.REPLACE_TASK_ID, (old_id, task)))

    # View controls

    def set_loading(self, loading: bool):
        self.dispatch(Action(ActionType.SET_LOADING, loading))

    def set_filter(self, value: str):
        self.dispatch(Action(ActionType.SET_FILTER, value))

    def set_sort(self, sort_by: str, sort_order: str):
        self.dispatch(Action(ActionType.SET_SORT, (sort_by, sort_order)))

    def set_search(self, query: str):
        self.dispatch(Action(ActionType.SET_SEARCH, query))

    def set_category(self, category: str):
        self.dispatch(Action(ActionType.SET_CATEGORY, category))

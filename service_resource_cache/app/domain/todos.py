"""
Todo resource models, cache keys and pure list helpers.
"""

import math
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from ..caching.keys import CacheKey, with_query

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

TODOS_PATH = "/todos"
DEFAULT_PAGE_SIZE = 8
ALL = "all"


class Priority(str, Enum):
    """Todo priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_ORDER = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


class Todo(BaseModel):
    """Todo record as served by the backend."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: int = Field(..., description="Backend identifier; negative while provisional")
    title: str = Field(..., description="Todo title")
    description: str = Field(..., description="Free-form description")
    completed: bool = Field(..., description="Completion flag")
    priority: Priority = Field(..., description="Priority level")
    category: str = Field(..., description="Category name")
    created_at: str = Field(..., alias="createdAt", description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., alias="updatedAt", description="Last update timestamp (ISO 8601)")

    @property
    def is_provisional(self) -> bool:
        return self.id < 0


class TodoStats(BaseModel):
    """Aggregate statistics over all todos."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    total: int
    completed: int
    pending: int
    completion_rate: int = Field(..., alias="completionRate")
    category_stats: Dict[str, int] = Field(..., alias="categoryStats")
    priority_stats: Dict[str, int] = Field(..., alias="priorityStats")


class Page(BaseModel, Generic[T]):
    """One page of a paginated list response."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    items: List[T]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    has_more: bool = Field(..., alias="hasMore")


TodoPage = Page[Todo]


def _strip_required_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Title must not be empty")
    return value


class CreateTodoInput(BaseModel):
    """Body of ``POST /todos``."""

    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    category: str = "personal"

    @field_validator("title")
    @classmethod
    def _title_required(cls, value: str) -> str:
        return _strip_required_title(value)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return value.strip()


class UpdateTodoInput(BaseModel):
    """Body of ``PUT /todos/<id>``: the full editable field set."""

    title: str
    description: str = ""
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    category: str = "personal"

    @field_validator("title")
    @classmethod
    def _title_required(cls, value: str) -> str:
        return _strip_required_title(value)


class PatchTodoInput(BaseModel):
    """Body of ``PATCH /todos/<id>``: any subset of editable fields."""

    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    category: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _strip_required_title(value)

    def changes(self) -> Dict[str, Any]:
        """Only the fields the caller supplied, JSON-ready."""
        return self.model_dump(mode="json", exclude_unset=True)


class TodoFilters(BaseModel):
    """List filters; ``all`` leaves a dimension unfiltered."""

    category: str = ALL
    priority: str = ALL
    completed: str = ALL

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.category != ALL:
            params["category"] = self.category
        if self.priority != ALL:
            params["priority"] = self.priority
        if self.completed != ALL:
            params["completed"] = self.completed
        return params


def parse_input(model: Type[M], data: Any) -> M:
    """Validate caller input, raising the cache's ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            {"path": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        message = "; ".join(f"{err['path']}: {err['message']}" for err in errors)
        raise ValidationError(message, details={"errors": errors}) from exc


# Cache keys

def list_url(page: int, limit: int = DEFAULT_PAGE_SIZE, filters: Optional[TodoFilters] = None) -> CacheKey:
    params: Dict[str, Any] = {"page": page, "limit": limit}
    if filters is not None:
        params.update(filters.to_params())
    return with_query(TODOS_PATH, params)


def detail_url(todo_id: int) -> CacheKey:
    return f"{TODOS_PATH}/{todo_id}"


def stats_url() -> CacheKey:
    return f"{TODOS_PATH}/stats"


# Pure helpers

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_completion_rate(todos: List[Todo]) -> int:
    """Percentage of completed todos, rounded half up."""
    if not todos:
        return 0
    completed = sum(1 for todo in todos if todo.completed)
    return _round_half_up(completed / len(todos) * 100)


def sort_by_priority(todos: Iterable[Todo]) -> List[Todo]:
    return sorted(todos, key=lambda todo: PRIORITY_ORDER.get(todo.priority, 0), reverse=True)


def sort_by_created_at(todos: Iterable[Todo], desc: bool = True) -> List[Todo]:
    return sorted(todos, key=lambda todo: todo.created_at, reverse=desc)


def filter_todos(
    todos: Iterable[Todo],
    category: Optional[str] = None,
    priority: Optional[str] = None,
    completed: Optional[bool] = None,
) -> List[Todo]:
    result = []
    for todo in todos:
        if category and category != ALL and todo.category != category:
            continue
        if priority and priority != ALL and todo.priority != priority:
            continue
        if completed is not None and todo.completed != completed:
            continue
        result.append(todo)
    return result


def search_todos(todos: List[Todo], query: str) -> List[Todo]:
    """Case-insensitive match on title or description."""
    if not query.strip():
        return list(todos)
    needle = query.lower()
    return [
        todo for todo in todos
        if needle in todo.title.lower() or needle in todo.description.lower()
    ]


def compute_stats(todos: List[Todo]) -> TodoStats:
    category_stats: Dict[str, int] = {}
    priority_stats: Dict[str, int] = {}
    for todo in todos:
        category_stats[todo.category] = category_stats.get(todo.category, 0) + 1
        priority = todo.priority.value
        priority_stats[priority] = priority_stats.get(priority, 0) + 1

    completed = sum(1 for todo in todos if todo.completed)
    return TodoStats(
        total=len(todos),
        completed=completed,
        pending=len(todos) - completed,
        completion_rate=calculate_completion_rate(todos),
        category_stats=category_stats,
        priority_stats=priority_stats,
    )

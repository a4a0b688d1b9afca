"""
Optimistic todo operations against one cached list page.
"""

import itertools
from datetime import datetime, timezone
from typing import Any, Optional

from shared.logging import get_logger
from ..adapters.todo_client import TodoApiClient
from ..caching.keys import CacheKey, prefix_predicate
from ..caching.resource_cache import ResourceCache
from ..mutations.transforms import patch_item, prepend_item, remove_item, replace_item
from .todos import (
    CreateTodoInput,
    PatchTodoInput,
    Todo,
    UpdateTodoInput,
    parse_input,
    TODOS_PATH,
)


_TODO_KEYS = prefix_predicate(TODOS_PATH)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TodoActions:
    """Create, update, toggle and delete todos with immediate local feedback.

    Every action edits the list cached under ``list_key`` before the request
    is sent. On success the server's record replaces the provisional one and
    every ``/todos`` key, the edited page included, is invalidated.
    On failure the list is restored and the error is raised to the caller.
    Input is validated before anything is written.
    """

    def __init__(self, cache: ResourceCache, client: TodoApiClient, list_key: CacheKey):
        self.cache = cache
        self.client = client
        self.list_key = list_key
        self.logger = get_logger("resource_cache.todo_actions")
        self._temporary_ids = itertools.count(-1, -1)

    def _provisional(self, todo_input: CreateTodoInput) -> Todo:
        timestamp = _now()
        return Todo(
            id=next(self._temporary_ids),
            title=todo_input.title,
            description=todo_input.description,
            completed=False,
            priority=todo_input.priority,
            category=todo_input.category,
            created_at=timestamp,
            updated_at=timestamp,
        )

    async def add_todo(self, data: Any) -> Todo:
        todo_input = parse_input(CreateTodoInput, data)
        provisional = self._provisional(todo_input)
        self.logger.debug("Adding todo", temporary_id=provisional.id, title=todo_input.title)

        return await self.cache.mutations.mutate(
            self.list_key,
            apply=lambda page: prepend_item(page, provisional),
            execute=lambda: self.client.create_todo(todo_input),
            commit=lambda page, created: replace_item(page, provisional.id, created),
            affected=_TODO_KEYS,
            operation="create",
        )

    async def toggle_complete(self, todo: Todo) -> Todo:
        completed = not todo.completed
        return await self.cache.mutations.mutate(
            self.list_key,
            apply=lambda page: patch_item(page, todo.id, {"completed": completed}),
            execute=lambda: self.client.toggle_complete(todo.id, completed),
            commit=lambda page, updated: replace_item(page, todo.id, updated),
            affected=_TODO_KEYS,
            operation="toggle",
        )

    async def update_todo(self, todo_id: int, data: Any) -> Todo:
        todo_input = parse_input(UpdateTodoInput, data)
        return await self.cache.mutations.mutate(
            self.list_key,
            apply=lambda page: patch_item(page, todo_id, todo_input.model_dump()),
            execute=lambda: self.client.update_todo(todo_id, todo_input),
            commit=lambda page, updated: replace_item(page, todo_id, updated),
            affected=_TODO_KEYS,
            operation="update",
        )

    async def patch_todo(self, todo_id: int, data: Any) -> Todo:
        todo_input = parse_input(PatchTodoInput, data)
        changes = todo_input.model_dump(exclude_unset=True)
        return await self.cache.mutations.mutate(
            self.list_key,
            apply=lambda page: patch_item(page, todo_id, changes),
            execute=lambda: self.client.patch_todo(todo_id, todo_input),
            commit=lambda page, updated: replace_item(page, todo_id, updated),
            affected=_TODO_KEYS,
            operation="patch",
        )

    async def delete_todo(self, todo_id: int) -> Optional[Todo]:
        return await self.cache.mutations.mutate(
            self.list_key,
            apply=lambda page: remove_item(page, todo_id),
            execute=lambda: self.client.delete_todo(todo_id),
            commit=lambda page, deleted: page,
            affected=_TODO_KEYS,
            operation="delete",
        )

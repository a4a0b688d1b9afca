"""
Mock todo backend implementing the ``/api/todos`` REST contract in memory.

Used by tests through ``httpx.ASGITransport``; can also be served with
uvicorn for local development.
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.errors import NotFoundError, ResourceCacheException, ValidationError, error_for_status
from shared.logging import get_logger
from service_resource_cache.app.domain.todos import (
    Priority,
    Todo,
    compute_stats,
    filter_todos,
)

SEED_TODOS = [
    {"title": "Read the SWR docs", "description": "Revalidation and dedupe", "priority": "high", "category": "study"},
    {"title": "Buy groceries", "description": "", "priority": "medium", "category": "personal"},
    {"title": "Quarterly report", "description": "Draft section 2", "priority": "high", "category": "work"},
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


class MockTodoBackend:
    """Mock todo backend implementation."""

    def __init__(self, seed: bool = False, latency: float = 0.0):
        self.logger = get_logger("mock.todo_backend")
        self.app = FastAPI(title="Mock Todo Backend", version="1.0.0")
        self.latency = latency

        self.todos: Dict[int, Todo] = {}
        self.next_id = 1
        self.requests: List[Tuple[str, str]] = []
        self._failures: Deque[Tuple[str, int]] = deque()

        if seed:
            for data in SEED_TODOS:
                self.add(**data)

        self._setup_routes()

    # Test controls

    def add(self, title: str, description: str = "", completed: bool = False,
            priority: str = "medium", category: str = "personal") -> Todo:
        """Insert a record directly, bypassing HTTP."""
        timestamp = _now()
        todo = Todo(
            id=self.next_id,
            title=title,
            description=description,
            completed=completed,
            priority=Priority(priority),
            category=category,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.todos[todo.id] = todo
        self.next_id += 1
        return todo

    def fail_next(self, method: str, status: int = 500, times: int = 1) -> None:
        """Answer the next ``times`` requests with ``method`` using ``status``."""
        for _ in range(times):
            self._failures.append((method.upper(), status))

    def count(self, method: str, path: str) -> int:
        """Number of requests received for ``method`` and ``path`` (query included)."""
        return sum(1 for logged in self.requests if logged == (method.upper(), path))

    def _injected_failure(self, method: str) -> Optional[JSONResponse]:
        for index, (failing_method, status) in enumerate(self._failures):
            if failing_method == method:
                del self._failures[index]
                return self._error(error_for_status(status, "Injected failure for testing"))
        return None

    # Helpers

    @staticmethod
    def _ok(data: Any, message: str) -> Dict[str, Any]:
        return {"code": 200, "data": data, "message": message}

    @staticmethod
    def _error(exc: ResourceCacheException) -> JSONResponse:
        return JSONResponse(status_code=exc.status, content=exc.to_response().model_dump(exclude_none=True))

    def _not_found(self) -> JSONResponse:
        return self._error(NotFoundError("The requested todo does not exist"))

    def _blank_title(self) -> JSONResponse:
        return self._error(ValidationError("Please enter a todo title"))

    @staticmethod
    def _dump(todo: Todo) -> Dict[str, Any]:
        return todo.model_dump(mode="json", by_alias=True)

    def _sorted(self) -> List[Todo]:
        return sorted(self.todos.values(), key=lambda todo: (todo.updated_at, todo.id), reverse=True)

    def _save(self, todo: Todo, **changes) -> Todo:
        updated = todo.model_copy(update={**changes, "updated_at": _now()})
        self.todos[todo.id] = updated
        return updated

    def _setup_routes(self):
        """Set up mock backend routes."""

        @self.app.middleware("http")
        async def record_request(request: Request, call_next):
            path = request.url.path
            if request.url.query:
                path = f"{path}?{request.url.query}"
            self.requests.append((request.method, path))

            if self.latency:
                await asyncio.sleep(self.latency)

            failure = self._injected_failure(request.method)
            if failure is not None:
                self.logger.info("Injecting failure", method=request.method, path=path, status=failure.status_code)
                return failure
            return await call_next(request)

        @self.app.get("/api/todos")
        async def list_todos(
            page: int = 1,
            limit: int = 10,
            category: Optional[str] = None,
            priority: Optional[str] = None,
            completed: Optional[str] = None,
        ):
            """Paginated, filtered list sorted by last update."""
            completed_flag = None if completed in (None, "", "all") else completed == "true"
            todos = filter_todos(self._sorted(), category=category, priority=priority, completed=completed_flag)

            total = len(todos)
            total_pages = -(-total // limit) if limit > 0 else 0
            start = (page - 1) * limit
            items = todos[start:start + limit]

            return self._ok(
                {
                    "items": [self._dump(todo) for todo in items],
                    "total": total,
                    "page": page,
                    "limit": limit,
                    "hasMore": page < total_pages,
                },
                "Todo list fetched",
            )

        @self.app.post("/api/todos")
        async def create_todo(request: Request):
            body = await request.json()
            if _blank(body.get("title")):
                return self._blank_title()

            todo = self.add(
                title=body["title"].strip(),
                description=(body.get("description") or "").strip(),
                priority=body.get("priority") or "medium",
                category=body.get("category") or "personal",
            )
            self.logger.info("Todo created", todo_id=todo.id)
            return self._ok(self._dump(todo), "Todo created")

        # Must be registered before /api/todos/{todo_id}
        @self.app.get("/api/todos/stats")
        async def todo_stats():
            stats = compute_stats(list(self.todos.values()))
            return self._ok(stats.model_dump(mode="json", by_alias=True), "Todo stats fetched")

        @self.app.get("/api/todos/{todo_id}")
        async def get_todo(todo_id: int):
            todo = self.todos.get(todo_id)
            if todo is None:
                return self._not_found()
            return self._ok(self._dump(todo), "Todo fetched")

        @self.app.put("/api/todos/{todo_id}")
        async def update_todo(todo_id: int, request: Request):
            body = await request.json()
            if _blank(body.get("title")):
                return self._blank_title()
            todo = self.todos.get(todo_id)
            if todo is None:
                return self._not_found()

            updated = self._save(
                todo,
                title=body["title"].strip(),
                description=(body.get("description") or "").strip(),
                completed=bool(body.get("completed")),
                priority=Priority(body.get("priority") or "medium"),
                category=body.get("category") or "personal",
            )
            return self._ok(self._dump(updated), "Todo updated")

        @self.app.patch("/api/todos/{todo_id}")
        async def patch_todo(todo_id: int, request: Request):
            body = await request.json()
            if "title" in body and _blank(body["title"]):
                return self._blank_title()
            todo = self.todos.get(todo_id)
            if todo is None:
                return self._not_found()

            changes: Dict[str, Any] = {}
            for field in ("title", "description"):
                if field in body:
                    changes[field] = body[field].strip()
            if "completed" in body:
                changes["completed"] = bool(body["completed"])
            if "priority" in body:
                changes["priority"] = Priority(body["priority"])
            if "category" in body:
                changes["category"] = body["category"]

            updated = self._save(todo, **changes)
            return self._ok(self._dump(updated), "Todo updated")

        @self.app.delete("/api/todos/{todo_id}")
        async def delete_todo(todo_id: int):
            todo = self.todos.pop(todo_id, None)
            if todo is None:
                return self._not_found()
            self.logger.info("Todo deleted", todo_id=todo_id)
            return self._ok(self._dump(todo), "Todo deleted")


def create_app(seed: bool = True) -> FastAPI:
    """Application factory for ``uvicorn --factory``."""
    return MockTodoBackend(seed=seed).app

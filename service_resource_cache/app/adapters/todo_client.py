"""
REST client for the todo backend.
"""

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ErrorResponse, NetworkError, RequestTimeoutError, error_for_status
from shared.logging import get_logger
from ..caching.keys import without_leading_slash
from ..domain.todos import (
    CreateTodoInput,
    PatchTodoInput,
    Todo,
    TodoFilters,
    TodoPage,
    TodoStats,
    UpdateTodoInput,
    detail_url,
    list_url,
    parse_input,
    stats_url,
    TODOS_PATH,
    DEFAULT_PAGE_SIZE,
)
from ..fetching.validation import enveloped

_todo = enveloped(Todo)
_page = enveloped(TodoPage)
_stats = enveloped(TodoStats)


class TodoApiClient:
    """Client for the ``/todos`` resource.

    ``get`` returns the raw ``{code, data, message}`` envelope and is what the
    fetch coordinator uses; the typed helpers unwrap and validate ``data``.
    Non-success statuses are mapped onto the shared error taxonomy.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.auth_token = auth_token
        self.transport = transport
        self.logger = get_logger("resource_cache.todo_client")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{without_leading_slash(path)}"

    async def request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """Send one request and return the decoded JSON body."""
        url = self._url(path)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, json=json, headers=self._headers())
        except httpx.TimeoutException as exc:
            self.logger.warning("Todo API request timed out", method=method, url=url)
            raise RequestTimeoutError(self.timeout, details={"url": url, "method": method}) from exc
        except httpx.TransportError as exc:
            self.logger.warning("Todo API unreachable", method=method, url=url, error=str(exc))
            raise NetworkError(str(exc) or "Network error", details={"url": url, "method": method}) from exc

        if response.is_success:
            self.logger.debug("Todo API request succeeded", method=method, url=url, status_code=response.status_code)
            return response.json()

        raise self._error_for(response, method, url)

    def _error_for(self, response: httpx.Response, method: str, url: str) -> Exception:
        status = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = {}
        try:
            error_body = ErrorResponse.model_validate(body)
        except PydanticValidationError:
            error_body = None

        message = error_body.message if error_body is not None else None
        message = message or response.reason_phrase or f"HTTP {status}"
        details = {"url": url, "method": method, "status_code": status, "body": body}
        if error_body is not None and error_body.error:
            details["error"] = error_body.error

        self.logger.info("Todo API request failed", method=method, url=url, status_code=status, message=message)
        return error_for_status(status, message, details)

    # Reads

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def list_todos(
        self,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        filters: Optional[TodoFilters] = None,
    ) -> TodoPage:
        key = list_url(page, limit, filters)
        return _page.validate(await self.get(key), key=key)

    async def get_todo(self, todo_id: int) -> Todo:
        key = detail_url(todo_id)
        return _todo.validate(await self.get(key), key=key)

    async def get_stats(self) -> TodoStats:
        key = stats_url()
        return _stats.validate(await self.get(key), key=key)

    # Writes

    async def create_todo(self, data: Any) -> Todo:
        body = parse_input(CreateTodoInput, data).model_dump(mode="json")
        return _todo.validate(await self.request("POST", TODOS_PATH, json=body), key=TODOS_PATH)

    async def update_todo(self, todo_id: int, data: Any) -> Todo:
        body = parse_input(UpdateTodoInput, data).model_dump(mode="json")
        key = detail_url(todo_id)
        return _todo.validate(await self.request("PUT", key, json=body), key=key)

    async def patch_todo(self, todo_id: int, data: Any) -> Todo:
        body = parse_input(PatchTodoInput, data).changes()
        key = detail_url(todo_id)
        return _todo.validate(await self.request("PATCH", key, json=body), key=key)

    async def delete_todo(self, todo_id: int) -> Todo:
        key = detail_url(todo_id)
        return _todo.validate(await self.request("DELETE", key), key=key)

    async def toggle_complete(self, todo_id: int, completed: bool) -> Todo:
        return await self.patch_todo(todo_id, {"completed": completed})

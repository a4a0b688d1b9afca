"""
End-to-end tests for the todo cache against the mock backend.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from mocks.todo_backend.server import MockTodoBackend
from service_resource_cache.app.domain.todos import TodoFilters
from service_resource_cache.app.main import TodoCacheService
from shared.config import get_config
from shared.errors import NotFoundError, ServerError


class TestCacheFlow:
    """End-to-end cache flow: mount, paginate, mutate, reconnect."""

    @pytest.fixture
    def backend(self):
        backend = MockTodoBackend()
        for index in range(1, 6):
            backend.add(f"Todo {index}", category="work" if index % 2 else "personal")
        return backend

    @pytest_asyncio.fixture
    async def service(self, backend):
        config = get_config(
            api_base_url="http://testserver/api",
            retry_interval=0,
            page_size=2,
            dedupe_interval=2.0,
        )
        service = TodoCacheService(config, transport=httpx.ASGITransport(app=backend.app))
        await service.start()
        yield service
        await service.stop()

    @pytest.mark.asyncio
    async def test_concurrent_mounts_share_one_request(self, service, backend):
        subscriptions = [service.todos(page=1) for _ in range(3)]

        await asyncio.gather(*(subscription.ready() for subscription in subscriptions))

        assert backend.count("GET", "/api/todos?page=1&limit=2") == 1
        assert all(s.entry.data.total == 5 for s in subscriptions)

    @pytest.mark.asyncio
    async def test_remount_serves_cached_data_within_dedupe_window(self, service, backend):
        first = service.todos(page=1)
        await first.ready()
        first.close()

        second = service.todos(page=1)

        assert second.task is None
        assert second.entry.data.total == 5
        assert backend.count("GET", "/api/todos?page=1&limit=2") == 1

    @pytest.mark.asyncio
    async def test_infinite_list_walks_all_pages(self, service, backend):
        infinite = service.infinite_todos()

        await infinite.load()
        while await infinite.load_more():
            pass

        assert infinite.size == 3
        assert infinite.has_more is False
        assert [todo.title for todo in infinite.items] == [f"Todo {index}" for index in range(5, 0, -1)]
        infinite.close()

    @pytest.mark.asyncio
    async def test_filtered_list(self, service):
        subscription = service.todos(page=1, filters=TodoFilters(category="work"))

        entry = await subscription.ready()

        assert subscription.key == "/todos?page=1&limit=2&category=work"
        assert entry.data.total == 3
        assert entry.data.has_more is True

    @pytest.mark.asyncio
    async def test_create_updates_list_and_stats(self, service, backend):
        page = service.todos(page=1)
        stats = service.stats()
        await asyncio.gather(page.ready(), stats.ready())

        created = await service.actions(page=1).add_todo({"title": "Buy milk", "category": "personal"})
        await service.scheduler.wait_idle()

        assert created.id == 6
        assert page.entry.data.items[0].id == 6
        assert page.entry.data.total == 6
        assert stats.entry.data.total == 6
        assert stats.entry.data.category_stats["personal"] == 3

    @pytest.mark.asyncio
    async def test_create_keeps_page_boundaries(self, service, backend):
        first, second = service.todos(page=1), service.todos(page=2)
        await asyncio.gather(first.ready(), second.ready())

        await service.actions(page=1).add_todo({"title": "Buy milk"})
        await service.scheduler.wait_idle()

        first_ids = [todo.id for todo in first.entry.data.items]
        second_ids = [todo.id for todo in second.entry.data.items]
        assert first_ids == [6, 5]
        assert second_ids == [4, 3]
        assert not set(first_ids) & set(second_ids)

    @pytest.mark.asyncio
    async def test_toggle_moves_todo_to_server_position(self, service, backend):
        first, second = service.todos(page=1), service.todos(page=2)
        await asyncio.gather(first.ready(), second.ready())
        todo = second.entry.data.items[0]

        await service.actions(page=2).toggle_complete(todo)
        await service.scheduler.wait_idle()

        assert first.entry.data.items[0].id == todo.id
        assert first.entry.data.items[0].completed is True
        assert todo.id not in [item.id for item in second.entry.data.items]

    @pytest.mark.asyncio
    async def test_detail_not_found_is_stored_on_entry(self, service):
        subscription = service.todo(404)

        entry = await subscription.ready()

        assert isinstance(entry.error, NotFoundError)
        assert entry.data is None

    @pytest.mark.asyncio
    async def test_transient_read_failure_is_retried(self, service, backend):
        backend.fail_next("GET", status=503, times=2)

        entry = await service.stats().ready()

        assert entry.error is None
        assert entry.data.total == 5
        assert backend.count("GET", "/api/todos/stats") == 3
        assert service.metrics.sample("cache_fetch_retries_total", error_type="ServerError") == 2

    @pytest.mark.asyncio
    async def test_failed_read_keeps_previous_data(self, service, backend):
        subscription = service.stats()
        await subscription.ready()
        backend.fail_next("GET", status=500, times=4)

        entry = await service.cache.revalidate(subscription.key)

        assert isinstance(entry.error, ServerError)
        assert entry.data is None
        assert entry.previous_data.total == 5

    @pytest.mark.asyncio
    async def test_reconnect_refreshes_mounted_views(self, service, backend):
        subscription = service.todos(page=1)
        await subscription.ready()
        backend.add("Added elsewhere")

        service.set_online(False)
        await asyncio.gather(*service.set_online(True))

        # Still inside the dedupe window of the mount.
        assert subscription.entry.data.total == 5

        service.scheduler.clock = lambda: float("inf")
        await asyncio.gather(*service.set_online(False), *service.set_online(True))

        assert subscription.entry.data.total == 6
        assert subscription.entry.data.items[0].title == "Added elsewhere"

    @pytest.mark.asyncio
    async def test_preload_without_subscribers(self, service, backend):
        todo = backend.todos[1]

        data = await service.cache.preload(f"/todos/{todo.id}")

        assert data["title"] == todo.title
        assert service.cache.get_data(f"/todos/{todo.id}")["id"] == todo.id

    @pytest.mark.asyncio
    async def test_paused_cache_does_not_fetch_on_mount(self, service, backend):
        service.cache.pause()

        subscription = service.todos(page=1)

        assert subscription.task is None
        assert backend.count("GET", "/api/todos?page=1&limit=2") == 0

        service.cache.resume()
        entry = await service.cache.revalidate(subscription.key)
        assert entry.data.total == 5

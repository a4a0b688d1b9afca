"""
Unit tests for the revalidation scheduler.
"""

import asyncio
from dataclasses import replace

import pytest
from unittest.mock import AsyncMock

from service_resource_cache.app.caching.keys import prefix_predicate
from service_resource_cache.app.caching.store import CacheStore
from service_resource_cache.app.fetching.coordinator import FetchCoordinator
from service_resource_cache.app.revalidation.scheduler import RevalidationConfig, RevalidationScheduler
from shared.errors import NotFoundError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from shared.test_helpers import envelope


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def _noop(entry):
    pass


class TestRevalidationScheduler:
    """Test cases for RevalidationScheduler."""

    @pytest.fixture
    def store(self):
        return CacheStore()

    @pytest.fixture
    def fetcher(self):
        """Network stub answering every key with its own name."""
        return AsyncMock(side_effect=lambda key: envelope(f"data:{key}"))

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("test")

    @pytest.fixture
    def make_scheduler(self, store, fetcher, clock, metrics):
        def factory(**config):
            coordinator = FetchCoordinator(fetcher, retry_config=RetryConfig.fixed(retries=0, interval=0))
            return RevalidationScheduler(store, coordinator, RevalidationConfig(**config), clock=clock, metrics=metrics)
        return factory

    @pytest.fixture
    def scheduler(self, make_scheduler):
        return make_scheduler()

    @pytest.mark.asyncio
    async def test_revalidate_without_subscribers_is_noop(self, scheduler, store, fetcher):
        store.set_data("/todos", "cached")

        assert scheduler.revalidate("/todos") is None
        await asyncio.sleep(0)

        fetcher.assert_not_called()
        assert store.get("/todos").data == "cached"

    @pytest.mark.asyncio
    async def test_revalidate_writes_fetched_data(self, scheduler, store, fetcher):
        seen = []
        store.subscribe("/todos", lambda entry: seen.append((entry.is_validating, entry.data)))

        entry = await scheduler.revalidate("/todos")

        assert entry.data == "data:/todos"
        assert entry.is_validating is False
        assert seen == [(True, None), (False, "data:/todos")]
        fetcher.assert_awaited_once_with("/todos")

    @pytest.mark.asyncio
    async def test_revalidate_joins_running_task(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)

        first = scheduler.revalidate("/todos")
        second = scheduler.revalidate("/todos")

        assert first is second
        await first
        assert fetcher.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_revalidation_records_error(self, scheduler, store, fetcher):
        store.set_data("/todos/1", "old")
        store.subscribe("/todos/1", _noop)
        fetcher.side_effect = NotFoundError()

        entry = await scheduler.revalidate("/todos/1")

        assert isinstance(entry.error, NotFoundError)
        assert entry.data is None
        assert entry.previous_data == "old"
        assert entry.is_validating is False

    @pytest.mark.asyncio
    async def test_success_after_failure_clears_error(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)
        fetcher.side_effect = [NotFoundError(), envelope("fresh")]

        await scheduler.revalidate("/todos")
        entry = await scheduler.revalidate("/todos")

        assert entry.error is None
        assert entry.data == "fresh"
        assert entry.previous_data is None

    @pytest.mark.asyncio
    async def test_mount_fetches_missing_key(self, scheduler, store):
        store.subscribe("/todos", _noop)

        task = scheduler.trigger_mount("/todos")

        assert task is not None
        assert (await task).data == "data:/todos"

    @pytest.mark.asyncio
    async def test_mount_with_fresh_data_is_deduplicated(self, scheduler, store, fetcher, clock):
        store.subscribe("/todos", _noop)
        await scheduler.revalidate("/todos")

        assert scheduler.trigger_mount("/todos") is None

        clock.advance(2.5)
        task = scheduler.trigger_mount("/todos")
        assert task is not None
        await task
        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_mount_with_stale_data_bypasses_dedupe(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)
        await scheduler.revalidate("/todos")
        store.set("/todos", lambda entry: replace(entry, stale=True))

        task = scheduler.trigger_mount("/todos")

        assert task is not None
        await task
        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_mount_while_paused(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)
        scheduler.pause()

        assert scheduler.trigger_mount("/todos") is None

        scheduler.resume()
        assert scheduler.trigger_mount("/todos") is not None
        await scheduler.wait_idle()

    @pytest.mark.asyncio
    async def test_explicit_revalidate_ignores_dedupe_window(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)

        await scheduler.revalidate("/todos")
        await scheduler.revalidate("/todos")

        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_write_with_revalidate_schedules_fetch(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)

        task = store.set_data("/todos", "local", revalidate=True)

        assert task is not None
        assert (await task).data == "data:/todos"

    @pytest.mark.asyncio
    async def test_invalidate_all_revalidates_subscribed_keys_only(self, scheduler, store, fetcher):
        store.set_data("/todos?page=1", "p1")
        store.set_data("/todos/stats", "stats")
        store.subscribe("/todos?page=1", _noop)

        tasks = store.invalidate_all(prefix_predicate("/todos"))
        await asyncio.gather(*tasks)

        fetcher.assert_awaited_once_with("/todos?page=1")
        assert store.get("/todos?page=1").stale is False
        assert store.get("/todos/stats").stale is True

    @pytest.mark.asyncio
    async def test_focus_trigger_disabled_by_default(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)

        scheduler.set_focused(False)
        assert scheduler.set_focused(True) == []
        fetcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_focus_trigger_when_enabled(self, make_scheduler, store, fetcher):
        scheduler = make_scheduler(revalidate_on_focus=True)
        store.subscribe("/a", _noop)
        store.subscribe("/b", _noop)

        assert scheduler.set_focused(True) == []  # already focused

        scheduler.set_focused(False)
        tasks = scheduler.set_focused(True)
        await asyncio.gather(*tasks)

        assert len(tasks) == 2
        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_reconnect_revalidates_subscribed_keys(self, scheduler, store, fetcher, clock, metrics):
        store.subscribe("/todos", _noop)
        store.set_data("/unwatched", "x")

        assert scheduler.set_online(True) == []

        scheduler.set_online(False)
        tasks = scheduler.set_online(True)
        await asyncio.gather(*tasks)

        fetcher.assert_awaited_once_with("/todos")
        assert metrics.sample("cache_revalidations_total", trigger="reconnect") == 1

    @pytest.mark.asyncio
    async def test_automatic_triggers_deduplicated(self, scheduler, store, fetcher, clock):
        store.subscribe("/todos", _noop)

        await asyncio.gather(*scheduler.on_reconnect())
        assert scheduler.on_reconnect() == []

        clock.advance(2.0)
        await asyncio.gather(*scheduler.on_reconnect())
        assert fetcher.await_count == 2

    @pytest.mark.asyncio
    async def test_reconnect_skipped_while_paused(self, scheduler, store, fetcher):
        store.subscribe("/todos", _noop)
        scheduler.pause()

        assert scheduler.on_reconnect() == []
        fetcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_interval_polling(self, make_scheduler, store, fetcher):
        scheduler = make_scheduler(refresh_interval=0.01, dedupe_interval=0)
        unsubscribe = store.subscribe("/todos", _noop)
        await scheduler.start()
        scheduler.watch("/todos")

        await asyncio.sleep(0.1)
        polled = fetcher.await_count
        assert polled >= 2

        unsubscribe()
        await asyncio.sleep(0.05)
        assert "/todos" not in scheduler._pollers

        await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_watch_is_noop_without_interval(self, scheduler, store):
        store.subscribe("/todos", _noop)
        await scheduler.start()

        scheduler.watch("/todos")

        assert scheduler._pollers == {}
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_outstanding_revalidations(self, scheduler, store):
        store.subscribe("/todos", _noop)
        await scheduler.start()
        scheduler.revalidate("/todos")

        await scheduler.stop()

        assert store.get("/todos").data == "data:/todos"

"""
Resource cache service for the todo backend.

``TodoCacheService`` is the composition root: it reads configuration,
configures logging and metrics, and wires the REST adapter, cache store,
fetch coordinator, revalidation scheduler and mutation coordinator into a
``ResourceCache``. Views ask it for subscriptions and actions.
"""

from typing import Callable, Optional

import httpx
from prometheus_client import CollectorRegistry

from shared.config import CacheConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig

from .adapters.todo_client import TodoApiClient
from .caching.resource_cache import ResourceCache, Subscription
from .caching.store import CacheEntry, CacheStore
from .domain.actions import TodoActions
from .domain.todos import Todo, TodoFilters, TodoPage, TodoStats, detail_url, list_url, stats_url
from .fetching.coordinator import FetchCoordinator
from .fetching.validation import enveloped
from .mutations.optimistic import OptimisticMutationCoordinator
from .pagination.infinite import InfiniteList, offset_pages
from .revalidation.scheduler import RevalidationConfig, RevalidationScheduler

Listener = Callable[[Optional[CacheEntry]], None]


def _ignore(entry: Optional[CacheEntry]) -> None:
    pass


class TodoCacheService:
    """Stale-while-revalidate cache for todos, stats and todo details."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self.config = config or get_config()
        configure_logging(self.config.service_name, self.config.log_level)
        self.logger = get_logger("resource_cache.service")

        self.metrics = MetricsCollector(self.config.service_name, registry) if self.config.enable_metrics else None

        self.client = TodoApiClient(
            base_url=self.config.api_base_url,
            timeout=self.config.request_timeout,
            auth_token=self.config.auth_token,
            transport=transport,
        )
        self.store = CacheStore()
        self.fetcher = FetchCoordinator(
            self.client.get,
            timeout=self.config.request_timeout,
            retry_config=RetryConfig.fixed(self.config.retry_count, self.config.retry_interval),
            metrics=self.metrics,
        )
        self.scheduler = RevalidationScheduler(
            self.store,
            self.fetcher,
            RevalidationConfig(
                revalidate_on_focus=self.config.revalidate_on_focus,
                revalidate_on_reconnect=self.config.revalidate_on_reconnect,
                refresh_interval=self.config.refresh_interval,
                dedupe_interval=self.config.dedupe_interval,
            ),
            metrics=self.metrics,
        )
        self.mutations = OptimisticMutationCoordinator(self.store, self.scheduler, metrics=self.metrics)
        self.cache = ResourceCache(self.store, self.fetcher, self.scheduler, self.mutations)

    async def start(self):
        if self.metrics is not None and self.config.metrics_port:
            self.metrics.start_metrics_server(self.config.metrics_port)
        await self.scheduler.start()
        self.logger.info("Todo cache service started", api_base_url=self.config.api_base_url)

    async def stop(self):
        await self.scheduler.stop()
        self.logger.info("Todo cache service stopped")

    # Views

    def list_key(self, page: int = 1, filters: Optional[TodoFilters] = None) -> str:
        return list_url(page, self.config.page_size, filters)

    def todos(
        self,
        page: int = 1,
        filters: Optional[TodoFilters] = None,
        listener: Listener = _ignore,
    ) -> Subscription:
        return self.cache.subscribe(self.list_key(page, filters), listener, validator=enveloped(TodoPage))

    def infinite_todos(self, filters: Optional[TodoFilters] = None, on_change=None) -> InfiniteList:
        return InfiniteList(
            self.cache,
            offset_pages(lambda page: self.list_key(page, filters)),
            validator=enveloped(TodoPage),
            on_change=on_change,
        )

    def todo(self, todo_id: int, listener: Listener = _ignore) -> Subscription:
        return self.cache.subscribe(detail_url(todo_id), listener, validator=enveloped(Todo))

    def stats(self, listener: Listener = _ignore) -> Subscription:
        return self.cache.subscribe(stats_url(), listener, validator=enveloped(TodoStats))

    def actions(self, page: int = 1, filters: Optional[TodoFilters] = None) -> TodoActions:
        return TodoActions(self.cache, self.client, self.list_key(page, filters))

    # Environment

    def set_focused(self, focused: bool):
        return self.scheduler.set_focused(focused)

    def set_online(self, online: bool):
        return self.scheduler.set_online(online)

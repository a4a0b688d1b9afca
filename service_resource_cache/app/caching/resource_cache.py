"""
Consumer-facing cache API.

``ResourceCache`` bundles the store, the fetch coordinator, the revalidation
scheduler and the mutation coordinator behind the calls a view needs:
subscribe to a key, read it, preload it, write it, invalidate it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from shared.logging import get_logger
from .keys import CacheKey, KeyPredicate
from .store import CacheEntry, CacheStore, DataUpdate, Subscriber
from ..fetching.coordinator import FetchCoordinator
from ..fetching.validation import PayloadValidator
from ..mutations.optimistic import OptimisticMutationCoordinator
from ..revalidation.scheduler import RevalidationScheduler


@dataclass
class Subscription:
    """Handle returned by ``ResourceCache.subscribe``."""
    key: CacheKey
    cache: "ResourceCache"
    unsubscribe: Callable[[], None]
    task: Optional[asyncio.Task] = None

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self.cache.get(self.key)

    async def ready(self) -> Optional[CacheEntry]:
        """Wait for the mount revalidation (if one was started) and return the entry."""
        if self.task is not None:
            await self.task
        return self.entry

    def close(self) -> None:
        self.unsubscribe()


class ResourceCache:
    """Stale-while-revalidate cache over a ``CacheStore``."""

    def __init__(
        self,
        store: CacheStore,
        fetcher: FetchCoordinator,
        scheduler: RevalidationScheduler,
        mutations: Optional[OptimisticMutationCoordinator] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.scheduler = scheduler
        self.mutations = mutations or OptimisticMutationCoordinator(store, scheduler)
        self.logger = get_logger("resource_cache.cache")

    def subscribe(
        self,
        key: CacheKey,
        callback: Subscriber,
        *,
        validator: Optional[PayloadValidator] = None,
    ) -> Subscription:
        """Mount ``key``: serve what is cached and refresh it in the background.

        A revalidation starts when the key was never fetched, is stale or
        holds an error. Fresh data is only refreshed outside the dedupe
        interval.
        """
        if validator is not None:
            self.fetcher.register_validator(key, validator)

        unsubscribe = self.store.subscribe(key, callback)
        task = self.scheduler.trigger_mount(key)
        self.scheduler.watch(key)
        return Subscription(key=key, cache=self, unsubscribe=unsubscribe, task=task)

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self.store.get(key)

    def get_data(self, key: CacheKey, default: Any = None) -> Any:
        entry = self.store.get(key)
        if entry is None or not entry.has_data:
            return default
        return entry.data

    async def preload(self, key: CacheKey, validator: Optional[PayloadValidator] = None) -> Any:
        """Fetch ``key`` and cache it whether or not anyone is subscribed."""
        data = await self.fetcher.fetch(key, validator)
        self.store.set_data(key, data)
        self.logger.debug("Preloaded cache key", key=key)
        return data

    def mutate(self, key: CacheKey, data: DataUpdate, revalidate: bool = True) -> Optional[asyncio.Task]:
        """Write ``data`` (or ``fn(current)``) into the cache, then revalidate by default."""
        return self.store.set_data(key, data, revalidate=revalidate)

    def invalidate(self, target: Union[CacheKey, KeyPredicate]) -> List[asyncio.Task]:
        """Mark a key, or every key matching a predicate, stale and refresh subscribed ones."""
        predicate = target if callable(target) else (lambda key: key == target)
        return self.store.invalidate_all(predicate)

    async def revalidate(self, key: CacheKey) -> Optional[CacheEntry]:
        """Refresh ``key`` now and return the settled entry; no-op without subscribers."""
        task = self.scheduler.revalidate(key)
        if task is None:
            return self.store.get(key)
        return await task

    def pause(self) -> None:
        """Suspend automatic revalidation (conditional fetching)."""
        self.scheduler.pause()

    def resume(self) -> None:
        self.scheduler.resume()

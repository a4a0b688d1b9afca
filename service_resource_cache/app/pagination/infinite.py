"""
Infinite (load-more) lists built from per-page cache keys.

``get_key(index, previous_page)`` names the key for page ``index`` given the
data of the page before it (``None`` for the first page) and returns ``None``
once there is nothing more to load. Every page lives in the shared cache
under its own key, so loading page N never refetches pages 0..N-1.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from ..caching.keys import CacheKey
from ..caching.store import CacheEntry
from ..fetching.validation import PayloadValidator

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..caching.resource_cache import ResourceCache, Subscription

GetKey = Callable[[int, Any], Optional[CacheKey]]


@dataclass(frozen=True)
class PageDescriptor:
    """Position of a page in the list; ``key`` is ``None`` past the last page."""
    index: int
    key: Optional[CacheKey]


def offset_pages(url_for_page: Callable[[int], CacheKey]) -> GetKey:
    """``get_key`` for 1-based offset pages that stops after ``has_more`` is false."""
    def get_key(index: int, previous: Any) -> Optional[CacheKey]:
        if previous is not None and not previous.has_more:
            return None
        return url_for_page(index + 1)

    return get_key


class InfiniteList:
    """Ordered, append-only sequence of pages with flattened items.

    Page data is expected to carry ``items`` and ``has_more`` (``Page``).
    """

    def __init__(
        self,
        cache: "ResourceCache",
        get_key: GetKey,
        validator: Optional[PayloadValidator] = None,
        on_change: Optional[Callable[["InfiniteList"], None]] = None,
    ):
        self.cache = cache
        self.get_key = get_key
        self.validator = validator
        self.on_change = on_change
        self.logger = get_logger("resource_cache.pagination")

        self.pages: List[PageDescriptor] = []
        self._subscriptions: List["Subscription"] = []

    # State

    @property
    def size(self) -> int:
        """Number of pages that resolved to a key."""
        return sum(1 for descriptor in self.pages if descriptor.key is not None)

    def entries(self) -> List[Optional[CacheEntry]]:
        return [self.cache.get(descriptor.key) for descriptor in self.pages if descriptor.key is not None]

    def page_data(self) -> List[Any]:
        return [entry.data for entry in self.entries() if entry is not None and entry.has_data]

    @property
    def items(self) -> List[Any]:
        items: List[Any] = []
        for data in self.page_data():
            items.extend(data.items)
        return items

    @property
    def has_more(self) -> bool:
        if not self.pages:
            return False
        last = self.pages[-1]
        if last.key is None:
            return False
        entry = self.cache.get(last.key)
        if entry is None or not entry.has_data:
            return False
        return bool(entry.data.has_more)

    @property
    def is_exhausted(self) -> bool:
        """The last loaded page says there is nothing after it."""
        if not self.pages:
            return False
        last = self.pages[-1]
        if last.key is None:
            return True
        entry = self.cache.get(last.key)
        return entry is not None and entry.has_data and not entry.data.has_more

    @property
    def error(self) -> Optional[Exception]:
        for entry in self.entries():
            if entry is not None and entry.error is not None:
                return entry.error
        return None

    @property
    def is_loading(self) -> bool:
        return any(entry is not None and entry.is_validating for entry in self.entries())

    # Loading

    async def load(self) -> List[Any]:
        """Load the first page if nothing is loaded yet; returns the items."""
        if not self.pages:
            await self._load_page(0, None)
        return self.items

    async def load_more(self) -> bool:
        """Load the next page. Returns ``False`` when nothing was loaded.

        That happens at the end of the list (``is_exhausted``) and while the
        last page holds an error; revalidate or ``refresh`` that page first.
        """
        if not self.pages:
            await self.load()
            return True
        last = self.pages[-1]
        entry = self.cache.get(last.key) if last.key is not None else None
        if entry is not None and entry.error is not None:
            self.logger.warning(
                "Last page failed; not loading more",
                key=last.key,
                error=str(entry.error),
                error_type=type(entry.error).__name__,
            )
            return False
        if not self.has_more:
            self.logger.debug("No more pages to load", size=self.size)
            return False

        previous = self.cache.get(self.pages[-1].key)
        await self._load_page(len(self.pages), previous.data)
        return True

    async def refresh(self) -> List[Any]:
        """Revalidate every loaded page."""
        keys = [descriptor.key for descriptor in self.pages if descriptor.key is not None]
        tasks = [self.cache.scheduler.revalidate(key) for key in keys]
        pending = [task for task in tasks if task is not None]
        if pending:
            await asyncio.gather(*pending)
        return self.items

    def close(self) -> None:
        """Stop receiving updates. Cached pages stay in the cache."""
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()

    async def _load_page(self, index: int, previous: Any) -> None:
        key = self.get_key(index, previous)
        self.pages.append(PageDescriptor(index=index, key=key))
        if key is None:
            self.logger.debug("Page key resolved to None; list complete", index=index)
            return

        subscription = self.cache.subscribe(key, self._on_entry, validator=self.validator)
        self._subscriptions.append(subscription)
        await subscription.ready()

    def _on_entry(self, entry: Optional[CacheEntry]) -> None:
        if self.on_change is not None:
            self.on_change(self)

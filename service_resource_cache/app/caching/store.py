"""
Cache store: the single source of truth mapping cache keys to entries.

All operations are synchronous. They never suspend, so from the event
loop's point of view every ``set`` is atomic. Subscribers are notified in
commit order, including writes made from inside a subscriber callback.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from shared.logging import get_logger
from .keys import CacheKey, KeyPredicate


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cache entry; every change produces a new instance."""
    key: CacheKey
    data: Any = None
    error: Optional[Exception] = None
    is_validating: bool = False
    last_updated_at: Optional[float] = None
    previous_data: Any = None
    stale: bool = False

    @property
    def has_data(self) -> bool:
        return self.data is not None

    def with_data(self, data: Any) -> "CacheEntry":
        """Entry after a successful write of ``data``."""
        return replace(
            self,
            data=data,
            error=None,
            previous_data=None,
            stale=False,
            last_updated_at=time.time(),
        )

    def with_error(self, error: Exception) -> "CacheEntry":
        """Entry after a failed fetch; prior data moves to ``previous_data``."""
        return replace(
            self,
            data=None,
            error=error,
            previous_data=self.data if self.data is not None else self.previous_data,
            is_validating=False,
        )


Subscriber = Callable[[Optional[CacheEntry]], None]
EntryUpdate = Union[CacheEntry, Callable[[Optional[CacheEntry]], Optional[CacheEntry]]]
DataUpdate = Union[Any, Callable[[Any], Any]]
Revalidator = Callable[[CacheKey], Optional["asyncio.Task"]]


class CacheStore:
    """Key -> entry registry with subscriber notification.

    Created empty. ``bind_revalidator`` connects the scheduler that runs
    background fetches requested through ``set(..., revalidate=True)`` and
    ``invalidate_all``.
    """

    def __init__(self):
        self.logger = get_logger("resource_cache.store")
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._subscribers: Dict[CacheKey, List[Tuple[int, Subscriber]]] = {}
        self._next_token = 0
        self._pending: Deque[Tuple[CacheKey, Optional[CacheEntry]]] = deque()
        self._notifying = False
        self._revalidator: Optional[Revalidator] = None

    def bind_revalidator(self, revalidator: Optional[Revalidator]) -> None:
        self._revalidator = revalidator

    # Reads

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def keys(self) -> List[CacheKey]:
        return list(self._entries.keys())

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # Writes

    def set(self, key: CacheKey, update: EntryUpdate, revalidate: bool = False) -> Optional[asyncio.Task]:
        """Replace or transform the entry for ``key``.

        ``update`` is either a new ``CacheEntry`` or a function receiving the
        current entry (or ``None``) and returning the new one. Returning
        ``None`` from the function leaves the entry untouched. When
        ``revalidate`` is set, a background fetch is scheduled after the
        write and its task is returned.
        """
        current = self._entries.get(key)
        entry = update(current) if callable(update) else update

        if entry is not None:
            if entry.key != key:
                entry = replace(entry, key=key)
            self._commit(key, entry)

        if revalidate:
            return self._schedule_revalidation(key)
        return None

    def set_data(self, key: CacheKey, update: DataUpdate, revalidate: bool = False) -> Optional[asyncio.Task]:
        """Replace or transform only the entry's data."""
        def apply(entry: Optional[CacheEntry]) -> CacheEntry:
            entry = entry or CacheEntry(key=key)
            data = update(entry.data) if callable(update) else update
            return entry.with_data(data)

        return self.set(key, apply, revalidate=revalidate)

    def delete(self, key: CacheKey) -> bool:
        """Remove the entry; subscribers receive ``None``."""
        if key not in self._entries:
            return False
        del self._entries[key]
        self._enqueue(key, None)
        return True

    def clear(self) -> None:
        for key in list(self._entries.keys()):
            self.delete(key)

    def invalidate_all(self, predicate: KeyPredicate) -> List[asyncio.Task]:
        """Mark matching keys stale and request their revalidation.

        Keys without subscribers stay marked and are refreshed the next time
        they are mounted.
        """
        matched = [key for key in self._entries if predicate(key)]
        tasks = []
        for key in matched:
            self._commit(key, replace(self._entries[key], stale=True))
            task = self._schedule_revalidation(key)
            if task is not None:
                tasks.append(task)

        self.logger.debug("Invalidated cache keys", keys=matched, revalidating=len(tasks))
        return tasks

    def _commit(self, key: CacheKey, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._enqueue(key, entry)

    def _schedule_revalidation(self, key: CacheKey) -> Optional[asyncio.Task]:
        if self._revalidator is None:
            self.logger.debug("Revalidation requested without a bound revalidator", key=key)
            return None
        return self._revalidator(key)

    # Subscriptions

    def subscribe(self, key: CacheKey, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for changes to ``key``; returns the unsubscribe function."""
        token = self._next_token
        self._next_token += 1
        self._subscribers.setdefault(key, []).append((token, callback))

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(key)
            if not subscribers:
                return
            remaining = [(t, cb) for t, cb in subscribers if t != token]
            if remaining:
                self._subscribers[key] = remaining
            else:
                del self._subscribers[key]

        return unsubscribe

    def subscriber_count(self, key: CacheKey) -> int:
        return len(self._subscribers.get(key, ()))

    def has_subscribers(self, key: CacheKey) -> bool:
        return bool(self._subscribers.get(key))

    def subscribed_keys(self) -> List[CacheKey]:
        return list(self._subscribers.keys())

    def _enqueue(self, key: CacheKey, entry: Optional[CacheEntry]) -> None:
        self._pending.append((key, entry))
        if self._notifying:
            # A subscriber wrote re-entrantly; the outer drain delivers it in order.
            return

        self._notifying = True
        try:
            while self._pending:
                pending_key, pending_entry = self._pending.popleft()
                self._notify(pending_key, pending_entry)
        finally:
            self._notifying = False

    def _notify(self, key: CacheKey, entry: Optional[CacheEntry]) -> None:
        for _, callback in list(self._subscribers.get(key, ())):
            try:
                callback(entry)
            except Exception as exc:
                self.logger.error(
                    "Cache subscriber failed",
                    key=key,
                    error=str(exc),
                    exc_info=True,
                )

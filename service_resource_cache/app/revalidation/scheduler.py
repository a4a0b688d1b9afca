"""
Revalidation scheduler: decides when cached keys are refreshed.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from ..caching.keys import CacheKey
from ..caching.store import CacheEntry, CacheStore
from ..fetching.coordinator import FetchCoordinator

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


TRIGGER_MOUNT = "mount"
TRIGGER_FOCUS = "focus"
TRIGGER_RECONNECT = "reconnect"
TRIGGER_INTERVAL = "interval"
TRIGGER_DEMAND = "demand"
TRIGGER_WRITE = "write"


@dataclass
class RevalidationConfig:
    """Trigger switches. Only reconnect is on by default."""
    revalidate_on_focus: bool = False
    revalidate_on_reconnect: bool = True
    refresh_interval: float = 0.0
    dedupe_interval: float = 2.0


class RevalidationScheduler:
    """Runs background refreshes for subscribed keys.

    ``revalidate`` returns the asyncio task doing the work (or ``None`` when
    nothing was scheduled) so callers and tests can await settlement. A key
    without subscribers is never revalidated. Automatic triggers for the same
    key inside ``dedupe_interval`` collapse into the first one.
    """

    def __init__(
        self,
        store: CacheStore,
        fetcher: FetchCoordinator,
        config: Optional[RevalidationConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.config = config or RevalidationConfig()
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("resource_cache.revalidation")

        self.running = False
        self.focused = True
        self.online = True
        self.paused = False

        self._tasks: Dict[CacheKey, asyncio.Task] = {}
        self._last_started: Dict[CacheKey, float] = {}
        self._pollers: Dict[CacheKey, asyncio.Task] = {}

        store.bind_revalidator(self._on_write)

    async def start(self):
        """Start the scheduler; interval polling begins for watched keys."""
        self.running = True
        for key in self.store.subscribed_keys():
            self.watch(key)
        self.logger.info("Revalidation scheduler started", config=self.config.__dict__)

    async def stop(self):
        """Stop polling and wait for outstanding revalidations."""
        self.running = False
        pollers = list(self._pollers.values())
        self._pollers.clear()
        for poller in pollers:
            poller.cancel()
        for poller in pollers:
            try:
                await poller
            except asyncio.CancelledError:
                pass

        await self.wait_idle()
        self.logger.info("Revalidation scheduler stopped")

    async def wait_idle(self):
        """Wait until no revalidation is running, including ones started meanwhile."""
        while True:
            outstanding = [task for task in self._tasks.values() if not task.done()]
            if not outstanding:
                return
            await asyncio.gather(*outstanding, return_exceptions=True)

    # Triggers

    def revalidate(self, key: CacheKey, *, dedupe: bool = False, trigger: str = TRIGGER_DEMAND) -> Optional[asyncio.Task]:
        """Refresh ``key`` if anything is subscribed to it.

        Joins an in-progress revalidation of the same key. With ``dedupe``
        a revalidation started within ``dedupe_interval`` suppresses this one.
        """
        if not self.store.has_subscribers(key):
            self.logger.debug("Skipping revalidation without subscribers", key=key, trigger=trigger)
            return None

        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            return existing

        if dedupe:
            last = self._last_started.get(key)
            if last is not None and self.clock() - last < self.config.dedupe_interval:
                self.logger.debug("Revalidation deduplicated", key=key, trigger=trigger)
                return None

        return self._start(key, trigger)

    def _start(self, key: CacheKey, trigger: str) -> asyncio.Task:
        self._last_started[key] = self.clock()
        self._increment(trigger)
        task = asyncio.ensure_future(self._revalidate(key))
        self._tasks[key] = task
        task.add_done_callback(lambda done, key=key: self._forget(key, done))
        return task

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def _on_write(self, key: CacheKey) -> Optional[asyncio.Task]:
        return self.revalidate(key, trigger=TRIGGER_WRITE)

    def trigger_mount(self, key: CacheKey) -> Optional[asyncio.Task]:
        """First subscription to a key: refresh when missing, stale or failed."""
        if self.paused:
            return None
        entry = self.store.get(key)
        fresh = entry is not None and entry.has_data and not entry.stale and entry.error is None
        return self.revalidate(key, dedupe=fresh, trigger=TRIGGER_MOUNT)

    def on_focus(self) -> List[asyncio.Task]:
        if not self.config.revalidate_on_focus:
            return []
        return self._revalidate_subscribed(TRIGGER_FOCUS)

    def on_reconnect(self) -> List[asyncio.Task]:
        if not self.config.revalidate_on_reconnect:
            return []
        return self._revalidate_subscribed(TRIGGER_RECONNECT)

    def set_focused(self, focused: bool) -> List[asyncio.Task]:
        """Record focus state; regaining focus fires the focus trigger."""
        regained = focused and not self.focused
        self.focused = focused
        return self.on_focus() if regained else []

    def set_online(self, online: bool) -> List[asyncio.Task]:
        """Record connectivity; an offline -> online transition fires the reconnect trigger."""
        restored = online and not self.online
        self.online = online
        if not online:
            self.logger.info("Connectivity lost; automatic revalidation suspended")
        return self.on_reconnect() if restored else []

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def _revalidate_subscribed(self, trigger: str) -> List[asyncio.Task]:
        if not self.online or self.paused:
            return []
        tasks = []
        for key in self.store.subscribed_keys():
            task = self.revalidate(key, dedupe=True, trigger=trigger)
            if task is not None:
                tasks.append(task)
        self.logger.debug("Trigger fired", trigger=trigger, revalidating=len(tasks))
        return tasks

    # Interval polling

    def watch(self, key: CacheKey) -> None:
        """Poll ``key`` every ``refresh_interval`` while it has subscribers."""
        if self.config.refresh_interval <= 0 or not self.running:
            return
        poller = self._pollers.get(key)
        if poller is not None and not poller.done():
            return
        self._pollers[key] = asyncio.ensure_future(self._poll(key))

    async def _poll(self, key: CacheKey):
        try:
            while self.running:
                await asyncio.sleep(self.config.refresh_interval)
                if not self.store.has_subscribers(key):
                    break
                if not self.online or self.paused:
                    continue
                task = self.revalidate(key, dedupe=True, trigger=TRIGGER_INTERVAL)
                if task is not None:
                    await task
        finally:
            if self._pollers.get(key) is asyncio.current_task():
                del self._pollers[key]

    # Work

    async def _revalidate(self, key: CacheKey) -> Optional[CacheEntry]:
        """Fetch ``key`` and write the outcome into the store."""
        self.store.set(key, lambda entry: replace(entry or CacheEntry(key=key), is_validating=True))
        try:
            data = await self.fetcher.fetch(key)
        except Exception as exc:
            self.logger.warning("Revalidation failed", key=key, error=str(exc), error_type=type(exc).__name__)
            self.store.set(key, lambda entry: (entry or CacheEntry(key=key)).with_error(exc))
        else:
            self.store.set(key, lambda entry: replace((entry or CacheEntry(key=key)).with_data(data), is_validating=False))
        return self.store.get(key)

    def _increment(self, trigger: str) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter("cache_revalidations_total", trigger=trigger)
        except Exception as exc:  # pragma: no cover - metrics failures should never break revalidation
            self.logger.debug("Failed to record revalidation metric", error=str(exc))

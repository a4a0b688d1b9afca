"""
Optimistic mutation coordinator.

A mutation runs as snapshot -> apply -> execute -> commit or rollback:

1. the current entry of the key is captured;
2. the provisional value is written synchronously, so subscribers see it
   before any network round trip;
3. the remote operation is awaited;
4. on success the authoritative value is written and dependent keys are
   invalidated; on failure the snapshot is restored and the error re-raised.

Mutations in flight on the same key are kept as a stack of ``apply``
functions over the last confirmed value. Settling one of them rebuilds the
cached value from that base and the applies still pending, so a failed
mutation never leaves its provisional change behind and never discards a
neighbour's. A value written to the key by anyone else meanwhile becomes the
new base; once the stack empties such a key is invalidated.
"""

import asyncio
import copy
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING

from shared.logging import get_logger, mutation_id_var, set_mutation_id
from ..caching.keys import CacheKey, KeyPredicate
from ..caching.store import CacheEntry, CacheStore
from ..revalidation.scheduler import RevalidationScheduler

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

Apply = Callable[[Any], Any]
Execute = Callable[[], Awaitable[Any]]
Commit = Callable[[Any, Any], Any]

OUTCOME_RESTORED = "restored"
OUTCOME_REAPPLIED = "reapplied"
OUTCOME_SUPERSEDED = "superseded"


def _replace_with_result(current: Any, result: Any) -> Any:
    return result


@dataclass
class _PendingStack:
    """Mutations in flight on one key."""
    snapshot: Optional[CacheEntry]
    base: Any
    applies: List[Tuple[object, Apply]] = field(default_factory=list)
    written: Any = None
    confirmed: bool = False
    rebased: bool = False


class OptimisticMutationCoordinator:
    """Runs optimistic writes against a ``CacheStore``."""

    def __init__(
        self,
        store: CacheStore,
        scheduler: RevalidationScheduler,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.metrics = metrics
        self.logger = get_logger("resource_cache.mutations")
        self._pending: Dict[CacheKey, _PendingStack] = {}

    def pending_count(self, key: CacheKey) -> int:
        stack = self._pending.get(key)
        return len(stack.applies) if stack is not None else 0

    async def mutate(
        self,
        key: CacheKey,
        *,
        apply: Apply,
        execute: Execute,
        commit: Optional[Commit] = _replace_with_result,
        affected: Optional[KeyPredicate] = None,
        operation: str = "mutation",
    ) -> Any:
        """Apply ``apply`` to the cached data of ``key`` and run ``execute``.

        ``commit(current_data, result)`` computes the authoritative value from
        the remote result; pass ``None`` to leave the provisional value in
        place and revalidate ``key`` instead. Keys matching ``affected`` are
        invalidated after a successful commit. Returns the remote result.
        """
        set_mutation_id()
        token = object()
        try:
            self._begin(key, token, apply)
            self.logger.debug("Optimistic update applied", key=key, operation=operation)

            try:
                result = await execute()
            except (Exception, asyncio.CancelledError) as exc:
                outcome = self._settle(key, token, None)
                self._record_rollback(operation, outcome)
                self.logger.warning(
                    "Mutation failed",
                    key=key,
                    operation=operation,
                    outcome=outcome,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

            if commit is None:
                self._settle(key, token, lambda data: data)
                self.scheduler.revalidate(key)
            else:
                self._settle(key, token, lambda data: commit(data, result))
            if affected is not None:
                self.store.invalidate_all(affected)

            self._increment(operation, "success")
            self.logger.info("Mutation committed", key=key, operation=operation)
            return result
        finally:
            mutation_id_var.set(None)

    async def mutate_many(
        self,
        updates: Mapping[CacheKey, Apply],
        execute: Execute,
        *,
        operation: str = "batch",
    ) -> Any:
        """Optimistically update several keys behind a single remote operation.

        All keys are rolled back together when ``execute`` fails and
        revalidated together when it succeeds.
        """
        set_mutation_id()
        token = object()
        try:
            for key, apply in updates.items():
                self._begin(key, token, apply)

            try:
                result = await execute()
            except (Exception, asyncio.CancelledError) as exc:
                outcomes = {key: self._settle(key, token, None) for key in updates}
                for outcome in set(outcomes.values()):
                    self._record_rollback(operation, outcome)
                self.logger.warning(
                    "Batch mutation failed",
                    keys=list(updates),
                    outcomes=outcomes,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

            for key in updates:
                self._settle(key, token, lambda data: data)
                self.scheduler.revalidate(key)
            self._increment(operation, "success")
            self.logger.info("Batch mutation committed", keys=list(updates))
            return result
        finally:
            mutation_id_var.set(None)

    # Pending stack

    def _begin(self, key: CacheKey, token: object, apply: Apply) -> None:
        stack = self._pending.get(key)
        if stack is None:
            snapshot = self._snapshot(key)
            stack = _PendingStack(snapshot=snapshot, base=snapshot.data if snapshot is not None else None)
            self._pending[key] = stack
        else:
            self._absorb(key, stack)

        stack.applies.append((token, apply))
        try:
            self._render(key, stack)
        except Exception:
            stack.applies.pop()
            if not stack.applies:
                del self._pending[key]
            raise

    def _settle(self, key: CacheKey, token: object, confirm: Optional[Apply]) -> str:
        """Remove ``token`` from the stack of ``key`` and write what remains.

        ``confirm`` receives the mutation's provisional value and returns the
        new confirmed base; ``None`` discards the mutation.
        """
        stack = self._pending[key]
        self._absorb(key, stack)

        position = [pending for pending, _ in stack.applies].index(token)
        _, apply = stack.applies.pop(position)
        if confirm is not None:
            stack.base = confirm(apply(copy.deepcopy(stack.base)))
            stack.confirmed = True

        if stack.applies:
            self._render(key, stack)
            return OUTCOME_REAPPLIED

        del self._pending[key]
        if stack.rebased:
            if self.store.get(key) is not None:
                self._render(key, stack)
                self.store.invalidate_all(lambda candidate: candidate == key)
            return OUTCOME_SUPERSEDED
        if stack.confirmed:
            self._render(key, stack)
            return OUTCOME_REAPPLIED

        self._restore(key, stack)
        return OUTCOME_RESTORED

    def _absorb(self, key: CacheKey, stack: _PendingStack) -> None:
        """Adopt a value written to ``key`` by someone else as the new base."""
        entry = self.store.get(key)
        current = entry.data if entry is not None else None
        if current is stack.written or self._refresh_failed(entry, stack):
            return
        self.logger.info("Key written during mutation; rebasing pending changes", key=key)
        stack.base = copy.deepcopy(current)
        stack.rebased = True

    def _render(self, key: CacheKey, stack: _PendingStack) -> None:
        data = copy.deepcopy(stack.base)
        for _, apply in stack.applies:
            data = apply(data)

        entry = self.store.get(key)
        if self._refresh_failed(entry, stack):
            # Keep the fetch error; the value shown as last known is ours.
            self.store.set(key, replace(entry, previous_data=data))
        else:
            self.store.set_data(key, data)
        stack.written = data

    def _restore(self, key: CacheKey, stack: _PendingStack) -> None:
        entry = self.store.get(key)
        snapshot = stack.snapshot
        if self._refresh_failed(entry, stack):
            self.store.set(key, replace(entry, previous_data=snapshot.data if snapshot is not None else None))
        elif snapshot is None:
            self.store.delete(key)
        else:
            self.store.set(key, snapshot)

    @staticmethod
    def _refresh_failed(entry: Optional[CacheEntry], stack: _PendingStack) -> bool:
        """A revalidation failed after our last write and moved it to ``previous_data``."""
        return (
            entry is not None
            and entry.data is None
            and entry.error is not None
            and stack.written is not None
            and entry.previous_data is stack.written
        )

    def _snapshot(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self.store.get(key)
        if entry is None:
            return None
        return replace(entry, data=copy.deepcopy(entry.data))

    # Metrics

    def _record_rollback(self, operation: str, outcome: str) -> None:
        self._increment(operation, "superseded" if outcome == OUTCOME_SUPERSEDED else "rollback")

    def _increment(self, operation: str, result: str) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter("cache_mutations_total", operation=operation, result=result)
        except Exception as exc:  # pragma: no cover - metrics failures should never break mutations
            self.logger.debug("Failed to record mutation metric", error=str(exc))

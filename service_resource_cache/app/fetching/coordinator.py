"""
Fetch coordinator: deduplicated, validated, retried reads.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from shared.errors import RETRYABLE_ERRORS, RequestTimeoutError, SchemaValidationError
from shared.logging import get_logger, set_request_id
from shared.retry import RetryConfig, retry_on_exception
from ..caching.keys import CacheKey
from .validation import EnvelopeValidator, PayloadValidator

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

Fetcher = Callable[[CacheKey], Awaitable[Any]]


class FetchCoordinator:
    """Performs the network round trip for a key, at most once at a time.

    Concurrent ``fetch`` calls for the same key share a single request. A
    caller that is cancelled while waiting does not cancel the shared
    request; it completes for the remaining callers and the cache.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
        default_validator: Optional[PayloadValidator] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.fetcher = fetcher
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig.fixed(retries=3, interval=5.0)
        self.default_validator = default_validator or EnvelopeValidator()
        self.metrics = metrics
        self.logger = get_logger("resource_cache.fetch")

        self._in_flight: Dict[CacheKey, "asyncio.Task[Any]"] = {}
        self._validators: Dict[CacheKey, PayloadValidator] = {}

    def register_validator(self, key: CacheKey, validator: PayloadValidator) -> None:
        self._validators[key] = validator

    def validator_for(self, key: CacheKey) -> PayloadValidator:
        return self._validators.get(key, self.default_validator)

    def is_in_flight(self, key: CacheKey) -> bool:
        return key in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def fetch(self, key: CacheKey, validator: Optional[PayloadValidator] = None) -> Any:
        """Return validated data for ``key``, joining an outstanding request if any."""
        task = self._in_flight.get(key)
        if task is not None:
            self.logger.debug("Joining in-flight fetch", key=key)
            self._increment("cache_fetch_dedup_total")
            return await asyncio.shield(task)

        if validator is not None:
            self.register_validator(key, validator)

        task = asyncio.ensure_future(self._run(key, self.validator_for(key)))
        self._in_flight[key] = task
        task.add_done_callback(self._consume_result)
        return await asyncio.shield(task)

    async def _run(self, key: CacheKey, validator: PayloadValidator) -> Any:
        set_request_id()
        start = time.perf_counter()
        try:
            attempt = retry_on_exception(
                RETRYABLE_ERRORS,
                config=self.retry_config,
                on_retry=self._record_retry,
            )(self._attempt)
            data = await attempt(key, validator)
        except SchemaValidationError as exc:
            self.logger.error("Response failed schema validation", key=key, path=exc.path, error=exc.message)
            self._increment("cache_fetch_total", result="schema_error")
            raise
        except Exception as exc:
            self.logger.warning("Fetch failed", key=key, error=str(exc), error_type=type(exc).__name__)
            self._increment("cache_fetch_total", result="error")
            raise
        finally:
            self._in_flight.pop(key, None)
            self._observe("cache_fetch_duration_seconds", time.perf_counter() - start)

        self.logger.debug("Fetch succeeded", key=key)
        self._increment("cache_fetch_total", result="success")
        return data

    async def _attempt(self, key: CacheKey, validator: PayloadValidator) -> Any:
        try:
            payload = await asyncio.wait_for(self.fetcher(key), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(self.timeout, details={"key": key}) from exc
        return validator.validate(payload, key=key)

    @staticmethod
    def _consume_result(task: "asyncio.Task[Any]") -> None:
        # Every caller may have been cancelled; mark the exception retrieved.
        if not task.cancelled():
            task.exception()

    def _record_retry(self, attempt: int, error: Exception) -> None:
        self._increment("cache_fetch_retries_total", error_type=type(error).__name__)

    def _increment(self, metric_name: str, **labels) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter(metric_name, **labels)
        except Exception as exc:  # pragma: no cover - metrics failures should never break fetching
            self.logger.debug("Failed to record fetch metric", metric=metric_name, error=str(exc))

    def _observe(self, metric_name: str, value: float) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.observe_histogram(metric_name, value)
        except Exception as exc:  # pragma: no cover
            self.logger.debug("Failed to record fetch metric", metric=metric_name, error=str(exc))

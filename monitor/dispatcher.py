"""
dispatcher.py – runs configured queries against the search source with
                bounded concurrency, exponential back-off **with jitter**
                and an optional circuit breaker.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, List, Optional, Sequence

from .context import RunCancelled, RunContext
from .exceptions import CircuitOpenError, QueryDisabledError
from .filters import apply_filters
from .interfaces import SearchSource
from .models import ErrorKind, Query, QueryResult
from .query_builder import QueryBuilder
from .recovery import classify_error, is_retryable

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Bounded exponential back-off.

    The delay before retry *n* (0-based) is ``min(base * factor**n, max_delay)``
    plus a non-negative jitter of at most ``jitter * delay``.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        max_elapsed: float = 120.0,
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.max_elapsed = max_elapsed
        self.jitter = jitter
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        base = min(self.base_delay * self.backoff_factor ** attempt, self.max_delay)
        if self.jitter <= 0:
            return base
        return base + self._rng.uniform(0, self.jitter * base)


class CircuitBreaker:
    """Stops calling the source after repeated transient failures."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"

    def __init__(
        self,
        max_failures: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._failures = 0
        self._opened_at = 0.0
        self.state = self.CLOSED

    def before_call(self) -> None:
        if self.state != self.OPEN:
            return
        if self._clock() - self._opened_at >= self.reset_timeout:
            logger.info("Circuit breaker half-open, allowing a trial call")
            self.state = self.HALF_OPEN
            return
        raise CircuitOpenError("circuit breaker is open")

    def record_success(self) -> None:
        if self.state != self.CLOSED:
            logger.info("Circuit breaker closed")
        self._failures = 0
        self.state = self.CLOSED

    def record_failure(self) -> None:
        self._failures += 1
        if self.state == self.HALF_OPEN or self._failures >= self.max_failures:
            if self.state != self.OPEN:
                logger.warning(f"Circuit breaker opened after {self._failures} consecutive failures")
            self.state = self.OPEN
            self._opened_at = self._clock()


class QueryDispatcher:
    """Executes queries concurrently; never raises for a single query's failure."""

    def __init__(
        self,
        source: SearchSource,
        builder: QueryBuilder,
        retry: Optional[RetryPolicy] = None,
        *,
        concurrency: int = 3,
        call_timeout: float = 30.0,
        breaker: Optional[CircuitBreaker] = None,
        filters: bool = True,
    ) -> None:
        self.source = source
        self.builder = builder
        self.retry = retry or RetryPolicy()
        self.concurrency = concurrency
        self.call_timeout = call_timeout
        self.breaker = breaker
        self.filters = filters

    # ---------------------------------------------- #
    # Batch
    async def run_all(self, queries: Sequence[Query], ctx: RunContext) -> List[QueryResult]:
        """Run every query; results come back in input order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(query: Query) -> QueryResult:
            if not query.enabled:
                return self._disabled(query)
            async with semaphore:
                return await self.run_one(query, ctx)

        results = await asyncio.gather(*(guarded(q) for q in queries))
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Dispatched {len(results)} queries: {succeeded} succeeded, {len(results) - succeeded} failed")
        return list(results)

    @staticmethod
    def _disabled(query: Query) -> QueryResult:
        return QueryResult(
            query=query,
            success=False,
            error=QueryDisabledError(query.name),
            error_kind=ErrorKind.VALIDATION,
        )

    # ---------------------------------------------- #
    # Single query
    async def run_one(self, query: Query, ctx: RunContext) -> QueryResult:
        if not query.enabled:
            return self._disabled(query)

        start = time.monotonic()
        result = QueryResult(query=query)

        try:
            params = self.builder.build_params(query)
        except ValueError as e:
            logger.error(f"Query '{query.name}' has invalid parameters: {e}")
            result.error = e
            result.error_kind = ErrorKind.VALIDATION
            result.duration = time.monotonic() - start
            return result

        attempt = 0
        while True:
            try:
                response = await self._call(params, ctx)
            except Exception as e:
                kind = classify_error(e)
                result.error = e
                result.error_kind = kind

                if isinstance(e, RunCancelled):
                    logger.warning(f"Query '{query.name}' cancelled: {e}")
                    break
                if not is_retryable(kind):
                    logger.error(f"Query '{query.name}' failed ({kind.value}), not retrying: {e}")
                    break
                if attempt >= self.retry.max_retries:
                    logger.error(f"Query '{query.name}' failed after {attempt + 1} attempts: {e}")
                    break

                delay = self.retry.delay(attempt)
                if time.monotonic() - start + delay > self.retry.max_elapsed:
                    logger.error(f"Query '{query.name}' retry budget exhausted: {e}")
                    break

                logger.warning(
                    f"Query '{query.name}' failed (attempt {attempt + 1}/{self.retry.max_retries + 1}"
                    f" – will retry in {delay:.1f}s): {e}"
                )
                try:
                    await ctx.sleep(delay)
                except RunCancelled as cancelled:
                    result.error = cancelled
                    result.error_kind = ErrorKind.TIMEOUT
                    break
                attempt += 1
                continue

            records = response.items
            if self.filters:
                records = apply_filters(records, query.advanced)
            result.records = records
            result.total = response.total
            result.success = True
            result.error = None
            result.error_kind = None
            logger.info(f"Query '{query.name}' succeeded: {len(records)} opportunities")
            break

        result.retry_count = attempt
        result.duration = time.monotonic() - start
        return result

    async def _call(self, params, ctx: RunContext):
        ctx.check()
        if self.breaker is not None:
            self.breaker.before_call()

        timeout = ctx.bound(self.call_timeout)
        try:
            response = await ctx.run(self.source.search(params, timeout), timeout)
        except RunCancelled:
            raise
        except Exception as e:
            if self.breaker is not None and is_retryable(classify_error(e)):
                self.breaker.record_failure()
            raise

        if self.breaker is not None:
            self.breaker.record_success()
        return response

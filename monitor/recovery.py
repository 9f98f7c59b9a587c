"""
Error classification and the partial-failure recovery pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

import aiohttp

from .context import RunCancelled, RunContext
from .exceptions import APIError, CircuitOpenError, FailureThresholdExceeded, QueryDisabledError
from .models import ErrorKind, Query, QueryResult
from .query_builder import fallback_query, simplify_query

if TYPE_CHECKING:
    from .dispatcher import QueryDispatcher

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.SERVER_ERROR, ErrorKind.NETWORK, ErrorKind.TIMEOUT}
)

# Checked in order; the first group with a matching substring wins
MESSAGE_PATTERNS = (
    (ErrorKind.TIMEOUT, ("timeout", "timed out", "deadline exceeded")),
    (ErrorKind.RATE_LIMIT, ("rate limit", "too many requests")),
    (ErrorKind.NETWORK, ("network", "connection", "dns", "resolve")),
    (ErrorKind.AUTH, ("unauthorized", "forbidden", "authentication")),
    (ErrorKind.VALIDATION, ("validation", "invalid", "bad request")),
)


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception onto the retry taxonomy."""
    if isinstance(error, APIError):
        status = error.status_code
        if status in (401, 403):
            return ErrorKind.AUTH
        if status == 429:
            return ErrorKind.RATE_LIMIT
        if status in (400, 404, 422):
            return ErrorKind.VALIDATION
        return ErrorKind.SERVER_ERROR

    if isinstance(error, (asyncio.TimeoutError, RunCancelled)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (aiohttp.ClientConnectionError, OSError)):
        return ErrorKind.NETWORK
    if isinstance(error, (QueryDisabledError, ValueError)):
        return ErrorKind.VALIDATION
    if isinstance(error, CircuitOpenError):
        return ErrorKind.SERVER_ERROR

    message = str(error).lower()
    for kind, patterns in MESSAGE_PATTERNS:
        if any(p in message for p in patterns):
            return kind
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind) -> bool:
    return kind in RETRYABLE_KINDS


class RecoveryPolicy:
    """Tunables for the recovery pass; durations are seconds."""

    def __init__(
        self,
        *,
        failure_threshold: float = 0.5,
        rate_limit_cooldown: float = 120.0,
        rate_limit_spacing: float = 30.0,
        network_cooldown: float = 30.0,
        network_spacing: float = 10.0,
        unknown_cooldown: float = 30.0,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.rate_limit_cooldown = rate_limit_cooldown
        self.rate_limit_spacing = rate_limit_spacing
        self.network_cooldown = network_cooldown
        self.network_spacing = network_spacing
        self.unknown_cooldown = unknown_cooldown


def failure_ratio(results: Sequence[QueryResult]) -> float:
    """Share of enabled queries that failed."""
    enabled = [r for r in results if r.query.enabled]
    if not enabled:
        return 0.0
    return sum(1 for r in enabled if not r.success) / len(enabled)


class PartialFailureHandler:
    """Runs a batch, aborts on systemic failure, otherwise retries per error kind."""

    def __init__(self, policy: Optional[RecoveryPolicy] = None) -> None:
        self.policy = policy or RecoveryPolicy()

    async def execute_with_recovery(
        self,
        queries: Sequence[Query],
        dispatcher: "QueryDispatcher",
        ctx: RunContext,
    ) -> List[QueryResult]:
        results = await dispatcher.run_all(queries, ctx)

        failed = [i for i, r in enumerate(results) if not r.success and r.query.enabled]
        if not failed:
            logger.info(f"All {len(results)} queries executed successfully")
            return results

        ratio = failure_ratio(results)
        logger.info(
            f"Initial execution: {len(results) - len(failed)} succeeded, {len(failed)} failed ({ratio * 100:.1f}%)"
        )
        if ratio > self.policy.failure_threshold:
            raise FailureThresholdExceeded(ratio, self.policy.failure_threshold, results)

        groups: Dict[ErrorKind, List[int]] = {}
        for index in failed:
            groups.setdefault(results[index].error_kind or ErrorKind.UNKNOWN, []).append(index)

        for kind, indices in groups.items():
            if ctx.cancelled:
                logger.warning("Run cancelled, skipping remaining recovery")
                break
            try:
                await self._recover(kind, indices, results, dispatcher, ctx)
            except RunCancelled:
                logger.warning("Run cancelled during recovery")
                break

        remaining = sum(1 for i in failed if not results[i].success)
        logger.info(f"Recovery finished: {len(failed) - remaining} recovered, {remaining} still failing")
        return results

    async def _recover(
        self,
        kind: ErrorKind,
        indices: List[int],
        results: List[QueryResult],
        dispatcher: "QueryDispatcher",
        ctx: RunContext,
    ) -> None:
        p = self.policy
        if kind == ErrorKind.RATE_LIMIT:
            await self._retry_spaced(indices, results, dispatcher, ctx, p.rate_limit_cooldown, p.rate_limit_spacing)
        elif kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            await self._retry_spaced(indices, results, dispatcher, ctx, p.network_cooldown, p.network_spacing)
        elif kind == ErrorKind.SERVER_ERROR:
            await self._retry_rewritten(indices, results, dispatcher, ctx, simplify_query, "simplified")
        elif kind == ErrorKind.VALIDATION:
            # Disabled queries stay disabled
            indices = [i for i in indices if not isinstance(results[i].error, QueryDisabledError)]
            await self._retry_rewritten(indices, results, dispatcher, ctx, fallback_query, "fallback")
        elif kind == ErrorKind.AUTH:
            logger.warning(f"Skipping retry for {len(indices)} authentication errors")
        else:
            await self._retry_spaced(indices, results, dispatcher, ctx, p.unknown_cooldown, 0.0)

    async def _retry_spaced(
        self,
        indices: List[int],
        results: List[QueryResult],
        dispatcher: "QueryDispatcher",
        ctx: RunContext,
        cooldown: float,
        spacing: float,
    ) -> None:
        if cooldown > 0:
            logger.info(f"Waiting {cooldown:.0f}s before retrying {len(indices)} queries")
            await ctx.sleep(cooldown)

        for n, index in enumerate(indices):
            if n and spacing > 0:
                await ctx.sleep(spacing)
            previous = results[index]
            kind = previous.error_kind or ErrorKind.UNKNOWN
            logger.info(f"Retrying query '{previous.query_name}' (was {kind.value})")
            results[index] = self._chain(previous, await dispatcher.run_one(previous.query, ctx))

    async def _retry_rewritten(
        self,
        indices: List[int],
        results: List[QueryResult],
        dispatcher: "QueryDispatcher",
        ctx: RunContext,
        rewrite: Callable[[Query], Query],
        label: str,
    ) -> None:
        for index in indices:
            ctx.check()
            previous = results[index]
            logger.info(f"Retrying query '{previous.query_name}' with {label} parameters")
            retried = await dispatcher.run_one(rewrite(previous.query), ctx)
            # Keep the configured query on the result
            retried.query = previous.query
            results[index] = self._chain(previous, retried)

    @staticmethod
    def _chain(previous: QueryResult, retried: QueryResult) -> QueryResult:
        retried.retry_count = previous.retry_count + 1 + retried.retry_count
        return retried


def error_report(results: Sequence[QueryResult]) -> str:
    """Human-readable summary of a batch's failures."""
    succeeded = [r for r in results if r.success]
    failed = [r for r in results if not r.success]

    lines = [
        "Query Execution Report",
        f"Total queries: {len(results)}",
        f"Succeeded: {len(succeeded)}",
        f"Failed: {len(failed)}",
    ]

    if failed:
        kinds = Counter((r.error_kind or ErrorKind.UNKNOWN).value for r in failed)
        lines.append("Errors by type:")
        lines.extend(f"  {kind}: {count}" for kind, count in sorted(kinds.items()))

    total_retries = sum(r.retry_count for r in results)
    if total_retries:
        lines.append(f"Total retries: {total_retries}")

    if failed:
        lines.append("Failed queries:")
        for r in failed:
            kind = (r.error_kind or ErrorKind.UNKNOWN).value
            lines.append(f"  - {r.query_name} ({kind}): {r.error}")

    return "\n".join(lines)

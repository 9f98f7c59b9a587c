"""
One monitoring run: fetch, diff, notify, persist.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from .config import DEFAULT_LOOKBACK_DAYS, MonitorConfig
from .context import RunContext
from .differ import Differ
from .dispatcher import CircuitBreaker, QueryDispatcher, RetryPolicy
from .exceptions import FailureThresholdExceeded, MonitorError, MultiChannelError
from .interfaces import SearchSource
from .models import QueryResult, RunReport, utcnow
from .query_builder import QueryBuilder
from .recovery import PartialFailureHandler, RecoveryPolicy, error_report
from .router import NotificationRouter
from .state import StateStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_AGE = timedelta(days=7)
DEFAULT_RETENTION = timedelta(days=90)


class Monitor:
    """
    Ties the engine together for a single run.

    State is updated for every successful query before any notification is
    attempted, and channel failures never undo it.
    """

    def __init__(
        self,
        config: MonitorConfig,
        source: SearchSource,
        store: StateStore,
        router: NotificationRouter,
        *,
        dry_run: bool = False,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        retry: Optional[RetryPolicy] = None,
        recovery: Optional[RecoveryPolicy] = None,
        concurrency: int = 3,
        call_timeout: float = 30.0,
        breaker: Optional[CircuitBreaker] = None,
        expiry_age: timedelta = DEFAULT_EXPIRY_AGE,
        retention: timedelta = DEFAULT_RETENTION,
    ) -> None:
        self.config = config
        self.source = source
        self.store = store
        self.router = router
        self.dry_run = dry_run
        self.expiry_age = expiry_age
        self.retention = retention
        self.differ = Differ()
        self.dispatcher = QueryDispatcher(
            source,
            QueryBuilder(lookback_days),
            retry,
            concurrency=concurrency,
            call_timeout=call_timeout,
            breaker=breaker,
        )
        self.recovery = PartialFailureHandler(recovery)

    async def run(self, ctx: RunContext) -> RunReport:
        report = RunReport()
        enabled = self.config.enabled_queries()
        logger.info(f"Starting monitoring run with {len(enabled)} enabled queries")

        fatal: Optional[FailureThresholdExceeded] = None
        try:
            results = await self.recovery.execute_with_recovery(self.config.queries, self.dispatcher, ctx)
        except FailureThresholdExceeded as e:
            logger.error(f"Aborting run: {e}")
            fatal = e
            results = e.results
            report.errors.append(str(e))

        report.results = [r for r in results if r.query.enabled]
        await self._process(report.results, report)

        complete = fatal is None and not ctx.cancelled and all(r.success for r in report.results)
        if complete:
            self._expire(report.results, report)
        elif ctx.cancelled:
            report.errors.append("run cancelled before completion")

        report.pruned_records = self.store.prune(self.retention)
        self.store.set_last_run()

        if self.dry_run:
            logger.info("[DRY RUN] State not saved")
        else:
            self.store.save()

        report.end_time = utcnow()
        logger.info(report.render())
        if report.queries_failed:
            logger.info(error_report(report.results))

        if fatal is not None:
            fatal.report = report
            raise fatal
        return report

    async def _process(self, results: List[QueryResult], report: RunReport) -> None:
        for result in results:
            report.queries_run += 1
            self.store.update_query_metrics(
                result.query_name, result.duration, len(result.records), result.error
            )

            if not result.success:
                report.queries_failed += 1
                report.errors.append(f"Query '{result.query_name}': {result.error}")
                continue

            report.queries_succeeded += 1
            report.total_records += len(result.records)

            diff = self.differ.diff(result.records, self.store)
            report.new_records += len(diff.new)
            report.updated_records += len(diff.updated)
            logger.info(
                f"Query '{result.query_name}': {diff.total} total, {len(diff.new)} new, {len(diff.updated)} updated"
            )

            if not diff.has_changes:
                continue
            if self.dry_run:
                logger.info(f"[DRY RUN] Would notify:\n{self.differ.diff_report(diff, result.query_name)}")
                continue

            try:
                report.notifications_sent += await self.router.route(
                    result.query_name, diff, result.query.notification
                )
            except MonitorError as e:
                if isinstance(e, MultiChannelError):
                    report.notifications_sent += e.handled
                logger.error(f"Failed to send notifications for query '{result.query_name}': {e}")
                report.errors.append(f"Notification error for '{result.query_name}': {e}")

    def _expire(self, results: List[QueryResult], report: RunReport) -> None:
        current_ids = {record.notice_id for r in results for record in r.records}
        expired = self.differ.find_expired(current_ids, self.store, self.expiry_age)
        if expired:
            report.expired_records = self.store.mark_expired(e.notice_id for e in expired)
            logger.info(f"Marked {report.expired_records} opportunities as expired")

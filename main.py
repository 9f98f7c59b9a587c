"""
Main entry point for the SAM.gov opportunity monitor.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

# Add project root to PYTHONPATH so imports work when running this script directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from monitor.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_STATE_PATH,
    NotifierSettings,
    RuntimeSettings,
    load_config,
    validate_environment,
)
from monitor.context import RunContext
from monitor.dispatcher import CircuitBreaker, RetryPolicy
from monitor.exceptions import ConfigError, FailureThresholdExceeded
from monitor.infra.cache import ResponseCache
from monitor.infra.scheduler import Scheduler
from monitor.models import utcnow
from monitor.router import NotificationRouter
from monitor.runner import Monitor
from monitor.state import StateStore
from notifiers import build_channels
from samgov import SamGovClient

VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Monitor SAM.gov for new and updated opportunities")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to queries file")
    parser.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to state file")
    parser.add_argument("--dry-run", action="store_true", help="Run without sending notifications or saving state")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--lookback", type=int, default=DEFAULT_LOOKBACK_DAYS, help="Days to look back for opportunities")
    parser.add_argument("--validate-env", action="store_true", help="Validate environment and exit")
    parser.add_argument("--report", action="store_true", help="Print a status report from the state file and exit")
    parser.add_argument("--timeout", type=float, default=600.0, help="Overall run timeout in seconds")
    parser.add_argument("--daemon", action="store_true", help="Keep running on a schedule")
    parser.add_argument("--schedule", default="0 */4 * * *", help="Cron expression for daemon runs")
    parser.add_argument("--digest-interval", type=int, default=60, help="Minutes between digest checks in daemon mode")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )


def status_report(state_path: str) -> str:
    if not os.path.exists(state_path):
        return f"State file not found: {state_path}\nNo monitoring runs have been completed yet."

    store = StateStore.load(state_path)
    stats = store.stats()
    lines = [
        "# SAM.gov Monitor Status Report",
        "",
        f"Generated: {utcnow().isoformat(timespec='seconds')}",
        f"State File: {state_path}",
        "",
        "## Summary",
        f"- Total Opportunities Tracked: {stats.total_opportunities}",
        f"- Expired: {stats.expired_opportunities}",
        f"- First seen in the last 7 days: {stats.opportunities_last_week}",
        f"- First seen in the last 30 days: {stats.opportunities_last_month}",
        f"- Total Monitor Runs: {stats.run_count}",
    ]
    if stats.last_run is not None:
        ago = utcnow() - stats.last_run
        lines.append(f"- Last Run: {stats.last_run.isoformat(timespec='seconds')} ({_minutes(ago)} ago)")
    else:
        lines.append("- Last Run: Never")
    if stats.total_queries:
        lines.append(f"- Query success rate: {stats.query_success_rate * 100:.1f}% across {stats.total_queries} queries")
    return "\n".join(lines)


def _minutes(delta: timedelta) -> str:
    minutes = int(delta.total_seconds() // 60)
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h{minutes % 60:02d}m"


def build_monitor(args: argparse.Namespace) -> Monitor:
    runtime = RuntimeSettings.from_env()
    config = load_config(args.config)
    cache = ResponseCache(runtime.cache_path, ttl=runtime.cache_ttl) if runtime.cache_path else None
    source = SamGovClient.from_settings(runtime, cache=cache)
    store = StateStore.load(args.state)
    channels = [] if args.dry_run else build_channels(NotifierSettings.from_env())
    if not args.dry_run and not channels:
        logger.warning("No notification channels configured")
    router = NotificationRouter(channels)

    return Monitor(
        config,
        source,
        store,
        router,
        dry_run=args.dry_run,
        lookback_days=args.lookback,
        retry=RetryPolicy(max_retries=runtime.max_retries),
        breaker=CircuitBreaker(),
    )


async def run_once(monitor: Monitor, timeout: float) -> int:
    ctx = RunContext(timeout)
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        ctx.cancel("shutdown requested")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await monitor.run(ctx)
    except FailureThresholdExceeded as e:
        logger.error(f"Monitoring run failed: {e}")
        return 1
    except OSError as e:
        logger.error(f"Saving state failed: {e}")
        return 1
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await monitor.source.close()
        await monitor.router.close()
    return 0


async def run_daemon(monitor: Monitor, args: argparse.Namespace) -> int:
    scheduler = Scheduler(timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"))
    stop_event = asyncio.Event()
    current: dict = {}

    async def scheduled_run():
        ctx = RunContext(args.timeout)
        current["ctx"] = ctx
        try:
            await monitor.run(ctx)
        except FailureThresholdExceeded as e:
            logger.error(f"Scheduled run failed: {e}")
        except OSError as e:
            logger.error(f"Saving state failed: {e}")
        finally:
            current.pop("ctx", None)

    async def digest_check():
        if monitor.router.batcher.should_flush(monitor.router.digest_max_age):
            try:
                await monitor.router.flush_digest()
            except Exception as e:
                logger.error(f"Digest flush failed: {e}")

    def signal_handler():
        logger.info("Received shutdown signal")
        if "ctx" in current:
            current["ctx"].cancel("shutdown requested")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    try:
        scheduler.add_cron_job(scheduled_run, args.schedule, job_id="monitor-run", next_run_time=utcnow())
        scheduler.add_interval_job(digest_check, minutes=args.digest_interval, job_id="digest-check")
        await scheduler.start()
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()
        await monitor.source.close()
        await monitor.router.close()
        logger.info("Shutdown complete")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.report:
        print(status_report(args.state))
        return 0

    problems = validate_environment()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1
    if args.validate_env:
        logger.info("Environment validation passed")
        return 0

    try:
        monitor = build_monitor(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.daemon:
        return await run_daemon(monitor, args)
    return await run_once(monitor, args.timeout)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

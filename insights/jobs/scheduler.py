"""
Job Scheduler
=============
APScheduler-based scheduler for usage maintenance jobs, plus an operator CLI.
"""

import argparse
import asyncio
from datetime import date
from typing import Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import structlog

from insights.config import settings
from insights.jobs.reconciliation import CounterReconciliationJob, reset_daily_counter

logger = structlog.get_logger()


class JobScheduler:
    """
    Manages scheduled background jobs.
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.reconciliation_job = CounterReconciliationJob()

    async def run_counter_reconciliation(self) -> None:
        """Execute counter reconciliation for yesterday."""
        try:
            logger.info("Running scheduled counter reconciliation")
            count = await self.reconciliation_job.run()
            logger.info("Counter reconciliation finished", records=count)
        except Exception as e:
            logger.error("Counter reconciliation failed", error=str(e))

    def setup(self) -> None:
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            self.run_counter_reconciliation,
            CronTrigger(hour=settings.reconciliation_hour, minute=0, timezone="UTC"),
            id="counter_reconciliation",
            name="Daily Usage Counter Reconciliation",
            replace_existing=True,
        )

        logger.info("Scheduler configured", reconciliation_hour=settings.reconciliation_hour)

    def start(self) -> None:
        """Start the scheduler."""
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        self.scheduler.shutdown()
        logger.info("Scheduler stopped")


async def run_scheduler() -> None:
    """Run the job scheduler."""
    scheduler = JobScheduler()
    scheduler.setup()
    scheduler.start()

    try:
        # Keep the scheduler running
        while True:
            await asyncio.sleep(60)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        scheduler.stop()


def run() -> None:
    """Entry point for the scheduler worker."""
    if not settings.scheduler_enabled:
        logger.warning("Scheduler is disabled")
        return

    logger.info("Starting Market Insights Scheduler")
    asyncio.run(run_scheduler())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insights-admin",
        description="Operator commands for B2B usage counters",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile", help="Rebuild counters from usage records")
    reconcile.add_argument("--start", type=date.fromisoformat, required=True)
    reconcile.add_argument("--end", type=date.fromisoformat, default=None)

    reset = sub.add_parser("reset-counter", help="Zero a client's counter for a date")
    reset.add_argument("client_id")
    reset.add_argument("--date", type=date.fromisoformat, required=True)

    return parser


def admin(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for operator commands."""
    args = build_parser().parse_args(argv)

    if args.command == "reconcile":
        job = CounterReconciliationJob()
        total = asyncio.run(job.backfill(args.start, args.end or args.start))
        print(f"Reconciled {total} counter rows")
    elif args.command == "reset-counter":
        cleared = asyncio.run(reset_daily_counter(args.client_id, args.date))
        print("Counter reset" if cleared else "No calls to reset for that date")


if __name__ == "__main__":
    run()

"""
Usage Reconciliation Jobs
=========================
Keep daily call counters consistent with the usage audit log.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import structlog

from insights.database import get_session_context
from insights.services.ledger import UsageLedger

logger = structlog.get_logger()


class CounterReconciliationJob:
    """
    Rebuild daily usage counters from usage records.

    The counters are maintained incrementally on every served call; this job
    re-derives them so a counter can never drift from the audit trail.
    """

    async def run(self, target_date: Optional[date] = None) -> int:
        """
        Reconcile counters for a UTC date.

        Args:
            target_date: Date to reconcile (defaults to yesterday, UTC)

        Returns:
            Number of counter rows written
        """
        if target_date is None:
            target_date = datetime.now(timezone.utc).date() - timedelta(days=1)

        logger.info("Starting counter reconciliation", date=str(target_date))

        async with get_session_context() as session:
            count = await UsageLedger(session).reconcile(target_date)

        logger.info("Counter reconciliation completed", date=str(target_date), records=count)
        return count

    async def backfill(self, start_date: date, end_date: date) -> int:
        """
        Reconcile every date in a range, inclusive.
        """
        total = 0
        current = start_date

        while current <= end_date:
            total += await self.run(current)
            current += timedelta(days=1)

        logger.info("Backfill completed", start=str(start_date), end=str(end_date), total=total)
        return total


async def reset_daily_counter(client_id: str, usage_date: date) -> bool:
    """Operator override: clear a client's counter for one date."""
    async with get_session_context() as session:
        return await UsageLedger(session).reset_count(client_id, usage_date)

"""
Usage Ledger
============
Append-only audit of served calls and atomic per-day call counters.
"""

import json
from datetime import date, datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from insights.models.usage import DailyUsageCounter, UsageRecord

logger = structlog.get_logger()


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageLedger:
    """Service for recording and reading B2B API usage."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        if self.session.get_bind().dialect.name == "sqlite":
            return sqlite_insert(DailyUsageCounter)
        return pg_insert(DailyUsageCounter)

    async def _increment(self, client_id: str, usage_date: date) -> None:
        """Single conditional write: insert at 1 or add 1 to the existing row."""
        stmt = self._insert().values(
            client_id=client_id,
            usage_date=usage_date,
            call_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["client_id", "usage_date"],
            set_={
                "call_count": DailyUsageCounter.__table__.c.call_count + 1,
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)

    async def record(
        self,
        client_id: str,
        endpoint: str,
        params: dict[str, Any],
        response_bytes: int,
        latency_ms: int,
    ) -> UsageRecord:
        """
        Append a usage record and bump today's counter in one transaction.

        Raises whatever the database raises; the caller decides whether the
        failure matters.
        """
        now = datetime.now(timezone.utc)
        usage_date = now.date()

        record = UsageRecord(
            client_id=client_id,
            endpoint=endpoint,
            request_params_json=json.dumps(params, sort_keys=True, default=str),
            response_bytes=response_bytes,
            latency_ms=latency_ms,
            usage_date=usage_date,
            timestamp=now,
        )

        try:
            self.session.add(record)
            await self._increment(client_id, usage_date)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Recorded B2B usage",
            client_id=client_id,
            endpoint=endpoint,
            response_bytes=response_bytes,
            latency_ms=latency_ms,
        )
        return record

    async def get_count(self, client_id: str, usage_date: Optional[date] = None) -> int:
        """Calls served to a client on a UTC date (today by default)."""
        usage_date = usage_date or utc_today()
        stmt = select(DailyUsageCounter.call_count).where(
            DailyUsageCounter.client_id == client_id,
            DailyUsageCounter.usage_date == usage_date,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def reset_count(self, client_id: str, usage_date: date) -> bool:
        """
        Operator override: zero the counter for a date.

        Audit records are left untouched. The reset time is kept on the counter
        so reconciliation only re-counts calls served after it.

        Returns:
            True if there were calls to clear
        """
        now = datetime.now(timezone.utc)
        stmt = (
            update(DailyUsageCounter)
            .where(
                DailyUsageCounter.client_id == client_id,
                DailyUsageCounter.usage_date == usage_date,
                DailyUsageCounter.call_count > 0,
            )
            .values(call_count=0, reset_at=now, updated_at=now)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        reset = result.rowcount > 0
        logger.warning(
            "Daily usage counter reset",
            client_id=client_id,
            date=str(usage_date),
            reset=reset,
        )
        return reset

    async def list_records(
        self,
        client_id: str,
        since: Optional[datetime] = None,
        limit: int = 20,
    ) -> list[UsageRecord]:
        """Most recent usage records for a client."""
        stmt = select(UsageRecord).where(UsageRecord.client_id == client_id)

        if since:
            stmt = stmt.where(UsageRecord.timestamp >= since)

        stmt = stmt.order_by(UsageRecord.timestamp.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def reconcile(self, usage_date: date) -> int:
        """
        Rebuild counters for a date from the audit records.

        Calls served before an operator reset stay forgiven.

        Returns:
            Number of counter rows written
        """
        counted = or_(
            DailyUsageCounter.reset_at.is_(None),
            UsageRecord.timestamp > DailyUsageCounter.reset_at,
        )
        stmt = (
            select(
                UsageRecord.client_id,
                func.count(case((counted, UsageRecord.id))).label("calls"),
            )
            .select_from(UsageRecord)
            .outerjoin(
                DailyUsageCounter,
                and_(
                    DailyUsageCounter.client_id == UsageRecord.client_id,
                    DailyUsageCounter.usage_date == UsageRecord.usage_date,
                ),
            )
            .where(UsageRecord.usage_date == usage_date)
            .group_by(UsageRecord.client_id)
        )
        result = await self.session.execute(stmt)
        rows = result.all()

        count = 0
        for row in rows:
            upsert_stmt = self._insert().values(
                client_id=row.client_id,
                usage_date=usage_date,
                call_count=row.calls,
            ).on_conflict_do_update(
                index_elements=["client_id", "usage_date"],
                set_={"call_count": row.calls, "updated_at": func.now()},
            )
            await self.session.execute(upsert_stmt)
            count += 1

        await self.session.commit()
        return count

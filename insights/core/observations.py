"""
Observation Source
==================
Read interface over the raw price observations owned by ingestion.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from insights.config import settings
from insights.models.observation import PriceObservation

logger = structlog.get_logger()


@dataclass(frozen=True)
class RawObservation:
    """A single user-level price fact. Only ever held in memory."""

    user_id: str
    category: str
    region: Optional[str]
    value: float
    observed_at: datetime
    brand: Optional[str] = None


@dataclass
class ObservationBatch:
    """
    Observations for one query window.

    ``truncated`` is set when the row limit cut the window short; the oldest
    observations are the ones missing.
    """

    observations: list[RawObservation] = field(default_factory=list)
    truncated: bool = False


class ObservationSource(Protocol):
    """Anything that can return observations for a filter and time window."""

    async def fetch(
        self,
        *,
        since: datetime,
        category: Optional[str] = None,
        region: Optional[str] = None,
    ) -> ObservationBatch:
        ...


class SqlObservationSource:
    """Observation source backed by the ``price_observations`` table."""

    def __init__(self, session: AsyncSession, row_limit: Optional[int] = None):
        self.session = session
        self.row_limit = row_limit or settings.store_row_limit

    async def fetch(
        self,
        *,
        since: datetime,
        category: Optional[str] = None,
        region: Optional[str] = None,
    ) -> ObservationBatch:
        stmt = select(
            PriceObservation.user_id,
            PriceObservation.category,
            PriceObservation.region,
            PriceObservation.brand,
            PriceObservation.price,
            PriceObservation.observed_at,
        ).where(PriceObservation.observed_at >= since)

        if category:
            stmt = stmt.where(PriceObservation.category == category)
        if region:
            stmt = stmt.where(PriceObservation.region == region)

        # One extra row tells a full window apart from a cut-off one
        stmt = stmt.order_by(PriceObservation.observed_at.desc()).limit(self.row_limit + 1)

        result = await self.session.execute(stmt)
        rows = result.all()

        truncated = len(rows) > self.row_limit
        if truncated:
            rows = rows[: self.row_limit]
            logger.warning(
                "Observation fetch hit row limit",
                limit=self.row_limit,
                category=category,
                region=region,
            )

        return ObservationBatch(
            observations=[
                RawObservation(
                    user_id=row.user_id,
                    category=row.category,
                    region=row.region or None,
                    value=float(row.price),
                    observed_at=row.observed_at,
                    brand=row.brand or None,
                )
                for row in rows
            ],
            truncated=truncated,
        )

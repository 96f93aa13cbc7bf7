"""
Insight Service
===============
Request orchestration: authenticate, validate, aggregate, account.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Literal, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from insights.config import settings
from insights.core.anonymizer import (
    AggregateBucket,
    AggregationResult,
    AnonymizationEngine,
    TrendSeries,
    summarize_series,
)
from insights.core.errors import BadRequestError, InsightsError, InternalError
from insights.core.metrics import INSIGHT_LATENCY, INSIGHT_REQUESTS, USAGE_RECORD_FAILURES
from insights.core.observations import SqlObservationSource
from insights.schemas.insights import (
    BrandShare,
    CategoryInsight,
    CategoryInsightsResponse,
    CategoryQuery,
    ClientUsageResponse,
    InsightMeta,
    TrendInsight,
    TrendInsightsResponse,
    TrendSeriesSummary,
    TrendsQuery,
    UsageRecordItem,
    insight_query_adapter,
)
from insights.services.auth import B2BAuthenticator, ClientContext
from insights.services.directory import ClientDirectory
from insights.services.ledger import UsageLedger, utc_today

logger = structlog.get_logger()

InsightKind = Literal["categories", "trends"]

_BUCKET_STATS = (
    "user_count",
    "item_count",
    "mean_price",
    "median_price",
    "min_price",
    "max_price",
    "merged",
)


@dataclass(frozen=True)
class InsightResult:
    """Serialized response body plus the caller's quota position after it."""

    body: bytes
    client: ClientContext
    count: int

    @property
    def remaining(self) -> int:
        return max(self.client.remaining - 1, 0)


def _validation_detail(error: ValidationError) -> str:
    messages = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"][1:]) or "query"
        messages.append(f"{field}: {err['msg']}")
    return "; ".join(messages)


def _category_item(bucket: AggregateBucket) -> CategoryInsight:
    return CategoryInsight(
        category=bucket.category,
        top_brands=[BrandShare(brand=brand, share=share) for brand, share in bucket.top_brands],
        **{name: getattr(bucket, name) for name in _BUCKET_STATS},
    )


def _trend_item(bucket: AggregateBucket) -> TrendInsight:
    return TrendInsight(
        category=bucket.category,
        region=bucket.region,
        week=bucket.week,
        change_percent=bucket.change_percent,
        direction=bucket.direction,
        **{name: getattr(bucket, name) for name in _BUCKET_STATS},
    )


def _series_item(series: TrendSeries) -> TrendSeriesSummary:
    return TrendSeriesSummary(
        category=series.category,
        region=series.region,
        first_week=series.first_week,
        last_week=series.last_week,
        points=series.points,
        change_percent=series.change_percent,
        direction=series.direction,
    )


class InsightService:
    """
    Serves one B2B insight request end to end.

    Usage is recorded only for responses that were fully computed; failed
    authentication, validation or aggregation never consumes quota.
    """

    def __init__(
        self,
        session: AsyncSession,
        engine: Optional[AnonymizationEngine] = None,
        authenticator: Optional[B2BAuthenticator] = None,
        ledger: Optional[UsageLedger] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session = session
        self.ledger = ledger or UsageLedger(session)
        self.authenticator = authenticator or B2BAuthenticator(
            ClientDirectory(session), self.ledger
        )
        self.engine = engine or AnonymizationEngine(SqlObservationSource(session))
        self.timeout_seconds = timeout_seconds or settings.store_timeout_seconds

    async def _authenticate(self, api_key: Optional[str], enforce_quota: bool = True) -> ClientContext:
        auth = await self.authenticator.authenticate(api_key, enforce_quota=enforce_quota)
        if not auth.authenticated:
            raise auth.error
        return auth.client

    def parse_query(self, kind: InsightKind, params: dict[str, Any]) -> CategoryQuery | TrendsQuery:
        """Build the canonical query, substituting defaults."""
        supplied = {name: value for name, value in params.items() if value is not None}
        try:
            return insight_query_adapter.validate_python({**supplied, "kind": kind})
        except ValidationError as e:
            raise BadRequestError(_validation_detail(e)) from e

    def _render(self, query: CategoryQuery | TrendsQuery, result: AggregationResult) -> bytes:
        buckets = result.buckets
        meta = InsightMeta(
            count=len(buckets),
            weeks=query.weeks,
            region=query.region,
            category=query.category if isinstance(query, TrendsQuery) else None,
            k_threshold=self.engine.k_threshold,
            truncated=result.truncated,
        )
        if isinstance(query, TrendsQuery):
            response = TrendInsightsResponse(
                data=[_trend_item(b) for b in buckets],
                series=[_series_item(s) for s in summarize_series(buckets)],
                meta=meta,
            )
        else:
            response = CategoryInsightsResponse(data=[_category_item(b) for b in buckets], meta=meta)
        return response.model_dump_json().encode("utf-8")

    async def handle(
        self,
        kind: InsightKind,
        endpoint: str,
        api_key: Optional[str],
        params: dict[str, Any],
    ) -> InsightResult:
        """
        Serve an insight request.

        Raises:
            UnauthorizedError, RateLimitExceededError, BadRequestError, InternalError
        """
        started = time.perf_counter()
        try:
            result = await self._handle(kind, endpoint, api_key, params, started)
        except InsightsError as e:
            INSIGHT_REQUESTS.labels(endpoint=endpoint, outcome=type(e).__name__).inc()
            raise
        INSIGHT_REQUESTS.labels(endpoint=endpoint, outcome="ok").inc()
        INSIGHT_LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - started)
        return result

    async def _handle(
        self,
        kind: InsightKind,
        endpoint: str,
        api_key: Optional[str],
        params: dict[str, Any],
        started: float,
    ) -> InsightResult:
        client = await self._authenticate(api_key)
        query = self.parse_query(kind, params)
        applied = query.model_dump()

        try:
            aggregate = await asyncio.wait_for(
                self.engine.aggregate(query),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Observation store timed out",
                client_id=client.client_id,
                endpoint=endpoint,
                params=applied,
                timeout=self.timeout_seconds,
            )
            raise InternalError() from e
        except Exception as e:
            logger.error(
                "Failed to aggregate insights",
                client_id=client.client_id,
                endpoint=endpoint,
                params=applied,
                error=str(e),
            )
            raise InternalError() from e

        body = self._render(query, aggregate)
        latency_ms = int((time.perf_counter() - started) * 1000)

        try:
            await self.ledger.record(
                client_id=client.client_id,
                endpoint=endpoint,
                params=applied,
                response_bytes=len(body),
                latency_ms=latency_ms,
            )
        except Exception as e:
            USAGE_RECORD_FAILURES.inc()
            logger.warning(
                "Failed to record B2B usage",
                client_id=client.client_id,
                endpoint=endpoint,
                error=str(e),
            )

        return InsightResult(body=body, client=client, count=len(aggregate.buckets))

    async def usage_summary(self, api_key: Optional[str], limit: int = 20) -> ClientUsageResponse:
        """Caller's quota position; readable even when the quota is used up."""
        client = await self._authenticate(api_key, enforce_quota=False)
        records = await self.ledger.list_records(client.client_id, limit=limit)

        return ClientUsageResponse(
            client_id=client.client_id,
            tier=client.tier,
            date=utc_today(),
            daily_limit=client.daily_limit,
            calls_today=client.calls_today,
            remaining=client.remaining,
            recent=[
                UsageRecordItem(
                    endpoint=r.endpoint,
                    request_params=json.loads(r.request_params_json),
                    response_bytes=r.response_bytes,
                    latency_ms=r.latency_ms,
                    timestamp=r.timestamp,
                )
                for r in records
            ],
        )

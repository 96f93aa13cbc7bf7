"""
Insight Service Tests
=====================
Tests for request orchestration: ordering, failure handling and accounting.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from insights.core.anonymizer import AnonymizationEngine
from insights.core.errors import (
    BadRequestError,
    InternalError,
    RateLimitExceededError,
    UnauthorizedError,
)
from insights.core.observations import SqlObservationSource
from insights.schemas.insights import CategoryQuery, TrendsQuery
from insights.services.insights import InsightService
from insights.services.ledger import UsageLedger
from tests.factories import (
    TEST_API_KEY,
    FakeObservationSource,
    add_observations,
    create_client,
    make_observations,
)

YESTERDAY = datetime.now(timezone.utc) - timedelta(days=1)


class SlowSource(FakeObservationSource):
    async def fetch(self, **kwargs):
        await asyncio.sleep(1)
        return await super().fetch(**kwargs)


class BrokenSource(FakeObservationSource):
    async def fetch(self, **kwargs):
        raise SQLAlchemyError("connection reset")


class FailingLedger(UsageLedger):
    async def record(self, *args, **kwargs):
        raise SQLAlchemyError("disk full")


def make_service(session, source=None, **kwargs) -> InsightService:
    engine = AnonymizationEngine(source or FakeObservationSource(), k_threshold=100)
    return InsightService(session, engine=engine, **kwargs)


class TestParseQuery:
    """Tests for InsightService.parse_query."""

    async def test_category_defaults(self, test_session):
        query = make_service(test_session).parse_query("categories", {"region": None, "weeks": None})

        assert isinstance(query, CategoryQuery)
        assert query.weeks == 4
        assert query.region is None

    async def test_trend_defaults(self, test_session):
        query = make_service(test_session).parse_query("trends", {"category": "dairy"})

        assert isinstance(query, TrendsQuery)
        assert query.weeks == 12
        assert query.category == "dairy"

    async def test_blank_region_is_unspecified(self, test_session):
        query = make_service(test_session).parse_query("categories", {"region": "  "})

        assert query.region is None

    async def test_weeks_from_string(self, test_session):
        query = make_service(test_session).parse_query("categories", {"weeks": "8"})

        assert query.weeks == 8

    @pytest.mark.parametrize("weeks", ["abc", "0", "-1", "53"])
    async def test_invalid_weeks(self, test_session, weeks):
        with pytest.raises(BadRequestError):
            make_service(test_session).parse_query("categories", {"weeks": weeks})

    @pytest.mark.parametrize("category", [None, "", "   "])
    async def test_trends_require_category(self, test_session, category):
        with pytest.raises(BadRequestError):
            make_service(test_session).parse_query("trends", {"category": category})


class TestInsightService:
    """Tests for InsightService.handle."""

    async def test_category_insights_from_store(self, test_session):
        await create_client(test_session)
        await add_observations(test_session, "dairy", "NE", users=150, price=2.0)
        await add_observations(test_session, "dairy", "SW", users=50, price=4.0)
        service = InsightService(test_session)

        result = await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        body = json.loads(result.body)
        assert body["meta"] == {
            "count": 1,
            "weeks": 4,
            "region": None,
            "category": None,
            "k_threshold": 100,
            "truncated": False,
        }
        assert body["data"][0]["category"] == "dairy"
        assert body["data"][0]["user_count"] == 200
        assert body["data"][0]["mean_price"] == pytest.approx(2.5)
        assert result.count == 1
        assert await UsageLedger(test_session).get_count("acme") == 1

    async def test_region_scoped_trends_are_empty_below_threshold(self, test_session):
        await create_client(test_session)
        await add_observations(test_session, "dairy", "NE", users=150, price=2.0)
        await add_observations(test_session, "dairy", "SW", users=50, price=4.0)
        service = InsightService(test_session)

        result = await service.handle(
            "trends",
            "/insights/trends",
            TEST_API_KEY,
            {"category": "dairy", "region": "SW"},
        )

        body = json.loads(result.body)
        assert body["data"] == []
        assert body["meta"]["count"] == 0
        assert body["meta"]["weeks"] == 12
        assert body["meta"]["region"] == "SW"
        assert body["meta"]["category"] == "dairy"
        # An empty answer is still a served call
        assert await UsageLedger(test_session).get_count("acme") == 1

    async def test_unauthorized_never_touches_store(self, test_session):
        source = FakeObservationSource(make_observations(150))
        service = make_service(test_session, source)

        with pytest.raises(UnauthorizedError):
            await service.handle("categories", "/insights/categories", "mk_test_unknown_key", {})

        assert source.calls == []

    async def test_bad_request_is_not_counted(self, test_session):
        await create_client(test_session)
        source = FakeObservationSource()
        service = make_service(test_session, source)

        with pytest.raises(BadRequestError):
            await service.handle("trends", "/insights/trends", TEST_API_KEY, {"weeks": "4"})

        assert source.calls == []
        assert await UsageLedger(test_session).get_count("acme") == 0

    async def test_store_timeout(self, test_session):
        await create_client(test_session)
        service = make_service(test_session, SlowSource(), timeout_seconds=0.01)

        with pytest.raises(InternalError) as exc_info:
            await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == "Failed to compute insights"
        assert await UsageLedger(test_session).get_count("acme") == 0

    async def test_store_failure(self, test_session):
        await create_client(test_session)
        service = make_service(test_session, BrokenSource())

        with pytest.raises(InternalError) as exc_info:
            await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        assert "connection reset" not in exc_info.value.detail
        assert await UsageLedger(test_session).get_count("acme") == 0

    async def test_ledger_failure_still_serves_response(self, test_session):
        await create_client(test_session)
        service = make_service(
            test_session,
            FakeObservationSource(make_observations(120, observed_at=YESTERDAY)),
            ledger=FailingLedger(test_session),
        )

        result = await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        assert result.count == 1
        assert await UsageLedger(test_session).get_count("acme") == 0

    async def test_quota_counts_only_served_calls(self, test_session):
        await create_client(test_session, daily_call_limit=2)
        service = make_service(test_session)

        first = await service.handle("categories", "/insights/categories", TEST_API_KEY, {})
        second = await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        assert first.remaining == 1
        assert second.remaining == 0

        with pytest.raises(RateLimitExceededError) as exc_info:
            await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        assert exc_info.value.limit == 2
        assert await UsageLedger(test_session).get_count("acme") == 2

    async def test_applied_filters_are_recorded(self, test_session):
        await create_client(test_session)
        service = make_service(test_session)

        await service.handle(
            "trends",
            "/insights/trends",
            TEST_API_KEY,
            {"category": " dairy ", "region": "NE", "weeks": "6"},
        )

        records = await UsageLedger(test_session).list_records("acme")
        assert len(records) == 1
        assert records[0].endpoint == "/insights/trends"
        assert json.loads(records[0].request_params_json) == {
            "category": "dairy",
            "kind": "trends",
            "region": "NE",
            "weeks": 6,
        }

    async def test_category_brands_from_store(self, test_session):
        await create_client(test_session)
        await add_observations(test_session, "dairy", "NE", users=150, price=2.0, brand="Acme")
        await add_observations(test_session, "dairy", "SW", users=50, price=4.0, brand="Bolt")
        service = InsightService(test_session)

        result = await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        [item] = json.loads(result.body)["data"]
        assert item["top_brands"] == [{"brand": "Acme", "share": 0.75}]

    async def test_trend_series_in_response(self, test_session):
        await create_client(test_session)
        last_week = YESTERDAY - timedelta(weeks=1)
        await add_observations(
            test_session, "dairy", "NE", users=120, price=2.0, observed_at=last_week
        )
        await add_observations(
            test_session, "dairy", "NE", users=120, price=3.0, observed_at=YESTERDAY
        )
        service = InsightService(test_session)

        result = await service.handle(
            "trends", "/insights/trends", TEST_API_KEY, {"category": "dairy"}
        )

        body = json.loads(result.body)
        assert [point["change_percent"] for point in body["data"]] == [None, 50.0]
        assert body["data"][1]["direction"] == "rising"
        assert len(body["series"]) == 1
        assert body["series"][0]["region"] == "NE"
        assert body["series"][0]["points"] == 2
        assert body["series"][0]["change_percent"] == 50.0
        assert body["series"][0]["direction"] == "rising"

    async def test_row_limit_is_flagged_in_meta(self, test_session):
        await create_client(test_session)
        await add_observations(test_session, "dairy", "NE", users=150, price=2.0)
        engine = AnonymizationEngine(
            SqlObservationSource(test_session, row_limit=120), k_threshold=100
        )
        service = InsightService(test_session, engine=engine)

        result = await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        body = json.loads(result.body)
        assert body["meta"]["truncated"] is True
        assert body["data"][0]["user_count"] == 120


class TestUsageSummary:
    """Tests for InsightService.usage_summary."""

    async def test_usage_summary(self, test_session):
        await create_client(test_session, daily_call_limit=5)
        service = make_service(test_session)
        await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        summary = await service.usage_summary(TEST_API_KEY)

        assert summary.client_id == "acme"
        assert summary.daily_limit == 5
        assert summary.calls_today == 1
        assert summary.remaining == 4
        assert len(summary.recent) == 1
        assert summary.recent[0].request_params["weeks"] == 4

    async def test_usage_summary_available_over_quota(self, test_session):
        await create_client(test_session, daily_call_limit=1)
        service = make_service(test_session)
        await service.handle("categories", "/insights/categories", TEST_API_KEY, {})

        summary = await service.usage_summary(TEST_API_KEY)

        assert summary.remaining == 0
        assert await UsageLedger(test_session).get_count("acme") == 1

    async def test_usage_summary_requires_credentials(self, test_session):
        with pytest.raises(UnauthorizedError):
            await make_service(test_session).usage_summary(None)

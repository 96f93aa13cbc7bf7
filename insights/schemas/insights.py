"""
Insight Schemas
===============
Canonical query objects and response envelopes for the B2B insights API.
"""

from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from insights.config import settings


class _WindowedQuery(BaseModel):
    """Fields shared by every insight query."""

    region: Optional[str] = Field(default=None, max_length=50)
    weeks: int

    @field_validator("region", mode="before")
    @classmethod
    def blank_region_is_unspecified(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @model_validator(mode="after")
    def check_weeks(self) -> "_WindowedQuery":
        if not 1 <= self.weeks <= settings.max_weeks:
            raise ValueError(f"weeks must be between 1 and {settings.max_weeks}")
        return self


class CategoryQuery(_WindowedQuery):
    """Category insights: one bucket per category."""

    kind: Literal["categories"] = "categories"
    weeks: int = Field(default_factory=lambda: settings.default_category_weeks)


class TrendsQuery(_WindowedQuery):
    """Price trends: one bucket per category, region and ISO week."""

    kind: Literal["trends"] = "trends"
    category: str = Field(..., max_length=255)
    weeks: int = Field(default_factory=lambda: settings.default_trend_weeks)

    @field_validator("category", mode="before")
    @classmethod
    def category_required(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
        if not v:
            raise ValueError("category is required")
        return v


InsightQuery = Annotated[Union[CategoryQuery, TrendsQuery], Field(discriminator="kind")]

insight_query_adapter: TypeAdapter[InsightQuery] = TypeAdapter(InsightQuery)


class BrandShare(BaseModel):
    """Share of a category's branded items held by one brand (0..1)."""

    brand: str
    share: float


class CategoryInsight(BaseModel):
    """
    Category-level price statistics.
    ``category`` is null for the roll-up of categories too thin to publish alone.
    """

    category: Optional[str]
    user_count: int
    item_count: int
    mean_price: float
    median_price: float
    min_price: float
    max_price: float
    merged: bool = False
    top_brands: list[BrandShare] = Field(default_factory=list)


class TrendInsight(BaseModel):
    """
    Weekly price point for a category and region.
    ``region`` is null for the all-regions roll-up.
    """

    category: str
    region: Optional[str]
    week: str
    user_count: int
    item_count: int
    mean_price: float
    median_price: float
    min_price: float
    max_price: float
    change_percent: Optional[float] = None
    direction: Optional[Literal["rising", "falling", "stable"]] = None
    merged: bool = False


class InsightMeta(BaseModel):
    """
    Filters effectively applied, defaults included.
    ``truncated`` is set when the observation row limit cut the window short.
    """

    count: int
    weeks: int
    region: Optional[str] = None
    category: Optional[str] = None
    k_threshold: int
    truncated: bool = False


class CategoryInsightsResponse(BaseModel):
    data: list[CategoryInsight]
    meta: InsightMeta


class TrendSeriesSummary(BaseModel):
    """Earliest-to-latest price movement of one category and region."""

    category: str
    region: Optional[str]
    first_week: str
    last_week: str
    points: int
    change_percent: Optional[float] = None
    direction: Optional[Literal["rising", "falling", "stable"]] = None


class TrendInsightsResponse(BaseModel):
    data: list[TrendInsight]
    series: list[TrendSeriesSummary] = Field(default_factory=list)
    meta: InsightMeta


class UsageRecordItem(BaseModel):
    """A served call as shown back to the client."""

    endpoint: str
    request_params: dict[str, Any]
    response_bytes: int
    latency_ms: int
    timestamp: datetime


class ClientUsageResponse(BaseModel):
    """Caller's quota position for the current UTC day."""

    client_id: str
    tier: str
    date: date
    daily_limit: int
    calls_today: int
    remaining: int
    recent: list[UsageRecordItem]

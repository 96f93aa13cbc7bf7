"""
Pydantic Schemas
================
Request/Response models for API validation.
"""

from insights.schemas.insights import (
    BrandShare,
    CategoryInsight,
    CategoryInsightsResponse,
    CategoryQuery,
    ClientUsageResponse,
    InsightMeta,
    InsightQuery,
    TrendInsight,
    TrendInsightsResponse,
    TrendSeriesSummary,
    TrendsQuery,
    UsageRecordItem,
)

__all__ = [
    "CategoryQuery",
    "TrendsQuery",
    "InsightQuery",
    "BrandShare",
    "CategoryInsight",
    "TrendInsight",
    "TrendSeriesSummary",
    "InsightMeta",
    "CategoryInsightsResponse",
    "TrendInsightsResponse",
    "ClientUsageResponse",
    "UsageRecordItem",
]

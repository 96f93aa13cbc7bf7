"""
Insight Endpoints
=================
Authenticated B2B endpoints serving anonymized market insights.
"""

from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from insights.core.errors import (
    InsightsError,
    InternalError,
    RateLimitExceededError,
    UnauthorizedError,
)
from insights.database import get_session
from insights.schemas.insights import (
    CategoryInsightsResponse,
    ClientUsageResponse,
    TrendInsightsResponse,
)
from insights.services.auth import extract_api_key
from insights.services.insights import InsightResult, InsightService

router = APIRouter()
logger = structlog.get_logger()


def get_insight_service(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> InsightService:
    return InsightService(session)


def get_api_key(
    authorization: Annotated[Optional[str], Header()] = None,
    x_api_key: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    return extract_api_key(authorization, x_api_key)


def to_http_error(error: InsightsError) -> HTTPException:
    """Translate a pipeline error into its HTTP response."""
    headers = None
    if isinstance(error, UnauthorizedError):
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(error, RateLimitExceededError):
        headers = {
            "Retry-After": str(error.retry_after),
            "X-RateLimit-Limit": str(error.limit),
            "X-RateLimit-Remaining": "0",
        }
    return HTTPException(status_code=error.status_code, detail=error.detail, headers=headers)


def _json_response(result: InsightResult) -> Response:
    return Response(
        content=result.body,
        media_type="application/json",
        headers={
            "X-RateLimit-Limit": str(result.client.daily_limit),
            "X-RateLimit-Remaining": str(result.remaining),
        },
    )


@router.get(
    "/categories",
    response_model=CategoryInsightsResponse,
    summary="Get category insights",
    description="Anonymized price statistics per product category",
)
async def get_category_insights(
    service: Annotated[InsightService, Depends(get_insight_service)],
    api_key: Annotated[Optional[str], Depends(get_api_key)],
    region: Annotated[Optional[str], Query(description="Region code; all regions if omitted")] = None,
    weeks: Annotated[Optional[str], Query(description="Lookback in weeks (default 4)")] = None,
) -> Response:
    """
    Get category-level insights.

    Categories backed by fewer distinct users than the k-anonymity threshold
    are combined into a single roll-up bucket (``category: null``) or omitted.
    """
    try:
        result = await service.handle(
            "categories",
            "/insights/categories",
            api_key,
            {"region": region, "weeks": weeks},
        )
    except InsightsError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error("Failed to serve category insights", error=str(e))
        raise to_http_error(InternalError()) from e
    return _json_response(result)


@router.get(
    "/trends",
    response_model=TrendInsightsResponse,
    summary="Get price trends",
    description="Anonymized weekly price trend for a category",
)
async def get_price_trends(
    service: Annotated[InsightService, Depends(get_insight_service)],
    api_key: Annotated[Optional[str], Depends(get_api_key)],
    category: Annotated[Optional[str], Query(description="Product category (required)")] = None,
    region: Annotated[Optional[str], Query(description="Region code; all regions if omitted")] = None,
    weeks: Annotated[Optional[str], Query(description="Lookback in weeks (default 12)")] = None,
) -> Response:
    """
    Get weekly price trends for a category.

    Thin regions are rolled up into the all-regions series (``region: null``)
    for the same week; weeks are never merged.
    """
    try:
        result = await service.handle(
            "trends",
            "/insights/trends",
            api_key,
            {"category": category, "region": region, "weeks": weeks},
        )
    except InsightsError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error("Failed to serve price trends", category=category, error=str(e))
        raise to_http_error(InternalError()) from e
    return _json_response(result)


@router.get(
    "/usage",
    response_model=ClientUsageResponse,
    summary="Get own API usage",
    description="Daily quota position and recent calls of the authenticated client",
)
async def get_own_usage(
    service: Annotated[InsightService, Depends(get_insight_service)],
    api_key: Annotated[Optional[str], Depends(get_api_key)],
) -> ClientUsageResponse:
    """
    Get the caller's usage for the current UTC day.

    Not counted against the quota and available after the quota is used up.
    """
    try:
        return await service.usage_summary(api_key)
    except InsightsError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error("Failed to get client usage", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve usage",
        ) from e

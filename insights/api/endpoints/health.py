"""
Health Check Endpoints
======================
Liveness and readiness probes for Kubernetes.
"""

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from insights import __version__
from insights.database import get_session

router = APIRouter()
logger = structlog.get_logger()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    database: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Liveness probe endpoint.
    Returns OK if the service is running.
    """
    return HealthResponse(status="ok", version=__version__)


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(
    session: AsyncSession = Depends(get_session),
) -> ReadinessResponse:
    """
    Readiness probe endpoint.
    Checks database connectivity.
    """
    try:
        await session.execute(text("SELECT 1"))
        db_status = "connected"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Readiness check failed", error=str(e))
        db_status = "disconnected"

    return ReadinessResponse(
        status="ok" if db_status == "connected" else "degraded",
        database=db_status,
        version=__version__,
    )

"""
API Router
==========
Main API router combining all endpoint modules.
"""

from fastapi import APIRouter

from insights.api.endpoints import health, insights

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(insights.router, prefix="/insights", tags=["Insights"])

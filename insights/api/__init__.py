"""
HTTP API
========
FastAPI routers for the market insights service.
"""

from insights.api.router import api_router

__all__ = ["api_router"]

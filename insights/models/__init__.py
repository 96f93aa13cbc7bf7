"""
Database Models
===============
SQLAlchemy ORM models for the market insights API.
"""

from insights.models.base import Base
from insights.models.client import B2BClient
from insights.models.observation import PriceObservation
from insights.models.usage import DailyUsageCounter, UsageRecord

__all__ = [
    "Base",
    "B2BClient",
    "UsageRecord",
    "DailyUsageCounter",
    "PriceObservation",
]

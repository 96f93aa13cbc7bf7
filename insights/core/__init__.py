"""
Core Business Logic
====================
k-anonymous aggregation, rate-limit tiers and the error taxonomy.
"""

from insights.core.anonymizer import K_ANONYMITY_THRESHOLD, AggregateBucket, AnonymizationEngine
from insights.core.tiers import TierCatalog, get_tier_catalog

__all__ = [
    "K_ANONYMITY_THRESHOLD",
    "AggregateBucket",
    "AnonymizationEngine",
    "TierCatalog",
    "get_tier_catalog",
]

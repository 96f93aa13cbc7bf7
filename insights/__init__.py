"""
Market Insights
===============
Anonymized, rate-limited market insights API for B2B clients.
"""

__version__ = "1.0.0"

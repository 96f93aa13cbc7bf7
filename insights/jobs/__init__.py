"""
Background Jobs
================
Scheduled maintenance of usage counters.
"""

from insights.jobs.reconciliation import CounterReconciliationJob, reset_daily_counter

__all__ = ["CounterReconciliationJob", "reset_daily_counter"]

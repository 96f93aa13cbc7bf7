"""
Business Services
=================
Client directory, usage ledger, authentication and request orchestration.
"""

from insights.services.auth import AuthResult, B2BAuthenticator, ClientContext
from insights.services.directory import ClientDirectory
from insights.services.insights import InsightService
from insights.services.ledger import UsageLedger

__all__ = [
    "AuthResult",
    "B2BAuthenticator",
    "ClientContext",
    "ClientDirectory",
    "InsightService",
    "UsageLedger",
]

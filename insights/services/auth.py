"""
B2B Authenticator
=================
Credential validation and daily quota enforcement.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional

import structlog

from insights.core.errors import InsightsError, RateLimitExceededError, UnauthorizedError
from insights.core.tiers import TierCatalog, get_tier_catalog
from insights.models.client import B2BClient
from insights.services.directory import ClientDirectory
from insights.services.ledger import UsageLedger, utc_today

logger = structlog.get_logger()

MIN_API_KEY_LENGTH = 10


@dataclass(frozen=True)
class ClientContext:
    """Authenticated caller and its quota position at lookup time."""

    client_id: str
    company_name: str
    tier: str
    daily_limit: int
    calls_today: int

    @property
    def remaining(self) -> int:
        return max(self.daily_limit - self.calls_today, 0)


@dataclass(frozen=True)
class AuthResult:
    authenticated: bool
    client: Optional[ClientContext] = None
    error: Optional[InsightsError] = None


def extract_api_key(authorization: Optional[str], x_api_key: Optional[str]) -> Optional[str]:
    """
    Pull the API key from ``Authorization: Bearer`` or ``X-API-Key``.

    A Bearer token wins; ``X-API-Key`` is used when the Authorization header
    is absent or carries another scheme.

    Returns None for anything missing or malformed; callers must not tell the
    two apart.
    """
    key = None
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer":
            key = token.strip()
    if not key and x_api_key:
        key = x_api_key.strip()

    if not key or len(key) < MIN_API_KEY_LENGTH:
        return None
    return key


def seconds_until_utc_midnight(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    midnight = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return max(int((midnight - now).total_seconds()), 1)


class B2BAuthenticator:
    """Validates credentials against the directory and checks quota."""

    def __init__(
        self,
        directory: ClientDirectory,
        ledger: UsageLedger,
        tiers: Optional[TierCatalog] = None,
    ):
        self.directory = directory
        self.ledger = ledger
        self.tiers = tiers or get_tier_catalog()

    async def authenticate(
        self,
        api_key: Optional[str],
        enforce_quota: bool = True,
    ) -> AuthResult:
        """
        Authenticate an API key.

        Side-effect free: the daily counter is only read, never incremented.
        """
        if not api_key:
            return AuthResult(authenticated=False, error=UnauthorizedError())

        client: Optional[B2BClient] = await self.directory.find_by_api_key(api_key)
        if client is None or not client.is_active:
            logger.info(
                "B2B authentication rejected",
                client_id=client.id if client else None,
                status=client.status if client else None,
            )
            return AuthResult(authenticated=False, error=UnauthorizedError())

        daily_limit = self.tiers.daily_limit(client.tier, client.daily_call_limit)
        calls_today = await self.ledger.get_count(client.id, utc_today())

        if enforce_quota and calls_today >= daily_limit:
            logger.warning(
                "B2B daily limit reached",
                client_id=client.id,
                tier=client.tier,
                limit=daily_limit,
                calls=calls_today,
            )
            return AuthResult(
                authenticated=False,
                error=RateLimitExceededError(
                    limit=daily_limit,
                    retry_after=seconds_until_utc_midnight(),
                ),
            )

        return AuthResult(
            authenticated=True,
            client=ClientContext(
                client_id=client.id,
                company_name=client.company_name,
                tier=client.tier,
                daily_limit=daily_limit,
                calls_today=calls_today,
            ),
        )

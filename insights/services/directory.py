"""
Client Directory
================
Read-only lookup of B2B clients by API key.
"""

import hashlib
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from insights.models.client import B2BClient


def hash_api_key(api_key: str) -> str:
    """SHA-256 hex digest of an API key, as stored in ``b2b_clients``."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


class ClientDirectory:
    """Maps API credentials to client records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_api_key(self, api_key: str) -> Optional[B2BClient]:
        stmt = select(B2BClient).where(B2BClient.api_key_hash == hash_api_key(api_key))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

"""
Authenticator Tests
===================
Tests for credential extraction, client lookup and quota enforcement.
"""

from datetime import datetime, timezone

import pytest

from insights.core.errors import RateLimitExceededError, UnauthorizedError
from insights.core.tiers import TierCatalog
from insights.services.auth import (
    B2BAuthenticator,
    extract_api_key,
    seconds_until_utc_midnight,
)
from insights.services.directory import ClientDirectory, hash_api_key
from insights.services.ledger import UsageLedger
from tests.factories import TEST_API_KEY, create_client


@pytest.fixture
def tiers(tmp_path) -> TierCatalog:
    config = tmp_path / "tiers.yaml"
    config.write_text("tiers:\n  base:\n    daily_limit: 3\n  growth:\n    daily_limit: 10\n")
    return TierCatalog(str(config))


@pytest.fixture
def authenticator(test_session, tiers) -> B2BAuthenticator:
    return B2BAuthenticator(ClientDirectory(test_session), UsageLedger(test_session), tiers)


class TestExtractApiKey:
    def test_bearer_token(self):
        assert extract_api_key(f"Bearer {TEST_API_KEY}", None) == TEST_API_KEY

    def test_bearer_scheme_is_case_insensitive(self):
        assert extract_api_key(f"bearer {TEST_API_KEY}", None) == TEST_API_KEY

    def test_x_api_key_header(self):
        assert extract_api_key(None, TEST_API_KEY) == TEST_API_KEY

    def test_missing_credential(self):
        assert extract_api_key(None, None) is None

    def test_short_key_is_rejected(self):
        assert extract_api_key("Bearer short", None) is None
        assert extract_api_key(None, "123456789") is None

    def test_other_scheme_is_rejected(self):
        assert extract_api_key(f"Basic {TEST_API_KEY}", None) is None

    def test_empty_bearer(self):
        assert extract_api_key("Bearer ", None) is None

    def test_x_api_key_used_when_authorization_is_another_scheme(self):
        assert extract_api_key("Basic dXNlcjpwYXNz", TEST_API_KEY) == TEST_API_KEY

    def test_bearer_wins_over_x_api_key(self):
        assert extract_api_key(f"Bearer {TEST_API_KEY}", "mk_test_other_key") == TEST_API_KEY

    def test_x_api_key_used_when_bearer_is_empty(self):
        assert extract_api_key("Bearer ", TEST_API_KEY) == TEST_API_KEY


class TestB2BAuthenticator:
    """Tests for B2BAuthenticator.authenticate."""

    async def test_valid_key(self, test_session, authenticator):
        await create_client(test_session)

        result = await authenticator.authenticate(TEST_API_KEY)

        assert result.authenticated is True
        assert result.error is None
        assert result.client.client_id == "acme"
        assert result.client.daily_limit == 3
        assert result.client.calls_today == 0
        assert result.client.remaining == 3

    async def test_missing_key(self, authenticator):
        result = await authenticator.authenticate(None)

        assert result.authenticated is False
        assert isinstance(result.error, UnauthorizedError)

    async def test_unknown_key(self, test_session, authenticator):
        await create_client(test_session)

        result = await authenticator.authenticate("mk_test_not_a_real_key")

        assert result.authenticated is False
        assert isinstance(result.error, UnauthorizedError)

    @pytest.mark.parametrize("status", ["suspended", "revoked"])
    async def test_inactive_client(self, test_session, authenticator, status):
        await create_client(test_session, status=status)

        result = await authenticator.authenticate(TEST_API_KEY)

        assert result.authenticated is False
        assert isinstance(result.error, UnauthorizedError)
        assert result.error.status_code == 401

    async def test_quota_exhausted(self, test_session, authenticator):
        await create_client(test_session)
        ledger = UsageLedger(test_session)
        for _ in range(3):
            await ledger.record("acme", "/insights/categories", {}, 10, 1)

        result = await authenticator.authenticate(TEST_API_KEY)

        assert result.authenticated is False
        assert isinstance(result.error, RateLimitExceededError)
        assert result.error.status_code == 429
        assert result.error.limit == 3
        assert result.error.retry_after >= 1
        assert await ledger.get_count("acme") == 3

    async def test_quota_not_enforced_for_usage_lookup(self, test_session, authenticator):
        await create_client(test_session)
        ledger = UsageLedger(test_session)
        for _ in range(3):
            await ledger.record("acme", "/insights/categories", {}, 10, 1)

        result = await authenticator.authenticate(TEST_API_KEY, enforce_quota=False)

        assert result.authenticated is True
        assert result.client.calls_today == 3
        assert result.client.remaining == 0

    async def test_authentication_does_not_count(self, test_session, authenticator):
        await create_client(test_session)

        for _ in range(5):
            await authenticator.authenticate(TEST_API_KEY)

        assert await UsageLedger(test_session).get_count("acme") == 0

    async def test_client_override_wins_over_tier(self, test_session, authenticator):
        await create_client(test_session, tier="growth", daily_call_limit=50)

        result = await authenticator.authenticate(TEST_API_KEY)

        assert result.client.daily_limit == 50


class TestHelpers:
    def test_hash_api_key_is_stable_hex(self):
        digest = hash_api_key(TEST_API_KEY)

        assert digest == hash_api_key(TEST_API_KEY)
        assert len(digest) == 64
        assert digest != TEST_API_KEY

    def test_seconds_until_utc_midnight(self):
        now = datetime(2026, 3, 2, 23, 0, tzinfo=timezone.utc)

        assert seconds_until_utc_midnight(now) == 3600

    def test_seconds_until_utc_midnight_never_zero(self):
        now = datetime(2026, 3, 2, 23, 59, 59, 999999, tzinfo=timezone.utc)

        assert seconds_until_utc_midnight(now) == 1


class TestClientDirectory:
    async def test_find_by_api_key(self, test_session):
        await create_client(test_session)
        directory = ClientDirectory(test_session)

        client = await directory.find_by_api_key(TEST_API_KEY)

        assert client is not None
        assert client.id == "acme"
        assert await directory.find_by_api_key("mk_test_unknown_key") is None

"""
Tests for amzsync.tokens module.
"""
import httpx
import pytest

from amzsync.exceptions import CredentialError
from amzsync.tokens import TokenManager

TOKEN_URL = "https://api.amazon.com/auth/o2/token"


def _token_client(responses, seen=None):
    """httpx client whose token endpoint replies from ``responses`` in order."""
    replies = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        status, body = replies.pop(0) if len(replies) > 1 else replies[0]
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTokenManager:
    """Tests for refresh-token exchange and caching."""

    @pytest.mark.asyncio
    async def test_exchange_form(self, seller_credentials):
        """Exchange posts the refresh_token grant as a form."""
        seen = []
        async with _token_client([(200, {"access_token": "Atza|1"})], seen) as client:
            tokens = TokenManager(token_url=TOKEN_URL, client=client)
            token = await tokens.ensure_token(seller_credentials)

        assert token == "Atza|1"
        body = seen[0].content.decode()
        assert "grant_type=refresh_token" in body
        assert "client_id=amzn1.application-oa2-client.test" in body
        assert tokens.exchanges == 1

    @pytest.mark.asyncio
    async def test_cached_until_refresh_age(self, seller_credentials):
        """Token is reused for 30 minutes, then exchanged again."""
        clock = FakeClock()
        responses = [
            (200, {"access_token": "Atza|1"}),
            (200, {"access_token": "Atza|2"}),
        ]
        async with _token_client(responses) as client:
            tokens = TokenManager(token_url=TOKEN_URL, client=client, clock=clock, refresh_after_seconds=1800)

            assert await tokens.ensure_token(seller_credentials) == "Atza|1"
            clock.now += 1800
            assert await tokens.ensure_token(seller_credentials) == "Atza|1"
            clock.now += 1
            assert await tokens.ensure_token(seller_credentials) == "Atza|2"

        assert tokens.exchanges == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_exchange(self, seller_credentials):
        async with _token_client([(200, {"access_token": "Atza|x"})]) as client:
            tokens = TokenManager(token_url=TOKEN_URL, client=client)
            await tokens.ensure_token(seller_credentials)
            tokens.invalidate()
            assert tokens.token_age is None
            await tokens.ensure_token(seller_credentials)

        assert tokens.exchanges == 2

    @pytest.mark.asyncio
    async def test_rejected_refresh_token(self, seller_credentials):
        """Non-success status is a credential failure."""
        async with _token_client([(400, {"error": "invalid_grant"})]) as client:
            tokens = TokenManager(token_url=TOKEN_URL, client=client)
            with pytest.raises(CredentialError) as exc_info:
                await tokens.ensure_token(seller_credentials)

        assert "400" in exc_info.value.message
        assert tokens.exchanges == 0

    @pytest.mark.asyncio
    async def test_missing_access_token(self, seller_credentials):
        async with _token_client([(200, {"token_type": "bearer"})]) as client:
            with pytest.raises(CredentialError):
                await TokenManager(token_url=TOKEN_URL, client=client).ensure_token(seller_credentials)

    @pytest.mark.asyncio
    async def test_transport_failure(self, seller_credentials):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(CredentialError):
                await TokenManager(token_url=TOKEN_URL, client=client).ensure_token(seller_credentials)

"""
Login-with-Amazon access token management.

Exchanges the long-lived refresh token for a short-lived bearer token and
reissues it once it is older than the refresh threshold (30 minutes; the
provider's tokens last an hour).
"""
import time
from typing import Callable, Optional

import httpx

from amzsync.config import config
from amzsync.credentials import SellerCredentials
from amzsync.exceptions import CredentialError
from amzsync.observability import get_logger, Timer

logger = get_logger(__name__)


class TokenManager:
    """
    Caches one access token per run.

    Usage:
        tokens = TokenManager()
        token = await tokens.ensure_token(credentials)
    """

    def __init__(
        self,
        token_url: str = None,
        refresh_after_seconds: float = None,
        timeout: float = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token_url = token_url or config.spapi.token_url
        self.refresh_after_seconds = (
            refresh_after_seconds if refresh_after_seconds is not None else config.sync.token_refresh_seconds
        )
        self.timeout = timeout or config.spapi.token_timeout
        self._client = client
        self._clock = clock
        self._token: Optional[str] = None
        self._acquired_at: float = 0.0
        self.exchanges = 0

    @property
    def token_age(self) -> Optional[float]:
        if self._token is None:
            return None
        return self._clock() - self._acquired_at

    def invalidate(self) -> None:
        self._token = None
        self._acquired_at = 0.0

    async def ensure_token(self, credentials: SellerCredentials) -> str:
        """
        Return a fresh access token, exchanging the refresh token if needed.

        Raises:
            CredentialError: Exchange failed (fatal to the run)
        """
        age = self.token_age
        if age is not None and age <= self.refresh_after_seconds:
            return self._token

        if age is not None:
            logger.info("Refreshing access token", extra={"token_age_s": round(age)})

        self._token = await self._exchange(credentials)
        self._acquired_at = self._clock()
        self.exchanges += 1
        return self._token

    async def _exchange(self, credentials: SellerCredentials) -> str:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": credentials.refresh_token,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
        }

        try:
            with Timer("lwa_token_exchange", logger):
                if self._client is not None:
                    response = await self._client.post(self.token_url, data=form, timeout=self.timeout)
                else:
                    async with httpx.AsyncClient(timeout=self.timeout) as client:
                        response = await client.post(self.token_url, data=form)
        except httpx.HTTPError as e:
            raise CredentialError("Token request failed", details=str(e)) from e

        if response.status_code >= 400:
            logger.error(
                f"Token request failed: {response.status_code}",
                extra={"status_code": response.status_code},
            )
            raise CredentialError(
                f"Token request failed: {response.status_code}",
                details=response.text[:200],
            )

        try:
            token = response.json().get("access_token")
        except ValueError as e:
            raise CredentialError("Token response is not JSON") from e

        if not token:
            raise CredentialError("Token response has no access_token")

        logger.info("Got access token")
        return token

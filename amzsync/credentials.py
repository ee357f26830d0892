"""
Seller credential lookup.

Credentials come from the environment first (SPAPI_* variables) and fall
back to the ``api_connections`` row stored for the ``amazon`` platform.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from amzsync.config import CredentialsConfig, config
from amzsync.exceptions import CredentialError
from amzsync.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SellerCredentials:
    """Marketplace seller credentials (read-only)."""
    client_id: str
    client_secret: str
    refresh_token: str
    marketplace_id: str
    seller_id: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SellerCredentials":
        """Build from a stored connection payload (camelCase or snake_case keys)."""

        def pick(*keys: str) -> str:
            for key in keys:
                value = data.get(key)
                if value:
                    return str(value)
            return ""

        creds = cls(
            client_id=pick("clientId", "client_id"),
            client_secret=pick("clientSecret", "client_secret"),
            refresh_token=pick("refreshToken", "refresh_token"),
            marketplace_id=pick("marketplaceId", "marketplace_id") or config.credentials.marketplace_id,
            seller_id=pick("sellerId", "seller_id"),
        )
        creds.validate()
        return creds

    def validate(self) -> None:
        missing = [
            name for name in ("client_id", "client_secret", "refresh_token", "marketplace_id")
            if not getattr(self, name)
        ]
        if missing:
            raise CredentialError("Amazon credentials incomplete", details=f"missing {', '.join(missing)}")

    def __repr__(self) -> str:
        return (
            f"SellerCredentials(client_id={self.client_id!r}, marketplace_id={self.marketplace_id!r}, "
            f"seller_id={self.seller_id!r})"
        )


class CredentialProvider:
    """
    Resolves SellerCredentials for a run.

    Usage:
        provider = CredentialProvider(store)
        creds = await provider.get_credentials()
    """

    def __init__(self, store=None, env: Optional[CredentialsConfig] = None, platform: str = "amazon"):
        self.store = store
        self.env = env or config.credentials
        self.platform = platform

    async def get_credentials(self) -> SellerCredentials:
        """
        Raises:
            CredentialError: No usable credentials in env or store
        """
        if self.env.is_complete:
            return SellerCredentials(
                client_id=self.env.client_id,
                client_secret=self.env.client_secret,
                refresh_token=self.env.refresh_token,
                marketplace_id=self.env.marketplace_id,
                seller_id=self.env.seller_id,
            )

        if self.store is not None:
            connection = await self.store.get_api_connection(self.platform)
            if connection and connection.get("is_connected") and connection.get("credentials"):
                try:
                    payload = json.loads(connection["credentials"])
                except (TypeError, ValueError) as e:
                    raise CredentialError("Stored Amazon credentials are not valid JSON") from e
                logger.debug("Using stored Amazon credentials")
                return SellerCredentials.from_dict(payload)

        raise CredentialError("No Amazon credentials")

"""
Async HTTP client for the Selling Partner Reports API.

Thin wrapper exposing the three provider operations the historical sync
needs (create report, get report status, get report document) plus the raw
document download with optional GZIP decompression.

Errors:
- 429 -> RateLimitedError (callers decide how to back off)
- other 4xx/5xx -> SPAPIError
- timeouts / transport failures -> SPAPIConnectionError
"""
import gzip
import zlib
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from amzsync.config import config
from amzsync.exceptions import (
    RateLimitedError,
    ReportFailureError,
    SPAPIConnectionError,
    SPAPIError,
)
from amzsync.observability import get_logger, get_correlation_id, Timer

logger = get_logger(__name__)

# Report processing statuses
STATUS_DONE = "DONE"
STATUS_CANCELLED = "CANCELLED"
STATUS_FATAL = "FATAL"
TERMINAL_FAILURES = {STATUS_CANCELLED, STATUS_FATAL}


def _isoformat(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class ReportClient:
    """
    Reports API client.

    Usage:
        async with ReportClient() as client:
            report_id = await client.create_report(token, start, end, ["ATVPDKIKX0DER"])

        # Or with manual lifecycle:
        client = ReportClient()
        await client.connect()
        try:
            status = await client.get_report(token, report_id)
        finally:
            await client.close()
    """

    def __init__(
        self,
        endpoint: str = None,
        timeout: float = None,
        download_timeout: float = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            endpoint: Regional SP-API endpoint (defaults to SPAPI_ENDPOINT)
            timeout: API call timeout in seconds
            download_timeout: Document download timeout in seconds
            client: Pre-built httpx client (tests pass one with a MockTransport)
        """
        self.endpoint = (endpoint or config.spapi.endpoint).rstrip("/")
        self.reports_path = config.spapi.reports_path
        self.report_type = config.spapi.report_type
        self.timeout = timeout or config.spapi.api_timeout
        self.download_timeout = download_timeout or config.spapi.download_timeout
        self._client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=2, max_connections=4),
            )
            self._owns_client = True

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ReportClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        access_token: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make one SP-API call. No retries: the caller owns rate-limit policy.

        Raises:
            RateLimitedError: HTTP 429
            SPAPIError: Any other non-success status
            SPAPIConnectionError: Timeout or transport failure
        """
        if not self._client:
            await self.connect()

        url = f"{self.endpoint}{path}"
        headers = {
            "Content-Type": "application/json",
            "x-amz-access-token": access_token,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id

        try:
            with Timer(f"spapi_{method.lower()}", logger):
                response = await self._client.request(
                    method, url, json=json, headers=headers, timeout=self.timeout
                )
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: {method} {path}", extra={"timeout": self.timeout})
            raise SPAPIConnectionError(f"Request timeout after {self.timeout}s", retry_after=5) from e
        except httpx.RequestError as e:
            logger.error(f"Request failed: {method} {path} - {e}")
            raise SPAPIConnectionError(str(e)) from e

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                f"Rate limited on {method} {path}",
                details=response.text[:200],
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.warning(
                f"API error {response.status_code}: {error_text}",
                extra={"path": path, "status_code": response.status_code},
            )
            raise SPAPIError(
                f"API returned {response.status_code}",
                details=error_text,
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    # ═══════════════════════════════════════════════════════════════════════════
    # REPORT OPERATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_report(
        self,
        access_token: str,
        data_start: datetime,
        data_end: datetime,
        marketplace_ids: List[str],
        report_type: str = None,
    ) -> str:
        """
        Request a report for the given data window.

        Returns:
            Report id

        Raises:
            ReportFailureError: Success status but no reportId in the body
        """
        body = {
            "reportType": report_type or self.report_type,
            "marketplaceIds": marketplace_ids,
            "dataStartTime": _isoformat(data_start),
            "dataEndTime": _isoformat(data_end),
        }
        data = await self._request(access_token, "POST", f"{self.reports_path}/reports", json=body)

        report_id = data.get("reportId")
        if not report_id:
            raise ReportFailureError("Create report returned no reportId", details=str(data)[:200])
        return str(report_id)

    async def get_report(self, access_token: str, report_id: str) -> Dict[str, Any]:
        """Get report status (``processingStatus``, ``reportDocumentId``)."""
        return await self._request(access_token, "GET", f"{self.reports_path}/reports/{report_id}")

    async def get_report_document(self, access_token: str, document_id: str) -> Dict[str, Any]:
        """Get document metadata (``url``, optional ``compressionAlgorithm``)."""
        return await self._request(access_token, "GET", f"{self.reports_path}/documents/{document_id}")

    async def download_document(self, url: str, compression: Optional[str] = None) -> str:
        """
        Fetch a report document and return its text.

        Raises:
            SPAPIConnectionError: Timeout, transport failure or bad GZIP payload
            ReportFailureError: Non-success download status
        """
        if not self._client:
            await self.connect()

        try:
            with Timer("spapi_download", logger, warn_ms=30000):
                response = await self._client.get(url, timeout=self.download_timeout)
        except httpx.TimeoutException as e:
            raise SPAPIConnectionError(f"Download timeout after {self.download_timeout}s") from e
        except httpx.RequestError as e:
            raise SPAPIConnectionError("Download failed", details=str(e)) from e

        if response.status_code >= 400:
            raise ReportFailureError(f"Download failed: {response.status_code}")

        if (compression or "").upper() == "GZIP":
            try:
                return gzip.decompress(response.content).decode("utf-8")
            except (OSError, EOFError, zlib.error) as e:
                raise SPAPIConnectionError("Could not decompress report document", details=str(e)) from e

        return response.content.decode("utf-8", errors="replace")

    async def fetch_document(self, access_token: str, document_id: str) -> str:
        """Resolve a document id to its URL and download it."""
        meta = await self.get_report_document(access_token, document_id)
        url = meta.get("url")
        if not url:
            raise ReportFailureError("Failed to get document URL", details=str(meta)[:200])
        return await self.download_document(url, meta.get("compressionAlgorithm"))

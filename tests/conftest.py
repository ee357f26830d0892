"""
Pytest configuration and shared fixtures.
"""
import gzip
import json
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from amzsync.config import SyncConfig
from amzsync.credentials import SellerCredentials
from amzsync.events import EventBus
from amzsync.reports import ReportClient
from amzsync.store import DuckDBStore
from amzsync.sync_service import HistoricalSyncService
from amzsync.tokens import TokenManager

SPAPI_ENDPOINT = "https://sellingpartnerapi-na.amazon.com"
TOKEN_URL = "https://api.amazon.com/auth/o2/token"
DOWNLOAD_HOST = "tortuga-prod-na.s3.amazonaws.com"

REPORT_HEADER = "\t".join([
    "amazon-order-id",
    "purchase-date",
    "shipment-date",
    "sku",
    "quantity-shipped",
    "item-price",
    "shipping-price",
    "currency",
    "ship-city",
    "ship-state",
    "ship-postal-code",
    "ship-country",
    "sales-channel",
])


def report_line(order_id: str, sku: str, quantity: int = 1, price: str = "19.99", shipping: str = "0.00") -> str:
    return "\t".join([
        order_id,
        "2025-06-01T10:00:00+00:00",
        "2025-06-02T12:00:00+00:00",
        sku,
        str(quantity),
        price,
        shipping,
        "USD",
        "Austin",
        "TX",
        "78701",
        "US",
        "Amazon.com",
    ])


@pytest.fixture
def sample_report() -> str:
    """
    Three orders, one row without an order id, one unknown SKU.

    Expected merge: 3 orders, 3 items, 2 skipped.
    """
    return "\n".join([
        REPORT_HEADER,
        report_line("111-0000001-0000001", "SKU-A", quantity=2, price="39.98", shipping="4.99"),
        report_line("111-0000001-0000001", "SKU-B", quantity=1, price="15.00"),
        report_line("111-0000002-0000002", "SKU-A", quantity=1, price="19.99"),
        report_line("", "SKU-A"),
        report_line("111-0000003-0000003", "SKU-UNKNOWN"),
    ]) + "\n"


@pytest.fixture
def fast_sync_config() -> SyncConfig:
    """Sync timings shrunk to milliseconds; backoff keeps its 2/4/6/8/10 shape."""
    return SyncConfig(
        batch_order="newest_first",
        inter_batch_delay_seconds=0.05,
        error_delay_seconds=0.05,
        empty_batch_delay_seconds=0.01,
        poll_interval_seconds=0.01,
        max_report_wait_seconds=0.05,
        status_rate_limit_wait_seconds=0.01,
        tick_seconds=0.005,
        max_create_attempts=5,
        seconds_per_minute=0.01,
        token_refresh_seconds=1800,
        merge_chunk_size=50,
        stream_interval_seconds=0.01,
        stream_max_lifetime_seconds=5,
        stream_queue_size=16,
    )


@pytest.fixture
def seller_credentials() -> SellerCredentials:
    return SellerCredentials(
        client_id="amzn1.application-oa2-client.test",
        client_secret="secret",
        refresh_token="Atzr|refresh",
        marketplace_id="ATVPDKIKX0DER",
        seller_id="A1SELLER",
    )


@pytest.fixture
def credential_provider(seller_credentials):
    """Credential provider stub returning fixed credentials."""
    provider = MagicMock()
    provider.get_credentials = AsyncMock(return_value=seller_credentials)
    return provider


@pytest.fixture
async def store(tmp_path):
    """DuckDB store on a temp file, with the SKUs used by sample_report in the catalog."""
    db = DuckDBStore(tmp_path / "test.duckdb")
    await db.connect()
    await db.upsert_products([
        {"sku": "SKU-A", "asin": "B000000001", "name": "Product A"},
        {"sku": "SKU-B", "asin": "B000000002", "name": "Product B"},
    ])
    yield db
    await db.close()


class FakeSellingPartner:
    """
    In-memory Selling Partner API behind an httpx.MockTransport.

    Args:
        documents: Report text per created report (last one repeats)
        create_responses: HTTP statuses for successive create calls (then 202)
        statuses: processingStatus values for successive status checks;
            the last one repeats. ``429`` answers the check with HTTP 429.
        gzip_documents: Serve documents GZIP-compressed
        token_status: HTTP status for the token endpoint
    """

    def __init__(
        self,
        documents: Optional[List[str]] = None,
        create_responses: Optional[List[int]] = None,
        statuses: Optional[List[object]] = None,
        gzip_documents: bool = False,
        token_status: int = 200,
    ):
        self.documents = documents if documents is not None else [""]
        self.create_responses = list(create_responses or [])
        self.statuses = list(statuses or ["DONE"])
        self.gzip_documents = gzip_documents
        self.token_status = token_status

        self.token_requests = 0
        self.create_bodies: List[Dict] = []
        self.status_checks = 0
        self.downloads = 0
        self.reports_created = 0

    def _next_status(self):
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def _document(self, report_number: int) -> str:
        index = min(report_number - 1, len(self.documents) - 1)
        return self.documents[index]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if str(request.url) == TOKEN_URL:
            self.token_requests += 1
            if self.token_status >= 400:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": f"Atza|token-{self.token_requests}", "expires_in": 3600})

        if request.url.host == DOWNLOAD_HOST:
            self.downloads += 1
            report_number = int(path.rsplit("-", 1)[-1])
            body = self._document(report_number).encode("utf-8")
            if self.gzip_documents:
                body = gzip.compress(body)
            return httpx.Response(200, content=body)

        if request.method == "POST" and path == "/reports/2021-06-30/reports":
            self.create_bodies.append(json.loads(request.content))
            status = self.create_responses.pop(0) if self.create_responses else 202
            if status == 429:
                return httpx.Response(429, json={"errors": [{"code": "QuotaExceeded"}]})
            if status >= 400:
                return httpx.Response(status, json={"errors": [{"code": "InvalidInput"}]})
            self.reports_created += 1
            return httpx.Response(202, json={"reportId": str(self.reports_created)})

        if request.method == "GET" and path.startswith("/reports/2021-06-30/reports/"):
            self.status_checks += 1
            report_id = path.rsplit("/", 1)[-1]
            status = self._next_status()
            if status == 429:
                return httpx.Response(429, json={"errors": [{"code": "QuotaExceeded"}]})
            body = {"reportId": report_id, "processingStatus": status}
            if status == "DONE":
                body["reportDocumentId"] = f"DOC-{report_id}"
            return httpx.Response(200, json=body)

        if request.method == "GET" and path.startswith("/reports/2021-06-30/documents/"):
            document_id = path.rsplit("/", 1)[-1]
            body = {"reportDocumentId": document_id, "url": f"https://{DOWNLOAD_HOST}/doc-{document_id[4:]}"}
            if self.gzip_documents:
                body["compressionAlgorithm"] = "GZIP"
            return httpx.Response(200, json=body)

        return httpx.Response(404, json={"errors": [{"code": "NotFound", "path": path}]})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def make_spapi():
    """Build a FakeSellingPartner: ``make_spapi(documents=[...], statuses=[...])``."""
    return FakeSellingPartner


@pytest.fixture
async def make_service(store, credential_provider, fast_sync_config):
    """Factory building a HistoricalSyncService wired to a FakeSellingPartner."""
    created = []

    def _make(api: FakeSellingPartner, sync_config: SyncConfig = None, event_bus: EventBus = None) -> HistoricalSyncService:
        http = api.client()
        service = HistoricalSyncService(
            store,
            client=ReportClient(endpoint=SPAPI_ENDPOINT, client=http),
            tokens=TokenManager(token_url=TOKEN_URL, client=http),
            credentials=credential_provider,
            sync_config=sync_config or fast_sync_config,
            events=event_bus or EventBus(),
        )
        created.append((service, http))
        return service

    yield _make

    for service, http in created:
        await service.shutdown()
        await http.aclose()

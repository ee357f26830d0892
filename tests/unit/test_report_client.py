"""
Tests for amzsync.reports module (ReportClient).
"""
from datetime import datetime, timezone

import httpx
import pytest

from amzsync.exceptions import RateLimitedError, ReportFailureError, SPAPIConnectionError, SPAPIError
from amzsync.reports import ReportClient

ENDPOINT = "https://sellingpartnerapi-na.amazon.com"
START = datetime(2025, 1, 1, tzinfo=timezone.utc)
END = datetime(2025, 4, 1, tzinfo=timezone.utc)


class TestReportClient:
    """Tests for the Reports API wrapper."""

    @pytest.mark.asyncio
    async def test_create_report_body(self, make_spapi):
        api = make_spapi()
        async with api.client() as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            report_id = await client.create_report("Atza|t", START, END, ["ATVPDKIKX0DER"])

        assert report_id == "1"
        body = api.create_bodies[0]
        assert body["reportType"] == "GET_AMAZON_FULFILLED_SHIPMENTS_DATA_GENERAL"
        assert body["marketplaceIds"] == ["ATVPDKIKX0DER"]
        assert body["dataStartTime"] == "2025-01-01T00:00:00Z"
        assert body["dataEndTime"] == "2025-04-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_access_token_header(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"processingStatus": "IN_PROGRESS"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            report = await client.get_report("Atza|t", "42")

        assert report["processingStatus"] == "IN_PROGRESS"
        assert seen[0].headers["x-amz-access-token"] == "Atza|t"
        assert seen[0].url.path == "/reports/2021-06-30/reports/42"

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self, make_spapi):
        api = make_spapi(create_responses=[429])
        async with api.client() as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(RateLimitedError):
                await client.create_report("Atza|t", START, END, ["ATVPDKIKX0DER"])

    @pytest.mark.asyncio
    async def test_other_errors_are_api_errors(self, make_spapi):
        api = make_spapi(create_responses=[400])
        async with api.client() as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(SPAPIError) as exc_info:
                await client.create_report("Atza|t", START, END, ["ATVPDKIKX0DER"])

        assert exc_info.value.status_code == 400
        assert not isinstance(exc_info.value, RateLimitedError)

    @pytest.mark.asyncio
    async def test_create_without_report_id(self):
        def handler(request):
            return httpx.Response(202, json={})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(ReportFailureError):
                await client.create_report("Atza|t", START, END, ["ATVPDKIKX0DER"])

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection reset", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(SPAPIConnectionError):
                await client.get_report("Atza|t", "1")

    @pytest.mark.asyncio
    async def test_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(SPAPIConnectionError) as exc_info:
                await client.get_report("Atza|t", "1")

        assert exc_info.value.retry_after == 5


class TestDocumentDownload:
    """Tests for document metadata and download."""

    @pytest.mark.asyncio
    async def test_plain_document(self, make_spapi, sample_report):
        api = make_spapi(documents=[sample_report])
        async with api.client() as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            content = await client.fetch_document("Atza|t", "DOC-1")

        assert content == sample_report

    @pytest.mark.asyncio
    async def test_gzip_document(self, make_spapi, sample_report):
        """GZIP documents are decompressed transparently."""
        api = make_spapi(documents=[sample_report], gzip_documents=True)
        async with api.client() as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            content = await client.fetch_document("Atza|t", "DOC-1")

        assert content == sample_report
        assert api.downloads == 1

    @pytest.mark.asyncio
    async def test_corrupt_gzip(self):
        def handler(request):
            return httpx.Response(200, content=b"not gzip at all")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(SPAPIConnectionError):
                await client.download_document("https://example.com/doc", "GZIP")

    @pytest.mark.asyncio
    async def test_document_without_url(self):
        def handler(request):
            return httpx.Response(200, json={"reportDocumentId": "DOC-1"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(ReportFailureError):
                await client.fetch_document("Atza|t", "DOC-1")

    @pytest.mark.asyncio
    async def test_download_error_status(self):
        def handler(request):
            return httpx.Response(403, content=b"expired")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = ReportClient(endpoint=ENDPOINT, client=http)
            with pytest.raises(ReportFailureError):
                await client.download_document("https://example.com/doc")

    @pytest.mark.asyncio
    async def test_owned_client_lifecycle(self):
        """A client created by ReportClient is closed by it."""
        client = ReportClient(endpoint=ENDPOINT)
        await client.connect()
        inner = client._client
        await client.close()
        assert inner.is_closed
        assert client._client is None

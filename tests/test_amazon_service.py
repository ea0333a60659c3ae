import gzip
import json
from datetime import datetime

import httpx
import pytest

from sellerledger.exceptions import TransientUpstreamError, UpstreamError
from sellerledger.services.amazon_service import AmazonService

TOKEN_URL = "https://auth.example.com/o2/token"


class Upstream:
    """httpx.MockTransport handler that answers the token endpoint and replays queued responses."""

    def __init__(self):
        self.responses = {}
        self.requests = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "Atza|token", "expires_in": 3600})
        self.requests.append(request)
        queued = self.responses.get(request.url.path)
        if not queued:
            return httpx.Response(404, json={"errors": [{"code": "NotFound"}]})
        return queued.pop(0) if len(queued) > 1 else queued[0]


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def client(upstream):
    return AmazonService(refresh_token="refresh", client_id="id", client_secret="secret",
                         region="eu", token_url=TOKEN_URL, transport=httpx.MockTransport(upstream))


async def test_requests_carry_access_token_and_cursor(client, upstream):
    upstream.responses["/orders/v0/orders"] = [httpx.Response(200, json={"payload": {
        "Orders": [{"AmazonOrderId": "ORD-1"}], "NextToken": "abc"}})]

    first = await client.list_orders("A1F83G8C2ARO7P", last_updated_after=datetime(2024, 3, 1),
                                      last_updated_before=datetime(2024, 3, 8))
    await client.list_orders("A1F83G8C2ARO7P", next_token="abc")
    await client.close_client()

    assert first["NextToken"] == "abc"
    assert upstream.token_requests == 1
    initial, follow_up = upstream.requests
    assert initial.headers["x-amz-access-token"] == "Atza|token"
    assert initial.url.host == "sellingpartnerapi-eu.amazon.com"
    assert initial.url.params["LastUpdatedAfter"] == "2024-03-01T00:00:00Z"
    assert "CreatedAfter" not in initial.url.params
    assert follow_up.url.params["NextToken"] == "abc"
    assert "LastUpdatedAfter" not in follow_up.url.params


async def test_rate_limit_is_transient_with_retry_after(client, upstream):
    upstream.responses["/finances/2024-06-19/transactions"] = [
        httpx.Response(429, headers={"Retry-After": "3"}, json={"errors": []})]

    with pytest.raises(TransientUpstreamError) as excinfo:
        await client.list_transactions(datetime(2024, 3, 1), datetime(2024, 3, 8))

    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == 3.0


async def test_server_error_is_transient_and_client_error_is_not(client, upstream):
    upstream.responses["/reports/2021-06-30/reports/R-500"] = [httpx.Response(503)]
    upstream.responses["/reports/2021-06-30/reports/R-403"] = [httpx.Response(403, json={"errors": []})]

    with pytest.raises(TransientUpstreamError):
        await client.get_report("R-500")
    with pytest.raises(UpstreamError) as excinfo:
        await client.get_report("R-403")
    assert not isinstance(excinfo.value, TransientUpstreamError)
    assert excinfo.value.status_code == 403


async def test_create_report_sends_marketplaces_and_window(client, upstream):
    upstream.responses["/reports/2021-06-30/reports"] = [httpx.Response(202, json={"reportId": "R-1"})]

    report_id = await client.create_report(["A1F83G8C2ARO7P", "A1PA6795UKMFR9"],
                                           datetime(2024, 2, 1), datetime(2024, 3, 1))

    assert report_id == "R-1"
    body = json.loads(upstream.requests[0].content)
    assert body["marketplaceIds"] == ["A1F83G8C2ARO7P", "A1PA6795UKMFR9"]
    assert body["dataStartTime"] == "2024-02-01T00:00:00Z"


async def test_download_gzip_report_document(client, upstream):
    text = "amazon-order-id\tsku\nORD-1\tSKU-1\n"
    upstream.responses["/documents/DOC-1"] = [httpx.Response(200, content=gzip.compress(text.encode("utf-8")))]

    content = await client.download_report_document({
        "reportDocumentId": "DOC-1",
        "url": "https://reports.example.com/documents/DOC-1",
        "compressionAlgorithm": "GZIP",
    })

    assert content == text
    assert "x-amz-access-token" not in upstream.requests[0].headers


async def test_inventory_cursor_comes_from_pagination(client, upstream):
    upstream.responses["/fba/inventory/v1/summaries"] = [httpx.Response(200, json={
        "payload": {"inventorySummaries": [{"sellerSku": "SKU-1"}]},
        "pagination": {"nextToken": "inv-2"},
    })]

    page = await client.get_inventory_summaries("A1F83G8C2ARO7P")

    assert page == {"inventorySummaries": [{"sellerSku": "SKU-1"}], "nextToken": "inv-2"}


def test_refresh_token_is_required():
    with pytest.raises(ValueError):
        AmazonService(refresh_token="  ")

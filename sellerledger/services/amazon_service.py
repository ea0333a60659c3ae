import gzip
from asyncio import Lock
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import httpx
from sellerledger.config import settings
from sellerledger.exceptions import UpstreamError
from sellerledger.services.base_http_service import BaseHttpService
from sellerledger.utils.dates import isoformat_z, utcnow
from sellerledger.utils.logger import get_loggers
logger = get_loggers("AmazonService")

REGION_ENDPOINTS = {
    'na': "https://sellingpartnerapi-na.amazon.com",
    'eu': "https://sellingpartnerapi-eu.amazon.com",
    'fe': "https://sellingpartnerapi-fe.amazon.com",
}
ORDERS_REPORT_TYPE = "GET_FLAT_FILE_ALL_ORDERS_DATA_BY_ORDER_DATE_GENERAL"


class AmazonService(BaseHttpService):
    """Read-only Selling Partner API client.

    Each method performs exactly one upstream call and returns the decoded
    payload; pagination loops and retries belong to the caller.
    """

    def __init__(self, refresh_token: str, client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 region: str = 'eu', token_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__("amazon", default_timeout=30.0, transport=transport)
        if not refresh_token or not refresh_token.strip():
            raise ValueError("refresh_token cannot be empty")
        region = (region or 'eu').lower()
        if region not in REGION_ENDPOINTS:
            raise ValueError(f"Unknown SP-API region {region}")
        self.refresh_token = refresh_token.strip()
        self.client_id = client_id if client_id is not None else settings.AMAZON_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.AMAZON_CLIENT_SECRET
        self.region = region
        self.base_url = REGION_ENDPOINTS[region]
        self.token_url = token_url or settings.AMAZON_LWA_TOKEN_URL
        self._access_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None
        self._token_lock = Lock()

    @classmethod
    def from_account(cls, account, transport: Optional[httpx.AsyncBaseTransport] = None) -> 'AmazonService':
        return cls(
            refresh_token=account.refresh_token or settings.AMAZON_REFRESH_TOKEN,
            region=account.region or settings.AMAZON_REGION,
            transport=transport,
        )

    def _token_valid(self) -> bool:
        return bool(self._access_token and self._token_expiry and utcnow() < self._token_expiry)

    async def _get_access_token(self) -> str:
        if self._token_valid():
            return self._access_token
        async with self._token_lock:
            if self._token_valid():
                return self._access_token
            data = {
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
            response = await self._make_request("POST", self.token_url, data=data)
            token_data = response.json()
            self._access_token = token_data["access_token"]
            self._token_expiry = utcnow() + timedelta(seconds=int(token_data.get("expires_in", 3600)) - 60)
            logger.info("Refreshed LWA access token")
            return self._access_token

    async def _request(self, method: str, endpoint: str, params: Optional[Dict[str, Any]] = None,
                       json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        token = await self._get_access_token()
        headers = {
            "x-amz-access-token": token,
            "Accept": "application/json",
        }
        if params:
            params = {key: value for key, value in params.items() if value is not None}
        response = await self._make_request(
            method, f"{self.base_url}{endpoint}", headers=headers, params=params, json=json)
        return response.json()

    async def list_orders(self, marketplace_id: str, created_after: Optional[datetime] = None,
                          created_before: Optional[datetime] = None, last_updated_after: Optional[datetime] = None,
                          last_updated_before: Optional[datetime] = None, next_token: Optional[str] = None) -> Dict[str, Any]:
        if next_token:
            params = {"MarketplaceIds": marketplace_id, "NextToken": next_token}
        else:
            params = {
                "MarketplaceIds": marketplace_id,
                "CreatedAfter": isoformat_z(created_after) if created_after else None,
                "CreatedBefore": isoformat_z(created_before) if created_before else None,
                "LastUpdatedAfter": isoformat_z(last_updated_after) if last_updated_after else None,
                "LastUpdatedBefore": isoformat_z(last_updated_before) if last_updated_before else None,
                "MaxResultsPerPage": 100,
            }
        data = await self._request("GET", "/orders/v0/orders", params)
        return data.get('payload', {})

    async def list_order_items(self, amazon_order_id: str, next_token: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request(
            "GET", f"/orders/v0/orders/{amazon_order_id}/orderItems", {"NextToken": next_token})
        return data.get('payload', {})

    async def list_financial_events(self, posted_after: datetime, posted_before: datetime,
                                    next_token: Optional[str] = None) -> Dict[str, Any]:
        if next_token:
            params = {"NextToken": next_token}
        else:
            params = {
                "PostedAfter": isoformat_z(posted_after),
                "PostedBefore": isoformat_z(posted_before),
                "MaxResultsPerPage": 100,
            }
        data = await self._request("GET", "/finances/v0/financialEvents", params)
        return data.get('payload', {})

    async def list_transactions(self, posted_after: datetime, posted_before: datetime,
                                marketplace_id: Optional[str] = None, next_token: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "postedAfter": isoformat_z(posted_after),
            "postedBefore": isoformat_z(posted_before),
            "marketplaceId": marketplace_id,
            "nextToken": next_token,
        }
        data = await self._request("GET", "/finances/2024-06-19/transactions", params)
        return data.get('payload', data)

    async def create_report(self, marketplace_ids: List[str], data_start: datetime, data_end: datetime,
                            report_type: str = ORDERS_REPORT_TYPE) -> str:
        body = {
            "reportType": report_type,
            "marketplaceIds": list(marketplace_ids),
            "dataStartTime": isoformat_z(data_start),
            "dataEndTime": isoformat_z(data_end),
        }
        data = await self._request("POST", "/reports/2021-06-30/reports", json=body)
        report_id = data.get('reportId')
        if not report_id:
            raise UpstreamError(f"createReport returned no reportId: {data}")
        logger.info(f"Requested {report_type} report {report_id}")
        return report_id

    async def get_report(self, report_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/reports/2021-06-30/reports/{report_id}")

    async def get_report_document(self, document_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/reports/2021-06-30/documents/{document_id}")

    async def download_report_document(self, document: Dict[str, Any]) -> str:
        url = document.get('url')
        if not url:
            raise UpstreamError(f"Report document {document.get('reportDocumentId')} has no url")
        # presigned url, the access token must not be sent along
        response = await self._make_request("GET", url)
        content = response.content
        if (document.get('compressionAlgorithm') or '').upper() == 'GZIP':
            content = gzip.decompress(content)
        try:
            return content.decode('utf-8')
        except UnicodeDecodeError:
            return content.decode('cp1252', errors='replace')

    async def get_inventory_summaries(self, marketplace_id: str, next_token: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "details": "true",
            "granularityType": "Marketplace",
            "granularityId": marketplace_id,
            "marketplaceIds": marketplace_id,
            "nextToken": next_token,
        }
        data = await self._request("GET", "/fba/inventory/v1/summaries", params)
        payload = data.get('payload', {})
        return {
            'inventorySummaries': payload.get('inventorySummaries', []),
            'nextToken': (data.get('pagination') or {}).get('nextToken'),
        }

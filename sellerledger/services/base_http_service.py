import httpx
from typing import Optional
from sellerledger.exceptions import TransientUpstreamError, UpstreamError
from sellerledger.utils.retry_decorators import http_retry
from sellerledger.utils.logger import get_loggers
logger = get_loggers("BaseHttpService")


class BaseHttpService:
    def __init__(self, service_name: str, default_timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.service_name = service_name
        self.default_timeout = default_timeout
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport

    async def init_client(self, **client_kwargs):
        if not self.client:
            kwargs = {
                "timeout": self.default_timeout,
                **client_kwargs
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self.client = httpx.AsyncClient(**kwargs)
            logger.debug(f"Initialized HTTP client for {self.service_name}")

    async def close_client(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.debug(f"Closed HTTP client for {self.service_name}")

    @http_retry(max_attempts=3, min_wait=4, max_wait=10)
    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        await self.init_client()
        return await self.client.request(method, url, **kwargs)

    async def _make_request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = kwargs.pop("headers", None) or {}
        logger.debug(
            f"Making {method} request to {url} for {self.service_name}")
        try:
            response = await self._send(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientUpstreamError(
                f"{self.service_name} transport error: {e}") from e
        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get('Retry-After'))
            logger.warning(
                f"Rate limited by {self.service_name}. Retry after {retry_after}s")
            raise TransientUpstreamError(
                f"{self.service_name} rate limited", status_code=429, retry_after=retry_after)
        if response.status_code >= 500:
            logger.warning(
                f"Server error {response.status_code} from {self.service_name}")
            raise TransientUpstreamError(
                f"{self.service_name} server error {response.status_code}", status_code=response.status_code)
        if response.status_code >= 400:
            logger.error(
                f"HTTP error for {self.service_name}: {response.status_code} - {response.text[:300]}")
            raise UpstreamError(
                f"{self.service_name} returned {response.status_code} for {method} {url}", status_code=response.status_code)
        logger.debug(f"Successfully completed {method} request to {url}")
        return response

    async def __aenter__(self):
        await self.init_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_client()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None

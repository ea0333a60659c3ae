import asyncio
from typing import Awaitable, Callable, Optional
from tenacity import AsyncRetrying, RetryCallState, retry, stop_after_attempt, wait_exponential, retry_if_exception_type
import httpx
from sellerledger.exceptions import TransientUpstreamError
from sellerledger.utils.logger import get_loggers
logger = get_loggers("Retry")


def http_retry(max_attempts:int=3,min_wait:int=4,max_wait:int=10):
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1,min=min_wait,max=max_wait),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )


def _wait_retry_after(fallback):
    def _wait(retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, 'retry_after', None)
        if retry_after:
            return float(retry_after)
        return fallback(retry_state)
    return _wait


def _log_retry(retry_state: RetryCallState):
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Transient upstream error on attempt {retry_state.attempt_number}, retrying: {exc}")


def page_retry(max_attempts: int = 5, min_wait: int = 2, max_wait: int = 60,
               sleep: Optional[Callable[[float], Awaitable[None]]] = None) -> AsyncRetrying:
    """Retry policy for a single page fetch.

    Only TransientUpstreamError is retried, so a throttled page is fetched
    again with the same cursor instead of restarting the whole chunk. A
    Retry-After hint from the upstream wins over the exponential wait.
    """
    return AsyncRetrying(
        sleep=sleep or asyncio.sleep,
        stop=stop_after_attempt(max_attempts),
        wait=_wait_retry_after(wait_exponential(
            multiplier=1, min=min_wait, max=max_wait)),
        retry=retry_if_exception_type(TransientUpstreamError),
        before_sleep=_log_retry,
        reraise=True
    )

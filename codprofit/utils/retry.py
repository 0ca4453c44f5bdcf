"""
Retry utilities with exponential backoff for courier and storefront calls.
"""
import random
from typing import Tuple, Type

import aiohttp

from codprofit.exceptions import ConnectorAuthError, ConnectorNotConfigured


# Network errors worth another attempt
DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add up to 25% randomness so parallel fetches don't retry in lockstep

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = (429, 500, 502, 503, 504)
) -> bool:
    """Transient network/API failures are retried; bad credentials never are"""
    if isinstance(error, (ConnectorAuthError, ConnectorNotConfigured)):
        return False

    if isinstance(error, retryable_exceptions):
        return True

    if isinstance(error, aiohttp.ClientResponseError):
        return error.status in retryable_status_codes

    error_str = str(error).lower()
    if "rate limit" in error_str or "too many requests" in error_str:
        return True
    if "timeout" in error_str or "timed out" in error_str:
        return True
    return any(f"http {code}" in error_str for code in retryable_status_codes)

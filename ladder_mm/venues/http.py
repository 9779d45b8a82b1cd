"""
Shared HTTP plumbing for REST venue adapters.

requests is synchronous; calls run in a worker thread via asyncio.to_thread
so the event loop keeps serving other tasks while a request is in flight.
"""

import asyncio
import functools
import logging
from typing import Any, Optional

import requests

from .base import VenueConnectionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


class RateLimitError(VenueConnectionError):
    """Raised when a venue answers HTTP 429."""

    pass


def with_retry(max_retries: int = 2, base_delay: float = 0.5):
    """
    Decorator for retry logic with exponential backoff.

    Only connection-level failures are retried; quote and order errors
    propagate immediately.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Initial delay in seconds (doubles each retry).
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception: Optional[Exception] = None
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except VenueConnectionError as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            f"{func.__name__} failed: {e}, retrying in {delay}s "
                            f"(attempt {attempt + 1}/{max_retries})"
                        )
                        await asyncio.sleep(delay)
            raise last_exception

        return wrapper

    return decorator


async def request_json(
    session: requests.Session,
    method: str,
    url: str,
    params: Optional[dict[str, Any]] = None,
    json_body: Optional[dict[str, Any]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    """
    Perform one HTTP request off the event loop and decode the JSON body.

    Raises:
        RateLimitError: On HTTP 429.
        VenueConnectionError: On transport errors, non-2xx answers or bad JSON.
    """

    def _do() -> Any:
        response = session.request(method, url, params=params, json=json_body, timeout=timeout)
        if response.status_code == 429:
            raise RateLimitError(f"Rate limited by {url}")
        response.raise_for_status()
        return response.json()

    try:
        return await asyncio.to_thread(_do)
    except requests.RequestException as e:
        raise VenueConnectionError(f"{method} {url} failed: {e}") from e

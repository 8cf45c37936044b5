"""
HTTP client wrapper for market data providers.

All outbound HTTP requests go through http_get() so that:
- URLs are validated against the egress allowlist
- every call has a timeout
- rate limits (429) and transient 5xx/connection errors get bounded retries with backoff
"""
import logging
import random
import time
from typing import Optional, Dict, Any

import requests

from perpsim.core.config import settings
from perpsim.utils.egress_guard import validate_outbound_url, log_outbound_request

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 8.0
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(max_delay, base_delay * (2 ** attempt) + random.uniform(0, 0.2 * base_delay))


def http_get(
    url: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: Optional[float] = None,
    headers: Optional[Dict[str, str]] = None,
    calling_module: str = "unknown",
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> requests.Response:
    """
    Synchronous HTTP GET with egress validation, timeout and bounded retries.

    Returns the last response received (callers check status_code / raise_for_status).

    Raises:
        EgressGuardError: If URL is not allowlisted
        requests.RequestException: If every attempt failed at the connection level
    """
    validated_url = validate_outbound_url(url, calling_module=calling_module)
    timeout = timeout if timeout is not None else settings.MARKET_DATA_TIMEOUT

    attempt = 0
    while True:
        started = time.perf_counter()
        try:
            response = requests.get(
                validated_url,
                params=params,
                timeout=timeout,
                headers=headers or {},
                allow_redirects=False,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            if attempt >= max_retries:
                logger.warning(f"[HTTP_CLIENT] GET {validated_url} failed after {attempt + 1} attempts ({calling_module}): {e}")
                raise
            delay = _backoff_delay(attempt, base_delay, DEFAULT_MAX_DELAY)
            logger.info(f"[HTTP_CLIENT] GET {validated_url} connection error, retrying in {delay:.2f}s: {e}")
            time.sleep(delay)
            attempt += 1
            continue

        elapsed_ms = (time.perf_counter() - started) * 1000
        log_outbound_request(
            validated_url,
            method="GET",
            status_code=response.status_code,
            calling_module=calling_module,
            elapsed_ms=round(elapsed_ms, 1),
        )

        if response.status_code in RETRYABLE_STATUS_CODES and attempt < max_retries:
            delay = _backoff_delay(attempt, base_delay, DEFAULT_MAX_DELAY)
            logger.info(
                f"[HTTP_CLIENT] GET {validated_url} returned {response.status_code}, "
                f"retry {attempt + 1}/{max_retries} in {delay:.2f}s"
            )
            response.close()
            time.sleep(delay)
            attempt += 1
            continue

        return response

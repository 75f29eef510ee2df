from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from profilepool.errors import FetchError, ProviderHTTPError, ProviderResponseError, RateLimitedError
from profilepool.rate_limit import RateBudget

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_MAX_DELAY_S = 10.0

USER_AGENT = "profilepool/1.0"

# Only transport failures are retried; HTTP status handling is left to callers
RETRYABLE_ERRORS = (requests.exceptions.Timeout, requests.exceptions.ConnectionError)


def build_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    session = requests.Session()
    session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
    if headers:
        session.headers.update(headers)
    return session


def retry_delay(attempt: int, base_delay_s: float, max_delay_s: Optional[float]) -> float:
    """Linear backoff: attempt 1 waits base, attempt 2 waits 2*base, ..."""
    delay = base_delay_s * attempt
    if max_delay_s is not None:
        delay = min(delay, max_delay_s)
    return delay


def fetch_with_retry(
    session: requests.Session,
    url: str,
    *,
    method: str = "GET",
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    json_body: Any = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    base_delay_s: float = DEFAULT_BASE_DELAY_S,
    max_delay_s: Optional[float] = DEFAULT_MAX_DELAY_S,
    budget: Optional[RateBudget] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> requests.Response:
    """
    Issue one HTTP request with a per-attempt timeout and linear backoff.

    Args:
        session: requests.Session (or compatible object exposing .request)
        url: Absolute URL
        max_retries: Additional attempts after the first one
        timeout_s: Hard timeout for each attempt
        budget: When given, checked and charged before every attempt

    Returns:
        The response of the first attempt that reached the server, whatever
        its status code.

    Raises:
        RateLimitedError: budget exhausted before an attempt
        FetchError: every attempt timed out or failed to connect, or any other
            transport error (raised without retrying)
    """
    attempts = max(0, max_retries) + 1
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        if budget is not None and not budget.try_acquire():
            raise RateLimitedError(budget.get_status())

        try:
            return session.request(
                method,
                url,
                params=params,
                headers=headers,
                json=json_body,
                timeout=timeout_s,
            )
        except RETRYABLE_ERRORS as e:
            last_error = e
            if attempt == attempts:
                break
            delay = retry_delay(attempt, base_delay_s, max_delay_s)
            logger.warning(
                "Request to %s failed (attempt %s/%s): %s; retrying in %.1fs",
                url, attempt, attempts, e, delay,
            )
            sleep(delay)
        except requests.exceptions.RequestException as e:
            # Redirect loops, bad URLs, broken bodies: retrying won't help
            raise FetchError(url, attempt, e) from e

    raise FetchError(url, attempts, last_error)


def read_json(resp: requests.Response) -> Any:
    """
    Decode a provider response, failing on non-2xx.

    Raises:
        ProviderHTTPError: status outside 2xx (logged with the body)
        ProviderResponseError: body is not valid JSON
    """
    if not 200 <= resp.status_code < 300:
        body = resp.text or ""
        logger.warning("HTTP %s from %s: %s", resp.status_code, resp.url, body[:500])
        raise ProviderHTTPError(resp.status_code, str(resp.url), body)
    try:
        return resp.json()
    except (ValueError, json.JSONDecodeError) as e:
        raise ProviderResponseError(
            f"Invalid JSON from {resp.url} (status {resp.status_code}): {(resp.text or '')[:200]}"
        ) from e

from __future__ import annotations

from typing import Optional

from profilepool.models import RateBudgetStatus


class ProfilePoolError(RuntimeError):
    """Base class for provider and pipeline failures."""


class FetchError(ProfilePoolError):
    """Every attempt of an outbound request failed (timeout or connection error)."""

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(f"Request to {url} failed after {attempts} attempt(s): {cause}")
        self.url = url
        self.attempts = attempts
        self.cause = cause


class ProviderHTTPError(ProfilePoolError):
    """Provider answered with a non-2xx status."""

    def __init__(self, status_code: int, url: str, body: str = ""):
        super().__init__(f"HTTP {status_code} from {url}: {body[:200]}")
        self.status_code = status_code
        self.url = url
        self.body = body


class ProviderResponseError(ProfilePoolError):
    """Provider answered 2xx but the payload is not the JSON we expect."""


class RateLimitedError(ProfilePoolError):
    """The request budget for the current window is spent."""

    def __init__(self, status: RateBudgetStatus):
        super().__init__(
            f"Rate limited: {status.count}/{status.limit} requests used, "
            f"window resets in {status.window_remaining_s:.0f}s"
        )
        self.status = status

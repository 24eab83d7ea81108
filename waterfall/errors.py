"""Error taxonomy for provider calls, job runs and inbound input.

HTTP responses are classified into:
- ok: 2xx, parse the body
- rate_limited: 429, retry after a delay (bounded)
- transient: 5xx, 408, or a network failure; treated as "no result"
- rejected: any other 4xx (bad key, bad request); also "no result"
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    ok = "ok"
    rate_limited = "rate_limited"
    transient = "transient"
    rejected = "rejected"


def classify_status(code: int) -> ErrorKind:
    """Classify an HTTP status code."""
    if 200 <= code < 300:
        return ErrorKind.ok
    if code == 429:
        return ErrorKind.rate_limited
    if code >= 500 or code == 408:
        return ErrorKind.transient
    return ErrorKind.rejected


class WaterfallError(Exception):
    """Base class for everything raised by this package."""


class InputError(WaterfallError, ValueError):
    """Malformed inbound request: reported to the caller, never retried."""


class ProviderNotConfigured(WaterfallError):
    """No API key for a provider the call needs."""


class ProviderHTTPError(WaterfallError):
    """Non-2xx answer from a provider endpoint."""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        self.kind = classify_status(status)
        super().__init__(message or f"provider returned HTTP {status}")


class RateLimitedError(ProviderHTTPError):
    """HTTP 429 from a provider endpoint."""

    def __init__(self, message: str = ""):
        super().__init__(429, message or "provider rate limited")


class JobError(WaterfallError):
    """A scraping job did not produce results."""


class JobFailedError(JobError):
    """The job host reported a terminal failure state for the run."""

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"job run {run_id} ended {status}")


class JobWaitTimeout(JobError):
    """Our own wait budget ran out before the run reached a terminal state."""

    def __init__(self, run_id: str, waited: float, budget: float):
        self.run_id = run_id
        self.waited = waited
        self.budget = budget
        super().__init__(
            f"gave up waiting for job run {run_id} after {waited:.1f}s (budget {budget:.0f}s)"
        )


def describe(exc: Optional[BaseException]) -> str:
    """Short raw_status tag for an exception caught at an adapter boundary."""
    if exc is None:
        return ""
    if isinstance(exc, ProviderHTTPError):
        return ErrorKind.rate_limited.value if exc.kind == ErrorKind.rate_limited else f"http_{exc.status}"
    return "error"

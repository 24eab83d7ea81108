"""Shared aiohttp plumbing for the provider adapters."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import aiohttp

from .errors import ErrorKind, ProviderHTTPError, RateLimitedError, classify_status


@asynccontextmanager
async def session_scope(session: Optional[aiohttp.ClientSession]) -> AsyncIterator[aiohttp.ClientSession]:
    """Use the caller's session, or open a short-lived one for this call."""
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as owned:
        yield owned


async def request_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    timeout: float,
    **kwargs,
) -> Any:
    """Send a request and return the decoded JSON body.

    Raises RateLimitedError on 429 and ProviderHTTPError on any other non-2xx.
    Network failures and undecodable bodies propagate as aiohttp/ValueError.
    """
    async with session.request(
        method,
        url,
        timeout=aiohttp.ClientTimeout(total=timeout),
        **kwargs,
    ) as resp:
        kind = classify_status(resp.status)
        if kind == ErrorKind.rate_limited:
            raise RateLimitedError()
        if kind != ErrorKind.ok:
            text = await resp.text()
            raise ProviderHTTPError(resp.status, f"HTTP {resp.status}: {text[:200]}")
        return await resp.json(content_type=None)

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure project root on path
sys.path.insert(0, str(Path(__file__).parent.parent))

from waterfall.config import BatchConfig, PollerConfig, WaterfallConfig


class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None):
        self.status = status
        self._payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self) -> str:
        return str(self._payload)

    async def json(self, content_type=None):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stands in for aiohttp.ClientSession.

    `routes` maps a URL substring to a list of (status, payload) answers that
    are handed out in order; the last answer repeats once the list runs out.
    Every call is recorded in `calls`.
    """

    def __init__(self, routes: dict):
        self.routes = {k: list(v) for k, v in routes.items()}
        self.calls: list[dict] = []

    def request(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for fragment, answers in self.routes.items():
            if fragment in url:
                status, payload = answers.pop(0) if len(answers) > 1 else answers[0]
                if isinstance(status, Exception):
                    raise status
                return FakeResponse(status, payload)
        raise AssertionError(f"unexpected request {method} {url}")

    def calls_to(self, fragment: str) -> list[dict]:
        return [c for c in self.calls if fragment in c["url"]]


@pytest.fixture
def fast_waterfall_config() -> WaterfallConfig:
    return WaterfallConfig(finder_retry_delay=0, verify_pacing=0, pattern_verify_limit=2, pattern_min_confidence=50)


@pytest.fixture
def fast_batch_config() -> BatchConfig:
    return BatchConfig(concurrency=3, pacing=0, pacing_jitter=0, min_standard_results=2)


@pytest.fixture
def fast_poller_config() -> PollerConfig:
    return PollerConfig(
        poll_interval=2.0,
        poll_jitter=0.0,
        backoff_base=1.0,
        backoff_cap=30.0,
        backoff_jitter=0.0,
    )

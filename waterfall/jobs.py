"""Asynchronous job poller for scraping actors on the Apify platform.

Lifecycle: start -> poll status until terminal -> fetch dataset items.

- 429 on a status check: exponential backoff (base * 2^attempt, capped,
  plus jitter) and the same check is repeated.
- Any other non-2xx, network error or malformed body: the operation fails.
- SUCCEEDED: dataset items are fetched and returned.
- FAILED / ABORTED / TIMED-OUT: JobFailedError with that status.
- READY / RUNNING: sleep poll_interval + jitter, reset the backoff attempt.
- Wall-clock budget exceeded: JobWaitTimeout (distinct from TIMED-OUT), and
  the run is aborted so it stops consuming compute.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from .config import PollerConfig
from .errors import JobError, JobFailedError, JobWaitTimeout, ProviderHTTPError, RateLimitedError
from .http import request_json, session_scope
from .models import JobRun, JobStatus

logger = logging.getLogger("waterfall.jobs")

APIFY_BASE_URL = "https://api.apify.com/v2"

_STATUS_MAP: dict[str, JobStatus] = {
    "READY": JobStatus.queued,
    "RUNNING": JobStatus.running,
    "TIMING-OUT": JobStatus.running,
    "ABORTING": JobStatus.running,
    "SUCCEEDED": JobStatus.succeeded,
    "FAILED": JobStatus.failed,
    "ABORTED": JobStatus.aborted,
    "TIMED-OUT": JobStatus.timed_out,
}

# Host spelling of our terminal failure states, for error messages
_HOST_STATUS = {
    JobStatus.failed: "FAILED",
    JobStatus.aborted: "ABORTED",
    JobStatus.timed_out: "TIMED-OUT",
}


def backoff_delay(
    attempt: int,
    base: float = 1.0,
    cap: float = 30.0,
    jitter: float = 0.5,
    rng: Callable[[], float] = random.random,
) -> float:
    """Rate-limit backoff: min(base * 2^attempt, cap) + [0, jitter)."""
    return min(base * (2 ** attempt), cap) + rng() * jitter


def poll_delay(interval: float = 2.0, jitter: float = 1.0, rng: Callable[[], float] = random.random) -> float:
    """Delay between status checks of a running job."""
    return interval + rng() * jitter


def actor_path(actor_id: str) -> str:
    """"apify/google-search-scraper" -> "apify~google-search-scraper"."""
    return actor_id.replace("/", "~")


class _RunData(BaseModel):
    id: str
    status: str
    defaultDatasetId: Optional[str] = None


class _RunEnvelope(BaseModel):
    data: _RunData


def _to_job_run(body: Any) -> JobRun:
    data = _RunEnvelope.model_validate(body).data
    status = _STATUS_MAP.get(data.status.upper())
    if status is None:
        raise JobError(f"unrecognized run status {data.status!r}")
    return JobRun(id=data.id, status=status, dataset_id=data.defaultDatasetId)


class JobPoller:
    """Start, poll and fetch scraping jobs. Owns every JobRun it creates."""

    def __init__(
        self,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = APIFY_BASE_URL,
        config: Optional[PollerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.config = config or PollerConfig()
        self._session = session
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        async with session_scope(self._session) as session:
            return await request_json(
                session,
                method,
                f"{self.base_url}{path}",
                self.config.request_timeout,
                headers={"Authorization": f"Bearer {self.token}"},
                **kwargs,
            )

    async def start(self, actor_id: str, run_input: dict) -> JobRun:
        """Start an actor run with the safety profile applied."""
        cfg = self.config
        body = {
            **run_input,
            "proxyConfiguration": {"useApifyProxy": cfg.use_proxy},
            "maxConcurrency": cfg.max_concurrency,
        }
        run = _to_job_run(await self._request(
            "POST",
            f"/acts/{actor_path(actor_id)}/runs",
            params={"memory": str(cfg.memory_mb), "timeout": str(cfg.timeout_secs)},
            json=body,
        ))
        logger.info(f"Started {actor_id} run {run.id}")
        return run

    async def status(self, run_id: str) -> JobRun:
        """One status check. Raises RateLimitedError on 429."""
        return _to_job_run(await self._request("GET", f"/actor-runs/{run_id}"))

    async def fetch(self, dataset_id: str) -> list[dict]:
        items = await self._request(
            "GET", f"/datasets/{dataset_id}/items", params={"clean": "true", "format": "json"}
        )
        if not isinstance(items, list):
            raise JobError(f"dataset {dataset_id} did not return a list")
        return [item for item in items if isinstance(item, dict)]

    async def abort(self, run_id: str) -> None:
        try:
            await self._request("POST", f"/actor-runs/{run_id}/abort")
            logger.info(f"Aborted run {run_id}")
        except (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Could not abort {run_id}: {e!r}")

    async def wait(self, run: JobRun, max_wait_seconds: float) -> JobRun:
        """Poll until the run succeeds. Raises JobFailedError or JobWaitTimeout."""
        cfg = self.config
        started = self._clock()
        attempt = 0

        while self._clock() - started < max_wait_seconds:
            try:
                current = await self.status(run.id)
            except RateLimitedError:
                delay = backoff_delay(
                    attempt, cfg.backoff_base, cfg.backoff_cap, cfg.backoff_jitter, self._rng
                )
                logger.debug(f"Status check for {run.id} rate limited, backing off {delay:.2f}s")
                attempt += 1
                await self._sleep(delay)
                continue

            attempt = 0
            run = current
            if run.status == JobStatus.succeeded:
                return run
            if run.status.is_terminal:
                raise JobFailedError(run.id, _HOST_STATUS[run.status])

            await self._sleep(poll_delay(cfg.poll_interval, cfg.poll_jitter, self._rng))

        raise JobWaitTimeout(run.id, self._clock() - started, max_wait_seconds)

    async def run(
        self,
        actor_id: str,
        run_input: dict,
        max_wait_seconds: Optional[float] = None,
    ) -> list[dict]:
        """Start an actor, wait for it and return its dataset items.

        Every failure surfaces as a JobError subclass.
        """
        budget = self.config.default_max_wait if max_wait_seconds is None else max_wait_seconds
        try:
            run = await self.start(actor_id, run_input)
        except ValidationError as e:
            raise JobError(f"malformed start response for {actor_id}") from e
        except (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise JobError(f"could not start {actor_id}: {e!r}") from e

        try:
            finished = await self.wait(run, budget)
            if not finished.dataset_id:
                raise JobError(f"run {run.id} succeeded without a dataset")
            return await self.fetch(finished.dataset_id)
        except JobWaitTimeout:
            await self.abort(run.id)
            raise
        except JobError:
            raise
        except ValidationError as e:
            raise JobError(f"malformed status response for run {run.id}") from e
        except (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise JobError(f"run {run.id} failed while polling: {e!r}") from e

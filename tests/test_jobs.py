"""Tests for the scraping job poller: backoff, terminal states, wait budget."""

import asyncio

import pytest

from conftest import FakeSession
from waterfall.errors import JobError, JobFailedError, JobWaitTimeout
from waterfall.jobs import JobPoller, actor_path, backoff_delay


class FakeTimer:
    """Virtual clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay

    def clock(self) -> float:
        return self.now


def _run_body(status: str, run_id: str = "run1", dataset: str = "ds1") -> dict:
    return {"data": {"id": run_id, "status": status, "defaultDatasetId": dataset}}


def _poller(session, config, timer) -> JobPoller:
    return JobPoller(
        "token",
        session=session,
        config=config,
        sleep=timer.sleep,
        clock=timer.clock,
        rng=lambda: 0.0,
    )


class TestBackoff:
    def test_doubles_then_caps(self):
        delays = [backoff_delay(a, base=1.0, cap=30.0, jitter=0.0) for a in range(8)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0]

    def test_monotonic_without_jitter(self):
        delays = [backoff_delay(a, jitter=0.0) for a in range(12)]
        assert delays == sorted(delays)

    def test_jitter_is_bounded(self):
        assert backoff_delay(10, base=1.0, cap=30.0, jitter=0.5, rng=lambda: 0.999) < 30.5
        assert backoff_delay(0, base=1.0, cap=30.0, jitter=0.5, rng=lambda: 0.0) == 1.0


def test_actor_path():
    assert actor_path("apify/google-search-scraper") == "apify~google-search-scraper"


class TestJobPoller:
    def test_run_success_with_rate_limits(self, fast_poller_config):
        session = FakeSession({
            "/acts/": [(201, _run_body("READY"))],
            "/actor-runs/": [
                (429, "slow down"),
                (429, "slow down"),
                (200, _run_body("RUNNING")),
                (429, "slow down"),
                (200, _run_body("SUCCEEDED")),
            ],
            "/datasets/": [(200, [{"name": "Jane Doe"}, "junk"])],
        })
        timer = FakeTimer()

        items = asyncio.run(_poller(session, fast_poller_config, timer).run(
            "apify/google-search-scraper", {"queries": "acme"}
        ))

        assert items == [{"name": "Jane Doe"}]
        # backoff 1, 2; poll 2; attempt counter reset so the next 429 backs off 1 again
        assert timer.sleeps == [1.0, 2.0, 2.0, 1.0]
        # every 429 repeats the same status check
        assert len(session.calls_to("/actor-runs/run1")) == 5

    def test_start_applies_safety_profile(self, fast_poller_config):
        session = FakeSession({
            "/acts/": [(201, _run_body("READY"))],
        })
        poller = _poller(session, fast_poller_config, FakeTimer())

        run = asyncio.run(poller.start("apify/apollo-io-scraper", {"searchUrl": "x", "maxConcurrency": 50}))

        assert run.id == "run1"
        call = session.calls[0]
        assert call["url"].endswith("/acts/apify~apollo-io-scraper/runs")
        assert call["headers"]["Authorization"] == "Bearer token"
        assert call["params"] == {"memory": "256", "timeout": "300"}
        assert call["json"]["proxyConfiguration"] == {"useApifyProxy": True}
        assert call["json"]["maxConcurrency"] == 1
        assert call["json"]["searchUrl"] == "x"

    @pytest.mark.parametrize("host_status", ["FAILED", "ABORTED", "TIMED-OUT"])
    def test_terminal_failure(self, fast_poller_config, host_status):
        session = FakeSession({
            "/acts/": [(201, _run_body("READY"))],
            "/actor-runs/": [(200, _run_body(host_status))],
        })

        with pytest.raises(JobFailedError) as exc_info:
            asyncio.run(_poller(session, fast_poller_config, FakeTimer()).run("a/b", {}))

        assert exc_info.value.status == host_status
        assert not isinstance(exc_info.value, JobWaitTimeout)
        assert session.calls_to("/datasets/") == []

    def test_wait_budget_exceeded_aborts_run(self, fast_poller_config):
        session = FakeSession({
            "/abort": [(200, _run_body("ABORTING"))],
            "/acts/": [(201, _run_body("READY"))],
            "/actor-runs/": [(200, _run_body("RUNNING"))],
        })
        timer = FakeTimer()

        with pytest.raises(JobWaitTimeout) as exc_info:
            asyncio.run(_poller(session, fast_poller_config, timer).run("a/b", {}, max_wait_seconds=5))

        assert not isinstance(exc_info.value, JobFailedError)
        assert exc_info.value.budget == 5
        assert timer.sleeps == [2.0, 2.0, 2.0]
        assert len(session.calls_to("/abort")) == 1

    def test_start_rejected(self, fast_poller_config):
        session = FakeSession({"/acts/": [(401, "bad token")]})
        with pytest.raises(JobError):
            asyncio.run(_poller(session, fast_poller_config, FakeTimer()).run("a/b", {}))

    def test_status_server_error_fails_operation(self, fast_poller_config):
        session = FakeSession({
            "/acts/": [(201, _run_body("READY"))],
            "/actor-runs/": [(502, "bad gateway")],
        })
        with pytest.raises(JobError):
            asyncio.run(_poller(session, fast_poller_config, FakeTimer()).run("a/b", {}))

    def test_unknown_status_fails_operation(self, fast_poller_config):
        session = FakeSession({
            "/acts/": [(201, _run_body("READY"))],
            "/actor-runs/": [(200, _run_body("EXPLODED"))],
        })
        with pytest.raises(JobError):
            asyncio.run(_poller(session, fast_poller_config, FakeTimer()).run("a/b", {}))

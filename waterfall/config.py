"""Configuration from the environment, with an optional config.json for API keys."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("waterfall.config")

CONFIG_PATH = Path(os.environ.get("WATERFALL_CONFIG", Path(__file__).parent.parent / "config.json"))

# Env var names for provider keys
API_KEY_ENV = {
    "hunter": "HUNTER_API_KEY",
    "apollo": "APOLLO_API_KEY",
    "apify": "APIFY_API_KEY",
}

_config_cache: Optional[dict] = None


def _load_config_file() -> dict:
    global _config_cache
    if _config_cache is None:
        _config_cache = {}
        if CONFIG_PATH.exists():
            try:
                _config_cache = json.loads(CONFIG_PATH.read_text())
            except (OSError, ValueError) as e:
                logger.warning(f"Could not load {CONFIG_PATH}: {e}")
    return _config_cache


def load_api_key(service: str) -> Optional[str]:
    """API key for a provider: environment first, then config.json."""
    env_name = API_KEY_ENV.get(service, f"{service.upper()}_API_KEY")
    key = os.environ.get(env_name)
    if key:
        return key
    entry = _load_config_file().get("providers", {}).get(service, {})
    return entry.get("api_key") if isinstance(entry, dict) else None


REQUEST_TIMEOUT = float(os.environ.get("WATERFALL_REQUEST_TIMEOUT", "15"))

# Orchestrator
FINDER_RETRY_DELAY = float(os.environ.get("WATERFALL_FINDER_RETRY_DELAY", "2.0"))
VERIFY_PACING = float(os.environ.get("WATERFALL_VERIFY_PACING", "0.2"))
PATTERN_VERIFY_LIMIT = int(os.environ.get("WATERFALL_PATTERN_VERIFY_LIMIT", "2"))
PATTERN_MIN_CONFIDENCE = int(os.environ.get("WATERFALL_PATTERN_MIN_CONFIDENCE", "50"))

# Batch runner
BATCH_CONCURRENCY = int(os.environ.get("WATERFALL_BATCH_CONCURRENCY", "3"))
BATCH_PACING = float(os.environ.get("WATERFALL_BATCH_PACING", "0.2"))
BATCH_PACING_JITTER = float(os.environ.get("WATERFALL_BATCH_PACING_JITTER", "0.1"))
MIN_STANDARD_RESULTS = int(os.environ.get("WATERFALL_MIN_STANDARD_RESULTS", "2"))
DEFAULT_TARGET_ROLES = [
    r.strip()
    for r in os.environ.get(
        "WATERFALL_TARGET_ROLES",
        "CEO,Managing Director,Sales Director,Business Development",
    ).split(",")
    if r.strip()
]

# Async job poller
POLL_INTERVAL = float(os.environ.get("WATERFALL_POLL_INTERVAL", "2.0"))
POLL_JITTER = float(os.environ.get("WATERFALL_POLL_JITTER", "1.0"))
BACKOFF_BASE = float(os.environ.get("WATERFALL_BACKOFF_BASE", "1.0"))
BACKOFF_CAP = float(os.environ.get("WATERFALL_BACKOFF_CAP", "30.0"))
BACKOFF_JITTER = float(os.environ.get("WATERFALL_BACKOFF_JITTER", "0.5"))
JOB_MEMORY_MB = int(os.environ.get("WATERFALL_JOB_MEMORY_MB", "256"))
JOB_TIMEOUT_SECS = int(os.environ.get("WATERFALL_JOB_TIMEOUT_SECS", "300"))
JOB_MAX_WAIT = float(os.environ.get("WATERFALL_JOB_MAX_WAIT", "120"))


@dataclass
class WaterfallConfig:
    """Tunables for one orchestrator instance."""
    finder_retry_delay: float = FINDER_RETRY_DELAY
    verify_pacing: float = VERIFY_PACING
    pattern_verify_limit: int = PATTERN_VERIFY_LIMIT
    pattern_min_confidence: int = PATTERN_MIN_CONFIDENCE


@dataclass
class BatchConfig:
    """Tunables for the batch runner."""
    concurrency: int = BATCH_CONCURRENCY
    pacing: float = BATCH_PACING
    pacing_jitter: float = BATCH_PACING_JITTER
    min_standard_results: int = MIN_STANDARD_RESULTS
    target_roles: list[str] = field(default_factory=lambda: list(DEFAULT_TARGET_ROLES))


@dataclass
class PollerConfig:
    """Job host safety profile and polling cadence.

    memory_mb, timeout_secs, max_concurrency and use_proxy are applied to
    every started run and cannot be overridden per call.
    """
    poll_interval: float = POLL_INTERVAL
    poll_jitter: float = POLL_JITTER
    backoff_base: float = BACKOFF_BASE
    backoff_cap: float = BACKOFF_CAP
    backoff_jitter: float = BACKOFF_JITTER
    request_timeout: float = REQUEST_TIMEOUT
    memory_mb: int = JOB_MEMORY_MB
    timeout_secs: int = JOB_TIMEOUT_SECS
    max_concurrency: int = 1
    use_proxy: bool = True
    default_max_wait: float = JOB_MAX_WAIT

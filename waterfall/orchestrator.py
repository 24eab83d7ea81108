"""Contact-resolution waterfall for a single person.

Stages, strictly in order, stopping at the first acceptable email:
  1. Email finder by name (one retry after a fixed pause on 429)
  2. People match by identity
  3. Pattern guesses verified one by one (first N candidates only)
Every provider call is charged to the outcome's credit ledger, found or not.
"""

import asyncio
import inspect
import logging
from typing import Callable, Optional

import aiohttp

from .config import WaterfallConfig, load_api_key
from .errors import InputError, ProviderNotConfigured
from .apollo import ApolloClient
from .hunter import HunterClient
from .models import (
    ProviderKind,
    ProviderResult,
    ResolutionRequest,
    ResolutionSource,
    WaterfallOutcome,
)
from .patterns import generate_candidates
from .providers import (
    ACCEPTABLE_VERIFIER_STATUSES,
    EmailFinder,
    EmailVerifier,
    PeopleMatcher,
    get_spec,
)

logger = logging.getLogger("waterfall.orchestrator")


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


async def emit_event(event_callback, event: dict) -> None:
    """Hand an event to the caller's sink. Sink failures never break a run."""
    if not event_callback:
        return
    try:
        await _maybe_await(event_callback(event))
    except Exception as e:
        logger.debug("Event callback failed: %s", e)


class Waterfall:
    """Sequential, credit-conserving email resolution over configured providers."""

    def __init__(
        self,
        finder: Optional[EmailFinder] = None,
        matcher: Optional[PeopleMatcher] = None,
        verifier: Optional[EmailVerifier] = None,
        config: Optional[WaterfallConfig] = None,
        event_callback: Optional[Callable] = None,
    ):
        self.finder = finder
        self.matcher = matcher
        self.verifier = verifier
        self.config = config or WaterfallConfig()
        self.event_callback = event_callback

    @classmethod
    def from_env(
        cls,
        session: Optional[aiohttp.ClientSession] = None,
        config: Optional[WaterfallConfig] = None,
        event_callback: Optional[Callable] = None,
    ) -> "Waterfall":
        """Wire Hunter (finder + verifier) and Apollo (match) from configured keys."""
        hunter_key = load_api_key("hunter")
        apollo_key = load_api_key("apollo")
        hunter = HunterClient(hunter_key, session=session) if hunter_key else None
        apollo = ApolloClient(apollo_key, session=session) if apollo_key else None
        return cls(
            finder=hunter,
            matcher=apollo,
            verifier=hunter,
            config=config,
            event_callback=event_callback,
        )

    async def resolve(self, request: ResolutionRequest) -> WaterfallOutcome:
        credits: dict[str, int] = {}

        def charge(kind: ProviderKind) -> None:
            credits[kind.value] = credits.get(kind.value, 0) + get_spec(kind).credits_per_call

        logger.info(f"Looking up email for {request.person_name} at {request.domain}")

        # --- Stage 1: email finder ---
        if self.finder is not None:
            result = await self.finder.find_by_name(request.first_name, request.last_name, request.domain)
            charge(ProviderKind.finder)
            if result.raw_status == "rate_limited":
                logger.info(f"Finder rate limited, retrying once in {self.config.finder_retry_delay}s")
                await asyncio.sleep(self.config.finder_retry_delay)
                result = await self.finder.find_by_name(
                    request.first_name, request.last_name, request.domain
                )
                charge(ProviderKind.finder)
            await self._record(request, "finder", result)
            if result.email:
                return self._accept(request, result, ResolutionSource.finder, credits)

        # --- Stage 2: people match ---
        if self.matcher is not None:
            result = await self.matcher.match_by_identity(
                request.first_name, request.last_name, request.company_name, request.domain
            )
            charge(ProviderKind.match)
            await self._record(request, "match", result)
            if result.email:
                return self._accept(request, result, ResolutionSource.match, credits)

        # --- Stage 3: pattern guesses + verification ---
        if self.finder is not None and self.verifier is not None:
            limit = max(0, self.config.pattern_verify_limit)
            candidates = generate_candidates(request.first_name, request.last_name, request.domain)[:limit]
            logger.info(f"Verifying {len(candidates)} pattern guesses for {request.person_name}")

            for idx, candidate in enumerate(candidates):
                if idx > 0 and self.config.verify_pacing > 0:
                    await asyncio.sleep(self.config.verify_pacing)
                result = await self.verifier.verify(candidate.address)
                charge(ProviderKind.verifier)
                await self._record(request, f"pattern:{candidate.pattern}", result)
                if (
                    result.raw_status in ACCEPTABLE_VERIFIER_STATUSES
                    and result.confidence_score >= self.config.pattern_min_confidence
                ):
                    accepted = result.model_copy(update={"email": candidate.address})
                    return self._accept(request, accepted, ResolutionSource.pattern_guess, credits)

        logger.info(f"No email found for {request.person_name} at {request.domain}")
        return WaterfallOutcome(credits_consumed_by_provider=dict(credits))

    async def _record(self, request: ResolutionRequest, stage: str, result: ProviderResult) -> None:
        logger.debug(
            f"{stage} for {request.person_name}: email={result.email} "
            f"confidence={result.confidence_score} status={result.raw_status}"
        )
        await emit_event(self.event_callback, {
            "stage": stage,
            "person": request.person_name,
            "domain": request.domain,
            "email": result.email,
            "confidence": result.confidence_score,
            "raw_status": result.raw_status,
        })

    def _accept(
        self,
        request: ResolutionRequest,
        result: ProviderResult,
        source: ResolutionSource,
        credits: dict[str, int],
    ) -> WaterfallOutcome:
        logger.info(
            f"Found {result.email} for {request.person_name} via {source.value} "
            f"({result.confidence_score}%)"
        )
        return WaterfallOutcome(
            email=result.email,
            confidence_score=result.confidence_score,
            source=source,
            credits_consumed_by_provider=dict(credits),
        )


async def resolve_email(
    person_name: str,
    company_name: str = "",
    domain: Optional[str] = None,
    website: Optional[str] = None,
    waterfall: Optional[Waterfall] = None,
) -> WaterfallOutcome:
    """Resolve a working email for one person.

    Raises InputError before touching any provider when the name is missing
    or no domain can be derived. "Nothing found" is an empty outcome.
    """
    request = ResolutionRequest.build(person_name, company_name, domain, website)
    waterfall = waterfall or Waterfall.from_env()
    return await waterfall.resolve(request)


async def verify_email_address(email: str, verifier: Optional[EmailVerifier] = None) -> ProviderResult:
    """Check a single address with the verifier."""
    email = (email or "").strip()
    if "@" not in email:
        raise InputError("email address is required")
    if verifier is None:
        key = load_api_key("hunter")
        if not key:
            raise ProviderNotConfigured("no verifier configured (set HUNTER_API_KEY)")
        verifier = HunterClient(key)
    return await verifier.verify(email)

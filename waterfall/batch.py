"""Batch runner: company contact discovery and email resolution over many inputs.

Fan-out is chunked: take `concurrency` items, run them together, wait for
all of them, pause briefly, then take the next chunk. Results keep the input
order. One item failing never aborts its chunk or the batch.
"""

import asyncio
import logging
import random
from typing import Callable, Optional

import aiohttp

from .config import BatchConfig, load_api_key
from .apollo import ApolloClient
from .domains import derive_domain
from .errors import InputError, ProviderNotConfigured
from .hunter import HunterClient
from .jobs import JobPoller
from .models import (
    CompanyContacts,
    CompanyTarget,
    ContactRecord,
    ProviderKind,
    ResolutionRequest,
    SearchVariant,
    WaterfallOutcome,
)
from .orchestrator import Waterfall, emit_event
from .providers import MATCH_UNVERIFIED_CONFIDENCE, ContactSearcher, get_spec
from .scraping import ApifyContactSearch

logger = logging.getLogger("waterfall.batch")


# ---------------------------------------------------------------------------
# Merge and dedup
# ---------------------------------------------------------------------------

def _name_key(contact: ContactRecord) -> tuple[str, str]:
    return (contact.company.strip().lower(), contact.name.strip().lower())


def _email_key(contact: ContactRecord) -> Optional[str]:
    return contact.email.strip().lower() if contact.email else None


def merge_passes(primary: list[ContactRecord], extra: list[ContactRecord]) -> list[ContactRecord]:
    """Append `extra` to `primary`, skipping names already present.

    Names compare case-insensitively; the first occurrence wins.
    """
    merged: list[ContactRecord] = []
    seen: set[str] = set()
    for contact in [*primary, *extra]:
        key = contact.name.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(contact)
    return merged


def _completeness(contact: ContactRecord) -> int:
    return (2 if contact.email else 0) + (1 if contact.linkedin_url else 0) + (1 if contact.title else 0)


def should_replace(existing: ContactRecord, candidate: ContactRecord) -> bool:
    """Verified beats unverified, then higher confidence, then more complete data."""
    if candidate.verified != existing.verified:
        return candidate.verified
    if candidate.email_confidence != existing.email_confidence:
        return candidate.email_confidence > existing.email_confidence
    return _completeness(candidate) > _completeness(existing)


def dedupe_contacts(contacts: list[ContactRecord]) -> list[ContactRecord]:
    """Collapse contacts sharing an email, or a name within the same company.

    The better record (see should_replace) is kept at the position of the
    first occurrence.
    """
    kept: list[ContactRecord] = []
    by_email: dict[str, int] = {}
    by_name: dict[tuple[str, str], int] = {}

    for contact in contacts:
        email_key = _email_key(contact)
        name_key = _name_key(contact)
        pos = by_email.get(email_key) if email_key else None
        if pos is None:
            pos = by_name.get(name_key)

        if pos is None:
            pos = len(kept)
            kept.append(contact)
        elif should_replace(kept[pos], contact):
            kept[pos] = contact

        if email_key:
            by_email.setdefault(email_key, pos)
        by_name.setdefault(name_key, pos)
    return kept


async def _pause(config: BatchConfig) -> None:
    delay = config.pacing + random.random() * config.pacing_jitter
    if delay > 0:
        await asyncio.sleep(delay)


def _report_progress(progress_callback: Optional[Callable], item) -> None:
    """Call the progress callback; failures are logged, never raised."""
    if not progress_callback:
        return
    try:
        progress_callback(item)
    except Exception as e:
        logger.debug(f"Progress callback failed: {e}")


# ---------------------------------------------------------------------------
# Company contact discovery
# ---------------------------------------------------------------------------

def searchers_from_env(session: Optional[aiohttp.ClientSession] = None) -> list[ContactSearcher]:
    """Configured contact searchers in default order: Apollo, Hunter, Apify."""
    searchers: list[ContactSearcher] = []
    apollo_key = load_api_key("apollo")
    if apollo_key:
        searchers.append(ApolloClient(apollo_key, session=session))
    hunter_key = load_api_key("hunter")
    if hunter_key:
        searchers.append(HunterClient(hunter_key, session=session))
    apify_key = load_api_key("apify")
    if apify_key:
        searchers.append(ApifyContactSearch(JobPoller(apify_key, session=session)))
    return searchers


def order_searchers(
    searchers: list[ContactSearcher],
    preferred_provider: Optional[str] = None,
    skip_providers: Optional[list[str]] = None,
) -> list[ContactSearcher]:
    skip = {s.lower() for s in (skip_providers or [])}
    chain = [s for s in searchers if s.name not in skip]
    if preferred_provider:
        preferred = [s for s in chain if s.name == preferred_provider.lower()]
        chain = preferred + [s for s in chain if s not in preferred]
    return chain


async def search_company(
    searcher: ContactSearcher,
    company_name: str,
    domain: str,
    target_roles: list[str],
    config: BatchConfig,
) -> tuple[list[ContactRecord], int]:
    """Standard pass, plus a leadership pass when the standard one is thin.

    Returns (merged contacts, passes run).
    """
    standard = await searcher.search_contacts(company_name, domain, target_roles, SearchVariant.standard)
    contacts = merge_passes(standard, [])
    logger.info(f"{company_name}: {len(contacts)} contacts from {searcher.name} (standard search)")
    if len(standard) >= config.min_standard_results:
        return contacts, 1

    leadership = await searcher.search_contacts(company_name, domain, target_roles, SearchVariant.leadership)
    contacts = merge_passes(contacts, leadership)
    logger.info(f"{company_name}: {len(contacts)} contacts after leadership search via {searcher.name}")
    return contacts, 2


async def reveal_missing_emails(
    searcher: ContactSearcher,
    contacts: list[ContactRecord],
    credits: dict[str, int],
    event_callback: Optional[Callable] = None,
) -> list[ContactRecord]:
    """Fill in emails the search left hidden, for searchers that can reveal them.

    Charges `<searcher>_reveal` one credit per person id submitted.
    """
    reveal = getattr(searcher, "reveal_emails", None)
    ids = [c.apollo_id for c in contacts if c.apollo_id and not c.email]
    if reveal is None or not ids:
        return contacts

    revealed = await reveal(ids)
    key = f"{searcher.name}_reveal"
    credits[key] = credits.get(key, 0) + len(ids) * get_spec(ProviderKind.reveal).credits_per_call
    await emit_event(event_callback, {
        "stage": "email_reveal",
        "provider": searcher.name,
        "requested": len(ids),
        "revealed": len(revealed),
    })

    updated = []
    for contact in contacts:
        email = revealed.get(contact.apollo_id) if contact.apollo_id and not contact.email else None
        if email:
            contact = contact.model_copy(update={
                "email": email,
                # Apollo reveals are not verifier-checked
                "email_confidence": MATCH_UNVERIFIED_CONFIDENCE,
                "email_source": "Apollo (revealed)",
                "verified": False,
            })
        updated.append(contact)
    return updated


async def lookup_company(
    company: CompanyTarget,
    searchers: list[ContactSearcher],
    target_roles: Optional[list[str]] = None,
    config: Optional[BatchConfig] = None,
    event_callback: Optional[Callable] = None,
    reveal_emails: bool = False,
) -> CompanyContacts:
    """Walk the searcher chain for one company; the first non-empty result wins.

    Each search pass is charged at the searcher kind's credits_per_call. With
    `reveal_emails`, contacts the winning searcher returned without an email
    are revealed afterwards where the searcher supports it.

    Exceptions raised by a searcher propagate to the caller.
    """
    config = config or BatchConfig()
    roles = target_roles or config.target_roles
    domain = company.resolved_domain()
    if not domain:
        raise InputError(f"no domain derivable for company {company.name!r}")
    if not searchers:
        raise ProviderNotConfigured("no contact providers configured")

    attempted: list[str] = []
    credits: dict[str, int] = {}
    for idx, searcher in enumerate(searchers):
        attempted.append(searcher.name)
        contacts, passes = await search_company(searcher, company.name, domain, roles, config)
        charged = passes * get_spec(searcher.kind).credits_per_call
        credits[searcher.name] = credits.get(searcher.name, 0) + charged
        await emit_event(event_callback, {
            "stage": "company_search",
            "company": company.name,
            "provider": searcher.name,
            "passes": passes,
            "contacts": len(contacts),
        })

        if contacts:
            if reveal_emails:
                contacts = await reveal_missing_emails(searcher, contacts, credits, event_callback)
            tagged = [
                c.model_copy(update={
                    "company": company.name,
                    "source": c.source or searcher.name,
                    "email_source": (
                        f"{c.email_source} (via {searcher.name})" if c.email_source
                        else f"Found via {searcher.name}"
                    ),
                })
                for c in contacts
            ]
            return CompanyContacts(
                company=company.name,
                domain=domain,
                contacts=dedupe_contacts(tagged),
                provider_used=searcher.name,
                attempted_providers=attempted,
                credits_consumed_by_provider=credits,
            )

        logger.info(f"{company.name}: {searcher.name} returned no contacts, trying next provider")
        if idx < len(searchers) - 1:
            await _pause(config)

    return CompanyContacts(
        company=company.name,
        domain=domain,
        attempted_providers=attempted,
        credits_consumed_by_provider=credits,
    )


async def find_company_contacts(
    company_name: str,
    domain: Optional[str] = None,
    target_roles: Optional[list[str]] = None,
    website: Optional[str] = None,
    searchers: Optional[list[ContactSearcher]] = None,
    preferred_provider: Optional[str] = None,
    skip_providers: Optional[list[str]] = None,
    config: Optional[BatchConfig] = None,
    event_callback: Optional[Callable] = None,
    reveal_emails: bool = False,
) -> list[ContactRecord]:
    """Contacts at one company, or an empty list when nothing was found."""
    if not derive_domain(domain, website, company_name):
        raise InputError(f"no domain derivable for company {company_name!r}")
    chain = order_searchers(
        searchers if searchers is not None else searchers_from_env(),
        preferred_provider,
        skip_providers,
    )
    result = await lookup_company(
        CompanyTarget(name=company_name, domain=domain, website=website),
        chain,
        target_roles=target_roles,
        config=config,
        event_callback=event_callback,
        reveal_emails=reveal_emails,
    )
    return result.contacts


async def find_contacts_batch(
    companies: list[CompanyTarget],
    searchers: Optional[list[ContactSearcher]] = None,
    target_roles: Optional[list[str]] = None,
    preferred_provider: Optional[str] = None,
    skip_providers: Optional[list[str]] = None,
    config: Optional[BatchConfig] = None,
    progress_callback: Optional[Callable[[CompanyTarget], None]] = None,
    event_callback: Optional[Callable] = None,
    reveal_emails: bool = False,
) -> list[CompanyContacts]:
    """Discover contacts for many companies.

    A company whose lookup raises is logged and left out of the result.
    Emails are unique across the whole batch (first company keeps them).
    """
    if not companies:
        raise InputError("company batch is empty")

    config = config or BatchConfig()
    chain = order_searchers(
        searchers if searchers is not None else searchers_from_env(),
        preferred_provider,
        skip_providers,
    )
    if not chain:
        raise ProviderNotConfigured("no contact providers configured")

    results: list[Optional[CompanyContacts]] = [None] * len(companies)
    step = max(1, config.concurrency)

    async def _one(idx: int, company: CompanyTarget) -> None:
        try:
            results[idx] = await lookup_company(
                company,
                chain,
                target_roles=target_roles,
                config=config,
                event_callback=event_callback,
                reveal_emails=reveal_emails,
            )
        except Exception:
            logger.exception("Contact lookup failed for %s", company.name)
        finally:
            _report_progress(progress_callback, company)

    for start in range(0, len(companies), step):
        chunk = companies[start:start + step]
        await asyncio.gather(*(_one(start + i, c) for i, c in enumerate(chunk)))
        if start + step < len(companies):
            await _pause(config)

    seen_emails: set[str] = set()
    merged: list[CompanyContacts] = []
    for result in results:
        if result is None:
            continue
        unique = []
        for contact in result.contacts:
            key = _email_key(contact)
            if key and key in seen_emails:
                continue
            if key:
                seen_emails.add(key)
            unique.append(contact)
        merged.append(result.model_copy(update={"contacts": unique}))

    found = sum(len(r.contacts) for r in merged)
    logger.info(f"Completed: {found} contacts from {len(merged)}/{len(companies)} companies")
    return merged


# ---------------------------------------------------------------------------
# Email resolution
# ---------------------------------------------------------------------------

async def resolve_emails_batch(
    contacts: list[dict],
    waterfall: Optional[Waterfall] = None,
    config: Optional[BatchConfig] = None,
    progress_callback: Optional[Callable[[WaterfallOutcome], None]] = None,
) -> list[WaterfallOutcome]:
    """Run the waterfall for many people.

    Each contact dict needs: name, and one of domain / website / company.
    Results are index-aligned with the input; an item that fails gets an
    empty outcome with `error` set.
    """
    if not contacts:
        raise InputError("request batch is empty")

    config = config or BatchConfig()
    waterfall = waterfall or Waterfall.from_env()
    results: list[Optional[WaterfallOutcome]] = [None] * len(contacts)
    step = max(1, config.concurrency)

    async def _one(idx: int, contact: dict) -> None:
        try:
            request = ResolutionRequest.build(
                contact.get("name", ""),
                contact.get("company", ""),
                contact.get("domain"),
                contact.get("website"),
            )
            outcome = await waterfall.resolve(request)
        except InputError as e:
            outcome = WaterfallOutcome(error=str(e))
        except Exception:
            logger.exception("Email resolution failed for %s", contact.get("name"))
            outcome = WaterfallOutcome(error="internal resolution error")
        results[idx] = outcome
        _report_progress(progress_callback, outcome)

    for start in range(0, len(contacts), step):
        chunk = contacts[start:start + step]
        await asyncio.gather(*(_one(start + i, c) for i, c in enumerate(chunk)))
        if start + step < len(contacts):
            await _pause(config)

    return results

"""Scraping-based contact provider backed by Apify actors.

Actor output is loosely typed and differs per actor, so every item is wrapped
in a RawRecord tagged with its actor family and normalized by the matching
function in NORMALIZERS.
"""

import logging
import re
from typing import Any, Callable, Optional
from urllib.parse import quote

from .errors import JobError
from .jobs import JobPoller
from .models import ContactRecord, ProviderKind, RawRecord, ScraperVariant, SearchVariant
from .providers import (
    LEADERSHIP_TITLES,
    SCRAPED_EMAIL_CONFIDENCE,
    ContactSearcher,
    classify_seniority,
)

logger = logging.getLogger("waterfall.scraping")

ACTOR_IDS = {
    ScraperVariant.apollo: "apify/apollo-io-scraper",
    ScraperVariant.linkedin: "curious_coder/linkedin-people-profile-scraper",
    ScraperVariant.google: "apify/google-search-scraper",
}

# Per-actor wait budgets in seconds; the Apollo scraper is slow
ACTOR_MAX_WAIT = {
    ScraperVariant.apollo: 180,
    ScraperVariant.linkedin: 60,
    ScraperVariant.google: 60,
}

APOLLO_SCRAPER_MAX_RESULTS = 10
GOOGLE_RESULTS_PER_PAGE = 10


def _first(fields: dict[str, Any], *keys: str) -> str:
    """First non-empty value among keys, as a stripped string."""
    for key in keys:
        value = fields.get(key)
        if value:
            return str(value).strip()
    return ""


def _scraped_contact(
    name: str,
    title: str,
    email: str,
    linkedin: str,
    variant: ScraperVariant,
) -> ContactRecord:
    return ContactRecord(
        name=name,
        title=title,
        email=email or None,
        # scraped emails still need verification
        email_confidence=SCRAPED_EMAIL_CONFIDENCE if email else 0,
        email_source=f"Apify ({variant.value})" if email else "Needs email lookup",
        linkedin_url=linkedin or None,
        verified=False,
        seniority=classify_seniority(title),
        source=f"apify-{variant.value}",
    )


def normalize_apollo_record(fields: dict[str, Any]) -> ContactRecord:
    title = _first(fields, "title", "position", "headline")
    return _scraped_contact(
        name=_first(fields, "name", "fullName", "full_name"),
        title=title,
        email=_first(fields, "email"),
        linkedin=_first(fields, "linkedinUrl", "linkedin_url", "linkedin"),
        variant=ScraperVariant.apollo,
    )


def normalize_linkedin_record(fields: dict[str, Any]) -> ContactRecord:
    title = _first(fields, "headline", "title", "position")
    return _scraped_contact(
        name=_first(fields, "fullName", "name", "full_name"),
        title=title,
        email=_first(fields, "email"),
        linkedin=_first(fields, "profileUrl", "url", "linkedinUrl", "linkedin_url"),
        variant=ScraperVariant.linkedin,
    )


_PIPE_SUFFIX_RE = re.compile(r"\s*\|.*$")


def normalize_google_record(fields: dict[str, Any]) -> ContactRecord:
    # "Jane Doe - CEO - Acme | LinkedIn"
    parts = [p.strip() for p in _first(fields, "title").split(" - ")]
    name = _PIPE_SUFFIX_RE.sub("", parts[0]).strip() if parts else ""
    title = _PIPE_SUFFIX_RE.sub("", parts[1]).strip() if len(parts) > 1 else ""
    return _scraped_contact(
        name=name,
        title=title,
        email="",
        linkedin=_first(fields, "url"),
        variant=ScraperVariant.google,
    )


NORMALIZERS: dict[ScraperVariant, Callable[[dict[str, Any]], ContactRecord]] = {
    ScraperVariant.apollo: normalize_apollo_record,
    ScraperVariant.linkedin: normalize_linkedin_record,
    ScraperVariant.google: normalize_google_record,
}


def normalize(record: RawRecord) -> ContactRecord:
    return NORMALIZERS[record.variant](record.fields)


def _flatten_google_items(items: list[dict]) -> list[dict]:
    """The search scraper returns one item per page with organicResults inside."""
    flat: list[dict] = []
    for item in items:
        organic = item.get("organicResults")
        if isinstance(organic, list):
            flat.extend(r for r in organic if isinstance(r, dict))
        else:
            flat.append(item)
    return flat


class ApifyContactSearch(ContactSearcher):
    """Contact discovery through scraping actors.

    Standard pass: Apollo scraper by company domain.
    Leadership pass: Google search for leadership LinkedIn profiles.
    """

    name = "apify"
    kind = ProviderKind.scraper

    def __init__(self, poller: JobPoller):
        self.poller = poller

    async def _run(self, variant: ScraperVariant, run_input: dict) -> list[RawRecord]:
        try:
            items = await self.poller.run(
                ACTOR_IDS[variant], run_input, max_wait_seconds=ACTOR_MAX_WAIT[variant]
            )
        except JobError as e:
            logger.warning(f"{ACTOR_IDS[variant]} produced no results: {e}")
            return []
        if variant == ScraperVariant.google:
            items = _flatten_google_items(items)
        return [RawRecord(variant=variant, fields=item) for item in items]

    async def search_contacts(
        self,
        company_name: str,
        domain: str,
        target_roles: list[str],
        variant: SearchVariant = SearchVariant.standard,
    ) -> list[ContactRecord]:
        if variant == SearchVariant.standard:
            title_filter = "".join(f"&personTitles[]={quote(r)}" for r in target_roles)
            records = await self._run(ScraperVariant.apollo, {
                "searchUrl": f"https://app.apollo.io/#/people?qOrganizationDomains[]={domain}{title_filter}",
                "maxResults": APOLLO_SCRAPER_MAX_RESULTS,
            })
        else:
            role_query = " OR ".join(f'"{r}"' for r in LEADERSHIP_TITLES[:3])
            records = await self._run(ScraperVariant.google, {
                "queries": f'"{company_name}" {role_query} site:linkedin.com/in',
                "maxPagesPerQuery": 1,
                "resultsPerPage": GOOGLE_RESULTS_PER_PAGE,
                "mobileResults": False,
            })
            records = [r for r in records if "linkedin.com/in" in str(r.fields.get("url", ""))]

        contacts = []
        for record in records:
            contact = normalize(record)
            if contact.name:
                contacts.append(contact.model_copy(update={"company": company_name}))
        return contacts

    async def scrape_profile(self, linkedin_url: str) -> Optional[ContactRecord]:
        """Enrich a single LinkedIn profile URL."""
        records = await self._run(ScraperVariant.linkedin, {"startUrls": [{"url": linkedin_url}]})
        if not records:
            return None
        contact = normalize(records[0])
        return contact if contact.name else None

"""Apollo adapter: people match, people search and bulk email reveal.

POST https://api.apollo.io/api/v1/people/match               (1 credit per call)
POST https://api.apollo.io/api/v1/mixed_people/api_search    (per company pass)
POST https://api.apollo.io/api/v1/people/bulk_match          (1 credit per person id)
"""

import asyncio
import logging
from typing import Optional

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from .config import REQUEST_TIMEOUT
from .errors import ProviderHTTPError, describe
from .http import request_json, session_scope
from .models import ContactRecord, ProviderKind, ProviderResult, SearchVariant
from .providers import (
    LEADERSHIP_TITLES,
    MATCH_UNVERIFIED_CONFIDENCE,
    MATCH_VERIFIED_CONFIDENCE,
    ContactSearcher,
    PeopleMatcher,
    classify_seniority,
)

logger = logging.getLogger("waterfall.apollo")

APOLLO_BASE_URL = "https://api.apollo.io/api/v1"
SEARCH_PAGE_SIZE = 10
# bulk_match accepts at most this many people per request
BULK_MATCH_SIZE = 10


class _Person(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    email_status: Optional[str] = None
    linkedin_url: Optional[str] = None


class _MatchResponse(BaseModel):
    person: Optional[_Person] = None


class _SearchResponse(BaseModel):
    people: list[_Person] = Field(default_factory=list)


class _BulkMatchResponse(BaseModel):
    matches: list[Optional[_Person]] = Field(default_factory=list)


class ApolloClient(PeopleMatcher, ContactSearcher):
    """People match by identity, company people search and bulk email reveal."""

    name = "apollo"

    def __init__(
        self,
        api_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = APOLLO_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    async def _post(self, path: str, payload: dict) -> object:
        async with session_scope(self._session) as session:
            return await request_json(
                session,
                "POST",
                f"{self.base_url}{path}",
                self.timeout,
                headers={"X-Api-Key": self.api_key, "Cache-Control": "no-cache"},
                json=payload,
            )

    async def match_by_identity(
        self, first_name: str, last_name: str, organization: str, domain: str
    ) -> ProviderResult:
        payload = {
            "first_name": first_name,
            "last_name": last_name,
            "organization_name": organization or domain.split(".")[0],
            "domain": domain,
        }
        try:
            parsed = _MatchResponse.model_validate(await self._post("/people/match", payload))
        except ValidationError as e:
            logger.debug(f"Apollo match schema mismatch: {e}")
            return ProviderResult.empty(ProviderKind.match, "schema_mismatch")
        except ProviderHTTPError as e:
            logger.debug(f"Apollo match returned {e.status}")
            return ProviderResult.empty(ProviderKind.match, describe(e))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Apollo match failed: {e!r}")
            return ProviderResult.empty(ProviderKind.match, describe(e))

        person = parsed.person
        if person is None or not person.email:
            return ProviderResult.empty(ProviderKind.match, "not_found")

        status = (person.email_status or "").lower()
        return ProviderResult(
            email=person.email.strip(),
            confidence_score=(
                MATCH_VERIFIED_CONFIDENCE if status == "verified" else MATCH_UNVERIFIED_CONFIDENCE
            ),
            provider_kind=ProviderKind.match,
            raw_status=status or "unverified",
        )

    async def search_contacts(
        self,
        company_name: str,
        domain: str,
        target_roles: list[str],
        variant: SearchVariant = SearchVariant.standard,
    ) -> list[ContactRecord]:
        titles = LEADERSHIP_TITLES if variant == SearchVariant.leadership else target_roles
        payload = {
            # single domain string, not a list
            "q_organization_domains": domain,
            "person_titles": titles,
            "page": 1,
            "per_page": SEARCH_PAGE_SIZE,
        }
        try:
            parsed = _SearchResponse.model_validate(await self._post("/mixed_people/api_search", payload))
        except ValidationError as e:
            logger.debug(f"Apollo search schema mismatch for {domain}: {e}")
            return []
        except (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.info(f"Apollo search for {domain} failed: {describe(e)}")
            return []

        contacts = []
        for person in parsed.people:
            name = person.name or " ".join(p for p in (person.first_name, person.last_name) if p)
            if not name:
                continue
            verified = (person.email_status or "").lower() == "verified"
            contacts.append(ContactRecord(
                name=name.strip(),
                title=person.title or "",
                company=company_name,
                email=person.email or None,
                email_confidence=(
                    0 if not person.email
                    else MATCH_VERIFIED_CONFIDENCE if verified
                    else MATCH_UNVERIFIED_CONFIDENCE
                ),
                email_source="Apollo API" if person.email else "",
                linkedin_url=person.linkedin_url or None,
                verified=verified and bool(person.email),
                seniority=classify_seniority(person.title),
                source=self.name,
                apollo_id=person.id,
            ))
        return contacts

    async def reveal_emails(self, ids: list[str]) -> dict[str, str]:
        """Reveal work emails for people found by search_contacts.

        Charges one credit per id submitted. A chunk that fails is logged and
        skipped; whatever the other chunks revealed is still returned.
        """
        ids = [i for i in ids if i]
        revealed: dict[str, str] = {}
        for start in range(0, len(ids), BULK_MATCH_SIZE):
            chunk = ids[start:start + BULK_MATCH_SIZE]
            payload = {
                "details": [{"id": i} for i in chunk],
                "reveal_personal_emails": False,
            }
            try:
                parsed = _BulkMatchResponse.model_validate(await self._post("/people/bulk_match", payload))
            except ValidationError as e:
                logger.debug(f"Apollo bulk match schema mismatch: {e}")
                continue
            except (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.info(f"Apollo bulk match for {len(chunk)} people failed: {describe(e)}")
                continue
            for person in parsed.matches:
                if person is not None and person.id and person.email:
                    revealed[person.id] = person.email.strip()
        logger.info(f"Apollo revealed {len(revealed)}/{len(ids)} emails")
        return revealed

"""Hunter adapter: email finder, email verifier and domain search.

GET https://api.hunter.io/v2/email-finder    (1 credit per call)
GET https://api.hunter.io/v2/email-verifier  (1 credit per call)
GET https://api.hunter.io/v2/domain-search   (1 credit per call)
"""

import asyncio
import logging
from typing import Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from .config import REQUEST_TIMEOUT
from .errors import ProviderHTTPError, describe
from .http import request_json, session_scope
from .models import ContactRecord, ProviderKind, ProviderResult, SearchVariant
from .providers import (
    FINDER_DEFAULT_CONFIDENCE,
    ContactSearcher,
    EmailFinder,
    EmailVerifier,
    classify_seniority,
    matches_target_role,
    status_confidence,
)

logger = logging.getLogger("waterfall.hunter")

HUNTER_BASE_URL = "https://api.hunter.io/v2"

# Hunter seniorities that count as decision makers
SENIOR_LEVELS = {"executive", "senior", "director"}
# Below this many contacts per company, keep non-matching roles too
MIN_CONTACTS_PER_COMPANY = 3
VERIFIED_CONFIDENCE = 90

T = TypeVar("T", bound=BaseModel)


class _FinderData(BaseModel):
    email: Optional[str] = None
    score: Optional[int] = None


class _FinderResponse(BaseModel):
    data: _FinderData


class _VerifierData(BaseModel):
    status: str
    score: Optional[int] = None


class _VerifierResponse(BaseModel):
    data: _VerifierData


class _DomainEmail(BaseModel):
    value: str
    type: Optional[str] = None
    confidence: int = 0
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    seniority: Optional[str] = None
    department: Optional[str] = None
    linkedin: Optional[str] = None


class _DomainData(BaseModel):
    emails: list[_DomainEmail] = Field(default_factory=list)


class _DomainResponse(BaseModel):
    data: _DomainData


def _clamp(score: int) -> int:
    return max(0, min(100, score))


class HunterClient(EmailFinder, EmailVerifier, ContactSearcher):
    """Email finder + verifier + domain search over one API key."""

    name = "hunter"

    def __init__(
        self,
        api_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = HUNTER_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    async def _fetch(self, path: str, params: dict, schema: Type[T]) -> tuple[Optional[T], str]:
        """GET an endpoint and validate the body. Returns (parsed, failure_tag)."""
        try:
            async with session_scope(self._session) as session:
                body = await request_json(
                    session,
                    "GET",
                    f"{self.base_url}{path}",
                    self.timeout,
                    params={**params, "api_key": self.api_key},
                )
            return schema.model_validate(body), ""
        except ValidationError as e:
            logger.debug(f"Hunter {path} schema mismatch: {e}")
            return None, "schema_mismatch"
        except ProviderHTTPError as e:
            if e.status == 429:
                logger.warning(f"Hunter {path} rate limited")
            else:
                logger.debug(f"Hunter {path} returned {e.status}")
            return None, describe(e)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.debug(f"Hunter {path} failed: {e!r}")
            return None, describe(e)

    async def find_by_name(self, first_name: str, last_name: str, domain: str) -> ProviderResult:
        params = {"domain": domain, "first_name": first_name}
        if last_name:
            params["last_name"] = last_name

        parsed, failure = await self._fetch("/email-finder", params, _FinderResponse)
        if parsed is None:
            return ProviderResult.empty(ProviderKind.finder, failure)

        data = parsed.data
        if not data.email:
            return ProviderResult.empty(ProviderKind.finder, "not_found")
        score = data.score if data.score else FINDER_DEFAULT_CONFIDENCE
        return ProviderResult(
            email=data.email.strip(),
            confidence_score=_clamp(score),
            provider_kind=ProviderKind.finder,
            raw_status="found",
        )

    async def verify(self, email: str) -> ProviderResult:
        parsed, failure = await self._fetch("/email-verifier", {"email": email}, _VerifierResponse)
        if parsed is None:
            return ProviderResult.empty(ProviderKind.verifier, failure)

        status = parsed.data.status.lower()
        score = parsed.data.score
        confidence = status_confidence(status) if score is None else _clamp(score)
        return ProviderResult(
            email=email,
            confidence_score=confidence,
            provider_kind=ProviderKind.verifier,
            raw_status=status,
        )

    async def search_contacts(
        self,
        company_name: str,
        domain: str,
        target_roles: list[str],
        variant: SearchVariant = SearchVariant.standard,
    ) -> list[ContactRecord]:
        params = {"domain": domain, "limit": "10"}
        if variant == SearchVariant.leadership:
            params["seniority"] = "executive"

        parsed, failure = await self._fetch("/domain-search", params, _DomainResponse)
        if parsed is None:
            logger.info(f"Hunter domain search for {domain}: no result ({failure})")
            return []

        contacts: list[ContactRecord] = []
        for entry in parsed.data.emails:
            if entry.type == "generic":
                continue
            full_name = " ".join(p for p in (entry.first_name, entry.last_name) if p)
            if not full_name:
                continue
            title = entry.position or entry.department or ""
            relevant = matches_target_role(title, target_roles) or (
                (entry.seniority or "").lower() in SENIOR_LEVELS
            )
            if not relevant and len(contacts) >= MIN_CONTACTS_PER_COMPANY:
                continue
            contacts.append(ContactRecord(
                name=full_name,
                title=title,
                company=company_name,
                email=entry.value,
                email_confidence=_clamp(entry.confidence),
                email_source=f"Hunter ({entry.confidence}% confidence)",
                linkedin_url=entry.linkedin or None,
                verified=entry.confidence >= VERIFIED_CONFIDENCE,
                seniority=classify_seniority(title),
                source=self.name,
            ))
        return contacts

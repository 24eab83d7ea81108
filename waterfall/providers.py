"""Provider capabilities and the fixed tables shared by every adapter.

A concrete adapter implements one or more capabilities:
- EmailFinder: (first, last, domain) -> email + score
- PeopleMatcher: (first, last, organization, domain) -> email + status
- EmailVerifier: address -> discrete status + score
- ContactSearcher: company + domain -> contacts (standard or leadership pass)

Adapters never raise for provider trouble; they return an empty result and
record why in raw_status.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .models import ContactRecord, ProviderKind, ProviderResult, SearchVariant, Seniority


@dataclass
class ProviderSpec:
    """Credits charged per call of a capability."""
    kind: ProviderKind
    credits_per_call: int = 1


_PROVIDER_SPECS: dict[ProviderKind, ProviderSpec] = {
    # finder, match, verifier: 1 credit per call, found or not
    ProviderKind.finder: ProviderSpec(ProviderKind.finder),
    ProviderKind.match: ProviderSpec(ProviderKind.match),
    ProviderKind.verifier: ProviderSpec(ProviderKind.verifier),
    # one actor run per search pass
    ProviderKind.scraper: ProviderSpec(ProviderKind.scraper),
    # one people/domain search per pass
    ProviderKind.search: ProviderSpec(ProviderKind.search),
    # bulk email reveal: 1 credit per person id submitted
    ProviderKind.reveal: ProviderSpec(ProviderKind.reveal),
}


def get_spec(kind: ProviderKind) -> ProviderSpec:
    return _PROVIDER_SPECS[kind]


# Verifier status vocabulary -> confidence
VERIFIER_STATUS_CONFIDENCE: dict[str, int] = {
    "valid": 100,
    "accept_all": 80,
    "webmail": 90,
    "disposable": 10,
    "unknown": 50,
    "invalid": 0,
}
UNMAPPED_STATUS_CONFIDENCE = 50

ACCEPTABLE_VERIFIER_STATUSES = frozenset({"valid", "accept_all"})


def status_confidence(status: Optional[str]) -> int:
    """Map a verifier status to confidence. Unknown statuses map to 50."""
    if not status:
        return UNMAPPED_STATUS_CONFIDENCE
    return VERIFIER_STATUS_CONFIDENCE.get(status.lower(), UNMAPPED_STATUS_CONFIDENCE)


FINDER_DEFAULT_CONFIDENCE = 80
MATCH_VERIFIED_CONFIDENCE = 95
MATCH_UNVERIFIED_CONFIDENCE = 70
SCRAPED_EMAIL_CONFIDENCE = 60


class EmailFinder(ABC):
    @abstractmethod
    async def find_by_name(self, first_name: str, last_name: str, domain: str) -> ProviderResult:
        ...


class PeopleMatcher(ABC):
    @abstractmethod
    async def match_by_identity(
        self, first_name: str, last_name: str, organization: str, domain: str
    ) -> ProviderResult:
        ...


class EmailVerifier(ABC):
    @abstractmethod
    async def verify(self, email: str) -> ProviderResult:
        ...


class ContactSearcher(ABC):
    """Company-level contact discovery."""

    name: str = "search"
    # ProviderSpec charged once per search pass
    kind: ProviderKind = ProviderKind.search

    @abstractmethod
    async def search_contacts(
        self,
        company_name: str,
        domain: str,
        target_roles: list[str],
        variant: SearchVariant = SearchVariant.standard,
    ) -> list[ContactRecord]:
        ...


LEADERSHIP_TITLES = [
    "CEO", "Founder", "Co-Founder", "Owner", "President",
    "Managing Director", "COO", "CFO", "CTO", "Chief",
]

_SENIORITY_RULES: list[tuple[Seniority, re.Pattern]] = [
    (Seniority.executive, re.compile(
        r"\b(ceo|cfo|coo|cmo|cto|cio|chief|president|founder|owner|partner|principal)\b")),
    (Seniority.director, re.compile(
        r"\b(director|vp|vice president|head of|svp|evp|general manager|gm)\b")),
    (Seniority.manager, re.compile(
        r"\b(manager|lead|supervisor|team lead|senior|sr\.?)(?=\W|$)")),
    (Seniority.staff, re.compile(
        r"\b(associate|assistant|coordinator|specialist|analyst|executive|officer"
        r"|representative|intern|junior|jr\.?)(?=\W|$)")),
]


def classify_seniority(title: Optional[str]) -> Seniority:
    """Bucket a job title into a seniority level."""
    lowered = (title or "").lower()
    for level, pattern in _SENIORITY_RULES:
        if pattern.search(lowered):
            return level
    return Seniority.unknown


def matches_target_role(title: Optional[str], target_roles: list[str]) -> bool:
    lowered = (title or "").lower()
    return any(role.lower() in lowered for role in target_roles if role)

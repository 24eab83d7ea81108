"""Data models for the contact-resolution waterfall."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domains import derive_domain, normalize_domain


class ProviderKind(str, Enum):
    """Provider capability, also the key of the credit ledger."""
    finder = "finder"
    match = "match"
    verifier = "verifier"
    scraper = "scraper"
    search = "search"
    reveal = "reveal"


class ResolutionSource(str, Enum):
    """Which stage of the waterfall produced the accepted email."""
    finder = "finder"
    match = "match"
    pattern_guess = "pattern_guess"


class JobStatus(str, Enum):
    """Lifecycle of an asynchronous scraping job."""
    queued = "queued"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    aborted = "aborted"
    timed_out = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobStatus.queued, JobStatus.running)


class ScraperVariant(str, Enum):
    """Actor family a raw scraped record came from."""
    apollo = "apollo"
    linkedin = "linkedin"
    google = "google"


class Seniority(str, Enum):
    executive = "Executive"
    director = "Director"
    manager = "Manager"
    staff = "Staff"
    unknown = "Unknown"


class SearchVariant(str, Enum):
    """Query framing for a company contact search pass."""
    standard = "standard"
    leadership = "leadership"


class ResolutionRequest(BaseModel):
    """A single person to resolve an email for."""
    model_config = ConfigDict(frozen=True)

    person_name: str
    first_name: str
    last_name: str = ""
    company_name: str = ""
    domain: str

    @field_validator("domain")
    @classmethod
    def _bare_domain(cls, value: str) -> str:
        bare = normalize_domain(value)
        if not bare:
            raise ValueError(f"not a domain: {value!r}")
        return bare

    @classmethod
    def build(
        cls,
        person_name: str,
        company_name: str = "",
        domain: Optional[str] = None,
        website: Optional[str] = None,
    ) -> "ResolutionRequest":
        """Split the name and derive a bare domain.

        Raises InputError when the name is empty or no domain can be derived.
        """
        from .errors import InputError

        parts = (person_name or "").split()
        if not parts:
            raise InputError("person name is required")

        bare = derive_domain(domain, website, company_name)
        if not bare:
            raise InputError(f"no domain derivable for {person_name!r}")

        return cls(
            person_name=" ".join(parts),
            first_name=parts[0],
            last_name=" ".join(parts[1:]),
            company_name=(company_name or "").strip(),
            domain=bare,
        )


class CandidateEmail(BaseModel):
    """A synthesized address in pattern priority order."""
    model_config = ConfigDict(frozen=True)

    address: str
    rank_index: int
    pattern: str = ""


class ProviderResult(BaseModel):
    """Normalized answer from one provider call."""
    email: Optional[str] = None
    confidence_score: int = Field(default=0, ge=0, le=100)
    provider_kind: ProviderKind
    raw_status: str = ""

    @classmethod
    def empty(cls, kind: ProviderKind, raw_status: str = "") -> "ProviderResult":
        return cls(email=None, confidence_score=0, provider_kind=kind, raw_status=raw_status)


class WaterfallOutcome(BaseModel):
    """Request-level result of one waterfall run."""
    model_config = ConfigDict(frozen=True)

    email: Optional[str] = None
    confidence_score: int = 0
    source: Optional[ResolutionSource] = None
    credits_consumed_by_provider: dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class JobRun(BaseModel):
    """A started scraping job as reported by the job host."""
    id: str
    status: JobStatus = JobStatus.queued
    dataset_id: Optional[str] = None


class RawRecord(BaseModel):
    """Loosely-typed scraped record tagged with the actor family it came from."""
    variant: ScraperVariant
    fields: dict[str, Any] = Field(default_factory=dict)


class ContactRecord(BaseModel):
    """A person attached to a company."""
    name: str
    title: str = ""
    company: str = ""
    email: Optional[str] = None
    email_confidence: int = 0
    email_source: str = ""
    linkedin_url: Optional[str] = None
    verified: bool = False
    seniority: Seniority = Seniority.unknown
    source: str = ""
    # Apollo person id; needed to reveal the email later
    apollo_id: Optional[str] = None


class CompanyTarget(BaseModel):
    """A company to discover contacts at."""
    name: str
    domain: Optional[str] = None
    website: Optional[str] = None

    def resolved_domain(self) -> Optional[str]:
        return derive_domain(self.domain, self.website, self.name)


class CompanyContacts(BaseModel):
    """Contacts found for one company of a batch."""
    company: str
    domain: str
    contacts: list[ContactRecord] = Field(default_factory=list)
    provider_used: Optional[str] = None
    attempted_providers: list[str] = Field(default_factory=list)
    credits_consumed_by_provider: dict[str, int] = Field(default_factory=dict)

"""Waterfall HTTP API.

Endpoints:
  POST /find-email      Resolve an email for one person
  POST /find-emails     Resolve emails for a batch of people
  POST /find-contacts   Discover decision makers at one or more companies
  POST /verify          Verify a single email address
  GET  /health          Health check
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

# Ensure project root on path
sys.path.insert(0, str(Path(__file__).parent))

from waterfall.batch import find_contacts_batch, resolve_emails_batch
from waterfall.config import load_api_key
from waterfall.errors import InputError, ProviderNotConfigured
from waterfall.models import CompanyTarget
from waterfall.orchestrator import resolve_email, verify_email_address

logger = logging.getLogger("waterfall.server")

MAX_BATCH_SIZE = int(os.environ.get("WATERFALL_MAX_BATCH_SIZE", "200"))

app = FastAPI(
    title="Waterfall",
    description="Credit-conserving B2B contact resolution API",
    version="0.1.0",
)


class FindEmailRequest(BaseModel):
    name: str
    company: str = ""
    domain: Optional[str] = None
    website: Optional[str] = None


class FindEmailsRequest(BaseModel):
    contacts: list[FindEmailRequest] = Field(default_factory=list)


class FindContactsRequest(BaseModel):
    companies: list[CompanyTarget] = Field(default_factory=list)
    target_roles: Optional[list[str]] = None
    preferred_provider: Optional[str] = None
    skip_providers: list[str] = Field(default_factory=list)
    reveal_emails: bool = False


class VerifyRequest(BaseModel):
    email: str


def _raise_http(e: Exception) -> None:
    if isinstance(e, InputError):
        raise HTTPException(status_code=400, detail=str(e))
    raise HTTPException(status_code=503, detail=str(e))


def _check_batch_size(size: int) -> None:
    if size > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Batch size exceeds maximum of {MAX_BATCH_SIZE}",
        )


# --- Endpoints ---

@app.post("/find-email")
async def find_email_endpoint(request: FindEmailRequest):
    """Resolve one person's email through the provider waterfall."""
    try:
        outcome = await resolve_email(
            request.name,
            company_name=request.company,
            domain=request.domain,
            website=request.website,
        )
    except (InputError, ProviderNotConfigured) as e:
        _raise_http(e)
    return outcome.model_dump(mode="json")


@app.post("/find-emails")
async def find_emails_endpoint(request: FindEmailsRequest):
    """Resolve emails for many people. Outcomes are index-aligned with the input."""
    _check_batch_size(len(request.contacts))
    try:
        outcomes = await resolve_emails_batch([c.model_dump() for c in request.contacts])
    except (InputError, ProviderNotConfigured) as e:
        _raise_http(e)
    return [o.model_dump(mode="json") for o in outcomes]


@app.post("/find-contacts")
async def find_contacts_endpoint(request: FindContactsRequest):
    _check_batch_size(len(request.companies))
    try:
        results = await find_contacts_batch(
            request.companies,
            target_roles=request.target_roles,
            preferred_provider=request.preferred_provider,
            skip_providers=request.skip_providers,
            reveal_emails=request.reveal_emails,
        )
    except (InputError, ProviderNotConfigured) as e:
        _raise_http(e)
    return [r.model_dump(mode="json") for r in results]


@app.post("/verify")
async def verify_endpoint(request: VerifyRequest):
    try:
        result = await verify_email_address(request.email)
    except (InputError, ProviderNotConfigured) as e:
        _raise_http(e)
    return {
        "email": request.email,
        "status": result.raw_status or "unknown",
        "confidence": result.confidence_score,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "waterfall",
        "version": "0.1.0",
        "providers": {svc: bool(load_api_key(svc)) for svc in ("hunter", "apollo", "apify")},
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    uvicorn.run(app, host=os.environ.get("WATERFALL_HOST", "0.0.0.0"), port=int(os.environ.get("WATERFALL_PORT", "8025")))

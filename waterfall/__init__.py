"""Credit-conserving contact resolution over B2B data providers."""

from .batch import find_company_contacts, find_contacts_batch, resolve_emails_batch
from .orchestrator import Waterfall, resolve_email, verify_email_address

__all__ = [
    "Waterfall",
    "find_company_contacts",
    "find_contacts_batch",
    "resolve_email",
    "resolve_emails_batch",
    "verify_email_address",
]

"""Domain normalization: bare hostnames from domains, websites and company names."""

import re
from typing import Optional
from urllib.parse import urlsplit

# Domain label: alphanumeric and hyphens, no leading/trailing hyphens
_DOMAIN_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")

# Suffixes dropped from company names before slugging
_LEGAL_SUFFIXES = {"inc", "llc", "ltd", "gmbh", "corp", "co", "plc", "sa", "ag", "bv"}

SLUG_TLD = "com"


def normalize_domain(value: Optional[str]) -> Optional[str]:
    """Reduce a domain-ish string to a bare hostname.

    Accepts "https://www.Acme.com/about", "www.acme.com", "@acme.com" and
    returns "acme.com". Returns None when nothing hostname-shaped is left.
    """
    if not value:
        return None

    value = value.strip().lower().lstrip("@")
    if not value:
        return None

    if "://" not in value:
        value = f"//{value}"
    try:
        host = urlsplit(value).hostname or ""
    except ValueError:
        return None

    host = host.rstrip(".")
    if host.startswith("www."):
        host = host[4:]

    labels = host.split(".")
    if len(labels) < 2:
        return None
    for label in labels:
        if not label or len(label) > 63 or not _DOMAIN_LABEL_RE.match(label):
            return None
    return host


def slug_domain(company_name: Optional[str]) -> Optional[str]:
    """Last-resort guess: "Acme Widgets, Inc." -> "acmewidgets.com"."""
    if not company_name:
        return None
    words = [
        w for w in _SLUG_STRIP_RE.split(company_name.lower())
        if w and w not in _LEGAL_SUFFIXES
    ]
    slug = "".join(words)
    if not slug:
        return None
    return f"{slug}.{SLUG_TLD}"


def derive_domain(
    domain: Optional[str] = None,
    website: Optional[str] = None,
    company_name: Optional[str] = None,
) -> Optional[str]:
    """Explicit domain first, then the website host, then a company-name slug."""
    return normalize_domain(domain) or normalize_domain(website) or slug_domain(company_name)

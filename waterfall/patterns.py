"""Candidate email synthesis from a person's name and a company domain."""

from typing import Callable

from .models import CandidateEmail

# Ordered highest-signal first. f/l are the lowercased names.
PATTERNS: list[tuple[str, Callable[[str, str], str]]] = [
    ("first",       lambda f, l: f),
    ("first.last",  lambda f, l: f"{f}.{l}"),
    ("firstlast",   lambda f, l: f"{f}{l}"),
    ("flast",       lambda f, l: f"{f[:1]}{l}"),
    ("f.last",      lambda f, l: f"{f[:1]}.{l}"),
    ("firstl",      lambda f, l: f"{f}{l[:1]}"),
    ("first_last",  lambda f, l: f"{f}_{l}"),
    ("last",        lambda f, l: l),
    ("last.first",  lambda f, l: f"{l}.{f}"),
    ("fl",          lambda f, l: f"{f[:1]}{l[:1]}"),
]

# Without a last name only these two make sense
FIRST_ONLY_PATTERNS: list[tuple[str, Callable[[str, str], str]]] = [
    ("first",       lambda f, l: f),
    ("first.first", lambda f, l: f"{f}.{f}"),
]


def _clean(name: str) -> str:
    return "".join(name.lower().split())


def generate_candidates(first_name: str, last_name: str, domain: str) -> list[CandidateEmail]:
    """Generate candidate emails in priority order.

    Pure and deterministic. An empty last name yields the two-entry
    first-name-only list. Duplicate addresses keep their first rank.
    """
    first = _clean(first_name or "")
    last = _clean(last_name or "")
    domain = (domain or "").strip().lower()

    patterns = PATTERNS if last else FIRST_ONLY_PATTERNS
    seen: set[str] = set()
    candidates: list[CandidateEmail] = []
    for pattern_name, fn in patterns:
        address = f"{fn(first, last)}@{domain}"
        if address in seen:
            continue
        seen.add(address)
        candidates.append(
            CandidateEmail(address=address, rank_index=len(candidates), pattern=pattern_name)
        )
    return candidates

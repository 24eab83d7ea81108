"""Tests for the batch runner: pass merging, dedup, provider chain, fan-out."""

import asyncio

import pytest

from waterfall.batch import (
    dedupe_contacts,
    find_company_contacts,
    find_contacts_batch,
    lookup_company,
    merge_passes,
    order_searchers,
    resolve_emails_batch,
    should_replace,
)
from waterfall.errors import InputError
from waterfall.models import (
    CompanyTarget,
    ContactRecord,
    ProviderKind,
    ProviderResult,
    ResolutionSource,
    SearchVariant,
)
from waterfall.orchestrator import Waterfall
from waterfall import providers
from waterfall.providers import ContactSearcher, EmailFinder, ProviderSpec


def _contact(name: str, email=None, **kwargs) -> ContactRecord:
    return ContactRecord(name=name, email=email, **kwargs)


class StubSearcher(ContactSearcher):
    """Answers per (company, variant); tracks how many searches overlap."""

    def __init__(self, name: str, answers: dict = None, delay: float = 0.0, fail_for: set = ()):
        self.name = name
        self.answers = answers or {}
        self.delay = delay
        self.fail_for = set(fail_for)
        self.calls: list[tuple[str, SearchVariant]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def search_contacts(self, company_name, domain, target_roles, variant=SearchVariant.standard):
        self.calls.append((company_name, variant))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if company_name in self.fail_for:
                raise RuntimeError(f"search blew up for {company_name}")
            return list(self.answers.get((company_name, variant), []))
        finally:
            self.in_flight -= 1


# ---------------------------------------------------------------------------
# Merge and dedup
# ---------------------------------------------------------------------------

def test_merge_passes_dedupes_names_case_insensitively():
    standard = [_contact("Jane Doe", title="CEO")]
    leadership = [_contact("jane doe", title="Founder"), _contact("Bob Lee")]

    merged = merge_passes(standard, leadership)

    assert [c.name for c in merged] == ["Jane Doe", "Bob Lee"]
    assert merged[0].title == "CEO"


class TestShouldReplace:
    def test_verified_wins(self):
        assert should_replace(_contact("A", verified=False, email_confidence=99),
                              _contact("A", verified=True, email_confidence=10))

    def test_higher_confidence_wins(self):
        assert should_replace(_contact("A", email_confidence=60), _contact("A", email_confidence=95))
        assert not should_replace(_contact("A", email_confidence=95), _contact("A", email_confidence=60))

    def test_completeness_breaks_ties(self):
        bare = _contact("A")
        rich = _contact("A", title="CEO", linkedin_url="https://linkedin.com/in/a")
        assert should_replace(bare, rich)
        assert not should_replace(rich, bare)


def test_dedupe_keeps_better_record_in_first_position():
    contacts = [
        _contact("Jane Doe", "jane@acme.com", email_confidence=60, company="Acme"),
        _contact("Bob Lee", company="Acme"),
        _contact("J. Doe", "JANE@acme.com", email_confidence=95, verified=True, company="Acme"),
        _contact("bob lee", company="Acme", title="CFO"),
    ]

    kept = dedupe_contacts(contacts)

    assert [c.name for c in kept] == ["J. Doe", "bob lee"]
    assert kept[0].verified is True


def test_order_searchers():
    a, h, s = StubSearcher("apollo"), StubSearcher("hunter"), StubSearcher("apify")
    assert order_searchers([a, h, s], preferred_provider="apify") == [s, a, h]
    assert order_searchers([a, h, s], skip_providers=["Hunter"]) == [a, s]


# ---------------------------------------------------------------------------
# Company lookup
# ---------------------------------------------------------------------------

def test_leadership_pass_runs_when_standard_is_thin(fast_batch_config):
    searcher = StubSearcher("apollo", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe", title="CEO")],
        ("Acme", SearchVariant.leadership): [_contact("JANE DOE", title="Founder"), _contact("Bob Lee")],
    })

    result = asyncio.run(lookup_company(CompanyTarget(name="Acme", domain="acme.com"), [searcher],
                                        config=fast_batch_config))

    assert [c.name for c in result.contacts] == ["Jane Doe", "Bob Lee"]
    assert searcher.calls == [("Acme", SearchVariant.standard), ("Acme", SearchVariant.leadership)]
    assert result.credits_consumed_by_provider == {"apollo": 2}
    assert result.provider_used == "apollo"


def test_leadership_pass_skipped_when_standard_is_enough(fast_batch_config):
    searcher = StubSearcher("apollo", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe"), _contact("Bob Lee")],
    })

    asyncio.run(lookup_company(CompanyTarget(name="Acme", domain="acme.com"), [searcher],
                               config=fast_batch_config))

    assert searcher.calls == [("Acme", SearchVariant.standard)]


def test_chain_falls_through_to_next_provider(fast_batch_config):
    empty = StubSearcher("apollo")
    hunter = StubSearcher("hunter", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe", "jane@acme.com"), _contact("Bob Lee")],
    })

    result = asyncio.run(lookup_company(CompanyTarget(name="Acme", website="https://acme.com"),
                                        [empty, hunter], config=fast_batch_config))

    assert result.domain == "acme.com"
    assert result.provider_used == "hunter"
    assert result.attempted_providers == ["apollo", "hunter"]
    assert result.credits_consumed_by_provider == {"apollo": 2, "hunter": 1}
    assert all(c.source == "hunter" for c in result.contacts)
    assert result.contacts[0].email_source == "Found via hunter"


def test_find_company_contacts(fast_batch_config):
    searcher = StubSearcher("apollo", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe"), _contact("Bob Lee")],
    })

    contacts = asyncio.run(find_company_contacts("Acme", "acme.com", ["CEO"], searchers=[searcher],
                                                 config=fast_batch_config))

    assert [c.name for c in contacts] == ["Jane Doe", "Bob Lee"]
    assert all(c.company == "Acme" for c in contacts)


def test_find_company_contacts_nothing_found(fast_batch_config):
    contacts = asyncio.run(find_company_contacts("Acme", "acme.com", searchers=[StubSearcher("apollo")],
                                                 config=fast_batch_config))
    assert contacts == []


def test_find_company_contacts_reports_events(fast_batch_config):
    searcher = StubSearcher("apollo", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe"), _contact("Bob Lee")],
    })
    events = []

    asyncio.run(find_company_contacts("Acme", "acme.com", searchers=[searcher], config=fast_batch_config,
                                      event_callback=events.append))

    assert events == [{
        "stage": "company_search",
        "company": "Acme",
        "provider": "apollo",
        "passes": 1,
        "contacts": 2,
    }]


def test_search_passes_charged_at_searcher_kind_rate(fast_batch_config, monkeypatch):
    monkeypatch.setitem(providers._PROVIDER_SPECS, ProviderKind.scraper,
                        ProviderSpec(ProviderKind.scraper, credits_per_call=3))
    scraper = StubSearcher("apify")
    scraper.kind = ProviderKind.scraper
    hunter = StubSearcher("hunter", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe"), _contact("Bob Lee")],
    })

    result = asyncio.run(lookup_company(CompanyTarget(name="Acme", domain="acme.com"),
                                        [scraper, hunter], config=fast_batch_config))

    assert result.credits_consumed_by_provider == {"apify": 6, "hunter": 1}


class RevealingSearcher(StubSearcher):
    def __init__(self, *args, revealed: dict = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.revealed = revealed or {}
        self.reveal_calls: list[list[str]] = []

    async def reveal_emails(self, ids):
        self.reveal_calls.append(list(ids))
        return {i: self.revealed[i] for i in ids if i in self.revealed}


def test_reveal_fills_hidden_emails_and_charges_per_id(fast_batch_config):
    searcher = RevealingSearcher("apollo", {
        ("Acme", SearchVariant.standard): [
            _contact("Jane Doe", apollo_id="p1"),
            _contact("Bob Lee", apollo_id="p2"),
            _contact("Sam Poe", "sam@acme.com", apollo_id="p3", email_confidence=95, verified=True),
        ],
    }, revealed={"p1": "jane@acme.com"})
    events = []

    result = asyncio.run(lookup_company(CompanyTarget(name="Acme", domain="acme.com"), [searcher],
                                        config=fast_batch_config, event_callback=events.append,
                                        reveal_emails=True))

    assert searcher.reveal_calls == [["p1", "p2"]]
    assert result.credits_consumed_by_provider == {"apollo": 1, "apollo_reveal": 2}
    jane, bob, sam = result.contacts
    assert jane.email == "jane@acme.com"
    assert jane.email_confidence == 70
    assert jane.verified is False
    assert jane.email_source.startswith("Apollo (revealed)")
    assert bob.email is None
    assert sam.email == "sam@acme.com"
    assert events[-1] == {"stage": "email_reveal", "provider": "apollo", "requested": 2, "revealed": 1}


def test_reveal_is_opt_in(fast_batch_config):
    searcher = RevealingSearcher("apollo", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe", apollo_id="p1"), _contact("Bob Lee")],
    }, revealed={"p1": "jane@acme.com"})

    result = asyncio.run(lookup_company(CompanyTarget(name="Acme", domain="acme.com"), [searcher],
                                        config=fast_batch_config))

    assert searcher.reveal_calls == []
    assert result.credits_consumed_by_provider == {"apollo": 1}
    assert result.contacts[0].email is None


# ---------------------------------------------------------------------------
# Batch fan-out
# ---------------------------------------------------------------------------

def test_one_failing_company_does_not_sink_the_batch(fast_batch_config):
    searcher = StubSearcher("apollo", {
        ("Alpha", SearchVariant.standard): [_contact("A One"), _contact("A Two")],
        ("Gamma", SearchVariant.standard): [_contact("G One"), _contact("G Two")],
    }, fail_for={"Beta"})
    companies = [
        CompanyTarget(name="Alpha", domain="alpha.com"),
        CompanyTarget(name="Beta", domain="beta.com"),
        CompanyTarget(name="Gamma", domain="gamma.com"),
    ]

    results = asyncio.run(find_contacts_batch(companies, [searcher], config=fast_batch_config))

    assert [r.company for r in results] == ["Alpha", "Gamma"]
    assert [c.name for c in results[1].contacts] == ["G One", "G Two"]


def test_batch_concurrency_ceiling_and_order(fast_batch_config):
    names = [f"Co{i}" for i in range(7)]
    searcher = StubSearcher(
        "apollo",
        {(n, SearchVariant.standard): [_contact(f"{n} A"), _contact(f"{n} B")] for n in names},
        delay=0.01,
    )
    progress = []

    results = asyncio.run(find_contacts_batch(
        [CompanyTarget(name=n, domain=f"{n.lower()}.com") for n in names],
        [searcher],
        config=fast_batch_config,
        progress_callback=progress.append,
    ))

    assert searcher.max_in_flight == 3
    assert [r.company for r in results] == names
    assert len(progress) == 7


def test_failing_progress_callback_does_not_lose_results(fast_batch_config):
    searcher = StubSearcher("apollo", {
        (n, SearchVariant.standard): [_contact(f"{n} One"), _contact(f"{n} Two")] for n in ("Alpha", "Beta", "Gamma")
    })
    reported = []

    def on_progress(company):
        reported.append(company.name)
        if company.name == "Beta":
            raise RuntimeError("ui sink down")

    results = asyncio.run(find_contacts_batch(
        [CompanyTarget(name=n, domain=f"{n.lower()}.com") for n in ("Alpha", "Beta", "Gamma")],
        [searcher],
        config=fast_batch_config,
        progress_callback=on_progress,
    ))

    assert [r.company for r in results] == ["Alpha", "Beta", "Gamma"]
    assert sorted(reported) == ["Alpha", "Beta", "Gamma"]


def test_batch_email_dedup_first_company_wins(fast_batch_config):
    searcher = StubSearcher("hunter", {
        ("Acme", SearchVariant.standard): [_contact("Jane Doe", "jane@acme.com"), _contact("Bob Lee")],
        ("Acme Labs", SearchVariant.standard): [_contact("Jane D", "Jane@Acme.com"), _contact("Sam Poe")],
    })

    results = asyncio.run(find_contacts_batch(
        [CompanyTarget(name="Acme", domain="acme.com"), CompanyTarget(name="Acme Labs", domain="acmelabs.com")],
        [searcher],
        config=fast_batch_config,
    ))

    assert [c.name for c in results[0].contacts] == ["Jane Doe", "Bob Lee"]
    assert [c.name for c in results[1].contacts] == ["Sam Poe"]


def test_empty_batch_is_input_error(fast_batch_config):
    with pytest.raises(InputError):
        asyncio.run(find_contacts_batch([], [StubSearcher("apollo")], config=fast_batch_config))
    with pytest.raises(InputError):
        asyncio.run(resolve_emails_batch([], waterfall=Waterfall(), config=fast_batch_config))


class EchoFinder(EmailFinder):
    async def find_by_name(self, first_name, last_name, domain):
        if first_name == "Boom":
            raise RuntimeError("finder crashed")
        return ProviderResult(
            email=f"{first_name.lower()}@{domain}",
            confidence_score=90,
            provider_kind=ProviderKind.finder,
            raw_status="found",
        )


def test_resolve_emails_batch_preserves_order_and_isolates_failures(fast_batch_config, fast_waterfall_config):
    contacts = [
        {"name": "Ann Lee", "domain": "a.com"},
        {"name": "", "domain": "b.com"},
        {"name": "Boom Bang", "domain": "c.com"},
        {"name": "Cat Poe", "company": "Delta Inc"},
    ]
    seen = []

    outcomes = asyncio.run(resolve_emails_batch(
        contacts,
        waterfall=Waterfall(EchoFinder(), config=fast_waterfall_config),
        config=fast_batch_config,
        progress_callback=seen.append,
    ))

    assert [o.email for o in outcomes] == ["ann@a.com", None, None, "cat@delta.com"]
    assert outcomes[0].source == ResolutionSource.finder
    assert outcomes[1].error == "person name is required"
    assert outcomes[2].error == "internal resolution error"
    assert outcomes[3].error is None
    assert len(seen) == 4


def test_failing_progress_callback_keeps_resolution_outcomes(fast_batch_config, fast_waterfall_config):
    def on_progress(outcome):
        raise RuntimeError("ui sink down")

    outcomes = asyncio.run(resolve_emails_batch(
        [{"name": "Ann Lee", "domain": "a.com"}, {"name": "Cat Poe", "domain": "c.com"}],
        waterfall=Waterfall(EchoFinder(), config=fast_waterfall_config),
        config=fast_batch_config,
        progress_callback=on_progress,
    ))

    assert [o.email for o in outcomes] == ["ann@a.com", "cat@c.com"]

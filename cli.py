"""Waterfall CLI — contact resolution from the command line.

Commands:
  find-email     Resolve an email for one person (name + company/domain)
  find-emails    Batch resolve emails from a CSV
  find-contacts  Discover decision makers at one company or a CSV of companies
  verify         Verify a single email address
  patterns       Print the candidate addresses for a name + domain
"""

import asyncio
import csv
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from tqdm import tqdm

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent))

from waterfall.batch import find_contacts_batch, resolve_emails_batch
from waterfall.config import BatchConfig
from waterfall.domains import derive_domain
from waterfall.errors import InputError, ProviderNotConfigured
from waterfall.models import CompanyTarget
from waterfall.orchestrator import resolve_email, verify_email_address
from waterfall.patterns import generate_candidates


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def _run(coro):
    """Run a coroutine, turning caller-facing errors into click errors."""
    try:
        return asyncio.run(coro)
    except (InputError, ProviderNotConfigured) as e:
        raise click.ClickException(str(e))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Waterfall — credit-conserving B2B contact resolution."""
    _setup_logging(verbose)


@main.command("find-email")
@click.argument("name")
@click.option("--company", default="", help="Company name")
@click.option("--domain", default=None, help="Company domain")
@click.option("--website", default=None, help="Company website URL")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def find_email_cmd(name: str, company: str, domain: Optional[str], website: Optional[str], json_output: bool):
    """Resolve an email for NAME at a company."""
    outcome = _run(resolve_email(name, company_name=company, domain=domain, website=website))

    if json_output:
        click.echo(json.dumps(outcome.model_dump(mode="json"), indent=2))
        return

    if outcome.email:
        click.echo(f"\n✓ {outcome.email}")
        click.echo(f"  Confidence: {outcome.confidence_score}")
        click.echo(f"  Source:     {outcome.source.value}")
    else:
        click.echo(f"\n✗ No email found for {name}")
    _print_credits(outcome.credits_consumed_by_provider)


@main.command("find-emails")
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output CSV path")
@click.option("--concurrency", "-c", default=None, type=int, help="People resolved at once")
def find_emails_cmd(input_file: str, output: Optional[str], concurrency: Optional[int]):
    """Batch resolve emails from a CSV file.

    CSV must have a name column (or first_name + last_name) and at least one
    of domain, website, company.
    """
    contacts = []
    with open(input_file, newline="") as f:
        for row in csv.DictReader(f):
            name = row.get("name") or " ".join(
                p for p in (row.get("first_name", ""), row.get("last_name", "")) if p
            )
            contacts.append({
                "name": name.strip(),
                "company": (row.get("company") or row.get("company_name") or "").strip(),
                "domain": (row.get("domain") or "").strip() or None,
                "website": (row.get("website") or "").strip() or None,
            })

    if not contacts:
        click.echo("No rows found in CSV.")
        return

    config = BatchConfig()
    if concurrency:
        config.concurrency = concurrency

    click.echo(f"Resolving emails for {len(contacts)} people (concurrency={config.concurrency})...")
    pbar = tqdm(total=len(contacts), desc="Resolving", unit="person")

    def on_progress(outcome):
        pbar.update(1)

    outcomes = _run(resolve_emails_batch(contacts, config=config, progress_callback=on_progress))
    pbar.close()

    found = sum(1 for o in outcomes if o.email)
    click.echo(f"\nFound: {found}/{len(contacts)} emails")

    if output:
        with open(output, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["name", "company", "domain", "email", "confidence", "source", "credits", "error"])
            for contact, outcome in zip(contacts, outcomes):
                writer.writerow([
                    contact["name"],
                    contact["company"],
                    contact["domain"] or derive_domain(None, contact["website"], contact["company"]) or "",
                    outcome.email or "",
                    outcome.confidence_score,
                    outcome.source.value if outcome.source else "",
                    sum(outcome.credits_consumed_by_provider.values()),
                    outcome.error or "",
                ])
        click.echo(f"Results written to {output}")
    else:
        for contact, outcome in zip(contacts, outcomes):
            if outcome.email:
                click.echo(f"  ✓ {contact['name']} → {outcome.email} ({outcome.confidence_score}, {outcome.source.value})")
            elif outcome.error:
                click.echo(f"  ✗ {contact['name']} — {outcome.error}")
            else:
                click.echo(f"  ✗ {contact['name']} — not found")


@main.command("find-contacts")
@click.argument("company", required=False)
@click.option("--domain", default=None, help="Company domain")
@click.option("--website", default=None, help="Company website URL")
@click.option("--file", "input_file", type=click.Path(exists=True), help="CSV with name/domain/website columns")
@click.option("--role", "roles", multiple=True, help="Target role (repeatable)")
@click.option("--prefer", default=None, help="Provider to try first (apollo, hunter, apify)")
@click.option("--skip", "skip", multiple=True, help="Provider to leave out (repeatable)")
@click.option("--reveal-emails", is_flag=True, help="Reveal hidden Apollo emails (1 credit per contact)")
@click.option("--output", "-o", type=click.Path(), help="Output CSV path")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def find_contacts_cmd(
    company: Optional[str],
    domain: Optional[str],
    website: Optional[str],
    input_file: Optional[str],
    roles: tuple,
    prefer: Optional[str],
    skip: tuple,
    reveal_emails: bool,
    output: Optional[str],
    json_output: bool,
):
    """Discover decision makers at COMPANY, or at every company in --file."""
    if input_file:
        with open(input_file, newline="") as f:
            companies = [
                CompanyTarget(
                    name=(row.get("name") or row.get("company") or "").strip(),
                    domain=(row.get("domain") or "").strip() or None,
                    website=(row.get("website") or "").strip() or None,
                )
                for row in csv.DictReader(f)
            ]
    elif company:
        companies = [CompanyTarget(name=company, domain=domain, website=website)]
    else:
        raise click.UsageError("Give a COMPANY or --file")

    pbar = tqdm(total=len(companies), desc="Searching", unit="company", disable=len(companies) < 2)

    def on_progress(target):
        pbar.update(1)

    results = _run(find_contacts_batch(
        companies,
        target_roles=list(roles) or None,
        preferred_provider=prefer,
        skip_providers=list(skip),
        progress_callback=on_progress,
        reveal_emails=reveal_emails,
    ))
    pbar.close()

    if json_output:
        click.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        return

    if output:
        with open(output, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([
                "company", "domain", "name", "title", "seniority", "email",
                "email_confidence", "verified", "linkedin_url", "source",
            ])
            for result in results:
                for c in result.contacts:
                    writer.writerow([
                        result.company, result.domain, c.name, c.title, c.seniority.value,
                        c.email or "", c.email_confidence, c.verified, c.linkedin_url or "", c.source,
                    ])
        click.echo(f"Results written to {output}")
        return

    for result in results:
        via = result.provider_used or "no provider"
        click.echo(f"\n{result.company} ({result.domain}) — {len(result.contacts)} contacts via {via}")
        for c in result.contacts:
            email = f"{c.email} ({c.email_confidence}{', verified' if c.verified else ''})" if c.email else "no email"
            click.echo(f"  {c.name:<28} {c.title[:32]:<32} {c.seniority.value:<10} {email}")
        _print_credits(result.credits_consumed_by_provider)


@main.command()
@click.argument("email")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def verify(email: str, json_output: bool):
    """Verify a single email address."""
    result = _run(verify_email_address(email))

    if json_output:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    icon = "✓" if result.raw_status == "valid" else "~" if result.raw_status == "accept_all" else "✗"
    click.echo(f"\n{icon} {email}")
    click.echo(f"  Status:     {result.raw_status or 'unknown'}")
    click.echo(f"  Confidence: {result.confidence_score}")


@main.command()
@click.argument("name")
@click.argument("domain")
def patterns(name: str, domain: str):
    """Print candidate addresses for NAME at DOMAIN, highest priority first."""
    parts = name.split()
    if not parts:
        raise click.BadParameter("name is empty")
    bare = derive_domain(domain)
    if not bare:
        raise click.BadParameter(f"not a domain: {domain}")
    for candidate in generate_candidates(parts[0], " ".join(parts[1:]), bare):
        click.echo(f"{candidate.rank_index:>2}  {candidate.address:<40} {candidate.pattern}")


def _print_credits(credits: dict[str, int]) -> None:
    if credits:
        spent = ", ".join(f"{k}={v}" for k, v in sorted(credits.items()))
        click.echo(f"  Credits:    {spent}")


if __name__ == "__main__":
    main()

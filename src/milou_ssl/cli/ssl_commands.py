"""SSL certificate CLI commands.

This module provides CLI commands for the certificate lifecycle including:
- ssl status / validate: Inspect the live certificate
- ssl setup / renew: Run the lifecycle policy
- ssl import / consolidate: Adopt existing certificates
- ssl backup / backups / restore / remove: Manage backups
"""

import json
import logging
from pathlib import Path
from typing import Any, NoReturn, Optional, Tuple

import click

from milou_ssl.config import Config, build_lifecycle_context
from milou_ssl.models.certificate import (
    CertificateSource,
    ExitCode,
    FindingKind,
    LifecycleContext,
    LifecycleOutcome,
    ValidationResult,
)
from milou_ssl.tls.acme import AcmeAcquirer, CertbotClient
from milou_ssl.tls.policy import LifecyclePolicy
from milou_ssl.tls.store import CertificateStore
from milou_ssl.utils.exceptions import (
    ImportRejectedError,
    MilouSSLError,
    get_remediation,
)

logger = logging.getLogger(__name__)

PROVIDER_CHOICES = ["auto", "letsencrypt", "self-signed"]

FINDING_SYMBOLS = {
    FindingKind.VALID: ("✓", "green"),
    FindingKind.EXPIRING_SOON: ("⚠", "yellow"),
    FindingKind.BAD_PERMISSIONS: ("⚠", "yellow"),
}


def build_policy(config: Config) -> LifecyclePolicy:
    """Wire the lifecycle policy from configuration."""
    client = CertbotClient(
        command=config.acme.command,
        config_dir=config.acme.config_dir,
        http_port=config.acme.http_port,
        staging=config.acme.staging,
        timeout=config.acme.timeout,
    )
    return LifecyclePolicy(
        acquirer=AcmeAcquirer(client, http_port=config.acme.http_port),
        install_consent=lambda: click.confirm(
            "certbot is not installed. Install it now?", default=False
        ),
    )


def fail(error: MilouSSLError) -> NoReturn:
    """Print an error with remediation and exit with status 1."""
    click.echo(click.style("✗", fg="red", bold=True) + f" {error}", err=True)
    if isinstance(error, ImportRejectedError):
        for finding in error.findings:
            click.echo(f"  - {finding.kind.value}: {finding.message}", err=True)
    click.echo(f"\n{get_remediation(error)}", err=True)
    raise click.exceptions.Exit(int(ExitCode.FAILED))


def echo_result(result: ValidationResult, source: Optional[CertificateSource]) -> None:
    """Print certificate facts and findings."""
    facts = result.facts
    if facts is not None:
        click.echo(f"  Subject CN:  {facts.subject_cn}")
        click.echo(f"  SANs:        {', '.join(facts.subject_alt_names) or '(none)'}")
        click.echo(f"  Issuer CN:   {facts.issuer_cn}")
        click.echo(f"  Valid from:  {facts.not_before:%Y-%m-%d %H:%M} UTC")
        click.echo(f"  Valid until: {facts.not_after:%Y-%m-%d %H:%M} UTC")
        click.echo(f"  Days left:   {result.days_until_expiry}")
        if facts.key_size:
            click.echo(f"  Key size:    {facts.key_size} bits")
    if source is not None:
        click.echo(f"  Source:      {source.value}")

    click.echo("\nFindings:")
    for finding in result.findings:
        symbol, color = FINDING_SYMBOLS.get(finding.kind, ("✗", "red"))
        click.echo(f"  {click.style(symbol, fg=color, bold=True)} {finding.message}")


def echo_outcome(outcome: LifecycleOutcome) -> None:
    """Print a lifecycle outcome and exit with its status."""
    code = outcome.exit_code
    if code == ExitCode.OK:
        mark = click.style("✓", fg="green", bold=True)
    elif code == ExitCode.DEGRADED:
        mark = click.style("⚠", fg="yellow", bold=True)
    else:
        mark = click.style("✗", fg="red", bold=True)

    click.echo(f"{mark} Certificate {outcome.action.value}")
    click.echo(f"  State:       {outcome.state_before.value} -> {outcome.state_after.value}")
    if outcome.backup is not None:
        click.echo(f"  Backup:      {outcome.backup.label}")
    echo_result(outcome.result, outcome.source)

    if outcome.warnings:
        click.echo("\nWarnings:")
        for warning in outcome.warnings:
            click.echo(f"  - {warning}")

    if code != ExitCode.OK:
        raise click.exceptions.Exit(int(code))


def _context(ctx: click.Context, **overrides: Any) -> LifecycleContext:
    try:
        return build_lifecycle_context(ctx.obj["config"], **overrides)
    except MilouSSLError as e:
        fail(e)


@click.group(name="ssl")
def ssl_group() -> None:
    """SSL certificate lifecycle commands.

    Generates, acquires, validates and renews the certificate served by the
    reverse proxy.
    """
    pass


@ssl_group.command(name="status")
@click.option("--domain", type=str, help="Domain to check (default: from config)")
@click.pass_context
def status(ctx: click.Context, domain: Optional[str]) -> None:
    """Show the live certificate, its source and days until expiry."""
    context = _context(ctx, domain=domain)
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])
    store = policy.store_for(context)

    try:
        bundle = store.load()
    except MilouSSLError as e:
        fail(e)

    click.echo(f"Certificate for {context.domain} in {store.ssl_path}:")
    if bundle is None:
        click.echo(click.style("✗", fg="red", bold=True) + " No certificate installed")
        click.echo("\nRun 'milou-ssl ssl setup' to create one.")
        return

    echo_result(policy.assess(context, bundle), bundle.source)


@ssl_group.command(name="validate")
@click.option("--domain", type=str, help="Domain the certificate must serve")
@click.option("--strict", is_flag=True, help="Fail when the domain is not covered")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def validate(ctx: click.Context, domain: Optional[str], strict: bool, as_json: bool) -> None:
    """Validate the live certificate; exit 1 on blocking findings.

    Examples:

        # Check the certificate covers the configured domain
        milou-ssl ssl validate --strict

        # Machine-readable output
        milou-ssl ssl validate --json
    """
    context = _context(ctx, domain=domain, enforce_domain=True if strict else None)
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])

    try:
        bundle = policy.store_for(context).load()
    except MilouSSLError as e:
        fail(e)
    result = policy.assess(context, bundle)
    source = bundle.source if bundle else None

    if as_json:
        click.echo(
            json.dumps(
                {
                    "domain": context.domain,
                    "valid": result.is_valid,
                    "source": source.value if source else None,
                    "days_until_expiry": result.days_until_expiry,
                    "findings": [
                        {
                            "kind": f.kind.value,
                            "message": f.message,
                            "days_left": f.days_left,
                        }
                        for f in result.findings
                    ],
                },
                indent=2,
            )
        )
    else:
        if result.is_valid:
            click.echo(click.style("✓", fg="green", bold=True) + " Certificate is usable")
        else:
            click.echo(click.style("✗", fg="red", bold=True) + " Certificate is not usable")
        echo_result(result, source)

    if not result.is_valid:
        raise click.exceptions.Exit(int(ExitCode.FAILED))


@ssl_group.command(name="setup")
@click.option("--domain", type=str, help="Domain to serve (default: from config)")
@click.option(
    "--provider",
    type=click.Choice(PROVIDER_CHOICES),
    default=None,
    help="Certificate provider (default: from config)",
)
@click.option("--email", type=str, help="Let's Encrypt contact e-mail")
@click.option(
    "--force",
    is_flag=True,
    help="Replace a valid certificate; with --provider letsencrypt, never fall back",
)
@click.option("--non-interactive", is_flag=True, help="Never prompt")
@click.pass_context
def setup(
    ctx: click.Context,
    domain: Optional[str],
    provider: Optional[str],
    email: Optional[str],
    force: bool,
    non_interactive: bool,
) -> None:
    """Ensure a usable certificate is installed.

    Keeps a valid certificate, renews one close to expiry, and otherwise
    acquires one from Let's Encrypt or generates a self-signed one.

    Examples:

        # Self-signed certificate for a domain
        milou-ssl ssl setup --domain app.example.com --provider self-signed

        # Let's Encrypt, failing instead of falling back
        milou-ssl ssl setup --provider letsencrypt --force --email ops@example.com
    """
    context = _context(
        ctx,
        domain=domain,
        provider=provider,
        contact_email=email,
        force=force,
        interactive=not non_interactive,
    )
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])

    try:
        outcome = policy.ensure(context)
    except MilouSSLError as e:
        fail(e)

    echo_outcome(outcome)


@ssl_group.command(name="renew")
@click.option("--domain", type=str, help="Domain to renew (default: from config)")
@click.pass_context
def renew(ctx: click.Context, domain: Optional[str]) -> None:
    """Renew the live certificate now.

    Exits 3 when renewal failed but the current certificate is still usable.
    """
    context = _context(ctx, domain=domain)
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])

    try:
        outcome = policy.renew(context)
    except MilouSSLError as e:
        fail(e)

    echo_outcome(outcome)


@ssl_group.command(name="import")
@click.argument("cert_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("key_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--domain", type=str, help="Domain the certificate must serve")
@click.option("--strict", is_flag=True, help="Reject certificates not covering the domain")
@click.pass_context
def import_cert(
    ctx: click.Context,
    cert_file: Path,
    key_file: Path,
    domain: Optional[str],
    strict: bool,
) -> None:
    """Import your own certificate and private key.

    The previous certificate is backed up first.

    Example:

        milou-ssl ssl import fullchain.pem privkey.pem --domain app.example.com --strict
    """
    context = _context(ctx, domain=domain, enforce_domain=True if strict else None)
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])

    try:
        outcome = policy.import_bundle(context, cert_file.read_bytes(), key_file.read_bytes())
    except MilouSSLError as e:
        fail(e)

    echo_outcome(outcome)


@ssl_group.command(name="consolidate")
@click.option(
    "--location",
    "locations",
    multiple=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to search (repeatable; default: legacy locations from config)",
)
@click.pass_context
def consolidate(ctx: click.Context, locations: Tuple[Path, ...]) -> None:
    """Adopt the first valid certificate found in legacy locations."""
    context = _context(ctx)
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])

    try:
        outcome = policy.consolidate(context, locations or None)
    except MilouSSLError as e:
        fail(e)

    if outcome is None:
        click.echo(
            click.style("✗", fg="red", bold=True)
            + " No valid certificate found in legacy locations"
        )
        raise click.exceptions.Exit(int(ExitCode.FAILED))

    echo_outcome(outcome)


@ssl_group.command(name="backup")
@click.option("--label", type=str, help="Backup name (default: timestamp)")
@click.pass_context
def backup(ctx: click.Context, label: Optional[str]) -> None:
    """Back up the live certificate."""
    context = _context(ctx)
    store = CertificateStore(context.ssl_path, context.cert_name)

    try:
        record = store.backup(label)
    except MilouSSLError as e:
        fail(e)

    if record is None:
        click.echo(click.style("✗", fg="red", bold=True) + " No certificate to back up")
        raise click.exceptions.Exit(int(ExitCode.FAILED))

    click.echo(click.style("✓", fg="green", bold=True) + f" Backup created: {record.label}")
    click.echo(f"  {record.cert_path}")
    click.echo(f"  {record.key_path}")


@ssl_group.command(name="backups")
@click.pass_context
def list_backups(ctx: click.Context) -> None:
    """List certificate backups."""
    context = _context(ctx)
    store = CertificateStore(context.ssl_path, context.cert_name)
    records = store.list_backups()

    if not records:
        click.echo(f"No backups in {store.backups_dir}")
        return

    click.echo(f"Backups in {store.backups_dir}:")
    for record in records:
        click.echo(f"  {record.label:<40} {record.created_at:%Y-%m-%d %H:%M:%S} UTC")


@ssl_group.command(name="restore")
@click.argument("label")
@click.pass_context
def restore(ctx: click.Context, label: str) -> None:
    """Restore a backup (the current certificate is backed up first)."""
    context = _context(ctx)
    policy: LifecyclePolicy = ctx.obj["policy_factory"](ctx.obj["config"])

    try:
        outcome = policy.restore(context, label)
    except MilouSSLError as e:
        fail(e)

    echo_outcome(outcome)


@ssl_group.command(name="remove")
@click.confirmation_option(prompt="Disable SSL and remove the live certificate?")
@click.pass_context
def remove(ctx: click.Context) -> None:
    """Disable SSL: back up and remove the live certificate."""
    context = _context(ctx)
    store = CertificateStore(context.ssl_path, context.cert_name)

    try:
        record = store.remove()
    except MilouSSLError as e:
        fail(e)

    click.echo(click.style("✓", fg="green", bold=True) + " Certificate removed")
    click.echo(f"  Backup: {record.label}")

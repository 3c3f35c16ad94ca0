"""Main CLI entry point for Milou SSL.

This module provides the main Click command group for the milou-ssl CLI.
"""

from pathlib import Path
from typing import Optional

import click

from milou_ssl import __version__
from milou_ssl.cli.container_commands import container_group
from milou_ssl.cli.ssl_commands import build_policy, ssl_group
from milou_ssl.config import load_config
from milou_ssl.logging_audit import configure_logging
from milou_ssl.utils.exceptions import ConfigurationError


@click.group()
@click.version_option(version=__version__, prog_name="milou-ssl")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration file (default: ./config/config.json)",
)
@click.option("--verbose", is_flag=True, help="Enable verbose logging (DEBUG level)")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to log file (overrides config file)",
)
@click.option(
    "--redact-secrets",
    is_flag=True,
    help="Redact e-mail addresses and ACME account ids from logs",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: bool,
    log_file: Optional[Path],
    redact_secrets: bool,
) -> None:
    """Milou SSL - TLS certificate lifecycle manager.

    Generates, acquires (Let's Encrypt), validates and renews the certificate
    served by the Milou reverse proxy.

    Common usage:

        # Show the installed certificate
        milou-ssl ssl status

        # Make sure a usable certificate exists
        milou-ssl ssl setup --domain app.example.com

        # Validate and fail on blocking findings
        milou-ssl ssl validate --strict

    Use --help with any command for more information.
    """
    ctx.ensure_object(dict)

    try:
        config_obj = load_config(config)
        ctx.obj["config"] = config_obj
    except ConfigurationError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        ctx.exit(1)

    # Tests inject a factory with fake ACME and key engines
    ctx.obj.setdefault("policy_factory", build_policy)
    ctx.obj["verbose"] = verbose

    # Precedence: CLI flags > config file > defaults
    log_level = "DEBUG" if verbose else config_obj.logging.level
    log_file_path = log_file if log_file else config_obj.logging.log_file
    redact = redact_secrets or config_obj.logging.redact_secrets

    configure_logging(level=log_level, log_file=log_file_path, redact_secrets=redact)


cli.add_command(ssl_group)
cli.add_command(container_group)


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command()
@click.argument("config_file", type=click.Path(exists=True, path_type=Path))
def validate(config_file: Path) -> None:
    """Validate a configuration file.

    Example:
        milou-ssl config validate config/config.json
    """
    try:
        config_obj = load_config(config_file)
    except ConfigurationError as e:
        click.echo(click.style("✗", fg="red", bold=True) + " Configuration validation failed")
        click.echo(f"\n{e}", err=True)
        raise click.exceptions.Exit(1)

    click.echo(click.style("✓", fg="green", bold=True) + " Configuration is valid")
    click.echo(f"\nConfiguration file: {config_file}")

    click.echo("\nSSL:")
    click.echo(f"  Domain:      {config_obj.ssl.domain}")
    click.echo(f"  SSL path:    {config_obj.ssl.ssl_path}")
    click.echo(f"  Provider:    {config_obj.ssl.provider}")
    click.echo(f"  Contact:     {config_obj.ssl.contact_email or 'admin@' + config_obj.ssl.domain}")
    click.echo(f"  Renew at:    {config_obj.ssl.renewal_threshold_days} days before expiry")
    click.echo(f"  Strict:      {config_obj.ssl.enforce_domain}")

    click.echo("\nACME:")
    click.echo(f"  Client:      {config_obj.acme.command}")
    click.echo(f"  Staging:     {config_obj.acme.staging}")
    click.echo(f"  HTTP port:   {config_obj.acme.http_port}")

    click.echo("\nContainer:")
    click.echo(f"  Name:        {config_obj.container.name}")
    click.echo(f"  SSL path:    {config_obj.container.ssl_path}")

    click.echo("\nLogging:")
    click.echo(f"  Level:       {config_obj.logging.level}")
    click.echo(f"  Log file:    {config_obj.logging.log_file}")


cli.add_command(config)


@cli.command()
def version() -> None:
    """Display version information."""
    click.echo(f"milou-ssl version {__version__}")


if __name__ == "__main__":
    cli()

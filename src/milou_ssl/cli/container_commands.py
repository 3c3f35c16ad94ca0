"""Container CLI commands.

Copy the certificate pair into or out of the running reverse-proxy container.
"""

import logging

import click

from milou_ssl.cli.ssl_commands import fail
from milou_ssl.config import Config, build_lifecycle_context
from milou_ssl.tls.container import ContainerBridge
from milou_ssl.tls.store import CertificateStore
from milou_ssl.utils.exceptions import MilouSSLError

logger = logging.getLogger(__name__)


def _bridge_and_store(config: Config) -> tuple[ContainerBridge, CertificateStore]:
    context = build_lifecycle_context(config)
    bridge = ContainerBridge(
        container_name=config.container.name,
        container_ssl_path=config.container.ssl_path,
        docker_command=config.container.docker_command,
        timeout=config.container.timeout,
    )
    return bridge, CertificateStore(context.ssl_path, context.cert_name)


@click.group(name="container")
def container_group() -> None:
    """Reverse-proxy container certificate commands."""
    pass


@container_group.command(name="export")
@click.pass_context
def export(ctx: click.Context) -> None:
    """Copy the container's certificate into the backups directory.

    Use 'milou-ssl ssl restore <label>' afterwards to make it live.
    """
    bridge, store = _bridge_and_store(ctx.obj["config"])

    try:
        record = bridge.export_to_store(store)
    except MilouSSLError as e:
        fail(e)

    click.echo(
        click.style("✓", fg="green", bold=True)
        + f" Exported certificate from {bridge.container_name}"
    )
    click.echo(f"  Backup: {record.label}")
    click.echo(f"\nRun 'milou-ssl ssl restore {record.label}' to make it live.")


@container_group.command(name="inject")
@click.pass_context
def inject(ctx: click.Context) -> None:
    """Copy the live certificate into the running container."""
    bridge, store = _bridge_and_store(ctx.obj["config"])

    try:
        bridge.inject_from_store(store)
    except MilouSSLError as e:
        fail(e)

    click.echo(
        click.style("✓", fg="green", bold=True)
        + f" Installed certificate in {bridge.container_name}"
    )
    click.echo("  Reload the reverse proxy to serve it.")

"""CLI entry point for the premium sync listener."""

from __future__ import annotations

import sys

import click


@click.group()
def main() -> None:
    """On-chain premium registration listener."""


@main.command()
@click.option("--config", default=None, help="TOML config file path")
@click.option("--memory", "in_memory", is_flag=True, help="Use an in-memory account store (dry run)")
def run(config: str | None, in_memory: bool) -> None:
    """Run the listener until interrupted."""
    import asyncio

    from .main import run as run_listener

    sys.exit(asyncio.run(run_listener(config_path=config, in_memory=in_memory)))


@main.command("check-config")
@click.option("--config", default=None, help="TOML config file path")
def check_config(config: str | None) -> None:
    """Validate configuration without connecting."""
    from .chain.signature import parse_event_signature
    from .core.address import normalize
    from .core.config import load_settings
    from .core.errors import ConfigError, InvalidAddress

    settings = load_settings(config_path=config)
    chain = settings.chain
    ok = True

    endpoint = chain.resolve_endpoint()
    if endpoint is None:
        click.echo("endpoint:  not configured (listener disabled)")
    else:
        click.echo(f"endpoint:  {endpoint}")

    try:
        click.echo(f"contract:  {normalize(chain.contract_address)}")
    except InvalidAddress as exc:
        ok = ok and endpoint is None
        click.echo(f"contract:  INVALID ({exc.reason})")

    try:
        signature = parse_event_signature(chain.event_signature)
        click.echo(f"event:     {signature.canonical}")
        click.echo(f"topic0:    {signature.topic0}")
    except ConfigError as exc:
        ok = False
        click.echo(f"event:     INVALID ({exc})")

    click.echo(
        f"reconnect: max_attempts={settings.reconnect.max_attempts} "
        f"base={settings.reconnect.base_delay_seconds}s max={settings.reconnect.max_delay_seconds}s"
    )
    if not ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()

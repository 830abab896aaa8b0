"""CLI entry point for the zap directory service."""

from __future__ import annotations

import json

import click
from pydantic import ValidationError

from .core.errors import ConfigError


@click.group()
def main() -> None:
    """NIP-05 directory of zap senders, published to Blossom."""


@main.command()
@click.option("--config", default=None, help="Config file path (TOML)")
def run(config: str | None) -> None:
    """Run the service until interrupted."""
    import asyncio

    from .main import run as run_service

    try:
        asyncio.run(run_service(config_path=config))
    except (ConfigError, ValidationError) as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.option("--config", default=None, help="Config file path (TOML)")
@click.option("--dry-run", is_flag=True, help="Compute and print the document; write nothing")
def once(config: str | None, dry_run: bool) -> None:
    """Backfill, run a single cycle and print the report as JSON."""
    import asyncio

    from .main import run_once

    try:
        summary = asyncio.run(run_once(config_path=config, dry_run=dry_run))
    except (ConfigError, ValidationError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(json.dumps(summary, indent=2, ensure_ascii=False))
    if summary.get("outcome") == "failed":
        raise SystemExit(1)


if __name__ == "__main__":
    main()

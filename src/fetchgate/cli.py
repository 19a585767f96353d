"""Command-line diagnostics for fetchgate."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from pydantic import ValidationError

from fetchgate import __version__
from fetchgate.config.config import FetchConfig, Settings, load_settings
from fetchgate.fetcher.errors import FetchError
from fetchgate.fetcher.http_client import FetchExecutor
from fetchgate.metadata.tmdb import TMDBClient
from fetchgate.observability import export_prometheus
from fetchgate.observability.logging import configure_logging

logger = structlog.get_logger(__name__)


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="YAML configuration file")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level (overrides configuration)",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: Optional[str]) -> None:
    """fetchgate - resilient outbound HTTP fetch layer."""
    ctx.ensure_object(dict)
    try:
        settings = load_settings(Path(config) if config else None)
    except (ValidationError, FileNotFoundError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    if log_level:
        settings.monitoring.log_level = log_level
    configure_logging(settings.monitoring)
    ctx.obj["settings"] = settings


@cli.command()
@click.argument("url")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds")
@click.option("--header", "-H", multiple=True, help="Extra header, 'Name: value' (repeatable)")
@click.option("--body/--no-body", default=False, help="Print the response body")
@click.option("--metrics", is_flag=True, help="Print Prometheus metrics after the fetch")
@click.pass_context
def fetch(ctx: click.Context, url: str, timeout: Optional[float], header: tuple, body: bool, metrics: bool) -> None:
    """Fetch URL once through the executor and report the outcome."""
    headers = {}
    for raw in header:
        name, sep, value = raw.partition(":")
        if not sep:
            raise click.BadParameter(f"expected 'Name: value', got {raw!r}", param_hint="--header")
        headers[name.strip()] = value.strip()

    async def run() -> int:
        async with FetchExecutor(_settings(ctx).fetcher) as executor:
            try:
                response = await executor.perform(url, FetchConfig(timeout=timeout, headers=headers))
            except FetchError as e:
                click.echo(json.dumps({"error": e.kind, "message": str(e)}), err=True)
                response = None
        if response is not None:
            click.echo(
                json.dumps(
                    {
                        "status": response.status,
                        "final_url": response.final_url,
                        "bytes": len(response.body),
                        "attempts": response.attempts,
                    }
                )
            )
            if body:
                click.echo(response.text())
        if metrics:
            click.echo(export_prometheus())
        return 0 if response is not None else 1

    sys.exit(asyncio.run(run()))


@cli.command("tmdb-id")
@click.argument("imdb_id")
@click.option("--api-key", envvar="TMDB_API_KEY", default=None, help="TMDB API key (defaults to configuration)")
@click.pass_context
def tmdb_id(ctx: click.Context, imdb_id: str, api_key: Optional[str]) -> None:
    """Translate an IMDb ID into a TMDB ID."""
    settings = _settings(ctx)

    async def run() -> int:
        async with FetchExecutor(settings.fetcher) as executor:
            try:
                client = TMDBClient(executor, api_key, settings=settings.tmdb)
            except ValueError as e:
                raise click.ClickException(str(e)) from e
            try:
                click.echo(await client.external_to_internal_id(imdb_id))
            except FetchError as e:
                click.echo(json.dumps({"error": e.kind, "message": str(e)}), err=True)
                return 1
        return 0

    sys.exit(asyncio.run(run()))


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration (API key redacted)."""
    data = _settings(ctx).model_dump(mode="json")
    if data["tmdb"]["api_key"]:
        data["tmdb"]["api_key"] = "***"
    click.echo(json.dumps(data, indent=2))


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

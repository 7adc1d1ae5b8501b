"""
Click CLI for the screener engine.

This module implements the `screener` CLI tool with `serve`, `presets` and `status`
subcommands.
"""

import asyncio
import json
import logging
import sys

import click
import uvicorn

from screener.cli.status import format_status, query_status
from screener.common.logging import setup_logging
from screener.config.settings import get_settings
from screener.screening.models import FilterCondition
from screener.screening.presets import PRESETS, PresetCategory

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def validate_log_level(
    _ctx: click.Context, _param: click.Parameter, value: str | None
) -> str | None:
    """Validate log level."""
    if value is None:
        return None
    value_upper = value.upper()
    if value_upper not in VALID_LOG_LEVELS:
        raise click.BadParameter(
            f"Invalid log level: '{value}'. "
            f"Valid levels: {', '.join(VALID_LOG_LEVELS)}"
        )
    return value_upper


def validate_port(
    _ctx: click.Context, _param: click.Parameter, value: int | None
) -> int | None:
    if value is not None and not 1 <= value <= 65535:
        raise click.BadParameter(f"Invalid port: {value}. Expected 1-65535")
    return value


def _describe_condition(condition: FilterCondition) -> str:
    value = list(condition.value) if isinstance(condition.value, tuple) else condition.value
    return f"{condition.field.value} {condition.operator.value} {value}"


@click.group()
@click.version_option(version="0.1.0", prog_name="screener")
def cli() -> None:
    """Real-time stock screener.

    \b
    Commands:
      serve    Start the REST and WebSocket server
      presets  List the preset filters
      status   Show indicators mirrored to Redis
    """
    pass


@cli.command()
@click.option("--host", default=None, help="Bind address. Default: SCREENER_HOST or 0.0.0.0")
@click.option(
    "--port", default=None, type=int, callback=validate_port, help="Port. Default: 8000"
)
@click.option(
    "--log-level",
    default=None,
    callback=validate_log_level,
    help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: SCREENER_LOG_LEVEL or INFO",
)
@click.option("--reload", is_flag=True, default=False, help="Reload on code changes.")
def serve(host: str | None, port: int | None, log_level: str | None, reload: bool) -> None:
    """Start the REST and WebSocket server.

    \b
    Example:
      screener serve --port 8080 --log-level DEBUG
    """
    settings = get_settings()
    level = log_level or settings.log_level
    setup_logging(
        level=level,
        log_dir=settings.log_dir,
        file=settings.log_to_file,
        json_format=settings.log_json,
    )
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Screener - Starting")
    logger.info("=" * 60)
    logger.info("  Bind:        %s:%s", host or settings.host, port or settings.port)
    logger.info("  Bar source:  %s", settings.bar_source)
    logger.info("  Refresh:     every %ss", settings.refresh_interval_seconds)
    logger.info("  Log Level:   %s", level)
    logger.info("=" * 60)

    try:
        uvicorn.run(
            "screener.api.main:app",
            host=host or settings.host,
            port=port or settings.port,
            reload=reload,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal - shutting down")
    except Exception as e:
        logger.error("Fatal error: %s", e, exc_info=True)
        sys.exit(1)


@cli.command()
@click.option(
    "--category",
    type=click.Choice([c.value for c in PresetCategory]),
    default=None,
    help="Only list presets in this category.",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output in JSON format for machine consumption.",
)
def presets(category: str | None, as_json: bool) -> None:
    """List the preset filters.

    \b
    Example:
      screener presets
      screener presets --category momentum --json
    """
    selected = [p for p in PRESETS if category is None or p.category.value == category]

    if as_json:
        click.echo(json.dumps([p.model_dump(mode="json") for p in selected], indent=2))
        return

    for preset in selected:
        conditions = " AND ".join(_describe_condition(c) for c in preset.conditions)
        sort = f"{preset.sortBy.value} {preset.sortOrder.value}" if preset.sortBy else "-"
        click.echo(f"{preset.id:<16s} {preset.category.value:<14s} {preset.name}")
        click.echo(f"{'':<16s} where {conditions or 'always'}; sort {sort}")


@cli.command()
@click.option("--redis-url", default=None, help="Redis URL. Default: SCREENER_REDIS_URL")
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    default=False,
    help="Output in JSON format for machine consumption.",
)
def status(redis_url: str | None, as_json: bool) -> None:
    """Show indicator vectors mirrored to Redis.

    \b
    Example:
      screener status
      screener status --json
    """
    result = asyncio.run(query_status(redis_url or get_settings().redis_url))
    click.echo(format_status(result, as_json=as_json))
    if result.error:
        sys.exit(1)


def main() -> None:
    """Entry point for the screener CLI."""
    cli()


if __name__ == "__main__":
    main()

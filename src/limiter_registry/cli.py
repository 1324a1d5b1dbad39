"""Command-line interface for limiter-registry administration."""

import asyncio
import json
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from .config import RegistrySettings
from .exceptions import LimiterRegistryError
from .reconciler import Reconciler
from .registry import LimiterRegistry
from .repository import Repository
from .structured_logging import configure_logging
from .visualization import ViewFormat, format_views

T = TypeVar("T")


def _build_registry(settings: RegistrySettings) -> LimiterRegistry:
    """Create the registry used by commands (patched in tests)."""
    return LimiterRegistry.from_settings(settings)


def _run(settings: RegistrySettings, operation: Callable[[LimiterRegistry], Awaitable[T]]) -> T:
    """Run an async operation against a fresh registry and close it afterwards."""

    async def _main() -> T:
        registry = _build_registry(settings)
        try:
            return await operation(registry)
        finally:
            await registry.close()

    try:
        return asyncio.run(_main())
    except LimiterRegistryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="limiter-registry")
@click.option("--table", "table_name", help="DynamoDB table (env: LIMITER_REGISTRY_TABLE).")
@click.option("--region", help="AWS region (env: LIMITER_REGISTRY_REGION).")
@click.option(
    "--endpoint-url",
    help="DynamoDB endpoint URL, e.g. http://localhost:4566 for LocalStack.",
)
@click.option("--redis-url", help="Redis URL (env: LIMITER_REGISTRY_REDIS_URL).")
@click.option("--key-prefix", help="Mirror key prefix (env: LIMITER_REGISTRY_KEY_PREFIX).")
@click.option("--log-level", help="Log level (env: LIMITER_REGISTRY_LOG_LEVEL).")
@click.option("--log-json/--no-log-json", default=False, help="Emit JSON log lines.")
@click.pass_context
def cli(
    ctx: click.Context,
    table_name: str | None,
    region: str | None,
    endpoint_url: str | None,
    redis_url: str | None,
    key_prefix: str | None,
    log_level: str | None,
    log_json: bool,
) -> None:
    """limiter-registry administration CLI."""
    try:
        settings = RegistrySettings.from_env(
            table_name=table_name,
            region=region,
            endpoint_url=endpoint_url,
            redis_url=redis_url,
            key_prefix=key_prefix,
            log_level=log_level.upper() if log_level else None,
        )
    except LimiterRegistryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    configure_logging(settings.log_level, json_format=log_json)
    ctx.obj = settings


@cli.command("create-table")
@click.pass_obj
def create_table(settings: RegistrySettings) -> None:
    """Create the registry table if it does not exist."""

    async def _create() -> None:
        async with Repository(
            table_name=settings.table_name,
            region=settings.region,
            endpoint_url=settings.endpoint_url,
        ) as repo:
            await repo.create_table()

    try:
        asyncio.run(_create())
    except LimiterRegistryError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Table {settings.table_name} is ready")


@cli.command("list")
@click.option("--app", "-a", required=True, help="App context to list limiters for.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([f.value for f in ViewFormat]),
    default=ViewFormat.TABLE.value,
    help="Output format.",
)
@click.pass_obj
def list_limiters(settings: RegistrySettings, app: str, output_format: str) -> None:
    """List the limiters an app context depends on, with live mirror values."""
    views = _run(settings, lambda registry: registry.list_for_context(app))
    click.echo(format_views(views, ViewFormat(output_format)))


@cli.command("show")
@click.argument("name")
@click.pass_obj
def show(settings: RegistrySettings, name: str) -> None:
    """Show a limiter definition and its mirror."""

    async def _show(registry: LimiterRegistry) -> dict[str, Any] | None:
        definition = await registry.find_by_name(name)
        views = await registry.read_views([name])
        if definition is None and not views:
            return None
        return {
            "definition": definition.to_dict() if definition else None,
            "mirror": views[0].as_dict() if views else None,
        }

    result = _run(settings, _show)
    if result is None:
        click.echo(f"Limiter not found: {name}", err=True)
        sys.exit(1)
    click.echo(json.dumps(result, indent=2))


@cli.command("set")
@click.argument("name")
@click.option("--app", "-a", required=True, help="App context depending on the limiter.")
@click.option("--max-permits", "-m", type=int, required=True, help="Bucket capacity.")
@click.option("--rate", "-r", type=int, required=True, help="Refill rate.")
@click.pass_obj
def set_limiter(
    settings: RegistrySettings,
    name: str,
    app: str,
    max_permits: int,
    rate: int,
) -> None:
    """Create or update a limiter and add APP to its app contexts."""
    stored = _run(
        settings,
        lambda registry: registry.save_or_update(name, app, max_permits, rate),
    )
    click.echo(
        f"Saved {stored.name}: apps={stored.encoded_apps} "
        f"max_permits={stored.max_permits} rate={stored.rate}"
    )


@cli.command("delete")
@click.argument("name")
@click.option("--app", "-a", required=True, help="App context to remove.")
@click.pass_obj
def delete(settings: RegistrySettings, name: str, app: str) -> None:
    """Remove APP from a limiter; the limiter is deleted with its last app."""

    async def _delete(registry: LimiterRegistry) -> tuple[bool, Any]:
        existed = await registry.find_by_name(name) is not None
        return existed, await registry.delete(app, name)

    existed, stored = _run(settings, _delete)
    if not existed:
        click.echo(f"Limiter not found: {name} (nothing to do)")
    elif stored is None:
        click.echo(f"Deleted {name}: no app contexts left")
    else:
        click.echo(f"Updated {name}: apps={stored.encoded_apps}")


@cli.command("purge-mirror")
@click.argument("name")
@click.pass_obj
def purge_mirror(settings: RegistrySettings, name: str) -> None:
    """Remove the orphaned mirror of a deleted limiter."""
    removed = _run(settings, lambda registry: registry.purge_mirror(name))
    if removed:
        click.echo(f"Mirror of {name} removed")
    else:
        click.echo(f"No mirror found for {name}")


@cli.command("reconcile")
@click.option("--once", is_flag=True, help="Run a single tick and exit.")
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between ticks (env: LIMITER_REGISTRY_RECONCILE_INTERVAL, default: 60).",
)
@click.pass_obj
def reconcile(settings: RegistrySettings, once: bool, interval: float | None) -> None:
    """Re-sync every mirror from the registry (once, or until interrupted)."""
    interval_seconds = interval if interval is not None else settings.reconcile_interval
    if interval_seconds <= 0:
        click.echo("Error: --interval must be positive", err=True)
        sys.exit(1)

    if once:

        async def _tick(registry: LimiterRegistry) -> dict[str, Any]:
            result = await Reconciler(registry, interval_seconds).run_once()
            return result.as_dict()

        summary = _run(settings, _tick)
        click.echo(json.dumps(summary, indent=2))
        if summary["errors"]:
            sys.exit(1)
        return

    async def _serve(registry: LimiterRegistry) -> None:
        reconciler = Reconciler(registry, interval_seconds)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, reconciler.request_stop)
        reconciler.start()
        await reconciler.wait()
        await reconciler.stop()

    click.echo(f"Reconciling every {interval_seconds:g}s (Ctrl+C to stop)")
    _run(settings, _serve)
    click.echo("Reconciler stopped")


def main() -> None:
    """Entry point for the limiter-registry console script."""
    cli()


if __name__ == "__main__":
    main()

"""
Command-line interface for humdata-orchestrator.

Diagnostic commands over the consolidation service. Commands can be
chained so state from one (toggles, cache, rate-limit windows) is
visible to the next within the same process.

Usage:
    humdata sources                       # List configured sources
    humdata fetch tech4palestine un_ocha  # Consolidated fetch, JSON summary
    humdata fetch --refresh wfp           # Bypass cache reads
    humdata toggle pcbs --enable fetch pcbs status
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import click
import structlog

from humdata.config.settings import get_settings
from humdata.consolidation.schemas import ConsolidationOptions
from humdata.consolidation.service import ConsolidationService
from humdata.errors import CatalogueError, UnknownSourceError
from humdata.observability.logging import bind_context, clear_context, setup_logging
from humdata.observability.metrics import get_metrics

logger = structlog.get_logger(__name__)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _service(ctx: click.Context) -> ConsolidationService:
    return ctx.find_root().obj


@click.group(chain=True)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--catalogue",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Source catalogue JSON (defaults to the bundled catalogue)",
)
@click.option("--metrics", is_flag=True, help="Expose Prometheus metrics while running")
@click.pass_context
def main(ctx: click.Context, debug: bool, catalogue: Path | None, metrics: bool) -> None:
    """Humanitarian data orchestrator - multi-source fetch diagnostics."""
    setup_logging("DEBUG" if debug else None)

    if metrics:
        get_metrics().start_server()

    # A pre-built service may be supplied through ctx.obj (tests, embedding)
    if ctx.obj is None:
        settings = get_settings()
        if catalogue is not None:
            settings = settings.model_copy(update={"sources_file": catalogue})
        try:
            ctx.obj = ConsolidationService.build(settings)
        except CatalogueError as e:
            raise click.ClickException(str(e)) from e


@main.command()
@click.pass_context
def sources(ctx: click.Context) -> None:
    """List configured sources in priority order."""
    registry = _service(ctx).registry
    descriptors = sorted(registry.list(), key=lambda d: (d.priority, d.id))
    _echo_json(
        [
            {
                "id": d.id,
                "name": d.display_name,
                "enabled": d.enabled,
                "priority": d.priority,
                "payload_kind": d.payload_kind.value,
                "reliability": d.reliability.value,
                "update_frequency": d.update_frequency.value,
                "cache_ttl_seconds": d.cache_ttl_seconds,
                "rate_limit": f"{d.rate_limit.limit}/{d.rate_limit.window_seconds:g}s",
            }
            for d in descriptors
        ]
    )


@main.command()
@click.argument("source_ids", nargs=-1)
@click.option("--refresh", is_flag=True, help="Bypass cache reads")
@click.option("--all", "fetch_all", is_flag=True, help="Fetch every enabled source")
@click.pass_context
def fetch(ctx: click.Context, source_ids: tuple[str, ...], refresh: bool, fetch_all: bool) -> None:
    """Fetch sources and print a consolidated summary."""
    service = _service(ctx)
    if not source_ids and not fetch_all:
        raise click.UsageError("Name at least one source, or pass --all")

    options = ConsolidationOptions(bypass_cache=refresh)

    async def run():
        bind_context(command="fetch", refresh=refresh)
        try:
            if fetch_all:
                return await service.fetch_enabled(options)
            return await service.fetch_consolidated(source_ids, options)
        finally:
            # Each command runs its own event loop; the client is recreated lazily
            await service.aclose()
            clear_context()

    result = asyncio.run(run())
    _echo_json(result.to_dict())


@main.command()
@click.argument("source_ids", nargs=-1)
@click.pass_context
def status(ctx: click.Context, source_ids: tuple[str, ...]) -> None:
    """Show rate-limit windows, request performance and cache state."""
    service = _service(ctx)
    executor = service.executor
    ids = source_ids or tuple(d.id for d in service.registry.list())

    report = []
    for source_id in ids:
        if source_id not in service.registry:
            raise click.BadParameter(f"Unknown source: {source_id}", param_hint="SOURCE_IDS")
        window = executor.rate_limiter.status(source_id)
        perf = executor.performance.source_metrics(source_id)
        report.append(
            {
                "id": source_id,
                "enabled": service.registry.get(source_id).enabled,
                "rate_limit": {
                    "request_count": window.request_count,
                    "limit": window.limit,
                    "window_reset_in_seconds": round(window.window_reset_in_seconds, 1),
                },
                "performance": {
                    "requests": perf.total_requests,
                    "success_rate": round(perf.success_rate, 3),
                    "p50_latency": round(perf.p50_latency, 3),
                    "p95_latency": round(perf.p95_latency, 3),
                    "last_error": perf.last_error,
                },
            }
        )

    stats = service.cache_stats()
    _echo_json({"sources": report, "cache": {"size": stats.size, "keys": stats.keys}})


@main.command()
@click.argument("source_id")
@click.option("--enable/--disable", "enabled", default=None, help="New state (required)")
@click.pass_context
def toggle(ctx: click.Context, source_id: str, enabled: bool | None) -> None:
    """Enable or disable a source for the rest of this invocation."""
    if enabled is None:
        raise click.UsageError("Pass --enable or --disable")
    service = _service(ctx)
    try:
        descriptor = service.registry.set_enabled(source_id, enabled)
    except UnknownSourceError as e:
        raise click.BadParameter(str(e), param_hint="SOURCE_ID") from e

    logger.info("Source toggled", source_id=source_id, enabled=enabled)
    _echo_json({"id": descriptor.id, "enabled": descriptor.enabled})


if __name__ == "__main__":
    main()

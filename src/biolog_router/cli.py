"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Command-line interface for the biolog-router service.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional
import click
from loguru import logger

from .core.config import settings
from .core.exceptions import BiologRouterError, ConfigurationError
from .core.logging_setup import configure_logging
from .core.models import ClassificationTag
from .core.router import LogRouter
from .rules.ruleset import load_rule_set
from .services.sinks import MemorySink
from .services.tailer import FileTailer, assemble_records


def _make_router(ctx: click.Context, dry_run: bool = False) -> LogRouter:
    """Router built from the CLI's settings; dry runs deliver to memory only."""
    cli_settings = ctx.obj["settings"]
    if dry_run:
        rule_set = load_rule_set(cli_settings.rules_path, strict=cli_settings.strict_rules)
        router = LogRouter(
            settings=cli_settings,
            rule_set=rule_set,
            sinks={name: MemorySink(name) for name in rule_set.destinations},
        )
    else:
        router = LogRouter(settings=cli_settings)
    router.initialize()
    return router


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--log-file', help='Log file path')
@click.option('--alert-log-file', help='File receiving only operator diagnostics')
@click.option('--rules', 'rules_path', type=click.Path(exists=True, path_type=Path), help='Rule-set YAML file')
@click.pass_context
def cli(ctx: click.Context, debug: bool, log_file: Optional[str], alert_log_file: Optional[str], rules_path: Optional[Path]):
    """Bio-pharma log classification and routing CLI."""
    log_level = "DEBUG" if debug else settings.log_level
    configure_logging(
        level=log_level,
        log_file=log_file or settings.log_file,
        alert_log_file=alert_log_file or settings.alert_log_file,
    )

    updates = {}
    if rules_path:
        updates["rules_path"] = rules_path
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings.model_copy(update=updates)

    logger.debug(f"Starting biolog-router CLI v{settings.app_version}")


@cli.command("validate-rules")
@click.argument('rules_file', required=False, type=click.Path(exists=True, path_type=Path))
@click.option('--strict/--lenient', default=True, help='Fail on any invalid source')
@click.pass_context
def validate_rules(ctx: click.Context, rules_file: Optional[Path], strict: bool):
    """Validate a rule set without routing anything."""
    path = rules_file or ctx.obj["settings"].rules_path
    try:
        rule_set = load_rule_set(path, strict=strict)
    except ConfigurationError as e:
        click.echo(f"❌ Invalid rule set: {e}")
        sys.exit(1)

    click.echo(f"✅ Rule set is valid: {rule_set.origin}")
    click.echo(f"  Destinations: {', '.join(rule_set.destinations)}")
    click.echo(f"  Sources: {', '.join(s.value for s in rule_set.sources)}")

    for source in rule_set.sources:
        uncovered = rule_set.uncovered_tags(source)
        if uncovered:
            click.echo(
                f"  ⚠️  {source.value}: no route for {', '.join(t.value for t in uncovered)} "
                f"(falls back to {rule_set.fallback_destination})"
            )

    if rule_set.rejected:
        click.echo("Rejected sources:")
        for name, error in rule_set.rejected.items():
            click.echo(f"  - {name}: {error}")
        sys.exit(1)


@cli.command()
@click.pass_context
def sources(ctx: click.Context):
    """List configured source systems and their routes."""
    try:
        router = _make_router(ctx, dry_run=True)
    except BiologRouterError as e:
        click.echo(f"❌ Error: {e}")
        sys.exit(1)

    for entry in router.describe_sources():
        masking = f" [masking: {entry['masking']}]" if entry["masking"] else ""
        click.echo(f"{entry['source_system']}{masking}")
        for route in entry["routes"]:
            click.echo(
                f"  {','.join(route['tags']):<40} -> {route['destination']} "
                f"({route['tier']}, {route['retention_days']} days)"
            )


@cli.command()
@click.argument('source_system')
@click.argument('payload')
@click.option('--timestamp', help='ISO-8601 creation time')
@click.pass_context
def classify(ctx: click.Context, source_system: str, payload: str, timestamp: Optional[str]):
    """Show how a single payload would be classified, masked and routed."""
    try:
        router = _make_router(ctx, dry_run=True)
        record = router.prepare(source_system, payload, timestamp)
    except BiologRouterError as e:
        click.echo(f"❌ Error: {e}")
        sys.exit(1)

    destinations = router.rule_set.destinations_for(record.source_system, record.classification_tags)
    output = {
        "record_id": record.record_id,
        "source_system": record.source_system.value,
        "timestamp": record.timestamp.isoformat(),
        "classification_tags": sorted(t.value for t in record.classification_tags),
        "extracted_fields": record.extracted_fields,
        "masked_payload": record.masked_payload,
        "metadata": record.metadata,
        "destinations": [d.name for d in destinations] or [f"{router.rule_set.fallback_destination} (routing gap)"],
    }
    click.echo(json.dumps(output, indent=2))


@cli.command()
@click.argument('log_file', type=click.Path(exists=True, path_type=Path))
@click.option('--source', '-s', 'source_system', required=True, help='Source system of the file')
@click.option('--dry-run', is_flag=True, help='Classify and transform without writing to destinations')
@click.option('--max-concurrent', default=None, type=int, help='Maximum records in flight')
@click.pass_context
def route(ctx: click.Context, log_file: Path, source_system: str, dry_run: bool, max_concurrent: Optional[int]):
    """Route every record of a log file."""
    async def _route():
        try:
            router = _make_router(ctx, dry_run=dry_run)
        except BiologRouterError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)

        try:
            router.rule_set.rules_for(source_system)

            with open(log_file, 'r', encoding='utf-8', errors='replace') as f:
                events = [
                    {"source_system": source_system, "raw_payload": payload}
                    for payload in assemble_records(f)
                ]

            if not events:
                click.echo("No records found")
                return

            click.echo(f"Found {len(events)} records")
            with click.progressbar(length=len(events), label='Routing records') as bar:
                results = await router.process_batch(events, max_concurrent=max_concurrent)
                bar.update(len(results))

            routed = [r for r in results if not isinstance(r, Exception)]
            failed = [r for r in results if isinstance(r, Exception)]
            counters = router.get_stats()["counters"]

            click.echo(f"\n✅ Routing completed: {len(routed)} routed, {len(failed)} rejected")
            for tag in ClassificationTag:
                click.echo(f"  {tag.value}: {counters.get(f'classified.{tag.value}', 0)}")
            click.echo(f"  Masked: {counters.get('records_masked', 0)}")
            click.echo(f"  Routing gaps: {counters.get('routing_gaps', 0)}")
            click.echo(f"  Dead-lettered: {counters.get('dead_lettered', 0)}")
            for error in failed[:5]:
                click.echo(f"❌ {error}")
        except BiologRouterError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)
        finally:
            await router.close()

    asyncio.run(_route())


@cli.command()
@click.argument('log_file', type=click.Path(path_type=Path))
@click.option('--source', '-s', 'source_system', required=True, help='Source system of the file')
@click.option('--from-start', is_flag=True, help='Route existing content before following')
@click.option('--poll-interval', default=None, type=float, help='Seconds between polls')
@click.pass_context
def tail(ctx: click.Context, log_file: Path, source_system: str, from_start: bool, poll_interval: Optional[float]):
    """Follow a log file and route records as they are written."""
    async def _tail():
        try:
            router = _make_router(ctx)
            router.rule_set.rules_for(source_system)
        except BiologRouterError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)

        interval = poll_interval or ctx.obj["settings"].tail_poll_interval
        click.echo(f"Following {log_file} as {source_system} (Ctrl+C to stop)")
        tailer = FileTailer(log_file, from_start=from_start)
        try:
            async for payload in tailer.follow(poll_interval=interval):
                result = await router.process(source_system, payload)
                logger.debug(f"Routed {result.record_id} to {', '.join(result.delivered_to)}")
        finally:
            await router.close()

    try:
        asyncio.run(_tail())
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command("replay-dead-letters")
@click.pass_context
def replay_dead_letters(ctx: click.Context):
    """Re-deliver dead-lettered records."""
    async def _replay():
        try:
            router = _make_router(ctx)
        except BiologRouterError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)

        try:
            stats = await router.replay_dead_letters()
        except BiologRouterError as e:
            click.echo(f"❌ Error: {e}")
            sys.exit(1)
        finally:
            await router.close()

        click.echo(f"✅ Replay completed:")
        click.echo(f"  Replayed: {stats['replayed']}")
        click.echo(f"  Delivered: {stats['delivered']}")
        click.echo(f"  Remaining: {stats['remaining']}")

    asyncio.run(_replay())


@cli.command()
@click.option('--host', default=None, help='Bind address')
@click.option('--port', default=None, type=int, help='Port')
def serve(host: Optional[str], port: Optional[int]):
    """Run the HTTP ingestion API."""
    import uvicorn

    uvicorn.run(
        "biolog_router.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_level=settings.log_level.lower(),
    )


def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()

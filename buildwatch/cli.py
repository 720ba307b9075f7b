#!/usr/bin/env python3
"""
buildwatch CLI - Command line entry point.

This module provides:
- CI server connectivity checks
- Triggering a build (manual or from a push webhook) and following its console output
- Serving the HTTP webhook, trigger and event-stream API
- Build history from the local record store
- Offline failure classification of a saved console log
"""
import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from buildwatch import __version__
from buildwatch.ci.analysis import classify as classify_failure
from buildwatch.ci.analysis import summarize
from buildwatch.ci.client import JenkinsClient
from buildwatch.ci.models import TriggerSource
from buildwatch.config import load_config
from buildwatch.core.exceptions import BuildWatchError
from buildwatch.utils.logger import setup_logger

console = Console()

_STATUS_STYLES = {
    "SUCCESS": "green",
    "UNSTABLE": "yellow",
    "FAILURE": "red",
    "ABORTED": "magenta",
}

# Events after which a followed build produces no further output
_TERMINAL_EVENTS = {"build_completed", "build_cancelled", "build_timed_out"}


def _parse_params(values):
    """Turn ("KEY=VALUE", ...) into a dict."""
    params = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{item}'", param_hint="--param")
        params[key.strip()] = value
    return params


def _read_webhook(path):
    """Load a push-webhook body saved as JSON."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--webhook") from e
    if not isinstance(payload, dict):
        raise click.BadParameter("must contain a JSON object", param_hint="--webhook")
    return payload


def _status_text(status):
    if status is None:
        return "[cyan]BUILDING[/cyan]"
    style = _STATUS_STYLES.get(status, "dim")
    return f"[{style}]{status}[/{style}]"


def _fail(error):
    console.print(f"[red]❌ {error.message}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="buildwatch")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.buildwatch/config.yaml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr as well")
@click.pass_context
def cli(ctx, config_path, verbose):
    """
    buildwatch - Trigger Jenkins builds and follow them to completion.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except BuildWatchError as e:
        _fail(e)

    setup_logger(verbose=verbose, config=config.logging)
    ctx.obj["config"] = config


@cli.command()
@click.option("--job", "-j", default=None, help="Job to check (default: configured job)")
@click.pass_context
def check(ctx, job):
    """Verify credentials and that the job can be built."""
    config = ctx.obj["config"]
    client = JenkinsClient(config.jenkins)

    console.print(f"\n[bold]CI server[/bold] {config.jenkins.url}\n")
    if not client.check_auth():
        console.print("  [red]❌ Authentication failed[/red]")
        sys.exit(1)
    console.print("  [green]✅ Authenticated[/green]")

    try:
        job_name = config.require_job(job)
    except BuildWatchError as e:
        _fail(e)

    if not client.check_job_buildable(job_name):
        console.print(f"  [red]❌ Job '{job_name}' is missing or disabled[/red]")
        sys.exit(1)
    console.print(f"  [green]✅ Job '{job_name}' is buildable[/green]")


@cli.command()
@click.option("--job", "-j", default=None, help="Job to build (default: configured job)")
@click.option("--param", "-p", "params", multiple=True, help="Build parameter KEY=VALUE")
@click.option(
    "--webhook", "webhook_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Build from a saved push-webhook JSON body instead of parameters",
)
@click.option("--follow/--no-follow", default=True, help="Stream the console until the build ends")
@click.pass_context
def trigger(ctx, job, params, webhook_file, follow):
    """
    Trigger a build.

    Examples:
        buildwatch trigger -p BRANCH=main -p COMMIT=abc123
        buildwatch trigger --webhook push.json
    """
    if webhook_file is not None:
        if params or job:
            raise click.UsageError("--webhook cannot be combined with --job or --param")
        payload = _read_webhook(webhook_file)
        source = TriggerSource.WEBHOOK
    else:
        payload = _parse_params(params)
        if job:
            payload["job"] = job
        source = TriggerSource.MANUAL

    try:
        record = asyncio.run(_trigger(ctx.obj["config"], payload, follow, source))
    except BuildWatchError as e:
        _fail(e)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped following the build[/yellow]")
        sys.exit(130)

    if follow and (record is None or record.status.is_failure):
        sys.exit(1)


async def _trigger(config, payload, follow, source=TriggerSource.MANUAL):
    from buildwatch.ci.tracker import BuildTracker
    from buildwatch.core.context import LifecycleContext

    context = await LifecycleContext.create(config)
    tracker = BuildTracker(context)
    try:
        async with context.bus.subscribe() as events:
            ack = await tracker.trigger_build(payload, source=source)
            console.print(
                f"[green]🚀 {ack.status}[/green] {ack.job_name} "
                f"[dim](queue item {ack.queue_id})[/dim]"
            )
            if ack.lifecycle is None:
                console.print("[yellow]⚠️ No queue item returned; the build cannot be followed[/yellow]")
                return None
            if not follow:
                return None

            lifecycle = ack.lifecycle
            closer = asyncio.create_task(_close_when_done(lifecycle, events))
            async for message in events:
                _render(message)
            await closer
            return lifecycle.record
    finally:
        await tracker.shutdown()
        await context.close()


async def _close_when_done(lifecycle, events):
    await lifecycle.wait()
    events.close()


def _render(message):
    kind = message["type"]
    payload = message["payload"]
    if kind == "log_chunk":
        console.out(payload["text"], end="", highlight=False)
    elif kind == "build_started":
        console.print(f"[cyan]▶ Build #{payload['buildNumber']} started[/cyan]")
    elif kind == "build_completed":
        console.print(
            f"\n[bold]Build #{payload['buildNumber']}[/bold] {_status_text(payload['status'])} "
            f"in {payload['durationMs'] / 1000:.1f}s"
        )
        if payload.get("failureCategory"):
            console.print(f"  Category: [yellow]{payload['failureCategory']}[/yellow]")
            console.print(f"  Summary:  {payload['errorSummary']}")
        console.print(f"  [dim]{payload['consoleLink']}[/dim]")
    elif kind in _TERMINAL_EVENTS:
        console.print(f"\n[yellow]⚠️ {kind.replace('_', ' ')}: {payload}[/yellow]")


@cli.command("last-build")
@click.option("--job", "-j", default=None, help="Job to query (default: configured job)")
@click.pass_context
def last_build(ctx, job):
    """Show the most recent build reported by the CI server."""
    try:
        summary = asyncio.run(_last_build(ctx.obj["config"], job))
    except BuildWatchError as e:
        _fail(e)

    if summary is None:
        console.print("[dim]Job has no builds yet[/dim]")
        return

    console.print(
        f"\n[bold]{summary['jobName']} #{summary['buildNumber']}[/bold] "
        f"{_status_text(summary['status'])}"
    )
    console.print(f"  [dim]{summary['consoleLink']}[/dim]")


async def _last_build(config, job):
    from buildwatch.ci.tracker import BuildTracker
    from buildwatch.core.context import LifecycleContext

    context = await LifecycleContext.create(config)
    try:
        return await BuildTracker(context).last_build_status(job)
    finally:
        await context.close()


@cli.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Number of builds")
@click.option("--job", "-j", default=None, help="Only builds of this job")
@click.pass_context
def history(ctx, limit, job):
    """List completed builds from the local record store."""
    try:
        records = asyncio.run(_history(ctx.obj["config"], limit, job))
    except BuildWatchError as e:
        _fail(e)

    if not records:
        console.print("[dim]No builds recorded yet[/dim]")
        return

    table = Table(title="Build history")
    table.add_column("Job", style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Category")
    table.add_column("Completed", style="dim")
    for record in records:
        table.add_row(
            record.job_name,
            str(record.build_number),
            _status_text(record.status.value),
            f"{record.duration_ms / 1000:.1f}s",
            record.failure_category or "",
            record.completed_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


async def _history(config, limit, job):
    from buildwatch.persistence import BuildRecordRepository, Database

    db = Database(config.storage.db_path)
    await db.connect()
    try:
        return await BuildRecordRepository(db).list_recent(limit=limit, job_name=job)
    finally:
        await db.close()


@cli.command()
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def classify(log_file):
    """Classify a saved console log without contacting the CI server."""
    text = log_file.read_text(encoding="utf-8", errors="replace")
    result = classify_failure(text)

    console.print(f"\n[bold]Category:[/bold]   [yellow]{result.category.value}[/yellow]")
    console.print(f"[bold]Confidence:[/bold] {result.confidence:.2f}")
    console.print(f"[bold]Summary:[/bold]    {summarize(text)}")
    if result.suggestions:
        console.print("\n[bold]Suggestions:[/bold]")
        for suggestion in result.suggestions:
            console.print(f"  • {suggestion}")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: server.host)")
@click.option("--port", "-P", type=int, default=None, help="Listen port (default: server.port)")
@click.pass_context
def serve(ctx, host, port):
    """Serve the webhook, trigger and live event endpoints over HTTP."""
    from buildwatch.api import serve as serve_api

    config = ctx.obj["config"]
    console.print(
        f"[bold]buildwatch API[/bold] on http://{host or config.server.host}:"
        f"{port or config.server.port} [dim](Ctrl+C to stop)[/dim]"
    )
    serve_api(config, host=host, port=port)


def main():
    """Entry point for the buildwatch command."""
    cli(obj={})


if __name__ == "__main__":
    main()

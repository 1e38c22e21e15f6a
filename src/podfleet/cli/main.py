"""Main CLI implementation using Typer."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Callable, Coroutine, List, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from podfleet.agent.config import ConfigManager
from podfleet.agent.engine import FleetEngine, FleetRun, resolve_phases
from podfleet.agent.main import default_config_dir, run_agent
from podfleet.core.reporter import StatusReporter, inspection_to_dict
from podfleet.errors import PodfleetError, ValidationError
from podfleet.runtime import RuntimeRegistry
from podfleet.utils.logging import setup_logging


logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="podfleet",
    help="Podfleet - declarative container fleet reconciliation",
    add_completion=False,
)

# Console for rich output
console = Console()

CONFIG_DIR_OPTION = typer.Option(
    None, "--config-dir", "-c", envvar="PODFLEET_CONFIG_DIR", help="Configuration directory"
)
HOST_OPTION = typer.Option(None, "--host", "-H", help="Host to operate on (repeatable, default: all)")
TAG_OPTION = typer.Option(
    None, "--tag", "-t",
    help="Phase to run (repeatable): directories, images, networks, containers, health-check, verification, info",
)
JSON_OPTION = typer.Option(False, "--json", help="Print machine-readable JSON")
LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")


def _run_cli_command(handler: Callable[..., Coroutine[Any, Any, int]], **kwargs: Any):
    """Helper to run an async command handler with error handling and exit codes."""
    try:
        exit_code = asyncio.run(handler(**kwargs))
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(2) from e
    except PodfleetError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    if exit_code:
        raise typer.Exit(exit_code)


async def _load(config_dir: Optional[Path], log_level: Optional[str]) -> ConfigManager:
    """Load configuration and set up logging from it."""
    manager = ConfigManager(config_dir or default_config_dir())
    setup_logging(log_level or "WARNING")
    await manager.load()
    if not log_level:
        config = manager.config
        setup_logging(config.logging.level, fmt=config.logging.format)
    return manager


def _engine(manager: ConfigManager, cancel_event: Optional[asyncio.Event] = None) -> FleetEngine:
    return FleetEngine(
        config_manager=manager,
        runtime_registry=RuntimeRegistry(),
        reporter=StatusReporter(console),
        cancel_event=cancel_event,
    )


async def _plan(config_dir, hosts, tags, as_json, log_level) -> int:
    manager = await _load(config_dir, log_level)
    engine = _engine(manager)
    run = await engine.run(hosts=hosts, phases=tags, dry_run=True)

    if as_json:
        engine.reporter.render_json({
            "plans": [plan.to_dict() for plan in run.plans],
            "report": run.report.to_dict(),
        })
    else:
        engine.reporter.render_plans(run.plans)
        _print_host_errors(run)
    return run.report.exit_code


async def _apply(config_dir, hosts, tags, dry_run, prune, as_json, log_level) -> int:
    manager = await _load(config_dir, log_level)
    cancel_event = asyncio.Event()
    engine = _engine(manager, cancel_event)
    phases = resolve_phases(tags)

    def cancel():
        if not cancel_event.is_set():
            logger.warning("Interrupted: no new operations will be started")
            cancel_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, cancel)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
            disable=as_json,
        ) as progress:
            progress.add_task("Dry run..." if dry_run else "Reconciling...", total=None)
            run = await engine.run(hosts=hosts, phases=phases, dry_run=dry_run, prune=prune or None)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    engine.reporter.log_summary(run.report)
    if as_json:
        data = run.report.to_dict()
        if "info" in phases:
            data["live"] = [inspection_to_dict(live) for live in run.inspections]
        engine.reporter.render_json(data)
    else:
        engine.reporter.render(run.report)
        if "info" in phases:
            engine.reporter.render_inspection(run.inspections)
    return run.report.exit_code


async def _validate(config_dir, hosts, as_json, log_level) -> int:
    manager = await _load(config_dir, log_level)
    names = manager.select(hosts)
    errors = {name: manager.host_errors[name] for name in names if name in manager.host_errors}

    if as_json:
        StatusReporter(console).render_json({
            "ok": not errors,
            "hosts": {
                name: {"ok": name not in errors, "errors": errors[name].errors if name in errors else []}
                for name in names
            },
        })
    else:
        for name in names:
            if name in errors:
                console.print(f"[red]✗[/red] {name}")
                for message in errors[name].errors:
                    console.print(f"    {message}")
            else:
                host = manager.get_host(name)
                console.print(
                    f"[green]✓[/green] {name}: {len(host.directories)} directories, "
                    f"{len(host.networks)} networks, {len(host.containers)} containers"
                )
    return 2 if errors else 0


async def _inspect(config_dir, hosts, as_json, log_level) -> int:
    manager = await _load(config_dir, log_level)
    engine = _engine(manager)
    run = await engine.run(hosts=hosts, phases=["info"], dry_run=True)

    if as_json:
        engine.reporter.render_json({
            "hosts": [inspection_to_dict(live) for live in run.inspections],
            "errors": {h.host: h.error for h in run.report.hosts if h.error},
        })
    else:
        engine.reporter.render_inspection(run.inspections)
        _print_host_errors(run)
    return run.report.exit_code


async def _watch(config_dir, hosts, tags, prune, log_level) -> int:
    await run_agent(
        config_dir=config_dir or default_config_dir(), hosts=hosts, phases=tags,
        prune=prune or None, log_level=log_level,
    )
    return 0


def _print_host_errors(run: FleetRun):
    for host in run.report.hosts:
        if host.error:
            console.print(f"[red]✗[/red] {host.host}: {host.error_type}: {host.error}")


@app.command("plan")
def plan_command(
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
    host: Optional[List[str]] = HOST_OPTION,
    tag: Optional[List[str]] = TAG_OPTION,
    as_json: bool = JSON_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
):
    """Show the operations needed to converge the selected hosts."""
    _run_cli_command(_plan, config_dir=config_dir, hosts=host, tags=tag, as_json=as_json, log_level=log_level)


@app.command("apply")
def apply_command(
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
    host: Optional[List[str]] = HOST_OPTION,
    tag: Optional[List[str]] = TAG_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report the plan without executing it"),
    prune: bool = typer.Option(False, "--prune", help="Remove managed containers that are no longer declared"),
    as_json: bool = JSON_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
):
    """Converge the selected hosts to their declared state."""
    _run_cli_command(
        _apply, config_dir=config_dir, hosts=host, tags=tag,
        dry_run=dry_run, prune=prune, as_json=as_json, log_level=log_level,
    )


@app.command("validate")
def validate_command(
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
    host: Optional[List[str]] = HOST_OPTION,
    as_json: bool = JSON_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
):
    """Validate configuration files."""
    _run_cli_command(_validate, config_dir=config_dir, hosts=host, as_json=as_json, log_level=log_level)


@app.command("inspect")
def inspect_command(
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
    host: Optional[List[str]] = HOST_OPTION,
    as_json: bool = JSON_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
):
    """Show the live state of the selected hosts."""
    _run_cli_command(_inspect, config_dir=config_dir, hosts=host, as_json=as_json, log_level=log_level)


@app.command("watch")
def watch_command(
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
    host: Optional[List[str]] = HOST_OPTION,
    tag: Optional[List[str]] = TAG_OPTION,
    prune: bool = typer.Option(False, "--prune", help="Remove managed containers that are no longer declared"),
    log_level: Optional[str] = LOG_LEVEL_OPTION,
):
    """Keep reconciling: periodically and whenever the configuration changes."""
    _run_cli_command(
        _watch, config_dir=config_dir, hosts=host, tags=tag, prune=prune, log_level=log_level,
    )


def main():
    """Main entry point for CLI."""
    app()

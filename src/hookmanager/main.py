"""CLI entry point for the hook dispatcher."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from hookmanager.config import DispatcherSettings, load_settings
from hookmanager.dispatcher import HookDispatcher
from hookmanager.exceptions import HookError
from hookmanager.loader import HookConfigLoader
from hookmanager.models import DispatchOptions, HookEvent
from hookmanager.sinks import LoggingSink

console = Console()
# Logs go to stderr so stdout stays parseable for the host
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False, level_name: str = "INFO") -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
    )


def _settings(ctx: click.Context) -> DispatcherSettings:
    settings: DispatcherSettings = ctx.obj["settings"]
    if ctx.obj.get("project_dir"):
        settings.project_dir = Path(ctx.obj["project_dir"])
    return settings


def _loader(ctx: click.Context) -> HookConfigLoader:
    return HookConfigLoader.from_settings(_settings(ctx))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="YAML settings file",
)
@click.option(
    "--project-dir",
    default=None,
    envvar="CLAUDE_PROJECT_DIR",
    type=click.Path(file_okay=False),
    help="Project whose hook config is loaded",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: str | None, project_dir: str | None) -> None:
    """Hook Manager - dispatch coding-assistant lifecycle events to hooks."""
    ctx.ensure_object(dict)
    try:
        settings = load_settings(config_path)
    except HookError as e:
        err_console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    ctx.obj["verbose"] = verbose
    ctx.obj["settings"] = settings
    ctx.obj["project_dir"] = project_dir
    setup_logging(verbose, settings.log_level)


@cli.command()
@click.argument("event", type=click.Choice([e.value for e in HookEvent]))
@click.option("--parallel/--sequential", default=None, help="Run hooks concurrently")
@click.option(
    "--continue-on-error/--stop-on-error",
    default=None,
    help="Keep going after a failed hook (sequential mode)",
)
@click.option("--timeout", type=click.IntRange(min=1), default=None, help="Per-attempt timeout in ms")
@click.option("--retry", type=click.IntRange(min=0), default=None, help="Retries per hook")
@click.pass_context
def dispatch(
    ctx: click.Context,
    event: str,
    parallel: bool | None,
    continue_on_error: bool | None,
    timeout: int | None,
    retry: int | None,
) -> None:
    """Dispatch EVENT with a JSON context read from stdin.

    Exits 2 when a hook blocked, 1 when a hook failed, otherwise 0.
    """
    settings = _settings(ctx)

    raw = sys.stdin.read().strip() if not sys.stdin.isatty() else ""
    try:
        context = json.loads(raw) if raw else {}
    except json.JSONDecodeError as e:
        err_console.print(f"[bold red]Invalid context JSON: {e}[/bold red]")
        sys.exit(1)
    if not isinstance(context, dict):
        err_console.print("[bold red]Context must be a JSON object[/bold red]")
        sys.exit(1)

    if settings.project_dir and not (context.get("projectDir") or context.get("project_dir")):
        context["projectDir"] = str(settings.project_dir)

    options = DispatchOptions(
        parallel=parallel,
        continue_on_error=continue_on_error,
        timeout=timeout,
        retry=retry,
    )

    try:
        dispatcher = HookDispatcher(settings=settings, sinks=[LoggingSink()])
        dispatcher.load(_loader(ctx).load())
        result = asyncio.run(dispatcher.dispatch(event, context, options))
    except HookError as e:
        err_console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    click.echo(result.model_dump_json(by_alias=True, indent=2))

    if result.blocked:
        sys.exit(2)
    if result.summary.failed:
        sys.exit(1)


@cli.command(name="list")
@click.option(
    "--event",
    type=click.Choice([e.value for e in HookEvent]),
    default=None,
    help="Only hooks for this event, in execution order",
)
@click.pass_context
def list_hooks(ctx: click.Context, event: str | None) -> None:
    """List configured hooks."""
    try:
        dispatcher = HookDispatcher(settings=_settings(ctx))
        dispatcher.load(_loader(ctx).load())
    except HookError as e:
        err_console.print(f"[bold red]Error: {e}[/bold red]")
        sys.exit(1)

    hooks = dispatcher.registry.for_event(event) if event else dispatcher.handlers()
    if not hooks:
        console.print("[dim]No hooks configured[/dim]")
        return

    table = Table(title=f"Hooks for {event}" if event else "Hooks")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Events", style="green")
    table.add_column("Matcher")
    table.add_column("Type")
    table.add_column("Priority", justify="right")
    table.add_column("Scope")
    table.add_column("Enabled")

    for hook in hooks:
        table.add_row(
            hook.id,
            hook.name,
            ", ".join(e.value for e in hook.events),
            hook.matcher or "*",
            hook.handler.type,
            str(hook.priority),
            hook.scope or "-",
            "[green]yes[/green]" if hook.enabled else "[yellow]no[/yellow]",
        )

    console.print(table)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate hook configuration files."""
    result = _loader(ctx).validate()

    for error in result.errors:
        console.print(f"[red]✗[/red] {error}")
    for warning in result.warnings:
        console.print(f"[yellow]![/yellow] {warning}")

    if not result.valid:
        console.print("[bold red]Configuration is invalid[/bold red]")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

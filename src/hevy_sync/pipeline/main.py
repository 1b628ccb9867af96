"""CLI entry point for the Hevy sync core.

This module provides the command-line interface for importing Hevy data,
running incremental syncs, validating API keys and inspecting import state.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import pydantic
import uvicorn
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from hevy_sync.models.config import ConfigManager, SyncConfig
from hevy_sync.models.data_models import ImportResult, ImportStatus, ResumeDecision
from hevy_sync.models.errors import ApiError, CircuitOpenError, ErrorKind, SyncError
from hevy_sync.pipeline.orchestrator import IMPORT_STEPS, ImportOrchestrator


console = Console()

EXIT_SUSPENDED = 75  # EX_TEMPFAIL: rerun to resume
EXIT_CONFIG = 78  # EX_CONFIG

# Every ErrorKind maps to a message prefix and exit code
ERROR_EXIT_CODES: Dict[ErrorKind, Tuple[str, int]] = {
    ErrorKind.TRANSPORT: ("Connection failed", 69),
    ErrorKind.API: ("API error", 1),
    ErrorKind.INVALID_CREDENTIAL: ("Invalid API key", 77),
    ErrorKind.CIRCUIT_OPEN: ("API temporarily unavailable", 69),
    ErrorKind.TIMEOUT: ("Suspended", EXIT_SUSPENDED),
    ErrorKind.VALIDATION: ("Data validation failed", 65),
    ErrorKind.PAGINATION_LIMIT: ("Pagination limit reached", 70),
    ErrorKind.ALREADY_ACTIVE: ("Import already running", 73),
}


def describe_error(error: SyncError) -> Tuple[str, int]:
    """Human-readable message and process exit code for a sync error."""
    title, code = ERROR_EXIT_CODES[error.kind]

    if error.kind is ErrorKind.TRANSPORT:
        detail = f"{error}. Please check your internet connection and try again."
    elif error.kind is ErrorKind.TIMEOUT:
        detail = f"{error} (rerun to resume)"
    elif isinstance(error, CircuitOpenError):
        detail = f"Too many recent failures, retry in about {error.retry_after:.0f}s"
    elif isinstance(error, ApiError) and error.kind is ErrorKind.API:
        detail = f"HTTP {error.status_code}: {error}"
    else:
        detail = str(error)

    return f"{title}: {detail}", code


def build_orchestrator(config: SyncConfig) -> ImportOrchestrator:
    return ImportOrchestrator(config)


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option("--api-key", help="Hevy API key (overrides config and HEVY_API_KEY)")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option("--state-path", type=click.Path(path_type=Path), help="Durable state file (overrides config)")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output directory for JSON tables")
@click.option("--budget", type=float, help="Execution budget in seconds (overrides config)")
@click.version_option(version="1.0.0", prog_name="hevy-sync")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path,
    api_key: Optional[str],
    log_level: Optional[str],
    state_path: Optional[Path],
    output: Optional[Path],
    budget: Optional[float],
) -> None:
    """
    Hevy Sync - Resilient mirror of your Hevy workout data.

    Examples:

        # Import everything (resumes an interrupted import)
        $ hevy-sync import

        # Start over, discarding progress from an interrupted import
        $ hevy-sync import --restart

        # Apply workout changes since the last import
        $ hevy-sync sync
    """
    overrides: Dict[str, Any] = {
        "api_key": api_key,
        "log_level": log_level.upper() if log_level else None,
        "state_path": str(state_path) if state_path else None,
        "output_directory": str(output) if output else None,
        "execution_budget": budget,
    }
    ctx.obj = {"config_manager": ConfigManager(config_path), "overrides": overrides}


def _load_config(ctx: click.Context) -> SyncConfig:
    try:
        return ctx.obj["config_manager"].load_config(ctx.obj["overrides"])
    except pydantic.ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{e}")
        sys.exit(EXIT_CONFIG)


def _run(coro) -> Any:
    """Run a coroutine, turning sync errors into exit codes."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)  # Standard exit code for SIGINT
    except SyncError as e:
        message, code = describe_error(e)
        console.print(f"\n[red]Error:[/red] {message}", style="bold red")
        sys.exit(code)


@cli.command("import")
@click.option("--resume", "decision", flag_value=ResumeDecision.RESUME.value, default=True,
              help="Continue an interrupted import (default)")
@click.option("--restart", "decision", flag_value=ResumeDecision.RESTART.value,
              help="Discard progress and import everything again")
@click.option("--cancel", "decision", flag_value=ResumeDecision.CANCEL.value,
              help="Leave an interrupted import untouched and exit")
@click.option("--no-progress", is_flag=True, help="Disable the progress spinner (useful for CI/CD)")
@click.pass_context
def import_command(ctx: click.Context, decision: str, no_progress: bool) -> None:
    """Import exercises, routine folders, routines and workouts."""
    config = _load_config(ctx)
    orchestrator = build_orchestrator(config)
    resume_decision = ResumeDecision(decision)

    if orchestrator.checkpoint.has_progress() and resume_decision is ResumeDecision.RESUME:
        done = ", ".join(sorted(orchestrator.checkpoint.completed_steps()))
        console.print(f"[cyan]Resuming import[/cyan] (already completed: {done})")

    result = _run(_run_import(orchestrator, resume_decision, no_progress))
    _display_import_result(result)

    if result.status is ImportStatus.SUSPENDED:
        sys.exit(EXIT_SUSPENDED)


async def _run_import(
    orchestrator: ImportOrchestrator,
    decision: ResumeDecision,
    no_progress: bool,
) -> ImportResult:
    if no_progress:
        return await orchestrator.run_full_import(decision)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("[cyan]Importing from Hevy...", total=None)
        return await orchestrator.run_full_import(decision)


def _display_import_result(result: ImportResult) -> None:
    if result.status is ImportStatus.CANCELLED:
        console.print("[yellow]Import cancelled.[/yellow] Existing progress was left untouched.")
        return

    table = Table(title="Import Steps")
    table.add_column("Step", style="cyan")
    table.add_column("Items", justify="right", style="green")
    table.add_column("Status", style="magenta")
    table.add_column("Time", justify="right")

    for step in result.steps:
        table.add_row(
            step.name,
            str(step.items),
            "skipped" if step.skipped else "done",
            f"{step.duration:.2f}s",
        )
    console.print(table)

    if result.status is ImportStatus.SUSPENDED:
        console.print(f"[yellow]Import suspended:[/yellow] {result.message}")
        console.print("Run the same command again to resume.")
    else:
        console.print(f"[bold green]Import complete![/bold green] {result.total_items} items")


@cli.command("sync")
@click.pass_context
def sync_command(ctx: click.Context) -> None:
    """Apply workout changes since the last import or sync."""
    config = _load_config(ctx)
    orchestrator = build_orchestrator(config)
    changes = _run(orchestrator.run_delta_sync())

    if changes is None:
        console.print("[yellow]No previous import found.[/yellow] Run 'hevy-sync import' first.")
        sys.exit(1)
    console.print(f"[bold green]Sync complete![/bold green] {changes} workouts changed")


@cli.command("validate-key")
@click.pass_context
def validate_key_command(ctx: click.Context) -> None:
    """Check that the configured API key is accepted."""
    config = _load_config(ctx)
    orchestrator = build_orchestrator(config)
    _run(orchestrator.validate_api_key())
    console.print("[bold green]API key is valid.[/bold green]")


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """Show import progress, the sync cursor and table sizes."""
    config = _load_config(ctx)
    status = build_orchestrator(config).status()

    summary_table = Table(title="Import Status", show_header=False)
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="green")
    summary_table.add_row("Import running", "yes" if status["active"] else "no")
    summary_table.add_row("Completed steps", ", ".join(status["completed_steps"]) or "-")
    summary_table.add_row("Pending steps", ", ".join(status["pending_steps"]) or "-")
    summary_table.add_row("Last workout update", status["last_workout_update"] or "never")

    budget = status["rate_limit"]
    if budget:
        summary_table.add_row("Rate limit", f"{budget['remaining']}/{budget['limit']} remaining")
    console.print(summary_table)

    table = Table(title="Tables")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for name in IMPORT_STEPS:
        table.add_row(name, str(status["tables"][name]))
    console.print(table)


@cli.command("mock-server")
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
def mock_server_command(host: str, port: int) -> None:
    """Serve the mock Hevy API (base URL http://HOST:PORT/v1)."""
    uvicorn.run("hevy_sync.mock_servers.app:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    cli()

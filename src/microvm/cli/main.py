"""Main CLI implementation using Typer."""

import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional

import typer
from rich.console import Console

from microvm.agent.main import config_dir_from_env, run_agent
from microvm.cli.commands import reconcile_once, show_defaults, show_status, validate_files
from microvm.exceptions import MicrovmError


app = typer.Typer(
    name="microvmctl",
    help="Declarative microvm validation and lifecycle management",
    add_completion=False,
)

console = Console()


def _run_cli_command(handler: Callable[..., Any], **kwargs: Any):
    """Helper to run a CLI command with error handling."""
    try:
        return handler(**kwargs)
    except MicrovmError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _config_dir(config_dir: Optional[Path]) -> Path:
    return config_dir or config_dir_from_env() or Path("./configs")


@app.command("validate")
def validate_command(
    files: List[Path] = typer.Argument(..., help="Microvm declaration files"),
):
    """Validate microvm declarations."""
    if not _run_cli_command(validate_files, paths=files):
        raise typer.Exit(1)


@app.command("defaults")
def defaults_command(
    file: Path = typer.Argument(..., help="Microvm declaration file"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Only show this microvm"),
):
    """Show declarations with defaults applied."""
    _run_cli_command(show_defaults, path=file, name=name)


@app.command("status")
def status_command(
    name: Optional[str] = typer.Argument(None, help="Show status for specific microvm"),
    state_dir: Path = typer.Option(Path("./state"), "--state-dir", help="Agent state directory"),
):
    """Show microvm status from the agent's last snapshot."""
    _run_cli_command(show_status, state_dir=state_dir, name=name)


@app.command("reconcile-once")
def reconcile_once_command(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", "-c", help="Configuration directory"),
):
    """Run a single reconciliation pass."""
    _run_cli_command(reconcile_once, config_dir=_config_dir(config_dir))


@app.command("run")
def run_command(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", "-c", help="Configuration directory"),
):
    """Run the agent in the foreground."""
    try:
        asyncio.run(run_agent(_config_dir(config_dir)))
    except KeyboardInterrupt:
        console.print("Agent shutdown requested")
    except MicrovmError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def main():
    """Main entry point for CLI."""
    app()

"""Command implementations for CLI."""

import asyncio
import io
import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from microvm.agent.config import parse_microvm
from microvm.agent.main import SNAPSHOT_FILENAME, MicrovmAgent
from microvm.exceptions import ConfigError, SpecValidationError
from microvm.lifecycle.defaults import apply_defaults
from microvm.lifecycle.reconciler import ReconcileResult
from microvm.lifecycle.validator import Violation
from microvm.models.spec import Microvm


console = Console()

STATE_COLORS = {
    "pending": "yellow",
    "running": "green",
    "failed": "red",
    "deleted": "dim",
    "unknown": "magenta",
}


def load_declarations(path: Path) -> Tuple[Dict[str, Microvm], Dict[str, List[Violation]]]:
    """Parse a microvm declaration file into valid and invalid entries."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"File not found: {path}")

    try:
        data = YAML(typ="safe").load(path.read_text()) or {}
    except YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must map microvm names to declarations")

    valid: Dict[str, Microvm] = {}
    invalid: Dict[str, List[Violation]] = {}
    for name, entry in data.items():
        try:
            valid[str(name)] = parse_microvm(str(name), entry or {})
        except SpecValidationError as e:
            invalid[str(name)] = e.violations
    return valid, invalid


def validate_files(paths: List[Path]) -> bool:
    """Validate declaration files, printing every violation found."""
    all_valid = True
    for path in paths:
        valid, invalid = load_declarations(path)

        for name in valid:
            console.print(f"[green]✓[/green] {path}: {name}")
        if not invalid:
            continue

        all_valid = False
        table = Table(title=f"Violations in {path}")
        table.add_column("Microvm", style="cyan")
        table.add_column("Field")
        table.add_column("Kind", style="red")
        table.add_column("Detail", style="dim")
        for name, violations in invalid.items():
            for violation in violations:
                table.add_row(name, violation.field, violation.kind.value, violation.message)
        console.print(table)

    return all_valid


def show_defaults(path: Path, name: Optional[str] = None):
    """Print declarations with defaults applied, as YAML."""
    valid, invalid = load_declarations(path)
    if name is not None:
        if name in invalid:
            raise SpecValidationError(invalid[name])
        if name not in valid:
            raise ConfigError(f"Microvm {name} not found in {path}")
        valid = {name: valid[name]}

    output = {}
    for microvm_name, microvm in valid.items():
        entry = {"spec": apply_defaults(microvm.spec).to_record()}
        if microvm.labels:
            entry["labels"] = dict(microvm.labels)
        output[microvm_name] = entry

    yaml = YAML()
    yaml.default_flow_style = False
    yaml.width = 4096
    stream = io.StringIO()
    yaml.dump(output, stream)
    console.print(stream.getvalue(), end="", markup=False, highlight=False)


def show_status(state_dir: Path, name: Optional[str] = None):
    """Render the agent's last status snapshot."""
    snapshot_file = Path(state_dir) / SNAPSHOT_FILENAME
    if not snapshot_file.exists():
        raise ConfigError(f"No status snapshot at {snapshot_file}; is the agent running?")

    snapshot = json.loads(snapshot_file.read_text())
    microvms = snapshot.get("microvms", {})
    if name is not None:
        if name not in microvms:
            raise ConfigError(f"Microvm {name} not found in status snapshot")
        microvms = {name: microvms[name]}

    table = Table(title=f"Microvms (as of {snapshot.get('generated_at', 'unknown')})")
    table.add_column("Name", style="cyan")
    table.add_column("State")
    table.add_column("Instance", style="dim")
    table.add_column("Last action")
    table.add_column("Reason", max_width=60)

    for microvm_name, info in microvms.items():
        status = info.get("status") or {}
        state = status.get("state", "-")
        color = STATE_COLORS.get(state, "white")
        table.add_row(
            microvm_name,
            f"[{color}]{state}[/{color}]",
            (status.get("instance_id") or "-")[:12],
            info.get("last_action") or "-",
            info.get("last_error") or status.get("reason") or "",
        )
    console.print(table)

    invalid = snapshot.get("invalid", {})
    if invalid and name is None:
        console.print()
        for invalid_name, violations in invalid.items():
            console.print(f"[red]✗[/red] {invalid_name}: " + "; ".join(violations))


def print_results(results: Dict[str, ReconcileResult]):
    """Render reconcile results."""
    table = Table(title="Reconcile results")
    table.add_column("Name", style="cyan")
    table.add_column("Action")
    table.add_column("State")
    table.add_column("Error", style="red")

    for name, result in sorted(results.items()):
        state = result.status.state.value if result.status is not None else "-"
        color = STATE_COLORS.get(state, "white")
        table.add_row(
            name,
            result.action.value,
            f"[{color}]{state}[/{color}]",
            str(result.error) if result.error is not None else "",
        )
    console.print(table)


def reconcile_once(config_dir: Path):
    """Load configuration, run one reconcile pass and print the outcome."""
    async def _run():
        agent = MicrovmAgent(config_dir=config_dir)
        await agent.initialize()
        return await agent.reconcile_once()

    print_results(asyncio.run(_run()))

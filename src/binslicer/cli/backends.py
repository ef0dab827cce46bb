"""list-backends and setup-backend commands."""

from pathlib import Path

import click

from binslicer.backends.tools import SETUP_TOOLS, setup_backend
from binslicer.cli.utils import (
    backend_registry,
    command_errors,
    echo_json,
    json_option,
    open_project,
    root_option,
)
from binslicer.core.progress import status


@click.command()
@json_option
def list_backends_command(as_json: bool) -> None:
    """List analysis backends available in this build."""
    registry = backend_registry()
    entries = [{"name": b.name, "description": b.description} for b in registry]

    if as_json:
        echo_json(entries)
        return

    click.echo("Backends:")
    for entry in entries:
        click.echo(f"- {entry['name']}: {entry['description']}")


@click.command()
@root_option
@click.option(
    "--backend",
    "tool",
    required=True,
    type=click.Choice(SETUP_TOOLS, case_sensitive=False),
    help="Tool to configure",
)
@click.option(
    "--path",
    "tool_path",
    required=True,
    type=click.Path(path_type=Path),
    help="Tool executable (rizin binary or ghidra analyzeHeadless)",
)
@click.option("--set-default", is_flag=True, help="Also make this the project's default backend")
def setup_backend_command(root: Path, tool: str, tool_path: Path, set_default: bool) -> None:
    """Record a backend tool's path and version in the project manifest."""
    tool = tool.lower()
    with open_project(root) as ctx, command_errors(f"Failed to set up backend {tool}"):
        version = setup_backend(
            ctx,
            tool,
            tool_path,
            set_default=set_default,
            available=backend_registry().names(),
        )
    status(f"Configured backend {tool}: {tool_path}", style="success")
    if version:
        status(f"Version: {version}")
    else:
        status("Version: unknown (detection failed)", style="warning")
    if set_default:
        status(f"Default backend: {tool}")

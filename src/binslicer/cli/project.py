"""init-project and project-info commands."""

from pathlib import Path

import click

from binslicer.cli.utils import (
    backend_registry,
    command_errors,
    echo_json,
    json_option,
    open_project,
    root_option,
)
from binslicer.core.progress import status
from binslicer.project.ops import init_project, project_info


@click.command()
@root_option
@click.option("--name", default=None, help="Project name (default: root directory name)")
def init_project_command(root: Path, name: str | None) -> None:
    """Create the project layout, manifest and database under --root."""
    with command_errors("Failed to initialize project"):
        ctx = init_project(root, name)
    try:
        layout = ctx.layout
        status(f"Initialized project {ctx.config.name}", style="success")
        status(f"Root: {layout.root}")
        status(f"Config: {layout.project_config_path}")
        status(f"DB path (relative): {ctx.config.db.path}")
        for label, path in layout.directories():
            status(f"{label.capitalize()} dir: {path}")
    finally:
        ctx.close()


@click.command()
@root_option
@json_option
def project_info_command(root: Path, as_json: bool) -> None:
    """Show project configuration, layout and contents."""
    with open_project(root) as ctx, command_errors("Failed to collect project info"):
        info = project_info(ctx, backend_registry())

    if as_json:
        echo_json(info)
        return

    click.echo("Binary Slicer Project Info")
    click.echo("==========================")
    click.echo(f"Name: {info.name}")
    click.echo(f"Root: {info.root}")
    click.echo(f"Config file: {info.config_file}")
    click.echo(f"Config version: {info.config_version}")
    click.echo(f"DB path (config): {info.db_path}")
    if info.default_backend:
        click.echo(f"Default backend: {info.default_backend}")
    click.echo(f"Available backends: {', '.join(info.available_backends)}")
    for tool, path in info.backends.items():
        version = info.backend_versions.get(tool)
        click.echo(f"Backend {tool}: {path}" + (f" ({version})" if version else ""))

    click.echo()
    click.echo("Directories:")
    for entry in info.layout:
        click.echo(f"  {entry.label}: {entry.path} ({'OK' if entry.exists else 'MISSING'})")

    click.echo()
    click.echo(f"Binaries: {len(info.binaries)}")
    click.echo(f"Ritual specs: {len(info.ritual_specs)}")
    click.echo(f"Ritual runs: {len(info.ritual_runs)}")
    if info.ritual_runs:
        click.echo(f"Analyzed runs: {info.analyzed_runs} with stored analysis")
    if info.slices:
        click.echo()
        click.echo("Slices:")
        for s in info.slices:
            binary = s.default_binary or "(no default binary)"
            description = s.description or "(no description)"
            click.echo(f"- {s.name} [{s.status.label}] binary: {binary} -- {description}")

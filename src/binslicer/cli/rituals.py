"""Ritual commands: run, rerun, inspect and clean run outputs."""

from pathlib import Path

import click

from binslicer.cli.utils import (
    backend_registry,
    command_errors,
    echo_json,
    json_option,
    open_project,
    or_dash,
    root_option,
)
from binslicer.core.hashing import canonicalize_path
from binslicer.core.progress import spinner, status
from binslicer.project.layout import ProjectLayout
from binslicer.rituals.ops import (
    RitualRunSummary,
    clean_outputs,
    rerun_ritual,
    run_ritual,
    show_ritual_run,
    update_ritual_run_status,
)
from binslicer.rituals.spec import NORMALIZED_SPEC_FILE
from binslicer.rituals.views import (
    RUN_REPORT_FILE,
    collect_ritual_specs,
    load_runs_from_db_and_disk,
)


def _print_run_summary(summary: RitualRunSummary, headline: str) -> None:
    result = summary.result
    status(headline, style="success")
    status(f"Binary: {summary.binary}")
    status(f"Backend: {summary.backend} ({summary.status.value})")
    status(f"Output: {summary.run_dir}")
    if result.has_content():
        status(
            f"Functions: {len(result.functions)}, call edges: {len(result.call_edges)}, "
            f"basic blocks: {len(result.basic_blocks)}, evidence: {len(result.evidence)}"
        )
    if summary.run_id is None:
        status("Run row was not recorded in the project database", style="warning")


@click.command()
@root_option
@click.option(
    "--file",
    "spec_file",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Ritual spec (YAML or JSON)",
)
@click.option("--backend", default=None, help="Backend to use (overrides project default and spec)")
@click.option("--force", is_flag=True, help="Replace an existing run output directory")
def run_ritual_command(root: Path, spec_file: Path, backend: str | None, force: bool) -> None:
    """Run a ritual spec against its binary."""
    registry = backend_registry()
    with open_project(root) as ctx, command_errors(f"Failed to run ritual from {spec_file}"):
        with spinner(f"Running ritual {spec_file.name}"):
            summary = run_ritual(ctx, spec_file, registry, backend_override=backend, force=force)
    _print_run_summary(summary, f"Ran ritual {summary.ritual}")


@click.command()
@root_option
@click.option("--binary", required=True, help="Binary of the run to repeat")
@click.option("--ritual", required=True, help="Name of the run to repeat")
@click.option("--as-name", "as_name", required=True, help="Run name for the new run")
@click.option("--backend", default=None, help="Backend to use for the new run")
@click.option("--force", is_flag=True, help="Replace an existing run output directory")
def rerun_ritual_command(
    root: Path, binary: str, ritual: str, as_name: str, backend: str | None, force: bool
) -> None:
    """Repeat a run from its normalized spec under a new name."""
    registry = backend_registry()
    with open_project(root) as ctx, command_errors(f"Failed to rerun ritual {binary}/{ritual}"):
        with spinner(f"Rerunning ritual {ritual} as {as_name}"):
            summary = rerun_ritual(
                ctx, binary, ritual, as_name, registry, backend_override=backend, force=force
            )
    _print_run_summary(summary, f"Reran ritual {ritual} -> {as_name}")


@click.command()
@root_option
@click.option("--binary", default=None, help="Only runs against this binary")
@json_option
def list_ritual_runs_command(root: Path, binary: str | None, as_json: bool) -> None:
    """List runs from the database and the outputs directory."""
    with open_project(root) as ctx, command_errors("Failed to list ritual runs"):
        runs = load_runs_from_db_and_disk(ctx, binary)

    if as_json:
        echo_json(runs)
        return

    if not runs:
        click.echo("Ritual runs: (none)")
        return
    click.echo("Ritual runs:")
    for run in runs:
        state = run.status.value if run.status is not None else "unknown"
        line = f"- {run.binary} / {run.name} -> {run.path}"
        line += f" ({state}, {or_dash(run.backend)}, {run.source})"
        if run.analysis is not None:
            a = run.analysis
            line += (
                f" functions={a.functions} call_edges={a.call_edges}"
                f" basic_blocks={a.basic_blocks} evidence={a.evidence}"
            )
        click.echo(line)


@click.command()
@root_option
@click.option("--binary", required=True, help="Binary name")
@click.option("--ritual", required=True, help="Run name")
@json_option
def show_ritual_run_command(root: Path, binary: str, ritual: str, as_json: bool) -> None:
    """Show one run, preferring the database row over on-disk metadata."""
    context = f"Failed to show ritual run {binary}/{ritual}"
    with open_project(root) as ctx, command_errors(context):
        info = show_ritual_run(ctx, binary, ritual)

    if as_json:
        echo_json(info)
        return

    run_dir = Path(info.path)
    click.echo("Ritual run")
    click.echo(f"  Binary: {info.binary}")
    click.echo(f"  Ritual: {info.name}")
    click.echo(f"  Path:   {run_dir}")
    click.echo(f"  Spec:   {run_dir / NORMALIZED_SPEC_FILE}")
    click.echo(f"  Report: {run_dir / RUN_REPORT_FILE}")
    click.echo(f"  Source: {info.source}")
    if info.status is None:
        click.echo("  (No run metadata found in DB or disk)")
        return
    click.echo(f"  Status: {info.status.value}")
    if info.binary_hash:
        click.echo(f"  Binary hash: {info.binary_hash}")
    click.echo(f"  Spec hash: {or_dash(info.spec_hash)}")
    click.echo(f"  Backend: {or_dash(info.backend)}")
    if info.backend_version:
        click.echo(f"  Backend version: {info.backend_version}")
    if info.backend_path:
        click.echo(f"  Backend path: {info.backend_path}")
    click.echo(f"  Started:  {or_dash(info.started_at)}")
    click.echo(f"  Finished: {or_dash(info.finished_at)}")


@click.command()
@root_option
@json_option
def list_ritual_specs_command(root: Path, as_json: bool) -> None:
    """List ritual spec files under rituals/."""
    layout = ProjectLayout.for_root(canonicalize_path(root))
    specs = collect_ritual_specs(layout)

    if as_json:
        echo_json(specs)
        return

    if not layout.rituals_dir.is_dir():
        click.echo(f"Rituals dir missing at {layout.rituals_dir}")
        return
    if not specs:
        click.echo("Ritual specs: (none)")
        return
    click.echo("Ritual specs:")
    for spec in specs:
        click.echo(f"- {spec.name} (binary: {or_dash(spec.binary)}) [{spec.format}] {spec.path}")


@click.command()
@root_option
@click.option("--binary", required=True, help="Binary name")
@click.option("--ritual", required=True, help="Run name")
@click.option(
    "--status",
    "new_status",
    required=True,
    help="pending, running, succeeded, failed, canceled or stubbed",
)
@click.option("--finished-at", default=None, help="ISO-8601 timestamp (default: now)")
def update_ritual_run_status_command(
    root: Path, binary: str, ritual: str, new_status: str, finished_at: str | None
) -> None:
    """Set the status of a recorded run."""
    context = f"Failed to update ritual run {binary}/{ritual}"
    with open_project(root) as ctx, command_errors(context):
        parsed = update_ritual_run_status(ctx, binary, ritual, new_status, finished_at)
    status(f"Updated {binary}/{ritual} to {parsed.value}", style="success")


@click.command()
@root_option
@click.option("--binary", default=None, help="Remove outputs of this binary")
@click.option("--ritual", default=None, help="Remove only this run (requires --binary)")
@click.option("--all", "all_outputs", is_flag=True, help="Remove outputs of every binary")
@click.option("--yes", "-y", is_flag=True, help="Confirm removal")
def clean_outputs_command(
    root: Path, binary: str | None, ritual: str | None, all_outputs: bool, yes: bool
) -> None:
    """Remove run output directories."""
    layout = ProjectLayout.for_root(canonicalize_path(root))
    with command_errors("Failed to clean outputs"):
        targets = clean_outputs(
            layout, binary=binary, ritual=ritual, all_outputs=all_outputs, yes=yes
        )
    for target in targets:
        if target.removed:
            status(f"Removed outputs: {target.path}", style="success")
        else:
            status(f"Nothing to remove ({target.path} not found)", style="info")

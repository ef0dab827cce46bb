"""Slice commands: init, list, update, and doc/report emission."""

from pathlib import Path

import click

from binslicer.cli.utils import command_errors, echo_json, json_option, open_project, root_option
from binslicer.core.progress import pluralize, status
from binslicer.slices.ops import (
    emit_slice_docs,
    emit_slice_reports,
    init_slice,
    update_slice,
)
from binslicer.store.models import SliceStatus

_STATUS_CHOICES = [s.label.lower() for s in SliceStatus]


@click.command()
@root_option
@click.option("--name", required=True, help="Slice name")
@click.option("--description", default=None, help="Human-readable description")
@click.option("--default-binary", default=None, help="Binary this slice usually refers to")
def init_slice_command(
    root: Path, name: str, description: str | None, default_binary: str | None
) -> None:
    """Create a Planned slice and its doc scaffold."""
    with open_project(root) as ctx, command_errors(f"Failed to initialize slice {name}"):
        doc_path = init_slice(ctx, name, description=description, default_binary=default_binary)
    status(f"Initialized slice {name}", style="success")
    status(f"Doc: {doc_path}")


@click.command()
@root_option
@json_option
def list_slices_command(root: Path, as_json: bool) -> None:
    """List slices in insertion order."""
    with open_project(root) as ctx, command_errors("Failed to list slices"):
        slices = ctx.store.list_slices()

    if as_json:
        echo_json(slices)
        return

    click.echo("Slices:")
    if not slices:
        click.echo("(none)")
        return
    for s in slices:
        description = s.description or "(no description)"
        binary = s.default_binary or "(no default binary)"
        click.echo(f"- {s.name} ({s.status.label}) - {description} [binary: {binary}]")


@click.command()
@root_option
@click.option("--name", required=True, help="Slice name")
@click.option(
    "--status",
    "new_status",
    type=click.Choice(_STATUS_CHOICES, case_sensitive=False),
    default=None,
    help="New lifecycle status",
)
@click.option("--description", default=None, help="New description")
@click.option("--default-binary", default=None, help="New default binary")
def update_slice_command(
    root: Path,
    name: str,
    new_status: str | None,
    description: str | None,
    default_binary: str | None,
) -> None:
    """Update a slice's status, description or default binary."""
    with open_project(root) as ctx, command_errors(f"Failed to update slice {name}"):
        record = update_slice(
            ctx,
            name,
            status=new_status,
            description=description,
            default_binary=default_binary,
        )
    status(f"Updated slice {record.name} ({record.status.label})", style="success")


@click.command()
@root_option
def emit_slice_docs_command(root: Path) -> None:
    """Regenerate docs/slices/<slice>.md from the latest matching runs."""
    with open_project(root) as ctx, command_errors("Failed to emit slice docs"):
        emitted = emit_slice_docs(ctx)
    if not emitted:
        status("No slices to emit docs for.", style="warning")
        return
    for item in emitted:
        for path in item.paths:
            status(f"Emitted slice doc: {path}", style="success")
    status(pluralize(len(emitted), "slice doc") + " written")


@click.command()
@root_option
@click.option("--binary", default=None, help="Prefer runs against this binary")
def emit_slice_reports_command(root: Path, binary: str | None) -> None:
    """Write reports/<slice>.json and graphs/<slice>.dot for every slice."""
    with open_project(root) as ctx, command_errors("Failed to emit slice reports"):
        emitted = emit_slice_reports(ctx, preferred_binary=binary)
    if not emitted:
        status("No slices to emit reports for.", style="warning")
        return
    for item in emitted:
        report_path, graph_path = item.paths
        status(f"Emitted slice report: {report_path}", style="success")
        status(f"Emitted slice graph: {graph_path}", style="success")

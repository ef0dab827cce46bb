"""add-binary and list-binaries commands."""

from pathlib import Path

import click

from binslicer.cli.utils import (
    command_errors,
    echo_json,
    json_option,
    open_project,
    or_dash,
    root_option,
)
from binslicer.core.progress import status
from binslicer.project.ops import add_binary


@click.command()
@root_option
@click.option(
    "--path",
    "binary_path",
    required=True,
    help="Binary file (relative paths are taken from --root)",
)
@click.option("--name", default=None, help="Display name (default: file name)")
@click.option("--arch", default=None, help="Architecture tag, e.g. armv7")
@click.option("--hash", "hash_value", default=None, help="Precomputed SHA-256 (skips hashing)")
@click.option("--skip-hash", is_flag=True, help="Do not hash the file")
def add_binary_command(
    root: Path,
    binary_path: str,
    name: str | None,
    arch: str | None,
    hash_value: str | None,
    skip_hash: bool,
) -> None:
    """Register a binary with the project."""
    with open_project(root) as ctx, command_errors("Failed to add binary"):
        record = add_binary(
            ctx,
            binary_path,
            name=name,
            arch=arch,
            hash_value=hash_value,
            skip_hash=skip_hash,
        )
        status(f"Added binary {record.name}", style="success")
        status(f"Id: {record.id}")
        status(f"Path (relative): {record.path}")
        status(f"Hash: {or_dash(record.hash)}")
        status(f"DB: {ctx.db_path}")


@click.command()
@root_option
@json_option
def list_binaries_command(root: Path, as_json: bool) -> None:
    """List registered binaries in insertion order."""
    with open_project(root) as ctx, command_errors("Failed to list binaries"):
        binaries = ctx.store.list_binaries()

    if as_json:
        echo_json(binaries)
        return

    click.echo("Binaries:")
    if not binaries:
        click.echo("(none)")
        return
    for b in binaries:
        click.echo(f"- {b.name} ({b.path}) arch={or_dash(b.arch)} hash={or_dash(b.hash)}")

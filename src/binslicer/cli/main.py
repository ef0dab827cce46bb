"""binary-slicer CLI."""

import click

from binslicer.cli.backends import list_backends_command, setup_backend_command
from binslicer.cli.binaries import add_binary_command, list_binaries_command
from binslicer.cli.project import init_project_command, project_info_command
from binslicer.cli.rituals import (
    clean_outputs_command,
    list_ritual_runs_command,
    list_ritual_specs_command,
    rerun_ritual_command,
    run_ritual_command,
    show_ritual_run_command,
    update_ritual_run_status_command,
)
from binslicer.cli.slices import (
    emit_slice_docs_command,
    emit_slice_reports_command,
    init_slice_command,
    list_slices_command,
    update_slice_command,
)
from binslicer.config.settings import load_settings
from binslicer.core.errors import ConfigError
from binslicer.core.logging import configure_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="binary-slicer")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Binary Slicer - slice-oriented reverse engineering workbench."""
    ctx.ensure_object(dict)
    try:
        settings = load_settings()
    except ConfigError as e:
        raise click.ClickException(f"Failed to load settings: {e.message}") from e
    logging_config = settings.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    configure_logging(config=logging_config)
    ctx.obj["verbose"] = verbose
    ctx.obj["settings"] = settings


cli.add_command(init_project_command, name="init-project")
cli.add_command(project_info_command, name="project-info")
cli.add_command(add_binary_command, name="add-binary")
cli.add_command(list_binaries_command, name="list-binaries")
cli.add_command(init_slice_command, name="init-slice")
cli.add_command(list_slices_command, name="list-slices")
cli.add_command(update_slice_command, name="update-slice")
cli.add_command(emit_slice_docs_command, name="emit-slice-docs")
cli.add_command(emit_slice_reports_command, name="emit-slice-reports")
cli.add_command(run_ritual_command, name="run-ritual")
cli.add_command(rerun_ritual_command, name="rerun-ritual")
cli.add_command(list_ritual_runs_command, name="list-ritual-runs")
cli.add_command(show_ritual_run_command, name="show-ritual-run")
cli.add_command(list_ritual_specs_command, name="list-ritual-specs")
cli.add_command(update_ritual_run_status_command, name="update-ritual-run-status")
cli.add_command(clean_outputs_command, name="clean-outputs")
cli.add_command(list_backends_command, name="list-backends")
cli.add_command(setup_backend_command, name="setup-backend")


if __name__ == "__main__":
    cli()

"""CLI utilities."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import click
from pydantic import BaseModel

from binslicer.backends.registry import BackendRegistry, default_backend_registry
from binslicer.core.errors import BinSlicerError
from binslicer.project.context import ProjectContext

F = TypeVar("F", bound=Callable[..., Any])


def root_option(func: F) -> F:
    """``--root`` option shared by every project command."""
    return click.option(
        "--root",
        default=".",
        show_default=True,
        type=click.Path(file_okay=False, path_type=Path),
        help="Project root directory",
    )(func)


def json_option(func: F) -> F:
    return click.option("--json", "as_json", is_flag=True, help="Output as JSON")(func)


@contextmanager
def command_errors(context: str) -> Iterator[None]:
    """Turn BinSlicerError into a one-line ClickException prefixed with ``context``."""
    try:
        yield
    except BinSlicerError as e:
        raise click.ClickException(f"{context}: {e.message}") from e


@contextmanager
def open_project(root: Path) -> Iterator[ProjectContext]:
    """Open the project at ``root`` for the duration of a command.

    Raises:
        click.ClickException: If the manifest or store cannot be opened.
    """
    with command_errors(f"Failed to open project at {root}"):
        ctx = ProjectContext.from_root(root)
    try:
        yield ctx
    finally:
        ctx.close()


def backend_registry(click_ctx: click.Context | None = None) -> BackendRegistry:
    """Backend registry built from process settings, if the group loaded any."""
    click_ctx = click_ctx or click.get_current_context(silent=True)
    obj = click_ctx.find_object(dict) if click_ctx is not None else None
    settings = obj.get("settings") if obj else None
    if settings is None:
        return default_backend_registry()
    return default_backend_registry(
        rizin_path=settings.backends.rizin_path,
        ghidra_path=settings.backends.ghidra_path,
        timeout=settings.backends.timeout_sec,
    )


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, Path):
        return str(value)
    return value


def echo_json(value: Any) -> None:
    """Pretty-print models, lists and dicts as JSON on stdout."""
    click.echo(json.dumps(to_jsonable(value), indent=2))


def or_dash(value: object | None) -> str:
    return "-" if value is None or value == "" else str(value)

"""Project-level operations: initialization, binary registration, info."""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import BaseModel

from binslicer.backends.registry import BackendRegistry
from binslicer.core.errors import RunError
from binslicer.core.hashing import canonicalize_path, infer_project_name, sha256_file
from binslicer.project.config import ProjectConfig, save_project_config
from binslicer.project.context import ProjectContext
from binslicer.project.layout import ProjectLayout, check_path_segment
from binslicer.rituals.views import (
    RitualRunInfo,
    RitualSpecInfo,
    collect_ritual_specs,
    load_runs_from_db_and_disk,
)
from binslicer.store.database import ProjectStore
from binslicer.store.models import BinaryRecord, SliceRecord

log = structlog.get_logger(__name__)


def init_project(root: Path | str, name: str | None = None) -> ProjectContext:
    """Create the layout directories, write the manifest and create the store.

    An existing manifest is overwritten; an existing store is opened and
    migrated, never recreated.
    """
    layout = ProjectLayout.for_root(canonicalize_path(root))
    for _label, directory in layout.directories():
        directory.mkdir(parents=True, exist_ok=True)

    config = ProjectConfig.new(
        name or infer_project_name(layout.root), layout.db_path_relative_string()
    )
    save_project_config(config, layout.project_config_path)
    db_path = config.resolved_db_path(layout.root)
    store = ProjectStore.open(db_path)
    log.info("project_initialized", root=str(layout.root), name=config.name)
    return ProjectContext(layout=layout, config=config, db_path=db_path, store=store)


def add_binary(
    ctx: ProjectContext,
    path: Path | str,
    *,
    name: str | None = None,
    arch: str | None = None,
    hash_value: str | None = None,
    skip_hash: bool = False,
) -> BinaryRecord:
    """Register a binary file.

    Relative paths are taken against the project root. The stored path is
    root-relative when the file lives under the root.

    Raises:
        RunError: MISSING_BINARY if the file does not exist.
        ArgumentError: If the binary name is not a single path component.
        HashingError: If the file cannot be hashed.
    """
    path = Path(path)
    check_path_segment("binary", name or path.name)
    abs_path = path if path.is_absolute() else ctx.root / path
    if not abs_path.is_file():
        raise RunError.missing_binary(str(abs_path))
    abs_path = abs_path.resolve()

    try:
        stored = abs_path.relative_to(ctx.root).as_posix()
    except ValueError:
        stored = str(abs_path)

    digest = hash_value
    if digest is None and not skip_hash:
        digest = sha256_file(abs_path)

    record = BinaryRecord(
        name=name or path.name,
        path=stored,
        arch=arch,
        hash=digest.lower() if digest else None,
    )
    record.id = ctx.store.insert_binary(record)
    log.info("binary_added", name=record.name, path=record.path, id=record.id)
    return record


class LayoutStatus(BaseModel):
    label: str
    path: str
    exists: bool


class ProjectInfo(BaseModel):
    """Everything ``project-info`` shows, in one serializable snapshot."""

    name: str
    description: str | None = None
    root: str
    config_file: str
    config_version: str
    db_path: str
    default_backend: str | None = None
    available_backends: list[str]
    backends: dict[str, str]
    backend_versions: dict[str, str]
    layout: list[LayoutStatus]
    binaries: list[BinaryRecord]
    slices: list[SliceRecord]
    ritual_runs: list[RitualRunInfo]
    ritual_specs: list[RitualSpecInfo]

    @property
    def analyzed_runs(self) -> int:
        return sum(1 for run in self.ritual_runs if run.analysis is not None)


def project_info(ctx: ProjectContext, registry: BackendRegistry) -> ProjectInfo:
    layout = ctx.layout
    return ProjectInfo(
        name=ctx.config.name,
        description=ctx.config.description,
        root=str(layout.root),
        config_file=str(layout.project_config_path),
        config_version=ctx.config.config_version,
        db_path=ctx.config.db.path,
        default_backend=ctx.config.default_backend,
        available_backends=registry.names(),
        backends=ctx.config.configured_backends(),
        backend_versions=ctx.config.detected_versions(),
        layout=[
            LayoutStatus(label=label, path=str(path), exists=path.is_dir())
            for label, path in layout.directories()
        ],
        binaries=ctx.store.list_binaries(),
        slices=ctx.store.list_slices(),
        ritual_runs=load_runs_from_db_and_disk(ctx),
        ritual_specs=collect_ritual_specs(layout),
    )

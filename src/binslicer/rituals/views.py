"""Run views: one listing out of the store and the run directories.

The store is authoritative. Run directories under ``outputs/binaries``
that have no row in the store (older runs, moved store files) are added
from their ``run_metadata.json``, or with every field absent when that
file is missing or unreadable.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, ValidationError

from binslicer.analysis.summary import RunAnalysisSummary, run_analysis_summary
from binslicer.core.errors import SpecError, StoreError
from binslicer.project.context import ProjectContext
from binslicer.project.layout import ProjectLayout
from binslicer.rituals.spec import SPEC_SUFFIXES, load_ritual_spec
from binslicer.store.models import DEFAULT_BACKEND, RitualRunRecord, RitualRunStatus

log = structlog.get_logger(__name__)

RUN_METADATA_FILE = "run_metadata.json"
RUN_REPORT_FILE = "report.json"


class RunMetadataDocument(BaseModel):
    """Contents of ``run_metadata.json``."""

    ritual: str
    binary: str
    spec_hash: str
    binary_hash: str | None = None
    backend: str = DEFAULT_BACKEND
    backend_version: str | None = None
    backend_path: str | None = None
    started_at: str
    finished_at: str
    status: RitualRunStatus

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


def read_run_metadata(run_dir: Path) -> RunMetadataDocument | None:
    """Parse a run directory's metadata; None when missing or malformed."""
    path = run_dir / RUN_METADATA_FILE
    if not path.is_file():
        return None
    try:
        return RunMetadataDocument.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValidationError) as e:
        log.debug("run_metadata_unreadable", path=str(path), error=str(e))
        return None


def write_run_metadata(run_dir: Path, document: RunMetadataDocument) -> Path:
    path = run_dir / RUN_METADATA_FILE
    path.write_text(document.to_json() + "\n", encoding="utf-8")
    return path


class RitualRunInfo(BaseModel):
    """One row of a run listing."""

    binary: str
    name: str
    path: str
    source: Literal["db", "disk"]
    id: int | None = None
    spec_hash: str | None = None
    binary_hash: str | None = None
    backend: str | None = None
    backend_version: str | None = None
    backend_path: str | None = None
    status: RitualRunStatus | None = None
    started_at: str | None = None
    finished_at: str | None = None
    analysis: RunAnalysisSummary | None = None

    @classmethod
    def from_record(cls, record: RitualRunRecord, run_dir: Path) -> RitualRunInfo:
        return cls(
            binary=record.binary,
            name=record.ritual,
            path=str(run_dir),
            source="db",
            id=record.id,
            spec_hash=record.spec_hash,
            binary_hash=record.binary_hash,
            backend=record.backend,
            backend_version=record.backend_version,
            backend_path=record.backend_path,
            status=record.status,
            started_at=record.started_at,
            finished_at=record.finished_at,
        )

    @classmethod
    def from_disk(cls, binary: str, name: str, run_dir: Path) -> RitualRunInfo:
        meta = read_run_metadata(run_dir)
        info = cls(binary=binary, name=name, path=str(run_dir), source="disk")
        if meta is None:
            return info
        return info.model_copy(
            update={
                "spec_hash": meta.spec_hash,
                "binary_hash": meta.binary_hash,
                "backend": meta.backend,
                "backend_version": meta.backend_version,
                "backend_path": meta.backend_path,
                "status": meta.status,
                "started_at": meta.started_at,
                "finished_at": meta.finished_at,
            }
        )


def collect_ritual_runs_on_disk(
    layout: ProjectLayout, binary: str | None = None
) -> list[RitualRunInfo]:
    """Every ``outputs/binaries/<bin>/<run>/`` directory as a disk view."""
    root = layout.outputs_binaries_dir
    if not root.is_dir():
        return []
    runs: list[RitualRunInfo] = []
    for bin_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        if binary is not None and bin_dir.name != binary:
            continue
        for run_dir in sorted(p for p in bin_dir.iterdir() if p.is_dir()):
            runs.append(RitualRunInfo.from_disk(bin_dir.name, run_dir.name, run_dir))
    return runs


def _attach_summary(ctx: ProjectContext, info: RitualRunInfo) -> RitualRunInfo:
    try:
        result = ctx.store.load_analysis_result(info.binary, info.name)
    except StoreError as e:
        log.warning(
            "run_summary_unavailable", binary=info.binary, ritual=info.name, error=e.message
        )
        return info
    if result is None:
        return info
    info.analysis = run_analysis_summary(result)
    return info


def load_runs_from_db_and_disk(
    ctx: ProjectContext, binary: str | None = None
) -> list[RitualRunInfo]:
    """Merged run listing ordered by (run name, binary).

    A forced rerun leaves several rows for one ``(binary, run)`` pair; only
    the latest is listed. Disk views are only added for pairs with no row.
    """
    latest: dict[tuple[str, str], RitualRunRecord] = {}
    for record in ctx.store.list_ritual_runs(binary):
        latest[(record.binary, record.ritual)] = record

    layout = ctx.layout
    merged = [
        _attach_summary(
            ctx,
            RitualRunInfo.from_record(record, layout.run_output_dir(record.binary, record.ritual)),
        )
        for record in latest.values()
    ]
    known = set(latest)
    for run in collect_ritual_runs_on_disk(ctx.layout, binary):
        if (run.binary, run.name) not in known:
            known.add((run.binary, run.name))
            merged.append(run)
    merged.sort(key=lambda r: (r.name, r.binary))
    return merged


class RitualSpecInfo(BaseModel):
    name: str
    binary: str | None = None
    path: str
    format: Literal["yaml", "json"]


def collect_ritual_specs(layout: ProjectLayout) -> list[RitualSpecInfo]:
    """Spec files under ``rituals/``, sorted by name.

    Unparseable files are still listed, named after the file stem.
    """
    if not layout.rituals_dir.is_dir():
        return []
    specs: list[RitualSpecInfo] = []
    for path in layout.rituals_dir.iterdir():
        if not path.is_file() or path.suffix.lower() not in SPEC_SUFFIXES:
            continue
        name: str | None = None
        binary: str | None = None
        try:
            spec = load_ritual_spec(path)
        except SpecError as e:
            log.debug("ritual_spec_unreadable", path=str(path), error=e.message)
        else:
            name = spec.name or None
            binary = spec.binary or None
        specs.append(
            RitualSpecInfo(
                name=name or path.stem,
                binary=binary,
                path=str(path),
                format="json" if path.suffix.lower() == ".json" else "yaml",
            )
        )
    specs.sort(key=lambda s: (s.name, s.path))
    return specs

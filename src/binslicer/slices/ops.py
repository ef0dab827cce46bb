"""Slice operations: create, update, and regenerate docs and reports.

Slices are linked to runs only by name: the run describing a slice is the
latest run whose ritual name equals the slice name (see
``latest_run_for_slice``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import structlog

from binslicer.core.errors import ArgumentError, NotFoundError, StoreError
from binslicer.project.context import ProjectContext
from binslicer.project.layout import ProjectLayout, check_path_segment
from binslicer.rituals.spec import NORMALIZED_SPEC_FILE, roots_from_spec_file
from binslicer.slices.render import (
    SliceView,
    build_slice_report,
    render_dot,
    render_slice_doc,
    render_slice_scaffold,
)
from binslicer.store.models import RitualRunRecord, SliceRecord, SliceStatus

log = structlog.get_logger(__name__)


def init_slice(
    ctx: ProjectContext,
    name: str,
    *,
    description: str | None = None,
    default_binary: str | None = None,
) -> Path:
    """Insert a Planned slice and write its doc scaffold. Returns the doc path."""
    check_path_segment("slice", name)
    ctx.store.insert_slice(
        SliceRecord(
            name=name,
            description=description,
            status=SliceStatus.PLANNED,
            default_binary=default_binary,
        )
    )
    doc_path = ctx.layout.slice_doc_path(name)
    doc_path.parent.mkdir(parents=True, exist_ok=True)
    doc_path.write_text(render_slice_scaffold(name, description), encoding="utf-8")
    log.info("slice_initialized", slice=name, doc=str(doc_path))
    return doc_path


def update_slice(
    ctx: ProjectContext,
    name: str,
    *,
    status: str | None = None,
    description: str | None = None,
    default_binary: str | None = None,
) -> SliceRecord:
    """Apply an explicit lifecycle/metadata update.

    Raises:
        ArgumentError: ARGUMENT_CONSTRAINT for an unknown status label.
        NotFoundError: No slice with that name.
    """
    parsed: SliceStatus | None = None
    if status is not None:
        try:
            parsed = SliceStatus.from_label(status)
        except KeyError as e:
            allowed = ", ".join(s.label.lower() for s in SliceStatus)
            raise ArgumentError.constraint(
                f"unknown slice status '{status}' (allowed: {allowed})"
            ) from e
    updated = ctx.store.update_slice(
        name, status=parsed, description=description, default_binary=default_binary
    )
    if updated == 0:
        raise NotFoundError.entity("slice", name)
    record = ctx.store.get_slice(name)
    if record is None:
        raise NotFoundError.entity("slice", name)
    return record


def _run_order(run: RitualRunRecord) -> tuple[str, str, int]:
    return (run.finished_at, run.started_at, run.id or 0)


def latest_run_for_slice(
    slice_record: SliceRecord,
    runs: list[RitualRunRecord],
    preferred_binary: str | None = None,
) -> RitualRunRecord | None:
    """Pick the run that describes a slice.

    Candidates are runs whose ritual name equals the slice name, restricted
    to ``preferred_binary`` (or else the slice's default binary) when one is
    given. If that restriction leaves nothing, any binary is accepted. The
    latest by (finished_at, started_at) wins.
    """
    named = [r for r in runs if r.ritual == slice_record.name]
    binary = preferred_binary or slice_record.default_binary
    candidates = [r for r in named if binary is None or r.binary == binary] or named
    if not candidates:
        return None
    return max(candidates, key=_run_order)


def roots_for_run(layout: ProjectLayout, run: RitualRunRecord) -> list[str]:
    """Roots from the run's normalized spec.yaml."""
    run_dir = layout.run_output_dir(run.binary, run.ritual)
    return roots_from_spec_file(run_dir / NORMALIZED_SPEC_FILE)


def build_slice_view(
    ctx: ProjectContext,
    slice_record: SliceRecord,
    runs: list[RitualRunRecord],
    preferred_binary: str | None = None,
) -> SliceView:
    run = latest_run_for_slice(slice_record, runs, preferred_binary)
    if run is None:
        return SliceView(slice=slice_record)
    try:
        analysis = ctx.store.load_analysis_result(run.binary, run.ritual)
    except StoreError as e:
        log.warning("slice_analysis_unavailable", slice=slice_record.name, error=e.message)
        analysis = None
    if analysis is not None and analysis.roots:
        roots = analysis.roots
    else:
        roots = roots_for_run(ctx.layout, run)
    return SliceView(slice=slice_record, run=run, analysis=analysis, roots=roots)


@dataclass(slots=True)
class EmittedSlice:
    name: str
    paths: list[Path]


def emit_slice_docs(ctx: ProjectContext) -> list[EmittedSlice]:
    """Rewrite ``docs/slices/<slice>.md`` for every slice."""
    ctx.layout.slices_docs_dir.mkdir(parents=True, exist_ok=True)
    runs = ctx.store.list_ritual_runs()
    emitted: list[EmittedSlice] = []
    for record in ctx.store.list_slices():
        view = build_slice_view(ctx, record, runs)
        doc_path = ctx.layout.slice_doc_path(record.name)
        doc_path.write_text(render_slice_doc(view), encoding="utf-8")
        emitted.append(EmittedSlice(name=record.name, paths=[doc_path]))
    log.info("slice_docs_emitted", count=len(emitted))
    return emitted


def emit_slice_reports(
    ctx: ProjectContext, preferred_binary: str | None = None
) -> list[EmittedSlice]:
    """Write ``reports/<slice>.json`` and ``graphs/<slice>.dot`` for every slice."""
    ctx.layout.reports_dir.mkdir(parents=True, exist_ok=True)
    ctx.layout.graphs_dir.mkdir(parents=True, exist_ok=True)
    runs = ctx.store.list_ritual_runs()
    emitted: list[EmittedSlice] = []
    for record in ctx.store.list_slices():
        view = build_slice_view(ctx, record, runs, preferred_binary)
        report_path = ctx.layout.slice_report_path(record.name)
        report_path.write_text(json.dumps(build_slice_report(view), indent=2), encoding="utf-8")
        graph_path = ctx.layout.slice_graph_path(record.name)
        graph_path.write_text(
            render_dot(view.analysis, view.backend, view.backend_version), encoding="utf-8"
        )
        emitted.append(EmittedSlice(name=record.name, paths=[report_path, graph_path]))
    log.info("slice_reports_emitted", count=len(emitted))
    return emitted

"""Ritual run operations behind the command surface.

A run goes through these steps:
1. Resolve the spec's binary against the store (first match in id order)
2. Choose a backend (override > project default > spec > validate-only)
3. Create the run directory, refusing to reuse one unless forced
4. Write the normalized ``spec.yaml``; its byte hash is the spec hash
5. Run the backend via RitualRunner, which records the run row
6. Persist the analysis, then write ``report.json`` and ``run_metadata.json``
"""

from __future__ import annotations

import json
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from binslicer.analysis.models import (
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResult,
    RunMetadata,
)
from binslicer.backends.registry import BackendRegistry
from binslicer.backends.validate_only import VALIDATE_ONLY
from binslicer.core.errors import (
    ArgumentError,
    BinSlicerError,
    NotFoundError,
    RunError,
    SpecError,
)
from binslicer.core.hashing import sha256_bytes, sha256_file
from binslicer.project.context import ProjectContext
from binslicer.project.layout import ProjectLayout, check_path_segment
from binslicer.rituals.runner import RitualRunner, utc_now
from binslicer.rituals.spec import (
    NORMALIZED_SPEC_FILE,
    RitualSpec,
    choose_backend,
    load_ritual_spec,
)
from binslicer.rituals.views import (
    RUN_METADATA_FILE,
    RUN_REPORT_FILE,
    RitualRunInfo,
    RunMetadataDocument,
    read_run_metadata,
    write_run_metadata,
)
from binslicer.store.models import BinaryRecord, RitualRunStatus

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class RitualRunSummary:
    """What a completed run command reports back."""

    binary: str
    ritual: str
    run_dir: Path
    backend: str
    status: RitualRunStatus
    run_id: int | None
    result: AnalysisResult


def prepare_run_dir(run_dir: Path, *, force: bool) -> None:
    """Create an empty run directory.

    An existing directory is an error unless ``force`` is set. When forced,
    the old directory is first renamed aside, so the new run never sees
    leftovers even if the removal fails halfway.

    Raises:
        RunError: RUN_ALREADY_EXISTS when the directory exists and not forced.
    """
    if run_dir.exists():
        if not force:
            raise RunError.already_exists(str(run_dir))
        tombstone = run_dir.with_name(f".{run_dir.name}.replaced-{uuid.uuid4().hex[:8]}")
        run_dir.rename(tombstone)
        shutil.rmtree(tombstone)
        log.info("run_dir_replaced", path=str(run_dir))
    run_dir.mkdir(parents=True)


def _resolve_binary(ctx: ProjectContext, selector: str) -> BinaryRecord:
    binary = ctx.store.find_binary(selector)
    if binary is None:
        raise NotFoundError.entity("binary", selector)
    return binary


def _binary_hash(binary: BinaryRecord, binary_path: Path) -> str | None:
    if binary.hash:
        return binary.hash
    if binary_path.is_file():
        return sha256_file(binary_path)
    return None


def _run_report(
    spec: RitualSpec,
    run_name: str,
    binary: BinaryRecord,
    status: RitualRunStatus,
    backend: str,
    result: AnalysisResult,
) -> dict[str, Any]:
    return {
        "ritual": run_name,
        "binary": binary.name,
        "roots": spec.roots,
        "max_depth": spec.max_depth,
        "status": status.value,
        "backend": backend,
        "backend_version": result.backend_version,
        "backend_path": result.backend_path,
        "functions": [f.model_dump(mode="json") for f in result.functions],
        "edges": [e.model_dump(mode="json") for e in result.call_edges],
        "basic_blocks": [b.model_dump(mode="json") for b in result.basic_blocks],
        "evidence": [e.model_dump(mode="json") for e in result.evidence],
    }


def execute_spec(
    ctx: ProjectContext,
    spec: RitualSpec,
    registry: BackendRegistry,
    *,
    run_name: str | None = None,
    backend_override: str | None = None,
    force: bool = False,
) -> RitualRunSummary:
    """Run a validated spec into ``outputs/binaries/<binary>/<run_name>/``.

    Raises:
        NotFoundError: The spec's binary is not registered.
        BackendError: The chosen backend is not in the registry.
        RunError: RUN_ALREADY_EXISTS or MISSING_BINARY.
        ArgumentError: The run or binary name is not a single path component.
        AnalysisError: The backend failed; a ``failed`` run_metadata.json
            is left in the run directory.
    """
    run_name = run_name or spec.name
    binary = _resolve_binary(ctx, spec.binary)
    check_path_segment("run", run_name)
    check_path_segment("binary", binary.name)
    backend_name = choose_backend(backend_override, ctx.config.default_backend, spec.backend)
    backend = registry.require(backend_name)
    normalized = spec.normalized(backend_name)

    run_dir = ctx.layout.run_output_dir(binary.name, run_name)
    prepare_run_dir(run_dir, force=force)

    spec_bytes = normalized.to_yaml_bytes()
    (run_dir / NORMALIZED_SPEC_FILE).write_bytes(spec_bytes)
    spec_hash = sha256_bytes(spec_bytes)

    binary_path = ctx.resolve_binary_path(binary.path)
    binary_hash = _binary_hash(binary, binary_path)
    status = RitualRunStatus.STUBBED if backend_name == VALIDATE_ONLY else RitualRunStatus.SUCCEEDED
    configured_path = ctx.config.backend_path(backend_name)

    request = AnalysisRequest(
        ritual_name=run_name,
        binary_name=binary.name,
        binary_path=binary_path,
        roots=list(normalized.roots),
        options=AnalysisOptions(max_depth=normalized.max_depth),
        arch=binary.arch,
        backend_path=Path(configured_path) if configured_path else None,
    )
    meta = RunMetadata(
        spec_hash=spec_hash,
        binary_hash=binary_hash,
        backend=backend_name,
        backend_version=ctx.config.backend_version(backend_name),
        backend_path=configured_path,
        status=status,
    )

    started_at = utc_now()
    log.info("ritual_run_started", binary=binary.name, ritual=run_name, backend=backend_name)
    try:
        outcome = RitualRunner(ctx, backend).run(request, meta)
    except BinSlicerError as e:
        write_run_metadata(
            run_dir,
            RunMetadataDocument(
                ritual=run_name,
                binary=binary.name,
                spec_hash=spec_hash,
                binary_hash=binary_hash,
                backend=backend_name,
                backend_version=meta.backend_version,
                backend_path=configured_path,
                started_at=started_at,
                finished_at=utc_now(),
                status=RitualRunStatus.FAILED,
            ),
        )
        log.error("ritual_run_failed", binary=binary.name, ritual=run_name, error=e.message)
        raise

    result = outcome.result
    keep_analysis = status is not RitualRunStatus.STUBBED or result.has_content()
    if outcome.run_id is not None and keep_analysis:
        ctx.store.insert_analysis_result(outcome.run_id, result)

    report = _run_report(normalized, run_name, binary, status, backend_name, result)
    (run_dir / RUN_REPORT_FILE).write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
    write_run_metadata(
        run_dir,
        RunMetadataDocument(
            ritual=run_name,
            binary=binary.name,
            spec_hash=spec_hash,
            binary_hash=binary_hash,
            backend=backend_name,
            backend_version=result.backend_version,
            backend_path=result.backend_path,
            started_at=outcome.record.started_at,
            finished_at=outcome.record.finished_at,
            status=status,
        ),
    )
    return RitualRunSummary(
        binary=binary.name,
        ritual=run_name,
        run_dir=run_dir,
        backend=backend_name,
        status=status,
        run_id=outcome.run_id,
        result=result,
    )


def run_ritual(
    ctx: ProjectContext,
    spec_path: Path,
    registry: BackendRegistry,
    *,
    backend_override: str | None = None,
    force: bool = False,
) -> RitualRunSummary:
    """Load, validate and run a spec file."""
    spec = load_ritual_spec(spec_path)
    spec.validate_fields()
    return execute_spec(ctx, spec, registry, backend_override=backend_override, force=force)


def rerun_ritual(
    ctx: ProjectContext,
    binary: str,
    ritual: str,
    as_name: str,
    registry: BackendRegistry,
    *,
    backend_override: str | None = None,
    force: bool = False,
) -> RitualRunSummary:
    """Run a prior run's normalized spec again under a new run name.

    The spec is read back from the prior run directory, not from the
    original source file. Only the backend may change.
    """
    record = _resolve_binary(ctx, binary)
    spec_path = ctx.layout.run_output_dir(record.name, ritual) / NORMALIZED_SPEC_FILE
    if not spec_path.is_file():
        if not spec_path.parent.is_dir():
            raise NotFoundError.entity("ritual run", f"{record.name}/{ritual}")
        raise SpecError.io(str(spec_path), "normalized spec missing from run directory")
    spec = load_ritual_spec(spec_path)
    spec.validate_fields()
    return execute_spec(
        ctx,
        spec,
        registry,
        run_name=as_name,
        backend_override=backend_override,
        force=force,
    )


def show_ritual_run(ctx: ProjectContext, binary: str, ritual: str) -> RitualRunInfo:
    """The latest stored run for the pair, else the run directory's metadata."""
    run_dir = ctx.layout.run_output_dir(binary, ritual)
    record = ctx.store.get_ritual_run(binary, ritual)
    if record is not None:
        return RitualRunInfo.from_record(record, run_dir)
    if run_dir.is_dir():
        return RitualRunInfo.from_disk(binary, ritual, run_dir)
    raise NotFoundError.entity("ritual run", f"{binary}/{ritual}")


def update_ritual_run_status(
    ctx: ProjectContext,
    binary: str,
    ritual: str,
    status: str,
    finished_at: str | None = None,
) -> RitualRunStatus:
    """Set a run's status in the store and in its run_metadata.json.

    Raises:
        RunError: INVALID_STATUS for unknown status strings.
        NotFoundError: No stored run for the pair.
    """
    parsed = RitualRunStatus.parse(status)
    finished_at = finished_at or utc_now()
    updated = ctx.store.update_ritual_run_status(binary, ritual, parsed, finished_at)
    if updated == 0:
        raise NotFoundError.entity("ritual run", f"{binary}/{ritual}")

    run_dir = ctx.layout.run_output_dir(binary, ritual)
    meta = read_run_metadata(run_dir)
    if meta is not None:
        write_run_metadata(
            run_dir, meta.model_copy(update={"status": parsed, "finished_at": finished_at})
        )
    elif (run_dir / RUN_METADATA_FILE).exists():
        log.warning("run_metadata_not_updated", path=str(run_dir / RUN_METADATA_FILE))
    log.info(
        "ritual_run_status_updated",
        binary=binary,
        ritual=ritual,
        status=parsed.value,
        rows=updated,
    )
    return parsed


@dataclass(slots=True)
class CleanTarget:
    path: Path
    removed: bool


def clean_outputs(
    layout: ProjectLayout,
    *,
    binary: str | None = None,
    ritual: str | None = None,
    all_outputs: bool = False,
    yes: bool = False,
) -> list[CleanTarget]:
    """Remove run outputs for one run, one binary, or every binary.

    ``all_outputs`` takes precedence over ``binary`` and ``ritual``.

    Raises:
        ArgumentError: ARGUMENT_CONSTRAINT when the selection is incomplete,
            ``yes`` was not given, or a name is not a single path component.
    """
    if not yes:
        raise ArgumentError.constraint("refusing to remove outputs without --yes")
    if ritual is not None and binary is None:
        raise ArgumentError.constraint("--ritual requires --binary")
    if all_outputs:
        targets = [layout.outputs_binaries_dir]
    elif binary is None:
        raise ArgumentError.constraint("specify --binary or --all")
    elif ritual is None:
        targets = [layout.binary_output_root(check_path_segment("binary", binary))]
    else:
        check_path_segment("binary", binary)
        targets = [layout.run_output_dir(binary, check_path_segment("run", ritual))]

    cleaned: list[CleanTarget] = []
    for target in targets:
        if target.exists():
            shutil.rmtree(target)
            log.info("outputs_removed", path=str(target))
            cleaned.append(CleanTarget(path=target, removed=True))
        else:
            cleaned.append(CleanTarget(path=target, removed=False))
    if all_outputs:
        layout.outputs_binaries_dir.mkdir(parents=True, exist_ok=True)
    return cleaned

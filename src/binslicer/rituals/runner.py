"""Ritual runner: invoke a backend and record the run.

The runner checks the binary, calls the backend and inserts the run row.
It does not persist the analysis tuples; the caller decides whether a run
is worth materializing (empty stubbed runs usually are not) and calls
``ProjectStore.insert_analysis_result`` itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from binslicer.analysis.models import AnalysisRequest, AnalysisResult, RunMetadata
from binslicer.backends.base import AnalysisBackend
from binslicer.core.errors import RunError, StoreError
from binslicer.project.context import ProjectContext
from binslicer.store.models import RitualRunRecord

log = structlog.get_logger(__name__)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class RunOutcome:
    """What a run produced.

    ``run_id`` is None when the run row could not be inserted; ``record``
    is the row as it was (or would have been) written.
    """

    result: AnalysisResult
    record: RitualRunRecord
    run_id: int | None


class RitualRunner:
    def __init__(self, ctx: ProjectContext, backend: AnalysisBackend) -> None:
        self._ctx = ctx
        self._backend = backend

    def run(self, request: AnalysisRequest, meta: RunMetadata) -> RunOutcome:
        """Analyze ``request.binary_path`` and insert a run row.

        Raises:
            RunError: MISSING_BINARY if the binary path is not a regular file.
            AnalysisError: Whatever the backend raised, unchanged.
        """
        if not request.binary_path.is_file():
            raise RunError.missing_binary(str(request.binary_path))

        result = self._backend.analyze(request)
        if result.backend_path is None and request.backend_path is not None:
            result.backend_path = str(request.backend_path)
        if result.backend_version is None:
            result.backend_version = meta.backend_version

        now = utc_now()
        record = RitualRunRecord(
            binary=request.binary_name,
            ritual=request.ritual_name,
            spec_hash=meta.spec_hash,
            binary_hash=meta.binary_hash,
            backend=meta.backend,
            backend_version=result.backend_version,
            backend_path=result.backend_path or meta.backend_path,
            status=meta.status,
            started_at=now,
            finished_at=now,
        )
        try:
            run_id: int | None = self._ctx.store.insert_ritual_run(record)
        except StoreError as e:
            log.warning(
                "ritual_run_insert_failed",
                binary=record.binary,
                ritual=record.ritual,
                error=e.message,
            )
            run_id = None
        else:
            record.id = run_id
            log.info(
                "ritual_run_recorded",
                binary=record.binary,
                ritual=record.ritual,
                run_id=run_id,
                backend=record.backend,
                status=record.status.value,
            )
        return RunOutcome(result=result, record=record, run_id=run_id)

"""Tests for ProjectStore entity and analysis persistence."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from binslicer.analysis.models import (
    AnalysisResult,
    BasicBlock,
    BlockEdge,
    BlockEdgeKind,
    CallEdge,
    EvidenceKind,
    EvidenceRecord,
    FunctionRecord,
)
from binslicer.core.errors import ErrorCode, RunError, StoreError
from binslicer.store.database import ProjectStore
from binslicer.store.models import (
    BinaryRecord,
    RitualRunRecord,
    RitualRunStatus,
    SliceRecord,
    SliceStatus,
)


@pytest.fixture
def store(tmp_path: Path) -> Generator[ProjectStore, None, None]:
    with ProjectStore.open(tmp_path / "project.db") as s:
        yield s


def _run(binary: str = "b.so", ritual: str = "R", **overrides: object) -> RitualRunRecord:
    values: dict[str, object] = {
        "binary": binary,
        "ritual": ritual,
        "spec_hash": "spec",
        "status": RitualRunStatus.SUCCEEDED,
        "started_at": "2026-01-01T00:00:00+00:00",
        "finished_at": "2026-01-01T00:00:01+00:00",
    }
    values.update(overrides)
    return RitualRunRecord(**values)  # type: ignore[arg-type]


def _sample_result() -> AnalysisResult:
    return AnalysisResult(
        functions=[
            FunctionRecord(address=0x1000, name="main", size=0x40, in_slice=True),
            FunctionRecord(address=0xFFFF_FFFF_FFFF_F000, name="high", is_boundary=True),
        ],
        call_edges=[
            CallEdge(from_addr=0x1000, to_addr=0xFFFF_FFFF_FFFF_F000, is_cross_slice=True)
        ],
        basic_blocks=[
            BasicBlock(
                start=0x1000,
                length=8,
                successors=[
                    BlockEdge(target=0x1010, kind=BlockEdgeKind.CONDITIONAL_JUMP),
                    BlockEdge(target=0x1008, kind=BlockEdgeKind.FALLTHROUGH),
                ],
            ),
            BasicBlock(start=0x1008, length=8),
        ],
        evidence=[
            EvidenceRecord(address=0x1004, description="string: hello", kind=EvidenceKind.STRING),
            EvidenceRecord(address=0x2000, description="unclassified"),
        ],
        roots=["main", "0x1000"],
    )


class TestBinaries:
    def test_given_inserts_when_listed_then_insertion_order(self, store: ProjectStore) -> None:
        first = store.insert_binary(BinaryRecord(name="a.so", path="bin/a.so", arch="armv7"))
        second = store.insert_binary(BinaryRecord(name="b.so", path="bin/b.so"))

        binaries = store.list_binaries()

        assert [b.id for b in binaries] == [first, second]
        assert binaries[0].arch == "armv7"

    def test_given_selector_when_find_then_first_match_by_name_or_path_suffix(
        self, store: ProjectStore
    ) -> None:
        """Name equality or path suffix match; lowest id wins."""
        store.insert_binary(BinaryRecord(name="one", path="x/libfoo.so"))
        store.insert_binary(BinaryRecord(name="libfoo.so", path="y/libfoo.so"))

        found = store.find_binary("libfoo.so")

        assert found is not None
        assert found.name == "one"
        assert store.find_binary("missing") is None


class TestSlices:
    def test_slice_status_round_trips_as_integer(self, store: ProjectStore) -> None:
        store.insert_slice(
            SliceRecord(name="Net", status=SliceStatus.ACTIVE, default_binary="b.so")
        )

        record = store.get_slice("Net")

        assert record is not None
        assert record.status is SliceStatus.ACTIVE
        assert record.default_binary == "b.so"

    def test_duplicate_slice_name_is_store_error(self, store: ProjectStore) -> None:
        store.insert_slice(SliceRecord(name="Net"))

        with pytest.raises(StoreError) as exc_info:
            store.insert_slice(SliceRecord(name="Net"))

        assert exc_info.value.code is ErrorCode.STORE_IO_ERROR

    def test_update_slice_returns_row_count(self, store: ProjectStore) -> None:
        store.insert_slice(SliceRecord(name="Net"))

        assert store.update_slice("Net", status=SliceStatus.DRAFT, description="d") == 1
        assert store.update_slice("Missing", status=SliceStatus.DRAFT) == 0

        record = store.get_slice("Net")
        assert record is not None
        assert record.status is SliceStatus.DRAFT
        assert record.description == "d"

    def test_unknown_stored_status_decodes_as_draft(self) -> None:
        assert SliceStatus.from_int(42) is SliceStatus.DRAFT


class TestRitualRuns:
    def test_latest_run_id_is_highest_id_for_pair(self, store: ProjectStore) -> None:
        store.insert_ritual_run(_run())
        store.insert_ritual_run(_run(binary="other.so"))
        latest = store.insert_ritual_run(_run())

        assert store.latest_run_id("b.so", "R") == latest
        assert store.latest_run_id("b.so", "nope") is None

    def test_list_runs_filtered_by_binary(self, store: ProjectStore) -> None:
        store.insert_ritual_run(_run(binary="a.so"))
        store.insert_ritual_run(_run(binary="b.so"))

        assert [r.binary for r in store.list_ritual_runs("a.so")] == ["a.so"]
        assert len(store.list_ritual_runs()) == 2

    def test_status_update_sets_finished_at(self, store: ProjectStore) -> None:
        store.insert_ritual_run(_run(status=RitualRunStatus.RUNNING))

        updated = store.update_ritual_run_status("b.so", "R", "Canceled", "2026-02-02T00:00:00Z")

        run = store.get_ritual_run("b.so", "R")
        assert updated == 1
        assert run is not None
        assert run.status is RitualRunStatus.CANCELED
        assert run.finished_at == "2026-02-02T00:00:00Z"

    def test_status_update_for_missing_run_returns_zero(self, store: ProjectStore) -> None:
        assert store.update_ritual_run_status("b.so", "R", RitualRunStatus.FAILED) == 0

    def test_invalid_status_string_rejected(self, store: ProjectStore) -> None:
        store.insert_ritual_run(_run())

        with pytest.raises(RunError) as exc_info:
            store.update_ritual_run_status("b.so", "R", "exploded")

        assert exc_info.value.code is ErrorCode.INVALID_STATUS


class TestAnalysisPersistence:
    def test_given_result_when_persisted_then_round_trips(self, store: ProjectStore) -> None:
        """Functions, edges, blocks, evidence and roots come back in order."""
        # Given
        run_id = store.insert_ritual_run(_run())
        result = _sample_result()

        # When
        store.insert_analysis_result(run_id, result)
        loaded = store.load_analysis_for_run(run_id)

        # Then
        assert loaded.functions == result.functions
        assert loaded.call_edges == result.call_edges
        assert loaded.basic_blocks == result.basic_blocks
        assert loaded.roots == ["main", "0x1000"]
        assert loaded.evidence[0].kind is EvidenceKind.STRING
        assert loaded.evidence[1].kind is None

    def test_given_same_result_when_inserted_twice_then_counts_unchanged(
        self, store: ProjectStore
    ) -> None:
        """Repeating an insert for a run is idempotent."""
        # Given
        run_id = store.insert_ritual_run(_run())
        result = AnalysisResult(
            functions=[FunctionRecord(address=0x1000, name="main", size=16)],
            call_edges=[CallEdge(from_addr=0x1000, to_addr=0x2000)],
            basic_blocks=[
                BasicBlock(
                    start=0x1000,
                    length=8,
                    successors=[BlockEdge(target=0x2000, kind=BlockEdgeKind.JUMP)],
                )
            ],
            evidence=[EvidenceRecord(address=0x1000, description="e")],
        )

        # When
        store.insert_analysis_result(run_id, result)
        store.insert_analysis_result(run_id, result)

        # Then
        loaded = store.load_analysis_for_run(run_id)
        assert loaded.functions == result.functions
        assert loaded.call_edges == result.call_edges
        assert loaded.basic_blocks == result.basic_blocks
        assert loaded.evidence == result.evidence

    def test_given_high_addresses_when_persisted_then_unsigned_preserved(
        self, store: ProjectStore
    ) -> None:
        run_id = store.insert_ritual_run(_run())

        store.insert_analysis_result(run_id, _sample_result())

        loaded = store.load_analysis_for_run(run_id)
        assert loaded.functions[1].address == 0xFFFF_FFFF_FFFF_F000
        assert loaded.call_edges[0].to_addr == 0xFFFF_FFFF_FFFF_F000

    def test_given_second_insert_when_persisted_then_replaces(self, store: ProjectStore) -> None:
        """Re-persisting a run replaces its tuples instead of appending."""
        # Given
        run_id = store.insert_ritual_run(_run())
        store.insert_analysis_result(run_id, _sample_result())

        # When
        store.insert_analysis_result(
            run_id, AnalysisResult(functions=[FunctionRecord(address=0x10, name="only")])
        )

        # Then
        loaded = store.load_analysis_for_run(run_id)
        assert [f.name for f in loaded.functions] == ["only"]
        assert loaded.call_edges == []
        assert loaded.basic_blocks == []
        assert loaded.evidence == []
        assert loaded.roots == []

    def test_load_analysis_result_uses_latest_run_and_backend_fields(
        self, store: ProjectStore
    ) -> None:
        old = store.insert_ritual_run(_run())
        store.insert_analysis_result(old, _sample_result())
        new = store.insert_ritual_run(
            _run(backend="rizin", backend_version="rizin 0.7.3", backend_path="/usr/bin/rizin")
        )
        store.insert_analysis_result(new, AnalysisResult(roots=["entry0"]))

        loaded = store.load_analysis_result("b.so", "R")

        assert loaded is not None
        assert loaded.functions == []
        assert loaded.roots == ["entry0"]
        assert loaded.backend_version == "rizin 0.7.3"
        assert loaded.backend_path == "/usr/bin/rizin"
        assert store.load_analysis_result("b.so", "missing") is None


class TestSnapshot:
    def test_snapshot_reflects_every_entity(self, store: ProjectStore) -> None:
        store.insert_binary(BinaryRecord(name="b.so", path="b.so"))
        store.insert_slice(SliceRecord(name="Net"))
        store.insert_ritual_run(_run())

        snap = store.snapshot()

        assert [b.name for b in snap.binaries] == ["b.so"]
        assert [s.name for s in snap.slices] == ["Net"]
        assert [r.ritual for r in snap.ritual_runs] == ["R"]

    def test_snapshot_survives_reopen(self, tmp_path: Path) -> None:
        """Data written through one store handle is visible after reopening."""
        db_path = tmp_path / "project.db"
        with ProjectStore.open(db_path) as first:
            first.insert_binary(BinaryRecord(name="b.so", path="b.so", hash="ab"))
            before = first.snapshot()

        with ProjectStore.open(db_path) as second:
            after = second.snapshot()

        assert after == before

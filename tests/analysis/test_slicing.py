"""Tests for slice classification over a call graph."""

from __future__ import annotations

from binslicer.analysis.models import CallEdge, EvidenceKind, EvidenceRecord, FunctionRecord
from binslicer.analysis.slicing import classify_slice, dedupe_evidence, match_roots


def _graph() -> tuple[list[FunctionRecord], list[CallEdge]]:
    """main -> helper -> leaf, plus an unrelated function."""
    functions = [
        FunctionRecord(address=0x1000, name="sym.main", size=32),
        FunctionRecord(address=0x2000, name="sym.helper", size=16),
        FunctionRecord(address=0x3000, name="sym.leaf", size=8),
        FunctionRecord(address=0x5000, name="sym.unrelated"),
    ]
    edges = [
        CallEdge(from_addr=0x1000, to_addr=0x2000),
        CallEdge(from_addr=0x2000, to_addr=0x3000),
    ]
    return functions, edges


class TestMatchRoots:
    def test_names_with_and_without_prefix(self) -> None:
        functions, _ = _graph()

        assert match_roots(functions, ["main", "sym.leaf"]) == {0x1000, 0x3000}

    def test_address_tokens_need_a_known_function(self) -> None:
        functions, _ = _graph()

        assert match_roots(functions, ["0x2000", "4096", "0x9999", "nope"]) == {0x2000, 0x1000}


class TestClassifySlice:
    def test_reachable_functions_in_slice(self) -> None:
        functions, edges = _graph()

        classified, _ = classify_slice(functions, edges, ["main"], None)

        in_slice = {f.address for f in classified if f.in_slice}
        assert in_slice == {0x1000, 0x2000, 0x3000}

    def test_depth_limit_marks_boundary(self) -> None:
        """Callees past the depth limit are boundary functions."""
        functions, edges = _graph()

        classified, classified_edges = classify_slice(functions, edges, ["sym.main"], 1)

        by_addr = {f.address: f for f in classified}
        assert by_addr[0x2000].in_slice
        assert not by_addr[0x3000].in_slice
        assert by_addr[0x3000].is_boundary
        cross = [(e.from_addr, e.to_addr) for e in classified_edges if e.is_cross_slice]
        assert cross == [(0x2000, 0x3000)]

    def test_depth_zero_keeps_only_roots(self) -> None:
        functions, edges = _graph()

        classified, _ = classify_slice(functions, edges, ["0x2000"], 0)

        assert [f.address for f in classified if f.in_slice] == [0x2000]

    def test_unmatched_roots_mark_everything(self) -> None:
        functions, edges = _graph()

        classified, classified_edges = classify_slice(functions, edges, ["nope"], None)

        assert all(f.in_slice for f in classified)
        assert not any(f.is_boundary for f in classified)
        assert not any(e.is_cross_slice for e in classified_edges)

    def test_inputs_not_mutated(self) -> None:
        functions, edges = _graph()

        classify_slice(functions, edges, ["main"], 1)

        assert not any(f.in_slice for f in functions)


class TestDedupeEvidence:
    def test_first_occurrence_kept(self) -> None:
        first = EvidenceRecord(address=1, description="call -> a", kind=EvidenceKind.CALL)
        evidence = [
            first,
            EvidenceRecord(address=1, description="call -> a", kind=EvidenceKind.OTHER),
            EvidenceRecord(address=2, description="call -> a", kind=EvidenceKind.CALL),
        ]

        assert dedupe_evidence(evidence) == [first, evidence[2]]

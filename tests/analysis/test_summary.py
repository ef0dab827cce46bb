"""Tests for analysis summaries and evidence mapping."""

from binslicer.analysis.models import (
    AnalysisResult,
    CallEdge,
    EvidenceKind,
    EvidenceRecord,
    FunctionRecord,
)
from binslicer.analysis.summary import (
    categorize_evidence,
    find_function_for_evidence,
    function_evidence_json,
    map_evidence_to_functions,
    run_analysis_summary,
    summarize_analysis,
)


class TestCategorizeEvidence:
    def test_unclassified_evidence_lands_in_other(self) -> None:
        evidence = [
            EvidenceRecord(address=1, description="s", kind=EvidenceKind.STRING),
            EvidenceRecord(address=2, description="i", kind=EvidenceKind.IMPORT),
            EvidenceRecord(address=3, description="c", kind=EvidenceKind.CALL),
            EvidenceRecord(address=4, description="o", kind=EvidenceKind.OTHER),
            EvidenceRecord(address=5, description="none"),
        ]

        counts = categorize_evidence(evidence).counts()

        assert counts.model_dump() == {
            "total": 5,
            "strings": 1,
            "imports": 1,
            "calls": 1,
            "other": 2,
        }


class TestFindFunctionForEvidence:
    def test_smallest_containing_range_wins(self) -> None:
        """Nested ranges resolve to the innermost function."""
        functions = [
            FunctionRecord(address=0x1000, size=0x100),
            FunctionRecord(address=0x1040, size=0x10),
        ]

        assert find_function_for_evidence(functions, 0x1044) == 0x1040
        assert find_function_for_evidence(functions, 0x1080) == 0x1000

    def test_range_end_is_exclusive(self) -> None:
        functions = [FunctionRecord(address=0x1000, size=0x10)]

        assert find_function_for_evidence(functions, 0x1010) is None

    def test_unsized_function_matches_exact_start_only(self) -> None:
        functions = [FunctionRecord(address=0x2000)]

        assert find_function_for_evidence(functions, 0x2000) == 0x2000
        assert find_function_for_evidence(functions, 0x2001) is None

    def test_sized_match_beats_unsized_exact_match(self) -> None:
        functions = [
            FunctionRecord(address=0x2000),
            FunctionRecord(address=0x1F00, size=0x200),
        ]

        assert find_function_for_evidence(functions, 0x2000) == 0x1F00


class TestMapping:
    def test_map_and_json(self) -> None:
        functions = [FunctionRecord(address=0x10, name="f", size=8)]
        evidence = [
            EvidenceRecord(address=0x12, description="inside", kind=EvidenceKind.STRING),
            EvidenceRecord(address=0x99, description="outside"),
        ]

        mapping = map_evidence_to_functions(functions, evidence)
        payload = function_evidence_json(functions, mapping)

        assert [e.description for e in mapping.by_function[0x10]] == ["inside"]
        assert [e.description for e in mapping.unmapped] == ["outside"]
        assert payload["by_function"]["0x10"]["evidence_counts"]["strings"] == 1
        assert payload["unmapped"][0]["description"] == "outside"


class TestSummaries:
    def test_slice_summary_counts(self) -> None:
        result = AnalysisResult(
            functions=[
                FunctionRecord(address=1, in_slice=True),
                FunctionRecord(address=2, is_boundary=True),
            ],
            call_edges=[
                CallEdge(from_addr=1, to_addr=2, is_cross_slice=True),
                CallEdge(from_addr=1, to_addr=1),
            ],
        )

        summary = summarize_analysis(result, roots=1)

        assert summary.functions == 2
        assert summary.functions_in_slice == 1
        assert summary.boundary_functions == 1
        assert summary.cross_slice_calls == 1
        assert summary.roots == 1
        assert summary.evidence.total == 0

    def test_run_summary_carries_backend_fields(self) -> None:
        result = AnalysisResult(
            functions=[FunctionRecord(address=1)],
            backend_version="rizin 0.7.3",
            backend_path="/usr/bin/rizin",
        )

        summary = run_analysis_summary(result)

        assert summary.functions == 1
        assert summary.basic_blocks == 0
        assert summary.backend_version == "rizin 0.7.3"

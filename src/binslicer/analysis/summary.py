"""Summaries derived from an AnalysisResult.

Used by run listings (compact per-run counts) and slice docs/reports
(evidence buckets, evidence-to-function mapping, slice summary).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from binslicer.analysis.models import (
    AnalysisResult,
    EvidenceKind,
    EvidenceRecord,
    FunctionRecord,
)


class EvidenceCounts(BaseModel):
    total: int = 0
    strings: int = 0
    imports: int = 0
    calls: int = 0
    other: int = 0


@dataclass(slots=True)
class EvidenceBuckets:
    """Evidence grouped by kind; unclassified evidence lands in ``other``."""

    strings: list[EvidenceRecord] = field(default_factory=list)
    imports: list[EvidenceRecord] = field(default_factory=list)
    calls: list[EvidenceRecord] = field(default_factory=list)
    other: list[EvidenceRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.strings) + len(self.imports) + len(self.calls) + len(self.other)

    def counts(self) -> EvidenceCounts:
        return EvidenceCounts(
            total=self.total,
            strings=len(self.strings),
            imports=len(self.imports),
            calls=len(self.calls),
            other=len(self.other),
        )


def categorize_evidence(evidence: list[EvidenceRecord]) -> EvidenceBuckets:
    buckets = EvidenceBuckets()
    for item in evidence:
        if item.kind is EvidenceKind.STRING:
            buckets.strings.append(item)
        elif item.kind is EvidenceKind.IMPORT:
            buckets.imports.append(item)
        elif item.kind is EvidenceKind.CALL:
            buckets.calls.append(item)
        else:
            buckets.other.append(item)
    return buckets


@dataclass(slots=True)
class EvidenceMapping:
    by_function: dict[int, list[EvidenceRecord]] = field(default_factory=dict)
    unmapped: list[EvidenceRecord] = field(default_factory=list)


def find_function_for_evidence(functions: list[FunctionRecord], address: int) -> int | None:
    """Address of the function that owns ``address``.

    The smallest function whose ``[address, address + size)`` range contains
    the address wins. Functions of unknown size only match their exact
    start address, and only when no sized function matched.
    """
    best: tuple[int, int] | None = None
    for func in functions:
        if func.size is not None:
            start = func.address
            end = start + func.size
            if start <= address < end:
                span = end - start
                if best is None or span < best[1]:
                    best = (func.address, span)
        elif address == func.address and best is None:
            best = (func.address, 1 << 64)
    return best[0] if best is not None else None


def map_evidence_to_functions(
    functions: list[FunctionRecord], evidence: list[EvidenceRecord]
) -> EvidenceMapping:
    mapping = EvidenceMapping()
    for item in evidence:
        owner = find_function_for_evidence(functions, item.address)
        if owner is None:
            mapping.unmapped.append(item)
        else:
            mapping.by_function.setdefault(owner, []).append(item)
    return mapping


class AnalysisSummary(BaseModel):
    """Slice-level counts shown in docs and reports."""

    functions: int
    functions_in_slice: int
    boundary_functions: int
    call_edges: int
    cross_slice_calls: int
    basic_blocks: int
    roots: int
    evidence: EvidenceCounts


def summarize_analysis(result: AnalysisResult, roots: int) -> AnalysisSummary:
    return AnalysisSummary(
        functions=len(result.functions),
        functions_in_slice=sum(1 for f in result.functions if f.in_slice),
        boundary_functions=sum(1 for f in result.functions if f.is_boundary),
        call_edges=len(result.call_edges),
        cross_slice_calls=sum(1 for e in result.call_edges if e.is_cross_slice),
        basic_blocks=len(result.basic_blocks),
        roots=roots,
        evidence=categorize_evidence(result.evidence).counts(),
    )


class RunAnalysisSummary(BaseModel):
    """Compact per-run counts attached to run listings."""

    functions: int
    call_edges: int
    basic_blocks: int
    evidence: int
    backend_version: str | None = None
    backend_path: str | None = None


def run_analysis_summary(result: AnalysisResult) -> RunAnalysisSummary:
    return RunAnalysisSummary(
        functions=len(result.functions),
        call_edges=len(result.call_edges),
        basic_blocks=len(result.basic_blocks),
        evidence=len(result.evidence),
        backend_version=result.backend_version,
        backend_path=result.backend_path,
    )


def function_evidence_json(
    functions: list[FunctionRecord], mapping: EvidenceMapping
) -> dict[str, Any]:
    """``{"by_function": {"0xADDR": {...}}, "unmapped": [...]}`` for reports."""
    by_function: dict[str, Any] = {}
    for func in functions:
        items = mapping.by_function.get(func.address)
        if not items:
            continue
        by_function[f"0x{func.address:X}"] = {
            "function": func.model_dump(mode="json"),
            "evidence": [e.model_dump(mode="json") for e in items],
            "evidence_counts": categorize_evidence(items).counts().model_dump(),
        }
    return {
        "by_function": by_function,
        "unmapped": [e.model_dump(mode="json") for e in mapping.unmapped],
    }

"""Slice renderers: DOT graph, markdown doc and JSON report.

Everything here is a pure function of a SliceView; the slice commands
build the view (slice row, chosen run, its analysis) and write the files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from binslicer.analysis.models import AnalysisResult, EvidenceRecord
from binslicer.analysis.summary import (
    EvidenceMapping,
    categorize_evidence,
    function_evidence_json,
    map_evidence_to_functions,
    summarize_analysis,
)
from binslicer.store.models import RitualRunRecord, SliceRecord

DESCRIPTION_TODO = "TODO: add a human-readable description of this slice."
ROOTS_TODO = "- TODO: list root functions (by address/name) that define this slice."
FUNCTIONS_TODO = "- TODO: populated by analysis runs."
EVIDENCE_TODO = "- TODO: xrefs, strings, patterns that justify membership in this slice."

SECTION_LIMIT = 15
INLINE_LIMIT = 5


@dataclass(slots=True)
class SliceView:
    """A slice together with the run chosen to describe it."""

    slice: SliceRecord
    run: RitualRunRecord | None = None
    analysis: AnalysisResult | None = None
    roots: list[str] = field(default_factory=list)

    @property
    def backend(self) -> str | None:
        return self.run.backend if self.run is not None else None

    @property
    def backend_version(self) -> str | None:
        if self.analysis is not None and self.analysis.backend_version:
            return self.analysis.backend_version
        return self.run.backend_version if self.run is not None else None

    @property
    def backend_path(self) -> str | None:
        if self.analysis is not None and self.analysis.backend_path:
            return self.analysis.backend_path
        return self.run.backend_path if self.run is not None else None


# =============================================================================
# DOT
# =============================================================================


def render_dot(
    analysis: AnalysisResult | None,
    backend: str | None = None,
    backend_version: str | None = None,
) -> str:
    """``digraph Slice`` with function, call, block and block-edge statements."""
    lines = ["digraph Slice {", "  rankdir=LR;"]
    if backend is not None:
        label = f"backend: {backend}"
        if backend_version:
            label += f" {backend_version}"
        lines.append(f'  label="{_dot_escape(label)}";')
        lines.append("  labelloc=top;")
    if analysis is None:
        lines.append("  // no analysis available for this slice")
    else:
        for func in analysis.functions:
            lines.append(f'  f_{func.address:X} [label="{_dot_escape(func.label)}" shape=box];')
        for edge in analysis.call_edges:
            lines.append(f'  f_{edge.from_addr:X} -> f_{edge.to_addr:X} [label="call"];')
        for block in analysis.basic_blocks:
            label = f"bb 0x{block.start:X}\\nlen={block.length}"
            lines.append(f'  bb_{block.start:X} [label="{label}" shape=ellipse];')
            for succ in block.successors:
                lines.append(
                    f'  bb_{block.start:X} -> bb_{succ.target:X} [label="{succ.kind.dot_label}"];'
                )
    lines.append("}")
    return "\n".join(lines) + "\n"


def _dot_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


# =============================================================================
# Markdown
# =============================================================================


def render_slice_scaffold(name: str, description: str | None) -> str:
    """Doc written when a slice is first created."""
    return (
        f"# {name}\n\n"
        f"{description or DESCRIPTION_TODO}\n\n"
        f"## Roots\n{ROOTS_TODO}\n\n"
        f"## Functions\n{FUNCTIONS_TODO}\n\n"
        f"## Evidence\n{EVIDENCE_TODO}\n"
    )


def _counts_line(items: list[EvidenceRecord]) -> str:
    c = categorize_evidence(items).counts()
    return (
        f"total={c.total} strings={c.strings} imports={c.imports} "
        f"calls={c.calls} other={c.other}"
    )


def _evidence_section(out: list[str], heading: str, items: list[EvidenceRecord]) -> None:
    if not items:
        return
    out.append(f"### {heading}")
    for item in items[:SECTION_LIMIT]:
        out.append(f"- 0x{item.address:X}: {item.description}")
    if len(items) > SECTION_LIMIT:
        out.append(f"- ... ({len(items) - SECTION_LIMIT} more {heading.lower()})")
    out.append("")


def _function_lines(out: list[str], analysis: AnalysisResult, mapping: EvidenceMapping) -> None:
    if not analysis.functions:
        out.extend(["- (no functions recorded)", ""])
        return
    for func in analysis.functions:
        tags = []
        if func.size is not None:
            tags.append(f"size={func.size}")
        if func.in_slice:
            tags.append("in-slice")
        if func.is_boundary:
            tags.append("boundary")
        line = f"- {func.label} @ 0x{func.address:X}"
        if tags:
            line += f" ({', '.join(tags)})"
        items = mapping.by_function.get(func.address, [])
        if items:
            line += f" - evidence: {_counts_line(items)}"
        out.append(line)
        if items:
            for item in items[:INLINE_LIMIT]:
                out.append(f"  - 0x{item.address:X}: {item.description}")
            if len(items) > INLINE_LIMIT:
                out.append(f"  - ... ({len(items) - INLINE_LIMIT} more entries)")
            out.append("")


def render_slice_doc(view: SliceView) -> str:
    """Slice doc regenerated from the latest matching run."""
    record = view.slice
    analysis = view.analysis
    out = [f"# {record.name}", "", record.description or DESCRIPTION_TODO, ""]
    if record.default_binary:
        out.extend([f"**Default binary:** {record.default_binary}", ""])

    if view.run is not None:
        backend = f"**Backend:** {view.run.backend}"
        if view.backend_version:
            backend += f" {view.backend_version}"
        if view.backend_path:
            backend += f" @ {view.backend_path}"
        out.extend([backend, ""])

    mapping = map_evidence_to_functions(analysis.functions, analysis.evidence) if analysis else None

    if analysis is not None:
        s = summarize_analysis(analysis, len(view.roots))
        ev = s.evidence
        out.extend(
            [
                "## Summary",
                f"- Functions: {s.functions} "
                f"(in-slice={s.functions_in_slice}, boundary={s.boundary_functions})",
                f"- Call edges: {s.call_edges} (cross-slice={s.cross_slice_calls})",
                f"- Basic blocks: {s.basic_blocks}",
                f"- Roots: {s.roots}",
                f"- Evidence: total={ev.total} strings={ev.strings} imports={ev.imports} "
                f"calls={ev.calls} other={ev.other}",
                "",
            ]
        )

    out.append("## Roots")
    if view.run is None:
        out.append(ROOTS_TODO)
    elif not view.roots:
        out.append("- (no roots recorded)")
    else:
        out.extend(f"- {root}" for root in view.roots)
    out.append("")

    out.append("## Functions")
    if analysis is None or mapping is None:
        out.extend([FUNCTIONS_TODO, ""])
    else:
        _function_lines(out, analysis, mapping)

    out.append("## Evidence")
    if analysis is None or mapping is None:
        out.append(EVIDENCE_TODO)
    elif not analysis.evidence:
        out.append("- (no evidence recorded)")
    else:
        buckets = categorize_evidence(analysis.evidence)
        out.extend([f"- Summary: {_counts_line(analysis.evidence)}", ""])
        _evidence_section(out, "Strings", buckets.strings)
        _evidence_section(out, "Imports", buckets.imports)
        _evidence_section(out, "Calls", buckets.calls)
        _evidence_section(out, "Other evidence", buckets.other)
        _evidence_section(out, "Unmapped evidence (no matching function)", mapping.unmapped)

    text = "\n".join(out)
    return text if text.endswith("\n") else text + "\n"


# =============================================================================
# JSON report
# =============================================================================


def _dump(items: list[Any]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def build_slice_report(view: SliceView) -> dict[str, Any]:
    """Report payload; analysis fields are empty when no run matched."""
    record = view.slice
    analysis = view.analysis
    report: dict[str, Any] = {
        "name": record.name,
        "description": record.description,
        "status": record.status.label,
        "default_binary": record.default_binary,
        "roots": list(view.roots),
        "functions": [],
        "call_edges": [],
        "basic_blocks": [],
        "evidence": [],
        "evidence_counts": None,
        "strings": [],
        "imports": [],
        "calls": [],
        "other_evidence": [],
        "backend": view.backend,
        "backend_version": view.backend_version,
        "backend_path": view.backend_path,
        "analysis_summary": None,
        "function_evidence": None,
    }
    if analysis is None:
        return report

    buckets = categorize_evidence(analysis.evidence)
    mapping = map_evidence_to_functions(analysis.functions, analysis.evidence)
    report.update(
        {
            "functions": _dump(analysis.functions),
            "call_edges": _dump(analysis.call_edges),
            "basic_blocks": _dump(analysis.basic_blocks),
            "evidence": _dump(analysis.evidence),
            "evidence_counts": buckets.counts().model_dump(),
            "strings": _dump(buckets.strings),
            "imports": _dump(buckets.imports),
            "calls": _dump(buckets.calls),
            "other_evidence": _dump(buckets.other),
            "analysis_summary": summarize_analysis(analysis, len(view.roots)).model_dump(),
            "function_evidence": function_evidence_json(analysis.functions, mapping),
        }
    )
    return report

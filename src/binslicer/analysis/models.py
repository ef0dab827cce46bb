"""Analysis records exchanged between backends, the store and renderers.

Addresses are plain unsigned integers. Field names match the JSON written
to run reports and slice reports.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from binslicer.store.models import DEFAULT_BACKEND, RitualRunStatus


class EvidenceKind(str, Enum):
    STRING = "string"
    IMPORT = "import"
    CALL = "call"
    OTHER = "other"


class BlockEdgeKind(str, Enum):
    """Control-flow edge kind of a basic block successor."""

    FALLTHROUGH = "fallthrough"
    JUMP = "jump"
    CONDITIONAL_JUMP = "conditional_jump"
    INDIRECT_JUMP = "indirect_jump"
    CALL = "call"
    INDIRECT_CALL = "indirect_call"

    @property
    def dot_label(self) -> str:
        return _DOT_LABELS[self]


_DOT_LABELS = {
    BlockEdgeKind.FALLTHROUGH: "fallthrough",
    BlockEdgeKind.JUMP: "jump",
    BlockEdgeKind.CONDITIONAL_JUMP: "cjump",
    BlockEdgeKind.INDIRECT_JUMP: "ijump",
    BlockEdgeKind.CALL: "call",
    BlockEdgeKind.INDIRECT_CALL: "icall",
}


class FunctionRecord(BaseModel):
    address: int = Field(ge=0)
    name: str | None = None
    size: int | None = Field(default=None, ge=0)
    in_slice: bool = False
    is_boundary: bool = False

    @property
    def label(self) -> str:
        return self.name or f"0x{self.address:X}"


class CallEdge(BaseModel):
    from_addr: int = Field(ge=0)
    to_addr: int = Field(ge=0)
    is_cross_slice: bool = False


class BlockEdge(BaseModel):
    target: int = Field(ge=0)
    kind: BlockEdgeKind


class BasicBlock(BaseModel):
    start: int = Field(ge=0)
    length: int = Field(ge=0)
    successors: list[BlockEdge] = Field(default_factory=list)


class EvidenceRecord(BaseModel):
    address: int = Field(ge=0)
    description: str
    kind: EvidenceKind | None = None


class AnalysisResult(BaseModel):
    functions: list[FunctionRecord] = Field(default_factory=list)
    call_edges: list[CallEdge] = Field(default_factory=list)
    basic_blocks: list[BasicBlock] = Field(default_factory=list)
    evidence: list[EvidenceRecord] = Field(default_factory=list)
    roots: list[str] = Field(default_factory=list)
    backend_version: str | None = None
    backend_path: str | None = None

    def has_content(self) -> bool:
        """True when the backend reported any functions, edges, blocks or evidence."""
        return bool(self.functions or self.call_edges or self.basic_blocks or self.evidence)


class AnalysisOptions(BaseModel):
    max_depth: int | None = Field(default=None, ge=0)
    include_imports: bool = True
    include_strings: bool = True
    max_instructions: int | None = Field(default=None, ge=0)


class AnalysisRequest(BaseModel):
    ritual_name: str
    binary_name: str
    binary_path: Path
    roots: list[str]
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    arch: str | None = None
    backend_path: Path | None = None


class RunMetadata(BaseModel):
    """Bookkeeping the runner stamps onto the run it records."""

    spec_hash: str
    binary_hash: str | None = None
    backend: str = DEFAULT_BACKEND
    backend_version: str | None = None
    backend_path: str | None = None
    status: RitualRunStatus

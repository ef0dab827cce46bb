"""rizin backend: shells out to ``rizin`` and reads its JSON output.

Commands used (each run as ``rizin -2 -q0 -c <cmd> <binary>``):
- ``aa;aflj``: functions with their call references
- ``aa;agfj``: basic blocks with jump/fail successors
- ``izj``: strings (evidence, optional)
- ``iij``: imports (evidence, optional)

Slice membership comes from ``analysis.slicing.classify_slice``.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

import structlog

from binslicer.analysis.models import (
    AnalysisRequest,
    AnalysisResult,
    BasicBlock,
    BlockEdge,
    BlockEdgeKind,
    CallEdge,
    EvidenceKind,
    EvidenceRecord,
    FunctionRecord,
)
from binslicer.analysis.slicing import classify_slice, dedupe_evidence
from binslicer.core.errors import AnalysisError

log = structlog.get_logger(__name__)

DEFAULT_EXECUTABLE = "rizin"
DEFAULT_TIMEOUT_SEC = 300.0

_CALL_REF_TYPES = frozenset({"C", "CALL", "call"})


class RizinBackend:
    name = "rizin"
    description = "rizin subprocess analysis (functions, call graph, blocks, strings, imports)"

    def __init__(self, default_path: str | None = None, timeout: float = DEFAULT_TIMEOUT_SEC):
        self._default_path = default_path
        self._timeout = timeout

    def executable(self, request: AnalysisRequest) -> str:
        """request.backend_path > configured default > ``rizin`` on PATH."""
        if request.backend_path is not None:
            return str(request.backend_path)
        return self._default_path or DEFAULT_EXECUTABLE

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        if not request.binary_path.is_file():
            raise AnalysisError.missing_binary(str(request.binary_path))

        exe = self.executable(request)
        version = self.version(exe)

        functions, call_edges, evidence = parse_functions(
            self._run_json(exe, request.binary_path, "aa;aflj")
        )
        basic_blocks = parse_basic_blocks(self._run_json(exe, request.binary_path, "aa;agfj"))

        if request.options.include_strings:
            body = self._run_optional(exe, request.binary_path, "izj")
            if body:
                evidence.extend(parse_strings(body))
        if request.options.include_imports:
            body = self._run_optional(exe, request.binary_path, "iij")
            if body:
                evidence.extend(parse_imports(body))

        functions, call_edges = classify_slice(
            functions, call_edges, request.roots, request.options.max_depth
        )

        log.debug(
            "rizin_analysis_done",
            binary=str(request.binary_path),
            functions=len(functions),
            call_edges=len(call_edges),
            basic_blocks=len(basic_blocks),
            evidence=len(evidence),
        )
        return AnalysisResult(
            functions=functions,
            call_edges=call_edges,
            basic_blocks=basic_blocks,
            evidence=dedupe_evidence(evidence),
            roots=list(request.roots),
            backend_version=version,
            backend_path=exe,
        )

    def version(self, exe: str) -> str:
        """First line of ``rizin -v``."""
        try:
            result = subprocess.run(
                [exe, "-v"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise AnalysisError.missing_backend(exe) from e
        except (subprocess.SubprocessError, OSError) as e:
            raise AnalysisError.backend(f"failed to spawn rizin: {e}") from e
        if result.returncode != 0:
            raise AnalysisError.backend(f"rizin -v exited with {result.returncode}")
        lines = result.stdout.strip().splitlines()
        if not lines:
            raise AnalysisError.backend("rizin -v produced no output")
        return lines[0].strip()

    def _run_json(self, exe: str, binary: Path, command: str) -> str:
        try:
            result = subprocess.run(
                [exe, "-2", "-q0", "-c", command, str(binary)],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise AnalysisError.backend(
                f"rizin '{command}' timed out after {self._timeout}s"
            ) from e
        except (subprocess.SubprocessError, OSError) as e:
            raise AnalysisError.backend(f"failed to spawn rizin: {e}") from e
        if result.returncode != 0:
            raise AnalysisError.backend(f"rizin '{command}' exited with {result.returncode}")
        return result.stdout

    def _run_optional(self, exe: str, binary: Path, command: str) -> str:
        """Run a command whose output only adds evidence; failures are logged."""
        try:
            return self._run_json(exe, binary, command)
        except AnalysisError as e:
            log.warning("rizin_optional_command_failed", command=command, error=e.message)
            return ""


def _load_array(body: str, what: str) -> list[dict[str, Any]]:
    if not body.strip():
        return []
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise AnalysisError.backend(f"failed to parse rizin {what} JSON: {e}") from e
    if not isinstance(data, list):
        raise AnalysisError.backend(f"rizin {what} JSON is not an array")
    return [item for item in data if isinstance(item, dict)]


def parse_functions(body: str) -> tuple[list[FunctionRecord], list[CallEdge], list[EvidenceRecord]]:
    """Functions, call edges and call evidence from ``aflj`` output."""
    functions: dict[int, FunctionRecord] = {}
    edges: dict[tuple[int, int], CallEdge] = {}
    evidence: list[EvidenceRecord] = []
    for func in _load_array(body, "functions"):
        address = int(func.get("offset") or 0)
        size = func.get("size")
        functions.setdefault(
            address,
            FunctionRecord(
                address=address,
                name=func.get("name"),
                size=int(size) if size is not None else None,
            ),
        )
        for ref in func.get("callrefs") or []:
            if ref.get("type") not in _CALL_REF_TYPES:
                continue
            target = int(ref.get("addr") or 0)
            edges.setdefault((address, target), CallEdge(from_addr=address, to_addr=target))
            callee = ref.get("name") or f"0x{target:X}"
            evidence.append(
                EvidenceRecord(
                    address=address, description=f"call -> {callee}", kind=EvidenceKind.CALL
                )
            )
    return list(functions.values()), list(edges.values()), evidence


def parse_basic_blocks(body: str) -> list[BasicBlock]:
    """Basic blocks from ``agfj`` output.

    A block with both ``jump`` and ``fail`` is a conditional branch: the
    ``jump`` target is the taken edge and ``fail`` the fallthrough.
    """
    blocks: dict[int, BasicBlock] = {}
    for func in _load_array(body, "graph"):
        for block in func.get("blocks") or []:
            start = int(block.get("offset") or 0)
            if start in blocks:
                continue
            jump = block.get("jump")
            fail = block.get("fail")
            successors: list[BlockEdge] = []
            if jump is not None and fail is not None:
                successors.append(BlockEdge(target=int(jump), kind=BlockEdgeKind.CONDITIONAL_JUMP))
                successors.append(BlockEdge(target=int(fail), kind=BlockEdgeKind.FALLTHROUGH))
            elif jump is not None:
                successors.append(BlockEdge(target=int(jump), kind=BlockEdgeKind.JUMP))
            elif fail is not None:
                successors.append(BlockEdge(target=int(fail), kind=BlockEdgeKind.FALLTHROUGH))
            blocks[start] = BasicBlock(
                start=start, length=int(block.get("size") or 0), successors=successors
            )
    return list(blocks.values())


def parse_strings(body: str) -> list[EvidenceRecord]:
    return [
        EvidenceRecord(
            address=int(item.get("vaddr") or 0),
            description=f"string: {item['string']}",
            kind=EvidenceKind.STRING,
        )
        for item in _load_array(body, "strings")
        if item.get("string") is not None
    ]


def parse_imports(body: str) -> list[EvidenceRecord]:
    return [
        EvidenceRecord(
            address=int(item.get("plt") or 0),
            description=f"import: {item['name']}",
            kind=EvidenceKind.IMPORT,
        )
        for item in _load_array(body, "imports")
        if item.get("name") is not None
    ]


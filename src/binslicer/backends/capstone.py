"""capstone backend: in-process disassembly, no external tool required.

ELF files are read with pyelftools. Every defined ``STT_FUNC`` symbol is
disassembled from its section bytes, up to ``max_instructions``
instructions per function. Files that are not ELF, and ELF files without
function symbols, are disassembled linearly from the first executable
section (offset 0 for raw blobs) as a single ``sub_<addr>`` function.

The architecture is the binary's arch tag when capstone supports it, then
the ELF ``e_machine``, then x86-64.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field

import capstone
import structlog
from capstone import (
    CS_ARCH_ARM,
    CS_ARCH_ARM64,
    CS_ARCH_PPC,
    CS_ARCH_RISCV,
    CS_ARCH_X86,
    CS_GRP_CALL,
    CS_GRP_IRET,
    CS_GRP_JUMP,
    CS_GRP_RET,
    CS_MODE_32,
    CS_MODE_64,
    CS_MODE_ARM,
    CS_MODE_BIG_ENDIAN,
    CS_MODE_RISCV32,
    CS_MODE_RISCV64,
    CS_OP_IMM,
    CS_OP_MEM,
    Cs,
    CsError,
    CsInsn,
)
from elftools.common.exceptions import ELFError
from elftools.elf.constants import SH_FLAGS
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

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

ELF_MAGIC = b"\x7fELF"
DEFAULT_ARCH = "x86_64"
DEFAULT_MAX_INSTRUCTIONS = 2048
MIN_STRING_LENGTH = 4
ROOT_PLACEHOLDER_BASE = 0x1000

_ARCH_MODES: dict[str, tuple[int, int]] = {
    "x86_64": (CS_ARCH_X86, CS_MODE_64),
    "amd64": (CS_ARCH_X86, CS_MODE_64),
    "x86": (CS_ARCH_X86, CS_MODE_32),
    "i386": (CS_ARCH_X86, CS_MODE_32),
    "i686": (CS_ARCH_X86, CS_MODE_32),
    "arm": (CS_ARCH_ARM, CS_MODE_ARM),
    "armv7": (CS_ARCH_ARM, CS_MODE_ARM),
    "arm64": (CS_ARCH_ARM64, CS_MODE_ARM),
    "aarch64": (CS_ARCH_ARM64, CS_MODE_ARM),
    "riscv": (CS_ARCH_RISCV, CS_MODE_RISCV64),
    "riscv64": (CS_ARCH_RISCV, CS_MODE_RISCV64),
    "riscv32": (CS_ARCH_RISCV, CS_MODE_RISCV32),
    "ppc": (CS_ARCH_PPC, CS_MODE_64 | CS_MODE_BIG_ENDIAN),
    "ppc64": (CS_ARCH_PPC, CS_MODE_64 | CS_MODE_BIG_ENDIAN),
    "powerpc": (CS_ARCH_PPC, CS_MODE_64 | CS_MODE_BIG_ENDIAN),
}

_ELF_MACHINES = {
    "EM_X86_64": "x86_64",
    "EM_386": "x86",
    "EM_ARM": "arm",
    "EM_AARCH64": "arm64",
    "EM_PPC64": "ppc64",
}

_UNCONDITIONAL_JUMPS = frozenset({"jmp", "ljmp", "b", "br", "bx", "j", "jr"})


@dataclass(slots=True)
class Section:
    name: str
    start: int
    data: bytes
    executable: bool

    def contains(self, address: int) -> bool:
        return self.start <= address < self.start + len(self.data)


@dataclass(slots=True)
class Symbol:
    name: str
    address: int
    size: int | None
    code: bytes


@dataclass(slots=True)
class BinaryImage:
    """What the backend needs from a file: arch, mapped sections, symbols."""

    arch: str | None = None
    sections: list[Section] = field(default_factory=list)
    symbols: list[Symbol] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)

    def section_at(self, address: int) -> Section | None:
        for section in self.sections:
            if section.contains(address):
                return section
        return None

    def entry_section(self) -> Section | None:
        return next((s for s in self.sections if s.executable and s.data), None)


def load_image(data: bytes) -> BinaryImage:
    """Parse ``data`` as ELF, or treat it as one raw executable blob at 0."""
    raw = BinaryImage(sections=[Section(name="raw", start=0, data=data, executable=True)])
    if not data.startswith(ELF_MAGIC):
        return raw
    try:
        return _read_elf(ELFFile(io.BytesIO(data)))
    except ELFError as e:
        log.warning("capstone_elf_unreadable", error=str(e))
        return raw


def _read_elf(elf: ELFFile) -> BinaryImage:
    machine = elf.header["e_machine"]
    if machine == "EM_RISCV":
        arch: str | None = "riscv64" if elf.elfclass == 64 else "riscv32"
    else:
        arch = _ELF_MACHINES.get(machine)

    image = BinaryImage(arch=arch)
    for section in elf.iter_sections():
        flags = section["sh_flags"]
        if section["sh_type"] == "SHT_NOBITS" or not flags & SH_FLAGS.SHF_ALLOC:
            continue
        image.sections.append(
            Section(
                name=section.name,
                start=section["sh_addr"],
                data=section.data(),
                executable=bool(flags & SH_FLAGS.SHF_EXECINSTR),
            )
        )

    seen: set[int] = set()
    for table in elf.iter_sections():
        if not isinstance(table, SymbolTableSection):
            continue
        for sym in table.iter_symbols():
            if sym["st_info"]["type"] != "STT_FUNC" or not sym.name:
                continue
            if sym["st_shndx"] == "SHN_UNDEF":
                if sym.name not in image.imports:
                    image.imports.append(sym.name)
                continue
            address = sym["st_value"]
            if address == 0 or address in seen:
                continue
            seen.add(address)
            size = sym["st_size"] or None
            image.symbols.append(
                Symbol(
                    name=sym.name,
                    address=address,
                    size=size,
                    code=_symbol_code(image.section_at(address), address, size),
                )
            )
    image.symbols.sort(key=lambda s: s.address)
    return image


def _symbol_code(section: Section | None, address: int, size: int | None) -> bytes:
    if section is None or not section.executable:
        return b""
    offset = address - section.start
    end = offset + size if size else len(section.data)
    return section.data[offset:end]


def resolve_arch(hint: str | None, detected: str | None) -> str:
    """Arch tag if capstone knows it, else the detected arch, else x86-64."""
    if hint:
        key = hint.strip().lower()
        if key in _ARCH_MODES:
            return key
        log.warning("capstone_arch_unsupported", arch=hint, fallback=detected or DEFAULT_ARCH)
    return detected or DEFAULT_ARCH


def _operands(insn: CsInsn) -> list:
    try:
        return list(insn.operands)
    except CsError:
        return []


def _in_group(insn: CsInsn, *groups: int) -> bool:
    try:
        return any(insn.group(g) for g in groups)
    except CsError:
        return False


def branch_target(insn: CsInsn) -> int | None:
    """Immediate destination of a call or jump; None when indirect."""
    for op in _operands(insn):
        if op.type == CS_OP_IMM and op.imm >= 0:
            return op.imm
    return None


@dataclass(slots=True)
class _Flow:
    blocks: list[BasicBlock] = field(default_factory=list)
    calls: list[tuple[int, int]] = field(default_factory=list)


def build_blocks(insns: list[CsInsn]) -> _Flow:
    """Split a linear instruction run into basic blocks.

    Leaders are the first instruction, the instruction after any call,
    jump or return, and direct jump targets inside the run.
    """
    flow = _Flow()
    if not insns:
        return flow
    addresses = {insn.address for insn in insns}
    leaders = {insns[0].address}
    for idx, insn in enumerate(insns):
        if _in_group(insn, CS_GRP_CALL, CS_GRP_JUMP, CS_GRP_RET, CS_GRP_IRET):
            if idx + 1 < len(insns):
                leaders.add(insns[idx + 1].address)
            target = branch_target(insn)
            if _in_group(insn, CS_GRP_JUMP) and target in addresses:
                leaders.add(target)

    start = insns[0].address
    successors: list[BlockEdge] = []
    for idx, insn in enumerate(insns):
        end = insn.address + insn.size
        has_next = idx + 1 < len(insns)
        target = branch_target(insn)
        if _in_group(insn, CS_GRP_CALL):
            if target is not None:
                successors.append(BlockEdge(target=target, kind=BlockEdgeKind.CALL))
                flow.calls.append((insn.address, target))
            if has_next:
                successors.append(BlockEdge(target=end, kind=BlockEdgeKind.FALLTHROUGH))
        elif _in_group(insn, CS_GRP_JUMP):
            conditional = insn.mnemonic.lower() not in _UNCONDITIONAL_JUMPS
            if target is not None:
                kind = BlockEdgeKind.CONDITIONAL_JUMP if conditional else BlockEdgeKind.JUMP
                successors.append(BlockEdge(target=target, kind=kind))
            if conditional and has_next:
                successors.append(BlockEdge(target=end, kind=BlockEdgeKind.FALLTHROUGH))
        elif not _in_group(insn, CS_GRP_RET, CS_GRP_IRET):
            if has_next and insns[idx + 1].address in leaders:
                successors.append(BlockEdge(target=end, kind=BlockEdgeKind.FALLTHROUGH))

        if not has_next or insns[idx + 1].address in leaders:
            flow.blocks.append(BasicBlock(start=start, length=end - start, successors=successors))
            if has_next:
                start = insns[idx + 1].address
            successors = []
    return flow


def _c_string(section: Section, address: int) -> str | None:
    offset = address - section.start
    end = section.data.find(b"\x00", offset)
    raw = section.data[offset : end if end != -1 else len(section.data)]
    try:
        text = raw.decode("ascii")
    except UnicodeDecodeError:
        return None
    if len(text) < MIN_STRING_LENGTH or not text.isprintable():
        return None
    return text


def _data_refs(insn: CsInsn) -> list[int]:
    """Immediates and rip-relative operands that may point at data."""
    refs: list[int] = []
    for op in _operands(insn):
        if op.type == CS_OP_IMM and op.imm > 0:
            refs.append(op.imm)
        elif op.type == CS_OP_MEM and op.mem.base and insn.reg_name(op.mem.base) == "rip":
            refs.append(insn.address + insn.size + op.mem.disp)
    return refs


def string_evidence(image: BinaryImage, insns: list[CsInsn]) -> list[EvidenceRecord]:
    evidence: list[EvidenceRecord] = []
    for insn in insns:
        for ref in _data_refs(insn):
            section = image.section_at(ref)
            if section is None or section.executable:
                continue
            text = _c_string(section, ref)
            if text is not None:
                evidence.append(
                    EvidenceRecord(
                        address=insn.address,
                        description=f"string: {text}",
                        kind=EvidenceKind.STRING,
                    )
                )
    return evidence


class CapstoneBackend:
    name = "capstone"
    description = "capstone in-process disassembly (ELF symbols, call graph, blocks, strings)"

    def version(self) -> str:
        major, minor, _ = capstone.cs_version()
        return f"capstone {major}.{minor}"

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        try:
            data = request.binary_path.read_bytes()
        except OSError as e:
            raise AnalysisError.missing_binary(str(request.binary_path)) from e

        version = self.version()
        if not data:
            return AnalysisResult(roots=list(request.roots), backend_version=version)

        image = load_image(data)
        arch = resolve_arch(request.arch, image.arch)
        cs = self._disassembler(arch)
        limit = request.options.max_instructions
        if limit is None:
            limit = DEFAULT_MAX_INSTRUCTIONS

        units: list[tuple[FunctionRecord, bytes]] = [
            (FunctionRecord(address=s.address, name=s.name, size=s.size), s.code)
            for s in image.symbols
        ]
        if not units and (entry := image.entry_section()) is not None:
            units.append(
                (
                    FunctionRecord(address=entry.start, name=f"sub_{entry.start:X}"),
                    entry.data,
                )
            )

        names = {func.address: func.label for func, _ in units}
        functions: dict[int, FunctionRecord] = {}
        call_edges: dict[tuple[int, int], CallEdge] = {}
        blocks: list[BasicBlock] = []
        evidence: list[EvidenceRecord] = []

        for func, code in units:
            insns = self._disassemble(cs, code, func.address, limit)
            if not insns:
                continue
            if func.size is None:
                func = func.model_copy(
                    update={"size": insns[-1].address + insns[-1].size - func.address}
                )
            functions[func.address] = func
            flow = build_blocks(insns)
            blocks.extend(flow.blocks)
            for site, target in flow.calls:
                call_edges.setdefault(
                    (func.address, target), CallEdge(from_addr=func.address, to_addr=target)
                )
                callee = names.get(target) or f"0x{target:X}"
                evidence.append(
                    EvidenceRecord(
                        address=site, description=f"call -> {callee}", kind=EvidenceKind.CALL
                    )
                )
            if request.options.include_strings:
                evidence.extend(string_evidence(image, insns))

        for _, target in call_edges:
            if target in functions or target in names:
                continue
            section = image.section_at(target)
            if section is not None and section.executable:
                functions[target] = FunctionRecord(address=target, name=f"sub_{target:X}")

        if request.options.include_imports:
            evidence.extend(
                EvidenceRecord(address=0, description=f"import: {name}", kind=EvidenceKind.IMPORT)
                for name in image.imports
            )

        if not functions:
            log.info("capstone_no_code_decoded", binary=str(request.binary_path), arch=arch)
            placeholders = [
                FunctionRecord(address=ROOT_PLACEHOLDER_BASE + idx, name=root, in_slice=True)
                for idx, root in enumerate(request.roots)
            ]
            return AnalysisResult(
                functions=placeholders,
                evidence=dedupe_evidence(evidence),
                roots=list(request.roots),
                backend_version=version,
            )

        classified, edges = classify_slice(
            sorted(functions.values(), key=lambda f: f.address),
            list(call_edges.values()),
            request.roots,
            request.options.max_depth,
        )
        log.debug(
            "capstone_analysis_done",
            binary=str(request.binary_path),
            arch=arch,
            functions=len(classified),
            call_edges=len(edges),
            basic_blocks=len(blocks),
            evidence=len(evidence),
        )
        return AnalysisResult(
            functions=classified,
            call_edges=edges,
            basic_blocks=blocks,
            evidence=dedupe_evidence(evidence),
            roots=list(request.roots),
            backend_version=version,
        )

    def _disassembler(self, arch: str) -> Cs:
        cs_arch, cs_mode = _ARCH_MODES[arch]
        try:
            cs = Cs(cs_arch, cs_mode)
        except CsError as e:
            raise AnalysisError.backend(f"capstone init failed for {arch}: {e}") from e
        cs.detail = True
        return cs

    def _disassemble(self, cs: Cs, code: bytes, address: int, limit: int) -> list[CsInsn]:
        if not code or limit == 0:
            return []
        try:
            return list(cs.disasm(code, address, count=limit))
        except CsError as e:
            raise AnalysisError.backend(f"capstone disassembly failed at 0x{address:X}: {e}") from e

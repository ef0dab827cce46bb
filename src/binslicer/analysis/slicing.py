"""Slice membership over a backend's call graph.

A function is in-slice when it is reachable from a root over call edges
within ``max_depth`` hops. Root tokens match a function name (with or
without the ``sym.`` prefix) or an address in any base ``int(x, 0)``
accepts. When no token matches, every function is treated as in-slice.
"""

from __future__ import annotations

from collections import deque

from binslicer.analysis.models import CallEdge, EvidenceRecord, FunctionRecord


def _root_address(token: str) -> int | None:
    try:
        return int(token, 0)
    except ValueError:
        return None


def match_roots(functions: list[FunctionRecord], roots: list[str]) -> set[int]:
    """Addresses of the functions named by ``roots``."""
    by_name: dict[str, int] = {}
    for func in functions:
        if func.name:
            by_name.setdefault(func.name, func.address)
            by_name.setdefault(func.name.removeprefix("sym."), func.address)
    addresses = {f.address for f in functions}
    matched: set[int] = set()
    for token in roots:
        token = token.strip()
        if token in by_name:
            matched.add(by_name[token])
            continue
        address = _root_address(token)
        if address is not None and address in addresses:
            matched.add(address)
    return matched


def classify_slice(
    functions: list[FunctionRecord],
    call_edges: list[CallEdge],
    roots: list[str],
    max_depth: int | None,
) -> tuple[list[FunctionRecord], list[CallEdge]]:
    """Mark in-slice and boundary functions and cross-slice call edges."""
    seeds = match_roots(functions, roots)
    if not seeds:
        in_slice = {f.address for f in functions}
    else:
        callees: dict[int, list[int]] = {}
        for edge in call_edges:
            callees.setdefault(edge.from_addr, []).append(edge.to_addr)
        in_slice = set(seeds)
        queue = deque((addr, 0) for addr in seeds)
        while queue:
            addr, depth = queue.popleft()
            if max_depth is not None and depth >= max_depth:
                continue
            for callee in callees.get(addr, []):
                if callee not in in_slice:
                    in_slice.add(callee)
                    queue.append((callee, depth + 1))

    boundary = {
        e.to_addr for e in call_edges if e.from_addr in in_slice and e.to_addr not in in_slice
    }
    classified = [
        f.model_copy(
            update={"in_slice": f.address in in_slice, "is_boundary": f.address in boundary}
        )
        for f in functions
    ]
    edges = [
        e.model_copy(
            update={"is_cross_slice": (e.from_addr in in_slice) != (e.to_addr in in_slice)}
        )
        for e in call_edges
    ]
    return classified, edges


def dedupe_evidence(evidence: list[EvidenceRecord]) -> list[EvidenceRecord]:
    """Drop repeated (address, description) pairs, keeping first occurrences."""
    seen: set[tuple[int, str]] = set()
    out: list[EvidenceRecord] = []
    for item in evidence:
        key = (item.address, item.description)
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out

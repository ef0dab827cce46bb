"""Name-to-backend registry.

A registry is built per process by ``default_backend_registry``; there is
no module-level mutable registry.
"""

from __future__ import annotations

from collections.abc import Iterator

import structlog

from binslicer.backends.base import AnalysisBackend
from binslicer.core.errors import BackendError

log = structlog.get_logger(__name__)


class BackendRegistry:
    def __init__(self) -> None:
        self._backends: dict[str, AnalysisBackend] = {}

    def register(self, backend: AnalysisBackend) -> BackendRegistry:
        """Add a backend; a duplicate name replaces the earlier entry."""
        if backend.name in self._backends:
            log.debug("backend_replaced", backend=backend.name)
        self._backends[backend.name] = backend
        return self

    def get(self, name: str) -> AnalysisBackend | None:
        return self._backends.get(name)

    def require(self, name: str) -> AnalysisBackend:
        """Like ``get`` but raises BackendError.unknown for missing names."""
        backend = self._backends.get(name)
        if backend is None:
            raise BackendError.unknown(name, self.names())
        return backend

    def names(self) -> list[str]:
        """Registered names in lexicographic order."""
        return sorted(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._backends

    def __iter__(self) -> Iterator[AnalysisBackend]:
        return (self._backends[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._backends)


def default_backend_registry(
    *,
    rizin_path: str | None = None,
    ghidra_path: str | None = None,
    timeout: float | None = None,
) -> BackendRegistry:
    """Registry with every backend this build ships.

    Args:
        rizin_path: Fallback rizin executable when a request carries none.
        ghidra_path: Fallback analyzeHeadless when a request carries none.
        timeout: Per-command timeout for tool subprocesses, in seconds.
    """
    from binslicer.backends.capstone import CapstoneBackend
    from binslicer.backends.ghidra import GhidraBackend
    from binslicer.backends.rizin import DEFAULT_TIMEOUT_SEC, RizinBackend
    from binslicer.backends.validate_only import ValidateOnlyBackend

    registry = BackendRegistry()
    registry.register(ValidateOnlyBackend())
    registry.register(RizinBackend(default_path=rizin_path, timeout=timeout or DEFAULT_TIMEOUT_SEC))
    registry.register(
        GhidraBackend(default_path=ghidra_path, timeout=timeout or DEFAULT_TIMEOUT_SEC)
    )
    registry.register(CapstoneBackend())
    return registry

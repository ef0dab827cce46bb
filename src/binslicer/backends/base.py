"""Analysis backend protocol."""

from typing import Protocol

from binslicer.analysis.models import AnalysisRequest, AnalysisResult
from binslicer.core.errors import AnalysisError

__all__ = ["AnalysisBackend", "AnalysisError"]


class AnalysisBackend(Protocol):
    """An analysis engine selectable by name.

    Backends turn an AnalysisRequest (binary path, root tokens, options)
    into an AnalysisResult. Root tokens are opaque to everything but the
    backend, which decides whether a token is a symbol name or an address.
    """

    @property
    def name(self) -> str:
        """Stable identifier used in specs, configs and run records."""
        ...

    @property
    def description(self) -> str:
        """One-line summary for backend listings."""
        ...

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Analyze the requested binary.

        Raises:
            AnalysisError: MISSING_BINARY, BACKEND_MISSING or BACKEND_ERROR.
        """
        ...

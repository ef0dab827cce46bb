"""Trivial backend: checks that the binary exists and reports nothing."""

from binslicer.analysis.models import AnalysisRequest, AnalysisResult
from binslicer.core.errors import AnalysisError

VALIDATE_ONLY = "validate-only"


class ValidateOnlyBackend:
    name = VALIDATE_ONLY
    description = "Checks the binary exists; produces an empty analysis"

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        if not request.binary_path.is_file():
            raise AnalysisError.missing_binary(str(request.binary_path))
        return AnalysisResult(backend_version=VALIDATE_ONLY)

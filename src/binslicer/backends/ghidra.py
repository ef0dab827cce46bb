"""Ghidra headless backend.

Locates ``analyzeHeadless``, records its version, and reports one
placeholder function per root so slice docs and reports have something to
anchor on. It does not import the binary into a Ghidra project.

``analyzeHeadless`` is looked up in this order:
1. the path recorded by ``setup-backend ghidra`` (``request.backend_path``)
2. ``BINSLICER__BACKENDS__GHIDRA_PATH``
3. ``$GHIDRA_ANALYZE_HEADLESS``
4. ``$GHIDRA_INSTALL_DIR/support/analyzeHeadless``
5. ``$GHIDRA_INSTALL_DIR/analyzeHeadless``
"""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import structlog

from binslicer.analysis.models import (
    AnalysisRequest,
    AnalysisResult,
    EvidenceKind,
    EvidenceRecord,
    FunctionRecord,
)
from binslicer.backends.rizin import DEFAULT_TIMEOUT_SEC
from binslicer.core.errors import AnalysisError

log = structlog.get_logger(__name__)

HEADLESS_ENV = "GHIDRA_ANALYZE_HEADLESS"
INSTALL_DIR_ENV = "GHIDRA_INSTALL_DIR"
HEADLESS_NAME = "analyzeHeadless.bat" if sys.platform == "win32" else "analyzeHeadless"

# Placeholder function addresses start here.
PLACEHOLDER_BASE = 0x3000


class GhidraBackend:
    name = "ghidra"
    description = "Ghidra analyzeHeadless (version check, one placeholder function per root)"

    def __init__(self, default_path: str | None = None, timeout: float = DEFAULT_TIMEOUT_SEC):
        self._default_path = default_path
        self._timeout = timeout

    def executable(self, request: AnalysisRequest) -> Path:
        """First configured or discoverable ``analyzeHeadless`` that is a file.

        Raises:
            AnalysisError: BACKEND_MISSING when nothing resolves.
        """
        for candidate in self._candidates(request):
            if candidate.is_file():
                return candidate
        raise AnalysisError.missing_backend(
            f"{HEADLESS_NAME} (run setup-backend ghidra or set {INSTALL_DIR_ENV})"
        )

    def _candidates(self, request: AnalysisRequest) -> list[Path]:
        candidates: list[Path] = []
        if request.backend_path is not None:
            candidates.append(request.backend_path)
        if self._default_path:
            candidates.append(Path(self._default_path))
        if headless := os.environ.get(HEADLESS_ENV):
            candidates.append(Path(headless))
        if install_dir := os.environ.get(INSTALL_DIR_ENV):
            candidates.append(Path(install_dir) / "support" / HEADLESS_NAME)
            candidates.append(Path(install_dir) / HEADLESS_NAME)
        return candidates

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        if not request.binary_path.is_file():
            raise AnalysisError.missing_binary(str(request.binary_path))

        headless = self.executable(request)
        version = self.version(headless)

        functions = [
            FunctionRecord(address=PLACEHOLDER_BASE + idx, name=root, in_slice=True)
            for idx, root in enumerate(request.roots)
        ]
        log.debug(
            "ghidra_analysis_done",
            binary=str(request.binary_path),
            headless=str(headless),
            functions=len(functions),
        )
        return AnalysisResult(
            functions=functions,
            evidence=[
                EvidenceRecord(address=0, description=f"ghidra: {version}", kind=EvidenceKind.OTHER)
            ],
            roots=list(request.roots),
            backend_version=version,
            backend_path=str(headless),
        )

    def version(self, headless: Path) -> str:
        """First non-empty line of ``analyzeHeadless -version``."""
        try:
            result = subprocess.run(
                [str(headless), "-version"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise AnalysisError.missing_backend(str(headless)) from e
        except subprocess.TimeoutExpired as e:
            raise AnalysisError.backend(
                f"analyzeHeadless -version timed out after {self._timeout}s"
            ) from e
        except (subprocess.SubprocessError, OSError) as e:
            raise AnalysisError.backend(f"failed to spawn analyzeHeadless: {e}") from e
        if result.returncode != 0:
            raise AnalysisError.backend(f"analyzeHeadless exited with {result.returncode}")
        for line in result.stdout.splitlines():
            if line.strip():
                return line.strip()
        raise AnalysisError.backend("analyzeHeadless returned an empty version string")

"""Tests for tool version detection and backend setup."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from binslicer.backends.tools import detect_tool_version, setup_backend
from binslicer.core.errors import ArgumentError, ErrorCode
from binslicer.project.config import load_project_config
from binslicer.project.context import ProjectContext


def _completed(stdout: str, stderr: str = "", returncode: int = 0):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


@pytest.fixture
def tool_file(tmp_path: Path) -> Path:
    path = tmp_path / "tools" / "rizin"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\n")
    return path


class TestDetectToolVersion:
    def test_first_non_empty_line(self, tool_file: Path) -> None:
        with patch(
            "binslicer.backends.tools.subprocess.run",
            return_value=_completed("\n  rizin 0.7.3 @ linux\nmore\n"),
        ) as run:
            assert detect_tool_version("rizin", tool_file) == "rizin 0.7.3 @ linux"

        assert run.call_args.args[0] == [str(tool_file), "-v"]

    def test_falls_back_to_stderr(self, tool_file: Path) -> None:
        with patch(
            "binslicer.backends.tools.subprocess.run",
            return_value=_completed("", stderr="Ghidra 11.0\n"),
        ) as run:
            assert detect_tool_version("ghidra", tool_file) == "Ghidra 11.0"

        assert run.call_args.args[0][1] == "-version"

    def test_nonzero_exit_gives_none(self, tool_file: Path) -> None:
        with patch(
            "binslicer.backends.tools.subprocess.run",
            return_value=_completed("usage", returncode=1),
        ):
            assert detect_tool_version("rizin", tool_file) is None

    def test_spawn_failure_gives_none(self, tool_file: Path) -> None:
        with patch(
            "binslicer.backends.tools.subprocess.run", side_effect=PermissionError("denied")
        ):
            assert detect_tool_version("rizin", tool_file) is None


class TestSetupBackend:
    def test_given_tool_when_setup_then_manifest_updated(
        self, project: ProjectContext, tool_file: Path
    ) -> None:
        """Path, version and default backend all land in the manifest."""
        # When
        with patch("binslicer.backends.tools.detect_tool_version", return_value="rizin 0.7.3"):
            version = setup_backend(project, "rizin", tool_file, set_default=True)

        # Then
        assert version == "rizin 0.7.3"
        saved = load_project_config(project.layout.project_config_path)
        assert saved.backend_path("rizin") == str(tool_file)
        assert saved.backend_version("rizin") == "rizin 0.7.3"
        assert saved.default_backend == "rizin"

    def test_ghidra_uses_headless_key(self, project: ProjectContext, tool_file: Path) -> None:
        with patch("binslicer.backends.tools.detect_tool_version", return_value=None):
            version = setup_backend(project, "ghidra", tool_file)

        assert version is None
        saved = load_project_config(project.layout.project_config_path)
        assert saved.configured_backends() == {"ghidra_headless": str(tool_file)}
        assert saved.detected_versions() == {}
        assert saved.default_backend is None

    def test_unknown_tool_rejected(self, project: ProjectContext, tool_file: Path) -> None:
        with pytest.raises(ArgumentError) as exc_info:
            setup_backend(project, "ida", tool_file)

        assert exc_info.value.code is ErrorCode.ARGUMENT_CONSTRAINT

    def test_path_must_be_file(self, project: ProjectContext, tmp_path: Path) -> None:
        with pytest.raises(ArgumentError) as exc_info:
            setup_backend(project, "rizin", tmp_path)

        assert "not a file" in exc_info.value.message

    def test_default_must_be_available(self, project: ProjectContext, tool_file: Path) -> None:
        """An unavailable backend is never written as the project default."""
        # When
        with pytest.raises(ArgumentError) as exc_info:
            setup_backend(
                project, "ghidra", tool_file, set_default=True, available=["validate-only"]
            )

        # Then
        assert "cannot make 'ghidra' the default" in exc_info.value.message
        saved = load_project_config(project.layout.project_config_path)
        assert saved.default_backend is None
        assert saved.configured_backends() == {}

    def test_available_default_accepted(self, project: ProjectContext, tool_file: Path) -> None:
        with patch("binslicer.backends.tools.detect_tool_version", return_value=None):
            setup_backend(
                project, "ghidra", tool_file, set_default=True, available=["ghidra", "rizin"]
            )

        saved = load_project_config(project.layout.project_config_path)
        assert saved.default_backend == "ghidra"

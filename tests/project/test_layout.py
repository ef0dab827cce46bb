"""Tests for project/layout.py."""

from pathlib import Path

import pytest

from binslicer.core.errors import ArgumentError, ErrorCode
from binslicer.project.layout import ProjectLayout, check_path_segment, is_path_segment


class TestProjectLayout:
    def test_given_root_when_layout_then_canonical_subpaths(self, tmp_path: Path) -> None:
        """Every subpath derives from the root."""
        layout = ProjectLayout.for_root(tmp_path)

        assert layout.meta_dir == tmp_path / ".ritual"
        assert layout.project_config_path == tmp_path / ".ritual" / "project.json"
        assert layout.db_path == tmp_path / ".ritual" / "project.db"
        assert layout.slices_docs_dir == tmp_path / "docs" / "slices"
        assert layout.reports_dir == tmp_path / "reports"
        assert layout.graphs_dir == tmp_path / "graphs"
        assert layout.rituals_dir == tmp_path / "rituals"
        assert layout.outputs_binaries_dir == tmp_path / "outputs" / "binaries"

    def test_given_names_when_run_dir_then_nested_under_binary(self, tmp_path: Path) -> None:
        layout = ProjectLayout.for_root(tmp_path)

        run_dir = layout.run_output_dir("libfoo.so", "Parser")

        assert run_dir == tmp_path / "outputs" / "binaries" / "libfoo.so" / "Parser"
        assert run_dir.parent == layout.binary_output_root("libfoo.so")

    def test_slice_artifact_paths(self, tmp_path: Path) -> None:
        layout = ProjectLayout.for_root(tmp_path)

        assert layout.slice_doc_path("Net").name == "Net.md"
        assert layout.slice_report_path("Net").name == "Net.json"
        assert layout.slice_graph_path("Net").name == "Net.dot"

    def test_db_path_stored_relative_to_root(self, tmp_path: Path) -> None:
        layout = ProjectLayout.for_root(tmp_path)

        assert layout.db_path_relative_string() == ".ritual/project.db"

    def test_layout_does_not_touch_filesystem(self, tmp_path: Path) -> None:
        """Building a layout creates nothing."""
        root = tmp_path / "absent"

        layout = ProjectLayout.for_root(root)

        assert not root.exists()
        assert [label for label, _ in layout.directories()][0] == "meta"


class TestPathSegments:
    @pytest.mark.parametrize("name", ["Net", "libfoo.so", "run-2", ".hidden", "a..b"])
    def test_plain_names_accepted(self, name: str) -> None:
        assert is_path_segment(name)
        assert check_path_segment("run", name) == name

    @pytest.mark.parametrize("name", ["", ".", "..", "../Other", "a/b", "a\\b", "/abs", "nul\x00"])
    def test_names_that_leave_the_directory_rejected(self, name: str) -> None:
        assert not is_path_segment(name)
        with pytest.raises(ArgumentError) as exc_info:
            check_path_segment("binary", name)

        assert exc_info.value.code is ErrorCode.ARGUMENT_CONSTRAINT
        assert "invalid binary name" in exc_info.value.message

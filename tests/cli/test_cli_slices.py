"""Tests for the slice commands."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from binslicer.cli.main import cli


def _invoke(root: Path, *args: str):
    return CliRunner().invoke(cli, [args[0], "--root", str(root), *args[1:]])


class TestSliceCommands:
    def test_init_list_update_round(self, project_root: Path) -> None:
        """A slice moves from Planned to Active through the CLI."""
        # When
        created = _invoke(
            project_root, "init-slice", "--name", "Net", "--description", "Network stack"
        )
        updated = _invoke(project_root, "update-slice", "--name", "Net", "--status", "ACTIVE")
        listed = _invoke(project_root, "list-slices", "--json")

        # Then
        assert created.exit_code == 0, created.output
        assert (project_root / "docs" / "slices" / "Net.md").is_file()
        assert updated.exit_code == 0, updated.output
        assert "Updated slice Net (Active)" in updated.output
        [record] = json.loads(listed.stdout)
        assert record["name"] == "Net"
        assert record["description"] == "Network stack"

    def test_text_listing(self, project_root: Path) -> None:
        _invoke(project_root, "init-slice", "--name", "Net", "--default-binary", "b.so")

        result = _invoke(project_root, "list-slices")

        assert "- Net (Planned) - (no description) [binary: b.so]" in result.output

    def test_empty_listing(self, project_root: Path) -> None:
        result = _invoke(project_root, "list-slices")

        assert result.exit_code == 0
        assert "Slices:\n(none)" in result.output

    def test_duplicate_init_fails(self, project_root: Path) -> None:
        _invoke(project_root, "init-slice", "--name", "Net")

        result = _invoke(project_root, "init-slice", "--name", "Net")

        assert result.exit_code != 0
        assert "Failed to initialize slice Net" in result.output

    def test_invalid_status_rejected_by_choice(self, project_root: Path) -> None:
        _invoke(project_root, "init-slice", "--name", "Net")

        result = _invoke(project_root, "update-slice", "--name", "Net", "--status", "shipped")

        assert result.exit_code == 2

    def test_update_unknown_slice_fails(self, project_root: Path) -> None:
        result = _invoke(project_root, "update-slice", "--name", "Ghost", "--status", "draft")

        assert result.exit_code != 0
        assert "not found" in result.output

    def test_emit_with_no_slices_warns(self, project_root: Path) -> None:
        docs = _invoke(project_root, "emit-slice-docs")
        reports = _invoke(project_root, "emit-slice-reports")

        assert docs.exit_code == 0
        assert "No slices to emit docs for." in docs.output
        assert "No slices to emit reports for." in reports.output

    def test_emit_docs_and_reports(self, project_root: Path) -> None:
        _invoke(project_root, "init-slice", "--name", "Net")

        docs = _invoke(project_root, "emit-slice-docs")
        reports = _invoke(project_root, "emit-slice-reports")

        assert docs.exit_code == 0, docs.output
        assert "1 slice doc written" in docs.output
        assert reports.exit_code == 0, reports.output
        assert json.loads((project_root / "reports" / "Net.json").read_text())["name"] == "Net"
        assert (project_root / "graphs" / "Net.dot").read_text().startswith("digraph Slice {")

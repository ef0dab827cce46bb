"""Tests for init-project, project-info, add-binary and list-binaries."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

from click.testing import CliRunner

from binslicer.cli.main import cli


class TestCliGroup:
    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("init-project", "run-ritual", "emit-slice-reports", "setup-backend"):
            assert command in result.output


class TestInitProject:
    def test_given_empty_dir_when_init_then_layout_created(self, tmp_path: Path) -> None:
        """init-project creates the manifest, database and layout dirs."""
        # Given
        root = tmp_path / "proj"

        # When
        result = CliRunner().invoke(cli, ["init-project", "--root", str(root)])

        # Then
        assert result.exit_code == 0, result.output
        assert "Initialized project proj" in result.output
        manifest = json.loads((root / ".ritual" / "project.json").read_text())
        assert manifest["name"] == "proj"
        assert (root / "outputs" / "binaries").is_dir()
        assert (root / "rituals").is_dir()

    def test_explicit_name(self, tmp_path: Path) -> None:
        root = tmp_path / "proj"

        result = CliRunner().invoke(cli, ["init-project", "--root", str(root), "--name", "Fw"])

        assert result.exit_code == 0
        assert json.loads((root / ".ritual" / "project.json").read_text())["name"] == "Fw"


class TestAddAndListBinaries:
    def test_given_binary_when_added_then_listed_with_hash(self, tmp_path: Path) -> None:
        """A 3-byte binary is registered with its SHA-256 and arch tag."""
        # Given
        root = tmp_path / "proj"
        runner = CliRunner()
        assert runner.invoke(cli, ["init-project", "--root", str(root)]).exit_code == 0
        (root / "b.so").write_bytes(b"abc")

        # When
        added = runner.invoke(
            cli, ["add-binary", "--root", str(root), "--path", "b.so", "--arch", "armv7"]
        )
        listed = runner.invoke(cli, ["list-binaries", "--root", str(root), "--json"])

        # Then
        assert added.exit_code == 0, added.output
        assert "Added binary b.so" in added.output
        assert listed.exit_code == 0
        [binary] = json.loads(listed.stdout)
        assert binary["name"] == "b.so"
        assert binary["path"] == "b.so"
        assert binary["arch"] == "armv7"
        assert binary["hash"] == hashlib.sha256(b"abc").hexdigest()

    def test_missing_file_fails(self, project_root: Path) -> None:
        result = CliRunner().invoke(
            cli, ["add-binary", "--root", str(project_root), "--path", "nope.so"]
        )

        assert result.exit_code != 0
        assert "Failed to add binary" in result.output

    def test_skip_hash_and_text_listing(self, project_root: Path, binary_file: Path) -> None:
        runner = CliRunner()

        runner.invoke(
            cli, ["add-binary", "--root", str(project_root), "--path", "b.so", "--skip-hash"]
        )
        result = runner.invoke(cli, ["list-binaries", "--root", str(project_root)])

        assert result.exit_code == 0
        assert "- b.so (b.so) arch=- hash=-" in result.output

    def test_empty_listing(self, project_root: Path) -> None:
        result = CliRunner().invoke(cli, ["list-binaries", "--root", str(project_root)])

        assert result.exit_code == 0
        assert "Binaries:\n(none)" in result.output

    def test_uninitialized_root_fails(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["list-binaries", "--root", str(tmp_path)])

        assert result.exit_code != 0
        assert "Failed to open project" in result.output


class TestProjectInfo:
    def test_json_snapshot(self, project_root: Path, binary_file: Path) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["add-binary", "--root", str(project_root), "--path", "b.so"])

        result = runner.invoke(cli, ["project-info", "--root", str(project_root), "--json"])

        assert result.exit_code == 0, result.output
        info = json.loads(result.stdout)
        assert info["name"] == "proj"
        assert info["available_backends"] == ["capstone", "ghidra", "rizin", "validate-only"]
        assert [b["name"] for b in info["binaries"]] == ["b.so"]
        assert all(entry["exists"] for entry in info["layout"])

    def test_text_report(self, project_root: Path) -> None:
        result = CliRunner().invoke(cli, ["project-info", "--root", str(project_root)])

        assert result.exit_code == 0
        assert "Binary Slicer Project Info" in result.output
        assert "Binaries: 0" in result.output
        assert "MISSING" not in result.output

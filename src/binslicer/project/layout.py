"""On-disk layout of a project.

Pure path arithmetic derived from a root directory. Nothing here touches
the filesystem; commands create directories from these paths.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from binslicer.core.errors import ArgumentError

META_DIR_NAME = ".ritual"
CONFIG_FILE_NAME = "project.json"
DB_FILE_NAME = "project.db"


def is_path_segment(name: str) -> bool:
    """True when ``name`` names exactly one entry inside its parent directory."""
    return name not in ("", ".", "..") and not any(sep in name for sep in ("/", "\\", "\x00"))


def check_path_segment(kind: str, name: str) -> str:
    """Return ``name`` unchanged if it is safe to join under a project directory.

    Binary, run and slice names become directory and file names, so they
    must not be able to climb out of ``outputs/binaries`` or ``docs/slices``.

    Raises:
        ArgumentError: ARGUMENT_CONSTRAINT for ``.``, ``..``, empty names
            and names containing a path separator.
    """
    if not is_path_segment(name):
        raise ArgumentError.constraint(
            f"invalid {kind} name '{name}': must be a single path component"
        )
    return name


@dataclass(frozen=True, slots=True)
class ProjectLayout:
    """Canonical subpaths of a project rooted at ``root``."""

    root: Path
    meta_dir: Path
    project_config_path: Path
    db_path: Path
    docs_dir: Path
    slices_docs_dir: Path
    reports_dir: Path
    graphs_dir: Path
    rituals_dir: Path
    outputs_dir: Path
    outputs_binaries_dir: Path

    @classmethod
    def for_root(cls, root: Path | str) -> ProjectLayout:
        root = Path(root)
        meta_dir = root / META_DIR_NAME
        docs_dir = root / "docs"
        outputs_dir = root / "outputs"
        return cls(
            root=root,
            meta_dir=meta_dir,
            project_config_path=meta_dir / CONFIG_FILE_NAME,
            db_path=meta_dir / DB_FILE_NAME,
            docs_dir=docs_dir,
            slices_docs_dir=docs_dir / "slices",
            reports_dir=root / "reports",
            graphs_dir=root / "graphs",
            rituals_dir=root / "rituals",
            outputs_dir=outputs_dir,
            outputs_binaries_dir=outputs_dir / "binaries",
        )

    def db_path_relative_string(self) -> str:
        """DB path as stored in the project config (relative when under root)."""
        try:
            return self.db_path.relative_to(self.root).as_posix()
        except ValueError:
            return str(self.db_path)

    def binary_output_root(self, binary_name: str) -> Path:
        return self.outputs_binaries_dir / binary_name

    def run_output_dir(self, binary_name: str, run_name: str) -> Path:
        return self.binary_output_root(binary_name) / run_name

    def slice_doc_path(self, slice_name: str) -> Path:
        return self.slices_docs_dir / f"{slice_name}.md"

    def slice_report_path(self, slice_name: str) -> Path:
        return self.reports_dir / f"{slice_name}.json"

    def slice_graph_path(self, slice_name: str) -> Path:
        return self.graphs_dir / f"{slice_name}.dot"

    def directories(self) -> list[tuple[str, Path]]:
        """Every directory an initialized project must have, labelled."""
        return [
            ("meta", self.meta_dir),
            ("docs", self.docs_dir),
            ("slices docs", self.slices_docs_dir),
            ("reports", self.reports_dir),
            ("graphs", self.graphs_dir),
            ("rituals", self.rituals_dir),
            ("outputs", self.outputs_dir),
            ("binary outputs", self.outputs_binaries_dir),
        ]

"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import logging
import os
import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local binslicer package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of binslicer modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("binslicer"):
        del sys.modules[module_name]

from binslicer.project.context import ProjectContext  # noqa: E402
from binslicer.project.ops import add_binary, init_project  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Keep the user's global config and env out of every test."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(
        "binslicer.config.settings.GLOBAL_CONFIG_PATH",
        home / ".config" / "binary-slicer" / "config.yaml",
    )
    for key in [k for k in os.environ if k.startswith("BINSLICER__")]:
        monkeypatch.delenv(key)
    yield
    # CLI invocations attach handlers to streams that CliRunner closes
    logging.getLogger().handlers.clear()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """An initialized, empty project directory."""
    root = tmp_path / "proj"
    init_project(root).close()
    return root


@pytest.fixture
def project(project_root: Path) -> Generator[ProjectContext, None, None]:
    """Open context on an initialized project."""
    ctx = ProjectContext.from_root(project_root)
    yield ctx
    ctx.close()


@pytest.fixture
def binary_file(project_root: Path) -> Path:
    """A small fake binary inside the project root."""
    path = project_root / "b.so"
    path.write_bytes(b"\x7fELF" + b"\x00" * 60)
    return path


@pytest.fixture
def registered_binary(project: ProjectContext, binary_file: Path) -> str:
    """Name of ``binary_file`` after registering it with ``project``."""
    return add_binary(project, binary_file, arch="armv7").name

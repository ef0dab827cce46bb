"""Recording external analysis tools in the project manifest."""

from __future__ import annotations

import subprocess
from collections.abc import Collection
from pathlib import Path

import structlog

from binslicer.core.errors import ArgumentError
from binslicer.project.config import tool_key
from binslicer.project.context import ProjectContext

log = structlog.get_logger(__name__)

SETUP_TOOLS = ("rizin", "ghidra")

_VERSION_FLAGS = {
    "rizin": "-v",
    "ghidra": "-version",
}

VERSION_TIMEOUT_SEC = 30.0


def detect_tool_version(tool: str, path: Path) -> str | None:
    """First non-empty output line of the tool's version flag, or None.

    Failures are logged and never raised.
    """
    try:
        result = subprocess.run(
            [str(path), _VERSION_FLAGS[tool]],
            capture_output=True,
            text=True,
            timeout=VERSION_TIMEOUT_SEC,
        )
    except (subprocess.SubprocessError, OSError) as e:
        log.warning("tool_version_detection_failed", tool=tool, path=str(path), error=str(e))
        return None
    if result.returncode != 0:
        log.warning(
            "tool_version_detection_failed",
            tool=tool,
            path=str(path),
            returncode=result.returncode,
        )
        return None
    for line in (result.stdout or result.stderr).splitlines():
        if line.strip():
            return line.strip()
    return None


def setup_backend(
    ctx: ProjectContext,
    tool: str,
    path: Path,
    *,
    set_default: bool = False,
    available: Collection[str] | None = None,
) -> str | None:
    """Record ``path`` for ``tool`` and save the manifest.

    Returns the detected version, if any. With ``set_default``, the tool
    must be one of the ``available`` backend names when those are given.

    Raises:
        ArgumentError: Unknown tool, a default that is not available, or
            ``path`` is not an existing file.
        ConfigError: The manifest cannot be written.
    """
    if tool not in SETUP_TOOLS:
        raise ArgumentError.constraint(
            f"unknown backend {tool!r} (expected one of: {', '.join(SETUP_TOOLS)})"
        )
    if set_default and available is not None and tool not in available:
        raise ArgumentError.constraint(
            f"cannot make {tool!r} the default: not an available backend "
            f"(available: {', '.join(sorted(available))})"
        )
    if not path.is_file():
        raise ArgumentError.constraint(f"backend path is not a file: {path}")

    key = tool_key(tool)
    version = detect_tool_version(tool, path)
    setattr(ctx.config.backends, key, str(path))
    if version is not None:
        setattr(ctx.config.backend_versions, key, version)
    if set_default:
        ctx.config.default_backend = tool
    ctx.save_config()
    log.info(
        "backend_configured", backend=tool, path=str(path), version=version, default=set_default
    )
    return version

"""Project manifest (``.ritual/project.json``).

The manifest is JSON, modelled with pydantic. Saving writes to a temp file
in the same directory and renames it over the target, so a crashed save
never leaves a truncated manifest behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from binslicer.core.errors import ConfigError

log = structlog.get_logger(__name__)

INITIAL_CONFIG_VERSION = "0.1.0"


class DbConfig(BaseModel):
    path: str


class BackendPaths(BaseModel):
    """Configured tool locations. Unknown tool keys are preserved."""

    model_config = ConfigDict(extra="allow")

    rizin: str | None = None
    ghidra_headless: str | None = None


class BackendVersions(BaseModel):
    """Detected tool versions, keyed like ``BackendPaths``."""

    model_config = ConfigDict(extra="allow")

    rizin: str | None = None
    ghidra_headless: str | None = None


class ProjectConfig(BaseModel):
    """Typed view of the project manifest."""

    name: str
    description: str | None = None
    config_version: str = INITIAL_CONFIG_VERSION
    db: DbConfig
    default_backend: str | None = None
    backends: BackendPaths = Field(default_factory=BackendPaths)
    backend_versions: BackendVersions = Field(default_factory=BackendVersions)

    @classmethod
    def new(cls, name: str, db_path: str) -> ProjectConfig:
        return cls(name=name, db=DbConfig(path=db_path))

    def resolved_db_path(self, root: Path) -> Path:
        """Absolute DB paths win; relative ones are joined to the root."""
        path = Path(self.db.path)
        if path.is_absolute():
            return path
        return root / path

    def backend_path(self, backend: str) -> str | None:
        """Configured tool path for a backend name, if any."""
        return _lookup(self.backends, tool_key(backend))

    def backend_version(self, backend: str) -> str | None:
        """Detected tool version for a backend name, if any."""
        return _lookup(self.backend_versions, tool_key(backend))

    def configured_backends(self) -> dict[str, str]:
        return {k: v for k, v in self.backends.model_dump().items() if v is not None}

    def detected_versions(self) -> dict[str, str]:
        return {k: v for k, v in self.backend_versions.model_dump().items() if v is not None}

    def bump_config_version(self, version: str) -> bool:
        """Advance ``config_version``; never moves it backwards.

        Returns True when the version changed.
        """
        if _version_key(version) <= _version_key(self.config_version):
            return False
        self.config_version = version
        return True

    def to_json(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), indent=2)


def tool_key(backend: str) -> str:
    """Key under ``backends``/``backend_versions`` for a backend name."""
    return "ghidra_headless" if backend == "ghidra" else backend


def _lookup(model: BaseModel, key: str) -> str | None:
    value = getattr(model, key, None)
    if value is None and model.model_extra:
        value = model.model_extra.get(key)
    return value


def _version_key(version: str) -> tuple[int, ...]:
    parts: list[int] = []
    for part in version.split("."):
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def load_project_config(path: Path) -> ProjectConfig:
    """Read and parse the manifest.

    Raises:
        ConfigError: CONFIG_READ_ERROR when the file cannot be read,
            CONFIG_PARSE_ERROR when it is not a valid manifest.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError.read_failed(str(path), str(e)) from e
    except UnicodeDecodeError as e:
        raise ConfigError.parse_failed(str(path), f"not valid UTF-8 text ({e.reason})") from e

    try:
        return ProjectConfig.model_validate_json(raw)
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(loc) for loc in err["loc"]) or "<root>"
        raise ConfigError.parse_failed(str(path), f"{field}: {err['msg']}") from e


def save_project_config(config: ProjectConfig, path: Path) -> None:
    """Write the manifest pretty-printed, atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(config.to_json())
            f.write("\n")
        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise ConfigError.write_failed(str(path), str(e)) from e
    log.debug("project_config_saved", path=str(path))

"""Ritual spec: the declarative recipe for one analysis run.

Specs are read from YAML (``.yaml``/``.yml``) or JSON (``.json``). Field
presence is checked by ``validate`` rather than by the model, so a missing
name and an empty name fail the same way.

The normalized spec written into a run directory is always YAML; its byte
hash is the run's spec hash.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from binslicer.core.errors import SpecError
from binslicer.project.layout import is_path_segment
from binslicer.store.models import DEFAULT_BACKEND

log = structlog.get_logger(__name__)

SPEC_SUFFIXES = (".yaml", ".yml", ".json")
NORMALIZED_SPEC_FILE = "spec.yaml"


class RitualOutputs(BaseModel):
    reports: bool = True
    graphs: bool = True
    docs: bool = True


class RitualSpec(BaseModel):
    name: str = ""
    binary: str = ""
    roots: list[str] = Field(default_factory=list)
    max_depth: int | None = Field(default=None, ge=0)
    backend: str | None = None
    description: str | None = None
    outputs: RitualOutputs | None = None

    @field_validator("roots", mode="before")
    @classmethod
    def _stringify_roots(cls, v: Any) -> Any:
        # YAML reads an unquoted 0x401000 as an int; keep it as an address token.
        if isinstance(v, list):
            return [
                f"0x{item:x}" if isinstance(item, int) and not isinstance(item, bool) else item
                for item in v
            ]
        return v

    def validate_fields(self) -> None:
        """Check required fields.

        Raises:
            SpecError: SPEC_VALIDATION_ERROR naming the first problem.
        """
        if not self.name.strip():
            raise SpecError.validation("name required")
        if not is_path_segment(self.name):
            raise SpecError.validation(f"name '{self.name}' must be a single path component")
        if not self.binary.strip():
            raise SpecError.validation("binary required")
        if not self.roots:
            raise SpecError.validation("roots non-empty required")

    def normalized(self, backend: str) -> RitualSpec:
        """Copy with outputs defaulted and the chosen backend recorded."""
        return self.model_copy(
            update={"backend": backend, "outputs": self.outputs or RitualOutputs()},
            deep=True,
        )

    def to_yaml(self) -> str:
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)

    def to_yaml_bytes(self) -> bytes:
        return self.to_yaml().encode("utf-8")


def parse_ritual_spec(text: str, *, path: str, as_json: bool = False) -> RitualSpec:
    """Parse spec text without validating required fields.

    Raises:
        SpecError: SPEC_PARSE_ERROR for malformed documents or wrong field types.
    """
    try:
        data = json.loads(text) if as_json else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SpecError.parse(path, str(e)) from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise SpecError.parse(path, "expected a mapping at the top level")
    try:
        return RitualSpec.model_validate(data)
    except ValidationError as e:
        raise SpecError.parse(path, _first_error(e)) from e


def load_ritual_spec(path: Path) -> RitualSpec:
    """Read and parse a spec file; the format follows the file extension.

    Raises:
        SpecError: SPEC_IO_ERROR if unreadable, SPEC_PARSE_ERROR if malformed
            or not UTF-8.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecError.io(str(path), e.strerror or str(e)) from e
    except UnicodeDecodeError as e:
        reason = f"not valid UTF-8 text ({e.reason} at byte {e.start})"
        raise SpecError.parse(str(path), reason) from e
    return parse_ritual_spec(text, path=str(path), as_json=path.suffix.lower() == ".json")


def choose_backend(
    override: str | None,
    project_default: str | None,
    spec_backend: str | None,
) -> str:
    """Explicit override, then project default, then the spec, then validate-only."""
    for candidate in (override, project_default, spec_backend):
        if candidate:
            return candidate
    return DEFAULT_BACKEND


def roots_from_spec_file(path: Path) -> list[str]:
    """Roots recorded in a run's normalized spec; empty if unreadable."""
    if not path.is_file():
        return []
    try:
        return load_ritual_spec(path).roots
    except SpecError as e:
        log.debug("spec_roots_unavailable", path=str(path), error=e.message)
        return []


def _first_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "spec"
    return f"{location}: {first['msg']}"

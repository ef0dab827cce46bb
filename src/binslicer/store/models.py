"""Entity records and status enums.

Records are pydantic models so the command surface can render them as JSON
directly. Their storage encoding is fixed: ``SliceStatus`` is stored as an
integer, ``RitualRunStatus`` as its lowercase string value.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, Field, field_serializer

from binslicer.core.errors import RunError

DEFAULT_BACKEND = "validate-only"


class SliceStatus(IntEnum):
    """Slice lifecycle. The integer values are the storage encoding."""

    PLANNED = 0
    DRAFT = 1
    ACTIVE = 2
    DEPRECATED = 3

    @classmethod
    def from_int(cls, value: int) -> SliceStatus:
        """Decode a stored value; unknown integers become DRAFT."""
        try:
            return cls(value)
        except ValueError:
            return cls.DRAFT

    @classmethod
    def from_label(cls, label: str) -> SliceStatus:
        return cls[label.strip().upper()]

    @property
    def label(self) -> str:
        return self.name.capitalize()


class RitualRunStatus(str, Enum):
    """Run status. Values are the canonical storage and output strings."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    STUBBED = "stubbed"

    @classmethod
    def parse(cls, value: str) -> RitualRunStatus:
        """Decode a status string (case-insensitive).

        Raises:
            RunError: INVALID_STATUS for anything that is not a known status.
        """
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            raise RunError.invalid_status(value) from e


class BinaryRecord(BaseModel):
    id: int | None = None
    name: str
    path: str
    arch: str | None = None
    hash: str | None = None


class SliceRecord(BaseModel):
    id: int | None = None
    name: str
    description: str | None = None
    status: SliceStatus = SliceStatus.PLANNED
    default_binary: str | None = None

    @field_serializer("status", when_used="json")
    def _status_label(self, status: SliceStatus) -> str:
        return status.label


class RitualRunRecord(BaseModel):
    id: int | None = None
    binary: str
    ritual: str
    spec_hash: str
    binary_hash: str | None = None
    backend: str = DEFAULT_BACKEND
    backend_version: str | None = None
    backend_path: str | None = None
    status: RitualRunStatus
    started_at: str
    finished_at: str


class ProjectSnapshot(BaseModel):
    """Entity lists of one project, each in insertion order."""

    binaries: list[BinaryRecord] = Field(default_factory=list)
    slices: list[SliceRecord] = Field(default_factory=list)
    ritual_runs: list[RitualRunRecord] = Field(default_factory=list)

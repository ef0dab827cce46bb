"""binary-slicer error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Store
- 4xxx: Ritual spec
- 5xxx: Entities and runs
- 6xxx: Backends
- 7xxx: Arguments
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_READ_ERROR = 2001
    CONFIG_PARSE_ERROR = 2002
    CONFIG_WRITE_ERROR = 2003

    # Store (3xxx)
    STORE_OPEN_ERROR = 3001
    SCHEMA_MIGRATION_ERROR = 3002
    UNSUPPORTED_SCHEMA_VERSION = 3003
    STORE_IO_ERROR = 3004

    # Ritual spec (4xxx)
    SPEC_IO_ERROR = 4001
    SPEC_PARSE_ERROR = 4002
    SPEC_VALIDATION_ERROR = 4003

    # Entities and runs (5xxx)
    NOT_FOUND = 5001
    MISSING_BINARY = 5002
    RUN_ALREADY_EXISTS = 5003
    INVALID_STATUS = 5004
    FILE_OPEN_ERROR = 5005
    FILE_READ_ERROR = 5006

    # Backends (6xxx)
    BACKEND_UNKNOWN = 6001
    BACKEND_ERROR = 6002
    BACKEND_MISSING = 6003

    # Arguments (7xxx)
    ARGUMENT_CONSTRAINT = 7001

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class BinSlicerError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'CONFIG_PARSE_ERROR')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(BinSlicerError):
    """Project config missing, unreadable or malformed."""

    @classmethod
    def read_failed(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_READ_ERROR,
            message=f"Failed to read project config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def parse_failed(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse project config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def write_failed(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_WRITE_ERROR,
            message=f"Failed to write project config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )


class StoreError(BinSlicerError):
    """Relational store lifecycle and I/O errors."""

    @classmethod
    def open_failed(cls, path: str, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_OPEN_ERROR,
            message=f"Failed to open project database at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def migration_failed(cls, version: int, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.SCHEMA_MIGRATION_ERROR,
            message=f"Schema migration to v{version} failed: {reason}",
            details={"version": version, "reason": reason},
        )

    @classmethod
    def unsupported_schema_version(
        cls, found: int, min_supported: int, max_supported: int
    ) -> "StoreError":
        return cls(
            code=ErrorCode.UNSUPPORTED_SCHEMA_VERSION,
            message=(
                f"Unsupported schema version {found}; "
                f"supported range is {min_supported}..={max_supported}"
            ),
            details={"found": found, "min": min_supported, "max": max_supported},
        )

    @classmethod
    def io(cls, operation: str, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_IO_ERROR,
            message=f"Database error during {operation}: {reason}",
            details={"operation": operation, "reason": reason},
        )


class NotFoundError(BinSlicerError):
    """A binary, slice or run could not be resolved."""

    @classmethod
    def entity(cls, entity: str, key: str) -> "NotFoundError":
        return cls(
            code=ErrorCode.NOT_FOUND,
            message=f"{entity.capitalize()} '{key}' not found",
            details={"entity": entity, "key": key},
        )


class SpecError(BinSlicerError):
    """Ritual spec read, parse and validation errors."""

    @classmethod
    def io(cls, path: str, reason: str) -> "SpecError":
        return cls(
            code=ErrorCode.SPEC_IO_ERROR,
            message=f"Failed to read ritual spec at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def parse(cls, path: str, reason: str) -> "SpecError":
        return cls(
            code=ErrorCode.SPEC_PARSE_ERROR,
            message=f"Failed to parse ritual spec at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def validation(cls, reason: str) -> "SpecError":
        return cls(
            code=ErrorCode.SPEC_VALIDATION_ERROR,
            message=f"Invalid ritual spec: {reason}",
            details={"reason": reason},
        )

    @property
    def reason(self) -> str | None:
        return self.details.get("reason")


class RunError(BinSlicerError):
    """Ritual run lifecycle errors."""

    @classmethod
    def missing_binary(cls, path: str) -> "RunError":
        return cls(
            code=ErrorCode.MISSING_BINARY,
            message=f"Binary not found at {path}",
            details={"path": path},
        )

    @classmethod
    def already_exists(cls, path: str) -> "RunError":
        return cls(
            code=ErrorCode.RUN_ALREADY_EXISTS,
            message=f"Ritual output already exists at {path} (rerun with --force to overwrite)",
            details={"path": path},
        )

    @classmethod
    def invalid_status(cls, value: str) -> "RunError":
        return cls(
            code=ErrorCode.INVALID_STATUS,
            message=(
                f"Invalid status '{value}'. "
                "Allowed: pending, running, succeeded, failed, canceled, stubbed"
            ),
            details={"value": value},
        )


class HashingError(BinSlicerError):
    """File hashing errors."""

    @classmethod
    def file_open(cls, path: str, reason: str) -> "HashingError":
        return cls(
            code=ErrorCode.FILE_OPEN_ERROR,
            message=f"Failed to open file for hashing: {path} ({reason})",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def file_read(cls, path: str, reason: str) -> "HashingError":
        return cls(
            code=ErrorCode.FILE_READ_ERROR,
            message=f"Failed to read file for hashing: {path} ({reason})",
            details={"path": path, "reason": reason},
        )


class BackendError(BinSlicerError):
    """Backend lookup and dispatch errors."""

    @classmethod
    def unknown(cls, name: str, available: list[str]) -> "BackendError":
        return cls(
            code=ErrorCode.BACKEND_UNKNOWN,
            message=f"Backend '{name}' not found (available: {', '.join(available) or 'none'})",
            details={"name": name, "available": available},
        )

    @classmethod
    def failure(cls, message: str) -> "BackendError":
        return cls(
            code=ErrorCode.BACKEND_ERROR,
            message=f"Analysis backend error: {message}",
            details={"reason": message},
        )


class AnalysisError(BinSlicerError):
    """Errors raised by analysis backends through the backend contract."""

    @classmethod
    def missing_binary(cls, path: str) -> "AnalysisError":
        return cls(
            code=ErrorCode.MISSING_BINARY,
            message=f"Binary not found at {path}",
            details={"path": path},
        )

    @classmethod
    def missing_backend(cls, name: str) -> "AnalysisError":
        return cls(
            code=ErrorCode.BACKEND_MISSING,
            message=f"Backend not found: {name}",
            details={"name": name},
        )

    @classmethod
    def backend(cls, message: str) -> "AnalysisError":
        return cls(
            code=ErrorCode.BACKEND_ERROR,
            message=f"Analysis backend error: {message}",
            details={"reason": message},
        )


class ArgumentError(BinSlicerError):
    """Command argument combinations that are not allowed."""

    @classmethod
    def constraint(cls, reason: str) -> "ArgumentError":
        return cls(
            code=ErrorCode.ARGUMENT_CONSTRAINT,
            message=reason,
            details={"reason": reason},
        )


class InternalError(BinSlicerError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )

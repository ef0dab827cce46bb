"""Content hashing and path helpers.

SHA-256 digests are rendered as lowercase hex. Files are hashed with
8 KiB streaming reads so large binaries never load into memory at once.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

from binslicer.core.errors import HashingError

CHUNK_SIZE = 8 * 1024

DEFAULT_PROJECT_NAME = "unnamed-project"


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path | str) -> str:
    """Stream a file through SHA-256.

    Raises:
        HashingError: FILE_OPEN_ERROR when the file cannot be opened,
            FILE_READ_ERROR when a read fails midway.
    """
    path = Path(path)
    try:
        fh = path.open("rb")
    except OSError as e:
        raise HashingError.file_open(str(path), str(e)) from e

    digest = hashlib.sha256()
    with fh:
        try:
            while chunk := fh.read(CHUNK_SIZE):
                digest.update(chunk)
        except OSError as e:
            raise HashingError.file_read(str(path), str(e)) from e
    return digest.hexdigest()


def canonicalize_path(path: Path | str) -> Path:
    """Resolve symlinks and ``..`` when the path exists.

    Paths that do not exist yet are joined against the current directory
    instead, without touching the filesystem.
    """
    path = Path(path)
    if path.exists():
        return path.resolve()
    if path.is_absolute():
        return path
    return Path(os.getcwd()) / path


def infer_project_name(root: Path) -> str:
    """Project name defaults to the root directory's name."""
    name = canonicalize_path(root).name
    return name or DEFAULT_PROJECT_NAME

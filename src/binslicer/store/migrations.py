"""Forward-only schema migrations for the project store.

The schema version lives in ``PRAGMA user_version``. Each step runs in its
own transaction that applies the step's DDL and then bumps the pragma, so a
failed step leaves the store at its predecessor version.

Column additions are guarded: the step checks ``PRAGMA table_info`` and
skips the ALTER when the column is already present, which keeps every step
idempotent against a store that already carries the column.

New versions must only be appended to ``MIGRATIONS``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import SQLAlchemyError

from binslicer.core.errors import StoreError

if TYPE_CHECKING:
    from sqlalchemy import Connection

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AddColumn:
    """Guarded ``ALTER TABLE ... ADD COLUMN``."""

    table: str
    column: str
    definition: str


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    description: str
    statements: tuple[str, ...] = ()
    add_columns: tuple[AddColumn, ...] = ()


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="base tables (binaries, slices)",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS binaries (
                id   INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                path TEXT NOT NULL,
                arch TEXT,
                hash TEXT
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS slices (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                name        TEXT NOT NULL UNIQUE,
                description TEXT,
                status      INTEGER NOT NULL
            )
            """,
        ),
    ),
    Migration(
        version=2,
        description="ritual runs",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS ritual_runs (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                binary       TEXT NOT NULL,
                ritual       TEXT NOT NULL,
                spec_hash    TEXT NOT NULL,
                binary_hash  TEXT,
                status       TEXT NOT NULL,
                started_at   TEXT NOT NULL,
                finished_at  TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS ix_ritual_runs_binary ON ritual_runs (binary)",
        ),
    ),
    Migration(
        version=3,
        description="ritual run backend name",
        add_columns=(
            AddColumn("ritual_runs", "backend", "TEXT NOT NULL DEFAULT 'validate-only'"),
        ),
    ),
    Migration(
        version=4,
        description="ritual run backend version and path",
        add_columns=(
            AddColumn("ritual_runs", "backend_version", "TEXT"),
            AddColumn("ritual_runs", "backend_path", "TEXT"),
        ),
    ),
    Migration(
        version=5,
        description="analysis tables",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS analysis_functions (
                run_id      INTEGER NOT NULL REFERENCES ritual_runs(id) ON DELETE CASCADE,
                address     INTEGER NOT NULL,
                name        TEXT,
                size        INTEGER,
                in_slice    INTEGER NOT NULL DEFAULT 0,
                is_boundary INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (run_id, address)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS analysis_call_edges (
                run_id         INTEGER NOT NULL REFERENCES ritual_runs(id) ON DELETE CASCADE,
                from_addr      INTEGER NOT NULL,
                to_addr        INTEGER NOT NULL,
                is_cross_slice INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (run_id, from_addr, to_addr)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS analysis_basic_blocks (
                run_id INTEGER NOT NULL REFERENCES ritual_runs(id) ON DELETE CASCADE,
                start  INTEGER NOT NULL,
                length INTEGER NOT NULL,
                PRIMARY KEY (run_id, start)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS analysis_block_edges (
                run_id      INTEGER NOT NULL REFERENCES ritual_runs(id) ON DELETE CASCADE,
                block_start INTEGER NOT NULL,
                target      INTEGER NOT NULL,
                kind        TEXT NOT NULL,
                PRIMARY KEY (run_id, block_start, target, kind)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS analysis_evidence (
                run_id      INTEGER NOT NULL REFERENCES ritual_runs(id) ON DELETE CASCADE,
                address     INTEGER NOT NULL,
                description TEXT NOT NULL,
                PRIMARY KEY (run_id, address, description)
            )
            """,
        ),
    ),
    Migration(
        version=6,
        description="slice default binary",
        add_columns=(AddColumn("slices", "default_binary", "TEXT"),),
    ),
    Migration(
        version=7,
        description="evidence kind",
        add_columns=(AddColumn("analysis_evidence", "kind", "TEXT"),),
    ),
    Migration(
        version=8,
        description="analysis roots",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS analysis_roots (
                run_id   INTEGER NOT NULL REFERENCES ritual_runs(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                root     TEXT NOT NULL,
                PRIMARY KEY (run_id, position)
            )
            """,
        ),
    ),
)

CURRENT_SCHEMA_VERSION = MIGRATIONS[-1].version
MIN_SCHEMA_VERSION = 0


def read_schema_version(conn: Connection) -> int:
    """Current ``user_version``. Must be called inside a transaction."""
    return int(conn.exec_driver_sql("PRAGMA user_version").scalar_one())


def column_exists(conn: Connection, table: str, column: str) -> bool:
    rows = conn.exec_driver_sql(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


def _apply_step(conn: Connection, migration: Migration) -> None:
    for statement in migration.statements:
        conn.exec_driver_sql(statement)
    for add in migration.add_columns:
        if column_exists(conn, add.table, add.column):
            log.debug(
                "migration_column_present",
                version=migration.version,
                table=add.table,
                column=add.column,
            )
            continue
        conn.exec_driver_sql(f"ALTER TABLE {add.table} ADD COLUMN {add.column} {add.definition}")
    # PRAGMA does not accept bound parameters; version is a trusted int.
    conn.exec_driver_sql(f"PRAGMA user_version = {int(migration.version)}")


def apply_migrations(conn: Connection) -> int:
    """Bring the store up to ``CURRENT_SCHEMA_VERSION``.

    Returns:
        The schema version after migrating.

    Raises:
        StoreError: UNSUPPORTED_SCHEMA_VERSION when the store is newer than
            this code, SCHEMA_MIGRATION_ERROR when a step fails.
    """
    with conn.begin():
        current = read_schema_version(conn)

    if current > CURRENT_SCHEMA_VERSION:
        raise StoreError.unsupported_schema_version(
            current, MIN_SCHEMA_VERSION, CURRENT_SCHEMA_VERSION
        )

    for migration in MIGRATIONS:
        if migration.version <= current:
            continue
        try:
            with conn.begin():
                _apply_step(conn, migration)
        except SQLAlchemyError as e:
            raise StoreError.migration_failed(migration.version, str(e)) from e
        log.info(
            "schema_migrated",
            version=migration.version,
            description=migration.description,
        )
        current = migration.version

    return current

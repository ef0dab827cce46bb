"""Project store: a single-writer SQLite database behind one connection.

This module provides:
- ProjectStore: open/migrate, entity CRUD, analysis persistence, lookups
- Transactional DDL: pysqlite's implicit transaction handling is disabled
  and every transaction is opened with an explicit BEGIN, so schema steps
  and ``PRAGMA user_version`` commit or roll back together

The store holds exactly one connection for its lifetime. Callers must not
share a project between processes; no locking is attempted.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import create_engine

from binslicer.analysis.models import (
    AnalysisResult,
    BasicBlock,
    BlockEdge,
    BlockEdgeKind,
    CallEdge,
    EvidenceKind,
    EvidenceRecord,
    FunctionRecord,
)
from binslicer.core.errors import StoreError
from binslicer.store.migrations import apply_migrations, read_schema_version
from binslicer.store.models import (
    BinaryRecord,
    ProjectSnapshot,
    RitualRunRecord,
    RitualRunStatus,
    SliceRecord,
    SliceStatus,
)
from binslicer.store.tables import (
    ANALYSIS_TABLES,
    AnalysisBasicBlockRow,
    AnalysisBlockEdgeRow,
    AnalysisCallEdgeRow,
    AnalysisEvidenceRow,
    AnalysisFunctionRow,
    AnalysisRootRow,
    BinaryRow,
    RitualRunRow,
    SliceRow,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine, Table

logger = structlog.get_logger()

BUSY_TIMEOUT_MS = 5000

# SQLite integers are signed 64-bit; addresses are unsigned 64-bit.
_U64 = 1 << 64
_I64_MAX = (1 << 63) - 1


def _to_db_addr(value: int) -> int:
    return value - _U64 if value > _I64_MAX else value


def _from_db_addr(value: int) -> int:
    return value + _U64 if value < 0 else value


def _table(model: Any) -> Table:
    return model.__table__  # type: ignore[no-any-return]


def _configure_connection(dbapi_conn: Any, _connection_record: Any) -> None:
    """Hand transaction control to SQLAlchemy and set pragmas."""
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin(conn: Connection) -> None:
    conn.exec_driver_sql("BEGIN")


def _create_engine(db_path: Path) -> Engine:
    engine = create_engine(f"sqlite:///{db_path}")
    event.listen(engine, "connect", _configure_connection)
    event.listen(engine, "begin", _begin)
    return engine


class ProjectStore:
    """Handle on an open, migrated project database."""

    def __init__(self, db_path: Path, engine: Engine, conn: Connection) -> None:
        self.db_path = db_path
        self._engine = engine
        self._conn = conn

    @classmethod
    def open(cls, db_path: Path) -> ProjectStore:
        """Open (creating if needed) and migrate the store at ``db_path``.

        Raises:
            StoreError: STORE_OPEN_ERROR if the file cannot be opened as a
                database, UNSUPPORTED_SCHEMA_VERSION if it is newer than this
                code, SCHEMA_MIGRATION_ERROR if a migration step fails.
        """
        engine = _create_engine(db_path)
        try:
            conn = engine.connect()
        except SQLAlchemyError as e:
            engine.dispose()
            raise StoreError.open_failed(str(db_path), str(e)) from e

        try:
            version = apply_migrations(conn)
        except StoreError:
            conn.close()
            engine.dispose()
            raise
        except SQLAlchemyError as e:
            conn.close()
            engine.dispose()
            raise StoreError.open_failed(str(db_path), str(e)) from e

        logger.debug("store_opened", path=str(db_path), schema_version=version)
        return cls(db_path, engine, conn)

    def close(self) -> None:
        self._conn.close()
        self._engine.dispose()

    def __enter__(self) -> ProjectStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Connection, None, None]:
        """Run a block in one transaction; wrap driver errors once."""
        try:
            with self._conn.begin():
                yield self._conn
        except SQLAlchemyError as e:
            raise StoreError.io(operation, str(e)) from e

    # =========================================================================
    # Schema
    # =========================================================================

    def schema_version(self) -> int:
        with self._transaction("read schema version") as conn:
            return read_schema_version(conn)

    # =========================================================================
    # Binaries
    # =========================================================================

    def insert_binary(self, record: BinaryRecord) -> int:
        values = record.model_dump(exclude={"id"})
        with self._transaction("insert binary") as conn:
            result = conn.execute(_table(BinaryRow).insert().values(**values))
            return int(result.inserted_primary_key[0])

    def list_binaries(self) -> list[BinaryRecord]:
        table = _table(BinaryRow)
        with self._transaction("list binaries") as conn:
            rows = conn.execute(select(table).order_by(table.c.id)).mappings().all()
        return [BinaryRecord(**row) for row in rows]

    def find_binary(self, selector: str) -> BinaryRecord | None:
        """First binary, in id order, whose name equals or path ends with ``selector``."""
        for binary in self.list_binaries():
            if binary.name == selector or binary.path.endswith(selector):
                return binary
        return None

    # =========================================================================
    # Slices
    # =========================================================================

    def insert_slice(self, record: SliceRecord) -> int:
        values = record.model_dump(exclude={"id"})
        values["status"] = int(record.status)
        with self._transaction("insert slice") as conn:
            result = conn.execute(_table(SliceRow).insert().values(**values))
            return int(result.inserted_primary_key[0])

    def list_slices(self) -> list[SliceRecord]:
        table = _table(SliceRow)
        with self._transaction("list slices") as conn:
            rows = conn.execute(select(table).order_by(table.c.id)).mappings().all()
        return [_slice_from_row(row) for row in rows]

    def get_slice(self, name: str) -> SliceRecord | None:
        table = _table(SliceRow)
        with self._transaction("get slice") as conn:
            row = conn.execute(select(table).where(table.c.name == name)).mappings().first()
        return _slice_from_row(row) if row is not None else None

    def update_slice(
        self,
        name: str,
        *,
        status: SliceStatus | None = None,
        description: str | None = None,
        default_binary: str | None = None,
    ) -> int:
        """Update the given fields of a slice. Returns affected row count."""
        updates: dict[str, Any] = {}
        if status is not None:
            updates["status"] = int(status)
        if description is not None:
            updates["description"] = description
        if default_binary is not None:
            updates["default_binary"] = default_binary
        table = _table(SliceRow)
        with self._transaction("update slice") as conn:
            if not updates:
                row = conn.execute(select(table.c.id).where(table.c.name == name)).first()
                return 0 if row is None else 1
            result = conn.execute(table.update().where(table.c.name == name).values(**updates))
            return int(result.rowcount)

    # =========================================================================
    # Ritual runs
    # =========================================================================

    def insert_ritual_run(self, record: RitualRunRecord) -> int:
        values = record.model_dump(exclude={"id"})
        values["status"] = record.status.value
        with self._transaction("insert ritual run") as conn:
            result = conn.execute(_table(RitualRunRow).insert().values(**values))
            return int(result.inserted_primary_key[0])

    def list_ritual_runs(self, binary: str | None = None) -> list[RitualRunRecord]:
        table = _table(RitualRunRow)
        query = select(table).order_by(table.c.id)
        if binary is not None:
            query = query.where(table.c.binary == binary)
        with self._transaction("list ritual runs") as conn:
            rows = conn.execute(query).mappings().all()
        return [_run_from_row(row) for row in rows]

    def latest_run_id(self, binary: str, ritual: str) -> int | None:
        """Id of the most recently inserted run for ``(binary, ritual)``."""
        table = _table(RitualRunRow)
        query = (
            select(table.c.id)
            .where(table.c.binary == binary, table.c.ritual == ritual)
            .order_by(table.c.id.desc())
            .limit(1)
        )
        with self._transaction("latest run id") as conn:
            return conn.execute(query).scalar_one_or_none()

    def get_ritual_run(self, binary: str, ritual: str) -> RitualRunRecord | None:
        """Latest run row for ``(binary, ritual)``."""
        table = _table(RitualRunRow)
        query = (
            select(table)
            .where(table.c.binary == binary, table.c.ritual == ritual)
            .order_by(table.c.id.desc())
            .limit(1)
        )
        with self._transaction("get ritual run") as conn:
            row = conn.execute(query).mappings().first()
        return _run_from_row(row) if row is not None else None

    def update_ritual_run_status(
        self,
        binary: str,
        ritual: str,
        status: RitualRunStatus | str,
        finished_at: str | None = None,
    ) -> int:
        """Set status (and optionally finished_at) on matching runs.

        Returns:
            Number of rows updated; 0 means there is no such run.

        Raises:
            RunError: INVALID_STATUS if ``status`` is an unknown string.
        """
        if not isinstance(status, RitualRunStatus):
            status = RitualRunStatus.parse(status)
        updates: dict[str, Any] = {"status": status.value}
        if finished_at is not None:
            updates["finished_at"] = finished_at
        table = _table(RitualRunRow)
        with self._transaction("update ritual run status") as conn:
            result = conn.execute(
                table.update()
                .where(table.c.binary == binary, table.c.ritual == ritual)
                .values(**updates)
            )
            return int(result.rowcount)

    # =========================================================================
    # Analysis results
    # =========================================================================

    def insert_analysis_result(self, run_id: int, result: AnalysisResult) -> None:
        """Replace the analysis tuples of a run, all in one transaction."""
        functions = [
            {
                "run_id": run_id,
                "address": _to_db_addr(f.address),
                "name": f.name,
                "size": f.size,
                "in_slice": f.in_slice,
                "is_boundary": f.is_boundary,
            }
            for f in result.functions
        ]
        call_edges = [
            {
                "run_id": run_id,
                "from_addr": _to_db_addr(e.from_addr),
                "to_addr": _to_db_addr(e.to_addr),
                "is_cross_slice": e.is_cross_slice,
            }
            for e in result.call_edges
        ]
        blocks = [
            {"run_id": run_id, "start": _to_db_addr(b.start), "length": b.length}
            for b in result.basic_blocks
        ]
        block_edges = [
            {
                "run_id": run_id,
                "block_start": _to_db_addr(b.start),
                "target": _to_db_addr(s.target),
                "kind": s.kind.value,
            }
            for b in result.basic_blocks
            for s in b.successors
        ]
        evidence = [
            {
                "run_id": run_id,
                "address": _to_db_addr(e.address),
                "description": e.description,
                "kind": e.kind.value if e.kind is not None else None,
            }
            for e in result.evidence
        ]
        roots = [
            {"run_id": run_id, "position": i, "root": root} for i, root in enumerate(result.roots)
        ]

        with self._transaction("insert analysis result") as conn:
            for model in ANALYSIS_TABLES:
                table = _table(model)
                conn.execute(table.delete().where(table.c.run_id == run_id))
            for model, rows in (
                (AnalysisFunctionRow, functions),
                (AnalysisCallEdgeRow, call_edges),
                (AnalysisBasicBlockRow, blocks),
                (AnalysisBlockEdgeRow, block_edges),
                (AnalysisEvidenceRow, evidence),
                (AnalysisRootRow, roots),
            ):
                if rows:
                    conn.execute(_table(model).insert().prefix_with("OR REPLACE"), rows)

        logger.debug(
            "analysis_result_persisted",
            run_id=run_id,
            functions=len(functions),
            call_edges=len(call_edges),
            basic_blocks=len(blocks),
            evidence=len(evidence),
            roots=len(roots),
        )

    def load_analysis_for_run(self, run_id: int) -> AnalysisResult:
        """Analysis tuples of one run, in insertion order."""
        rowid = literal_column("rowid")
        with self._transaction("load analysis result") as conn:
            fn_t = _table(AnalysisFunctionRow)
            functions = [
                FunctionRecord(
                    address=_from_db_addr(row.address),
                    name=row.name,
                    size=row.size,
                    in_slice=bool(row.in_slice),
                    is_boundary=bool(row.is_boundary),
                )
                for row in conn.execute(
                    select(fn_t).where(fn_t.c.run_id == run_id).order_by(rowid)
                )
            ]

            ce_t = _table(AnalysisCallEdgeRow)
            call_edges = [
                CallEdge(
                    from_addr=_from_db_addr(row.from_addr),
                    to_addr=_from_db_addr(row.to_addr),
                    is_cross_slice=bool(row.is_cross_slice),
                )
                for row in conn.execute(
                    select(ce_t).where(ce_t.c.run_id == run_id).order_by(rowid)
                )
            ]

            be_t = _table(AnalysisBlockEdgeRow)
            successors: dict[int, list[BlockEdge]] = {}
            for row in conn.execute(select(be_t).where(be_t.c.run_id == run_id).order_by(rowid)):
                successors.setdefault(row.block_start, []).append(
                    BlockEdge(target=_from_db_addr(row.target), kind=BlockEdgeKind(row.kind))
                )

            bb_t = _table(AnalysisBasicBlockRow)
            blocks = [
                BasicBlock(
                    start=_from_db_addr(row.start),
                    length=row.length,
                    successors=successors.get(row.start, []),
                )
                for row in conn.execute(
                    select(bb_t).where(bb_t.c.run_id == run_id).order_by(rowid)
                )
            ]

            ev_t = _table(AnalysisEvidenceRow)
            evidence = [
                EvidenceRecord(
                    address=_from_db_addr(row.address),
                    description=row.description,
                    kind=_decode_evidence_kind(row.kind),
                )
                for row in conn.execute(
                    select(ev_t).where(ev_t.c.run_id == run_id).order_by(rowid)
                )
            ]

            rt_t = _table(AnalysisRootRow)
            roots = list(
                conn.execute(
                    select(rt_t.c.root).where(rt_t.c.run_id == run_id).order_by(rt_t.c.position)
                ).scalars()
            )

        return AnalysisResult(
            functions=functions,
            call_edges=call_edges,
            basic_blocks=blocks,
            evidence=evidence,
            roots=roots,
        )

    def load_analysis_result(self, binary: str, ritual: str) -> AnalysisResult | None:
        """Analysis of the latest run for ``(binary, ritual)``; None if no run exists."""
        run = self.get_ritual_run(binary, ritual)
        if run is None or run.id is None:
            return None
        result = self.load_analysis_for_run(run.id)
        result.backend_version = run.backend_version
        result.backend_path = run.backend_path
        return result

    # =========================================================================
    # Snapshots
    # =========================================================================

    def snapshot(self) -> ProjectSnapshot:
        return ProjectSnapshot(
            binaries=self.list_binaries(),
            slices=self.list_slices(),
            ritual_runs=self.list_ritual_runs(),
        )


def _slice_from_row(row: Any) -> SliceRecord:
    return SliceRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        status=SliceStatus.from_int(row["status"]),
        default_binary=row["default_binary"],
    )


def _run_from_row(row: Any) -> RitualRunRecord:
    values = dict(row)
    values["status"] = RitualRunStatus.parse(values["status"])
    return RitualRunRecord(**values)


def _decode_evidence_kind(value: str | None) -> EvidenceKind | None:
    if value is None:
        return None
    try:
        return EvidenceKind(value)
    except ValueError:
        return EvidenceKind.OTHER

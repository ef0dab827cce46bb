"""SQLModel definitions of the current (v8) project schema.

These classes describe the tables for Core inserts and selects. They are
never used to create tables: the schema is built and evolved only by the
ordered steps in ``binslicer.store.migrations``.
"""

from sqlmodel import Field, SQLModel

# ============================================================================
# ENTITIES
# ============================================================================


class BinaryRow(SQLModel, table=True):
    """Registered binary."""

    __tablename__ = "binaries"

    id: int | None = Field(default=None, primary_key=True)
    name: str
    path: str
    arch: str | None = None
    hash: str | None = None


class SliceRow(SQLModel, table=True):
    """Named slice. ``status`` is the SliceStatus integer encoding."""

    __tablename__ = "slices"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    description: str | None = None
    status: int = 0
    default_binary: str | None = None  # v6


class RitualRunRow(SQLModel, table=True):
    """One execution of a ritual against a binary."""

    __tablename__ = "ritual_runs"

    id: int | None = Field(default=None, primary_key=True)
    binary: str = Field(index=True)
    ritual: str
    spec_hash: str
    binary_hash: str | None = None
    backend: str = "validate-only"  # v3
    backend_version: str | None = None  # v4
    backend_path: str | None = None  # v4
    status: str
    started_at: str
    finished_at: str


# ============================================================================
# ANALYSIS (keyed by run id)
# ============================================================================


class AnalysisFunctionRow(SQLModel, table=True):
    __tablename__ = "analysis_functions"

    run_id: int = Field(foreign_key="ritual_runs.id", primary_key=True)
    address: int = Field(primary_key=True)
    name: str | None = None
    size: int | None = None
    in_slice: bool = False
    is_boundary: bool = False


class AnalysisCallEdgeRow(SQLModel, table=True):
    __tablename__ = "analysis_call_edges"

    run_id: int = Field(foreign_key="ritual_runs.id", primary_key=True)
    from_addr: int = Field(primary_key=True)
    to_addr: int = Field(primary_key=True)
    is_cross_slice: bool = False


class AnalysisBasicBlockRow(SQLModel, table=True):
    __tablename__ = "analysis_basic_blocks"

    run_id: int = Field(foreign_key="ritual_runs.id", primary_key=True)
    start: int = Field(primary_key=True)
    length: int


class AnalysisBlockEdgeRow(SQLModel, table=True):
    """Successor of a basic block; ``kind`` is the BlockEdgeKind value."""

    __tablename__ = "analysis_block_edges"

    run_id: int = Field(foreign_key="ritual_runs.id", primary_key=True)
    block_start: int = Field(primary_key=True)
    target: int = Field(primary_key=True)
    kind: str = Field(primary_key=True)


class AnalysisEvidenceRow(SQLModel, table=True):
    __tablename__ = "analysis_evidence"

    run_id: int = Field(foreign_key="ritual_runs.id", primary_key=True)
    address: int = Field(primary_key=True)
    description: str = Field(primary_key=True)
    kind: str | None = None  # v7


class AnalysisRootRow(SQLModel, table=True):
    """Literal root token, in spec order."""

    __tablename__ = "analysis_roots"

    run_id: int = Field(foreign_key="ritual_runs.id", primary_key=True)
    position: int = Field(primary_key=True)
    root: str


ANALYSIS_TABLES: tuple[type[SQLModel], ...] = (
    AnalysisFunctionRow,
    AnalysisCallEdgeRow,
    AnalysisBasicBlockRow,
    AnalysisBlockEdgeRow,
    AnalysisEvidenceRow,
    AnalysisRootRow,
)

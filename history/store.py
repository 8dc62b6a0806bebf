"""
history/store.py -- SQLAlchemy-backed snapshot history for PolicyPulse.

Uses SQLAlchemy Core (not ORM) so the frozen dataclasses in core/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. SnapshotStore is the repository. Records
are stored as JSON payloads produced by core.snapshot, one row per
assignment/exemption, and go back through the same pydantic validation on
load. A row that no longer validates raises SnapshotLoadError rather than
being skipped: a partially loaded snapshot would make every delta against it
wrong.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = SnapshotStore()                               # SQLite default
    store = SnapshotStore("postgresql://user:pw@host/db") # PostgreSQL
    snapshot_id = store.save_snapshot(snapshot)
    previous = store.latest_snapshot(tenant="contoso", before_id=snapshot_id)
    store.prune(keep=30)
    store.close()
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine, make_url

from core.config import now_iso
from core.errors import SnapshotLoadError
from core.models import Snapshot
from core.snapshot import exemption_to_dict, record_to_dict, snapshot_from_dict, snapshot_to_dict
from history.models import SnapshotInfo

logger = logging.getLogger("policypulse.history")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'policypulse_history.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_snapshots = Table(
    "snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant", String(255), nullable=False, server_default=""),
    Column("timestamp", String(40), nullable=False),
    Column("version_tag", String(50), nullable=False),
    Column("scope_filter", Text, nullable=False, server_default=""),
    Column("summary", Text, nullable=False),  # JSON object
    Column("assignment_count", Integer, nullable=False, server_default="0"),
    Column("non_compliant_total", Integer, nullable=False, server_default="0"),
    Column("high_risk_count", Integer, nullable=False, server_default="0"),
    Column("coverage_percent", Integer, nullable=False, server_default="0"),
    Column("created_at", String(40), nullable=False),
)

_snapshot_assignments = Table(
    "snapshot_assignments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("snapshot_id", Integer, ForeignKey("snapshots.id"), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("assignment_name", String(255), nullable=False),
    Column("scope_path", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON object
)

_snapshot_exemptions = Table(
    "snapshot_exemptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("snapshot_id", Integer, ForeignKey("snapshots.id"), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("exemption_name", String(255), nullable=False),
    Column("scope_path", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON object
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _loads(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise SnapshotLoadError(f"stored {what} is not valid JSON: {e}") from e


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SnapshotStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # SQLite requires check_same_thread=False when used from FastAPI's
            # threadpool, where one connection may be touched by several threads.
            connect_args["check_same_thread"] = False
            database = make_url(db_url).database
            if database and database != ":memory:" and not database.startswith("file:"):
                Path(database).parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_snapshot(self, snapshot: Snapshot) -> int:
        """Persist a snapshot with all of its records and return its ID."""
        data = snapshot_to_dict(snapshot)
        summary = snapshot.summary
        with self.engine.connect() as conn:
            result = conn.execute(
                _snapshots.insert().values(
                    tenant=snapshot.metadata.tenant_identity,
                    timestamp=snapshot.metadata.timestamp,
                    version_tag=snapshot.metadata.script_version_tag,
                    scope_filter=snapshot.metadata.scope_filter_label,
                    summary=json.dumps(data["summary"]),
                    assignment_count=summary.total_assignments,
                    non_compliant_total=summary.total_non_compliant_resources,
                    high_risk_count=summary.high_risk_count,
                    coverage_percent=summary.coverage_percent,
                    created_at=now_iso(),
                )
            )
            snapshot_id = result.inserted_primary_key[0]
            if snapshot.assignments:
                conn.execute(
                    _snapshot_assignments.insert(),
                    [
                        {
                            "snapshot_id": snapshot_id,
                            "position": i,
                            "assignment_name": r.assignment_name,
                            "scope_path": r.scope_path,
                            "payload": json.dumps(record_to_dict(r)),
                        }
                        for i, r in enumerate(snapshot.assignments)
                    ],
                )
            if snapshot.exemptions:
                conn.execute(
                    _snapshot_exemptions.insert(),
                    [
                        {
                            "snapshot_id": snapshot_id,
                            "position": i,
                            "exemption_name": e.exemption_name,
                            "scope_path": e.scope_path,
                            "payload": json.dumps(exemption_to_dict(e)),
                        }
                        for i, e in enumerate(snapshot.exemptions)
                    ],
                )
            conn.commit()
        logger.info("Saved snapshot %d (%d assignments)", snapshot_id, len(snapshot.assignments))
        return snapshot_id

    def prune(self, keep: int, tenant: Optional[str] = None) -> int:
        """Delete all but the newest `keep` snapshots (per tenant if given). Returns the number deleted."""
        if keep < 0:
            raise ValueError("keep must not be negative")
        query = select(_snapshots.c.id).order_by(_snapshots.c.id.desc()).offset(keep)
        if tenant is not None:
            query = query.where(_snapshots.c.tenant == tenant)
        with self.engine.connect() as conn:
            stale = [row.id for row in conn.execute(query)]
            if stale:
                conn.execute(delete(_snapshot_assignments).where(_snapshot_assignments.c.snapshot_id.in_(stale)))
                conn.execute(delete(_snapshot_exemptions).where(_snapshot_exemptions.c.snapshot_id.in_(stale)))
                conn.execute(delete(_snapshots).where(_snapshots.c.id.in_(stale)))
            conn.commit()
        if stale:
            logger.info("Pruned %d old snapshots", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self, snapshot_id: int) -> Optional[Snapshot]:
        """Load a full snapshot. Returns None if not found; raises SnapshotLoadError if corrupt."""
        with self.engine.connect() as conn:
            row = conn.execute(_snapshots.select().where(_snapshots.c.id == snapshot_id)).fetchone()
            if row is None:
                return None
            assignment_rows = conn.execute(
                select(_snapshot_assignments.c.payload)
                .where(_snapshot_assignments.c.snapshot_id == snapshot_id)
                .order_by(_snapshot_assignments.c.position)
            ).fetchall()
            exemption_rows = conn.execute(
                select(_snapshot_exemptions.c.payload)
                .where(_snapshot_exemptions.c.snapshot_id == snapshot_id)
                .order_by(_snapshot_exemptions.c.position)
            ).fetchall()
        return _row_to_snapshot(row, assignment_rows, exemption_rows)

    def latest_snapshot_id(self, tenant: Optional[str] = None, before_id: Optional[int] = None) -> Optional[int]:
        """ID of the newest snapshot, optionally for one tenant and older than before_id."""
        query = select(func.max(_snapshots.c.id))
        if tenant is not None:
            query = query.where(_snapshots.c.tenant == tenant)
        if before_id is not None:
            query = query.where(_snapshots.c.id < before_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar()

    def latest_snapshot(self, tenant: Optional[str] = None, before_id: Optional[int] = None) -> Optional[Snapshot]:
        """Newest stored snapshot matching the filters, or None when history is empty."""
        snapshot_id = self.latest_snapshot_id(tenant, before_id)
        return self.get_snapshot(snapshot_id) if snapshot_id is not None else None

    def get_info(self, snapshot_id: int) -> Optional[SnapshotInfo]:
        with self.engine.connect() as conn:
            row = conn.execute(_snapshots.select().where(_snapshots.c.id == snapshot_id)).fetchone()
        return _row_to_info(row) if row is not None else None

    def list_snapshots(self, tenant: Optional[str] = None, limit: int = 50) -> list[SnapshotInfo]:
        """Return snapshot summaries, newest first."""
        query = _snapshots.select().order_by(_snapshots.c.id.desc()).limit(limit)
        if tenant is not None:
            query = query.where(_snapshots.c.tenant == tenant)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_info(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_info(row) -> SnapshotInfo:
    return SnapshotInfo(
        id=row.id,
        tenant=row.tenant or "",
        timestamp=row.timestamp,
        version_tag=row.version_tag,
        scope_filter=row.scope_filter or "",
        assignment_count=row.assignment_count,
        non_compliant_total=row.non_compliant_total,
        high_risk_count=row.high_risk_count,
        coverage_percent=row.coverage_percent,
        created_at=row.created_at,
    )


def _row_to_snapshot(row, assignment_rows, exemption_rows) -> Snapshot:
    data = {
        "metadata": {
            "timestamp": row.timestamp,
            "script_version_tag": row.version_tag,
            "tenant_identity": row.tenant or "",
            "scope_filter_label": row.scope_filter or "",
        },
        "summary": _loads(row.summary, f"summary of snapshot {row.id}"),
        "assignments": [_loads(r.payload, f"assignment of snapshot {row.id}") for r in assignment_rows],
        "exemptions": [_loads(r.payload, f"exemption of snapshot {row.id}") for r in exemption_rows],
    }
    return snapshot_from_dict(data)

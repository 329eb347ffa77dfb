"""SQLite store: connections, schema init and report CRUD.

All database operations use parameterized queries. Connections are created
per-operation with check_same_thread=False so they can be used from worker
threads. The schema is auto-created on first access via CREATE TABLE IF NOT
EXISTS (idempotent). JSON-shaped columns are stored as serialized text.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from incident_insights.config import get_settings
from incident_insights.models import AggregatedMetrics, IncidentFilters, Report, ReportKind, ReportStatus

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS incidents (
    id           TEXT PRIMARY KEY,
    category     TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    area         TEXT NOT NULL,
    severity     INTEGER NOT NULL CHECK (severity BETWEEN 1 AND 10),
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_incidents_created ON incidents(created_at);

CREATE TABLE IF NOT EXISTS insight_cache (
    id            TEXT PRIMARY KEY,
    kind          TEXT NOT NULL,
    context       TEXT NOT NULL,
    insight       TEXT NOT NULL,
    support_data  TEXT,
    confidence    REAL,
    relevance     INTEGER,
    model         TEXT,
    generated_at  TEXT NOT NULL,
    expires_at    TEXT,
    context_hash  TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS idx_insights_kind ON insight_cache(kind);
CREATE INDEX IF NOT EXISTS idx_insights_expires ON insight_cache(expires_at);

CREATE TABLE IF NOT EXISTS reports (
    id                TEXT PRIMARY KEY,
    kind              TEXT NOT NULL,
    period_start      TEXT NOT NULL,
    period_end        TEXT NOT NULL,
    title             TEXT NOT NULL,
    executive_summary TEXT,
    content           TEXT NOT NULL DEFAULT '{}',
    metrics           TEXT,
    critical_areas    TEXT NOT NULL DEFAULT '[]',
    recommendations   TEXT NOT NULL DEFAULT '[]',
    filters           TEXT,
    model             TEXT,
    status            TEXT NOT NULL,
    generated_at      TEXT NOT NULL,
    completed_at      TEXT,
    processing_ms     INTEGER,
    requested_by      TEXT,
    error_message     TEXT
);
CREATE INDEX IF NOT EXISTS idx_reports_kind ON reports(kind);
CREATE INDEX IF NOT EXISTS idx_reports_status ON reports(status);
CREATE INDEX IF NOT EXISTS idx_reports_generated ON reports(generated_at);

CREATE TABLE IF NOT EXISTS audit_entries (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    kind              TEXT NOT NULL,
    input_data        TEXT NOT NULL DEFAULT '{}',
    output_data       TEXT NOT NULL DEFAULT '{}',
    prompt            TEXT,
    model             TEXT,
    latency_ms        INTEGER NOT NULL DEFAULT 0,
    prompt_tokens     INTEGER NOT NULL DEFAULT 0,
    completion_tokens INTEGER NOT NULL DEFAULT 0,
    estimated_cost    REAL NOT NULL DEFAULT 0.0,
    success           INTEGER NOT NULL DEFAULT 1,
    error_message     TEXT,
    executed_at       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_kind ON audit_entries(kind);
CREATE INDEX IF NOT EXISTS idx_audit_executed ON audit_entries(executed_at);
CREATE INDEX IF NOT EXISTS idx_audit_success ON audit_entries(success);
"""


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode for concurrent reads.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.

    Raises:
        ValueError: If the database path is empty.
    """
    if db_path is None:
        db_path = get_settings().database_path
    if not db_path:
        msg = "Store not configured (DATABASE_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Get a connection with schema already initialized. Convenience wrapper."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn


@contextmanager
def connect(db_path: str | None = None) -> Iterator[sqlite3.Connection]:
    """Per-operation connection that is always closed."""
    conn = get_initialized_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts


def to_iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return ensure_aware(ts).astimezone(UTC).isoformat()


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return ensure_aware(datetime.fromisoformat(value))


def dump_json(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


def load_json(value: str | None) -> Any:
    if value is None:
        return None
    return json.loads(value)


# ---------------------------------------------------------------------------
# Reports CRUD
# ---------------------------------------------------------------------------


def create_report(
    conn: sqlite3.Connection,
    *,
    kind: ReportKind,
    period_start: datetime,
    period_end: datetime,
    title: str,
    filters: IncidentFilters | None = None,
    requested_by: str | None = None,
    model: str | None = None,
) -> Report:
    """Insert a report in GENERATING state and commit it. Returns the stored record."""
    report = Report(
        id=str(uuid4()),
        kind=kind,
        period_start=ensure_aware(period_start),
        period_end=ensure_aware(period_end),
        title=title,
        executive_summary=None,
        content={},
        metrics=None,
        critical_areas=[],
        recommendations=[],
        filters=filters,
        model=model,
        status=ReportStatus.GENERATING,
        generated_at=utcnow(),
        completed_at=None,
        processing_ms=None,
        requested_by=requested_by,
        error_message=None,
    )
    conn.execute(
        """INSERT INTO reports
           (id, kind, period_start, period_end, title, filters, model,
            status, generated_at, requested_by)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            report["id"],
            report["kind"].value,
            to_iso(report["period_start"]),
            to_iso(report["period_end"]),
            report["title"],
            dump_json(filters) if filters is not None else None,
            model,
            report["status"].value,
            to_iso(report["generated_at"]),
            requested_by,
        ),
    )
    conn.commit()
    return report


def update_report(conn: sqlite3.Connection, report: Report) -> None:
    """Write every mutable field of a report back to the store."""
    conn.execute(
        """UPDATE reports SET
               executive_summary = ?, content = ?, metrics = ?, critical_areas = ?,
               recommendations = ?, model = ?, status = ?, completed_at = ?,
               processing_ms = ?, error_message = ?
           WHERE id = ?""",
        (
            report["executive_summary"],
            dump_json(report["content"]),
            dump_json(report["metrics"]) if report["metrics"] is not None else None,
            dump_json(report["critical_areas"]),
            dump_json(report["recommendations"]),
            report["model"],
            report["status"].value,
            to_iso(report["completed_at"]),
            report["processing_ms"],
            report["error_message"],
            report["id"],
        ),
    )
    conn.commit()


def get_report(conn: sqlite3.Connection, report_id: str) -> Report | None:
    row = conn.execute("SELECT * FROM reports WHERE id = ?", (report_id,)).fetchone()
    if row is None:
        return None
    return _row_to_report(row)


def find_reports(
    conn: sqlite3.Connection,
    *,
    kind: ReportKind | None = None,
    status: ReportStatus | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 20,
) -> list[Report]:
    """Search reports by kind, status and period bounds, most recent first."""
    conditions: list[str] = []
    params: list[object] = []
    if kind is not None:
        conditions.append("kind = ?")
        params.append(kind.value)
    if status is not None:
        conditions.append("status = ?")
        params.append(status.value)
    if since is not None:
        conditions.append("period_start >= ?")
        params.append(to_iso(since))
    if until is not None:
        conditions.append("period_end <= ?")
        params.append(to_iso(until))

    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)
    rows = conn.execute(
        f"SELECT * FROM reports{where} ORDER BY generated_at DESC LIMIT ?",
        params,
    ).fetchall()
    return [_row_to_report(r) for r in rows]


def get_latest_completed_report(conn: sqlite3.Connection, kind: ReportKind) -> Report | None:
    row = conn.execute(
        "SELECT * FROM reports WHERE kind = ? AND status = ? ORDER BY generated_at DESC LIMIT 1",
        (kind.value, ReportStatus.COMPLETED.value),
    ).fetchone()
    if row is None:
        return None
    return _row_to_report(row)


def get_generating_reports(conn: sqlite3.Connection) -> list[Report]:
    """Reports still in flight, oldest first (for spotting hung AI calls)."""
    rows = conn.execute(
        "SELECT * FROM reports WHERE status = ? ORDER BY generated_at ASC",
        (ReportStatus.GENERATING.value,),
    ).fetchall()
    return [_row_to_report(r) for r in rows]


def count_reports_by_status(conn: sqlite3.Connection) -> dict[str, int]:
    rows = conn.execute("SELECT status, COUNT(*) AS n FROM reports GROUP BY status").fetchall()
    return {row["status"]: row["n"] for row in rows}


def _int_keys(counts: dict[str, int]) -> dict[int, int]:
    return {int(key): value for key, value in counts.items()}


def _load_metrics(value: str | None) -> AggregatedMetrics | None:
    """Decode a stored metrics snapshot, restoring the integer histogram keys JSON stringified."""
    metrics: AggregatedMetrics | None = load_json(value)
    if metrics is None:
        return None
    metrics["severity_histogram"] = _int_keys(metrics["severity_histogram"])  # type: ignore[arg-type]
    patterns = metrics["temporal_patterns"]
    patterns["by_hour"] = _int_keys(patterns["by_hour"])  # type: ignore[arg-type]
    return metrics


def _row_to_report(row: sqlite3.Row) -> Report:
    metrics = _load_metrics(row["metrics"])
    return Report(
        id=row["id"],
        kind=ReportKind(row["kind"]),
        period_start=from_iso(row["period_start"]),  # type: ignore[typeddict-item]
        period_end=from_iso(row["period_end"]),  # type: ignore[typeddict-item]
        title=row["title"],
        executive_summary=row["executive_summary"],
        content=load_json(row["content"]) or {},
        metrics=metrics,
        critical_areas=load_json(row["critical_areas"]) or [],
        recommendations=load_json(row["recommendations"]) or [],
        filters=load_json(row["filters"]),
        model=row["model"],
        status=ReportStatus(row["status"]),
        generated_at=from_iso(row["generated_at"]),  # type: ignore[typeddict-item]
        completed_at=from_iso(row["completed_at"]),
        processing_ms=row["processing_ms"],
        requested_by=row["requested_by"],
        error_message=row["error_message"],
    )

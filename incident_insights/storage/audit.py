"""Append-only audit log of AI invocations.

Every call to the generative backend (success or failure) gets one row with
its input/output snapshots, prompt, latency and token usage. Rows are never
updated or deleted.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from incident_insights.models import AnalysisKind, AuditEntry, UsageSummary
from incident_insights.storage.store import dump_json, from_iso, load_json, to_iso, utcnow

logger = logging.getLogger(__name__)


def record_audit(
    conn: sqlite3.Connection,
    *,
    kind: AnalysisKind,
    input_data: dict[str, Any],
    output_data: dict[str, Any] | None = None,
    prompt: str | None = None,
    model: str | None = None,
    latency_ms: int = 0,
    prompt_tokens: int = 0,
    completion_tokens: int = 0,
    estimated_cost: float = 0.0,
    success: bool = True,
    error_message: str | None = None,
    executed_at: datetime | None = None,
) -> int:
    """Append one audit entry and return its id."""
    cursor = conn.execute(
        """INSERT INTO audit_entries
           (kind, input_data, output_data, prompt, model, latency_ms,
            prompt_tokens, completion_tokens, estimated_cost, success,
            error_message, executed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            kind.value,
            dump_json(input_data),
            dump_json(output_data or {}),
            prompt,
            model,
            latency_ms,
            prompt_tokens,
            completion_tokens,
            estimated_cost,
            int(success),
            error_message,
            to_iso(executed_at or utcnow()),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def list_audit_entries(
    conn: sqlite3.Connection,
    *,
    kind: AnalysisKind | None = None,
    success: bool | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int = 50,
) -> list[AuditEntry]:
    """Audit entries filtered by kind, outcome and time window, newest first."""
    conditions, params = _window_conditions(since, until)
    if kind is not None:
        conditions.append("kind = ?")
        params.append(kind.value)
    if success is not None:
        conditions.append("success = ?")
        params.append(int(success))

    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)
    rows = conn.execute(
        f"SELECT * FROM audit_entries{where} ORDER BY executed_at DESC, id DESC LIMIT ?",
        params,
    ).fetchall()
    return [_row_to_entry(r) for r in rows]


def summarize_usage(
    conn: sqlite3.Connection,
    since: datetime | None = None,
    until: datetime | None = None,
    kind: AnalysisKind | None = None,
) -> UsageSummary:
    """Aggregate call counts, tokens, latency and cost over a time window, optionally for one kind."""
    conditions, params = _window_conditions(since, until)
    if kind is not None:
        conditions.append("kind = ?")
        params.append(kind.value)
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    row = conn.execute(
        f"""SELECT
               COUNT(*) AS total_calls,
               COALESCE(SUM(success), 0) AS successful_calls,
               COALESCE(SUM(prompt_tokens), 0) AS prompt_tokens,
               COALESCE(SUM(completion_tokens), 0) AS completion_tokens,
               COALESCE(SUM(latency_ms), 0) AS total_latency_ms,
               COALESCE(SUM(estimated_cost), 0.0) AS estimated_cost
            FROM audit_entries{where}""",
        params,
    ).fetchone()

    total = row["total_calls"]
    successful = row["successful_calls"]
    total_latency = row["total_latency_ms"]
    return UsageSummary(
        total_calls=total,
        successful_calls=successful,
        failed_calls=total - successful,
        prompt_tokens=row["prompt_tokens"],
        completion_tokens=row["completion_tokens"],
        total_latency_ms=total_latency,
        avg_latency_ms=round(total_latency / total, 1) if total else 0.0,
        estimated_cost=row["estimated_cost"],
    )


def _window_conditions(since: datetime | None, until: datetime | None) -> tuple[list[str], list[object]]:
    conditions: list[str] = []
    params: list[object] = []
    if since is not None:
        conditions.append("executed_at >= ?")
        params.append(to_iso(since))
    if until is not None:
        conditions.append("executed_at <= ?")
        params.append(to_iso(until))
    return conditions, params


def _row_to_entry(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        id=row["id"],
        kind=AnalysisKind(row["kind"]),
        input_data=load_json(row["input_data"]) or {},
        output_data=load_json(row["output_data"]) or {},
        prompt=row["prompt"],
        model=row["model"],
        latency_ms=row["latency_ms"],
        prompt_tokens=row["prompt_tokens"],
        completion_tokens=row["completion_tokens"],
        estimated_cost=row["estimated_cost"],
        success=bool(row["success"]),
        error_message=row["error_message"],
        executed_at=from_iso(row["executed_at"]),  # type: ignore[typeddict-item]
    )

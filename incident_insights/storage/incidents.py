"""Read-only incident sources.

The engine only needs ``find_by_period(start, end)`` (inclusive on both ends).
Two adapters are provided: the local SQLite ``incidents`` table and the
upstream incident API over HTTP.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Any, Protocol

import httpx

from incident_insights.models import Category, IncidentRecord
from incident_insights.storage.store import connect, from_iso, to_iso

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15


class IncidentSource(Protocol):
    async def find_by_period(self, start: datetime, end: datetime) -> list[IncidentRecord]: ...


def record_from_mapping(data: dict[str, Any]) -> IncidentRecord:
    """Build an IncidentRecord from a JSON/row mapping, enforcing the record invariants."""
    severity = int(data["severity"])
    if not 1 <= severity <= 10:
        msg = f"Severity out of range [1, 10]: {severity}"
        raise ValueError(msg)
    created = data["created_at"]
    created_at = created if isinstance(created, datetime) else from_iso(str(created))
    return IncidentRecord(
        id=str(data["id"]),
        category=Category(data["category"]),
        description=str(data.get("description") or ""),
        area=str(data["area"]),
        severity=severity,
        created_at=created_at,  # type: ignore[typeddict-item]
    )


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------


def save_incident(conn: sqlite3.Connection, record: IncidentRecord) -> None:
    conn.execute(
        """INSERT OR REPLACE INTO incidents
           (id, category, description, area, severity, created_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (
            record["id"],
            str(record["category"]),
            record["description"],
            record["area"],
            record["severity"],
            to_iso(record["created_at"]),
        ),
    )
    conn.commit()


def find_incidents_by_period(conn: sqlite3.Connection, start: datetime, end: datetime) -> list[IncidentRecord]:
    rows = conn.execute(
        "SELECT * FROM incidents WHERE created_at >= ? AND created_at <= ? ORDER BY created_at ASC",
        (to_iso(start), to_iso(end)),
    ).fetchall()
    return [record_from_mapping(dict(row)) for row in rows]


class SqliteIncidentSource:
    """Incident source backed by the local ``incidents`` table."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path

    def _find(self, start: datetime, end: datetime) -> list[IncidentRecord]:
        with connect(self.db_path) as conn:
            return find_incidents_by_period(conn, start, end)

    async def find_by_period(self, start: datetime, end: datetime) -> list[IncidentRecord]:
        return await asyncio.to_thread(self._find, start, end)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class HttpIncidentSource:
    """Incident source that queries the upstream incident API.

    Expects ``GET {base_url}/incidents?start=...&end=...`` to return either a
    JSON list of records or an envelope ``{"data": [...]}``.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def find_by_period(self, start: datetime, end: datetime) -> list[IncidentRecord]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(
                f"{self.base_url}/incidents",
                params={"start": to_iso(start), "end": to_iso(end)},
            )
            _ = resp.raise_for_status()
            body: object = resp.json()

        items: object = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            logger.warning("Unexpected incident API payload type: %s", type(items).__name__)
            return []

        records: list[IncidentRecord] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                records.append(record_from_mapping(item))
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed incident record %s: %s", item.get("id"), exc)
        return records

"""Content-addressed insight cache on SQLite.

Entries are keyed by the SHA-256 digest of their canonical context. A stored
entry is never mutated; after it expires the next generation for the same
digest replaces it (last write wins).
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from incident_insights.ai.schema import StructuredAnswer
from incident_insights.cache.hashing import canonical_json, canonicalize
from incident_insights.models import InsightCacheEntry, InsightKind
from incident_insights.observability.metrics import CACHE_EVICTIONS_TOTAL, CACHE_LOOKUPS_TOTAL
from incident_insights.storage.store import connect, dump_json, ensure_aware, from_iso, load_json, to_iso, utcnow

logger = logging.getLogger(__name__)


def _row_to_entry(row: sqlite3.Row) -> InsightCacheEntry:
    return InsightCacheEntry(
        id=row["id"],
        kind=InsightKind(row["kind"]),
        context=load_json(row["context"]) or {},
        insight=row["insight"],
        support_data=load_json(row["support_data"]),
        confidence=row["confidence"],
        relevance=row["relevance"],
        model=row["model"],
        generated_at=from_iso(row["generated_at"]),  # type: ignore[typeddict-item]
        expires_at=from_iso(row["expires_at"]),
        context_hash=row["context_hash"],
    )


def is_expired(entry: InsightCacheEntry, now: datetime) -> bool:
    expires_at = entry["expires_at"]
    return expires_at is not None and expires_at <= ensure_aware(now)


class InsightCache:
    """Lookup/store/sweep over the ``insight_cache`` table."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path

    def lookup(self, digest: str, now: datetime | None = None) -> InsightCacheEntry | None:
        """Return the live entry for ``digest``. Expired entries count as a miss but stay in place."""
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM insight_cache WHERE context_hash = ?", (digest,)).fetchone()
        if row is None:
            return None
        entry = _row_to_entry(row)
        if is_expired(entry, now or utcnow()):
            logger.debug("Cache entry %s expired at %s", digest[:12], entry["expires_at"])
            return None
        return entry

    def store(
        self,
        kind: InsightKind,
        context: dict[str, Any],
        digest: str,
        answer: StructuredAnswer,
        ttl_seconds: int,
        model: str,
        support_data: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> InsightCacheEntry:
        """Write (or replace) the entry for ``digest`` with ``expires_at = now + ttl``."""
        generated_at = ensure_aware(now or utcnow())
        entry = InsightCacheEntry(
            id=str(uuid4()),
            kind=kind,
            context=canonicalize(context),
            insight=answer.insight,
            support_data=support_data,
            confidence=answer.confidence,
            relevance=answer.relevance,
            model=model,
            generated_at=generated_at,
            expires_at=generated_at + timedelta(seconds=ttl_seconds),
            context_hash=digest,
        )
        with connect(self.db_path) as conn:
            conn.execute(
                """INSERT OR REPLACE INTO insight_cache
                   (id, kind, context, insight, support_data, confidence, relevance,
                    model, generated_at, expires_at, context_hash)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry["id"],
                    kind.value,
                    canonical_json(context),
                    entry["insight"],
                    dump_json(support_data) if support_data is not None else None,
                    entry["confidence"],
                    entry["relevance"],
                    model,
                    to_iso(generated_at),
                    to_iso(entry["expires_at"]),
                    digest,
                ),
            )
            conn.commit()
        logger.debug("Cached %s insight %s (ttl %ds)", kind, digest[:12], ttl_seconds)
        return entry

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete every entry whose expiry has passed. Returns the number removed."""
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM insight_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (to_iso(now or utcnow()),),
            )
            conn.commit()
            removed = cursor.rowcount
        if removed:
            CACHE_EVICTIONS_TOTAL.labels(reason="expired").inc(removed)
            logger.info("Swept %d expired insight(s)", removed)
        return removed

    def invalidate_area(self, area: str) -> int:
        """Drop CRITICAL_AREA entries whose context mentions ``area``."""
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM insight_cache WHERE kind = ? AND instr(lower(context), lower(?)) > 0",
                (InsightKind.CRITICAL_AREA.value, area),
            )
            conn.commit()
            removed = cursor.rowcount
        if removed:
            CACHE_EVICTIONS_TOTAL.labels(reason="area_invalidated").inc(removed)
        logger.info("Invalidated %d critical-area insight(s) for %s", removed, area)
        return removed

    def list_active(self, kind: InsightKind | None = None, now: datetime | None = None) -> list[InsightCacheEntry]:
        """Unexpired entries, most relevant first."""
        params: list[object] = [to_iso(now or utcnow())]
        sql = "SELECT * FROM insight_cache WHERE (expires_at IS NULL OR expires_at > ?)"
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind.value)
        sql += " ORDER BY relevance DESC, generated_at DESC"
        with connect(self.db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_entry(r) for r in rows]

    def count_by_kind(self) -> dict[str, int]:
        with connect(self.db_path) as conn:
            rows = conn.execute("SELECT kind, COUNT(*) AS n FROM insight_cache GROUP BY kind").fetchall()
        return {row["kind"]: row["n"] for row in rows}

    def record_lookup(self, kind: InsightKind, hit: bool) -> None:
        try:
            CACHE_LOOKUPS_TOTAL.labels(kind=kind.value, result="hit" if hit else "miss").inc()
        except Exception:
            logger.debug("metrics: cache lookup counter failed", exc_info=True)

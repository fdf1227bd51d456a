"""SQLite hot store."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

import structlog

from .config import Settings, settings as default_settings
from .errors import PersistenceError
from .models import (
    CanonicalQueryRecord,
    GeoAnalyticsRow,
    HotStoreStats,
    JobLog,
    PeriodSummary,
    PeriodType,
    ThreatIntelRecord,
    TimeSeriesPoint,
    to_iso,
)
from .store import HotStore, Interval

log = structlog.get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS dns_queries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    query_name TEXT NOT NULL,
    query_type TEXT NOT NULL,
    resolver_decision TEXT NOT NULL,
    source_location TEXT NOT NULL,
    location_name TEXT,
    count INTEGER NOT NULL DEFAULT 1,
    threat_category TEXT,
    risk_score INTEGER NOT NULL DEFAULT 0,
    blocked INTEGER NOT NULL DEFAULT 0,
    application_name TEXT,
    cnames TEXT NOT NULL DEFAULT '[]',
    resolved_ips TEXT NOT NULL DEFAULT '[]',
    resolved_ip_countries TEXT NOT NULL DEFAULT '[]',
    authoritative_nameserver_ips TEXT NOT NULL DEFAULT '[]',
    cache_status TEXT,
    ede_errors TEXT NOT NULL DEFAULT '[]',
    internal_dns_rcode TEXT,
    custom_resolver_response_code TEXT
);
CREATE INDEX IF NOT EXISTS idx_dns_queries_timestamp ON dns_queries(timestamp);
CREATE INDEX IF NOT EXISTS idx_dns_queries_query_name ON dns_queries(query_name);
CREATE INDEX IF NOT EXISTS idx_dns_queries_blocked ON dns_queries(blocked);

CREATE TABLE IF NOT EXISTS dns_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    period_type TEXT NOT NULL,
    total_queries INTEGER NOT NULL,
    blocked_queries INTEGER NOT NULL,
    allowed_queries INTEGER NOT NULL,
    unique_domains INTEGER NOT NULL,
    unique_sources INTEGER NOT NULL,
    top_threats TEXT NOT NULL DEFAULT '[]',
    geographic_distribution TEXT NOT NULL DEFAULT '[]',
    UNIQUE (timestamp, period_type)
);
CREATE INDEX IF NOT EXISTS idx_dns_summaries_period ON dns_summaries(period_type, timestamp);

CREATE TABLE IF NOT EXISTS threat_intelligence (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain TEXT NOT NULL,
    category TEXT NOT NULL,
    risk_score INTEGER NOT NULL,
    first_seen TEXT NOT NULL,
    last_seen TEXT NOT NULL,
    total_queries INTEGER NOT NULL DEFAULT 0,
    blocked_count INTEGER NOT NULL DEFAULT 0,
    source_locations TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL,
    UNIQUE (domain, category)
);
CREATE INDEX IF NOT EXISTS idx_threat_intelligence_risk ON threat_intelligence(risk_score);

CREATE TABLE IF NOT EXISTS geographic_analytics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    country TEXT NOT NULL,
    queries INTEGER NOT NULL DEFAULT 0,
    threats INTEGER NOT NULL DEFAULT 0,
    blocked INTEGER NOT NULL DEFAULT 0,
    period_type TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_geographic_analytics_timestamp ON geographic_analytics(timestamp);

CREATE TABLE IF NOT EXISTS cron_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_type TEXT NOT NULL,
    execution_time TEXT NOT NULL,
    records_processed INTEGER NOT NULL DEFAULT 0,
    success INTEGER NOT NULL DEFAULT 1,
    error TEXT,
    duration_ms INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_cron_logs_execution_time ON cron_logs(execution_time);
"""

# Text length of each bucket prefix of a to_iso() timestamp, and the suffix
# that turns it back into a full timestamp.
_BUCKETS: dict[str, tuple[int, str]] = {
    "minute": (16, ":00Z"),
    "hour": (13, ":00:00Z"),
    "day": (10, "T00:00:00Z"),
}

_LIST_FIELDS = (
    "cnames",
    "resolved_ips",
    "resolved_ip_countries",
    "authoritative_nameserver_ips",
    "ede_errors",
)


class SQLiteHotStore(HotStore):
    def __init__(self, config: Settings | None = None, path: str | None = None) -> None:
        self.config = config or default_settings
        self._path = path or self.config.hot_store_path
        self._ensure_schema()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        """Create the hot-store tables if they don't exist."""
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._conn()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()

    # --- canonical records ---------------------------------------------------

    def insert_records(self, records: list[CanonicalQueryRecord]) -> int:
        if not records:
            return 0

        rows = [
            (
                to_iso(r.timestamp),
                r.domain,
                r.query_type,
                r.resolver_decision,
                r.source_location,
                r.location_name,
                r.count,
                r.threat_category,
                r.risk_score,
                1 if r.blocked else 0,
                r.application_name,
                *(json.dumps(list(getattr(r, f))) for f in _LIST_FIELDS[:4]),
                r.cache_status,
                json.dumps(list(r.ede_errors)),
                r.internal_dns_rcode,
                r.custom_resolver_response_code,
            )
            for r in records
        ]

        conn = self._conn()
        try:
            conn.executemany("""
                INSERT INTO dns_queries
                    (timestamp, query_name, query_type, resolver_decision, source_location,
                     location_name, count, threat_category, risk_score, blocked,
                     application_name, cnames, resolved_ips, resolved_ip_countries,
                     authoritative_nameserver_ips, cache_status, ede_errors,
                     internal_dns_rcode, custom_resolver_response_code)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, rows)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(
                f"failed to insert {len(rows)} records: {exc}", details={"batch_size": len(rows)}
            ) from exc
        finally:
            conn.close()

        log.debug("hot_store_insert_complete", count=len(rows))
        return len(rows)

    def query_records(
        self,
        start: datetime,
        end: datetime,
        domain: str | None = None,
        blocked: bool | None = None,
        limit: int | None = None,
    ) -> list[CanonicalQueryRecord]:
        sql = "SELECT * FROM dns_queries WHERE timestamp >= ? AND timestamp <= ?"
        params: list = [to_iso(start), to_iso(end)]
        if domain:
            sql += " AND query_name LIKE ?"
            params.append(f"%{domain}%")
        if blocked is not None:
            sql += " AND blocked = ?"
            params.append(1 if blocked else 0)
        sql += " ORDER BY timestamp DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)

        conn = self._conn()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [self._row_to_record(row) for row in rows]

    def stats(self) -> HotStoreStats:
        conn = self._conn()
        try:
            row = conn.execute("""
                SELECT COUNT(*) AS records, MIN(timestamp) AS oldest, MAX(timestamp) AS newest
                FROM dns_queries
            """).fetchone()
        finally:
            conn.close()
        return HotStoreStats(records=row["records"], oldest=row["oldest"], newest=row["newest"])

    def time_series(self, start: datetime, end: datetime, interval: Interval) -> list[TimeSeriesPoint]:
        width, suffix = _BUCKETS[interval]
        conn = self._conn()
        try:
            rows = conn.execute(f"""
                SELECT substr(timestamp, 1, {width}) AS bucket,
                       SUM(count) AS total_queries,
                       SUM(CASE WHEN blocked = 1 THEN count ELSE 0 END) AS blocked_queries,
                       COUNT(DISTINCT query_name) AS unique_domains
                FROM dns_queries
                WHERE timestamp >= ? AND timestamp <= ?
                GROUP BY bucket
                ORDER BY bucket ASC
            """, (to_iso(start), to_iso(end))).fetchall()
        finally:
            conn.close()
        return [
            TimeSeriesPoint(
                timestamp=row["bucket"] + suffix,
                total_queries=row["total_queries"],
                blocked_queries=row["blocked_queries"],
                unique_domains=row["unique_domains"],
            )
            for row in rows
        ]

    # --- threat intelligence -------------------------------------------------

    def upsert_threat_intel(self, intel: list[ThreatIntelRecord]) -> int:
        if not intel:
            return 0

        conn = self._conn()
        count = 0
        try:
            for item in intel:
                existing = conn.execute(
                    "SELECT * FROM threat_intelligence WHERE domain = ? AND category = ?",
                    (item.domain, item.category),
                ).fetchone()
                merged = item if existing is None else self._merge_intel(self._row_to_intel(existing), item)
                conn.execute("""
                    INSERT INTO threat_intelligence
                        (domain, category, risk_score, first_seen, last_seen,
                         total_queries, blocked_count, source_locations, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (domain, category) DO UPDATE SET
                        risk_score = excluded.risk_score,
                        first_seen = excluded.first_seen,
                        last_seen = excluded.last_seen,
                        total_queries = excluded.total_queries,
                        blocked_count = excluded.blocked_count,
                        source_locations = excluded.source_locations,
                        updated_at = excluded.updated_at
                """, (
                    merged.domain,
                    merged.category,
                    merged.risk_score,
                    to_iso(merged.first_seen),
                    to_iso(merged.last_seen),
                    merged.total_queries,
                    merged.blocked_count,
                    json.dumps(sorted(merged.source_locations)),
                    to_iso(datetime.now(merged.last_seen.tzinfo)),
                ))
                count += 1
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"threat intel upsert failed: {exc}") from exc
        finally:
            conn.close()

        log.info("threat_intel_upserted", count=count)
        return count

    @staticmethod
    def _merge_intel(existing: ThreatIntelRecord, new: ThreatIntelRecord) -> ThreatIntelRecord:
        return ThreatIntelRecord(
            domain=existing.domain,
            category=existing.category,
            risk_score=max(existing.risk_score, new.risk_score),
            first_seen=min(existing.first_seen, new.first_seen),
            last_seen=max(existing.last_seen, new.last_seen),
            total_queries=existing.total_queries + new.total_queries,
            blocked_count=existing.blocked_count + new.blocked_count,
            source_locations=existing.source_locations | new.source_locations,
        )

    def fetch_threat_intel(self, limit: int = 50) -> list[ThreatIntelRecord]:
        conn = self._conn()
        try:
            rows = conn.execute("""
                SELECT * FROM threat_intelligence
                ORDER BY risk_score DESC, total_queries DESC
                LIMIT ?
            """, (limit,)).fetchall()
        finally:
            conn.close()
        return [self._row_to_intel(row) for row in rows]

    # --- summaries -----------------------------------------------------------

    def insert_summary(self, summary: PeriodSummary, geo_rows: list[GeoAnalyticsRow] | None = None) -> int:
        geo_rows = geo_rows or []
        conn = self._conn()
        try:
            conn.execute("""
                INSERT INTO dns_summaries
                    (timestamp, period_type, total_queries, blocked_queries, allowed_queries,
                     unique_domains, unique_sources, top_threats, geographic_distribution)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                to_iso(summary.timestamp),
                summary.period_type.value,
                summary.total_queries,
                summary.blocked_queries,
                summary.allowed_queries,
                summary.unique_domains,
                summary.unique_sources,
                json.dumps([t.model_dump() for t in summary.top_threats]),
                json.dumps([g.model_dump() for g in summary.geographic_distribution]),
            ))
            conn.executemany("""
                INSERT INTO geographic_analytics
                    (timestamp, country, queries, threats, blocked, period_type)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [
                (to_iso(g.timestamp), g.country, g.queries, g.threats, g.blocked, g.period_type.value)
                for g in geo_rows
            ])
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"summary insert failed: {exc}") from exc
        finally:
            conn.close()

        log.info("summary_stored", period_type=summary.period_type.value, geo_rows=len(geo_rows))
        return 1 + len(geo_rows)

    def fetch_summaries(self, period_type: PeriodType, start: datetime, end: datetime) -> list[PeriodSummary]:
        conn = self._conn()
        try:
            rows = conn.execute("""
                SELECT * FROM dns_summaries
                WHERE period_type = ? AND timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp ASC
            """, (period_type.value, to_iso(start), to_iso(end))).fetchall()
        finally:
            conn.close()
        return [self._row_to_summary(row) for row in rows]

    def fetch_geo_analytics(self, limit: int = 100) -> list[GeoAnalyticsRow]:
        conn = self._conn()
        try:
            rows = conn.execute("""
                SELECT * FROM geographic_analytics ORDER BY timestamp DESC, queries DESC LIMIT ?
            """, (limit,)).fetchall()
        finally:
            conn.close()
        return [
            GeoAnalyticsRow(
                timestamp=row["timestamp"],
                country=row["country"],
                queries=row["queries"],
                threats=row["threats"],
                blocked=row["blocked"],
                period_type=row["period_type"],
            )
            for row in rows
        ]

    # --- job logs ------------------------------------------------------------

    def log_job(self, job: JobLog) -> None:
        conn = self._conn()
        try:
            conn.execute("""
                INSERT INTO cron_logs
                    (job_type, execution_time, records_processed, success, error, duration_ms)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                job.job_type.value,
                to_iso(job.execution_time),
                job.records_processed,
                1 if job.success else 0,
                job.error,
                job.duration_ms,
            ))
            conn.commit()
        finally:
            conn.close()

    def fetch_job_logs(self, limit: int = 50) -> list[JobLog]:
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT * FROM cron_logs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        finally:
            conn.close()
        return [
            JobLog(
                job_type=row["job_type"],
                execution_time=row["execution_time"],
                records_processed=row["records_processed"],
                success=bool(row["success"]),
                error=row["error"],
                duration_ms=row["duration_ms"],
            )
            for row in rows
        ]

    # --- row mapping ---------------------------------------------------------

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> CanonicalQueryRecord:
        return CanonicalQueryRecord(
            timestamp=row["timestamp"],
            domain=row["query_name"],
            query_type=row["query_type"],
            resolver_decision=row["resolver_decision"],
            source_location=row["source_location"],
            location_name=row["location_name"],
            count=row["count"],
            threat_category=row["threat_category"],
            risk_score=row["risk_score"],
            blocked=bool(row["blocked"]),
            application_name=row["application_name"],
            cache_status=row["cache_status"],
            internal_dns_rcode=row["internal_dns_rcode"],
            custom_resolver_response_code=row["custom_resolver_response_code"],
            **{f: json.loads(row[f] or "[]") for f in _LIST_FIELDS},
        )

    @staticmethod
    def _row_to_intel(row: sqlite3.Row) -> ThreatIntelRecord:
        return ThreatIntelRecord(
            domain=row["domain"],
            category=row["category"],
            risk_score=row["risk_score"],
            first_seen=row["first_seen"],
            last_seen=row["last_seen"],
            total_queries=row["total_queries"],
            blocked_count=row["blocked_count"],
            source_locations=set(json.loads(row["source_locations"] or "[]")),
        )

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> PeriodSummary:
        def _json_list(raw: str | None) -> list:
            try:
                value = json.loads(raw or "[]")
            except json.JSONDecodeError:
                return []
            return value if isinstance(value, list) else []

        return PeriodSummary(
            timestamp=row["timestamp"],
            period_type=row["period_type"],
            total_queries=row["total_queries"],
            blocked_queries=row["blocked_queries"],
            allowed_queries=row["allowed_queries"],
            unique_domains=row["unique_domains"],
            unique_sources=row["unique_sources"],
            top_threats=_json_list(row["top_threats"]),
            geographic_distribution=_json_list(row["geographic_distribution"]),
        )

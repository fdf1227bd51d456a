"""Scheduled ingestion and aggregation jobs.

    realtime  every 5 minutes: telemetry window -> hot store, threat intel, archive
    hourly    every hour: four telemetry rollups -> hourly summary + geo rows
    daily     once a day: trailing 24h of hourly summaries -> daily summary
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Callable

import structlog

from .archive_writer import ArchiveWriter
from .classification import KeywordClassifier, ThreatClassifier
from .config import Settings, settings as default_settings
from .errors import PersistenceError
from .models import (
    CanonicalQueryRecord,
    GeoAnalyticsRow,
    GeoBucket,
    JobLog,
    JobResult,
    JobType,
    PeriodSummary,
    PeriodType,
    ThreatIntelRecord,
    TopThreat,
    utcnow,
)
from .normalizer import normalize_groups
from .store import HotStore
from .telemetry import TelemetryClient, TelemetryGroup

log = structlog.get_logger()

TOP_THREATS_LIMIT = 10
TOP_GEO_LIMIT = 20


def build_threat_intel(
    records: list[CanonicalQueryRecord],
    threshold: int = 70,
    default_category: str = "Suspicious",
) -> list[ThreatIntelRecord]:
    """Roll records scoring above `threshold` up per domain."""
    by_domain: dict[str, list[CanonicalQueryRecord]] = defaultdict(list)
    for r in records:
        if r.risk_score > threshold:
            by_domain[r.domain].append(r)

    intel = []
    for domain, group in by_domain.items():
        categories = Counter(r.threat_category for r in group if r.threat_category)
        category = categories.most_common(1)[0][0] if categories else default_category
        intel.append(ThreatIntelRecord(
            domain=domain,
            category=category,
            risk_score=max(r.risk_score for r in group),
            first_seen=min(r.timestamp for r in group),
            last_seen=max(r.timestamp for r in group),
            total_queries=sum(r.count for r in group),
            blocked_count=sum(r.count for r in group if r.blocked),
            source_locations={r.source_location for r in group},
        ))
    return intel


def summarize_hourly(
    now: datetime,
    category_groups: list[TelemetryGroup],
    geo_groups: list[TelemetryGroup],
    domain_groups: list[TelemetryGroup],
    blocked_groups: list[TelemetryGroup],
) -> PeriodSummary:
    total = sum(g.count for g in category_groups)
    blocked = sum(g.count for g in blocked_groups)

    top_threats = [
        TopThreat(
            domain=g.dimensions.get("queryName") or "unknown",
            count=g.count,
            category=g.dimensions["categoryNames"][0],
        )
        for g in blocked_groups
        if g.dimensions.get("categoryNames")
    ][:TOP_THREATS_LIMIT]

    return PeriodSummary(
        timestamp=now,
        period_type=PeriodType.HOURLY,
        total_queries=total,
        blocked_queries=blocked,
        allowed_queries=total - blocked,
        unique_domains=len({g.dimensions.get("queryName") for g in domain_groups}),
        unique_sources=len({g.dimensions.get("srcIpCountry") for g in geo_groups}),
        top_threats=top_threats,
        geographic_distribution=[
            GeoBucket(location=g.dimensions.get("srcIpCountry") or "Unknown", count=g.count)
            for g in geo_groups[:TOP_GEO_LIMIT]
        ],
    )


def geo_rows(
    now: datetime, geo_groups: list[TelemetryGroup], classifier: ThreatClassifier
) -> list[GeoAnalyticsRow]:
    """One row per source country with query, threat and blocked counts."""
    rows: dict[str, GeoAnalyticsRow] = {}
    for g in geo_groups:
        country = g.dimensions.get("srcIpCountry") or "Unknown"
        row = rows.setdefault(country, GeoAnalyticsRow(timestamp=now, country=country))
        row.queries += g.count
        if classifier.is_blocked(g.dimensions.get("resolverDecision")):
            row.blocked += g.count
        if classifier.threat_category(g.dimensions.get("categoryNames")):
            row.threats += g.count
    return list(rows.values())


def merge_summaries(now: datetime, hourly: list[PeriodSummary]) -> PeriodSummary:
    threats: dict[str, TopThreat] = {}
    for s in hourly:
        for t in s.top_threats:
            if t.domain in threats:
                threats[t.domain].count += t.count
            else:
                threats[t.domain] = t.model_copy()

    geo: dict[str, int] = defaultdict(int)
    for s in hourly:
        for b in s.geographic_distribution:
            geo[b.location] += b.count

    return PeriodSummary(
        timestamp=now,
        period_type=PeriodType.DAILY,
        total_queries=sum(s.total_queries for s in hourly),
        blocked_queries=sum(s.blocked_queries for s in hourly),
        allowed_queries=sum(s.allowed_queries for s in hourly),
        # approximation: a domain seen in several hours would be double counted by a sum
        unique_domains=max(s.unique_domains for s in hourly),
        unique_sources=max(s.unique_sources for s in hourly),
        top_threats=sorted(threats.values(), key=lambda t: -t.count)[:TOP_THREATS_LIMIT],
        geographic_distribution=[
            GeoBucket(location=loc, count=count)
            for loc, count in sorted(geo.items(), key=lambda kv: -kv[1])[:TOP_GEO_LIMIT]
        ],
    )


class Ingestor:
    def __init__(
        self,
        store: HotStore,
        telemetry: TelemetryClient,
        writer: ArchiveWriter | None = None,
        classifier: ThreatClassifier | None = None,
        config: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.telemetry = telemetry
        self.config = config or default_settings
        self.writer = writer or ArchiveWriter.from_settings(self.config)
        self.classifier = classifier or KeywordClassifier()
        self._clock = clock

    def _log_job(self, job: JobLog) -> None:
        try:
            self.store.log_job(job)
        except Exception:
            log.exception("job_log_write_failed", job_type=job.job_type.value)

    def _store_batches(self, records: list[CanonicalQueryRecord]) -> int:
        size = max(1, self.config.insert_batch_size)
        stored = 0
        for i in range(0, len(records), size):
            batch = records[i:i + size]
            try:
                stored += self.store.insert_records(batch)
            except PersistenceError as exc:
                log.warning("batch_insert_failed", offset=i, size=len(batch), **exc.to_dict())
        return stored

    async def ingest_realtime(self) -> JobResult:
        """Pull the last few minutes of telemetry and persist it."""
        started = time.monotonic()
        now = self._clock()
        window = timedelta(minutes=self.config.realtime_window_minutes)

        try:
            groups = await self.telemetry.fetch_security_telemetry(
                now - window, now, limit=self.config.telemetry_limit
            )
            records = normalize_groups(groups, self.classifier)
            if not records:
                log.info("realtime_window_empty")
                self._log_job(JobLog(job_type=JobType.REALTIME, duration_ms=_elapsed_ms(started)))
                return JobResult(duration_ms=_elapsed_ms(started))

            stored = self._store_batches(records)
            log.info("batch_stored", processed=len(records), stored=stored)

            intel = build_threat_intel(
                records,
                self.config.threat_intel_threshold,
                self.classifier.default_category,
            )
            if intel:
                try:
                    self.store.upsert_threat_intel(intel)
                except PersistenceError as exc:
                    log.warning("threat_intel_upsert_failed", domains=len(intel), error=exc.message)

            stream = await self.writer.stream(records)
            log.info("archive_stream_result", sent=stream.sent, skipped=stream.skipped)
        except Exception as exc:
            log.exception("realtime_ingestion_failed")
            duration = _elapsed_ms(started)
            self._log_job(JobLog(
                job_type=JobType.REALTIME, success=False, error=str(exc), duration_ms=duration
            ))
            return JobResult(duration_ms=duration)

        duration = _elapsed_ms(started)
        self._log_job(JobLog(
            job_type=JobType.REALTIME, records_processed=len(records), duration_ms=duration
        ))
        return JobResult(processed=len(records), stored=stored, duration_ms=duration)

    async def aggregate_hourly(self) -> JobResult:
        started = time.monotonic()
        now = self._clock()
        since = now - timedelta(hours=1)

        try:
            category, geo, domains, blocked = await asyncio.gather(
                self.telemetry.fetch_category_metrics(since, now, limit=1000),
                self.telemetry.fetch_geo_metrics(since, now, limit=1000),
                self.telemetry.fetch_top_domains(since, now, limit=100),
                self.telemetry.fetch_blocked_queries(since, now, limit=1000),
            )
            summary = summarize_hourly(now, category, geo, domains, blocked)
            stored = self.store.insert_summary(summary, geo_rows(now, geo, self.classifier))
        except Exception as exc:
            log.exception("hourly_aggregation_failed")
            duration = _elapsed_ms(started)
            self._log_job(JobLog(
                job_type=JobType.HOURLY, success=False, error=str(exc), duration_ms=duration
            ))
            return JobResult(duration_ms=duration)

        duration = _elapsed_ms(started)
        log.info("hourly_summary_stored", total=summary.total_queries, blocked=summary.blocked_queries)
        self._log_job(JobLog(
            job_type=JobType.HOURLY, records_processed=summary.total_queries, duration_ms=duration
        ))
        return JobResult(processed=summary.total_queries, stored=stored, duration_ms=duration)

    async def aggregate_daily(self) -> JobResult:
        started = time.monotonic()
        now = self._clock()

        try:
            hourly = self.store.fetch_summaries(PeriodType.HOURLY, now - timedelta(days=1), now)
            if not hourly:
                log.warning("no_hourly_summaries")
                self._log_job(JobLog(
                    job_type=JobType.DAILY,
                    success=False,
                    error="No hourly summaries found",
                    duration_ms=_elapsed_ms(started),
                ))
                return JobResult(duration_ms=_elapsed_ms(started))

            summary = merge_summaries(now, hourly)
            self.store.insert_summary(summary)
        except Exception as exc:
            log.exception("daily_aggregation_failed")
            duration = _elapsed_ms(started)
            self._log_job(JobLog(
                job_type=JobType.DAILY, success=False, error=str(exc), duration_ms=duration
            ))
            return JobResult(duration_ms=duration)

        duration = _elapsed_ms(started)
        log.info("daily_summary_stored", hourly_rows=len(hourly), total=summary.total_queries)
        self._log_job(JobLog(
            job_type=JobType.DAILY, records_processed=summary.total_queries, duration_ms=duration
        ))
        return JobResult(processed=summary.total_queries, stored=1, duration_ms=duration)


def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)

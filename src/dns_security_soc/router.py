"""Source selection for read requests.

Recent dashboard windows are served live from the telemetry source and fall
back to the hot store. Older windows, and every raw-record query, are served
from the stored tiers: the hot store for the last `hot_tier_days`, the cold
archive beyond that.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from .archive_reader import ArchiveReader
from .cache import TTLCache
from .classification import ThreatClassifier
from .config import Settings, settings as default_settings
from .errors import NoDataAvailable
from .models import (
    CanonicalQueryRecord,
    DashboardData,
    LiveSource,
    PeriodType,
    RetentionStats,
    StoredRawSource,
    StoredSource,
    ThreatIntelRecord,
    TierQueryResult,
    TimeSeriesPoint,
    as_utc,
    utcnow,
)
from .normalizer import normalize_groups
from .store import HotStore, Interval
from .telemetry import TelemetryClient

log = structlog.get_logger()

RANGES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
LIVE_RANGES = frozenset({"1h", "24h", "7d", "30d"})
DEFAULT_RANGE = "24h"


def resolve_range(range_: str) -> str:
    """Unknown range strings resolve to the default 24h window."""
    return range_ if range_ in RANGES else DEFAULT_RANGE


def data_age_minutes(records: list[CanonicalQueryRecord], now: datetime) -> int | None:
    if not records:
        return None
    newest = max(r.timestamp for r in records)
    return max(0, int((now - newest).total_seconds() // 60))


class TieredQueryRouter:
    def __init__(
        self,
        store: HotStore,
        telemetry: TelemetryClient,
        archive: ArchiveReader | None = None,
        config: Settings | None = None,
        cache: TTLCache[DashboardData] | None = None,
        classifier: ThreatClassifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or default_settings
        self.store = store
        self.telemetry = telemetry
        self.archive = archive or ArchiveReader(config=self.config)
        self.cache = cache or TTLCache(self.config.cache_ttl_seconds)
        self.classifier = classifier
        self._clock = clock

    def _boundary(self, now: datetime) -> datetime:
        return now - timedelta(days=self.config.hot_tier_days)

    # --- dashboard -----------------------------------------------------------

    async def get_dashboard_data(self, range_: str = DEFAULT_RANGE) -> DashboardData:
        key = resolve_range(range_)
        return await self.cache.get_or_load(f"dashboard_{key}", lambda: self._load_dashboard(key))

    async def _load_dashboard(self, key: str) -> DashboardData:
        now = self._clock()
        start = now - RANGES[key]
        within_live_window = start >= now - timedelta(days=self.config.live_window_days)

        if within_live_window and key in LIVE_RANGES:
            try:
                return await self._live_dashboard(start, now, key)
            except Exception as exc:
                log.warning("live_fetch_failed_falling_back", range=key, error=str(exc))
                try:
                    records = self.store.query_records(start, now, limit=self.config.dashboard_limit)
                except Exception:
                    log.exception("hot_store_fallback_failed", range=key)
                    records = []
                return DashboardData(
                    queries=records,
                    source=StoredSource(
                        range=key,
                        data_age_minutes=data_age_minutes(records, now),
                        fallback_reason=str(exc),
                    ),
                )

        log.info("dashboard_from_stored_tiers", range=key)
        result = await self.query_across_tiers(start, now, limit=self.config.dashboard_limit)
        return DashboardData(
            queries=result.data,
            source=StoredSource(range=key, data_age_minutes=data_age_minutes(result.data, now)),
        )

    async def _live_dashboard(self, start: datetime, now: datetime, key: str) -> DashboardData:
        groups = await self.telemetry.fetch_security_telemetry(
            start, now, limit=self.config.dashboard_limit
        )
        records = normalize_groups(groups, self.classifier)
        if not records:
            raise NoDataAvailable("No live telemetry available", details={"range": key})
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return DashboardData(
            queries=records,
            source=LiveSource(range=key, data_age_minutes=data_age_minutes(records, now)),
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    # --- raw records ---------------------------------------------------------

    async def query_across_tiers(
        self,
        start: datetime,
        end: datetime,
        domain: str | None = None,
        blocked: bool | None = None,
        limit: int | None = None,
    ) -> TierQueryResult:
        started = time.monotonic()
        start, end = as_utc(start), as_utc(end)
        boundary = self._boundary(self._clock())

        results: list[CanonicalQueryRecord] = []
        hot_count = archive_count = 0

        if end > boundary:
            hot = self.store.query_records(max(start, boundary), end, domain, blocked, limit)
            results.extend(hot)
            hot_count = len(hot)
            log.debug("hot_tier_query_complete", records=hot_count)

        if start < boundary:
            remaining = limit - len(results) if limit else None
            if remaining is None or remaining > 0:
                # the hot tier already returned anything stamped exactly at the boundary
                cold = self.archive.query_range(
                    start, min(end, boundary), domain, blocked, remaining, include_end=end <= boundary
                )
                results.extend(cold)
                archive_count = len(cold)
                log.debug("archive_tier_query_complete", records=archive_count)

        results.sort(key=lambda r: r.timestamp, reverse=True)
        if limit:
            results = results[:limit]

        return TierQueryResult(
            data=results,
            hot_records=hot_count,
            archive_records=archive_count,
            query_time_ms=round((time.monotonic() - started) * 1000),
            source=StoredRawSource(hot_records=hot_count, archive_records=archive_count),
        )

    # --- retention and rollups -----------------------------------------------

    def get_retention_stats(self) -> RetentionStats:
        now = self._clock()
        hot = self.store.stats()
        cold = self.archive.get_stats()

        candidates = []
        if hot.oldest is not None:
            candidates.append(as_utc(hot.oldest))
        if cold.oldest_date:
            candidates.append(datetime.fromisoformat(cold.oldest_date).replace(tzinfo=timezone.utc))

        days = 0
        if candidates:
            days = max(0, (now - min(candidates)) // timedelta(days=1))
        return RetentionStats(hot_storage=hot, cold_storage=cold, total_retention_days=days)

    def get_time_series(self, start: datetime, end: datetime, interval: Interval = "hour") -> list[TimeSeriesPoint]:
        start, end = as_utc(start), as_utc(end)
        boundary = self._boundary(self._clock())

        if start >= boundary:
            return self.store.time_series(start, end, interval)
        if end < boundary:
            return self._summary_series(start, end)

        points = self._summary_series(start, boundary) + self.store.time_series(boundary, end, interval)
        return sorted(points, key=lambda p: p.timestamp)

    def _summary_series(self, start: datetime, end: datetime) -> list[TimeSeriesPoint]:
        return [
            TimeSeriesPoint(
                timestamp=s.timestamp,
                total_queries=s.total_queries,
                blocked_queries=s.blocked_queries,
                unique_domains=s.unique_domains,
            )
            for s in self.store.fetch_summaries(PeriodType.HOURLY, start, end)
        ]

    def get_top_threats(self, limit: int = 50) -> list[ThreatIntelRecord]:
        return self.store.fetch_threat_intel(limit)

"""Abstract hot store for canonical records and rollups."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Literal

from .models import (
    CanonicalQueryRecord,
    GeoAnalyticsRow,
    HotStoreStats,
    JobLog,
    PeriodSummary,
    PeriodType,
    ThreatIntelRecord,
    TimeSeriesPoint,
)

Interval = Literal["minute", "hour", "day"]


class HotStore(ABC):
    """Backend-agnostic interface for the relational hot tier.

    Implementations:
        - SQLiteHotStore: single-file SQLite database (default)
    """

    @abstractmethod
    def insert_records(self, records: list[CanonicalQueryRecord]) -> int:
        """Insert one batch atomically. Raises PersistenceError on failure."""

    @abstractmethod
    def query_records(
        self,
        start: datetime,
        end: datetime,
        domain: str | None = None,
        blocked: bool | None = None,
        limit: int | None = None,
    ) -> list[CanonicalQueryRecord]:
        """Records in [start, end], newest first."""

    @abstractmethod
    def stats(self) -> HotStoreStats:
        """Record count and oldest/newest timestamps."""

    @abstractmethod
    def time_series(self, start: datetime, end: datetime, interval: Interval) -> list[TimeSeriesPoint]:
        """Per-bucket totals over raw records, oldest first."""

    @abstractmethod
    def upsert_threat_intel(self, intel: list[ThreatIntelRecord]) -> int:
        """Merge rollups into existing (domain, category) rows."""

    @abstractmethod
    def fetch_threat_intel(self, limit: int = 50) -> list[ThreatIntelRecord]:
        """Highest-risk rollups first."""

    @abstractmethod
    def insert_summary(self, summary: PeriodSummary, geo_rows: list[GeoAnalyticsRow] | None = None) -> int:
        """Write a summary and its geo rows in one transaction. Returns rows written."""

    @abstractmethod
    def fetch_summaries(self, period_type: PeriodType, start: datetime, end: datetime) -> list[PeriodSummary]:
        """Summaries of one period type in [start, end], oldest first."""

    @abstractmethod
    def fetch_geo_analytics(self, limit: int = 100) -> list[GeoAnalyticsRow]:
        """Most recent per-country rows first."""

    @abstractmethod
    def log_job(self, job: JobLog) -> None:
        """Record a job execution."""

    @abstractmethod
    def fetch_job_logs(self, limit: int = 50) -> list[JobLog]:
        """Most recent job executions first."""

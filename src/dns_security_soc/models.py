from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 text, so stored timestamps sort lexically."""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class PeriodType(StrEnum):
    HOURLY = "hourly"
    DAILY = "daily"


class JobType(StrEnum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"


class SecurityStatus(StrEnum):
    SAFE = "safe"
    SUSPICIOUS = "suspicious"
    BLOCKED = "blocked"


class CanonicalQueryRecord(BaseModel):
    """Normalized, immutable representation of one telemetry group."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    domain: str
    query_type: str = "A"
    resolver_decision: str = "0"
    source_location: str = "Unknown"
    location_name: str | None = None
    count: int = Field(default=1, ge=1)
    threat_category: str | None = None
    risk_score: int = Field(default=0, ge=0, le=100)
    blocked: bool = False
    application_name: str | None = None
    cnames: tuple[str, ...] = ()
    resolved_ips: tuple[str, ...] = ()
    resolved_ip_countries: tuple[str, ...] = ()
    authoritative_nameserver_ips: tuple[str, ...] = ()
    cache_status: str | None = None
    ede_errors: tuple[str, ...] = ()
    internal_dns_rcode: str | None = None
    custom_resolver_response_code: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, v: datetime) -> datetime:
        return as_utc(v)


class ThreatIntelRecord(BaseModel):
    """Per-domain/category rollup of high-risk activity."""

    domain: str
    category: str
    risk_score: int = Field(ge=0, le=100)
    first_seen: datetime
    last_seen: datetime
    total_queries: int = 0
    blocked_count: int = 0
    source_locations: set[str] = Field(default_factory=set)


class TopThreat(BaseModel):
    domain: str
    count: int
    category: str | None = None


class GeoBucket(BaseModel):
    location: str
    count: int


class PeriodSummary(BaseModel):
    timestamp: datetime
    period_type: PeriodType
    total_queries: int = 0
    blocked_queries: int = 0
    allowed_queries: int = 0
    unique_domains: int = 0
    unique_sources: int = 0
    top_threats: list[TopThreat] = Field(default_factory=list)
    geographic_distribution: list[GeoBucket] = Field(default_factory=list)


class GeoAnalyticsRow(BaseModel):
    timestamp: datetime
    country: str
    queries: int = 0
    threats: int = 0
    blocked: int = 0
    period_type: PeriodType = PeriodType.HOURLY


class JobLog(BaseModel):
    job_type: JobType
    execution_time: datetime = Field(default_factory=utcnow)
    records_processed: int = 0
    success: bool = True
    error: str | None = None
    duration_ms: int = 0


class JobResult(BaseModel):
    """Outcome of a single ingestion or aggregation run."""

    processed: int = 0
    stored: int = 0
    duration_ms: int = 0


class StreamResult(BaseModel):
    sent: int = 0
    skipped: int = 0


class BatchStreamResult(BaseModel):
    total_sent: int = 0
    total_skipped: int = 0
    batches_processed: int = 0


class ObjectInfo(BaseModel):
    key: str
    size: int


# --- Source labels -----------------------------------------------------------


class _SourceBase(BaseModel):
    fetched_at: datetime = Field(default_factory=utcnow)
    range: str | None = None
    data_age_minutes: int | None = None


class LiveSource(_SourceBase):
    """Results fetched directly from the telemetry source."""

    kind: Literal["live"] = "live"


class StoredSource(_SourceBase):
    """Results served from the hot store (optionally merged with the archive)."""

    kind: Literal["stored"] = "stored"
    fallback_reason: str | None = None


class StoredRawSource(_SourceBase):
    """Raw record query spanning hot store and archive."""

    kind: Literal["stored_raw"] = "stored_raw"
    hot_records: int = 0
    archive_records: int = 0


DataSourceInfo = Annotated[
    Union[LiveSource, StoredSource, StoredRawSource], Field(discriminator="kind")
]


def is_realtime(source: DataSourceInfo) -> bool:
    match source:
        case LiveSource():
            return True
        case StoredSource() | StoredRawSource():
            return False


class DashboardData(BaseModel):
    queries: list[CanonicalQueryRecord] = Field(default_factory=list)
    source: DataSourceInfo

    @property
    def is_empty(self) -> bool:
        return not self.queries


class TierQueryResult(BaseModel):
    data: list[CanonicalQueryRecord] = Field(default_factory=list)
    hot_records: int = 0
    archive_records: int = 0
    query_time_ms: int = 0
    source: DataSourceInfo


class HotStoreStats(BaseModel):
    records: int = 0
    oldest: datetime | None = None
    newest: datetime | None = None


class ArchiveStats(BaseModel):
    total_files: int = 0
    oldest_date: str | None = None
    newest_date: str | None = None
    total_size_bytes: int = 0


class RetentionStats(BaseModel):
    hot_storage: HotStoreStats
    cold_storage: ArchiveStats
    total_retention_days: int = 0


class TimeSeriesPoint(BaseModel):
    timestamp: datetime
    total_queries: int = 0
    blocked_queries: int = 0
    unique_domains: int = 0


# --- Derived analytics -------------------------------------------------------


class ResolutionStep(BaseModel):
    step: int
    record_type: str
    query: str
    response: list[str]
    response_time: int
    authoritative_server: str
    is_cached: bool
    ttl: int = 300


class ResolutionChain(BaseModel):
    domain: str
    cnames: list[str]
    final_ips: list[str]
    total_steps: int
    total_time: int
    chain: list[ResolutionStep]
    security_status: SecurityStatus
    timestamp: datetime
    query_count: int


class NameserverStats(BaseModel):
    nameserver_ip: str
    query_count: int
    countries: list[str]
    avg_response_time: int
    reliability_score: int = Field(ge=0, le=100)
    domains_served: int


class DnsErrorStat(BaseModel):
    error_type: str
    error_code: str
    count: int
    percentage: float
    description: str
    trend: Literal["increasing", "stable", "decreasing"] = "stable"
    examples: list[str] = Field(default_factory=list)

import sqlite3
from datetime import timedelta

import pytest

from dns_security_soc.errors import PersistenceError
from dns_security_soc.models import (
    GeoAnalyticsRow,
    GeoBucket,
    JobLog,
    JobType,
    PeriodSummary,
    PeriodType,
    ThreatIntelRecord,
    TopThreat,
)
from dns_security_soc.sqlite_store import SQLiteHotStore
from dns_security_soc.store import HotStore

from conftest import NOW, make_record


def test_schema_created(store, config):
    conn = sqlite3.connect(config.hot_store_path)
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    conn.close()
    assert {"dns_queries", "dns_summaries", "threat_intelligence", "geographic_analytics", "cron_logs"} <= tables


class TestRecords:
    def test_insert_and_query_round_trip(self, store):
        record = make_record(
            domain="a.example.com",
            cnames=["b.example.com", "c.example.com"],
            resolved_ips=["1.2.3.4"],
            ede_errors=["15"],
            blocked=True,
            risk_score=95,
            threat_category="Malware",
        )
        assert store.insert_records([record]) == 1
        [loaded] = store.query_records(NOW - timedelta(hours=1), NOW)
        assert loaded == record

    def test_query_filters_and_ordering(self, store):
        store.insert_records([
            make_record(domain="old.example.com", timestamp=NOW - timedelta(minutes=30)),
            make_record(domain="new.example.com", timestamp=NOW - timedelta(minutes=5), blocked=True, risk_score=80),
            make_record(domain="other.test", timestamp=NOW - timedelta(minutes=10)),
        ])
        window = (NOW - timedelta(hours=1), NOW)
        assert [r.domain for r in store.query_records(*window)] == [
            "new.example.com", "other.test", "old.example.com"
        ]
        assert [r.domain for r in store.query_records(*window, domain="example")] == [
            "new.example.com", "old.example.com"
        ]
        assert [r.domain for r in store.query_records(*window, blocked=True)] == ["new.example.com"]
        assert len(store.query_records(*window, limit=2)) == 2

    def test_insert_failure_raises_persistence_error(self, store, config):
        conn = sqlite3.connect(config.hot_store_path)
        conn.execute("DROP TABLE dns_queries")
        conn.commit()
        conn.close()
        with pytest.raises(PersistenceError):
            store.insert_records([make_record()])

    def test_stats(self, store):
        assert store.stats().records == 0
        store.insert_records([
            make_record(timestamp=NOW - timedelta(days=2)),
            make_record(timestamp=NOW - timedelta(hours=1)),
        ])
        stats = store.stats()
        assert stats.records == 2
        assert stats.oldest == NOW - timedelta(days=2)
        assert stats.newest == NOW - timedelta(hours=1)

    def test_time_series_by_hour(self, store):
        store.insert_records([
            make_record(domain="a.example.com", timestamp=NOW - timedelta(minutes=10), count=5, blocked=True, risk_score=80),
            make_record(domain="b.example.com", timestamp=NOW - timedelta(minutes=20), count=10),
            make_record(domain="a.example.com", timestamp=NOW - timedelta(minutes=70), count=2),
        ])
        points = store.time_series(NOW - timedelta(hours=3), NOW, "hour")
        assert [(p.timestamp.hour, p.total_queries, p.blocked_queries, p.unique_domains) for p in points] == [
            (10, 2, 0, 1),
            (11, 15, 5, 2),
        ]


class TestThreatIntel:
    def test_upsert_merges_existing_row(self, store):
        first = ThreatIntelRecord(
            domain="bad.example.com",
            category="Malware",
            risk_score=95,
            first_seen=NOW - timedelta(hours=2),
            last_seen=NOW - timedelta(hours=1),
            total_queries=5,
            blocked_count=5,
            source_locations={"US"},
        )
        second = first.model_copy(update={
            "risk_score": 90,
            "first_seen": NOW - timedelta(minutes=30),
            "last_seen": NOW,
            "total_queries": 3,
            "blocked_count": 2,
            "source_locations": {"DE"},
        })
        store.upsert_threat_intel([first])
        store.upsert_threat_intel([second])

        [merged] = store.fetch_threat_intel()
        assert merged.risk_score == 95
        assert merged.first_seen == NOW - timedelta(hours=2)
        assert merged.last_seen == NOW
        assert merged.total_queries == 8
        assert merged.blocked_count == 7
        assert merged.source_locations == {"US", "DE"}

    def test_ordered_by_risk_then_volume(self, store):
        base = dict(first_seen=NOW, last_seen=NOW, category="Malware")
        store.upsert_threat_intel([
            ThreatIntelRecord(domain="a", risk_score=90, total_queries=100, **base),
            ThreatIntelRecord(domain="b", risk_score=100, total_queries=1, **base),
            ThreatIntelRecord(domain="c", risk_score=90, total_queries=500, **base),
        ])
        assert [t.domain for t in store.fetch_threat_intel(limit=10)] == ["b", "c", "a"]


class TestSummaries:
    def test_insert_and_fetch(self, store):
        summary = PeriodSummary(
            timestamp=NOW,
            period_type=PeriodType.HOURLY,
            total_queries=15,
            blocked_queries=5,
            allowed_queries=10,
            unique_domains=2,
            unique_sources=1,
            top_threats=[TopThreat(domain="bad.example.com", count=5, category="Malware")],
            geographic_distribution=[GeoBucket(location="US", count=15)],
        )
        rows = [GeoAnalyticsRow(timestamp=NOW, country="US", queries=15, blocked=5)]
        assert store.insert_summary(summary, rows) == 2

        [loaded] = store.fetch_summaries(PeriodType.HOURLY, NOW - timedelta(hours=1), NOW)
        assert loaded == summary
        assert store.fetch_summaries(PeriodType.DAILY, NOW - timedelta(hours=1), NOW) == []
        assert store.fetch_geo_analytics()[0].country == "US"

    def test_duplicate_period_is_rejected_atomically(self, store):
        summary = PeriodSummary(timestamp=NOW, period_type=PeriodType.HOURLY)
        store.insert_summary(summary)
        with pytest.raises(PersistenceError):
            store.insert_summary(summary, [GeoAnalyticsRow(timestamp=NOW, country="US")])
        assert store.fetch_geo_analytics() == []


def test_job_logs(store):
    store.log_job(JobLog(job_type=JobType.REALTIME, records_processed=3, duration_ms=12))
    store.log_job(JobLog(job_type=JobType.DAILY, success=False, error="No hourly summaries found"))
    latest, earlier = store.fetch_job_logs()
    assert latest.job_type == JobType.DAILY
    assert latest.success is False
    assert latest.error == "No hourly summaries found"
    assert earlier.records_processed == 3


def test_sqlite_store_implements_every_hot_store_method():
    assert "fetch_geo_analytics" in HotStore.__abstractmethods__
    for name in HotStore.__abstractmethods__:
        assert getattr(SQLiteHotStore, name) is not getattr(HotStore, name)

import pytest

from dns_security_soc.analytics import dns_error_taxonomy, nameserver_reliability, resolution_chains
from dns_security_soc.main import parse_args
from dns_security_soc.models import (
    ArchiveStats,
    DashboardData,
    HotStoreStats,
    JobResult,
    JobType,
    LiveSource,
    RetentionStats,
    StoredSource,
)
from dns_security_soc.output import StdoutHandler

from conftest import make_record


def test_emit_job(capsys):
    StdoutHandler().emit_job(JobType.HOURLY, JobResult(processed=120, stored=3, duration_ms=42))
    out = capsys.readouterr().out
    assert "hourly job" in out
    assert "processed: 120 | stored: 3 | duration: 42ms" in out


def test_emit_retention(capsys):
    stats = RetentionStats(
        hot_storage=HotStoreStats(records=10),
        cold_storage=ArchiveStats(total_files=2, oldest_date="2025-01-01", newest_date="2025-03-01"),
        total_retention_days=73,
    )
    StdoutHandler().emit_retention(stats)
    out = capsys.readouterr().out
    assert "10 records" in out
    assert "2025-01-01 .. 2025-03-01" in out
    assert "73 days" in out


def test_emit_report(capsys):
    records = [make_record(
        domain="a.example.com",
        cnames=["b.example.com"],
        resolved_ips=["1.2.3.4"],
        authoritative_nameserver_ips=["198.51.100.1"],
        ede_errors=["15"],
    )]
    dashboard = DashboardData(queries=records, source=LiveSource(range="24h", data_age_minutes=1))
    StdoutHandler().emit_report(
        dashboard,
        resolution_chains(records),
        nameserver_reliability(records),
        dns_error_taxonomy(records),
        [],
    )
    out = capsys.readouterr().out
    assert "source: live | records: 1 | data age: 1 min" in out
    assert "a.example.com -> b.example.com -> 1.2.3.4" in out
    assert "198.51.100.1" in out
    assert "EDE-15: Blocked" in out


def test_emit_report_empty(capsys):
    StdoutHandler().emit_report(DashboardData(source=StoredSource(range="90d")), [], [], [], [])
    out = capsys.readouterr().out
    assert "No data available" in out
    assert "data age: - min" in out


def test_parse_args():
    assert parse_args(["realtime"]).command == "realtime"
    args = parse_args(["report", "--range", "7d"])
    assert (args.command, args.range_) == ("report", "7d")
    with pytest.raises(SystemExit):
        parse_args(["report", "--range", "1y"])

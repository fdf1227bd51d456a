from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from dns_security_soc.config import Settings
from dns_security_soc.errors import SourceUnavailable
from dns_security_soc.models import CanonicalQueryRecord
from dns_security_soc.object_store import LocalObjectStore
from dns_security_soc.sqlite_store import SQLiteHotStore
from dns_security_soc.telemetry import TelemetryGroup

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_record(**overrides: Any) -> CanonicalQueryRecord:
    fields: dict[str, Any] = {
        "timestamp": NOW - timedelta(minutes=1),
        "domain": "example.com",
        "count": 1,
    }
    fields.update(overrides)
    return CanonicalQueryRecord(**fields)


def group(count: int = 1, **dimensions: Any) -> TelemetryGroup:
    return TelemetryGroup(count=count, dimensions=dimensions)


class FakeTelemetry:
    """Stands in for TelemetryClient; each fetch returns its preset groups."""

    def __init__(self, **groups: list[TelemetryGroup]) -> None:
        self.groups = groups
        self.fail: set[str] = set()
        self.calls: list[tuple[str, datetime, datetime]] = []

    async def _fetch(self, name: str, start: datetime, end: datetime) -> list[TelemetryGroup]:
        self.calls.append((name, start, end))
        if name in self.fail or "all" in self.fail:
            raise SourceUnavailable(f"{name} unavailable")
        return list(self.groups.get(name, []))

    async def fetch_security_telemetry(self, start, end, limit=None, filters=None):
        return await self._fetch("security", start, end)

    async def fetch_category_metrics(self, start, end, limit=1000):
        return await self._fetch("category", start, end)

    async def fetch_geo_metrics(self, start, end, limit=1000):
        return await self._fetch("geo", start, end)

    async def fetch_top_domains(self, start, end, limit=100):
        return await self._fetch("domains", start, end)

    async def fetch_blocked_queries(self, start, end, limit=1000):
        return await self._fetch("blocked", start, end)


@pytest.fixture
def config(tmp_path) -> Settings:
    return Settings(
        hot_store_path=str(tmp_path / "hot.db"),
        archive_path=str(tmp_path / "archive"),
        pipeline_endpoint="",
        telemetry_retry_base_delay=0.0,
    )


@pytest.fixture
def store(config) -> SQLiteHotStore:
    return SQLiteHotStore(config)


@pytest.fixture
def object_store(config) -> LocalObjectStore:
    return LocalObjectStore(config.archive_path)


@pytest.fixture
def telemetry() -> FakeTelemetry:
    return FakeTelemetry()

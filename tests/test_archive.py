import asyncio
import gzip
import json
from datetime import timedelta

import httpx
import pytest

from dns_security_soc.archive_reader import ArchiveReader, partition_date
from dns_security_soc.archive_writer import (
    ArchiveWriter,
    DeliveryTransport,
    HttpPipelineTransport,
    ObjectStoreTransport,
    build_transport,
)
from dns_security_soc.envelope import to_envelope
from dns_security_soc.errors import ArchiveDeliveryError

from conftest import NOW, make_record

PREFIX = "dns/security/event_date="


class FailingTransport(DeliveryTransport):
    async def send(self, events):
        raise ArchiveDeliveryError("pipeline down")


def write_partition(object_store, key, lines):
    object_store.put(key, gzip.compress(("\n".join(lines) + "\n").encode()))


class TestArchiveWriter:
    def test_not_configured_skips_everything(self):
        writer = ArchiveWriter(None)
        result = asyncio.run(writer.stream([make_record(), make_record()]))
        assert (result.sent, result.skipped) == (0, 2)

    def test_empty_input(self, object_store):
        writer = ArchiveWriter(ObjectStoreTransport(object_store))
        result = asyncio.run(writer.stream([]))
        assert (result.sent, result.skipped) == (0, 0)

    def test_transport_failure_is_swallowed(self):
        writer = ArchiveWriter(FailingTransport())
        result = asyncio.run(writer.stream([make_record()] * 3))
        assert (result.sent, result.skipped) == (0, 3)

    def test_partitions_by_date_and_hour(self, object_store):
        writer = ArchiveWriter(ObjectStoreTransport(object_store, PREFIX))
        records = [
            make_record(domain="a.example.com", timestamp=NOW - timedelta(minutes=5)),
            make_record(domain="b.example.com", timestamp=NOW - timedelta(hours=2)),
        ]
        result = asyncio.run(writer.stream(records))
        assert (result.sent, result.skipped) == (2, 0)

        keys = [o.key for o in object_store.list(PREFIX, 1000)]
        assert len(keys) == 2
        assert any(k.startswith(f"{PREFIX}2025-03-15/hr=11/") for k in keys)
        assert any(k.startswith(f"{PREFIX}2025-03-15/hr=10/") for k in keys)
        assert all(k.endswith(".ndjson.gz") for k in keys)

    def test_stream_batches_totals(self, object_store):
        writer = ArchiveWriter(ObjectStoreTransport(object_store, PREFIX))
        result = asyncio.run(writer.stream_batches([[make_record()], [make_record(), make_record()], []]))
        assert result.total_sent == 3
        assert result.total_skipped == 0
        assert result.batches_processed == 3

    def test_http_pipeline_posts_json_array(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200)

        transport = HttpPipelineTransport(
            "https://pipeline.test/ingest", token="secret", transport=httpx.MockTransport(handler)
        )
        result = asyncio.run(ArchiveWriter(transport).stream([make_record(domain="a.example.com")]))
        assert result.sent == 1
        assert seen["auth"] == "Bearer secret"
        assert seen["body"][0]["query"]["name"] == "a.example.com"

    def test_http_pipeline_error_reports_skipped(self):
        transport = HttpPipelineTransport(
            "https://pipeline.test/ingest",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        result = asyncio.run(ArchiveWriter(transport).stream([make_record()]))
        assert (result.sent, result.skipped) == (0, 1)

    def test_build_transport(self, config):
        assert isinstance(build_transport(config), ObjectStoreTransport)
        assert build_transport(config.model_copy(update={"archive_path": ""})) is None
        piped = config.model_copy(update={"pipeline_endpoint": "https://pipeline.test"})
        assert isinstance(build_transport(piped), HttpPipelineTransport)


class TestArchiveReader:
    @pytest.fixture
    def reader(self, object_store, config):
        return ArchiveReader(object_store, config)

    def test_not_configured_returns_empty(self, config):
        reader = ArchiveReader(None, config.model_copy(update={"archive_path": ""}))
        assert reader.query_range(NOW - timedelta(days=30), NOW) == []
        assert reader.get_stats().total_files == 0

    def test_no_matching_partitions_returns_empty(self, reader, object_store):
        old = make_record(timestamp=NOW - timedelta(days=60))
        write_partition(object_store, f"{PREFIX}2025-01-14/hr=12/x.ndjson.gz", [json.dumps(to_envelope(old))])
        assert reader.query_range(NOW - timedelta(days=20), NOW - timedelta(days=10)) == []

    def test_malformed_line_is_skipped(self, reader, object_store):
        ts = NOW - timedelta(days=10)
        good = [json.dumps(to_envelope(make_record(domain=f"d{i}.example.com", timestamp=ts))) for i in range(2)]
        write_partition(
            object_store,
            f"{PREFIX}2025-03-05/hr=12/a.ndjson.gz",
            [good[0], "{not json", "42", good[1]],
        )
        records = reader.query_range(NOW - timedelta(days=11), NOW - timedelta(days=9))
        assert sorted(r.domain for r in records) == ["d0.example.com", "d1.example.com"]

    def test_unreadable_object_is_skipped(self, reader, object_store):
        ts = NOW - timedelta(days=10)
        object_store.put(f"{PREFIX}2025-03-05/hr=11/broken.ndjson.gz", b"not gzip")
        write_partition(
            object_store,
            f"{PREFIX}2025-03-05/hr=12/ok.ndjson.gz",
            [json.dumps(to_envelope(make_record(timestamp=ts)))],
        )
        assert len(reader.query_range(NOW - timedelta(days=11), NOW - timedelta(days=9))) == 1

    def test_corrupt_deflate_body_is_skipped(self, reader, object_store):
        ts = NOW - timedelta(days=10)
        data = bytearray(gzip.compress(b"x" * 5000))
        for i in range(10, 30):
            data[i] ^= 0xFF
        object_store.put(f"{PREFIX}2025-03-05/hr=11/corrupt.ndjson.gz", bytes(data))
        write_partition(
            object_store,
            f"{PREFIX}2025-03-05/hr=12/ok.ndjson.gz",
            [json.dumps(to_envelope(make_record(timestamp=ts)))],
        )
        assert len(reader.query_range(NOW - timedelta(days=11), NOW - timedelta(days=9))) == 1

    def test_invalid_utf8_line_only_drops_that_line(self, reader, object_store):
        ts = NOW - timedelta(days=10)
        good = [
            json.dumps(to_envelope(make_record(domain=f"d{i}.example.com", timestamp=ts))).encode()
            for i in range(2)
        ]
        body = good[0] + b"\n\xff\xfe garbage\n" + good[1] + b"\n"
        object_store.put(f"{PREFIX}2025-03-05/hr=12/mixed.ndjson.gz", gzip.compress(body))
        records = reader.query_range(NOW - timedelta(days=11), NOW - timedelta(days=9))
        assert sorted(r.domain for r in records) == ["d0.example.com", "d1.example.com"]

    def test_filters_and_limit(self, reader, object_store):
        ts = NOW - timedelta(days=10)
        lines = [
            json.dumps(to_envelope(make_record(domain=f"bad{i}.example.com", timestamp=ts, blocked=True)))
            for i in range(5)
        ] + [json.dumps(to_envelope(make_record(domain="good.example.org", timestamp=ts)))]
        write_partition(object_store, f"{PREFIX}2025-03-05/hr=12/a.ndjson.gz", lines)

        start, end = NOW - timedelta(days=11), NOW - timedelta(days=9)
        assert len(reader.query_range(start, end, blocked=True)) == 5
        assert [r.domain for r in reader.query_range(start, end, domain="example.org")] == ["good.example.org"]
        assert len(reader.query_range(start, end, limit=3)) == 3

    def test_records_outside_window_are_dropped(self, reader, object_store):
        day = NOW - timedelta(days=10)
        lines = [
            json.dumps(to_envelope(make_record(domain="early.example.com", timestamp=day.replace(hour=1)))),
            json.dumps(to_envelope(make_record(domain="late.example.com", timestamp=day.replace(hour=20)))),
        ]
        write_partition(object_store, f"{PREFIX}2025-03-05/hr=01/a.ndjson.gz", lines)
        records = reader.query_range(day.replace(hour=12), NOW)
        assert [r.domain for r in records] == ["late.example.com"]

    def test_partition_cap(self, reader, object_store, config):
        reader.config = config.model_copy(update={"archive_max_partitions": 2})
        ts = NOW - timedelta(days=10)
        for hr in range(4):
            write_partition(
                object_store,
                f"{PREFIX}2025-03-05/hr={hr:02d}/a.ndjson.gz",
                [json.dumps(to_envelope(make_record(timestamp=ts)))],
            )
        assert len(reader.query_range(NOW - timedelta(days=11), NOW)) == 2

    def test_stats(self, reader, object_store):
        write_partition(object_store, f"{PREFIX}2025-03-01/hr=00/a.ndjson.gz", ["{}"])
        write_partition(object_store, f"{PREFIX}2025-03-03/hr=00/b.ndjson.gz", ["{}"])
        stats = reader.get_stats()
        assert stats.total_files == 2
        assert stats.oldest_date == "2025-03-01"
        assert stats.newest_date == "2025-03-03"
        assert stats.total_size_bytes > 0


def test_partition_date():
    assert partition_date(f"{PREFIX}2025-03-05/hr=12/a.ndjson.gz") == "2025-03-05"
    assert partition_date("other/key.gz") is None

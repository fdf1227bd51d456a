"""Range scans over the partitioned cold archive."""

from __future__ import annotations

import gzip
import json
import re
import zlib
from datetime import datetime

import structlog
from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .envelope import from_envelope
from .errors import ArchiveReadError
from .models import ArchiveStats, CanonicalQueryRecord, ObjectInfo, as_utc
from .object_store import LocalObjectStore, ObjectStore

log = structlog.get_logger()

_DATE_RE = re.compile(r"event_date=(\d{4}-\d{2}-\d{2})")


def partition_date(key: str) -> str | None:
    match = _DATE_RE.search(key)
    return match.group(1) if match else None


class ArchiveReader:
    def __init__(self, store: ObjectStore | None = None, config: Settings | None = None) -> None:
        self.config = config or default_settings
        if store is None and self.config.archive_configured:
            store = LocalObjectStore(self.config.archive_path)
        self.store = store

    def _list(self) -> list[ObjectInfo]:
        return self.store.list(self.config.archive_prefix, self.config.archive_list_limit)

    def _read_object(self, key: str) -> list[bytes]:
        try:
            raw = gzip.decompress(self.store.get(key))
        except (KeyError, OSError, EOFError, zlib.error) as exc:
            raise ArchiveReadError(f"unreadable archive object: {exc}", details={"key": key}) from exc
        return [line for line in raw.split(b"\n") if line.strip()]

    def query_range(
        self,
        start: datetime,
        end: datetime,
        domain: str | None = None,
        blocked: bool | None = None,
        limit: int | None = None,
        include_end: bool = True,
    ) -> list[CanonicalQueryRecord]:
        """Records in [start, end] (or [start, end) without `include_end`) from at
        most archive_max_partitions partitions."""
        if self.store is None:
            log.info("archive_not_configured")
            return []

        start, end = as_utc(start), as_utc(end)
        first_day, last_day = start.date().isoformat(), end.date().isoformat()

        try:
            listed = self._list()
        except OSError:
            log.exception("archive_list_failed")
            return []

        relevant = [
            obj for obj in listed
            if (d := partition_date(obj.key)) is not None and first_day <= d <= last_day
        ]
        log.info("archive_scan_started", listed=len(listed), matching=len(relevant))

        results: list[CanonicalQueryRecord] = []
        for obj in relevant[: self.config.archive_max_partitions]:
            try:
                lines = self._read_object(obj.key)
            except ArchiveReadError as exc:
                log.warning("archive_object_skipped", **exc.to_dict())
                continue

            for line in lines:
                try:
                    record = from_envelope(json.loads(line.decode("utf-8")))
                except (UnicodeDecodeError, json.JSONDecodeError, ValidationError, AttributeError) as exc:
                    log.warning("archive_line_skipped", key=obj.key, error=str(exc))
                    continue

                if record.timestamp < start or record.timestamp > end:
                    continue
                if not include_end and record.timestamp == end:
                    continue
                if domain and domain not in record.domain:
                    continue
                if blocked is not None and record.blocked != blocked:
                    continue

                results.append(record)
                if limit and len(results) >= limit:
                    return results

        return results

    def get_stats(self) -> ArchiveStats:
        if self.store is None:
            return ArchiveStats()
        try:
            listed = self._list()
        except OSError:
            log.exception("archive_stats_failed")
            return ArchiveStats()

        dates = sorted(d for obj in listed if (d := partition_date(obj.key)) is not None)
        return ArchiveStats(
            total_files=len(listed),
            oldest_date=dates[0] if dates else None,
            newest_date=dates[-1] if dates else None,
            total_size_bytes=sum(obj.size for obj in listed),
        )

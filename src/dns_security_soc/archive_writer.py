"""Best-effort archival of canonical records to the cold tier."""

from __future__ import annotations

import gzip
import json
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any

import httpx
import structlog

from .config import Settings, settings as default_settings
from .envelope import to_envelope
from .errors import ArchiveDeliveryError
from .models import BatchStreamResult, CanonicalQueryRecord, StreamResult
from .object_store import LocalObjectStore, ObjectStore

log = structlog.get_logger()


class DeliveryTransport(ABC):
    @abstractmethod
    async def send(self, events: list[dict[str, Any]]) -> None:
        """Deliver a batch of envelopes. Raises ArchiveDeliveryError on failure."""


class HttpPipelineTransport(DeliveryTransport):
    """POST envelopes as a JSON array to a streaming pipeline endpoint."""

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def send(self, events: list[dict[str, Any]]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout, headers=headers
            ) as client:
                resp = await client.post(self.endpoint, json=events)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ArchiveDeliveryError(
                f"pipeline delivery failed: {exc}", details={"endpoint": self.endpoint}
            ) from exc


class ObjectStoreTransport(DeliveryTransport):
    """Write one gzip NDJSON partition per event date and hour."""

    def __init__(self, store: ObjectStore, prefix: str = "dns/security/event_date=") -> None:
        self.store = store
        self.prefix = prefix

    def partition_key(self, timestamp: str) -> str:
        # timestamp is to_iso() text: YYYY-MM-DDTHH:...
        return f"{self.prefix}{timestamp[:10]}/hr={timestamp[11:13]}/{uuid.uuid4().hex}.ndjson.gz"

    async def send(self, events: list[dict[str, Any]]) -> None:
        partitions: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
        for event in events:
            ts = event["timestamp"]
            partitions[(ts[:10], ts[11:13])].append(event)

        for events_in_partition in partitions.values():
            key = self.partition_key(events_in_partition[0]["timestamp"])
            body = "\n".join(json.dumps(e) for e in events_in_partition) + "\n"
            try:
                self.store.put(key, gzip.compress(body.encode()))
            except OSError as exc:
                raise ArchiveDeliveryError(
                    f"archive write failed: {exc}", details={"key": key}
                ) from exc
            log.debug("archive_partition_written", key=key, events=len(events_in_partition))


def build_transport(config: Settings | None = None) -> DeliveryTransport | None:
    """Pipeline endpoint wins over a direct archive path; None when neither is set."""
    config = config or default_settings
    if config.pipeline_endpoint:
        return HttpPipelineTransport(
            config.pipeline_endpoint,
            token=config.pipeline_token,
            timeout=config.telemetry_timeout_seconds,
        )
    if config.archive_configured:
        return ObjectStoreTransport(LocalObjectStore(config.archive_path), config.archive_prefix)
    return None


class ArchiveWriter:
    def __init__(self, transport: DeliveryTransport | None = None) -> None:
        self.transport = transport

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> ArchiveWriter:
        return cls(build_transport(config))

    @property
    def configured(self) -> bool:
        return self.transport is not None

    async def stream(self, records: list[CanonicalQueryRecord]) -> StreamResult:
        """Send records to the archive. Never raises."""
        if self.transport is None:
            log.info("archive_not_configured", skipped=len(records))
            return StreamResult(sent=0, skipped=len(records))
        if not records:
            return StreamResult()

        try:
            events = [to_envelope(r) for r in records]
            await self.transport.send(events)
        except Exception:
            log.exception("archive_stream_failed", records=len(records))
            return StreamResult(sent=0, skipped=len(records))

        log.info("archive_stream_complete", sent=len(events))
        return StreamResult(sent=len(events), skipped=0)

    async def stream_batches(self, batches: list[list[CanonicalQueryRecord]]) -> BatchStreamResult:
        result = BatchStreamResult()
        for batch in batches:
            r = await self.stream(batch)
            result.total_sent += r.sent
            result.total_skipped += r.skipped
            result.batches_processed += 1
        return result

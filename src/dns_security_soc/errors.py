"""Error taxonomy for ingestion, storage and query routing.

Each error has a fixed recovery rule; none of them reach callers of the
query router except through the source label on a result:

    SourceUnavailable     telemetry fetch exhausted its retries -> stored fallback
    PersistenceError      hot-store write failed -> batch skipped, ingestion continues
    ArchiveDeliveryError  archive transport failed -> swallowed, hot store is authoritative
    ArchiveReadError      archive object or line unreadable -> skipped, scan continues
    NoDataAvailable       no tier holds matching records -> explicit empty result
"""

from __future__ import annotations

from typing import Any


class DnsSocError(Exception):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, "details": self.details}


class SourceUnavailable(DnsSocError):
    pass


class PersistenceError(DnsSocError):
    pass


class ArchiveDeliveryError(DnsSocError):
    pass


class ArchiveReadError(DnsSocError):
    pass


class NoDataAvailable(DnsSocError):
    pass

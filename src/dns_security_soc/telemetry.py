"""Client for the gateway analytics GraphQL API (the telemetry source)."""

from __future__ import annotations

import asyncio
import json
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import httpx
import structlog
from pydantic import BaseModel, Field, field_validator

from .classification import load_tables
from .config import Settings, settings as default_settings
from .errors import SourceUnavailable

log = structlog.get_logger()

GROUPS_FIELD = "gatewayResolverQueriesAdaptiveGroups"

SECURITY_DIMENSIONS = [
    "queryName",
    "datetime",
    "resolverDecision",
    "categoryNames",
    "policyName",
    "matchedApplicationName",
    "matchedIndicatorFeedNames",
    "resolvedIps",
    "resolvedIpCountries",
    "cnames",
    "authoritativeNameserverIps",
    "resourceRecordTypes",
    "customResolverCacheStatus",
    "customResolverResponseCode",
    "internalDnsRCode",
    "edeErrors",
    "srcIpCountry",
    "locationName",
]
CATEGORY_DIMENSIONS = ["categoryNames", "resolverDecision", "matchedIndicatorFeedNames"]
GEO_DIMENSIONS = ["srcIpCountry", "resolverDecision", "locationName", "categoryNames"]
TOP_DOMAIN_DIMENSIONS = [
    "queryName",
    "categoryNames",
    "matchedApplicationName",
    "resolverDecision",
    "resolvedIps",
    "resolvedIpCountries",
]
BLOCKED_DIMENSIONS = [
    "queryName",
    "datetime",
    "categoryNames",
    "policyName",
    "matchedApplicationName",
    "matchedIndicatorFeedNames",
    "resolverDecision",
    "srcIpCountry",
    "locationName",
]


class TelemetryGroup(BaseModel):
    """One grouped count returned by the telemetry source."""

    count: int = 1
    dimensions: dict[str, Any] = Field(default_factory=dict)

    @field_validator("count", mode="before")
    @classmethod
    def _missing_count(cls, v: Any) -> Any:
        return 1 if v is None else v


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_query(
    name: str,
    dimensions: list[str],
    order_by: str,
    filters: dict[str, Any] | None = None,
) -> str:
    extra = "\n".join(f"{key}: {json.dumps(value)}" for key, value in (filters or {}).items())
    fields = "\n".join(dimensions)
    return f"""
query {name}($accountTag: string!, $startTime: string!, $endTime: string!, $limit: int!) {{
  viewer {{
    accounts(filter: {{ accountTag: $accountTag }}) {{
      {GROUPS_FIELD}(
        filter: {{
          datetime_geq: $startTime
          datetime_leq: $endTime
          {extra}
        }}
        limit: $limit
        orderBy: [{order_by}]
      ) {{
        count
        dimensions {{
          {fields}
        }}
      }}
    }}
  }}
}}
"""


class TelemetryClient:
    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or default_settings
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.config.telemetry_timeout_seconds,
            headers={
                "Authorization": f"Bearer {self.config.api_token}",
                "Content-Type": "application/json",
            },
        )

    def _backoff(self, attempt: int) -> float:
        base = self.config.telemetry_retry_base_delay
        return base * (2 ** (attempt - 1)) * (0.5 + random.random() * 0.5)

    async def _execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """POST a query, retrying with exponential backoff plus jitter."""
        max_attempts = max(1, self.config.telemetry_max_retries)
        attempt = 0
        async with self._client() as client:
            while True:
                attempt += 1
                started = time.monotonic()
                try:
                    resp = await client.post(
                        self.config.graphql_url,
                        json={"query": query, "variables": variables},
                    )
                    resp.raise_for_status()
                    body = resp.json()
                    errors = body.get("errors") or []
                    if errors:
                        messages = ", ".join(str(e.get("message", e)) for e in errors)
                        raise SourceUnavailable(f"GraphQL errors: {messages}")
                    log.debug(
                        "telemetry_query_complete",
                        elapsed_ms=round((time.monotonic() - started) * 1000),
                    )
                    return body
                except (httpx.HTTPError, ValueError, SourceUnavailable) as exc:
                    log.warning(
                        "telemetry_query_failed",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(exc),
                    )
                    if attempt >= max_attempts:
                        raise SourceUnavailable(
                            f"telemetry source unavailable after {attempt} attempts: {exc}",
                            details={"attempts": attempt},
                        ) from exc
                    await self._sleep(self._backoff(attempt))

    async def _groups(
        self,
        name: str,
        dimensions: list[str],
        order_by: str,
        start: datetime,
        end: datetime,
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[TelemetryGroup]:
        query = build_query(name, dimensions, order_by, filters)
        variables = {
            "accountTag": self.config.account_id,
            "startTime": _iso(start),
            "endTime": _iso(end),
            "limit": limit,
        }
        body = await self._execute(query, variables)
        viewer = (body.get("data") or {}).get("viewer") or {}
        accounts = viewer.get("accounts") or [{}]
        groups = accounts[0].get(GROUPS_FIELD) or []
        return [TelemetryGroup.model_validate(g) for g in groups]

    async def fetch_security_telemetry(
        self,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[TelemetryGroup]:
        """Full-dimension query groups for the window, newest first."""
        return await self._groups(
            "GetDnsSecurityTelemetry",
            SECURITY_DIMENSIONS,
            "datetime_DESC",
            start,
            end,
            limit or self.config.telemetry_limit,
            filters,
        )

    async def fetch_category_metrics(
        self, start: datetime, end: datetime, limit: int = 1000
    ) -> list[TelemetryGroup]:
        return await self._groups(
            "GetDnsCategoryMetrics", CATEGORY_DIMENSIONS, "count_DESC", start, end, limit
        )

    async def fetch_geo_metrics(
        self, start: datetime, end: datetime, limit: int = 1000
    ) -> list[TelemetryGroup]:
        return await self._groups(
            "GetDnsGeoMetrics", GEO_DIMENSIONS, "count_DESC", start, end, limit
        )

    async def fetch_top_domains(
        self, start: datetime, end: datetime, limit: int = 100
    ) -> list[TelemetryGroup]:
        return await self._groups(
            "GetTopDomains", TOP_DOMAIN_DIMENSIONS, "count_DESC", start, end, limit
        )

    async def fetch_blocked_queries(
        self, start: datetime, end: datetime, limit: int = 1000
    ) -> list[TelemetryGroup]:
        return await self._groups(
            "GetBlockedQueries",
            BLOCKED_DIMENSIONS,
            "datetime_DESC",
            start,
            end,
            limit,
            filters={"resolverDecision_in": sorted(load_tables().blocked_decisions, key=int)},
        )

    async def check_connectivity(self) -> bool:
        """Fetch a small recent window; True when any rows come back."""
        now = datetime.now(timezone.utc)
        try:
            groups = await self.fetch_security_telemetry(now - timedelta(hours=1), now, limit=10)
        except SourceUnavailable:
            log.exception("telemetry_connectivity_check_failed")
            return False
        log.info("telemetry_connectivity_check", rows=len(groups))
        return len(groups) > 0

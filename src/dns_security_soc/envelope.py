"""Archive envelope format.

One envelope per canonical record, serialised as a single NDJSON line:

    {
      "timestamp": "...", "event_type": "dns_query", "event_version": "1.0",
      "query":    {name, type, decision, count, cnames, resolved_ips, ...},
      "source":   {ip_country, location, application},
      "security": {blocked, threat_category, risk_score},
      "metadata": {ingested_at, source_system, data_version}
    }
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .models import CanonicalQueryRecord, to_iso, utcnow

EVENT_TYPE = "dns_query"
EVENT_VERSION = "1.0"
SOURCE_SYSTEM = "dns-security-soc"
DATA_VERSION = "1.0"


def to_envelope(record: CanonicalQueryRecord, ingested_at: datetime | None = None) -> dict[str, Any]:
    return {
        "timestamp": to_iso(record.timestamp),
        "event_type": EVENT_TYPE,
        "event_version": EVENT_VERSION,
        "query": {
            "name": record.domain,
            "type": record.query_type,
            "decision": record.resolver_decision,
            "count": record.count,
            "cnames": list(record.cnames),
            "resolved_ips": list(record.resolved_ips),
            "resolved_ip_countries": list(record.resolved_ip_countries),
            "authoritative_nameserver_ips": list(record.authoritative_nameserver_ips),
            "cache_status": record.cache_status,
            "ede_errors": list(record.ede_errors),
            "internal_dns_rcode": record.internal_dns_rcode,
            "custom_resolver_response_code": record.custom_resolver_response_code,
        },
        "source": {
            "ip_country": record.source_location,
            "location": record.location_name,
            "application": record.application_name,
        },
        "security": {
            "blocked": record.blocked,
            "threat_category": record.threat_category,
            "risk_score": record.risk_score,
        },
        "metadata": {
            "ingested_at": to_iso(ingested_at or utcnow()),
            "source_system": SOURCE_SYSTEM,
            "data_version": DATA_VERSION,
        },
    }


def from_envelope(event: dict[str, Any]) -> CanonicalQueryRecord:
    """Rebuild a canonical record. Raises ValidationError on malformed envelopes."""
    query = event.get("query") or {}
    source = event.get("source") or {}
    security = event.get("security") or {}
    return CanonicalQueryRecord(
        timestamp=event.get("timestamp"),
        domain=query.get("name") or "unknown",
        query_type=query.get("type") or "A",
        resolver_decision=str(query.get("decision") or "0"),
        count=query.get("count") or 1,
        cnames=query.get("cnames") or [],
        resolved_ips=query.get("resolved_ips") or [],
        resolved_ip_countries=query.get("resolved_ip_countries") or [],
        authoritative_nameserver_ips=query.get("authoritative_nameserver_ips") or [],
        cache_status=query.get("cache_status"),
        ede_errors=query.get("ede_errors") or [],
        internal_dns_rcode=query.get("internal_dns_rcode"),
        custom_resolver_response_code=query.get("custom_resolver_response_code"),
        source_location=source.get("ip_country") or "Unknown",
        location_name=source.get("location"),
        application_name=source.get("application"),
        blocked=bool(security.get("blocked", False)),
        threat_category=security.get("threat_category"),
        risk_score=security.get("risk_score") or 0,
    )

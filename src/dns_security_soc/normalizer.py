from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from .classification import KeywordClassifier, ThreatClassifier
from .models import CanonicalQueryRecord
from .telemetry import TelemetryGroup

log = structlog.get_logger()


def _as_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and v != ""]
    return [str(value)]


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def normalize_group(
    group: TelemetryGroup,
    classifier: ThreatClassifier | None = None,
    now: datetime | None = None,
) -> CanonicalQueryRecord:
    """Turn one raw telemetry group into a canonical record."""
    classifier = classifier or KeywordClassifier()
    dims = group.dimensions
    domain = _as_str(dims.get("queryName")) or "unknown"
    decision = _as_str(dims.get("resolverDecision")) or "0"

    blocked = classifier.is_blocked(decision)
    threat_category = classifier.threat_category(_as_list(dims.get("categoryNames")))
    record_types = _as_list(dims.get("resourceRecordTypes"))

    return CanonicalQueryRecord(
        timestamp=dims.get("datetime") or now or datetime.now(timezone.utc),
        domain=domain,
        query_type=record_types[0] if record_types else "A",
        resolver_decision=decision,
        source_location=_as_str(dims.get("srcIpCountry")) or "Unknown",
        location_name=_as_str(dims.get("locationName")),
        count=group.count if group.count and group.count > 0 else 1,
        threat_category=threat_category,
        risk_score=classifier.risk_score(blocked, threat_category),
        blocked=blocked,
        application_name=_as_str(dims.get("matchedApplicationName"))
        or classifier.infer_application(domain),
        cnames=_as_list(dims.get("cnames")),
        resolved_ips=_as_list(dims.get("resolvedIps")),
        resolved_ip_countries=_as_list(dims.get("resolvedIpCountries")),
        authoritative_nameserver_ips=_as_list(dims.get("authoritativeNameserverIps")),
        cache_status=_as_str(dims.get("customResolverCacheStatus")),
        ede_errors=_as_list(dims.get("edeErrors")),
        internal_dns_rcode=_as_str(dims.get("internalDnsRCode")),
        custom_resolver_response_code=_as_str(dims.get("customResolverResponseCode")),
    )


def normalize_groups(
    groups: list[TelemetryGroup], classifier: ThreatClassifier | None = None
) -> list[CanonicalQueryRecord]:
    """Normalize a telemetry window, dropping groups that fail validation."""
    classifier = classifier or KeywordClassifier()
    now = datetime.now(timezone.utc)
    records = []
    for group in groups:
        try:
            records.append(normalize_group(group, classifier, now))
        except ValidationError:
            log.warning("telemetry_group_invalid", dimensions=group.dimensions)
    log.info("normalized_telemetry", groups=len(groups), records=len(records))
    return records

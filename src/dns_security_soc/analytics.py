"""Derived network analytics over canonical records.

Response times and TTLs in resolution chains are estimates; the telemetry
source reports neither per hop.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from .classification import load_tables
from .models import (
    CanonicalQueryRecord,
    DnsErrorStat,
    NameserverStats,
    ResolutionChain,
    ResolutionStep,
    SecurityStatus,
)
from .yaml_config import get_error_descriptions

TOP_N = 20
MAX_ERROR_EXAMPLES = 5
MAX_SAFE_STEPS = 5

QUERY_STEP_MS = 10
HOP_STEP_MS = 5
CACHE_HIT_MS = 5
CACHE_MISS_MS = 50


def _nameserver(record: CanonicalQueryRecord, index: int) -> str:
    ips = record.authoritative_nameserver_ips
    return ips[index] if index < len(ips) and ips[index] else "unknown"


def _build_chain(record: CanonicalQueryRecord) -> list[ResolutionStep]:
    cnames = list(record.cnames)
    ips = list(record.resolved_ips)
    cached = record.cache_status == "hit"

    steps = [ResolutionStep(
        step=1,
        record_type="QUERY",
        query=record.domain,
        response=[cnames[0]] if cnames else ips,
        response_time=QUERY_STEP_MS,
        authoritative_server=_nameserver(record, 0),
        is_cached=cached,
    )]
    for i, cname in enumerate(cnames):
        steps.append(ResolutionStep(
            step=i + 2,
            record_type="CNAME",
            query=cname,
            response=[cnames[i + 1]] if i < len(cnames) - 1 else ips,
            response_time=HOP_STEP_MS,
            authoritative_server=_nameserver(record, i),
            is_cached=cached,
        ))
    if ips:
        steps.append(ResolutionStep(
            step=len(steps) + 1,
            record_type="AAAA" if ":" in ips[0] else "A",
            query=cnames[-1] if cnames else record.domain,
            response=ips,
            response_time=HOP_STEP_MS,
            authoritative_server=_nameserver(record, len(cnames)),
            is_cached=cached,
        ))
    return steps


def _security_status(record: CanonicalQueryRecord, steps: list[ResolutionStep]) -> SecurityStatus:
    if record.blocked:
        return SecurityStatus.BLOCKED
    markers = load_tables().suspicious_cname_markers
    if len(steps) > MAX_SAFE_STEPS or any(m in c for c in record.cnames for m in markers):
        return SecurityStatus.SUSPICIOUS
    return SecurityStatus.SAFE


def resolution_chains(records: list[CanonicalQueryRecord]) -> list[ResolutionChain]:
    """Reconstruct CNAME resolution chains, one per (domain, CNAME sequence)."""
    chains: dict[tuple[str, tuple[str, ...]], ResolutionChain] = {}
    for r in records:
        if not r.cnames:
            continue
        key = (r.domain, tuple(r.cnames))
        if key in chains:
            chains[key].query_count += r.count
            continue

        steps = _build_chain(r)
        chains[key] = ResolutionChain(
            domain=r.domain,
            cnames=list(r.cnames),
            final_ips=list(r.resolved_ips),
            total_steps=len(steps),
            total_time=sum(s.response_time for s in steps),
            chain=steps,
            security_status=_security_status(r, steps),
            timestamp=r.timestamp,
            query_count=r.count,
        )

    ordered = sorted(
        chains.values(),
        key=lambda c: (c.security_status == SecurityStatus.SAFE, -c.total_steps, -c.query_count),
    )
    return ordered[:TOP_N]


@dataclass
class _NameserverTally:
    count: int = 0
    observations: int = 0
    total_response_time: int = 0
    countries: dict[str, None] = field(default_factory=dict)
    domains: set[str] = field(default_factory=set)


def nameserver_reliability(records: list[CanonicalQueryRecord]) -> list[NameserverStats]:
    """Per-nameserver volume, with reliability relative to the busiest server."""
    tallies: dict[str, _NameserverTally] = defaultdict(_NameserverTally)
    for r in records:
        for ip in r.authoritative_nameserver_ips:
            if not ip or ip == "unknown":
                continue
            t = tallies[ip]
            t.count += r.count
            t.observations += 1
            t.domains.add(r.domain)
            t.countries.update(dict.fromkeys(r.resolved_ip_countries))
            t.total_response_time += CACHE_HIT_MS if r.cache_status == "hit" else CACHE_MISS_MS

    if not tallies:
        return []

    busiest = max(t.count for t in tallies.values())
    stats = [
        NameserverStats(
            nameserver_ip=ip,
            query_count=t.count,
            countries=list(t.countries),
            avg_response_time=round(t.total_response_time / t.observations) if t.observations else 0,
            reliability_score=min(100, round(t.count / busiest * 100)) if busiest else 0,
            domains_served=len(t.domains),
        )
        for ip, t in tallies.items()
    ]
    stats.sort(key=lambda s: -s.query_count)
    return stats[:TOP_N]


def describe_error(surface: str, code: str) -> str:
    return get_error_descriptions().get(surface, {}).get(code, f"{surface} Error {code}")


def dns_error_taxonomy(records: list[CanonicalQueryRecord]) -> list[DnsErrorStat]:
    """Classify extended errors, internal rcodes and resolver codes by volume."""
    counts: dict[tuple[str, str], int] = defaultdict(int)
    examples: dict[tuple[str, str], list[str]] = defaultdict(list)
    total = 0

    def _tally(key: tuple[str, str], r: CanonicalQueryRecord) -> None:
        counts[key] += r.count
        seen = examples[key]
        if r.domain not in seen and len(seen) < MAX_ERROR_EXAMPLES:
            seen.append(r.domain)

    for r in records:
        total += r.count
        for code in r.ede_errors:
            _tally(("EDE", code), r)
        if r.internal_dns_rcode and r.internal_dns_rcode != "NOERROR":
            _tally(("RCODE", r.internal_dns_rcode), r)
        if r.custom_resolver_response_code and r.custom_resolver_response_code != "0":
            _tally(("RESOLVER", r.custom_resolver_response_code), r)

    stats = [
        DnsErrorStat(
            error_type=surface,
            error_code=code,
            count=count,
            percentage=round(count / total * 100, 2) if total else 0.0,
            description=describe_error(surface, code),
            examples=examples[(surface, code)],
        )
        for (surface, code), count in counts.items()
    ]
    stats.sort(key=lambda s: -s.count)
    return stats[:TOP_N]

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import (
    DashboardData,
    DnsErrorStat,
    JobResult,
    JobType,
    NameserverStats,
    ResolutionChain,
    RetentionStats,
    SecurityStatus,
    ThreatIntelRecord,
)
from .yaml_config import get_output_strings


class OutputHandler(ABC):
    @abstractmethod
    def emit_job(self, job: JobType, result: JobResult) -> None: ...

    @abstractmethod
    def emit_retention(self, stats: RetentionStats) -> None: ...

    @abstractmethod
    def emit_report(
        self,
        dashboard: DashboardData,
        chains: list[ResolutionChain],
        nameservers: list[NameserverStats],
        errors: list[DnsErrorStat],
        threats: list[ThreatIntelRecord],
    ) -> None: ...


class StdoutHandler(OutputHandler):
    def emit_job(self, job: JobType, result: JobResult) -> None:
        strings = get_output_strings()
        print(strings["job_header"].format(job=job.value))
        print(strings["job_template"].format(**result.model_dump()))
        print(strings["footer"])

    def emit_retention(self, stats: RetentionStats) -> None:
        strings = get_output_strings()
        hot, cold = stats.hot_storage, stats.cold_storage
        print(strings["retention_header"])
        print(f"  hot:   {hot.records} records ({hot.oldest or '-'} .. {hot.newest or '-'})")
        print(
            f"  cold:  {cold.total_files} files, {cold.total_size_bytes} bytes "
            f"({cold.oldest_date or '-'} .. {cold.newest_date or '-'})"
        )
        print(f"  total: {stats.total_retention_days} days")
        print(strings["footer"])

    def emit_report(
        self,
        dashboard: DashboardData,
        chains: list[ResolutionChain],
        nameservers: list[NameserverStats],
        errors: list[DnsErrorStat],
        threats: list[ThreatIntelRecord],
    ) -> None:
        strings = get_output_strings()
        source = dashboard.source
        print(strings["report_header"].format(range=source.range))
        print(strings["source_template"].format(
            kind=source.kind,
            records=len(dashboard.queries),
            age=source.data_age_minutes if source.data_age_minutes is not None else "-",
        ))

        if dashboard.is_empty:
            print(strings["no_data_message"])
            print(strings["footer"])
            return

        if threats:
            print(strings["threats_header"])
            for t in threats:
                print(f"  [{t.risk_score:3d}] {t.domain} ({t.category}) queries: {t.total_queries}")

        if chains:
            print(strings["chains_header"])
            for c in chains:
                flag = "" if c.security_status == SecurityStatus.SAFE else f" [{c.security_status.upper()}]"
                hops = " -> ".join([c.domain, *c.cnames, *c.final_ips[:1]])
                print(f"  {hops} (steps: {c.total_steps}, queries: {c.query_count}){flag}")

        if nameservers:
            print(strings["nameservers_header"])
            for ns in nameservers:
                print(
                    f"  {ns.nameserver_ip:39s} queries: {ns.query_count:6d} "
                    f"reliability: {ns.reliability_score:3d} avg: {ns.avg_response_time}ms"
                )

        if errors:
            print(strings["errors_header"])
            for e in errors:
                print(f"  {e.error_type}-{e.error_code}: {e.description} ({e.count}, {e.percentage}%)")
                if e.examples:
                    print(f"             examples: {', '.join(e.examples)}")

        print(strings["footer"])

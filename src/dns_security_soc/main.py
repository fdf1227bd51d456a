from __future__ import annotations

import argparse
import asyncio

import structlog

from .analytics import dns_error_taxonomy, nameserver_reliability, resolution_chains
from .archive_reader import ArchiveReader
from .archive_writer import ArchiveWriter
from .config import settings
from .ingestor import Ingestor
from .logging_config import setup_logging
from .models import JobType
from .output import OutputHandler, StdoutHandler
from .router import DEFAULT_RANGE, RANGES, TieredQueryRouter
from .sqlite_store import SQLiteHotStore
from .telemetry import TelemetryClient

log = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dns-security-soc", description="DNS security telemetry ingestion and reporting"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("realtime", help="Ingest the last few minutes of telemetry")
    sub.add_parser("hourly", help="Write the hourly summary")
    sub.add_parser("daily", help="Roll hourly summaries into a daily summary")
    sub.add_parser("retention", help="Show hot and cold tier retention")
    sub.add_parser("check", help="Check connectivity to the telemetry source")
    report = sub.add_parser("report", help="Print dashboard analytics for a range")
    report.add_argument("--range", dest="range_", default=DEFAULT_RANGE, choices=sorted(RANGES))
    report.add_argument("--top-threats", type=int, default=10)
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    log.info("starting_dns_security_soc", command=args.command, hot_store=settings.hot_store_path)

    store = SQLiteHotStore()
    telemetry = TelemetryClient()
    handlers: list[OutputHandler] = [StdoutHandler()]

    match args.command:
        case "realtime" | "hourly" | "daily":
            job = JobType(args.command)
            ingestor = Ingestor(store, telemetry, ArchiveWriter.from_settings())
            match job:
                case JobType.REALTIME:
                    result = await ingestor.ingest_realtime()
                case JobType.HOURLY:
                    result = await ingestor.aggregate_hourly()
                case JobType.DAILY:
                    result = await ingestor.aggregate_daily()
            for h in handlers:
                h.emit_job(job, result)
            log.info("run_complete", job=job.value, **result.model_dump())

        case "retention":
            router = TieredQueryRouter(store, telemetry, ArchiveReader())
            stats = router.get_retention_stats()
            for h in handlers:
                h.emit_retention(stats)

        case "check":
            ok = await telemetry.check_connectivity()
            print("telemetry source reachable" if ok else "telemetry source unreachable or empty")
            return 0 if ok else 1

        case "report":
            router = TieredQueryRouter(store, telemetry, ArchiveReader())
            dashboard = await router.get_dashboard_data(args.range_)
            queries = dashboard.queries
            for h in handlers:
                h.emit_report(
                    dashboard,
                    resolution_chains(queries),
                    nameserver_reliability(queries),
                    dns_error_taxonomy(queries),
                    router.get_top_threats(args.top_threats),
                )
            log.info("report_complete", range=args.range_, source=dashboard.source.kind, records=len(queries))

    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(settings.log_level, settings.log_json)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

"""Generate an incident report and print it as markdown to stdout.

Usage:
    python -m scripts.run_report --kind weekly
    python -m scripts.run_report --start 2024-05-01 --end 2024-05-31 --area Centro
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from zoneinfo import ZoneInfo

from incident_insights.config import get_settings
from incident_insights.errors import InsightEngineError
from incident_insights.models import Category, ReportKind
from incident_insights.report.formatter import format_report_markdown
from incident_insights.report.scheduler import scheduled_period
from incident_insights.services.engine import build_engine
from incident_insights.services.requests import Filters, ReportRequest

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _build_request(args: argparse.Namespace, tz: ZoneInfo) -> ReportRequest:
    kind = ReportKind(args.kind.upper())
    if kind == ReportKind.CUSTOM:
        if not args.start or not args.end:
            raise SystemExit("--start and --end are required for custom reports")
        start = datetime.fromisoformat(args.start).replace(tzinfo=tz)
        end = datetime.fromisoformat(args.end).replace(tzinfo=tz)
    else:
        start, end = scheduled_period(kind, datetime.now(tz))

    filters = None
    if args.category or args.area or args.min_severity:
        filters = Filters(
            category=Category(args.category.upper()) if args.category else None,
            area=args.area,
            min_severity=args.min_severity,
        )
    return ReportRequest(kind=kind, period_start=start, period_end=end, filters=filters, requested_by="cli")


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    engine = build_engine(settings)
    request = _build_request(args, ZoneInfo(settings.reference_timezone))
    try:
        report = await engine.reports.generate_report(request)
    except InsightEngineError as e:
        print(f"Failed to generate report: {e}", file=sys.stderr)
        return 1
    print(format_report_markdown(report))
    return 0


def main() -> None:
    """Parse args and generate the report."""
    parser = argparse.ArgumentParser(description="Generate an incident insight report")
    parser.add_argument(
        "--kind",
        choices=[k.value.lower() for k in ReportKind],
        default="custom",
        help="Report kind; daily/weekly/monthly use the scheduled periods",
    )
    parser.add_argument("--start", type=str, help="Period start (ISO date/time, reference time zone)")
    parser.add_argument("--end", type=str, help="Period end (ISO date/time, reference time zone)")
    parser.add_argument("--category", type=str, default=None, help="Only incidents of this category")
    parser.add_argument("--area", type=str, default=None, help="Only incidents whose area contains this text")
    parser.add_argument("--min-severity", type=int, default=None, help="Only incidents at or above this severity")
    args = parser.parse_args()

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()

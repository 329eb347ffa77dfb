"""Render a stored Report as markdown for the CLI and the API."""

from typing import Any

from incident_insights.models import Report, ReportStatus

MAX_TABLE_ROWS = 10


def _format_plain_table(
    headers: list[str],
    rows: list[list[str]],
    right_align: set[int] | None = None,
) -> str:
    """Format a plain-text table with aligned columns (no pipe characters).

    Args:
        headers: Column header strings.
        rows: List of rows, each a list of cell strings.
        right_align: Set of column indices (0-based) to right-align.

    Returns:
        Multi-line string with padded columns separated by two spaces.
    """
    right_align = right_align or set()
    if not rows:
        return ""
    all_data = [headers, *rows]
    col_widths = [max(len(row[i]) for row in all_data) for i in range(len(headers))]

    def fmt_row(cells: list[str]) -> str:
        parts: list[str] = []
        for i, cell in enumerate(cells):
            width = col_widths[i]
            parts.append(cell.rjust(width) if i in right_align else cell.ljust(width))
        return "  ".join(parts).rstrip()

    lines = [fmt_row(headers)]
    lines.append("  ".join("-" * w for w in col_widths))
    lines.extend(fmt_row(row) for row in rows)
    return "\n".join(lines)


def _describe_item(item: Any) -> str:
    """One-line rendering of an AI-provided list item (string or object)."""
    if isinstance(item, dict):
        action = item.get("action") or item.get("acao") or item.get("area") or item.get("bairro")
        priority = item.get("priority") or item.get("prioridade")
        reason = item.get("rationale") or item.get("reason") or item.get("justificativa") or item.get("razao")
        text = str(action) if action else ", ".join(f"{k}: {v}" for k, v in item.items())
        if priority:
            text = f"[{str(priority).upper()}] {text}"
        if reason:
            text += f" ({reason})"
        return text
    return str(item)


def format_report_markdown(report: Report) -> str:
    """Convert a Report into a readable markdown document."""
    lines: list[str] = []
    lines.append(f"# {report['title']}")
    lines.append("")
    lines.append(f"**Period:** {report['period_start'].isoformat()} to {report['period_end'].isoformat()}")
    lines.append(f"**Status:** {report['status'].value}")
    if report["model"]:
        lines.append(f"**Model:** {report['model']}")
    if report["processing_ms"] is not None:
        lines.append(f"**Processing time:** {report['processing_ms']} ms")
    lines.append("")

    if report["status"] == ReportStatus.ERROR:
        lines.append("## Error")
        lines.append("")
        lines.append(report["error_message"] or "*Report generation failed.*")
        lines.append("")
        return "\n".join(lines)

    # 1. Executive Summary
    lines.append("## Executive Summary")
    lines.append("")
    lines.append(report["executive_summary"] or "*Summary not available yet.*")
    lines.append("")

    # 2. Key Metrics
    metrics = report["metrics"]
    lines.append("## Key Metrics")
    lines.append("")
    if metrics is None:
        lines.append("*Metrics unavailable.*")
    else:
        variance = metrics["variance_percent"]
        lines.append(f"- **Total incidents:** {metrics['total_current']}")
        lines.append(f"- **Prior period:** {metrics['total_prior']} ({variance:+.1f}%)")
        if metrics["severity_mean"] is not None:
            lines.append(
                f"- **Severity:** mean {metrics['severity_mean']:.1f}, "
                f"max {metrics['severity_max']}, min {metrics['severity_min']}"
            )
        lines.append("")

        if metrics["top_areas"]:
            lines.append("### Top Areas")
            lines.append("")
            area_rows = [
                [a["area"], str(a["total"]), f"{a['mean_severity']:.1f}", str(a["max_severity"])]
                for a in metrics["top_areas"][:MAX_TABLE_ROWS]
            ]
            lines.append(_format_plain_table(["Area", "Total", "Mean", "Max"], area_rows, right_align={1, 2, 3}))
            lines.append("")

        if metrics["category_distribution"]:
            lines.append("### Categories")
            lines.append("")
            category_rows = [
                [c["category"], str(c["total"]), f"{c['percent']:.1f}%"]
                for c in metrics["category_distribution"][:MAX_TABLE_ROWS]
            ]
            lines.append(_format_plain_table(["Category", "Total", "Share"], category_rows, right_align={1, 2}))
            lines.append("")

    # 3. Critical Areas
    lines.append("## Critical Areas")
    lines.append("")
    if report["critical_areas"]:
        lines.extend(f"- {_describe_item(item)}" for item in report["critical_areas"])
    elif metrics is not None and metrics["critical_areas"]:
        lines.extend(
            f"- {c['area']}: {c['critical_count']} incidents at severity 8+" for c in metrics["critical_areas"]
        )
    else:
        lines.append("*No critical areas identified.*")
    lines.append("")

    # 4. Recommendations
    lines.append("## Recommendations")
    lines.append("")
    if report["recommendations"]:
        lines.extend(f"{i}. {_describe_item(item)}" for i, item in enumerate(report["recommendations"], start=1))
    else:
        lines.append("*No recommendations.*")
    lines.append("")

    insights = report["content"].get("insights") or []
    if insights:
        lines.append("## Additional Insights")
        lines.append("")
        lines.extend(f"- {_describe_item(item)}" for item in insights)
        lines.append("")

    return "\n".join(lines)

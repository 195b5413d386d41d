from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List

from retail_insights.logging.logger import get_logger
from retail_insights.queries.definitions import QueryDefinition

log = get_logger("report.narrative")

MISSING = "n/a"


class _Lenient(dict):
    """format_map context that renders unknown keys as n/a instead of raising."""

    def __missing__(self, key):
        return _Lenient()

    def __format__(self, spec: str) -> str:
        # Only reached for a missing row/key: an empty _Lenient stands in for it.
        return MISSING if not self else str(dict(self))

    def __str__(self) -> str:
        return MISSING if not self else str(dict(self))


def format_value(value: Any, fmt: str = "number") -> str:
    if value is None:
        return MISSING
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    if isinstance(value, (int, float)):
        if fmt == "raw":
            return str(value)
        if fmt == "currency":
            sign = "-" if value < 0 else ""
            return f"{sign}${abs(value):,.2f}"
        if fmt == "percent":
            return f"{value * 100:.1f}%"
        if fmt == "int":
            return f"{int(round(value)):,}"
        if isinstance(value, int):
            return f"{value:,}"
        return f"{value:,.2f}"
    return str(value)


def column_formats(qd: QueryDefinition) -> Dict[str, str]:
    fmts = {d.name: "raw" for d in qd.dimensions}
    fmts.update({m.name: m.format for m in qd.metrics})
    return fmts


def format_row(row: Dict[str, Any], formats: Dict[str, str]) -> Dict[str, str]:
    return {k: format_value(v, formats.get(k, "number")) for k, v in row.items()}


def build_context(qd: QueryDefinition, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    fmts = column_formats(qd)
    formatted = [_Lenient(format_row(r, fmts)) for r in rows]

    totals: Dict[str, str] = {}
    for m in qd.metrics:
        vals = [r.get(m.name) for r in rows if isinstance(r.get(m.name), (int, float))]
        if vals and m.agg in ("sum", "count", "count_distinct"):
            totals[m.name] = format_value(sum(vals), m.format)

    return _Lenient(
        top=formatted[0] if formatted else _Lenient(),
        second=formatted[1] if len(formatted) > 1 else _Lenient(),
        bottom=formatted[-1] if formatted else _Lenient(),
        rows=formatted,
        totals=_Lenient(totals),
        row_count=len(rows),
        title=qd.title,
    )


def render_narrative(qd: QueryDefinition, rows: List[Dict[str, Any]]) -> str:
    if not rows:
        return qd.empty_narrative or f"No rows matched the {qd.title.lower()} analysis."
    if not qd.narrative:
        return ""
    try:
        return " ".join(qd.narrative.format_map(build_context(qd, rows)).split())
    except (ValueError, IndexError, AttributeError, TypeError, KeyError) as e:
        # A malformed template must not take the section down with it.
        log.warning("Narrative template failed", extra={"query": qd.key, "error": str(e)})
        return qd.narrative

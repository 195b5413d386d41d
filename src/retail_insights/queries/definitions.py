from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import re

from retail_insights.db.utils import check_expr_safe, referenced_columns
from retail_insights.exceptions.errors import InvalidQueryError

SIMPLE_AGGS = {"sum", "avg", "min", "max", "count", "count_distinct"}
ALLOWED_AGGS = SIMPLE_AGGS | {"rate", "ratio"}
METRIC_FORMATS = {"number", "currency", "percent", "int"}
FILTER_OPS = ("!=", "<>", ">=", "<=", "=", ">", "<")

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FILTER_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*(!=|<>|>=|<=|=|>|<)\s*(.+)$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


@dataclass(frozen=True)
class DimensionSpec:
    name: str
    expr: Optional[str] = None  # derived dimension, e.g. strftime(order_date, '%Y-%m')

    def columns(self) -> List[str]:
        return referenced_columns(self.expr) if self.expr else [self.name]


@dataclass(frozen=True)
class MetricSpec:
    name: str
    agg: str
    expr: Optional[str] = None
    numerator: Optional[str] = None
    denominator: Optional[str] = None
    round: Optional[int] = None
    format: str = "number"  # number | currency | percent | int

    def columns(self) -> List[str]:
        out: List[str] = []
        for part in (self.expr, self.numerator, self.denominator):
            if part and part != "*":
                for c in referenced_columns(part):
                    if c not in out:
                        out.append(c)
        return out


@dataclass(frozen=True)
class FilterSpec:
    column: str
    op: str
    value: str  # SQL literal, already quoted/escaped


@dataclass(frozen=True)
class SortSpec:
    by: str
    desc: bool = False


@dataclass(frozen=True)
class QueryDefinition:
    """One named aggregate analysis and the narrative that goes with its result."""

    key: str
    title: str
    dimensions: Tuple[DimensionSpec, ...]
    metrics: Tuple[MetricSpec, ...]
    filters: Tuple[FilterSpec, ...] = ()
    sort: Tuple[SortSpec, ...] = ()
    limit: Optional[int] = None
    description: str = ""
    narrative: str = ""
    empty_narrative: str = ""
    recommendations: Tuple[str, ...] = field(default_factory=tuple)

    def output_columns(self) -> List[str]:
        return [d.name for d in self.dimensions] + [m.name for m in self.metrics]

    def referenced_columns(self) -> List[str]:
        """Every dataset attribute this definition reads, in first-use order."""
        out: List[str] = []
        parts: List[List[str]] = [d.columns() for d in self.dimensions]
        parts += [m.columns() for m in self.metrics]
        parts += [[f.column] for f in self.filters]
        for cols in parts:
            for c in cols:
                if c not in out:
                    out.append(c)
        return out


def _literal(raw: str) -> str:
    val = raw.strip()
    if len(val) >= 2 and val[0] == val[-1] and val[0] in ("'", '"'):
        inner = val[1:-1]
        return "'" + inner.replace("'", "''") + "'"
    if _NUMBER_RE.match(val):
        return val
    if val.lower() in ("true", "false", "null"):
        return val.upper()
    return "'" + val.replace("'", "''") + "'"


def parse_filter(raw: Any) -> FilterSpec:
    if isinstance(raw, dict):
        col = str(raw.get("column", "")).strip()
        op = str(raw.get("op", "=")).strip()
        if "value" not in raw:
            raise InvalidQueryError(f"Filter is missing a value: {raw}")
        value = raw["value"]
        if isinstance(value, bool):
            lit = "TRUE" if value else "FALSE"
        elif isinstance(value, (int, float)):
            lit = repr(value)
        elif value is None:
            lit = "NULL"
        else:
            lit = "'" + str(value).replace("'", "''") + "'"
        if not _NAME_RE.match(col) or op not in FILTER_OPS:
            raise InvalidQueryError(f"Invalid filter: {raw}")
        return FilterSpec(column=col, op=op, value=lit)

    text = str(raw).strip().replace("==", "=")
    m = _FILTER_RE.match(text)
    if not m:
        raise InvalidQueryError(f"Filter must look like 'column op value': {raw!r}")
    check_expr_safe(m.group(3))
    return FilterSpec(column=m.group(1), op=m.group(2), value=_literal(m.group(3)))


def _parse_dimension(raw: Any) -> DimensionSpec:
    if isinstance(raw, str):
        name, expr = raw.strip(), None
    elif isinstance(raw, dict):
        name = str(raw.get("name", "")).strip()
        expr = raw.get("expr")
        expr = str(expr).strip() if expr else None
    else:
        raise InvalidQueryError(f"Invalid dimension: {raw!r}")
    if not _NAME_RE.match(name):
        raise InvalidQueryError(f"Invalid dimension name: {name!r}")
    if expr:
        check_expr_safe(expr)
    return DimensionSpec(name=name, expr=expr)


def _parse_metric(raw: Any) -> MetricSpec:
    if not isinstance(raw, dict):
        raise InvalidQueryError(f"Metric must be a mapping: {raw!r}")
    name = str(raw.get("name", "")).strip()
    if not _NAME_RE.match(name):
        raise InvalidQueryError(f"Invalid metric name: {name!r}")

    agg = str(raw.get("agg", "")).strip().lower()
    if agg not in ALLOWED_AGGS:
        raise InvalidQueryError(f"Unsupported aggregation '{agg}' for metric '{name}'")

    expr = raw.get("expr", raw.get("column"))
    expr = str(expr).strip() if expr is not None else None
    numerator = str(raw["numerator"]).strip() if raw.get("numerator") is not None else None
    denominator = str(raw["denominator"]).strip() if raw.get("denominator") is not None else None

    if agg == "ratio":
        if not numerator or not denominator:
            raise InvalidQueryError(f"Ratio metric '{name}' needs numerator and denominator")
    elif agg == "count":
        expr = expr or "*"
    elif not expr:
        raise InvalidQueryError(f"Metric '{name}' ({agg}) needs an expr or column")
    if expr == "*" and agg != "count":
        raise InvalidQueryError(f"Only count may aggregate '*' (metric '{name}')")

    for part in (expr, numerator, denominator):
        if part and part != "*":
            check_expr_safe(part)

    rnd = raw.get("round")
    if rnd is not None:
        try:
            rnd = int(rnd)
        except (TypeError, ValueError) as e:
            raise InvalidQueryError(f"round must be an integer for metric '{name}'") from e

    default_fmt = "percent" if agg == "rate" else "int" if agg in ("count", "count_distinct") else "number"
    fmt = str(raw.get("format") or default_fmt).strip().lower()
    if fmt not in METRIC_FORMATS:
        raise InvalidQueryError(f"Unsupported format '{fmt}' for metric '{name}'")

    return MetricSpec(
        name=name,
        agg=agg,
        expr=expr,
        numerator=numerator,
        denominator=denominator,
        round=rnd,
        format=fmt,
    )


def parse_definition(raw: Dict[str, Any]) -> QueryDefinition:
    if not isinstance(raw, dict):
        raise InvalidQueryError("Query definition must be a mapping")

    key = str(raw.get("key", "")).strip()
    if not _NAME_RE.match(key):
        raise InvalidQueryError(f"Invalid query key: {key!r}")

    dimensions = tuple(_parse_dimension(d) for d in (raw.get("dimensions") or []))
    metrics = tuple(_parse_metric(m) for m in (raw.get("metrics") or []))
    if not metrics:
        raise InvalidQueryError(f"Query '{key}' defines no metrics")

    names = [d.name for d in dimensions] + [m.name for m in metrics]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise InvalidQueryError(f"Query '{key}' has duplicate output columns: {dupes}")

    filters = tuple(parse_filter(f) for f in (raw.get("filters") or []))

    sort: List[SortSpec] = []
    for s in raw.get("sort") or []:
        if isinstance(s, str):
            by, desc = s.strip(), False
        elif isinstance(s, dict):
            by, desc = str(s.get("by", "")).strip(), bool(s.get("desc", False))
        else:
            raise InvalidQueryError(f"Invalid sort entry in '{key}': {s!r}")
        if by not in names:
            raise InvalidQueryError(f"Query '{key}' sorts by unknown output column '{by}'")
        sort.append(SortSpec(by=by, desc=desc))

    limit = raw.get("limit")
    if limit is not None:
        try:
            limit = int(limit)
        except (TypeError, ValueError) as e:
            raise InvalidQueryError(f"Query '{key}' has a non-integer limit") from e
        if limit <= 0:
            raise InvalidQueryError(f"Query '{key}' limit must be positive")

    recs = raw.get("recommendations") or []
    if isinstance(recs, str):
        recs = [recs]

    return QueryDefinition(
        key=key,
        title=str(raw.get("title") or key.replace("_", " ").title()),
        dimensions=dimensions,
        metrics=metrics,
        filters=filters,
        sort=tuple(sort),
        limit=limit,
        description=str(raw.get("description") or "").strip(),
        narrative=str(raw.get("narrative") or "").strip(),
        empty_narrative=str(raw.get("empty_narrative") or "").strip(),
        recommendations=tuple(str(r).strip() for r in recs if str(r).strip()),
    )

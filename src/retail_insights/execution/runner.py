from __future__ import annotations

from typing import Any, Dict, List, Optional, Set
import math

import duckdb
import numpy as np
import pandas as pd

from retail_insights.data.dataset import OrdersDataset
from retail_insights.db.utils import quote_columns_in_expr, quote_ident
from retail_insights.exceptions.errors import DataNotFoundError, QueryExecutionError, SchemaMismatchError
from retail_insights.logging.logger import get_logger
from retail_insights.queries.definitions import DimensionSpec, MetricSpec, QueryDefinition

log = get_logger("execution.runner")

# Name the dataset frame is registered under inside each DuckDB connection.
VIEW_NAME = "orders"


def _dimension_sql(d: DimensionSpec, cols: Set[str]) -> str:
    if d.expr:
        return quote_columns_in_expr(d.expr, cols)
    return quote_ident(d.name)


def _metric_sql(m: MetricSpec, cols: Set[str]) -> str:
    def q(expr: Optional[str]) -> str:
        return quote_columns_in_expr(expr or "", cols)

    agg = m.agg
    if agg == "ratio":
        # Zero denominators yield NULL instead of an error or +/-inf.
        sql = f"CAST({q(m.numerator)} AS DOUBLE) / NULLIF(CAST({q(m.denominator)} AS DOUBLE), 0)"
    elif agg == "rate":
        sql = f"AVG(CASE WHEN {q(m.expr)} THEN 1.0 ELSE 0.0 END)"
    elif agg == "count":
        sql = "COUNT(*)" if m.expr in (None, "*") else f"COUNT({q(m.expr)})"
    elif agg == "count_distinct":
        sql = f"COUNT(DISTINCT {q(m.expr)})"
    elif agg in ("sum", "avg"):
        sql = f"{agg.upper()}(TRY_CAST({q(m.expr)} AS DOUBLE))"
    else:
        sql = f"{agg.upper()}({q(m.expr)})"

    if m.round is not None:
        sql = f"ROUND({sql}, {int(m.round)})"
    return f"{sql} AS {quote_ident(m.name)}"


def _to_python(v: Any) -> Any:
    if v is None or v is pd.NA or v is pd.NaT:
        return None
    if isinstance(v, np.generic):
        v = v.item()
    if isinstance(v, float) and (math.isnan(v) or math.isinf(v)):
        return None
    if isinstance(v, pd.Timestamp):
        return v.to_pydatetime()
    return v


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    cols = list(df.columns)
    return [
        {c: _to_python(v) for c, v in zip(cols, rec)}
        for rec in df.itertuples(index=False, name=None)
    ]


class QueryRunner:
    """Executes query definitions against one read-only orders dataset.

    Every call opens its own in-memory DuckDB connection, registers the
    dataset frame as a view, runs a single SELECT and closes the connection.
    Nothing is written back to the frame.
    """

    def __init__(self, dataset: Optional[OrdersDataset]):
        if dataset is None:
            raise DataNotFoundError("No dataset loaded; cannot run queries.")
        self.dataset = dataset

    def validate(self, qd: QueryDefinition) -> None:
        available = set(self.dataset.columns)
        missing = [c for c in qd.referenced_columns() if c not in available]
        if missing:
            raise SchemaMismatchError(
                f"Query '{qd.key}' references attributes missing from the dataset: {', '.join(missing)}",
                missing=missing,
            )

    def compile(self, qd: QueryDefinition) -> str:
        self.validate(qd)
        cols = set(self.dataset.columns)

        select_cols: List[str] = []
        group_parts: List[str] = []
        for d in qd.dimensions:
            expr = _dimension_sql(d, cols)
            select_cols.append(f"{expr} AS {quote_ident(d.name)}")
            group_parts.append(expr)
        select_cols.extend(_metric_sql(m, cols) for m in qd.metrics)

        where_sql = ""
        if qd.filters:
            where_sql = "WHERE " + " AND ".join(
                f"{quote_ident(f.column)} {f.op} {f.value}" for f in qd.filters
            )

        group_sql = f"GROUP BY {', '.join(group_parts)}" if group_parts else ""

        # Dimensions break ties so repeated runs return rows in the same order.
        order_parts: List[str] = []
        used: Set[str] = set()
        for s in qd.sort:
            order_parts.append(f"{quote_ident(s.by)} {'DESC' if s.desc else 'ASC'} NULLS LAST")
            used.add(s.by)
        for d in qd.dimensions:
            if d.name not in used:
                order_parts.append(f"{quote_ident(d.name)} ASC NULLS LAST")
        order_sql = f"ORDER BY {', '.join(order_parts)}" if order_parts else ""

        limit_sql = f"LIMIT {int(qd.limit)}" if qd.limit else ""

        parts = [
            f"SELECT {', '.join(select_cols)}",
            f"FROM {quote_ident(VIEW_NAME)}",
            where_sql,
            group_sql,
            order_sql,
            limit_sql,
        ]
        return "\n".join(p for p in parts if p)

    def run_frame(self, qd: QueryDefinition) -> pd.DataFrame:
        sql = self.compile(qd)
        log.info("Executing query", extra={"query": qd.key, "sql": sql[:500] + ("..." if len(sql) > 500 else "")})

        con = duckdb.connect(database=":memory:")
        try:
            con.register(VIEW_NAME, self.dataset.frame)
            return con.execute(sql).df()
        except duckdb.Error as e:
            raise QueryExecutionError(f"Query '{qd.key}' failed: {e}") from e
        finally:
            con.close()

    def run(self, qd: QueryDefinition) -> List[Dict[str, Any]]:
        rows = frame_to_rows(self.run_frame(qd))
        log.info("Query complete", extra={"query": qd.key, "rows": len(rows)})
        return rows


def execute_query(dataset: Optional[OrdersDataset], qd: QueryDefinition) -> List[Dict[str, Any]]:
    return QueryRunner(dataset).run(qd)

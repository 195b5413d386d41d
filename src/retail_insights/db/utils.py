from __future__ import annotations

from typing import Iterable, List, Set
import re

from retail_insights.exceptions.errors import InvalidQueryError

# Words that may appear bare in metric / dimension expressions without being columns.
SQL_KEYWORDS: Set[str] = {
    "and", "or", "not", "null", "is", "in", "as", "case", "when", "then", "else", "end",
    "distinct", "true", "false", "like", "between", "double", "integer", "bigint", "varchar",
    "date", "timestamp", "interval", "day", "month", "year", "asc", "desc", "filter", "where",
}

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def check_expr_safe(expr: str) -> None:
    low = (expr or "").lower()
    if ";" in low or "--" in low or "/*" in low or "*/" in low:
        raise InvalidQueryError(f"Unsafe tokens in expression: {expr!r}")


def _split_literals(expr: str) -> List[tuple]:
    """Split an expression into (is_literal, text) segments on single-quoted strings."""
    parts: List[tuple] = []
    buf = ""
    in_single = False
    i = 0
    while i < len(expr):
        ch = expr[i]
        if ch == "'":
            if in_single and i + 1 < len(expr) and expr[i + 1] == "'":
                buf += "''"
                i += 2
                continue
            if in_single:
                parts.append((True, buf + "'"))
                buf = ""
            else:
                if buf:
                    parts.append((False, buf))
                buf = "'"
            in_single = not in_single
            i += 1
            continue
        buf += ch
        i += 1
    if in_single:
        raise InvalidQueryError(f"Unterminated string literal in expression: {expr!r}")
    if buf:
        parts.append((False, buf))
    return parts


def _identifiers(segment: str) -> Iterable[re.Match]:
    for m in _IDENT_RE.finditer(segment):
        start, end = m.span()
        # Skip pieces of numeric literals such as 1e5
        if start > 0 and (segment[start - 1].isdigit() or segment[start - 1] == "."):
            continue
        rest = segment[end:].lstrip()
        if rest.startswith("("):
            continue  # function name
        if m.group(0).lower() in SQL_KEYWORDS:
            continue
        yield m


def referenced_columns(expr: str) -> List[str]:
    """Bare identifiers in an expression that are neither functions, keywords nor literals."""
    check_expr_safe(expr)
    seen: List[str] = []
    for is_lit, seg in _split_literals(expr):
        if is_lit:
            continue
        for m in _identifiers(seg):
            if m.group(0) not in seen:
                seen.append(m.group(0))
    return seen


def quote_columns_in_expr(expr: str, columns: Set[str]) -> str:
    """Quote known column identifiers within a SQL expression, leaving string literals alone."""
    check_expr_safe(expr)
    out: List[str] = []
    for is_lit, seg in _split_literals(expr):
        if is_lit:
            out.append(seg)
            continue
        pos = 0
        for m in _identifiers(seg):
            if m.group(0) not in columns:
                continue
            out.append(seg[pos:m.start()])
            out.append(quote_ident(m.group(0)))
            pos = m.end()
        out.append(seg[pos:])
    return "".join(out)

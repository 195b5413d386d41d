from __future__ import annotations
from typing import Dict
import pandas as pd

from retail_insights.logging.logger import get_logger
from retail_insights.schema.registry import normalize_name

log = get_logger("preprocessing.cleaning")

_TRUE_TOKENS = {"yes", "y", "true", "t", "1", "returned"}
_FALSE_TOKENS = {"no", "n", "false", "f", "0", ""}

def standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out.columns = [normalize_name(str(c)) for c in out.columns]
    return out

def apply_aliases(df: pd.DataFrame, alias_map: Dict[str, str]) -> pd.DataFrame:
    """Rename normalized source headers to canonical registry names."""
    renames: Dict[str, str] = {}
    for c in df.columns:
        target = alias_map.get(c)
        if target and target != c and target not in df.columns and target not in renames.values():
            renames[c] = target
    if renames:
        log.info("Renamed aliased columns", extra={"renames": renames})
    return df.rename(columns=renames)

def _to_flag(val):
    if val is None or val is pd.NA or (isinstance(val, float) and pd.isna(val)):
        return False
    if isinstance(val, bool):
        return val
    if isinstance(val, (int, float)):
        return val != 0
    token = str(val).strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return pd.NA

def coerce_types(df: pd.DataFrame, column_types: Dict[str, str], date_format: str | None = None) -> pd.DataFrame:
    out = df.copy()
    for col, typ in column_types.items():
        if col not in out.columns:
            log.warning("Missing column", extra={"column": col, "expected_type": typ})
            continue
        try:
            if typ in ("date", "datetime"):
                out[col] = pd.to_datetime(out[col], errors="coerce", format=date_format)
            elif typ == "int":
                out[col] = pd.to_numeric(out[col], errors="coerce").astype("Int64")
            elif typ == "float":
                out[col] = pd.to_numeric(out[col], errors="coerce")
            elif typ == "bool":
                out[col] = out[col].map(_to_flag).astype("boolean")
            else:
                out[col] = out[col].astype("string")
            log.debug("Type coerced", extra={"column": col, "type": typ})
        except (ValueError, TypeError) as e:
            log.warning("Type coercion failed", extra={"column": col, "type": typ, "error": str(e)})
    return out

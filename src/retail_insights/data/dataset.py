from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional
import pandas as pd

from retail_insights.config.settings import Settings
from retail_insights.ingestion.reader import read_orders
from retail_insights.preprocessing.cleaning import apply_aliases, coerce_types, standardize_columns
from retail_insights.schema.registry import SchemaRegistry
from retail_insights.logging.logger import get_logger

log = get_logger("data.dataset")


@dataclass(frozen=True)
class OrdersDataset:
    """Read-only view of the orders table for one report run.

    The frame is shared by every query of the run; nothing downstream writes to it.
    """

    frame: pd.DataFrame
    source: str
    table: str

    @property
    def columns(self) -> List[str]:
        return list(self.frame.columns)

    @property
    def row_count(self) -> int:
        return len(self.frame)

    def has_column(self, name: str) -> bool:
        return name in self.frame.columns


def prepare_frame(df: pd.DataFrame, registry: Optional[SchemaRegistry] = None, table: str = "orders") -> pd.DataFrame:
    out = standardize_columns(df)
    if registry is not None:
        out = apply_aliases(out, registry.alias_map(table))
        out = coerce_types(out, registry.column_types(table))
    return out


def load_dataset(
    path: str,
    table: str = "orders",
    registry: Optional[SchemaRegistry] = None,
    delimiter: str = ",",
    fallback_encodings: Optional[List[str]] = None,
) -> OrdersDataset:
    res = read_orders(path, table=table, delimiter=delimiter, fallback_encodings=fallback_encodings)
    frame = prepare_frame(res.df, registry, res.table)
    log.info(
        "Loaded dataset",
        extra={"source": res.source, "table": res.table, "rows": len(frame), "columns": len(frame.columns)},
    )
    return OrdersDataset(frame=frame, source=res.source, table=res.table)


def load_dataset_from_settings(settings: Settings, registry: Optional[SchemaRegistry] = None) -> OrdersDataset:
    return load_dataset(
        settings.dataset_path,
        table=settings.dataset_table,
        registry=registry,
        delimiter=settings.csv_delimiter,
        fallback_encodings=settings.fallback_encodings,
    )


def dataset_from_frame(df: pd.DataFrame, registry: Optional[SchemaRegistry] = None, source: str = "<memory>") -> OrdersDataset:
    """Wrap an in-memory frame (already loaded elsewhere) as a dataset."""
    return OrdersDataset(frame=prepare_frame(df, registry), source=source, table="orders")

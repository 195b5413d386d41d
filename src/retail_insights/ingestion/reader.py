from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
from pathlib import Path
import sqlite3
import pandas as pd

from retail_insights.logging.logger import get_logger
from retail_insights.exceptions.errors import DatasetUnavailableError

log = get_logger("ingestion.reader")

SQLITE_SUFFIXES = {".db", ".sqlite", ".sqlite3"}

@dataclass(frozen=True)
class IngestionResult:
    df: pd.DataFrame
    source: str
    table: str
    rows_read: int
    encoding_used: Optional[str] = None

def _list_sqlite_tables(con: sqlite3.Connection) -> List[str]:
    cur = con.execute("SELECT name FROM sqlite_master WHERE type IN ('table', 'view') ORDER BY name")
    return [r[0] for r in cur.fetchall() if not str(r[0]).startswith("sqlite_")]

def read_sqlite(file_path: str, table: str) -> IngestionResult:
    p = Path(file_path)
    if not p.exists():
        raise DatasetUnavailableError(f"Dataset not found: {file_path}")

    try:
        # mode=ro: never create an empty database in place of a missing one
        con = sqlite3.connect(f"file:{p.resolve().as_posix()}?mode=ro", uri=True)
    except sqlite3.Error as e:
        raise DatasetUnavailableError(f"Cannot open SQLite dataset: {file_path}") from e

    try:
        try:
            tables = _list_sqlite_tables(con)
        except sqlite3.DatabaseError as e:
            raise DatasetUnavailableError(f"Not a readable SQLite database: {file_path}") from e

        chosen = table
        if table not in tables:
            if len(tables) == 1:
                chosen = tables[0]
                log.warning(
                    "Configured table not found; using the only table in the file",
                    extra={"source_file": p.name, "configured": table, "using": chosen},
                )
            else:
                raise DatasetUnavailableError(
                    f"Table '{table}' not found in {p.name}; available: {tables or 'none'}"
                )

        log.info("Reading SQLite table", extra={"source_file": p.name, "table": chosen})
        try:
            df = pd.read_sql_query(f'SELECT * FROM "{chosen}"', con)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise DatasetUnavailableError(f"Failed to read table '{chosen}' from {p.name}") from e
    finally:
        con.close()

    return IngestionResult(df=df, source=str(p), table=chosen, rows_read=len(df))

def read_csv(
    file_path: str,
    table: str,
    delimiter: str,
    fallback_encodings: List[str],
) -> IngestionResult:
    p = Path(file_path)
    if not p.exists():
        raise DatasetUnavailableError(f"Dataset not found: {file_path}")

    last_err: Optional[Exception] = None
    for enc in fallback_encodings:
        try:
            log.info("Reading CSV", extra={"source_file": p.name, "encoding": enc})
            df = pd.read_csv(p, sep=delimiter, encoding=enc)
            return IngestionResult(df=df, source=str(p), table=table, rows_read=len(df), encoding_used=enc)
        except (UnicodeDecodeError, LookupError) as e:
            # LookupError: unknown codec name in fallback_encodings
            last_err = e
            log.error("Encoding error", extra={"source_file": p.name, "encoding": enc, "error": str(e)})
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise DatasetUnavailableError(f"Unreadable CSV dataset: {p.name}") from e

    raise DatasetUnavailableError(f"Failed to decode {p.name} with encodings: {fallback_encodings}") from last_err

def read_orders(
    file_path: str,
    table: str = "orders",
    delimiter: str = ",",
    fallback_encodings: Optional[List[str]] = None,
) -> IngestionResult:
    suffix = Path(file_path).suffix.lower()
    if suffix in SQLITE_SUFFIXES:
        return read_sqlite(file_path, table)
    if suffix in {".csv", ".txt", ".tsv"}:
        return read_csv(file_path, table, delimiter, fallback_encodings or ["utf-8"])
    raise DatasetUnavailableError(f"Unsupported dataset format '{suffix or '<none>'}': {file_path}")

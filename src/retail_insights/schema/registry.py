from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import yaml

from retail_insights.exceptions.errors import ConfigError
from retail_insights.logging.logger import get_logger

log = get_logger("schema.registry")

SUPPORTED_TYPES = {"string", "int", "float", "date", "datetime", "bool"}


def normalize_name(s: str) -> str:
    """'Sub-Category' -> 'sub_category', 'Product Name' -> 'product_name'."""
    out: List[str] = []
    prev_us = False
    for ch in (s or "").strip():
        if ch.isalnum():
            out.append(ch.lower())
            prev_us = False
        elif not prev_us:
            out.append("_")
            prev_us = True
    return "".join(out).strip("_")


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: str
    description: str = ""
    aliases: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TableSpec:
    name: str
    description: str
    columns: Dict[str, ColumnSpec]


class SchemaRegistry:
    def __init__(self, tables: Dict[str, TableSpec], version: int = 1):
        self.version = version
        self.tables = tables

    @staticmethod
    def load(path: str) -> "SchemaRegistry":
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"Schema registry not found: {p}")
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        version = int(raw.get("version", 1))

        tables: Dict[str, TableSpec] = {}
        for tname, tval in (raw.get("tables") or {}).items():
            cols: Dict[str, ColumnSpec] = {}
            for cname, cval in ((tval or {}).get("columns") or {}).items():
                cval = cval or {}
                aliases = cval.get("aliases", [])
                if isinstance(aliases, str):
                    aliases = [aliases]
                aliases = [str(a) for a in (aliases or []) if str(a).strip()]
                cols[cname] = ColumnSpec(
                    name=cname,
                    type=str(cval.get("type", "string")),
                    description=str(cval.get("description", "")),
                    aliases=aliases,
                )
            tables[tname] = TableSpec(
                name=tname,
                description=str((tval or {}).get("description", "")),
                columns=cols,
            )

        reg = SchemaRegistry(tables=tables, version=version)
        reg.validate()
        log.info("Loaded schema registry", extra={"path": str(p), "tables": list(tables)})
        return reg

    def validate(self) -> None:
        if not self.tables:
            raise ConfigError("Schema registry has no tables.")
        for t in self.tables.values():
            if not t.columns:
                raise ConfigError(f"Schema registry table '{t.name}' declares no columns.")
            for c in t.columns.values():
                if c.type not in SUPPORTED_TYPES:
                    raise ConfigError(f"Unsupported type '{c.type}' for column {t.name}.{c.name}")

    def get_table(self, name: str) -> TableSpec:
        if name in self.tables:
            return self.tables[name]
        # Single-table registries describe whatever table the dataset holds.
        if len(self.tables) == 1:
            return next(iter(self.tables.values()))
        raise ConfigError(f"Unknown table in schema registry: {name}")

    def column_types(self, table: str) -> Dict[str, str]:
        spec = self.get_table(table)
        return {c: spec.columns[c].type for c in spec.columns}

    def alias_map(self, table: str) -> Dict[str, str]:
        """Normalized alias -> canonical column name."""
        spec = self.get_table(table)
        out: Dict[str, str] = {}
        for cname, cspec in spec.columns.items():
            out[normalize_name(cname)] = cname
            for a in cspec.aliases:
                key = normalize_name(a)
                if key:
                    out.setdefault(key, cname)
        return out

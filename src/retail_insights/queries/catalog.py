from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from retail_insights.config.settings import DEFAULT_CATALOG_PATH
from retail_insights.exceptions.errors import CatalogError, InvalidQueryError
from retail_insights.logging.logger import get_logger
from retail_insights.queries.definitions import QueryDefinition, parse_definition

log = get_logger("queries.catalog")


def load_catalog(path: Optional[str] = None) -> List[QueryDefinition]:
    """Load the analysis catalog, preserving file order (the report reading order)."""
    p = Path(path or DEFAULT_CATALOG_PATH)
    if not p.exists():
        raise CatalogError(f"Analysis catalog not found: {p}")
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise CatalogError(f"Analysis catalog is not valid YAML: {p}") from e

    items = raw.get("analyses") if isinstance(raw, dict) else raw
    if not isinstance(items, list) or not items:
        raise CatalogError(f"Analysis catalog has no analyses: {p}")

    out: List[QueryDefinition] = []
    seen: set[str] = set()
    for i, item in enumerate(items):
        try:
            qd = parse_definition(item)
        except InvalidQueryError as e:
            raise CatalogError(f"Invalid analysis #{i + 1} in {p.name}: {e}") from e
        if qd.key in seen:
            raise CatalogError(f"Duplicate analysis key in {p.name}: {qd.key}")
        seen.add(qd.key)
        out.append(qd)

    log.info("Loaded analysis catalog", extra={"path": str(p), "analyses": len(out)})
    return out


def select_analyses(catalog: List[QueryDefinition], keys: Optional[Iterable[str]] = None) -> List[QueryDefinition]:
    """Subset of the catalog, always in catalog order. Empty/None selects everything."""
    wanted = [k.strip() for k in (keys or []) if k and k.strip()]
    if not wanted:
        return list(catalog)
    known = {q.key for q in catalog}
    unknown = [k for k in wanted if k not in known]
    if unknown:
        raise CatalogError(f"Unknown analyses: {', '.join(unknown)}")
    return [q for q in catalog if q.key in set(wanted)]

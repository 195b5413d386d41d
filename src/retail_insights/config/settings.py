from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import yaml
from dotenv import load_dotenv

from retail_insights.exceptions.errors import ConfigError

load_dotenv()

_PACKAGE_DIR = Path(__file__).resolve().parents[1]
DEFAULT_SCHEMA_PATH = str(_PACKAGE_DIR / "schema" / "orders_schema.yaml")
DEFAULT_CATALOG_PATH = str(_PACKAGE_DIR / "queries" / "catalog.yaml")

def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)

def _env_list(key: str, default: List[str]) -> List[str]:
    val = os.environ.get(key)
    if not val:
        return default
    return [x.strip() for x in val.split(",") if x.strip()]

def _off(val: Optional[str]) -> Optional[str]:
    """"", "none" and "off" disable an optional path setting."""
    if val is None or str(val).strip().lower() in ("", "none", "off"):
        return None
    return str(val)

def _as_list(val) -> List[str]:
    if val is None:
        return []
    if isinstance(val, str):
        return [x.strip() for x in val.split(",") if x.strip()]
    return [str(x).strip() for x in val if str(x).strip()]

@dataclass(frozen=True)
class Settings:
    env: str
    log_level: str
    log_file: Optional[str]

    # Dataset
    dataset_path: str
    dataset_table: str
    csv_delimiter: str
    fallback_encodings: List[str]

    # Registry / catalog locations (packaged defaults when unset)
    schema_path: str
    catalog_path: str

    # Empty = run every analysis in the catalog
    analyses: List[str]

    # None = no files are written unless --export-dir is given
    export_dir: Optional[str]
    export_formats: List[str]
    max_rows_per_section: int

def load_settings(config_path: Optional[str] = None) -> Settings:
    app_env = _env("APP_ENV", "dev")
    cfg_path = Path(config_path or _env("RETAIL_INSIGHTS_CONFIG") or Path("config") / f"{app_env}.yaml")
    if not cfg_path.exists():
        raise ConfigError(f"Config not found: {cfg_path}")

    try:
        cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config is not valid YAML: {cfg_path}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"Config must be a mapping: {cfg_path}")

    app_cfg = cfg.get("app") or {}
    ds_cfg = cfg.get("dataset") or {}
    report_cfg = cfg.get("report") or {}
    export_cfg = cfg.get("export") or {}

    log_file = _off(_env("LOG_FILE", app_cfg.get("log_file", "logs/retail_insights.log")))

    try:
        max_rows = int(_env("MAX_ROWS_PER_SECTION", str(report_cfg.get("max_rows_per_section", 25))))
    except ValueError as e:
        raise ConfigError("max_rows_per_section must be an integer") from e

    return Settings(
        env=app_env,
        log_level=_env("LOG_LEVEL", str(app_cfg.get("log_level", "INFO"))),
        log_file=log_file,
        dataset_path=_env("DATASET_PATH", str(ds_cfg.get("path", "data/orders.db"))),
        dataset_table=_env("DATASET_TABLE", str(ds_cfg.get("table", "orders"))),
        csv_delimiter=_env("CSV_DELIMITER", str(ds_cfg.get("delimiter", ","))),
        fallback_encodings=_env_list(
            "FALLBACK_ENCODINGS", _as_list(ds_cfg.get("fallback_encodings")) or ["utf-8", "latin-1"]
        ),
        schema_path=_env("SCHEMA_PATH", ds_cfg.get("schema_path") or DEFAULT_SCHEMA_PATH),
        catalog_path=_env("CATALOG_PATH", report_cfg.get("catalog_path") or DEFAULT_CATALOG_PATH),
        analyses=_env_list("ANALYSES", _as_list(report_cfg.get("analyses"))),
        export_dir=_off(_env("EXPORT_DIR", export_cfg.get("export_dir"))),
        export_formats=_env_list("EXPORT_FORMATS", _as_list(export_cfg.get("formats")) or ["json", "md"]),
        max_rows_per_section=max_rows,
    )

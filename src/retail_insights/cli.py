"""Command line entry point: ``retail-insights``.

Loads settings, the schema registry and the analysis catalog, reads the orders
dataset, assembles the report and prints it (optionally exporting files).

Exit codes:
  0  report produced (failed sections are marked inside the report)
  1  --strict was given and at least one section failed
  2  dataset, configuration or catalog problem; no report produced
"""
from __future__ import annotations

import argparse
import dataclasses
import sys
from typing import List, Optional

from retail_insights.config.settings import load_settings
from retail_insights.data.dataset import load_dataset_from_settings
from retail_insights.exceptions.errors import (
    CatalogError,
    ConfigError,
    DatasetUnavailableError,
    ExportError,
)
from retail_insights.export.exporter import export_report, render_json, render_markdown, render_text
from retail_insights.logging.logger import get_logger, init_logging
from retail_insights.queries.catalog import load_catalog, select_analyses
from retail_insights.report.assembler import assemble_report
from retail_insights.schema.registry import SchemaRegistry

log = get_logger("cli")

RENDERERS = {
    "text": lambda report, max_rows: render_text(report, max_rows),
    "markdown": lambda report, max_rows: render_markdown(report, max_rows),
    "json": lambda report, max_rows: render_json(report),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="retail-insights",
        description="Run the retail orders analyses and print the insights report.",
    )
    parser.add_argument("--config", default=None, help="YAML config file (defaults to config/<APP_ENV>.yaml).")
    parser.add_argument("--dataset", default=None, help="SQLite or CSV orders dataset (overrides config/DATASET_PATH).")
    parser.add_argument("--table", default=None, help="Table name inside a SQLite dataset.")
    parser.add_argument("--catalog", default=None, help="Alternative analysis catalog YAML.")
    parser.add_argument("--only", default=None, help="Comma-separated analysis keys to run (catalog order is kept).")
    parser.add_argument("--format", dest="fmt", choices=sorted(RENDERERS), default="text", help="Output format.")
    parser.add_argument("--max-rows", type=int, default=None, help="Rows shown per section table.")
    parser.add_argument("--export-dir", default=None, help="Also write report files here (overrides export.export_dir).")
    parser.add_argument("--no-export", action="store_true", help="Do not write report files, even if configured.")
    parser.add_argument("--export-formats", default=None, help="Comma-separated: json,md,txt,pdf.")
    parser.add_argument("--list", action="store_true", help="List available analyses and exit.")
    parser.add_argument("--strict", action="store_true", help="Exit 1 if any section failed.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
        settings = dataclasses.replace(
            settings,
            dataset_path=args.dataset or settings.dataset_path,
            dataset_table=args.table or settings.dataset_table,
        )
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    init_logging(settings.log_level, settings.log_file)

    try:
        catalog = load_catalog(args.catalog or settings.catalog_path)
        if args.list:
            for qd in catalog:
                print(f"{qd.key:32} {qd.title}")
            return 0
        only = args.only.split(",") if args.only else settings.analyses
        definitions = select_analyses(catalog, only)

        registry = SchemaRegistry.load(settings.schema_path)
        dataset = load_dataset_from_settings(settings, registry=registry)
    except (CatalogError, ConfigError) as e:
        log.error("Setup failed", extra={"error": str(e)})
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except DatasetUnavailableError as e:
        log.error("Dataset unavailable", extra={"error": str(e)})
        print(f"Dataset unavailable: {e}", file=sys.stderr)
        return 2

    report = assemble_report(dataset, definitions)
    max_rows = args.max_rows if args.max_rows is not None else settings.max_rows_per_section
    sys.stdout.write(RENDERERS[args.fmt](report, max_rows))

    export_dir = None if args.no_export else (args.export_dir or settings.export_dir)
    if export_dir:
        formats = args.export_formats.split(",") if args.export_formats else settings.export_formats
        try:
            paths = export_report(report, export_dir, formats=formats, max_rows=max_rows)
        except ExportError as e:
            print(f"Export failed: {e}", file=sys.stderr)
            return 2
        log.info("Report exported", extra={"paths": paths})

    if args.strict and report.failed_sections:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

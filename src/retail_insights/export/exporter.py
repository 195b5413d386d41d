from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import json
import pandas as pd

from reportlab.lib.pagesizes import letter
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet
from xml.sax.saxutils import escape

from retail_insights.exceptions.errors import ExportError
from retail_insights.logging.logger import get_logger
from retail_insights.report.assembler import Report, ReportSection
from retail_insights.report.narrative import column_formats, format_row

log = get_logger("export.exporter")

SUPPORTED_FORMATS = ("json", "md", "txt", "pdf")
FAILED_MARKER = "[FAILED]"

@dataclass(frozen=True)
class ExportPaths:
    json_path: Optional[str] = None
    md_path: Optional[str] = None
    txt_path: Optional[str] = None
    pdf_path: Optional[str] = None

def _display_frame(section: ReportSection, max_rows: Optional[int]) -> pd.DataFrame:
    qd = section.definition
    fmts = column_formats(qd)
    rows = section.rows[:max_rows] if max_rows else section.rows
    return pd.DataFrame([format_row(r, fmts) for r in rows], columns=qd.output_columns())

def _failure_line(section: ReportSection) -> str:
    err = section.error
    return f"{FAILED_MARKER} {err.kind}: {err.message}" if err else ""

def _header(report: Report) -> List[str]:
    failed = len(report.failed_sections)
    return [
        f"Source: {report.source} (table '{report.table}', {report.dataset_rows:,} rows)",
        f"Generated: {report.generated_at.isoformat(timespec='seconds')}",
        f"Sections: {len(report.sections)} ({failed} failed)",
    ]

def render_text(report: Report, max_rows: Optional[int] = None) -> str:
    lines: List[str] = ["RETAIL INSIGHTS REPORT", "=" * 22]
    lines.extend(_header(report))
    for i, s in enumerate(report.sections, start=1):
        title = f"{i}. {s.title}"
        lines.extend(["", title, "-" * len(title)])
        if not s.ok:
            lines.append(_failure_line(s))
            continue
        if s.rows:
            lines.append(_display_frame(s, max_rows).to_string(index=False))
            if max_rows and len(s.rows) > max_rows:
                lines.append(f"... {len(s.rows) - max_rows} more rows")
        else:
            lines.append("(no rows)")
        if s.narrative:
            lines.extend(["", s.narrative])
        if s.warning:
            lines.append(f"(warning: {s.warning})")
        if s.definition.recommendations:
            lines.extend(["", "Recommendations:"])
            lines.extend(f"  - {r}" for r in s.definition.recommendations)
    return "\n".join(lines) + "\n"

def _md_cell(v: Any) -> str:
    return str(v).replace("|", "\\|").replace("\n", " ")

def _md_table(df: pd.DataFrame) -> List[str]:
    cols = list(df.columns)
    out = ["| " + " | ".join(_md_cell(c) for c in cols) + " |", "|" + "|".join("---" for _ in cols) + "|"]
    for rec in df.itertuples(index=False, name=None):
        out.append("| " + " | ".join(_md_cell(v) for v in rec) + " |")
    return out

def render_markdown(report: Report, max_rows: Optional[int] = None) -> str:
    lines: List[str] = ["# Retail Insights Report", ""]
    lines.extend(f"- {h}" for h in _header(report))
    for i, s in enumerate(report.sections, start=1):
        lines.extend(["", f"## {i}. {s.title}", ""])
        if s.definition.description:
            lines.extend([f"_{s.definition.description}_", ""])
        if not s.ok:
            lines.append(f"**{_failure_line(s)}**")
            continue
        if s.rows:
            lines.extend(_md_table(_display_frame(s, max_rows)))
        else:
            lines.append("_No rows._")
        if s.narrative:
            lines.extend(["", f"**Insight:** {s.narrative}"])
        if s.warning:
            lines.extend(["", f"_Warning: {s.warning}_"])
        if s.definition.recommendations:
            lines.extend(["", "**Recommendations:**", ""])
            lines.extend(f"- {r}" for r in s.definition.recommendations)
    return "\n".join(lines) + "\n"

def report_to_dict(report: Report) -> Dict[str, Any]:
    return {
        "source": report.source,
        "table": report.table,
        "dataset_rows": report.dataset_rows,
        "generated_at": report.generated_at.isoformat(),
        "sections": [
            {
                "key": s.key,
                "title": s.title,
                "status": "ok" if s.ok else "failed",
                "columns": s.definition.output_columns(),
                "rows": s.rows,
                "narrative": s.narrative,
                "warning": s.warning,
                "recommendations": list(s.definition.recommendations),
                "error": (
                    {"kind": s.error.kind, "message": s.error.message, "missing_columns": s.error.missing_columns}
                    if s.error else None
                ),
            }
            for s in report.sections
        ],
    }

def render_json(report: Report) -> str:
    return json.dumps(report_to_dict(report), indent=2, default=str)

def _write_pdf(report: Report, pdf_path: str, max_rows: Optional[int]) -> None:
    styles = getSampleStyleSheet()
    doc = SimpleDocTemplate(pdf_path, pagesize=letter)
    elements = [Paragraph("Retail Insights Report", styles["Title"])]
    elements.extend(Paragraph(escape(h), styles["Normal"]) for h in _header(report))
    for i, s in enumerate(report.sections, start=1):
        elements.extend([Spacer(1, 12), Paragraph(escape(f"{i}. {s.title}"), styles["Heading2"])])
        if not s.ok:
            elements.append(Paragraph(escape(_failure_line(s)), styles["Normal"]))
            continue
        df = _display_frame(s, max_rows or 200)
        if len(df):
            t = Table([list(df.columns)] + df.astype(str).values.tolist(), repeatRows=1)
            t.setStyle(TableStyle([
                ("BACKGROUND", (0,0), (-1,0), colors.lightgrey),
                ("GRID", (0,0), (-1,-1), 0.25, colors.grey),
                ("FONTSIZE", (0,0), (-1,-1), 8),
                ("ALIGN", (0,0), (-1,-1), "LEFT"),
            ]))
            elements.append(t)
        if s.narrative:
            elements.extend([Spacer(1, 6), Paragraph(escape(s.narrative), styles["Normal"])])
        if s.warning:
            elements.append(Paragraph(escape(f"Warning: {s.warning}"), styles["Italic"]))
        for r in s.definition.recommendations:
            elements.append(Paragraph(escape(f"• {r}"), styles["Normal"]))
    doc.build(elements)

def export_report(
    report: Report,
    out_dir: str,
    base_name: str = "retail_insights_report",
    formats: Iterable[str] = ("json", "md"),
    max_rows: Optional[int] = None,
) -> ExportPaths:
    fmts = [f.strip().lower() for f in formats if f and f.strip()]
    unknown = [f for f in fmts if f not in SUPPORTED_FORMATS]
    if unknown:
        raise ExportError(f"Unsupported export formats: {unknown}")

    out = Path(out_dir)
    try:
        out.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportError(f"Cannot create export directory: {out_dir}") from e

    paths: Dict[str, Optional[str]] = {}
    renderers = {
        "json": lambda: render_json(report),
        "md": lambda: render_markdown(report, max_rows),
        "txt": lambda: render_text(report, max_rows),
    }
    for fmt in fmts:
        if fmt == "pdf":
            continue
        path = out / f"{base_name}.{fmt}"
        try:
            path.write_text(renderers[fmt](), encoding="utf-8")
            log.info("Exported report", extra={"format": fmt, "path": str(path)})
        except OSError as e:
            log.exception("Export failed", extra={"format": fmt})
            raise ExportError(f"{fmt} export failed") from e
        paths[f"{fmt}_path"] = str(path)

    if "pdf" in fmts:
        pdf_path = str(out / f"{base_name}.pdf")
        try:
            _write_pdf(report, pdf_path, max_rows)
            log.info("Exported report", extra={"format": "pdf", "path": pdf_path})
            paths["pdf_path"] = pdf_path
        except Exception:
            # PDF is best-effort; the text formats above already hold the full report.
            log.exception("PDF export failed")

    return ExportPaths(**paths)

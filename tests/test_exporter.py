import json

import pytest

from conftest import orders_frame
from retail_insights.data.dataset import load_dataset
from retail_insights.exceptions.errors import ExportError
from retail_insights.export.exporter import (
    FAILED_MARKER,
    export_report,
    render_json,
    render_markdown,
    render_text,
    report_to_dict,
)
from retail_insights.report.assembler import assemble_report


@pytest.fixture()
def report(dataset, catalog):
    return assemble_report(dataset, catalog)


@pytest.fixture()
def partial_report(make_db, registry, catalog):
    ds = load_dataset(make_db(orders_frame().drop(columns=["Returned"])), registry=registry)
    return assemble_report(ds, catalog)


def test_text_report_lists_every_section(report, catalog):
    text = render_text(report)

    for i, qd in enumerate(catalog, start=1):
        assert f"{i}. {qd.title}" in text
    assert "Recommendations:" in text
    assert FAILED_MARKER not in text
    assert "$192.00" in text


def test_failed_sections_are_marked_not_omitted(partial_report):
    text = render_text(partial_report)
    md = render_markdown(partial_report)

    assert "Return Rate by Region" in text
    assert text.count(FAILED_MARKER) == 4
    assert "SchemaMismatch" in text
    assert md.count(FAILED_MARKER) == 4
    assert "Sections: 15 (4 failed)" in text


def test_max_rows_truncates_tables(report):
    text = render_text(report, max_rows=1)

    assert "... 2 more rows" in text


def test_markdown_tables(report):
    md = render_markdown(report)

    assert md.startswith("# Retail Insights Report")
    assert "| category | total_sales | total_profit | profit_margin |" in md
    assert "| Technology | $830.00 | $192.00 | 23.1% |" in md
    assert "**Insight:**" in md


def test_json_structure(partial_report):
    data = json.loads(render_json(partial_report))

    assert len(data["sections"]) == 15
    first = data["sections"][0]
    assert first["key"] == "category_profitability"
    assert first["status"] == "ok"
    assert first["rows"][0]["category"] == "Technology"
    failed = [s for s in data["sections"] if s["status"] == "failed"]
    assert {s["error"]["kind"] for s in failed} == {"SchemaMismatch"}
    assert all(s["error"]["missing_columns"] == ["returned"] for s in failed)


def test_report_to_dict_keeps_raw_values(report):
    data = report_to_dict(report)

    assert data["sections"][0]["rows"][0]["total_profit"] == pytest.approx(192)


def test_export_writes_requested_formats(report, tmp_path):
    paths = export_report(report, str(tmp_path / "out"), base_name="run", formats=["json", "md", "txt", "pdf"])

    assert json.loads((tmp_path / "out" / "run.json").read_text(encoding="utf-8"))["table"] == "orders"
    assert paths.md_path.endswith("run.md")
    assert (tmp_path / "out" / "run.txt").read_text(encoding="utf-8").startswith("RETAIL INSIGHTS REPORT")
    assert paths.pdf_path and (tmp_path / "out" / "run.pdf").stat().st_size > 0


def test_export_rejects_unknown_format(report, tmp_path):
    with pytest.raises(ExportError):
        export_report(report, str(tmp_path), formats=["xlsx"])

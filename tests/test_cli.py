import json

import pytest

from conftest import orders_frame
from retail_insights.cli import main
from retail_insights.config.settings import DEFAULT_CATALOG_PATH, DEFAULT_SCHEMA_PATH, load_settings
from retail_insights.exceptions.errors import ConfigError


@pytest.fixture()
def config_file(tmp_path, orders_db):
    path = tmp_path / "test.yaml"
    path.write_text(
        "app:\n"
        "  log_level: WARNING\n"
        "  log_file: none\n"
        "dataset:\n"
        f"  path: {orders_db}\n"
        "  table: orders\n"
        "report:\n"
        "  analyses: [category_profitability, regional_performance]\n"
        "  max_rows_per_section: 5\n",
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for key in ("APP_ENV", "RETAIL_INSIGHTS_CONFIG", "DATASET_PATH", "DATASET_TABLE", "ANALYSES",
                "LOG_LEVEL", "LOG_FILE", "EXPORT_DIR", "EXPORT_FORMATS", "FALLBACK_ENCODINGS",
                "MAX_ROWS_PER_SECTION"):
        monkeypatch.delenv(key, raising=False)


def test_settings_from_yaml(config_file, orders_db):
    s = load_settings(config_file)

    assert s.dataset_path == orders_db
    assert s.analyses == ["category_profitability", "regional_performance"]
    assert s.log_file is None
    assert s.max_rows_per_section == 5
    assert s.schema_path == DEFAULT_SCHEMA_PATH
    assert s.catalog_path == DEFAULT_CATALOG_PATH
    assert s.export_formats == ["json", "md"]
    assert s.export_dir is None


def test_env_overrides_yaml(config_file, monkeypatch):
    monkeypatch.setenv("ANALYSES", "monthly_sales_trend")
    monkeypatch.setenv("DATASET_TABLE", "superstore")

    s = load_settings(config_file)

    assert s.analyses == ["monthly_sales_trend"]
    assert s.dataset_table == "superstore"


def test_missing_config(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(str(tmp_path / "missing.yaml"))


def test_cli_text_report(config_file, capsys):
    assert main(["--config", config_file]) == 0

    out = capsys.readouterr().out
    assert "1. Category Profitability" in out
    assert "2. Regional Performance" in out
    assert "Monthly Sales Trend" not in out


def test_cli_only_and_json(config_file, capsys):
    assert main(["--config", config_file, "--only", "top_returned_products,category_gmroi", "--format", "json"]) == 0

    data = json.loads(capsys.readouterr().out)
    assert [s["key"] for s in data["sections"]] == ["category_gmroi", "top_returned_products"]


def test_cli_list(config_file, capsys):
    assert main(["--config", config_file, "--list"]) == 0

    assert len(capsys.readouterr().out.strip().splitlines()) == 15


def test_cli_missing_dataset_exits_2(config_file, tmp_path, capsys):
    assert main(["--config", config_file, "--dataset", str(tmp_path / "gone.db")]) == 2

    assert "Dataset unavailable" in capsys.readouterr().err


def test_cli_unknown_analysis_exits_2(config_file, capsys):
    assert main(["--config", config_file, "--only", "nope"]) == 2


def test_cli_strict_with_failed_section(config_file, make_db, capsys):
    db = make_db(orders_frame().drop(columns=["Returned"]))
    args = ["--config", config_file, "--dataset", db, "--only", "return_rate_by_region,regional_performance"]

    assert main(args) == 0
    assert "[FAILED]" in capsys.readouterr().out
    assert main(args + ["--strict"]) == 1


def test_cli_export(config_file, tmp_path, capsys):
    out_dir = tmp_path / "exports"

    assert main(["--config", config_file, "--export-dir", str(out_dir), "--export-formats", "json,txt"]) == 0

    assert (out_dir / "retail_insights_report.json").exists()
    assert (out_dir / "retail_insights_report.txt").exists()


def _with_export_section(config_file, out_dir):
    with open(config_file, "a", encoding="utf-8") as fh:
        fh.write(f"export:\n  export_dir: {out_dir}\n  formats: [json]\n")


def test_cli_exports_to_configured_dir(config_file, tmp_path, capsys):
    out_dir = tmp_path / "configured"
    _with_export_section(config_file, out_dir)

    assert load_settings(config_file).export_dir == str(out_dir)
    assert main(["--config", config_file]) == 0

    payload = json.loads((out_dir / "retail_insights_report.json").read_text(encoding="utf-8"))
    assert [s["key"] for s in payload["sections"]] == ["category_profitability", "regional_performance"]
    assert not (out_dir / "retail_insights_report.md").exists()


def test_cli_no_export_overrides_config(config_file, tmp_path, capsys):
    out_dir = tmp_path / "configured"
    _with_export_section(config_file, out_dir)

    assert main(["--config", config_file, "--no-export"]) == 0

    assert not out_dir.exists()
    assert "Category Profitability" in capsys.readouterr().out


def test_export_dir_off_in_env(config_file, tmp_path, monkeypatch):
    _with_export_section(config_file, tmp_path / "configured")
    monkeypatch.setenv("EXPORT_DIR", "off")

    assert load_settings(config_file).export_dir is None


def test_cli_unknown_encoding_exits_2(config_file, tmp_path, monkeypatch, capsys):
    csv_path = tmp_path / "orders.csv"
    orders_frame().to_csv(csv_path, index=False)
    monkeypatch.setenv("FALLBACK_ENCODINGS", "no-such-codec")

    assert main(["--config", config_file, "--dataset", str(csv_path)]) == 2
    assert "Dataset unavailable" in capsys.readouterr().err

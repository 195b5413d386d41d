import pandas as pd
import pytest

from conftest import orders_frame, write_sqlite
from retail_insights.data.dataset import dataset_from_frame, load_dataset
from retail_insights.exceptions.errors import DataNotFoundError, DatasetUnavailableError
from retail_insights.ingestion.reader import read_orders
from retail_insights.preprocessing.cleaning import apply_aliases, coerce_types, standardize_columns
from retail_insights.schema.registry import normalize_name


def test_headers_are_normalized_to_canonical_names(dataset):
    assert dataset.columns == [
        "order_id", "order_date", "category", "sub_category", "product_name", "region",
        "segment", "city", "sales", "quantity", "discount", "profit", "returned",
    ]
    assert dataset.row_count == 8
    assert dataset.table == "orders"


def test_types_are_coerced(dataset):
    frame = dataset.frame
    assert pd.api.types.is_datetime64_any_dtype(frame["order_date"])
    assert pd.api.types.is_float_dtype(frame["sales"])
    assert frame["returned"].tolist() == [False, True, False, False, True, False, False, True]


def test_csv_dataset_with_fallback_encoding(tmp_path, registry):
    path = tmp_path / "orders.csv"
    df = orders_frame()
    df.loc[0, "City"] = "Montréal"
    df.to_csv(path, index=False, encoding="latin-1")

    ds = load_dataset(str(path), registry=registry, fallback_encodings=["utf-8", "latin-1"])

    assert ds.row_count == 8
    assert ds.frame.loc[0, "city"] == "Montréal"


def test_unknown_encoding_is_unavailable(tmp_path):
    path = tmp_path / "orders.csv"
    orders_frame().to_csv(path, index=False)

    with pytest.raises(DatasetUnavailableError, match="no-such-codec"):
        read_orders(str(path), fallback_encodings=["no-such-codec"])


def test_unknown_encoding_falls_through_to_next(tmp_path):
    path = tmp_path / "orders.csv"
    orders_frame().to_csv(path, index=False)

    result = read_orders(str(path), fallback_encodings=["no-such-codec", "utf-8"])

    assert result.encoding_used == "utf-8"
    assert result.rows_read == 8


def test_missing_file_is_unavailable(tmp_path):
    with pytest.raises(DatasetUnavailableError):
        load_dataset(str(tmp_path / "nope.db"))
    # Same class under the runner-facing name
    with pytest.raises(DataNotFoundError):
        read_orders(str(tmp_path / "nope.csv"))


def test_single_table_fallback(tmp_path):
    path = write_sqlite(tmp_path / "superstore.db", orders_frame(), table="superstore")

    res = read_orders(path, table="orders")

    assert res.table == "superstore"
    assert res.rows_read == 8


def test_missing_table_among_many(tmp_path):
    path = write_sqlite(tmp_path / "multi.db", orders_frame(), table="a")
    write_sqlite(path, orders_frame(), table="b")

    with pytest.raises(DatasetUnavailableError, match="Table 'orders' not found"):
        read_orders(path, table="orders")


def test_corrupt_sqlite_file(tmp_path):
    path = tmp_path / "broken.db"
    path.write_bytes(b"this is not a database" * 10)

    with pytest.raises(DatasetUnavailableError):
        read_orders(str(path))


def test_unsupported_format(tmp_path):
    path = tmp_path / "orders.xlsx"
    path.write_bytes(b"")

    with pytest.raises(DatasetUnavailableError, match="Unsupported dataset format"):
        read_orders(str(path))


def test_missing_declared_column_is_not_fatal(make_db, registry):
    df = orders_frame().drop(columns=["Returned"])

    ds = load_dataset(make_db(df), registry=registry)

    assert not ds.has_column("returned")
    assert ds.has_column("profit")


def test_cleaning_helpers():
    df = pd.DataFrame({" Sub-Category ": ["Phones"], "Returns": ["yes"], "Sales": ["12.5"]})

    out = standardize_columns(df)
    assert list(out.columns) == ["sub_category", "returns", "sales"]

    out = apply_aliases(out, {"returns": "returned", "sub_category": "sub_category"})
    assert list(out.columns) == ["sub_category", "returned", "sales"]

    out = coerce_types(out, {"returned": "bool", "sales": "float", "profit": "float"})
    assert bool(out.loc[0, "returned"]) is True
    assert out.loc[0, "sales"] == pytest.approx(12.5)


def test_normalize_name():
    assert normalize_name("Product Name") == "product_name"
    assert normalize_name("Sub-Category") == "sub_category"
    assert normalize_name("  Order  Date ") == "order_date"


def test_dataset_from_frame(registry):
    ds = dataset_from_frame(orders_frame(), registry)

    assert ds.source == "<memory>"
    assert "product_name" in ds.columns

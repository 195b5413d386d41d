import sqlite3

import pandas as pd
import pytest

from retail_insights.config.settings import DEFAULT_SCHEMA_PATH
from retail_insights.data.dataset import load_dataset
from retail_insights.queries.catalog import load_catalog
from retail_insights.schema.registry import SchemaRegistry


# Source-style headers, as they appear in the raw orders export.
ORDERS = [
    ("O1", "2024-01-05", "Technology", "Phones", "Phone A", "West", "Consumer", "Seattle", 500.0, 2, 0.0, 120.0, "No"),
    ("O1", "2024-01-05", "Furniture", "Tables", "Table B", "West", "Consumer", "Seattle", 300.0, 1, 0.2, -30.0, "Yes"),
    ("O2", "2024-01-20", "Office Supplies", "Paper", "Paper C", "East", "Corporate", "New York", 50.0, 5, 0.0, 20.0, "No"),
    ("O3", "2024-02-03", "Technology", "Phones", "Phone A", "East", "Corporate", "New York", 250.0, 1, 0.0, 60.0, "No"),
    ("O4", "2024-02-15", "Furniture", "Chairs", "Chair D", "Central", "Home Office", "Chicago", 400.0, 2, 0.3, -50.0, "Yes"),
    ("O5", "2024-03-01", "Office Supplies", "Paper", "Paper C", "South", "Consumer", "Houston", 40.0, 4, 0.0, 15.0, "No"),
    ("O6", "2024-03-10", "Technology", "Accessories", "Mouse E", "West", "Corporate", "Seattle", 80.0, 4, 0.1, 12.0, "No"),
    ("O7", "2024-03-22", "Furniture", "Chairs", "Chair D", "East", "Consumer", "New York", 200.0, 1, 0.0, 40.0, "Yes"),
]
HEADERS = [
    "Order ID", "Order Date", "Category", "Sub-Category", "Product Name", "Region", "Segment",
    "City", "Sales", "Quantity", "Discount", "Profit", "Returned",
]


def orders_frame(rows=None) -> pd.DataFrame:
    return pd.DataFrame(rows if rows is not None else ORDERS, columns=HEADERS)


def write_sqlite(path, df: pd.DataFrame, table: str = "orders") -> str:
    con = sqlite3.connect(path)
    try:
        df.to_sql(table, con, index=False)
    finally:
        con.close()
    return str(path)


@pytest.fixture(scope="session")
def registry():
    return SchemaRegistry.load(DEFAULT_SCHEMA_PATH)


@pytest.fixture(scope="session")
def catalog():
    return load_catalog()


@pytest.fixture()
def catalog_by_key(catalog):
    return {q.key: q for q in catalog}


@pytest.fixture()
def make_db(tmp_path):
    """Factory: write a frame to a fresh SQLite file and return its path."""
    counter = {"n": 0}

    def _make(df: pd.DataFrame = None, table: str = "orders") -> str:
        counter["n"] += 1
        return write_sqlite(tmp_path / f"orders_{counter['n']}.db", orders_frame() if df is None else df, table)

    return _make


@pytest.fixture()
def orders_db(make_db):
    return make_db()


@pytest.fixture()
def dataset(orders_db, registry):
    return load_dataset(orders_db, registry=registry)

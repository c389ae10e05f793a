"""Pytest configuration and shared fixtures."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from etl.schema import ColumnMeta, SemanticType, TableSchema

# information_schema rows: (ordinal, name, data_type, max_length, precision, scale)
PAYMENTS_CATALOG = [
    (1, "RowId", "integer", None, 32, 0),
    (2, "Id", "integer", None, 32, 0),
    (3, "Name", "character varying", 50, None, None),
    (4, "Amount", "numeric", None, 10, 2),
    (5, "LOADDATE", "timestamp without time zone", None, None, None),
]


class FakeSink:
    """In-memory sink recording every operation in call order."""

    def __init__(self, catalog: Dict[Tuple[str, str], List[tuple]]):
        self.catalog = catalog
        self.calls: List[Tuple[str, str]] = []
        self.truncated: List[str] = []
        self.inserted: Dict[str, List[tuple]] = {}
        self.columns: Dict[str, List[str]] = {}
        self.batch_sizes: List[int] = []
        self.schema_queries = 0
        # Raised by bulk_insert when set
        self.insert_error: Optional[Exception] = None

    def query_columns(self, schema_name: str, table_name: str) -> List[tuple]:
        self.schema_queries += 1
        self.calls.append(("schema", table_name))
        return list(self.catalog.get((schema_name, table_name), []))

    def truncate(self, schema_name: str, table_name: str) -> None:
        self.calls.append(("truncate", table_name))
        self.truncated.append(table_name)

    def bulk_insert(self, schema_name, table_name, columns, rows, batch_size) -> int:
        self.calls.append(("insert", table_name))
        if self.insert_error is not None:
            raise self.insert_error
        self.inserted.setdefault(table_name, []).extend(rows)
        self.columns[table_name] = list(columns)
        self.batch_sizes.append(batch_size)
        return len(rows)


@pytest.fixture
def payments_catalog() -> List[tuple]:
    return list(PAYMENTS_CATALOG)


@pytest.fixture
def fake_sink(payments_catalog: List[tuple]) -> FakeSink:
    """Sink knowing sap.Payments and sap.Refunds, both with Id/Name/Amount."""
    return FakeSink(
        {
            ("sap", "Payments"): payments_catalog,
            ("sap", "Refunds"): payments_catalog,
        }
    )


@pytest.fixture
def payments_schema() -> TableSchema:
    """Id:Int32, Name:Text(50), Amount:Decimal(10,2)."""
    return TableSchema(
        "sap",
        "Payments",
        [
            ColumnMeta(1, "Id", "integer", SemanticType.INT32),
            ColumnMeta(2, "Name", "character varying", SemanticType.TEXT, max_length=50),
            ColumnMeta(3, "Amount", "numeric", SemanticType.DECIMAL, precision=10, scale=2),
        ],
    )


@pytest.fixture
def write_csv(tmp_path: Path):
    """Write text to a CSV file under tmp_path and return its path."""

    def _write(name: str, content: str, encoding: str = "utf-8") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding=encoding)
        return path

    return _write

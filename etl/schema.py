"""
Table Schema Catalog

Discovers the destination table's column metadata at runtime and maps each
SQL type to the semantic type used by the coercion engine.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Sequence, Tuple

from etl.errors import SchemaNotFoundError

logger = logging.getLogger(__name__)

# System-managed columns filled by the database, never by the CSV
RESERVED_COLUMNS = frozenset({"rowid", "loaddate"})


class SemanticType(str, Enum):
    """Native value type a column's raw text is converted into."""

    INT32 = "Int32"
    INT64 = "Int64"
    INT16 = "Int16"
    BYTE = "Byte"
    BOOL = "Bool"
    DECIMAL = "Decimal"
    FLOAT64 = "Float64"
    FLOAT32 = "Float32"
    DATE = "Date"
    TIME = "Time"
    GUID = "Guid"
    TEXT = "Text"


# PostgreSQL and SQL Server spellings of the same types
SQL_TYPE_MAP: Dict[str, SemanticType] = {
    "int": SemanticType.INT32,
    "int4": SemanticType.INT32,
    "integer": SemanticType.INT32,
    "bigint": SemanticType.INT64,
    "int8": SemanticType.INT64,
    "smallint": SemanticType.INT16,
    "int2": SemanticType.INT16,
    "tinyint": SemanticType.BYTE,
    "bit": SemanticType.BOOL,
    "bool": SemanticType.BOOL,
    "boolean": SemanticType.BOOL,
    "decimal": SemanticType.DECIMAL,
    "numeric": SemanticType.DECIMAL,
    "money": SemanticType.DECIMAL,
    "smallmoney": SemanticType.DECIMAL,
    "float": SemanticType.FLOAT64,
    "float8": SemanticType.FLOAT64,
    "double precision": SemanticType.FLOAT64,
    "real": SemanticType.FLOAT32,
    "float4": SemanticType.FLOAT32,
    "date": SemanticType.DATE,
    "datetime": SemanticType.DATE,
    "datetime2": SemanticType.DATE,
    "smalldatetime": SemanticType.DATE,
    "timestamp": SemanticType.DATE,
    "timestamp without time zone": SemanticType.DATE,
    "timestamp with time zone": SemanticType.DATE,
    "time": SemanticType.TIME,
    "time without time zone": SemanticType.TIME,
    "time with time zone": SemanticType.TIME,
    "uuid": SemanticType.GUID,
    "uniqueidentifier": SemanticType.GUID,
}


def map_sql_type(data_type: str) -> SemanticType:
    """Map a sink type name to its semantic type; unknown types are text."""
    return SQL_TYPE_MAP.get((data_type or "").strip().lower(), SemanticType.TEXT)


@dataclass(frozen=True)
class ColumnMeta:
    """Metadata for one destination column."""

    ordinal: int
    name: str
    data_type: str
    semantic_type: SemanticType
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None

    @classmethod
    def from_catalog_row(cls, row: Sequence) -> "ColumnMeta":
        """
        Build column metadata from an information_schema row.

        Args:
            row: (ordinal, name, data_type, max_length, precision, scale)
        """
        ordinal, name, data_type, max_length, precision, scale = row
        semantic_type = map_sql_type(data_type)
        return cls(
            ordinal=int(ordinal),
            name=name,
            data_type=data_type,
            semantic_type=semantic_type,
            max_length=int(max_length) if semantic_type is SemanticType.TEXT and max_length else None,
            precision=int(precision) if semantic_type is SemanticType.DECIMAL and precision is not None else None,
            scale=int(scale) if semantic_type is SemanticType.DECIMAL and scale is not None else None,
        )


class TableSchema:
    """Ordered, immutable column list for one (schema, table) pair."""

    def __init__(self, schema_name: str, table_name: str, columns: Sequence[ColumnMeta]):
        self.schema_name = schema_name
        self.table_name = table_name
        self.columns: Tuple[ColumnMeta, ...] = tuple(sorted(columns, key=lambda c: c.ordinal))
        self._positions: Dict[str, int] = {}
        for position, column in enumerate(self.columns):
            self._positions.setdefault(column.name.lower(), position)

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def column_names(self) -> list:
        return [c.name for c in self.columns]

    def position(self, name: str) -> Optional[int]:
        """Zero-based index of the named column, or None."""
        return self._positions.get(name.lower())

    def get(self, name: str) -> Optional[ColumnMeta]:
        position = self.position(name)
        return None if position is None else self.columns[position]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._positions

    def __iter__(self) -> Iterator[ColumnMeta]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def __repr__(self) -> str:
        return f"TableSchema({self.qualified_name}, columns={self.column_names})"


class SchemaCatalog:
    """
    Reads table schemas from the sink.

    Schemas may be memoized in a caller-supplied cache so repeated files for
    the same table within one run reuse a single catalog query.
    """

    def __init__(self, sink):
        """
        Args:
            sink: Object exposing query_columns(schema_name, table_name)
        """
        self.sink = sink

    def fetch_schema(
        self,
        schema_name: str,
        table_name: str,
        cache: Optional[Dict[Tuple[str, str], TableSchema]] = None,
    ) -> TableSchema:
        """
        Fetch the column metadata for a table.

        Args:
            schema_name: Database schema
            table_name: Table name
            cache: Optional run-scoped memo

        Returns:
            TableSchema without reserved system columns

        Raises:
            SchemaNotFoundError: If the sink reports no columns
            SinkUnavailableError: If the sink cannot be reached
        """
        key = (schema_name.lower(), table_name.lower())
        if cache is not None and key in cache:
            logger.debug(f"Schema cache hit for {schema_name}.{table_name}")
            return cache[key]

        rows = self.sink.query_columns(schema_name, table_name)
        if not rows:
            raise SchemaNotFoundError(schema_name, table_name)

        columns = [
            ColumnMeta.from_catalog_row(row)
            for row in rows
            if str(row[1]).lower() not in RESERVED_COLUMNS
        ]
        if not columns:
            raise SchemaNotFoundError(schema_name, table_name)

        schema = TableSchema(schema_name, table_name, columns)
        logger.info(f"Fetched schema for {schema.qualified_name}: {len(schema)} columns")
        logger.debug(
            "Columns: " + ", ".join(f"{c.name}:{c.semantic_type.value}" for c in schema)
        )

        if cache is not None:
            cache[key] = schema
        return schema

"""
Schema-Driven Row Transformation

Reconciles CSV headers against the destination schema and converts raw rows
into typed rows shaped exactly like the schema.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from etl.converters import TypedValue, coerce
from etl.errors import MissingColumnsError, ValueConversionError
from etl.schema import TableSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a successful reconciliation."""

    extra: Tuple[str, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return bool(self.extra)


class TypedRow:
    """One converted value per schema column, in schema order."""

    __slots__ = ("schema", "values", "line")

    def __init__(self, schema: TableSchema, values: Iterable[TypedValue], line: Optional[int] = None):
        self.schema = schema
        self.values: Tuple[TypedValue, ...] = tuple(values)
        self.line = line
        if len(self.values) != len(schema):
            raise ValueError(
                f"Typed row has {len(self.values)} values for {len(schema)} columns"
            )

    def __getitem__(self, name: str) -> TypedValue:
        position = self.schema.position(name)
        if position is None:
            raise KeyError(name)
        return self.values[position]

    def __len__(self) -> int:
        return len(self.values)

    def as_tuple(self) -> Tuple[Any, ...]:
        """Plain values for the insert step; None is NULL."""
        return tuple(v.value for v in self.values)

    def as_dict(self) -> dict:
        return {c.name: v.value for c, v in zip(self.schema.columns, self.values)}

    def __repr__(self) -> str:
        return f"TypedRow({self.as_dict()!r})"


def reconcile(raw_columns: Iterable[str], schema: TableSchema) -> ReconcileResult:
    """
    Compare CSV columns against the schema, case-insensitively.

    Args:
        raw_columns: Column names from the CSV header
        schema: Destination table schema

    Returns:
        ReconcileResult listing extra CSV columns (ignored)

    Raises:
        MissingColumnsError: If any schema column is absent from the CSV
    """
    raw_columns = list(raw_columns)
    present = {name.lower() for name in raw_columns}

    missing = [c.name for c in schema if c.name.lower() not in present]
    extra = tuple(name for name in raw_columns if name not in schema)
    if extra:
        logger.warning(f"Extra CSV columns will be ignored: {', '.join(extra)}")

    if missing:
        raise MissingColumnsError(missing, extra=extra)

    return ReconcileResult(extra=extra)


class TypeCoercer:
    """
    Converts RawRows into TypedRows for one destination table.

    All rows are converted before anything is written: the first bad field
    aborts the whole file.
    """

    def __init__(self, schema: TableSchema):
        self.schema = schema
        self.metrics = {
            "total_rows": 0,
            "null_values": 0,
        }

    def coerce_row(self, raw_row) -> TypedRow:
        """
        Convert one RawRow.

        Raises:
            ValueConversionError: With the row's source line attached
        """
        line = getattr(raw_row, "line", None)
        values = []
        for column in self.schema:
            try:
                typed = coerce(raw_row.get(column.name), column)
            except ValueConversionError as e:
                e.line = line
                raise
            if typed.is_null:
                self.metrics["null_values"] += 1
            values.append(typed)
        return TypedRow(self.schema, values, line=line)

    def coerce_rows(self, raw_rows: Iterable, columns: Optional[Iterable[str]] = None) -> List[TypedRow]:
        """
        Reconcile and convert every row.

        Args:
            raw_rows: Iterable of RawRow
            columns: CSV header names; taken from the first row when omitted

        Returns:
            List of TypedRows in source order

        Raises:
            MissingColumnsError: If the CSV lacks schema columns
            ValueConversionError: On the first unconvertible field
        """
        rows = iter(raw_rows)
        typed_rows: List[TypedRow] = []

        if columns is not None:
            reconcile(columns, self.schema)
        else:
            first = next(rows, None)
            if first is None:
                logger.info(f"No data rows for {self.schema.qualified_name}")
                return typed_rows
            reconcile(first.keys(), self.schema)
            typed_rows.append(self.coerce_row(first))

        for raw_row in rows:
            typed_rows.append(self.coerce_row(raw_row))

        self.metrics["total_rows"] = len(typed_rows)
        logger.info(
            f"Converted {len(typed_rows)} rows for {self.schema.qualified_name} "
            f"({self.metrics['null_values']} null values)"
        )
        return typed_rows


def coerce_rows(raw_rows: Iterable, schema: TableSchema, columns: Optional[Iterable[str]] = None) -> List[TypedRow]:
    """
    Convenience function to convert raw rows against a schema.

    Args:
        raw_rows: Iterable of RawRow
        schema: Destination table schema
        columns: CSV header names (optional)

    Returns:
        List of TypedRows
    """
    coercer = TypeCoercer(schema)
    return coercer.coerce_rows(raw_rows, columns)

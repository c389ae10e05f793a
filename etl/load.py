"""
Table Loading

Truncate-then-insert per destination table. A table is truncated at most once
per run, before its first insert, so several files feeding the same table
append to one fresh copy.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

import psycopg2

from etl.errors import LoaderError, SinkWriteError, SourceReadError
from etl.extract import CsvReader
from etl.schema import SchemaCatalog, TableSchema
from etl.transform import TypeCoercer, TypedRow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5000


class TruncatedSet:
    """Names of tables already truncated in the current run. Only grows."""

    def __init__(self):
        self._tables: Set[str] = set()

    @staticmethod
    def _key(schema_name: str, table_name: str) -> str:
        return f"{schema_name}.{table_name}".lower()

    def __contains__(self, item: Tuple[str, str]) -> bool:
        return self._key(*item) in self._tables

    def add(self, schema_name: str, table_name: str) -> None:
        self._tables.add(self._key(schema_name, table_name))

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._tables))

    def __len__(self) -> int:
        return len(self._tables)


class RunContext:
    """
    State scoped to one run: truncated tables and fetched schemas.

    Create a new context per run; nothing here is shared across runs.
    """

    def __init__(self):
        self.truncated = TruncatedSet()
        self.schemas: Dict[Tuple[str, str], TableSchema] = {}


class FileState(str, Enum):
    DISCOVERED = "discovered"
    SCHEMA_FETCHED = "schema_fetched"
    PARSED = "parsed"
    TRUNCATED = "truncated"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class LoadResult:
    """Outcome of loading one file."""

    file: str
    table: str
    state: FileState = FileState.DISCOVERED
    rows_loaded: int = 0
    truncated: bool = False
    error: Optional[str] = None
    history: List[FileState] = field(default_factory=lambda: [FileState.DISCOVERED])

    def advance(self, state: FileState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state is FileState.LOADED


def effective_batch_size(batch_size: int, row_count: int) -> int:
    """Clamp the batch size to [1, batch_size] and to the row count."""
    return max(1, min(batch_size, row_count))


class TableLoader:
    """
    Loads CSV files into their destination tables.

    Every row is converted before the database is touched: a file with one
    bad value is rejected whole and its table is left untouched.
    """

    def __init__(
        self,
        sink,
        reader: Optional[CsvReader] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Initialize table loader.

        Args:
            sink: Object exposing query_columns, truncate and bulk_insert
            reader: CSV reader (strict, sniffed delimiter by default)
            batch_size: Maximum rows per insert batch
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.sink = sink
        self.reader = reader or CsvReader()
        self.batch_size = batch_size
        self.catalog = SchemaCatalog(sink)

    def load_file(
        self,
        path: Union[str, Path],
        schema_name: str,
        table_name: str,
        context: RunContext,
    ) -> LoadResult:
        """
        Load one CSV file into schema_name.table_name.

        Args:
            path: CSV file path
            schema_name: Destination schema
            table_name: Destination table
            context: Run-scoped state (truncated tables, schema memo)

        Returns:
            LoadResult in state LOADED

        Raises:
            LoaderError: Any per-file failure, with file and table attached
        """
        path = Path(path)
        result = LoadResult(file=path.name, table=f"{schema_name}.{table_name}")

        try:
            schema = self.catalog.fetch_schema(schema_name, table_name, cache=context.schemas)
            result.advance(FileState.SCHEMA_FETCHED)

            typed_rows = self._parse(path, schema)
            result.advance(FileState.PARSED)

            if (schema_name, table_name) not in context.truncated:
                self.sink.truncate(schema_name, table_name)
                context.truncated.add(schema_name, table_name)
                result.truncated = True
                result.advance(FileState.TRUNCATED)
            else:
                logger.info(f"{result.table} already truncated in this run; appending")

            if not typed_rows:
                logger.info(f"No rows to load from {path.name} into {result.table}")
            else:
                result.rows_loaded = self._insert(schema, typed_rows)
            result.advance(FileState.LOADED)

        except LoaderError as e:
            self._fail(result, e, path)
            raise
        except psycopg2.Error as e:
            error = SinkWriteError(f"Database rejected the load: {str(e).strip()}")
            self._fail(result, error, path)
            raise error from e
        except (OSError, UnicodeDecodeError) as e:
            error = SourceReadError(f"Cannot read file: {e}")
            self._fail(result, error, path)
            raise error from e

        logger.info(f"File loaded OK: {path.name} -> {result.table} ({result.rows_loaded} rows)")
        return result

    def _fail(self, result: LoadResult, error: LoaderError, path: Path) -> None:
        error.with_context(file=path.name, table=result.table)
        error.result = result
        result.advance(FileState.FAILED)
        result.error = str(error)

    def _parse(self, path: Path, schema: TableSchema) -> List[TypedRow]:
        """Read, reconcile and convert every row of the file."""
        columns = self.reader.read_header(path)
        coercer = TypeCoercer(schema)
        return coercer.coerce_rows(self.reader.read_rows(path), columns=columns)

    def _insert(self, schema: TableSchema, typed_rows: List[TypedRow]) -> int:
        batch_size = effective_batch_size(self.batch_size, len(typed_rows))
        logger.info(
            f"Loading {len(typed_rows)} rows into {schema.qualified_name} "
            f"(batch size {batch_size})"
        )
        return self.sink.bulk_insert(
            schema.schema_name,
            schema.table_name,
            schema.column_names,
            [row.as_tuple() for row in typed_rows],
            batch_size,
        )


def load_file(
    path: Union[str, Path],
    schema_name: str,
    table_name: str,
    context: RunContext,
    sink,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> LoadResult:
    """
    Convenience function to load one file.

    Args:
        path: CSV file path
        schema_name: Destination schema
        table_name: Destination table
        context: Run-scoped state
        sink: Database sink
        batch_size: Maximum rows per insert batch

    Returns:
        LoadResult for the file
    """
    loader = TableLoader(sink, batch_size=batch_size)
    return loader.load_file(path, schema_name, table_name, context)

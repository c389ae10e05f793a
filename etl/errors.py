"""
Loader Error Taxonomy

Every failure that aborts a single file's load derives from LoaderError.
The run driver catches these at the file boundary, logs them and moves on.
"""

from typing import Any, Iterable, Optional


class LoaderError(Exception):
    """Base class for per-file load failures."""

    def __init__(
        self,
        message: str,
        file: Optional[str] = None,
        table: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.file = file
        self.table = table
        # LoadResult of the failed file, set by the loader
        self.result = None

    def with_context(self, file: Optional[str] = None, table: Optional[str] = None) -> "LoaderError":
        """Attach file/table context if not already present and return self."""
        if file and not self.file:
            self.file = file
        if table and not self.table:
            self.table = table
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.file:
            parts.append(f"file={self.file}")
        if self.table:
            parts.append(f"table={self.table}")
        return " | ".join(parts)


class SchemaNotFoundError(LoaderError):
    """The sink reported no columns for the destination table."""

    def __init__(self, schema_name: str, table_name: str):
        super().__init__(
            f"No columns found for {schema_name}.{table_name}",
            table=f"{schema_name}.{table_name}",
        )
        self.schema_name = schema_name
        self.table_name = table_name


class MissingColumnsError(LoaderError):
    """The CSV lacks one or more columns required by the table schema."""

    def __init__(self, missing: Iterable[str], extra: Iterable[str] = ()):
        self.missing = list(missing)
        self.extra = list(extra)
        super().__init__(f"CSV is missing columns: {', '.join(self.missing)}")


class MalformedCsvError(LoaderError):
    """Structural CSV defect detected by the strict reader."""

    def __init__(self, message: str, file: Optional[str] = None, line: Optional[int] = None):
        super().__init__(message, file=file)
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} | line={self.line}" if self.line else base


class ValueConversionError(LoaderError):
    """A raw field could not be converted to its column's declared type."""

    def __init__(
        self,
        column: str,
        declared_type: str,
        raw_value: Any,
        line: Optional[int] = None,
    ):
        super().__init__(f"Invalid value for column {column} ({declared_type}): '{raw_value}'")
        self.column = column
        self.declared_type = declared_type
        self.raw_value = raw_value
        self.line = line

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} | line={self.line}" if self.line else base


class SinkUnavailableError(LoaderError):
    """Connection or timeout failure talking to the database."""


class SinkWriteError(LoaderError):
    """The database rejected a statement while loading the file."""


class SourceReadError(LoaderError):
    """The file could not be opened or decoded."""

"""
CSV Data Extraction

Reads delimited text files with a header row into RawRows.
Supports a strict mode that fails fast on structural defects and a tolerant
mode that logs the defect and substitutes empty fields.
"""

import csv
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Union

import pandas as pd

from etl.errors import MalformedCsvError

logger = logging.getLogger(__name__)

DELIMITER_CANDIDATES = ",;\t|"
SNIFF_SAMPLE_SIZE = 64 * 1024
CHUNK_ROWS = 10000

# The python engine tokenizes through the csv module, capped at 128 KiB per field by default
FIELD_SIZE_LIMIT = 2 ** 31 - 1
csv.field_size_limit(FIELD_SIZE_LIMIT)

PARSER_LINE = re.compile(r"line (\d+)")


class RawRow(Mapping):
    """
    Read-only mapping of column name to raw text for one data record.

    Lookups are case-insensitive. Whitespace-only fields are stored as None.
    """

    __slots__ = ("_data", "_index", "line")

    def __init__(self, data: Dict[str, Optional[str]], line: Optional[int] = None):
        self._data = dict(data)
        self._index: Dict[str, str] = {}
        for name in self._data:
            self._index.setdefault(name.lower(), name)
        self.line = line

    def __getitem__(self, key: str) -> Optional[str]:
        if not isinstance(key, str):
            raise KeyError(key)
        return self._data[self._index[key.lower()]]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._index

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RawRow(line={self.line}, {self._data!r})"


def present_fields(values: Sequence) -> List[str]:
    """
    Fields actually present in a parsed record.

    The parser pads records shorter than the header with NaN, while fields
    that are present but empty come back as "".
    """
    fields = list(values)
    while fields and pd.isna(fields[-1]):
        fields.pop()
    return ["" if pd.isna(value) else value for value in fields]


def is_blank(fields: List[str]) -> bool:
    """A record from an empty or whitespace-only line."""
    return not fields or (len(fields) == 1 and not fields[0].strip())


def normalize_field(value: Optional[str]) -> Optional[str]:
    """Map blank or whitespace-only fields to None."""
    if value is None or not value.strip():
        return None
    return value


class CsvReader:
    """
    Reads CSV files into RawRows with pandas.

    Every field is read as text (dtype=str, no NA inference); conversion is
    left to the schema. Rows are produced lazily, one chunk at a time, and
    each call to read_rows() reopens the file.

    RawRow.line is the record number: the header is record 1 and blank lines
    are not counted.
    """

    def __init__(
        self,
        delimiter: Optional[str] = None,
        encoding: str = "utf-8-sig",
        strict: bool = True,
        chunk_rows: int = CHUNK_ROWS,
    ):
        """
        Initialize CSV reader.

        Args:
            delimiter: Field delimiter; sniffed from the file when None
            encoding: Text encoding (utf-8-sig strips a BOM when present)
            strict: Fail on structural defects instead of substituting
            chunk_rows: Records parsed per pandas chunk
        """
        self.delimiter = delimiter or None
        self.encoding = encoding
        self.strict = strict
        self.chunk_rows = chunk_rows

    def detect_delimiter(self, path: Path) -> str:
        """
        Return the configured delimiter or sniff one from the file.

        Falls back to a comma when the sample is inconclusive.
        """
        if self.delimiter:
            return self.delimiter

        with open(path, encoding=self.encoding, newline="") as f:
            sample = f.read(SNIFF_SAMPLE_SIZE)

        try:
            delimiter = csv.Sniffer().sniff(sample, delimiters=DELIMITER_CANDIDATES).delimiter
        except csv.Error:
            delimiter = ","
        logger.debug(f"Using delimiter {delimiter!r} for {path.name}")
        return delimiter

    def _read_csv(self, path: Path, delimiter: str, width: Optional[int] = None, **kwargs):
        """
        pd.read_csv configured to return every field as raw text.

        In tolerant mode records longer than the header are cut to width.
        """
        if self.strict or width is None:
            on_bad_lines = "error"
        else:

            def on_bad_lines(fields: List[str]) -> List[str]:
                logger.warning(f"{path.name}: expected {width} fields, found {len(fields)}; extra fields dropped")
                return fields[:width]

        return pd.read_csv(
            path,
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding=self.encoding,
            engine="python",
            on_bad_lines=on_bad_lines,
            **kwargs,
        )

    def read_header(self, path: Union[str, Path]) -> List[str]:
        """
        Read and validate the header row.

        Args:
            path: CSV file path

        Returns:
            Column names in file order

        Raises:
            MalformedCsvError: On a missing header, or empty/duplicate names in strict mode
        """
        path = Path(path)
        return self._read_header(path, self.detect_delimiter(path))

    def read_rows(self, path: Union[str, Path]) -> Iterator[RawRow]:
        """
        Yield one RawRow per non-blank data record.

        Args:
            path: CSV file path

        Yields:
            RawRow objects in file order

        Raises:
            MalformedCsvError: On structural defects in strict mode
        """
        path = Path(path)
        delimiter = self.detect_delimiter(path)
        columns = self._read_header(path, delimiter)
        width = len(columns)
        record = 0
        count = 0

        try:
            with self._read_csv(path, delimiter, width=width, chunksize=self.chunk_rows) as chunks:
                for chunk in chunks:
                    for values in chunk.itertuples(index=False, name=None):
                        record += 1
                        if record == 1:
                            continue
                        fields = present_fields(values)
                        if is_blank(fields):
                            continue
                        fields = self._fit_width(fields, width, path, record)
                        count += 1
                        yield RawRow(
                            {name: normalize_field(value) for name, value in zip(columns, fields)},
                            line=record,
                        )
        except (pd.errors.ParserError, csv.Error) as e:
            raise self._malformed(e, path) from e

        logger.info(f"Read {count} rows from {path.name}")

    def _read_header(self, path: Path, delimiter: str) -> List[str]:
        try:
            frame = self._read_csv(path, delimiter, nrows=1)
        except pd.errors.EmptyDataError as e:
            raise MalformedCsvError("File has no header row", file=path.name) from e
        except (pd.errors.ParserError, csv.Error) as e:
            raise self._malformed(e, path, prefix="Unreadable header: ") from e

        if frame.empty:
            raise MalformedCsvError("File has no header row", file=path.name)
        return self._normalize_header(present_fields(frame.iloc[0].tolist()), path, 1)

    def _malformed(self, error: Exception, path: Path, prefix: str = "") -> MalformedCsvError:
        match = PARSER_LINE.search(str(error))
        line = int(match.group(1)) if match else None
        return MalformedCsvError(f"{prefix}{str(error).strip()}", file=path.name, line=line)

    def _normalize_header(self, fields: List[str], path: Path, line: int) -> List[str]:
        """Trim header names and resolve empty or duplicate ones."""
        names: List[str] = []
        seen: Dict[str, int] = {}

        for position, raw_name in enumerate(fields):
            name = raw_name.strip()
            if not name:
                if self.strict:
                    raise MalformedCsvError(
                        f"Empty header name at position {position + 1}", file=path.name, line=line
                    )
                name = f"Unnamed: {position}"
                logger.warning(f"{path.name}: empty header at position {position + 1} renamed to '{name}'")

            key = name.lower()
            if key in seen:
                if self.strict:
                    raise MalformedCsvError(f"Duplicate header name '{name}'", file=path.name, line=line)
                while key in seen:
                    seen[name.lower()] += 1
                    renamed = f"{name}.{seen[name.lower()]}"
                    key = renamed.lower()
                logger.warning(f"{path.name}: duplicate header '{name}' renamed to '{renamed}'")
                name = renamed

            seen[key] = 0
            names.append(name)

        return names

    def _fit_width(self, fields: List[str], width: int, path: Path, line: int) -> List[str]:
        """Check the field count against the header; pad in tolerant mode."""
        if len(fields) == width:
            return fields

        if self.strict:
            raise MalformedCsvError(
                f"Expected {width} fields, found {len(fields)}", file=path.name, line=line
            )

        logger.warning(f"{path.name} line {line}: expected {width} fields, found {len(fields)}")
        return fields + [""] * (width - len(fields))


def read_csv_rows(path: Union[str, Path], settings=None) -> Iterator[RawRow]:
    """
    Convenience function to read rows using settings.

    Args:
        path: CSV file path
        settings: Settings object with CSV_DELIMITER, CSV_ENCODING and CSV_STRICT

    Returns:
        Iterator of RawRows
    """
    if settings is None:
        return CsvReader().read_rows(path)

    reader = CsvReader(
        delimiter=settings.CSV_DELIMITER,
        encoding=settings.CSV_ENCODING,
        strict=settings.CSV_STRICT,
    )
    return reader.read_rows(path)

"""Tests for CSV reading."""

import inspect
import logging
from pathlib import Path

import pytest

from etl.errors import MalformedCsvError
from etl.extract import CsvReader, RawRow, read_csv_rows


class TestRawRow:
    def test_case_insensitive_mapping(self) -> None:
        row = RawRow({"Id": "1", "Name": None}, line=5)

        assert row["id"] == "1"
        assert row["NAME"] is None
        assert "nAmE" in row
        assert row.get("missing") is None
        assert list(row) == ["Id", "Name"]
        assert len(row) == 2
        assert row.line == 5

    def test_first_duplicate_wins_on_lookup(self) -> None:
        row = RawRow({"Id": "1", "ID": "2"})
        assert row["id"] == "1"


class TestCsvReader:
    def test_reads_rows_with_header_names(self, write_csv) -> None:
        path = write_csv("payments.csv", "Id,Name,Amount\n1,Ana,100.50\n2,Luis,\n")

        rows = list(CsvReader().read_rows(path))

        assert len(rows) == 2
        assert dict(rows[0]) == {"Id": "1", "Name": "Ana", "Amount": "100.50"}
        assert rows[1]["amount"] is None
        assert [r.line for r in rows] == [2, 3]

    def test_rows_are_lazy_and_reopenable(self, write_csv) -> None:
        path = write_csv("p.csv", "Id\n1\n2\n")
        reader = CsvReader()

        rows = reader.read_rows(path)
        assert inspect.isgenerator(rows)
        assert len(list(rows)) == 2
        assert list(rows) == []
        assert len(list(reader.read_rows(path))) == 2

    def test_blank_lines_and_whitespace_fields(self, write_csv) -> None:
        path = write_csv("p.csv", "\nId,Name\n\n1,   \n\n2,Eva\n")

        rows = list(CsvReader(delimiter=",").read_rows(path))

        assert len(rows) == 2
        assert rows[0]["Name"] is None
        assert rows[1]["Name"] == "Eva"

    def test_header_names_are_trimmed(self, write_csv) -> None:
        path = write_csv("p.csv", " Id , Name \n1,Ana\n")
        assert CsvReader(delimiter=",").read_header(path) == ["Id", "Name"]

    def test_bom_is_stripped(self, write_csv) -> None:
        path = write_csv("p.csv", "\ufeffId,Name\n1,Ana\n")
        rows = list(CsvReader().read_rows(path))
        assert list(rows[0]) == ["Id", "Name"]

    def test_delimiter_is_sniffed(self, write_csv) -> None:
        path = write_csv("p.csv", "Id;Name\n1;Ana\n2;Luis\n")
        reader = CsvReader()
        assert reader.detect_delimiter(path) == ";"
        assert [r["Name"] for r in reader.read_rows(path)] == ["Ana", "Luis"]

    def test_configured_delimiter(self, write_csv) -> None:
        path = write_csv("p.csv", "Id|Name\n1|Ana\n")
        rows = list(CsvReader(delimiter="|").read_rows(path))
        assert rows[0]["Name"] == "Ana"

    def test_quoted_fields(self, write_csv) -> None:
        path = write_csv("p.csv", 'Id,Name\n1,"Perez, Ana"\n2,"say ""hi"""\n')
        rows = list(CsvReader(delimiter=",").read_rows(path))
        assert rows[0]["Name"] == "Perez, Ana"
        assert rows[1]["Name"] == 'say "hi"'

    def test_empty_file_has_no_header(self, write_csv) -> None:
        path = write_csv("p.csv", "\n\n")
        with pytest.raises(MalformedCsvError):
            list(CsvReader(delimiter=",").read_rows(path))


class TestStrictMode:
    @pytest.mark.parametrize("header", ["Id,Name,id", "Id,,Name"])
    def test_bad_headers_fail(self, write_csv, header: str) -> None:
        path = write_csv("p.csv", f"{header}\n1,2,3\n")
        with pytest.raises(MalformedCsvError) as exc_info:
            CsvReader(delimiter=",").read_header(path)
        assert exc_info.value.file == "p.csv"
        assert exc_info.value.line == 1

    def test_short_row_fails_with_line(self, write_csv) -> None:
        path = write_csv("p.csv", "Id,Name,Amount\n1,Ana,5\n2,Luis\n")
        with pytest.raises(MalformedCsvError) as exc_info:
            list(CsvReader(delimiter=",").read_rows(path))
        assert exc_info.value.line == 3

    def test_long_row_fails(self, write_csv) -> None:
        path = write_csv("p.csv", "Id,Name\n1,Ana,extra\n")
        with pytest.raises(MalformedCsvError):
            list(CsvReader(delimiter=",").read_rows(path))

    def test_bad_quoting_fails(self, write_csv) -> None:
        path = write_csv("p.csv", 'Id,Name\n1,"Ana"x\n')
        with pytest.raises(MalformedCsvError):
            list(CsvReader(delimiter=",").read_rows(path))

    def test_empty_trailing_field_is_not_missing(self, write_csv) -> None:
        path = write_csv("p.csv", "Id,Name,Amount\n1,Ana,\n")
        rows = list(CsvReader(delimiter=",").read_rows(path))
        assert rows[0]["Amount"] is None

    def test_field_larger_than_128_kib(self, write_csv) -> None:
        big = "x" * 200_000
        path = write_csv("p.csv", f"Id,Name\n1,{big}\n2,Eva\n")

        rows = list(CsvReader(delimiter=",").read_rows(path))

        assert [r["Id"] for r in rows] == ["1", "2"]
        assert len(rows[0]["Name"]) == 200_000


class TestTolerantMode:
    def test_short_and_long_rows_are_fitted(self, write_csv, caplog: pytest.LogCaptureFixture) -> None:
        path = write_csv("p.csv", "Id,Name,Amount\n1,Ana\n2,Luis,3,extra\n")

        with caplog.at_level(logging.WARNING, logger="etl.extract"):
            rows = list(CsvReader(delimiter=",", strict=False).read_rows(path))

        assert dict(rows[0]) == {"Id": "1", "Name": "Ana", "Amount": None}
        assert dict(rows[1]) == {"Id": "2", "Name": "Luis", "Amount": "3"}
        assert "expected 3 fields, found 2" in caplog.text
        assert "expected 3 fields, found 4" in caplog.text

    def test_duplicate_and_empty_headers_are_renamed(self, write_csv) -> None:
        path = write_csv("p.csv", "Id,,Name,ID\n1,x,Ana,2\n")

        reader = CsvReader(delimiter=",", strict=False)

        assert reader.read_header(path) == ["Id", "Unnamed: 1", "Name", "ID.1"]
        row = next(reader.read_rows(path))
        assert row["id"] == "1"
        assert row["id.1"] == "2"

    def test_field_larger_than_128_kib_keeps_every_row(self, write_csv) -> None:
        big = "y" * 200_000
        path = write_csv("p.csv", f"Id,Name\n1,Ana\n2,\"{big}\"\n3,Eva\n")

        rows = list(CsvReader(delimiter=",", strict=False).read_rows(path))

        assert [r["Id"] for r in rows] == ["1", "2", "3"]
        assert rows[1]["Name"] == big


class TestReadCsvRows:
    def test_uses_settings(self, write_csv) -> None:
        path = write_csv("p.csv", "Id|Name\n1|Ana\n")

        class StubSettings:
            CSV_DELIMITER = "|"
            CSV_ENCODING = "utf-8"
            CSV_STRICT = True

        rows = list(read_csv_rows(path, StubSettings()))
        assert rows[0]["Name"] == "Ana"

    def test_defaults(self, write_csv) -> None:
        path = write_csv("p.csv", "Id,Name\n1,Ana\n")
        assert len(list(read_csv_rows(Path(path)))) == 1

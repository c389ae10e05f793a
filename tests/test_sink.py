"""Tests for the PostgreSQL sink, with the connection pool mocked out."""

from unittest.mock import MagicMock, patch

import pytest
from psycopg2 import OperationalError, sql

from db.sink import PostgresSink, quote_qualified_name
from etl.errors import SinkUnavailableError


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def connection(cursor):
    with patch("db.sink.DatabaseConnection") as mock_connection:
        mock_connection.get_cursor.return_value.__enter__.return_value = cursor
        yield mock_connection


class TestQuoting:
    def test_quote_qualified_name(self) -> None:
        assert quote_qualified_name("sap", "CapacitaWeb") == '"sap"."CapacitaWeb"'

    def test_embedded_quotes_are_doubled(self) -> None:
        assert quote_qualified_name("sap", 'we"ird') == '"sap"."we""ird"'


class TestQueryColumns:
    def test_parameters_are_bound(self, connection) -> None:
        connection.execute_query.return_value = [(1, "Id", "integer", None, 32, 0)]

        rows = PostgresSink().query_columns("sap", "Payments")

        assert rows == [(1, "Id", "integer", None, 32, 0)]
        query, params = connection.execute_query.call_args[0]
        assert "information_schema.columns" in query
        assert params == ("sap", "Payments")

    def test_connection_failure(self, connection) -> None:
        connection.execute_query.side_effect = OperationalError("down")

        with pytest.raises(SinkUnavailableError) as exc_info:
            PostgresSink().query_columns("sap", "Payments")
        assert exc_info.value.table == "sap.Payments"


class TestTruncate:
    def test_table_name_is_a_parameter(self, connection, cursor) -> None:
        PostgresSink(truncate_procedure="etl.usp_truncate_table").truncate("sap", "CapacitaWeb")

        statement, params = cursor.execute.call_args[0]
        assert isinstance(statement, sql.Composed)
        assert params == ('"sap"."CapacitaWeb"',)
        assert "CapacitaWeb" not in repr(statement)
        assert "usp_truncate_table" in repr(statement)

    def test_connection_failure(self, connection, cursor) -> None:
        cursor.execute.side_effect = OperationalError("down")

        with pytest.raises(SinkUnavailableError):
            PostgresSink().truncate("sap", "Payments")


class TestBulkInsert:
    @patch("db.sink.execute_values")
    def test_rows_sent_in_pages(self, execute_values, connection, cursor) -> None:
        rows = [(1, "Ana"), (2, "Luis")]

        count = PostgresSink().bulk_insert("sap", "Payments", ["Id", "Name"], rows, batch_size=2)

        assert count == 2
        args, kwargs = execute_values.call_args
        assert args[0] is cursor
        assert args[2] == rows
        assert kwargs["page_size"] == 2
        assert "Payments" in repr(args[1])

    @patch("db.sink.execute_values")
    def test_timeout_and_lock(self, execute_values, connection, cursor) -> None:
        PostgresSink(timeout_seconds=30).bulk_insert("sap", "Payments", ["Id"], [(1,)], batch_size=1)

        timeout_call, lock_call = cursor.execute.call_args_list
        assert timeout_call[0] == ("SET LOCAL statement_timeout = %s", (30000,))
        assert "LOCK TABLE" in repr(lock_call[0][0])

    @patch("db.sink.execute_values")
    def test_no_timeout_no_lock(self, execute_values, connection, cursor) -> None:
        PostgresSink(lock_table=False).bulk_insert("sap", "Payments", ["Id"], [(1,)], batch_size=1)

        cursor.execute.assert_not_called()
        execute_values.assert_called_once()

    @patch("db.sink.execute_values")
    def test_timeout_becomes_unavailable(self, execute_values, connection) -> None:
        execute_values.side_effect = OperationalError("canceling statement due to statement timeout")

        with pytest.raises(SinkUnavailableError) as exc_info:
            PostgresSink().bulk_insert("sap", "Payments", ["Id"], [(1,)], batch_size=1)
        assert isinstance(exc_info.value.__cause__, OperationalError)

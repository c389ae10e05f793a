"""
PostgreSQL Load Sink

Database side of a load. Tables are emptied through a stored procedure
and refilled with batched multi-row INSERTs.
"""

import logging
from typing import List, Sequence, Tuple

from psycopg2 import InterfaceError, OperationalError, sql
from psycopg2.extras import execute_values
from psycopg2.pool import PoolError

from db.connection import DatabaseConnection
from etl.errors import SinkUnavailableError

logger = logging.getLogger(__name__)

# Errors meaning the database could not be reached or the statement timed out
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, PoolError)


def quote_qualified_name(*parts: str) -> str:
    """Double-quote identifier parts for parse_ident() on the server side."""
    return ".".join('"' + part.replace('"', '""') + '"' for part in parts)


class PostgresSink:
    """
    Schema-queryable, bulk-insertable PostgreSQL target.
    """

    COLUMNS_QUERY = """
        SELECT ordinal_position, column_name, data_type,
               character_maximum_length, numeric_precision, numeric_scale
        FROM information_schema.columns
        WHERE table_schema = %s AND table_name = %s
        ORDER BY ordinal_position;
    """

    def __init__(
        self,
        truncate_procedure: str = "etl.usp_truncate_table",
        timeout_seconds: int = 0,
        lock_table: bool = True,
    ):
        """
        Initialize the sink.

        Args:
            truncate_procedure: Schema-qualified stored procedure name
            timeout_seconds: Statement timeout for bulk inserts (0 = none)
            lock_table: Take a table lock for the duration of the insert
        """
        self.truncate_procedure = truncate_procedure
        self.timeout_seconds = timeout_seconds
        self.lock_table = lock_table

    def query_columns(self, schema_name: str, table_name: str) -> List[Tuple]:
        """
        Read column metadata from information_schema.

        Returns:
            List of (ordinal, name, data_type, max_length, precision, scale)

        Raises:
            SinkUnavailableError: If the database cannot be reached
        """
        try:
            return DatabaseConnection.execute_query(self.COLUMNS_QUERY, (schema_name, table_name))
        except UNAVAILABLE_ERRORS as e:
            raise SinkUnavailableError(
                f"Schema query failed: {e}", table=f"{schema_name}.{table_name}"
            ) from e

    def truncate(self, schema_name: str, table_name: str) -> None:
        """
        Truncate a table through the stored procedure.

        The table name is a bound parameter; only the configured procedure
        name is composed into the statement, as a quoted identifier.

        Raises:
            SinkUnavailableError: If the database cannot be reached
        """
        statement = sql.SQL("CALL {procedure}(%s)").format(
            procedure=sql.Identifier(*self.truncate_procedure.split("."))
        )
        try:
            with DatabaseConnection.get_cursor() as cursor:
                cursor.execute(statement, (quote_qualified_name(schema_name, table_name),))
        except UNAVAILABLE_ERRORS as e:
            raise SinkUnavailableError(
                f"Truncate failed: {e}", table=f"{schema_name}.{table_name}"
            ) from e

        logger.info(f"TRUNCATE executed for {schema_name}.{table_name}")

    def bulk_insert(
        self,
        schema_name: str,
        table_name: str,
        columns: Sequence[str],
        rows: Sequence[Tuple],
        batch_size: int,
    ) -> int:
        """
        Insert all rows in one transaction, batch_size rows per statement.

        Args:
            schema_name: Destination schema
            table_name: Destination table
            columns: Destination column names, in row-value order
            rows: Value tuples
            batch_size: Rows per INSERT statement

        Returns:
            Number of rows inserted

        Raises:
            SinkUnavailableError: On connection failure or statement timeout
        """
        table = sql.Identifier(schema_name, table_name)
        statement = sql.SQL("INSERT INTO {table} ({columns}) VALUES %s").format(
            table=table,
            columns=sql.SQL(", ").join(sql.Identifier(name) for name in columns),
        )

        try:
            with DatabaseConnection.get_cursor() as cursor:
                if self.timeout_seconds:
                    cursor.execute(
                        "SET LOCAL statement_timeout = %s", (int(self.timeout_seconds * 1000),)
                    )
                if self.lock_table:
                    cursor.execute(
                        sql.SQL("LOCK TABLE {table} IN SHARE ROW EXCLUSIVE MODE").format(table=table)
                    )
                execute_values(cursor, statement, rows, page_size=batch_size)
        except UNAVAILABLE_ERRORS as e:
            raise SinkUnavailableError(
                f"Bulk insert failed: {e}", table=f"{schema_name}.{table_name}"
            ) from e

        logger.info(f"Bulk insert OK: {len(rows)} rows into {schema_name}.{table_name}")
        return len(rows)

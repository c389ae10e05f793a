"""
PostgreSQL Connection Pool

Each sink operation (schema query, truncate, bulk insert) borrows one
connection, runs in its own transaction and hands the connection back.
"""

from psycopg2 import pool, OperationalError
from contextlib import contextmanager
from typing import Optional
import logging

logger = logging.getLogger(__name__)

APPLICATION_NAME = "csv-bulk-load"


class DatabaseConnection:
    """
    Process-wide pool shared by every sink operation of a run.

    The loader is sequential, so two connections are plenty.
    """

    _pool: Optional[pool.SimpleConnectionPool] = None

    @classmethod
    def initialize(
        cls,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_connections: int = 1,
        max_connections: int = 2,
        connect_timeout: int = 10,
    ) -> None:
        """
        Open the pool.

        Args:
            host: Server host
            port: Server port
            database: Database name
            user: Login role
            password: Login password
            min_connections: Connections opened up front
            max_connections: Upper bound on borrowed connections
            connect_timeout: Seconds to wait for the server

        Raises:
            OperationalError: If the server cannot be reached
        """
        if cls._pool is not None:
            logger.warning("Database pool already open; reopening")
            cls.close_all()

        try:
            cls._pool = pool.SimpleConnectionPool(
                min_connections,
                max_connections,
                host=host,
                port=port,
                database=database,
                user=user,
                password=password,
                connect_timeout=connect_timeout,
                application_name=APPLICATION_NAME,
            )
        except OperationalError as e:
            logger.error(f"Cannot open database pool for {host}:{port}/{database}: {e}")
            raise

        logger.info(f"Database pool open for {user}@{host}:{port}/{database}")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._pool is not None

    @classmethod
    def close_all(cls) -> None:
        """Close every pooled connection."""
        if cls._pool is None:
            return
        cls._pool.closeall()
        cls._pool = None
        logger.info("Database pool closed")

    @classmethod
    @contextmanager
    def get_connection(cls, commit: bool = True):
        """
        Borrow a connection for one transaction.

        The transaction is committed when the block exits normally and
        commit is True; otherwise it is rolled back. A connection the
        server dropped is discarded instead of returned to the pool.

        Args:
            commit: Commit on normal exit (False for read-only work)

        Yields:
            psycopg2 connection

        Raises:
            OperationalError: If the pool is not open
        """
        if cls._pool is None:
            raise OperationalError("Database pool is not open; call initialize() first")

        conn = cls._pool.getconn()
        try:
            yield conn
            if commit:
                conn.commit()
            else:
                conn.rollback()
        except Exception as e:
            if not conn.closed:
                conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise
        finally:
            cls._pool.putconn(conn, close=bool(conn.closed))

    @classmethod
    @contextmanager
    def get_cursor(cls, commit: bool = True):
        """
        Borrow a cursor on a fresh transaction.

        Example:
            with DatabaseConnection.get_cursor() as cursor:
                cursor.execute("CALL etl.usp_truncate_table(%s)", ('"sap"."Payments"',))
        """
        with cls.get_connection(commit=commit) as conn:
            with conn.cursor() as cursor:
                yield cursor

    @classmethod
    def execute_query(cls, query, params: Optional[tuple] = None) -> list:
        """
        Run a read-only query and fetch every row.

        Args:
            query: SQL string or psycopg2.sql composable
            params: Bound parameters

        Returns:
            Result rows as tuples
        """
        with cls.get_cursor(commit=False) as cursor:
            cursor.execute(query, params or ())
            return cursor.fetchall()

"""
ODBC Connection Helper

This module provides the small SQL client the transfer pipeline needs for
table discovery: run a query and get rows back, or execute a statement.
Connections are opened with pyodbc from a ConnectionProfile and closed after
every call.
"""

from typing import Any, List, Optional, Tuple
import logging

import pyodbc

from mssql_bcp_transfer.connection_profile import ConnectionProfile

logger = logging.getLogger(__name__)


class OdbcConnectionHelper:
    """
    Helper class for ODBC connections to a SQL Server-compatible database.

    Provides get_records, get_first and run over short-lived pyodbc
    connections built from a ConnectionProfile.
    """

    def __init__(self, profile: ConnectionProfile, database: str = '', timeout: int = 30):
        """
        Initialize the ODBC connection helper.

        Args:
            profile: Connection profile for the server
            database: Database to connect to, defaults to the profile database
            timeout: Login timeout in seconds
        """
        self.profile = profile
        self.database = database or profile.database
        self.timeout = timeout

    def _build_connection_string(self) -> str:
        """
        Build ODBC connection string from the profile.

        Returns:
            ODBC connection string
        """
        config = self.profile.odbc_config(self.database)
        return ';'.join([f"{k}={v}" for k, v in config.items() if v])

    def get_conn(self) -> pyodbc.Connection:
        """Open a new pyodbc connection to the database."""
        return pyodbc.connect(self._build_connection_string(), timeout=self.timeout)

    def release_conn(self, conn: Optional[pyodbc.Connection]) -> None:
        if conn is None:
            return
        conn.close()

    def get_records(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows as a list of tuples.

        Args:
            sql: SQL query to execute
            parameters: Optional list of parameters for the query

        Returns:
            List of rows
        """
        conn = None
        try:
            conn = self.get_conn()
            cursor = conn.cursor()

            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)

            return cursor.fetchall()
        except Exception as e:
            logger.debug(f"Error executing query: {e}")
            logger.debug(f"Query: {sql}")
            raise
        finally:
            self.release_conn(conn)

    def get_first(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row, or None if no rows.

        Args:
            sql: SQL query to execute
            parameters: Optional list of parameters for the query
        """
        conn = None
        try:
            conn = self.get_conn()
            cursor = conn.cursor()

            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)

            return cursor.fetchone()
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            logger.error(f"Query: {sql}")
            raise
        finally:
            self.release_conn(conn)

    def run(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None,
        autocommit: bool = False
    ) -> None:
        """
        Execute a SQL statement.

        Args:
            sql: SQL statement to execute
            parameters: Optional list of parameters for the statement
            autocommit: Whether to commit automatically
        """
        conn = None
        try:
            conn = self.get_conn()
            if autocommit:
                conn.autocommit = True

            cursor = conn.cursor()

            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)

            if not autocommit:
                conn.commit()
        except Exception as e:
            logger.error(f"Error executing statement: {e}")
            logger.error(f"SQL: {sql}")
            if conn and not autocommit:
                conn.rollback()
            raise
        finally:
            self.release_conn(conn)

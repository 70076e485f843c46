"""
Tests for ODBC Connection Helper Module

These tests validate connection string building, parameterization,
connection cleanup and error handling of ODBC operations.
"""

import pytest
from unittest.mock import MagicMock, patch
from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.odbc_helper import OdbcConnectionHelper


def _mock_connection(rows=None, first=None):
    mock_cursor = MagicMock()
    mock_cursor.fetchall.return_value = rows or []
    mock_cursor.fetchone.return_value = first
    mock_connection = MagicMock()
    mock_connection.cursor.return_value = mock_cursor
    return mock_connection, mock_cursor


class TestOdbcConnectionHelper:
    """Test ODBC connection helper."""

    @pytest.fixture
    def profile(self):
        return ConnectionProfile(
            hostname='localhost',
            username='sa',
            password='TestPassword123',
            database='TestDB',
        )

    @pytest.fixture
    def helper(self, profile):
        return OdbcConnectionHelper(profile)

    def test_build_connection_string(self, helper):
        """Test connection string building from the profile."""
        conn_str = helper._build_connection_string()

        assert 'DRIVER={ODBC Driver 18 for SQL Server}' in conn_str
        # Port 1433 is default, so not appended to server string
        assert 'SERVER=localhost;' in conn_str
        assert 'DATABASE=TestDB' in conn_str
        assert 'UID=sa' in conn_str
        assert 'PWD=TestPassword123' in conn_str
        assert 'TrustServerCertificate=yes' in conn_str

    def test_database_override(self, profile):
        """Test that an explicit database replaces the profile database."""
        helper = OdbcConnectionHelper(profile, database='OtherDB')

        assert 'DATABASE=OtherDB' in helper._build_connection_string()

    def test_empty_database_omitted(self):
        """Test that an empty database is left out of the connection string."""
        profile = ConnectionProfile(hostname='localhost', use_win_auth=True)
        conn_str = OdbcConnectionHelper(profile)._build_connection_string()

        assert 'DATABASE' not in conn_str
        assert 'Trusted_Connection=yes' in conn_str
        assert 'UID' not in conn_str

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_get_conn_passes_timeout(self, mock_connect, helper):
        """Test that get_conn creates a pyodbc connection with the login timeout."""
        mock_connection = MagicMock()
        mock_connect.return_value = mock_connection

        conn = helper.get_conn()

        assert conn == mock_connection
        assert mock_connect.call_args.kwargs['timeout'] == 30

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_get_records_executes_query(self, mock_connect, helper):
        """Test get_records executes query and returns results."""
        mock_connection, mock_cursor = _mock_connection(rows=[('dbo', 'Users', 10)])
        mock_connect.return_value = mock_connection

        result = helper.get_records('select 1')

        assert result == [('dbo', 'Users', 10)]
        mock_cursor.execute.assert_called_once_with('select 1')

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_get_records_with_parameters(self, mock_connect, helper):
        """Test get_records with parameterized query."""
        mock_connection, mock_cursor = _mock_connection()
        mock_connect.return_value = mock_connection

        helper.get_records('select * from t where table_catalog = ?', parameters=['TestDB'])

        mock_cursor.execute.assert_called_once_with(
            'select * from t where table_catalog = ?',
            ['TestDB']
        )

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_get_first_returns_single_row(self, mock_connect, helper):
        """Test get_first returns first row."""
        mock_connection, mock_cursor = _mock_connection(first=('Microsoft SQL Server 2022',))
        mock_connect.return_value = mock_connection

        result = helper.get_first('select @@version')

        assert result == ('Microsoft SQL Server 2022',)
        mock_cursor.fetchone.assert_called_once()

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_run_commits(self, mock_connect, helper):
        """Test run executes a statement and commits."""
        mock_connection, mock_cursor = _mock_connection()
        mock_connect.return_value = mock_connection

        helper.run('truncate table dbo.Users')

        mock_cursor.execute.assert_called_once()
        mock_connection.commit.assert_called_once()

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_run_with_autocommit(self, mock_connect, helper):
        """Test run with autocommit enabled."""
        mock_connection, _ = _mock_connection()
        mock_connect.return_value = mock_connection

        helper.run('truncate table dbo.Users', autocommit=True)

        assert mock_connection.autocommit is True
        mock_connection.commit.assert_not_called()

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_connection_cleanup_on_error(self, mock_connect, helper):
        """Test connection is closed even on error."""
        mock_connection, mock_cursor = _mock_connection()
        mock_cursor.execute.side_effect = Exception('Invalid object name')
        mock_connect.return_value = mock_connection

        with pytest.raises(Exception, match='Invalid object name'):
            helper.get_records('select * from pg_catalog.pg_class')

        mock_connection.close.assert_called_once()

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    def test_rollback_on_error(self, mock_connect, helper):
        """Test transaction is rolled back on error."""
        mock_connection, mock_cursor = _mock_connection()
        mock_cursor.execute.side_effect = Exception('Insert failed')
        mock_connect.return_value = mock_connection

        with pytest.raises(Exception):
            helper.run('insert into dbo.Users values (1)')

        mock_connection.rollback.assert_called_once()
        mock_connection.close.assert_called_once()

    @patch('mssql_bcp_transfer.odbc_helper.pyodbc.connect')
    @patch('mssql_bcp_transfer.odbc_helper.logger')
    def test_record_query_errors_logged_at_debug(self, mock_logger, mock_connect, helper):
        """Test that failing catalog queries are logged quietly, with the query."""
        mock_connection, mock_cursor = _mock_connection()
        mock_cursor.execute.side_effect = Exception('Invalid object name')
        mock_connect.return_value = mock_connection

        with pytest.raises(Exception):
            helper.get_records('select * from pg_catalog.pg_class')

        mock_logger.error.assert_not_called()
        assert any('pg_catalog.pg_class' in str(c) for c in mock_logger.debug.call_args_list)

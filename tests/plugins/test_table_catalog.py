"""
Tests for Table Catalog Module

These tests validate table discovery from a database (including the
dialect fallback chain) and from an existing archive.
"""

import os
import zipfile

import pytest
from unittest.mock import Mock
from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.table_catalog import (
    ANSI_TABLES_QUERY,
    BABELFISH_TABLES_QUERY,
    MSSQL_TABLES_QUERY,
    TableWithRowsCount,
    TableWithSize,
    check_connection,
    format_bytes,
    load_database_names,
    load_tables_from_db,
    load_tables_from_file,
)
from mssql_bcp_transfer.transfer_error import ArchiveError, DiscoveryError


@pytest.fixture
def profile():
    return ConnectionProfile(hostname='localhost', username='sa', password='pw', database='db1')


class TestLoadTablesFromDb:
    """Test database discovery."""

    def test_first_query_succeeds(self, profile):
        helper = Mock()
        helper.get_records.return_value = [('dbo', 'Users', 10), ('dbo', 'Posts', 0)]
        lines = []

        tables = load_tables_from_db(lines.append, profile, 'db1', helper=helper)

        assert [(t.schema, t.table, t.row_count) for t in tables] == [
            ('dbo', 'Users', 10), ('dbo', 'Posts', 0)
        ]
        assert not any(t.export for t in tables)
        helper.get_records.assert_called_once_with(BABELFISH_TABLES_QUERY)
        assert lines == ['Loading tables ...', 'dbo.Users 10 rows', 'dbo.Posts 0 rows']

    def test_falls_back_to_ansi_query(self, profile):
        """Babelfish and SQL Server queries fail, information_schema succeeds."""
        helper = Mock()
        helper.get_records.side_effect = [
            Exception('relation "pg_catalog.pg_class" does not exist'),
            Exception("Invalid object name 'sys.dm_db_partition_stats'"),
            [('dbo', 'A', -1), ('dbo', 'B', -1)],
        ]

        tables = load_tables_from_db(lambda line: None, profile, 'db1', helper=helper)

        assert [t.table for t in tables] == ['A', 'B']
        assert all(t.row_count == -1 for t in tables)
        calls = helper.get_records.call_args_list
        assert calls[1].args[0] == MSSQL_TABLES_QUERY
        assert calls[2].args[0] == ANSI_TABLES_QUERY
        assert calls[2].kwargs['parameters'] == ['db1']

    def test_sql_server_query_ends_cascade(self, profile):
        """Babelfish query fails, SQL Server query succeeds, ANSI query is never issued."""
        helper = Mock()
        helper.get_records.side_effect = [
            Exception('relation "pg_catalog.pg_class" does not exist'),
            [('dbo', 'Users', 42)],
        ]

        tables = load_tables_from_db(lambda line: None, profile, 'db1', helper=helper)

        assert [(t.schema, t.table, t.row_count) for t in tables] == [('dbo', 'Users', 42)]
        assert helper.get_records.call_count == 2
        calls = helper.get_records.call_args_list
        assert calls[0].args[0] == BABELFISH_TABLES_QUERY
        assert calls[1].args[0] == MSSQL_TABLES_QUERY
        assert all(c.args[0] != ANSI_TABLES_QUERY for c in calls)

    def test_all_queries_fail(self, profile):
        helper = Mock()
        helper.get_records.side_effect = Exception('login failed')

        with pytest.raises(DiscoveryError, match='login failed'):
            load_tables_from_db(lambda line: None, profile, 'db1', helper=helper)

        assert helper.get_records.call_count == 3

    def test_null_column_is_error(self, profile):
        helper = Mock()
        helper.get_records.return_value = [('dbo', None, 5)]

        with pytest.raises(DiscoveryError, match='Tables select error'):
            load_tables_from_db(lambda line: None, profile, 'db1', helper=helper)

    def test_short_row_is_error(self, profile):
        helper = Mock()
        helper.get_records.return_value = [('dbo', 'Users')]

        with pytest.raises(DiscoveryError, match='Tables select error'):
            load_tables_from_db(lambda line: None, profile, 'db1', helper=helper)

    def test_empty_database(self, profile):
        helper = Mock()
        helper.get_records.return_value = []

        assert load_tables_from_db(lambda line: None, profile, 'db1', helper=helper) == []


class TestTableWithSize:
    """Test archive entry name parsing."""

    @pytest.mark.parametrize('entry_name, schema, table', [
        ('dbo.Users.bcp.zstd', 'dbo', 'Users'),
        ('sales.Orders.bcp.gz', 'sales', 'Orders'),
    ])
    def test_valid_names(self, entry_name, schema, table):
        tab = TableWithSize.from_entry_name(entry_name, 42)

        assert (tab.schema, tab.table, tab.size_bytes) == (schema, table, 42)
        assert tab.import_ is False

    @pytest.mark.parametrize('entry_name', [
        'dbo.Users.bcp',
        'dbo.my.table.bcp.gz',
        'dbo.Users.dat.gz',
        'dbo.Users.bcp.xz',
    ])
    def test_invalid_names(self, entry_name):
        with pytest.raises(ArchiveError, match=f'Unexpected ZIP entry name: {entry_name}'):
            TableWithSize.from_entry_name(entry_name)

    def test_rows_count_identity(self):
        assert TableWithRowsCount('dbo', 'A', 1) == TableWithRowsCount('dbo', 'A', 99)
        assert len({TableWithRowsCount('dbo', 'A'), TableWithRowsCount('dbo', 'A', 5)}) == 1


class TestLoadTablesFromFile:
    """Test archive discovery."""

    def test_lists_data_entries(self, tmp_path):
        archive = tmp_path / 'nightly.zip'
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr('nightly/', b'')
            zf.writestr('nightly/dbo.Users.xml', b'<xml/>')
            zf.writestr('nightly/dbo.Users.bcp.zstd', b'x' * 2048)
            zf.writestr('nightly/dbo.Posts.xml', b'<xml/>')
            zf.writestr('nightly/dbo.Posts.bcp.gz', b'y' * 10)
        lines = []

        tables = load_tables_from_file(lines.append, str(archive))

        assert [(t.schema, t.table, t.size_bytes) for t in tables] == [
            ('dbo', 'Users', 2048), ('dbo', 'Posts', 10)
        ]
        assert lines == ['Loading tables ...', 'dbo.Users 2.0 KB', 'dbo.Posts 10.0 B']

    def test_missing_file(self, tmp_path):
        path = os.path.join(str(tmp_path), 'missing.zip')

        with pytest.raises(ArchiveError, match='Specified file is not found'):
            load_tables_from_file(lambda line: None, path)

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / 'bad.zip'
        path.write_bytes(b'not a zip file')

        with pytest.raises(ArchiveError, match='Error opening ZIP file'):
            load_tables_from_file(lambda line: None, str(path))

    def test_malformed_data_entry(self, tmp_path):
        archive = tmp_path / 'x.zip'
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr('x/dbo.a.b.bcp.gz', b'')

        with pytest.raises(ArchiveError, match='Unexpected ZIP entry name: dbo.a.b.bcp.gz'):
            load_tables_from_file(lambda line: None, str(archive))


class TestServerQueries:
    """Test database name listing and connection check."""

    def test_load_database_names(self, profile):
        helper = Mock()
        helper.get_records.return_value = [('master',), ('db1',)]

        assert load_database_names(lambda line: None, profile, helper=helper) == ['master', 'db1']

    def test_load_database_names_null_row(self, profile):
        helper = Mock()
        helper.get_records.return_value = [(None,)]

        with pytest.raises(DiscoveryError, match='DB names select error'):
            load_database_names(lambda line: None, profile, helper=helper)

    def test_check_connection(self, profile):
        helper = Mock()
        helper.get_first.return_value = ('Microsoft SQL Server 2022',)

        assert check_connection(profile, helper=helper) == 'Microsoft SQL Server 2022'

    def test_check_connection_failure(self, profile):
        helper = Mock()
        helper.get_first.side_effect = Exception('Login timeout expired')

        with pytest.raises(DiscoveryError, match='Login timeout expired'):
            check_connection(profile, helper=helper)


def test_format_bytes():
    assert format_bytes(512) == '512.0 B'
    assert format_bytes(1536) == '1.5 KB'
    assert format_bytes(5 * 1024 * 1024) == '5.0 MB'

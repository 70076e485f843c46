"""
Table Catalog Module

This module discovers the tables that can be transferred, either from a
live database (export side) or from an existing archive (import side).

Database discovery tries three queries in order and keeps the first that
succeeds:
1. Babelfish: sys.tables joined with pg_catalog.pg_class for row estimates
2. SQL Server: sys.tables joined with sys.dm_db_partition_stats
3. ANSI: information_schema.tables, row counts unknown (-1)

The first two are unavailable on some server variants; the fallbacks are
silent unless all three fail.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
import logging
import os
import zipfile

from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.odbc_helper import OdbcConnectionHelper
from mssql_bcp_transfer.transfer_error import ArchiveError, DiscoveryError

logger = logging.getLogger(__name__)

ProgressFun = Callable[[str], None]

DATA_CODECS = ("gz", "zstd")

BABELFISH_TABLES_QUERY = """
select
    schema_name(tb.schema_id) as table_schema,
    tb.name as table_name,
    case
        when pc.reltuples is null then cast(-1 as bigint)
        when pc.reltuples = -1 then cast(0 as bigint)
        else cast(pc.reltuples as bigint)
    end as row_count
from sys.tables as tb
left join pg_catalog.pg_class pc
    on pc.relnamespace = tb.schema_id
    and pc.relname = tb.name
where
    pc.relkind in ('r', 'f', 'p')
"""

MSSQL_TABLES_QUERY = """
select
    schema_name(tb.schema_id) as table_schema,
    tb.name as table_name,
    case
        when st.row_count is null then cast(-1 as bigint)
        else st.row_count
    end as row_count
from sys.tables as tb
left join sys.dm_db_partition_stats as st
    on tb.object_id = st.object_id
where
    tb.type_desc = 'USER_TABLE'
    and st.index_id in (0, 1)
"""

ANSI_TABLES_QUERY = """
select
    table_schema,
    table_name,
    cast(-1 as bigint) as row_count
from information_schema.tables
where table_type = 'BASE TABLE'
and table_catalog = ?
"""


@dataclass
class TableWithRowsCount:
    """A database table offered for export, with its estimated row count."""
    schema: str
    table: str
    row_count: int = -1
    export: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"

    def __eq__(self, other):
        if not isinstance(other, TableWithRowsCount):
            return NotImplemented
        return (self.schema, self.table) == (other.schema, other.table)

    def __hash__(self):
        return hash((self.schema, self.table))


@dataclass
class TableWithSize:
    """A table found in an archive, with the size of its compressed data entry."""
    schema: str
    table: str
    size_bytes: int = 0
    import_: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"

    @classmethod
    def from_entry_name(cls, entry_name: str, size_bytes: int = 0) -> 'TableWithSize':
        """
        Parse a data entry name of the form schema.table.bcp.codec.

        Args:
            entry_name: Archive entry base name, e.g. "dbo.Users.bcp.zstd"
            size_bytes: Compressed size of the entry

        Raises:
            ArchiveError: If the name does not have exactly that shape
        """
        parts = entry_name.split(".")
        if not (len(parts) == 4 and parts[2] == "bcp" and parts[3] in DATA_CODECS):
            raise ArchiveError(f"Unexpected ZIP entry name: {entry_name}")
        return cls(schema=parts[0], table=parts[1], size_bytes=size_bytes)


def format_bytes(num_bytes: float) -> str:
    """
    Format bytes into human-readable format.

    Examples:
        >>> format_bytes(1024)
        '1.0 KB'
        >>> format_bytes(1536)
        '1.5 KB'
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if num_bytes < 1024.0 or unit == 'TB':
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.1f} PB"


def _query_tables(helper: OdbcConnectionHelper, dbname: str) -> Sequence[Sequence]:
    try:
        return helper.get_records(BABELFISH_TABLES_QUERY)
    except Exception as e:
        logger.debug(f"Babelfish catalog query failed, trying SQL Server query: {e}")

    try:
        return helper.get_records(MSSQL_TABLES_QUERY)
    except Exception as e:
        logger.debug(f"SQL Server catalog query failed, trying information_schema: {e}")

    try:
        return helper.get_records(ANSI_TABLES_QUERY, parameters=[dbname])
    except Exception as e:
        raise DiscoveryError(f"Error loading tables from database: {dbname}, message: {e}") from e


def load_tables_from_db(
    progress_fun: ProgressFun,
    profile: ConnectionProfile,
    dbname: str,
    helper: Optional[OdbcConnectionHelper] = None,
) -> List[TableWithRowsCount]:
    """
    Load the list of user tables with best-effort row counts.

    Args:
        progress_fun: Receives one progress line per table found
        profile: Connection profile for the server
        dbname: Database to inspect
        helper: Optional SQL client, created from the profile when omitted

    Returns:
        Tables in the order returned by the server

    Raises:
        DiscoveryError: If every catalog query fails or a row is malformed
    """
    if helper is None:
        helper = OdbcConnectionHelper(profile, database=dbname)

    progress_fun("Loading tables ...")
    rows = _query_tables(helper, dbname)

    tables = []
    for row in rows:
        if row is None or len(row) < 3 or any(value is None for value in row[:3]):
            raise DiscoveryError("Tables select error")
        schema, table, count = row[0], row[1], int(row[2])
        progress_fun(f"{schema}.{table} {count} rows")
        tables.append(TableWithRowsCount(schema=schema, table=table, row_count=count))

    logger.info(f"Found {len(tables)} tables in database '{dbname}'")
    return tables


def load_tables_from_file(progress_fun: ProgressFun, file_path: str) -> List[TableWithSize]:
    """
    List the tables stored in an archive.

    Args:
        progress_fun: Receives one progress line per table found
        file_path: Path to the zip archive

    Returns:
        Tables in archive entry order

    Raises:
        ArchiveError: If the file is missing, not a zip, or has a malformed data entry
    """
    if not os.path.exists(file_path):
        raise ArchiveError(f"Specified file is not found, path: {file_path}")

    try:
        with zipfile.ZipFile(file_path) as zf:
            infos = zf.infolist()
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Error opening ZIP file, path: {file_path}, message: {e}") from e

    progress_fun("Loading tables ...")
    tables = []
    for info in infos:
        if info.filename.endswith(".bcp.gz") or info.filename.endswith(".bcp.zstd"):
            name = info.filename.split("/")[-1]
            tab = TableWithSize.from_entry_name(name, info.file_size)
            progress_fun(f"{tab.schema}.{tab.table} {format_bytes(tab.size_bytes)}")
            tables.append(tab)

    logger.info(f"Found {len(tables)} tables in archive '{file_path}'")
    return tables


def load_database_names(progress_fun: ProgressFun, profile: ConnectionProfile,
                        helper: Optional[OdbcConnectionHelper] = None) -> List[str]:
    """Return the names of all databases on the server."""
    if helper is None:
        helper = OdbcConnectionHelper(profile)

    progress_fun("Loading DB names ...")
    try:
        rows = helper.get_records("select name from sys.databases")
    except Exception as e:
        raise DiscoveryError(f"Error loading DB names, message: {e}") from e

    names = []
    for row in rows:
        if not row or row[0] is None:
            raise DiscoveryError("DB names select error")
        names.append(row[0])
    return names


def check_connection(profile: ConnectionProfile,
                     helper: Optional[OdbcConnectionHelper] = None) -> str:
    """
    Verify the server is reachable and return its version string.

    Raises:
        DiscoveryError: If the connection or the version query fails
    """
    if helper is None:
        helper = OdbcConnectionHelper(profile)

    try:
        row = helper.get_first("select @@version")
    except Exception as e:
        raise DiscoveryError(f"Connection check failed, message: {e}") from e

    if not row or row[0] is None:
        raise DiscoveryError("Connection check failed, message: empty version")
    return str(row[0])

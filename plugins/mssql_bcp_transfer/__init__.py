"""
SQL Server BCP Archive Transfer Utilities

This package moves table data between a SQL Server-compatible database
(SQL Server, or Babelfish-style servers) and a portable zip archive, using
the external bcp utility to move the data.

Modules:
- connection_profile: Immutable server connection settings
- odbc_helper: Minimal pyodbc query client used for discovery
- table_catalog: Discover tables in a database or an archive
- table_config: Parse 'schema.table' include lists and select tables
- bcp_runner: Run bcp for format files, data export and data import
- archive_codec: Compress data files and build/read transfer archives
- export_pipeline: Export selected tables into an archive
- import_pipeline: Load selected tables from an archive
- progress: Progress sinks and the asynchronous job runner
- transfer_error: Error types and credential redaction
- transfer_config: Environment-driven settings

Configuration Options:
- BCP_EXECUTABLE=path: bcp program to run (default: bcp on PATH)
- ARCHIVE_CODEC=zstd|gz: Codec for new archives (default: zstd)
- MIN_JOB_DURATION_MS=N: Minimum time before a job reports completion
"""

__version__ = "1.0.0"

from mssql_bcp_transfer import transfer_error
from mssql_bcp_transfer import transfer_config
from mssql_bcp_transfer import connection_profile
from mssql_bcp_transfer import odbc_helper
from mssql_bcp_transfer import table_catalog
from mssql_bcp_transfer import table_config
from mssql_bcp_transfer import bcp_runner
from mssql_bcp_transfer import archive_codec
from mssql_bcp_transfer import progress
from mssql_bcp_transfer import export_pipeline
from mssql_bcp_transfer import import_pipeline

__all__ = [
    "transfer_error",
    "transfer_config",
    "connection_profile",
    "odbc_helper",
    "table_catalog",
    "table_config",
    "bcp_runner",
    "archive_codec",
    "progress",
    "export_pipeline",
    "import_pipeline",
]

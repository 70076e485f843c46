"""
SQL Server BCP Archive Export DAG

This DAG exports tables from a SQL Server-compatible database into a single
zip archive using the bcp utility:
1. Pre-flight: bcp on PATH, database reachable
2. Discover tables (row count estimates) and apply include_tables
3. Export every selected table (format file, data, compression) and zip

Tables may be given in 'schema.table' format in include_tables; when empty,
every user table in the connection's database is exported.
"""

from airflow.decorators import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import List, Dict, Any
import logging
import os

from mssql_bcp_transfer.bcp_runner import bcp_available
from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.export_pipeline import run_export
from mssql_bcp_transfer.table_catalog import (
    TableWithRowsCount,
    check_connection,
    load_tables_from_db,
)
from mssql_bcp_transfer.table_config import expand_include_tables_param, select_tables

logger = logging.getLogger(__name__)


@dag(
    dag_id="mssql_bcp_export",
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 0,
        "retry_delay": timedelta(seconds=30),
    },
    params={
        "source_conn_id": Param(
            default="mssql_source",
            type="string",
            description="SQL Server connection ID"
        ),
        "output_file": Param(
            default="/tmp/export.zip",
            type="string",
            description="Path of the archive to create (.zip is appended when no extension is given)"
        ),
        "overwrite_output_file": Param(
            default=False,
            type="boolean",
            description="Overwrite the output file if it already exists"
        ),
        "include_tables": Param(
            default=[],
            description="Tables to export in 'schema.table' format; empty exports all tables"
        ),
    },
    tags=["export", "mssql", "bcp", "archive"],
)
def mssql_bcp_export():
    """Export DAG: discover tables, bcp them out, package into one archive."""

    @task
    def preflight(**context) -> str:
        """Check that bcp is installed and the source database is reachable."""
        params = context["params"]

        if not bcp_available():
            raise RuntimeError("bcp utility is not found on PATH")

        profile = ConnectionProfile.from_airflow_connection(params["source_conn_id"])
        version = check_connection(profile)
        server_version = version.partition("\n")[0]
        logger.info(f"Connected to {profile.hostname}: {server_version}")
        return version

    @task
    def discover_tables(version: str, **context) -> List[Dict[str, Any]]:
        """Load tables from the source database and apply include_tables."""
        params = context["params"]
        profile = ConnectionProfile.from_airflow_connection(params["source_conn_id"])

        tables = load_tables_from_db(logger.info, profile, profile.database)
        include_tables = expand_include_tables_param(params.get("include_tables"))
        selected = select_tables(tables, include_tables)

        return [
            {"schema": t.schema, "table": t.table, "row_count": t.row_count}
            for t in selected
        ]

    @task
    def export_archive(tables: List[Dict[str, Any]], **context) -> str:
        """Export selected tables into the output archive."""
        params = context["params"]
        output_file = params["output_file"]

        if os.path.exists(output_file) and not params.get("overwrite_output_file", False):
            raise ValueError(
                f"Output file already exists: {output_file}, "
                "set overwrite_output_file to overwrite it"
            )

        profile = ConnectionProfile.from_airflow_connection(params["source_conn_id"])
        selection = [
            TableWithRowsCount(schema=t["schema"], table=t["table"], row_count=t["row_count"], export=True)
            for t in tables
        ]

        result = run_export(logger.info, profile, profile.database, selection, output_file)
        if not result.success:
            raise RuntimeError(result.message)

        logger.info(f"Export DAG complete: {len(selection)} tables written to {result.message}")
        return result.message

    version = preflight()
    tables = discover_tables(version)
    export_archive(tables)


mssql_bcp_export()

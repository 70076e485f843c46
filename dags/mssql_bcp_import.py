"""
SQL Server BCP Archive Import DAG

This DAG loads tables from a transfer archive into a SQL Server-compatible
database using the bcp utility:
1. Pre-flight: bcp on PATH, input archive present
2. List the tables stored in the archive and apply include_tables
3. Extract each selected table and bcp it in

Target tables must already exist. A failure stops the run; tables loaded
before the failure are not rolled back.
"""

from airflow.decorators import dag, task
from airflow.models.param import Param
from pendulum import datetime
from typing import List, Dict, Any
import logging
import os

from mssql_bcp_transfer.bcp_runner import bcp_available
from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.import_pipeline import run_import
from mssql_bcp_transfer.table_catalog import TableWithSize, load_tables_from_file
from mssql_bcp_transfer.table_config import expand_include_tables_param, select_tables

logger = logging.getLogger(__name__)


@dag(
    dag_id="mssql_bcp_import",
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 0,
    },
    params={
        "target_conn_id": Param(
            default="mssql_target",
            type="string",
            description="SQL Server connection ID to load into"
        ),
        "input_file": Param(
            default="/tmp/export.zip",
            type="string",
            description="Path of the archive to import"
        ),
        "include_tables": Param(
            default=[],
            description="Tables to import in 'schema.table' format; empty imports all tables"
        ),
    },
    tags=["import", "mssql", "bcp", "archive"],
)
def mssql_bcp_import():
    """Import DAG: list archive tables, extract and bcp them in."""

    @task
    def list_archive_tables(**context) -> List[Dict[str, Any]]:
        """Check prerequisites and list the tables to import."""
        params = context["params"]
        input_file = params["input_file"]

        if not bcp_available():
            raise RuntimeError("bcp utility is not found on PATH")
        if not os.path.exists(input_file):
            raise ValueError(f"Input file does not exist: {input_file}")

        tables = load_tables_from_file(logger.info, input_file)
        include_tables = expand_include_tables_param(params.get("include_tables"))
        selected = select_tables(tables, include_tables)

        return [
            {"schema": t.schema, "table": t.table, "size_bytes": t.size_bytes}
            for t in selected
        ]

    @task
    def import_archive(tables: List[Dict[str, Any]], **context) -> int:
        """Load the selected tables into the target database."""
        params = context["params"]
        profile = ConnectionProfile.from_airflow_connection(params["target_conn_id"])

        selection = [
            TableWithSize(schema=t["schema"], table=t["table"], size_bytes=t["size_bytes"], import_=True)
            for t in tables
        ]

        result = run_import(logger.info, profile, profile.database, selection, params["input_file"])
        if not result.success:
            raise RuntimeError(result.message)

        logger.info(f"Import DAG complete: {len(selection)} tables loaded")
        return len(selection)

    tables = list_archive_tables()
    import_archive(tables)


mssql_bcp_import()

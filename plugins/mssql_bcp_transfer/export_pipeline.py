"""
Export Pipeline Module

Exports selected tables into a single transfer archive:
1. Prepare a fresh working directory named after the archive
2. For each table, in order: bcp format file, bcp data out, compress
3. Zip the working directory into the archive and remove it

The first failure ends the job; later tables are not attempted.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple
import logging
import os

from mssql_bcp_transfer.archive_codec import compress_file, prepare_dest_dir, zip_dest_directory
from mssql_bcp_transfer.bcp_runner import BcpRunner
from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.progress import ProgressFun, TransferResult
from mssql_bcp_transfer.table_catalog import TableWithRowsCount
from mssql_bcp_transfer.transfer_error import TransferError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportJob:
    """Inputs of one export run."""
    profile: ConnectionProfile
    dbname: str
    tables: Tuple[TableWithRowsCount, ...]
    parent_dir: str
    dest_filename: str
    codec: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'tables', tuple(self.tables))


def _discard(_line: str) -> None:
    pass


class ExportPipeline:
    """Run export jobs with a bcp runner created per job."""

    def __init__(self, runner_factory: Callable[[ConnectionProfile], BcpRunner] = BcpRunner):
        self.runner_factory = runner_factory

    def export_tables(self, progress_fun: ProgressFun, job: ExportJob, dest_dir: str) -> None:
        runner = self.runner_factory(job.profile)
        for table in job.tables:
            logger.info(f"Exporting table {table.qualified_name}")
            format_filename = runner.run_format(
                progress_fun, dest_dir, job.dbname, table.schema, table.table)
            data_filename = runner.run_export_data(
                progress_fun, dest_dir, job.dbname, table.schema, table.table, format_filename)
            compress_file(progress_fun, dest_dir, data_filename, job.codec)

    def run(self, job: ExportJob, progress_fun: Optional[ProgressFun] = None) -> TransferResult:
        """
        Run an export job.

        Args:
            job: Export inputs
            progress_fun: Receives human-readable progress lines

        Returns:
            TransferResult; on success the message is the archive path
        """
        progress_fun = progress_fun or _discard
        try:
            return self._run(job, progress_fun)
        except TransferError as e:
            logger.error(f"Export failed: {e}")
            return TransferResult.failure(str(e))
        except Exception as e:
            logger.exception("Export failed with unexpected error")
            return TransferResult.failure(str(e))

    def _run(self, job: ExportJob, progress_fun: ProgressFun) -> TransferResult:
        progress_fun("Running export ...")

        dest_dir, filename = prepare_dest_dir(job.parent_dir, job.dest_filename)
        dest_file = os.path.join(job.parent_dir, filename)
        progress_fun(f"Export file: {dest_file}")

        progress_fun("Running bcp ....")
        self.export_tables(progress_fun, job, dest_dir)

        progress_fun("Zipping destination directory ....")
        try:
            zip_dest_directory(progress_fun, dest_dir, filename)
        except TransferError as e:
            return TransferResult.failure(
                f"Error zipping destination directory, path: {dest_dir}, error: {e}")

        progress_fun("Export complete")
        logger.info(f"Exported {len(job.tables)} tables to {dest_file}")
        return TransferResult.succeeded(dest_file)


def run_export(progress_fun: ProgressFun, profile: ConnectionProfile, dbname: str,
               tables: Sequence[TableWithRowsCount], dest_file: str,
               codec: Optional[str] = None) -> TransferResult:
    """
    Export tables into the archive at dest_file.

    Convenience wrapper that splits dest_file into parent directory and
    file name and runs an ExportPipeline.
    """
    parent_dir = os.path.dirname(os.path.abspath(dest_file))
    job = ExportJob(
        profile=profile,
        dbname=dbname,
        tables=tuple(tables),
        parent_dir=parent_dir,
        dest_filename=os.path.basename(dest_file),
        codec=codec,
    )
    return ExportPipeline().run(job, progress_fun)

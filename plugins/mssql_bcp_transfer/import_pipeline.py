"""
Import Pipeline Module

Loads tables from a transfer archive back into a database:
1. Prepare a fresh scratch work directory
2. For each table, in order: extract and decompress its files, bcp data in
3. Remove the work directory (best effort)

The first failure ends the job. Tables loaded before the failure stay
loaded; nothing is rolled back.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple
import logging
import os
import shutil

from mssql_bcp_transfer.archive_codec import prepare_clean_dir, unzip_table_files
from mssql_bcp_transfer.bcp_runner import BcpRunner
from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.progress import ProgressFun, TransferResult
from mssql_bcp_transfer.table_catalog import TableWithSize
from mssql_bcp_transfer.transfer_error import TransferError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportJob:
    """Inputs of one import run."""
    profile: ConnectionProfile
    dbname: str
    tables: Tuple[TableWithSize, ...]
    import_file: str
    work_dir: str

    def __post_init__(self):
        object.__setattr__(self, 'tables', tuple(self.tables))


def _discard(_line: str) -> None:
    pass


class ImportPipeline:
    """Run import jobs with a bcp runner created per job."""

    def __init__(self, runner_factory: Callable[[ConnectionProfile], BcpRunner] = BcpRunner):
        self.runner_factory = runner_factory

    def import_tables(self, progress_fun: ProgressFun, job: ImportJob, work_dir: str) -> None:
        runner = self.runner_factory(job.profile)
        for table in job.tables:
            logger.info(f"Importing table {table.qualified_name}")
            bcp_file, format_file = unzip_table_files(progress_fun, table, job.import_file, work_dir)
            runner.run_import_data(
                progress_fun, work_dir, job.dbname, table.schema, table.table, bcp_file, format_file)

    def run(self, job: ImportJob, progress_fun: Optional[ProgressFun] = None) -> TransferResult:
        """
        Run an import job.

        Args:
            job: Import inputs
            progress_fun: Receives human-readable progress lines

        Returns:
            TransferResult for the job
        """
        progress_fun = progress_fun or _discard
        try:
            return self._run(job, progress_fun)
        except TransferError as e:
            logger.error(f"Import failed: {e}")
            return TransferResult.failure(str(e))
        except Exception as e:
            logger.exception("Import failed with unexpected error")
            return TransferResult.failure(str(e))

    def _run(self, job: ImportJob, progress_fun: ProgressFun) -> TransferResult:
        progress_fun(f"Running import: {job.import_file} ...")

        work_dir = prepare_clean_dir(job.work_dir)
        self.import_tables(progress_fun, job, work_dir)

        progress_fun("Cleaning up work directory ....")
        try:
            shutil.rmtree(work_dir)
        except OSError as e:
            logger.warning(f"Error removing work directory: {work_dir}, message: {e}")

        progress_fun("Import complete")
        logger.info(f"Imported {len(job.tables)} tables from {job.import_file}")
        return TransferResult.succeeded()


def run_import(progress_fun: ProgressFun, profile: ConnectionProfile, dbname: str,
               tables: Sequence[TableWithSize], import_file: str,
               work_dir: Optional[str] = None) -> TransferResult:
    """
    Import tables from the archive at import_file.

    Convenience wrapper; the work directory defaults to the archive path
    without its extension.
    """
    if not work_dir:
        work_dir = os.path.splitext(os.path.abspath(import_file))[0]
    job = ImportJob(
        profile=profile,
        dbname=dbname,
        tables=tuple(tables),
        import_file=import_file,
        work_dir=work_dir,
    )
    return ImportPipeline().run(job, progress_fun)

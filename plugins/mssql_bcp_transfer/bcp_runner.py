"""
BCP Runner Module

Runs the external bcp utility for one table at a time: generating XML
format files, exporting table data to native-format files and loading those
files back. Output of the process is streamed line by line to a progress
callback.

The argument list carries the password for SQL Server authentication, so it
is only ever logged or reported through redact_args().
"""

from typing import Callable, Iterator, List, Optional, Sequence, IO
import logging
import os
import re
import shutil
import subprocess

from mssql_bcp_transfer.connection_profile import ConnectionProfile
from mssql_bcp_transfer.transfer_config import get_transfer_config
from mssql_bcp_transfer.transfer_error import (
    RunnerProcessError,
    RunnerSpawnError,
    redact_args,
)

logger = logging.getLogger(__name__)

ProgressFun = Callable[[str], None]

COLLATION_ATTRIBUTE_PATTERN = re.compile(r'\s+COLLATION="[^"]*"', re.IGNORECASE)


def bcp_available(executable: Optional[str] = None) -> bool:
    """Check that the bcp executable can be found on PATH."""
    return shutil.which(executable or get_transfer_config().bcp_executable) is not None


def format_command(args: Sequence[str]) -> str:
    """Render an argument list for messages, masking the password."""
    return "[" + ", ".join(f'"{arg}"' for arg in redact_args(args)) + "]"


def iter_output_lines(stream: IO[bytes]) -> Iterator[str]:
    """
    Yield decoded lines from a process output stream.

    Line endings are stripped and blank lines skipped. The iterator reads
    lazily and can only be consumed once.
    """
    for raw in iter(stream.readline, b''):
        line = raw.decode('utf-8', errors='replace').rstrip('\r\n')
        if line.strip():
            yield line


def _detect_encoding(data: bytes) -> str:
    if data.startswith(b'\xff\xfe') or data.startswith(b'\xfe\xff'):
        return 'utf-16'
    if data.startswith(b'\xef\xbb\xbf'):
        return 'utf-8-sig'
    if b'\x00' in data[:64]:
        return 'utf-16-le'
    return 'utf-8'


def strip_collation(format_path: str) -> int:
    """
    Remove COLLATION attributes from a bcp XML format file in place.

    The file keeps its original encoding (bcp writes UTF-16). Without the
    attributes the format file can be replayed against a server whose
    default collation differs from the source.

    Args:
        format_path: Path to the format file

    Returns:
        Number of attributes removed

    Raises:
        RunnerProcessError: If the file cannot be read, decoded or written
    """
    try:
        with open(format_path, 'rb') as f:
            data = f.read()
        encoding = _detect_encoding(data)
        text = data.decode(encoding)
        stripped, count = COLLATION_ATTRIBUTE_PATTERN.subn('', text)
        with open(format_path, 'wb') as f:
            f.write(stripped.encode(encoding))
    except (OSError, UnicodeError) as e:
        raise RunnerProcessError(f"Format file post-processing error: {e}") from e

    logger.debug(f"Removed {count} collation attributes from {format_path}")
    return count


class BcpRunner:
    """Drive the bcp utility against one server using one connection profile."""

    def __init__(
        self,
        profile: ConnectionProfile,
        executable: Optional[str] = None,
        exit_timeout: Optional[float] = None,
    ):
        """
        Initialize the runner.

        Args:
            profile: Connection profile used for -S and authentication arguments
            executable: bcp program, defaults to BCP_EXECUTABLE
            exit_timeout: Seconds to wait for exit once output is closed
        """
        config = get_transfer_config()
        self.profile = profile
        self.executable = executable or config.bcp_executable
        self.exit_timeout = config.bcp_exit_timeout if exit_timeout is None else exit_timeout

    def _connection_args(self) -> List[str]:
        return ["-S", self.profile.bcp_server_address()] + self.profile.bcp_auth_args()

    @staticmethod
    def _object_name(dbname: str, schema: str, table: str) -> str:
        return f"[{dbname}].[{schema}].[{table}]"

    def run_format(self, progress_fun: ProgressFun, work_dir: str,
                   dbname: str, schema: str, table: str) -> str:
        """
        Generate the XML format file for a table and normalize it.

        Returns:
            Format file name, relative to work_dir
        """
        progress_fun(f"Creating bcp format file: {schema}.{table}")
        format_filename = f"{schema}.{table}.xml"
        args = [
            self._object_name(dbname, schema, table),
            "format", "nul",
            "-f", format_filename,
            "-x", "-n",
            "-k",
            "-K", "ReadOnly",
        ] + self._connection_args()
        self.run(progress_fun, args, work_dir)

        strip_collation(os.path.join(work_dir, format_filename))
        return format_filename

    def run_export_data(self, progress_fun: ProgressFun, work_dir: str, dbname: str,
                        schema: str, table: str, format_filename: str) -> str:
        """
        Export table data into a native bcp file.

        Returns:
            Data file name, relative to work_dir
        """
        progress_fun(f"Exporting data: {schema}.{table}")
        data_filename = f"{schema}.{table}.bcp"
        args = [
            self._object_name(dbname, schema, table),
            "out", data_filename,
            "-f", format_filename,
            "-k",
            "-K", "ReadOnly",
        ] + self._connection_args()
        self.run(progress_fun, args, work_dir)
        return data_filename

    def run_import_data(self, progress_fun: ProgressFun, work_dir: str, dbname: str,
                        schema: str, table: str, bcp_file: str, format_file: str) -> None:
        """Load a native bcp file into a table, keeping identity values."""
        bcp_filename = os.path.basename(bcp_file)
        format_filename = os.path.basename(format_file)
        progress_fun(f"Importing file: {bcp_filename}")
        args = [
            self._object_name(dbname, schema, table),
            "in", bcp_filename,
            "-f", format_filename,
            "-k",
            "-E",
            "-m", "1",
        ] + self._connection_args()
        self.run(progress_fun, args, work_dir)

    def run(self, progress_fun: ProgressFun, args: Sequence[str], work_dir: str) -> None:
        """
        Run bcp with the given arguments and stream its output.

        stderr is merged into stdout; every non-blank line goes to
        progress_fun in the order bcp wrote it.

        Raises:
            RunnerSpawnError: If the process cannot be started
            RunnerProcessError: If reading output fails, the process does not
                terminate, or it exits with a non-zero code
        """
        cmd = [self.executable] + list(args)
        logger.debug(f"Running bcp: {format_command(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                cwd=work_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except (OSError, ValueError) as e:
            raise RunnerSpawnError.from_bcp_error(
                "bcp process spawn failure", f"{e}, command: {format_command(cmd)}"
            ) from e

        try:
            for line in iter_output_lines(process.stdout):
                logger.debug(f"bcp: {line}")
                progress_fun(line)
        except (OSError, ValueError) as e:
            self._kill(process)
            raise RunnerProcessError.from_bcp_error("bcp process failure", str(e)) from e
        except Exception:
            self._kill(process)
            raise
        finally:
            process.stdout.close()

        try:
            returncode = process.wait(timeout=self.exit_timeout)
        except subprocess.TimeoutExpired:
            self._kill(process)
            raise RunnerProcessError("bcp process failure")

        if returncode != 0:
            raise RunnerProcessError.from_bcp_error(
                "bcp process failure", f"exit code: {returncode}"
            )

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        if process.poll() is None:
            process.kill()
        process.wait()

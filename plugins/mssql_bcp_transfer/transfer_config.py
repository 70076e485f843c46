"""
Transfer Configuration Module

Environment-driven tuning knobs for the transfer pipeline, plus the logging
setup used by standalone callers.

Environment Variables:
    BCP_EXECUTABLE: bcp program name or path (default: bcp)
    ARCHIVE_CODEC: Codec for new archives, zstd or gz (default: zstd)
    ZSTD_LEVEL: zstd compression level (default: 1)
    GZIP_LEVEL: gzip compression level (default: 6)
    BCP_EXIT_TIMEOUT: Seconds to wait for bcp to exit after its output closes (default: 30)
    PROGRESS_COALESCE_MS: Window for batching progress lines (default: 100)
    MIN_JOB_DURATION_MS: Minimum time before a job reports completion (default: 1000)
"""

import logging
import os
import sys
from dataclasses import dataclass

SUPPORTED_CODECS = ("zstd", "gz")


@dataclass(frozen=True)
class TransferConfig:
    """Tuning settings for one transfer job."""
    bcp_executable: str = "bcp"
    archive_codec: str = "zstd"
    zstd_level: int = 1
    gzip_level: int = 6
    bcp_exit_timeout: float = 30.0
    progress_coalesce_ms: int = 100
    min_job_duration_ms: int = 1000

    def __post_init__(self):
        if self.archive_codec not in SUPPORTED_CODECS:
            raise ValueError(
                f"Unsupported archive codec '{self.archive_codec}': "
                f"must be one of {', '.join(SUPPORTED_CODECS)}"
            )


def get_transfer_config() -> TransferConfig:
    """
    Read transfer settings from environment variables.

    Returns:
        TransferConfig populated from the environment, defaults elsewhere
    """
    return TransferConfig(
        bcp_executable=os.environ.get('BCP_EXECUTABLE', 'bcp'),
        archive_codec=os.environ.get('ARCHIVE_CODEC', 'zstd').strip().lower(),
        zstd_level=int(os.environ.get('ZSTD_LEVEL', '1')),
        gzip_level=int(os.environ.get('GZIP_LEVEL', '6')),
        bcp_exit_timeout=float(os.environ.get('BCP_EXIT_TIMEOUT', '30')),
        progress_coalesce_ms=max(0, int(os.environ.get('PROGRESS_COALESCE_MS', '100'))),
        min_job_duration_ms=max(0, int(os.environ.get('MIN_JOB_DURATION_MS', '1000'))),
    )


def configure_logging(level: int = logging.INFO) -> None:
    """Configure console logging for the transfer package."""
    package_logger = logging.getLogger('mssql_bcp_transfer')
    package_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    package_logger.addHandler(console_handler)

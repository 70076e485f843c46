"""
Archive Codec Module

Builds and reads transfer archives.

An archive is a zip file holding exactly one top-level directory, named
after the archive file without its extension. For every table the directory
holds the bcp format file and the compressed data file:

    nightly.zip
    └── nightly/
        ├── dbo.Users.xml
        ├── dbo.Users.bcp.zstd
        ├── dbo.Posts.xml
        └── dbo.Posts.bcp.gz

Data files are compressed with zstd (default) or gzip before packaging and
stored in the zip without further compression. Readers accept both codecs
and pick the decompressor from the file extension.
"""

from typing import BinaryIO, Callable, List, Optional, Tuple
import gzip
import logging
import os
import shutil
import zipfile
import zlib

import zstandard

from mssql_bcp_transfer.table_catalog import TableWithSize
from mssql_bcp_transfer.transfer_config import SUPPORTED_CODECS, get_transfer_config
from mssql_bcp_transfer.transfer_error import ArchiveError, PathError

logger = logging.getLogger(__name__)

ProgressFun = Callable[[str], None]

COPY_BUFFER_SIZE = 1024 * 1024


def derive_dest_names(dest_filename: str) -> Tuple[str, str]:
    """
    Derive the archive file name and its top-level directory name.

    Examples:
        >>> derive_dest_names("nightly")
        ('nightly.zip', 'nightly')
        >>> derive_dest_names("nightly.zip")
        ('nightly.zip', 'nightly')

    Raises:
        PathError: If the file name is empty
    """
    filename = os.path.basename(dest_filename.strip()) if dest_filename else ''
    if not filename:
        raise PathError(f"Error reading file name: '{dest_filename}'")

    dirname, ext = os.path.splitext(filename)
    if not ext:
        return f"{filename}.zip", filename
    return filename, dirname


def prepare_clean_dir(dir_path: str) -> str:
    """
    Remove a directory if present and create it empty.

    Raises:
        PathError: If the old directory cannot be fully removed or the new one created
    """
    shutil.rmtree(dir_path, ignore_errors=True)
    if os.path.exists(dir_path):
        raise PathError(f"Error removing directory: {dir_path}")
    try:
        os.makedirs(dir_path)
    except OSError as e:
        raise PathError(f"Error creating directory: {dir_path}, message: {e}") from e
    return dir_path


def prepare_dest_dir(dest_parent_dir: str, dest_filename: str) -> Tuple[str, str]:
    """
    Prepare a fresh working directory next to the destination archive.

    Returns:
        Tuple of (working directory path, archive file name)
    """
    filename, dirname = derive_dest_names(dest_filename)
    dir_path = os.path.join(dest_parent_dir, dirname)
    prepare_clean_dir(dir_path)
    return dir_path, filename


def _codec_from_name(name: str) -> str:
    for codec in SUPPORTED_CODECS:
        if name.endswith(f".{codec}"):
            return codec
    raise ArchiveError(f"Unsupported compressed file: {name}")


def compress_stream(src: BinaryIO, dest: BinaryIO, codec: str, level: Optional[int] = None) -> None:
    """Compress src into dest with the given codec (zstd or gz)."""
    config = get_transfer_config()
    if codec == "zstd":
        cctx = zstandard.ZstdCompressor(level=config.zstd_level if level is None else level)
        cctx.copy_stream(src, dest, read_size=COPY_BUFFER_SIZE, write_size=COPY_BUFFER_SIZE)
    elif codec == "gz":
        compresslevel = config.gzip_level if level is None else level
        with gzip.GzipFile(fileobj=dest, mode='wb', compresslevel=compresslevel) as gz:
            shutil.copyfileobj(src, gz, COPY_BUFFER_SIZE)
    else:
        raise ArchiveError(f"Unsupported compression codec: {codec}")


def decompress_stream(entry_name: str, src: BinaryIO, dest: BinaryIO) -> None:
    """Decompress src into dest, choosing the codec from the entry name extension."""
    codec = _codec_from_name(entry_name)
    if codec == "zstd":
        dctx = zstandard.ZstdDecompressor()
        with dctx.stream_reader(src, read_across_frames=True) as reader:
            shutil.copyfileobj(reader, dest, COPY_BUFFER_SIZE)
    else:
        with gzip.GzipFile(fileobj=src, mode='rb') as gz:
            shutil.copyfileobj(gz, dest, COPY_BUFFER_SIZE)


def compress_file(progress_fun: ProgressFun, work_dir: str, data_filename: str,
                  codec: Optional[str] = None) -> str:
    """
    Compress a bcp data file and delete the uncompressed copy.

    Args:
        progress_fun: Progress callback
        work_dir: Directory holding the data file
        data_filename: Data file name, e.g. "dbo.Users.bcp"
        codec: zstd or gz, defaults to ARCHIVE_CODEC

    Returns:
        Compressed file name, e.g. "dbo.Users.bcp.zstd"
    """
    codec = codec or get_transfer_config().archive_codec
    progress_fun(f"Compressing: {data_filename}")
    compressed_filename = f"{data_filename}.{codec}"
    src_path = os.path.join(work_dir, data_filename)
    dest_path = os.path.join(work_dir, compressed_filename)

    try:
        with open(src_path, 'rb') as src, open(dest_path, 'wb') as dest:
            compress_stream(src, dest, codec)
        os.remove(src_path)
    except (OSError, zstandard.ZstdError) as e:
        raise ArchiveError(f"Error compressing file: {src_path}, message: {e}") from e

    logger.debug(f"Compressed {src_path} -> {dest_path}")
    return compressed_filename


def _read_dir_paths(dir_path: str) -> List[str]:
    """List directory children: files first, then subdirectories, each sorted."""
    paths = [os.path.join(dir_path, name) for name in os.listdir(dir_path)]
    return sorted(paths, key=lambda p: (os.path.isdir(p), p))


def _zip_dir_recursive(zf: zipfile.ZipFile, parent_dir: str, dir_path: str,
                       listener: ProgressFun) -> None:
    name = os.path.relpath(dir_path, parent_dir).replace(os.sep, '/')
    listener(name)
    zf.write(dir_path, name)

    for path in _read_dir_paths(dir_path):
        if os.path.isdir(path):
            _zip_dir_recursive(zf, parent_dir, path, listener)
        else:
            entry_name = os.path.relpath(path, parent_dir).replace(os.sep, '/')
            listener(entry_name)
            zf.write(path, entry_name, compress_type=zipfile.ZIP_STORED)


def zip_directory(progress_fun: ProgressFun, src_dir: str, dest_file: str) -> None:
    """
    Zip a directory so that it becomes the single top-level entry of the archive.

    Args:
        progress_fun: Receives every entry name as it is added
        src_dir: Directory to archive
        dest_file: Zip file to create

    Raises:
        ArchiveError: If src_dir is not a directory or writing fails
    """
    src_dir = os.path.abspath(src_dir)
    if not os.path.isdir(src_dir):
        raise ArchiveError(f"Directory not found: {src_dir}")

    try:
        with zipfile.ZipFile(dest_file, 'w', compression=zipfile.ZIP_STORED, allowZip64=True) as zf:
            _zip_dir_recursive(zf, os.path.dirname(src_dir), src_dir, progress_fun)
    except (OSError, zipfile.LargeZipFile) as e:
        raise ArchiveError(f"Error writing ZIP file: {dest_file}, message: {e}") from e


def zip_dest_directory(progress_fun: ProgressFun, dest_dir: str, filename: str) -> str:
    """
    Package the working directory into an archive beside it and remove it.

    Returns:
        Path to the created archive
    """
    dest_dir = os.path.abspath(dest_dir)
    parent_dir = os.path.dirname(dest_dir)
    if not parent_dir or parent_dir == dest_dir:
        raise PathError("Error accessing destination directory parent")

    dest_file = os.path.join(parent_dir, filename)
    zip_directory(progress_fun, dest_dir, dest_file)
    try:
        shutil.rmtree(dest_dir)
    except OSError as e:
        raise PathError(f"Error removing directory: {dest_dir}, message: {e}") from e
    return dest_file


def _find_root_dir(names: List[str]) -> str:
    for name in names:
        if name.endswith('/'):
            return name.rstrip('/')
    for name in names:
        if '/' in name:
            return name.split('/', 1)[0]
    raise ArchiveError("Directory entry not found in ZIP file")


def unzip_table_files(progress_fun: ProgressFun, table: TableWithSize, import_file: str,
                      work_dir: str) -> Tuple[str, str]:
    """
    Extract one table's data and format files from an archive.

    The zstd data entry is preferred over gzip. The data file is
    decompressed to <work_dir>/<schema>.<table>.bcp.

    Returns:
        Tuple of (data file path, format file path)

    Raises:
        ArchiveError: If an entry is missing or the archive cannot be read
    """
    bcp_filename = f"{table.schema}.{table.table}.bcp"
    format_filename = f"{table.schema}.{table.table}.xml"
    progress_fun(f"Unpacking {bcp_filename} into directory {work_dir}")

    bcp_path = os.path.join(work_dir, bcp_filename)
    format_path = os.path.join(work_dir, format_filename)
    try:
        with zipfile.ZipFile(import_file) as zf:
            names = zf.namelist()
            dirname = _find_root_dir(names)

            entry_name_zstd = f"{dirname}/{bcp_filename}.zstd"
            entry_name_gz = f"{dirname}/{bcp_filename}.gz"
            if entry_name_zstd in names:
                entry_name = entry_name_zstd
            elif entry_name_gz in names:
                entry_name = entry_name_gz
            else:
                raise ArchiveError(
                    f"Table data entry not found in archive, name: {entry_name_zstd} or {entry_name_gz}"
                )

            with zf.open(entry_name) as src, open(bcp_path, 'wb') as dest:
                decompress_stream(entry_name, src, dest)

            format_entry_name = f"{dirname}/{format_filename}"
            if format_entry_name not in names:
                raise ArchiveError(f"Table format entry not found in archive, name: {format_entry_name}")
            with zf.open(format_entry_name) as src, open(format_path, 'wb') as dest:
                shutil.copyfileobj(src, dest, COPY_BUFFER_SIZE)
    except (OSError, EOFError, zlib.error, zipfile.BadZipFile, zstandard.ZstdError) as e:
        raise ArchiveError(f"Error unpacking table files from archive: {import_file}, message: {e}") from e

    return bcp_path, format_path

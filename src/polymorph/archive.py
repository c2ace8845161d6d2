"""
Tarball installation for polymorph.

Extracts a compressed tar stream entry by entry into a destination directory.
Only directories and regular files are materialized; every other entry type is
skipped. The stream is read sequentially, so it can come straight from an HTTP
response without touching disk first.
"""

import gzip
import os
import tarfile
import zlib
from typing import BinaryIO, Optional

from polymorph.constants import DEFAULT_CHUNK_SIZE, DEFAULT_TARBALL_COMPRESSION
from polymorph.exceptions import DecodeError, FileSystemError
from polymorph.log_utils import logger

# Errors raised by tarfile/zlib while decoding a damaged or truncated stream
DECODE_ERRORS = (tarfile.TarError, zlib.error, EOFError, gzip.BadGzipFile)

# End-of-archive marker: two zero-filled blocks
END_OF_ARCHIVE_SIZE = 2 * tarfile.BLOCKSIZE


def _is_within_base(real_base_dir: str, candidate: str) -> bool:
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def safe_extract_path(extract_dir: str, member_name: str) -> str:
    """
    Resolve the extraction target of an archive member inside `extract_dir`.

    Returns:
        str: Absolute, normalized path inside extract_dir.

    Raises:
        ValueError: If the member is absolute or its path leaves extract_dir.
    """
    real_extract_dir = os.path.realpath(extract_dir)
    if os.path.isabs(member_name) or "\x00" in member_name:
        raise ValueError(
            f"Unsafe extraction path '{member_name}' is outside base '{extract_dir}'"
        )
    normalized_path = os.path.normpath(os.path.join(real_extract_dir, member_name))

    if not _is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{member_name}' is outside base '{extract_dir}'"
        )

    return normalized_path


def _write_member(tar: tarfile.TarFile, member: tarfile.TarInfo, target: str) -> None:
    source = tar.extractfile(member)
    if source is None:
        raise DecodeError("error reading tarball", archive_path=member.name)

    parent = os.path.dirname(target)
    try:
        os.makedirs(parent, exist_ok=True)
        fd = os.open(target, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, member.mode)
    except OSError as e:
        raise FileSystemError(
            f"error creating file {target}", path=target, details=str(e)
        ) from e

    with os.fdopen(fd, "wb") as f:
        while True:
            try:
                chunk = source.read(DEFAULT_CHUNK_SIZE)
            except DECODE_ERRORS as e:
                raise DecodeError(
                    "error reading tarball", archive_path=member.name, details=str(e)
                ) from e
            if not chunk:
                break
            try:
                f.write(chunk)
            except OSError as e:
                raise FileSystemError(
                    f"error writing file {target}", path=target, details=str(e)
                ) from e


class _TailReader:
    """Pass-through reader remembering the most recently read bytes."""

    def __init__(self, fileobj: BinaryIO, keep: int) -> None:
        self.fileobj = fileobj
        self.keep = keep
        self.position = 0
        self.recent = b""

    def read(self, size: int = -1) -> bytes:
        data = self.fileobj.read(size)
        self.position += len(data)
        self.recent = (self.recent + data)[-self.keep :]
        return data

    def since(self, offset: int) -> bytes:
        """Bytes read from `offset` onwards, as far as they are still remembered."""
        start = self.position - len(self.recent)
        return self.recent[max(offset - start, 0) :]


def untar(tar: tarfile.TarFile, dest_dir: str) -> int:
    """
    Extract every directory and regular file of an open tar stream into `dest_dir`.

    Entry mode bits are applied at creation time (subject to the process umask).
    Members that would land outside `dest_dir` (absolute names or `..` segments)
    are not extracted: they are logged as a warning and skipped, where a plain
    tar extraction would write them wherever they point.

    Parameters:
        tar (tarfile.TarFile): Tar archive opened in streaming mode.
        dest_dir (str): Destination directory; must exist.

    Returns:
        int: Number of directories and files written.

    Raises:
        DecodeError: If the stream cannot be decoded. `archive_path` names the
            last member read before the failure.
        FileSystemError: If a directory or file cannot be written.
    """
    written = 0
    previous: Optional[str] = None
    while True:
        try:
            member = tar.next()
        except DECODE_ERRORS as e:
            raise DecodeError(
                "error reading tarball", archive_path=previous, details=str(e)
            ) from e
        if member is None:
            return written
        previous = member.name

        try:
            target = safe_extract_path(dest_dir, member.name)
        except ValueError as e:
            logger.warning(f"Skipping unsafe archive member: {e}")
            continue

        if member.isdir():
            try:
                os.makedirs(target, mode=member.mode, exist_ok=True)
            except OSError as e:
                raise FileSystemError(
                    f"error creating directory {target}", path=target, details=str(e)
                ) from e
            written += 1
        elif member.isreg():
            _write_member(tar, member, target)
            written += 1
        else:
            logger.debug(f"Skipping unsupported archive member {member.name}")


def _check_end_of_archive(tar: tarfile.TarFile, reader: _TailReader) -> None:
    """
    Require the end-of-archive marker where `tar` stopped and read the stream to EOF.

    In stream mode tarfile reports a header cut short by the end of the data as
    the end of the archive, so the block it stopped at must be checked here.
    Reading to EOF makes the gzip layer verify its trailer.
    """
    marker = reader.since(tar.offset)
    while True:
        try:
            chunk = reader.read(DEFAULT_CHUNK_SIZE)
        except DECODE_ERRORS as e:
            raise DecodeError("error reading tarball", details=str(e)) from e
        if not chunk:
            break
        if len(marker) < END_OF_ARCHIVE_SIZE:
            marker += chunk

    marker = marker[:END_OF_ARCHIVE_SIZE]
    if len(marker) < tarfile.BLOCKSIZE or marker.strip(b"\0"):
        members = tar.getmembers()
        raise DecodeError(
            "error reading tarball",
            archive_path=members[-1].name if members else None,
            details="unexpected end of archive",
        )


def install_tarball(
    stream: BinaryIO, dest_dir: str, compression: str = DEFAULT_TARBALL_COMPRESSION
) -> int:
    """
    Decompress and extract a tarball stream into `dest_dir`.

    The whole stream is consumed. A tarball that ends early, in the compressed
    data or in the tar structure, is a DecodeError even when every member read
    so far was intact.

    Parameters:
        stream (BinaryIO): Readable byte stream of the compressed tarball.
        dest_dir (str): Existing destination directory.
        compression (str): "gz" for gzip, or "" for an uncompressed tar.

    Returns:
        int: Number of directories and files written.

    Raises:
        ValueError: If `compression` is not supported.
        DecodeError: If the stream is not a complete, valid tarball.
        FileSystemError: If extraction cannot write to `dest_dir`.
    """
    if compression == "gz":
        source = gzip.GzipFile(fileobj=stream, mode="rb")
    elif not compression:
        source = stream
    else:
        raise ValueError(f"unsupported tarball compression: {compression!r}")

    # tarfile reads ahead by at most one record past the header it stops at
    reader = _TailReader(source, keep=tarfile.RECORDSIZE + END_OF_ARCHIVE_SIZE)
    try:
        try:
            tar = tarfile.open(fileobj=reader, mode="r|")
        except DECODE_ERRORS as e:
            raise DecodeError("error opening tarball", details=str(e)) from e

        with tar:
            written = untar(tar, dest_dir)
            _check_end_of_archive(tar, reader)
    finally:
        if source is not stream:
            source.close()

    logger.debug(f"Extracted {written} entries into {dest_dir}")
    return written

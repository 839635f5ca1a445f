"""Build context archival.

This module handles:
- Deterministic traversal of a build context directory
- Serializing entries into a tar stream (files, directories, symlinks)
- Gzip compression of the stream, yielded incrementally

Symlinks are archived as links and never followed. Entries are sorted
by name at every level, so archiving an unchanged directory twice
yields identical bytes.
"""

from __future__ import annotations

import logging
import os
import stat
import tarfile
import zlib
from collections.abc import Iterator
from pathlib import Path

from k8s_deploy.errors import ArchiveReadError, DirectoryNotFoundError
from k8s_deploy.types import ContextEntry, EntryType

logger = logging.getLogger(__name__)

# Chunk size for reading build context files (bytes)
READ_CHUNK_SIZE = 64 * 1024  # 64 KB

# gzip container, window size 2**15
GZIP_WBITS = 16 + zlib.MAX_WBITS
COMPRESSION_LEVEL = 6

ROOT_ENTRY_NAME = "."


class _CompressedSink:
    """Write-only file object that gzips whatever the tar writer emits."""

    def __init__(self, level: int = COMPRESSION_LEVEL) -> None:
        # zlib writes a gzip header with a zero mtime, unlike gzip.GzipFile
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)
        self._pending: list[bytes] = []

    def write(self, data: bytes) -> int:
        if data:
            chunk = self._compressor.compress(data)
            if chunk:
                self._pending.append(chunk)
        return len(data)

    def finish(self) -> None:
        self._pending.append(self._compressor.flush())

    def drain(self) -> bytes:
        data = b"".join(self._pending)
        self._pending.clear()
        return data


def _check_root(root: Path) -> Path:
    if not root.is_dir():
        raise DirectoryNotFoundError(str(root))
    return root


def _entry_for(
    path: Path, relative_path: str
) -> tuple[ContextEntry, os.stat_result] | None:
    """Describe a single filesystem entry without following symlinks.

    Returns None for entry types a build context cannot hold (sockets,
    FIFOs, device nodes).
    """
    try:
        st = path.lstat()
        mode = stat.S_IMODE(st.st_mode)

        if stat.S_ISLNK(st.st_mode):
            entry = ContextEntry(
                relative_path=relative_path,
                entry_type=EntryType.SYMLINK,
                mode=mode,
                link_target=os.readlink(path),
            )
        elif stat.S_ISDIR(st.st_mode):
            entry = ContextEntry(
                relative_path=relative_path,
                entry_type=EntryType.DIR,
                mode=mode,
            )
        elif stat.S_ISREG(st.st_mode):
            entry = ContextEntry(
                relative_path=relative_path,
                entry_type=EntryType.FILE,
                mode=mode,
                size=st.st_size,
            )
        else:
            logger.debug("Skipping special file %s", path)
            return None
    except OSError as e:
        raise ArchiveReadError(str(path), e.strerror or str(e)) from e

    return entry, st


def _walk(
    directory: Path, relative_dir: str
) -> Iterator[tuple[Path, ContextEntry, os.stat_result]]:
    """Yield entries below ``directory`` in lexicographic depth-first order."""
    try:
        names = sorted(os.listdir(directory))
    except OSError as e:
        raise ArchiveReadError(str(directory), e.strerror or str(e)) from e

    for name in names:
        path = directory / name
        if relative_dir == ROOT_ENTRY_NAME:
            relative_path = name
        else:
            relative_path = f"{relative_dir}/{name}"

        described = _entry_for(path, relative_path)
        if described is None:
            continue
        entry, st = described
        yield path, entry, st

        if entry.entry_type is EntryType.DIR:
            yield from _walk(path, relative_path)


def _scan(root: Path) -> Iterator[tuple[Path, ContextEntry, os.stat_result]]:
    # The root is always a directory entry, even when given via a symlink
    try:
        st = root.stat()
    except OSError as e:
        raise ArchiveReadError(str(root), e.strerror or str(e)) from e

    root_entry = ContextEntry(
        relative_path=ROOT_ENTRY_NAME,
        entry_type=EntryType.DIR,
        mode=stat.S_IMODE(st.st_mode),
    )
    yield root, root_entry, st
    yield from _walk(root, ROOT_ENTRY_NAME)


def iter_context_entries(root: Path) -> Iterator[ContextEntry]:
    """List the entries of the build context rooted at ``root``.

    Entries are yielded in archive order, the root directory first.
    File content is not read.

    Args:
        root: Build context directory.

    Returns:
        Iterator over ContextEntry records.

    Raises:
        DirectoryNotFoundError: If root is missing or not a directory.
        ArchiveReadError: (during iteration) if an entry cannot be read.
    """
    _check_root(root)
    return (entry for _, entry, _ in _scan(root))


def _to_tarinfo(entry: ContextEntry, st: os.stat_result) -> tarfile.TarInfo:
    info = tarfile.TarInfo(entry.relative_path)
    info.mode = entry.mode
    info.mtime = int(st.st_mtime)
    # Ownership is normalized so the archive does not depend on the local user
    info.uid = info.gid = 0
    info.uname = info.gname = ""

    if entry.entry_type is EntryType.DIR:
        info.type = tarfile.DIRTYPE
    elif entry.entry_type is EntryType.SYMLINK:
        info.type = tarfile.SYMTYPE
        info.linkname = entry.link_target or ""
    else:
        info.type = tarfile.REGTYPE
        info.size = entry.size
    return info


def _generate(root: Path, chunk_size: int) -> Iterator[bytes]:
    sink = _CompressedSink()
    entries = 0
    total_bytes = 0

    logger.info("Archiving build context %s", root)

    with tarfile.open(fileobj=sink, mode="w|", copybufsize=chunk_size) as tar:
        for path, entry, st in _scan(root):
            info = _to_tarinfo(entry, st)
            logger.debug("Adding %s (%s)", entry.relative_path, entry.entry_type.value)

            if entry.entry_type is EntryType.FILE:
                try:
                    with path.open("rb") as f:
                        tar.addfile(info, f)
                except OSError as e:
                    raise ArchiveReadError(str(path), e.strerror or str(e)) from e
            else:
                tar.addfile(info)
            entries += 1

            chunk = sink.drain()
            if chunk:
                total_bytes += len(chunk)
                yield chunk

    sink.finish()
    chunk = sink.drain()
    total_bytes += len(chunk)
    yield chunk

    logger.info(
        "Archived %d entries from %s (%d compressed bytes)", entries, root, total_bytes
    )


def archive_directory(root: Path, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
    """Archive a directory into a gzip-compressed tar build context.

    The root is validated immediately; the archive itself is produced
    lazily as the returned iterator is consumed. Memory use is bounded
    by the largest single file rather than the whole context.

    Args:
        root: Build context directory.
        chunk_size: Read buffer size for file content.

    Returns:
        Iterator over compressed archive chunks.

    Raises:
        DirectoryNotFoundError: If root is missing or not a directory.
        ArchiveReadError: (during iteration) if an entry cannot be read;
            the stream stops at that point.
    """
    _check_root(root)
    return _generate(root, chunk_size)


def archive_to_bytes(root: Path, chunk_size: int = READ_CHUNK_SIZE) -> bytes:
    """Archive a directory into a single in-memory buffer.

    Either the complete archive is returned or an error is raised; a
    partial archive is never returned.

    Args:
        root: Build context directory.
        chunk_size: Read buffer size for file content.

    Returns:
        Complete gzip-compressed tar archive.
    """
    return b"".join(archive_directory(root, chunk_size))


__all__ = [
    "READ_CHUNK_SIZE",
    "ROOT_ENTRY_NAME",
    "archive_directory",
    "archive_to_bytes",
    "iter_context_entries",
]

"""
Build context archives.

Turns an in-memory file map or a directory tree into a tar archive that the
uploader reads once, front to back, in fixed-size blocks. The tar bytes are
only produced on first read and are spooled to disk past SPOOL_MAX_SIZE, so
large build contexts never sit in memory whole.

Symlink policy: symlinks found while walking a directory are stored verbatim
as symlink entries. They are never followed, and a symlinked directory is not
descended into.
"""

import io
import logging
import os
import posixpath
import tarfile
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Mapping, Optional, Union

import pathspec

from ..config import DEFAULT_BLOCK_SIZE, SPOOL_MAX_SIZE
from ..core.exceptions import InvalidInputError
from .ignore import should_ignore

log = logging.getLogger(__name__)

# Fixed metadata for in-memory entries so identical inputs give identical bytes
IN_MEMORY_FILE_MODE = 0o644
IN_MEMORY_MTIME = 0


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class FileEntry:
    """One member of a build archive.

    Exactly one of ``content`` (in-memory file) or ``source`` (path on disk) is
    set; ``path`` is already normalized.
    """

    path: str
    kind: EntryKind = EntryKind.FILE
    content: Optional[bytes] = None
    source: Optional[Path] = None


def normalize_archive_path(path: str) -> str:
    """
    Normalize a destination path inside the archive.

    Strips leading slashes and ``.`` segments and converts backslashes.

    Raises:
        InvalidInputError: If the path is empty or contains a ``..`` segment
    """
    if not isinstance(path, str):
        raise InvalidInputError(f"Archive path must be a string, got {type(path).__name__}")

    candidate = path.replace("\\", "/").lstrip("/")
    if ".." in candidate.split("/"):
        raise InvalidInputError(f"Archive path escapes the build context: {path!r}")

    normalized = posixpath.normpath(candidate) if candidate else ""
    if normalized in ("", "."):
        raise InvalidInputError(f"Empty archive path: {path!r}")
    return normalized


class Archive:
    """
    Ordered set of entries that materializes into a tar stream on first read.

    An Archive is readable exactly once. It owns a temporary spool file only
    between the first read and either exhaustion or close().
    """

    def __init__(self, entries: Iterable[FileEntry], spool_max_size: int = SPOOL_MAX_SIZE):
        self._entries: List[FileEntry] = list(entries)
        self._spool_max_size = spool_max_size
        self._spool = None
        self._consumed = False
        self._closed = False
        self._tar_path: Optional[Path] = None

    @classmethod
    def from_tarfile(cls, path: Union[str, Path]) -> "Archive":
        """
        Wrap an existing tar file (e.g. a container export) without repacking it.

        Raises:
            InvalidInputError: If the file does not exist
        """
        path = Path(path)
        if not path.is_file():
            raise InvalidInputError(f"{path} does not exist or is not a file")
        archive = cls([])
        archive._tar_path = path
        return archive

    @property
    def entries(self) -> List[FileEntry]:
        return list(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._entries)

    def iter_blocks(self, block_size: int = DEFAULT_BLOCK_SIZE) -> Iterator[bytes]:
        """
        Yield the tar bytes in blocks of ``block_size`` (the last may be shorter).

        Raises:
            RuntimeError: If the archive was already read or closed
            InvalidInputError: If a source file can no longer be read
        """
        if block_size <= 0:
            raise ValueError(f"block_size must be positive, got {block_size}")
        if self._consumed or self._closed:
            raise RuntimeError("Archive can only be read once")
        self._consumed = True
        return self._blocks(block_size)

    def _blocks(self, block_size: int) -> Iterator[bytes]:
        try:
            spool = self._materialize()
            while True:
                block = spool.read(block_size)
                if not block:
                    break
                yield block
        finally:
            self.close()

    def read(self) -> bytes:
        """Read the whole archive at once. Meant for small archives and tests."""
        return b"".join(self.iter_blocks())

    def close(self) -> None:
        if self._spool is not None:
            self._spool.close()
            self._spool = None
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _materialize(self):
        if self._tar_path is not None:
            try:
                self._spool = open(self._tar_path, "rb")
            except OSError as e:
                raise InvalidInputError(f"Cannot read {self._tar_path}: {e}") from e
            return self._spool

        spool = tempfile.SpooledTemporaryFile(max_size=self._spool_max_size)
        self._spool = spool
        try:
            with tarfile.open(fileobj=spool, mode="w", format=tarfile.PAX_FORMAT) as tar:
                for entry in self._entries:
                    self._add_entry(tar, entry)
        except OSError as e:
            raise InvalidInputError(f"Failed to archive build context: {e}") from e

        size = spool.tell()
        spool.seek(0)
        log.debug(f"Archive materialized: {len(self._entries)} entries, {size} bytes")
        return spool

    @staticmethod
    def _add_entry(tar: tarfile.TarFile, entry: FileEntry) -> None:
        if entry.content is not None:
            info = tarfile.TarInfo(entry.path)
            info.size = len(entry.content)
            info.mode = IN_MEMORY_FILE_MODE
            info.mtime = IN_MEMORY_MTIME
            info.type = tarfile.REGTYPE
            tar.addfile(info, io.BytesIO(entry.content))
            return

        source = str(entry.source)
        info = tar.gettarinfo(source, arcname=entry.path)
        if entry.kind is EntryKind.FILE:
            with open(source, "rb") as fh:
                tar.addfile(info, fh)
        else:
            tar.addfile(info)


class ArchiveBuilder:
    """
    Build archives from file maps or directories.

    Every input is validated eagerly so that problems surface as
    InvalidInputError before any request is made.
    """

    def __init__(self, spool_max_size: int = SPOOL_MAX_SIZE):
        self.spool_max_size = spool_max_size

    def build_from_files(self, files: Mapping[str, Union[bytes, str]]) -> Archive:
        """
        Create an archive from a mapping of archive path to contents.

        Args:
            files: Destination path -> file contents. ``str`` values are UTF-8
                encoded.

        Returns:
            Archive whose bytes depend only on the mapping

        Raises:
            InvalidInputError: On a bad path, duplicate path or non-bytes value
        """
        entries = []
        seen = set()
        for raw_path, content in files.items():
            path = normalize_archive_path(raw_path)
            if path in seen:
                raise InvalidInputError(f"Duplicate archive path: {path}")
            seen.add(path)

            if isinstance(content, str):
                content = content.encode("utf-8")
            elif isinstance(content, (bytearray, memoryview)):
                content = bytes(content)
            elif not isinstance(content, bytes):
                raise InvalidInputError(
                    f"Contents of {path} must be bytes or str, got {type(content).__name__}"
                )
            entries.append(FileEntry(path=path, content=content))

        log.debug(f"Archive from {len(entries)} in-memory files")
        return Archive(entries, spool_max_size=self.spool_max_size)

    def build_from_directory(
        self,
        root: Union[str, Path],
        ignore: Optional[pathspec.PathSpec] = None,
    ) -> Archive:
        """
        Create an archive of a directory tree.

        Args:
            root: Directory to archive; paths are stored relative to it
            ignore: Optional PathSpec of paths to leave out. Nothing is skipped
                when omitted.

        Returns:
            Archive of the tree in sorted walk order

        Raises:
            InvalidInputError: If root is missing, anything is unreadable, or
                the tree holds a socket, fifo or device file
        """
        root = Path(root)
        if not root.exists():
            raise InvalidInputError(f"Build context does not exist: {root}")
        if not root.is_dir():
            raise InvalidInputError(f"Build context is not a directory: {root}")

        entries: List[FileEntry] = []
        self._walk(root, root, ignore, entries)
        log.debug(f"Archive from directory {root}: {len(entries)} entries")
        return Archive(entries, spool_max_size=self.spool_max_size)

    def _walk(
        self,
        directory: Path,
        root: Path,
        ignore: Optional[pathspec.PathSpec],
        entries: List[FileEntry],
    ) -> None:
        try:
            children = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise InvalidInputError(f"Cannot read directory {directory}: {e}") from e

        for item in children:
            rel_path = item.relative_to(root).as_posix()
            is_link = item.is_symlink()
            is_dir = not is_link and item.is_dir()

            if ignore is not None and should_ignore(rel_path, is_dir, ignore):
                log.debug(f"Ignoring: {rel_path}")
                continue

            if is_link:
                entries.append(FileEntry(rel_path, EntryKind.SYMLINK, source=item))
            elif is_dir:
                entries.append(FileEntry(rel_path, EntryKind.DIRECTORY, source=item))
                self._walk(item, root, ignore, entries)
            elif item.is_file():
                if not os.access(item, os.R_OK):
                    raise InvalidInputError(f"File is not readable: {item}")
                entries.append(FileEntry(rel_path, EntryKind.FILE, source=item))
            else:
                raise InvalidInputError(f"Unsupported file type in build context: {item}")


def file_map_from_paths(paths: Iterable[Union[str, Path]]) -> dict:
    """
    Read local files into a map keyed by basename.

    Raises:
        InvalidInputError: If a path is missing, not a file, unreadable, or
            shares its basename with an earlier path
    """
    files = {}
    for raw_path in paths:
        path = Path(raw_path)
        if not path.is_file():
            raise InvalidInputError(f"{path} does not exist or is not a file")
        if path.name in files:
            raise InvalidInputError(f"Duplicate basename: {path.name}")
        try:
            files[path.name] = path.read_bytes()
        except OSError as e:
            raise InvalidInputError(f"Cannot read {path}: {e}") from e
    return files


def dockerfile_for(base_image: str, files: Mapping[str, bytes], output_path: str) -> str:
    """Generate a Dockerfile that adds every file in ``files`` on top of base_image."""
    lines = [f"from {base_image}\n"]
    for basename in files:
        lines.append(f"add {basename} {output_path}\n")
    return "".join(lines)

"""Build pipeline: context archives, chunked upload and response parsing."""

from .archive import (
    Archive,
    ArchiveBuilder,
    EntryKind,
    FileEntry,
    dockerfile_for,
    file_map_from_paths,
    normalize_archive_path,
)
from .ignore import load_dockerignore
from .orchestrator import BUILD_ENDPOINT, BuildOptions, BuildOrchestrator
from .parser import (
    BuildResponseParser,
    BuildResult,
    BuildStatusEvent,
    EventKind,
    match_identifier,
)
from .uploader import ChunkedUploader

__all__ = [
    "Archive",
    "ArchiveBuilder",
    "BUILD_ENDPOINT",
    "BuildOptions",
    "BuildOrchestrator",
    "BuildResponseParser",
    "BuildResult",
    "BuildStatusEvent",
    "ChunkedUploader",
    "EntryKind",
    "FileEntry",
    "dockerfile_for",
    "file_map_from_paths",
    "load_dockerignore",
    "match_identifier",
    "normalize_archive_path",
]

"""Ignore pattern matching for directory builds.

The archive builder skips nothing on its own; callers that want
``.dockerignore`` semantics load a PathSpec here and pass it in explicitly.
"""

import logging
from pathlib import Path
from typing import List, Optional

import pathspec

from ..core.exceptions import InvalidInputError

log = logging.getLogger(__name__)

DOCKERIGNORE = ".dockerignore"


def parse_ignore_file(file_path: Path) -> List[str]:
    """
    Parse an ignore file and return list of patterns.

    Args:
        file_path: Path to the ignore file

    Returns:
        List of pattern strings

    Raises:
        InvalidInputError: If the file exists but cannot be read
    """
    if not file_path.exists():
        return []

    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidInputError(f"Failed to read {file_path}: {e}") from e

    patterns = []
    for line in content.splitlines():
        line = line.strip()
        # Skip empty lines and comments
        if line and not line.startswith("#"):
            patterns.append(line)

    return patterns


def load_dockerignore(context_dir: Path) -> Optional[pathspec.PathSpec]:
    """
    Load patterns from the .dockerignore file of a build context.

    Args:
        context_dir: Root of the build context

    Returns:
        PathSpec for pattern matching, or None when there is no ignore file
    """
    ignore_file = Path(context_dir) / DOCKERIGNORE
    if not ignore_file.exists():
        return None

    patterns = parse_ignore_file(ignore_file)
    log.debug(f"Loaded {len(patterns)} patterns from {DOCKERIGNORE}")
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def should_ignore(rel_path: str, is_dir: bool, spec: pathspec.PathSpec) -> bool:
    """
    Check if an archive-relative path matches the ignore PathSpec.

    Args:
        rel_path: POSIX path relative to the context root
        is_dir: Whether the path is a directory (enables ``dir/`` patterns)
        spec: PathSpec object with ignore patterns

    Returns:
        True if the path should be left out of the archive
    """
    if is_dir:
        return spec.match_file(rel_path + "/")
    return spec.match_file(rel_path)

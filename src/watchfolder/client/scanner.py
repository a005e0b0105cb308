"""Directory polling for the watch folder.

This module provides:
- ScannedFile: A candidate file seen on one poll
- scan_directory: List allow-listed files in the watched folder
- probe_file / is_file_accessible: Exclusive-open check used as a
  cheap "not being written" heuristic
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from watchfolder.client.state import truncate_to_second

if sys.platform != "win32":
    import fcntl

logger = logging.getLogger(__name__)


class FileAccessError(OSError):
    """A file is held open by another process."""


@dataclass
class ScannedFile:
    """A file seen on one poll of the watched folder."""

    name: str
    path: Path
    mtime: datetime  # truncated to whole seconds
    size: int


def probe_file(path: Path) -> None:
    """Open a file exclusively and close it immediately.

    On Windows the open fails while another handle denies sharing. On
    POSIX a non-blocking exclusive flock fails while a writer holds one.

    Raises:
        FileAccessError: If the file cannot be opened exclusively.
    """
    try:
        with open(path, "r+b") as f:
            if sys.platform != "win32":
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        raise FileAccessError(f"Unable to access file {path.name}: {e}") from e


def is_file_accessible(path: Path) -> bool:
    """Check if a file can be opened exclusively."""
    try:
        probe_file(path)
    except FileAccessError as e:
        logger.debug("%s", e)
        return False
    return True


def list_directory(folder: Path, extensions: frozenset[str]) -> list[Path]:
    """List regular files in folder whose suffix is allow-listed.

    The listing is not recursive and is sorted by name.

    Raises:
        OSError: If the folder cannot be listed.
    """
    paths = []
    for entry in Path(folder).iterdir():
        if entry.suffix.lower() not in extensions:
            continue
        if not entry.is_file():
            continue
        paths.append(entry)
    return sorted(paths, key=lambda p: p.name)


def scan_directory(
    folder: Path,
    extensions: frozenset[str],
    check_access: bool = True,
) -> list[ScannedFile]:
    """Collect files that are ready to be classified.

    Files that fail the exclusive-open probe, or vanish between listing
    and stat, are left out for this poll.

    Args:
        folder: Watched directory.
        extensions: Normalized allow-list (lowercase, leading dot).
        check_access: Run the exclusive-open probe.

    Returns:
        Scanned files sorted by name.

    Raises:
        OSError: If the folder cannot be listed.
    """
    result = []
    for path in list_directory(folder, extensions):
        if check_access and not is_file_accessible(path):
            continue
        try:
            stat = path.stat()
        except OSError:
            # Removed between listing and stat
            continue
        result.append(
            ScannedFile(
                name=path.name,
                path=path,
                mtime=truncate_to_second(datetime.fromtimestamp(stat.st_mtime)),
                size=stat.st_size,
            )
        )
    return result

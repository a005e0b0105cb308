"""Persisted per-file sync state.

This module provides:
- FileSyncRecord: Sync bookkeeping for one file name
- SyncStateStore: Line-based state file, loaded at the start of every
  cycle and rewritten atomically at the end

File format:
    One line per tracked file, ";"-delimited:

        name;last_sync_time;candidate_time;stable_seconds;attempts

    Timestamps use the fixed format MM/dd/yyyy HH:mm:ss. Lines written
    before the attempt count existed have four fields; the count then
    defaults to 0. Any other line shape is skipped on load.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# Sentinel for "never uploaded"
NEVER = datetime(1, 1, 1)

# stable_seconds value marking a record queued for upload this cycle
IN_FLIGHT = -1

FIELD_SEPARATOR = ";"
TIMESTAMP_FORMAT = "%m/%d/%Y %H:%M:%S"


class StateStoreError(Exception):
    """The state file exists but cannot be read or written."""


class StateCorruptionError(StateStoreError):
    """A single state line cannot be parsed."""

    def __init__(self, line_number: int, line: str, reason: str) -> None:
        self.line_number = line_number
        self.line = line
        super().__init__(f"line {line_number}: {reason}")


@dataclass
class FileSyncRecord:
    """Sync bookkeeping for one file in the watched folder.

    Attributes:
        last_sync_time: Modification time at the last confirmed upload,
            or NEVER.
        candidate_time: Modification time seen on the latest poll.
        stable_seconds: Seconds the candidate has stayed unchanged, or
            IN_FLIGHT while queued for upload.
        attempts: Consecutive failed uploads of this file version.
    """

    last_sync_time: datetime = NEVER
    candidate_time: datetime = NEVER
    stable_seconds: int = 0
    attempts: int = 0

    @property
    def in_flight(self) -> bool:
        """Whether the record is queued for upload this cycle."""
        return self.stable_seconds == IN_FLIGHT

    @property
    def ever_synced(self) -> bool:
        """Whether any version of the file was ever uploaded."""
        return self.last_sync_time != NEVER

    def copy(self) -> FileSyncRecord:
        """Return an independent copy."""
        return replace(self)


def truncate_to_second(value: datetime) -> datetime:
    """Drop sub-second precision."""
    return value.replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Format a timestamp as MM/dd/yyyy HH:mm:ss.

    Built by hand instead of strftime so year 1 (NEVER) is zero padded on
    every platform and no locale setting leaks in.
    """
    return (
        f"{value.month:02d}/{value.day:02d}/{value.year:04d} "
        f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )


def parse_timestamp(text: str) -> datetime:
    """Parse a timestamp written by format_timestamp.

    Raises:
        ValueError: If the text does not match the format.
    """
    return datetime.strptime(text.strip(), TIMESTAMP_FORMAT)


def format_record_line(name: str, record: FileSyncRecord) -> str:
    """Serialize one record as a state file line (without newline)."""
    return FIELD_SEPARATOR.join(
        [
            name,
            format_timestamp(record.last_sync_time),
            format_timestamp(record.candidate_time),
            str(record.stable_seconds),
            str(record.attempts),
        ]
    )


def parse_record_line(line: str, line_number: int = 0) -> tuple[str, FileSyncRecord]:
    """Parse one state file line.

    Args:
        line: Line content without trailing newline.
        line_number: 1-based position, used in error messages.

    Returns:
        Tuple of (file name, record).

    Raises:
        StateCorruptionError: If the line has the wrong shape or a field
            fails to parse.
    """
    fields = line.split(FIELD_SEPARATOR)
    if len(fields) not in (4, 5):
        raise StateCorruptionError(
            line_number, line, f"expected 4 or 5 fields, got {len(fields)}"
        )

    name = fields[0]
    if not name:
        raise StateCorruptionError(line_number, line, "empty file name")

    try:
        record = FileSyncRecord(
            last_sync_time=parse_timestamp(fields[1]),
            candidate_time=parse_timestamp(fields[2]),
            stable_seconds=int(fields[3]),
            attempts=int(fields[4]) if len(fields) == 5 else 0,
        )
    except ValueError as e:
        raise StateCorruptionError(line_number, line, str(e)) from e

    return name, record


class SyncStateStore:
    """Line-based state file for the watch folder worker.

    The store holds no state between calls: load() reads the whole file,
    save() replaces the whole file. Only one worker may own a state file.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: Location of the state file.
        """
        self._path = Path(path)

    @property
    def path(self) -> Path:
        """Get the state file path."""
        return self._path

    def load(self) -> dict[str, FileSyncRecord]:
        """Read all records.

        Returns:
            Records keyed by file name. Empty if the file does not exist.

        Raises:
            StateStoreError: If the file exists but cannot be read.
        """
        if not self._path.exists():
            logger.debug("No state file at %s, starting fresh", self._path)
            return {}

        try:
            text = self._path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StateStoreError(f"Cannot read state file {self._path}: {e}") from e

        records: dict[str, FileSyncRecord] = {}
        for line_number, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                name, record = parse_record_line(line, line_number)
            except StateCorruptionError as e:
                logger.warning("Skipping corrupt state entry in %s: %s", self._path, e)
                continue
            records[name] = record

        return records

    def save(self, records: dict[str, FileSyncRecord]) -> None:
        """Atomically replace the state file with the given records.

        Writes to a temporary file in the same directory, flushes it to
        disk, then renames it over the target.

        Raises:
            StateStoreError: If the file cannot be written.
        """
        lines = [format_record_line(name, record) for name, record in records.items()]
        for line in lines:
            logger.debug("Writing state entry: %s", line)

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                    for line in lines:
                        f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StateStoreError(f"Cannot write state file {self._path}: {e}") from e


def prune(
    records: dict[str, FileSyncRecord], present: Iterable[str]
) -> list[str]:
    """Drop records whose file is no longer in the watched folder.

    Args:
        records: Records to prune in place.
        present: Names of files currently in the folder.

    Returns:
        Names of the dropped records.
    """
    keep = set(present)
    removed = [name for name in records if name not in keep]
    for name in removed:
        del records[name]
    return removed

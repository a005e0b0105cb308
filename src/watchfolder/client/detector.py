"""Stability detection for files in the watched folder.

A file is uploaded only once its modification time has stayed the same
for the settle threshold. Each poll adds the poll interval to the
record's stable_seconds while the write time is unchanged and resets it
when the write time moves.

Classification of a file seen with (truncated) write time `current`:

    | record                          | status     | mutation                       |
    |---------------------------------|------------|--------------------------------|
    | none, settle == 0               | STABLE     | created when queued            |
    | none, settle > 0                | TRACKING   | created, candidate = current   |
    | last_sync_time == current       | IN_SYNC    | none                           |
    | candidate_time != current       | TRACKING   | candidate = current, reset     |
    | attempts >= max_attempts        | EXHAUSTED  | none                           |
    | candidate_time == current       | STABLE or  | stable_seconds += poll         |
    |                                 | TRACKING   |                                |

A queued file's record is snapshotted, then optimistically marked as
synced at `current`. If the upload fails the snapshot is restored and
the attempt count incremented.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from watchfolder.client.state import IN_FLIGHT, FileSyncRecord
from watchfolder.core.types import FileStatus

logger = logging.getLogger(__name__)


@dataclass
class PendingUpload:
    """A file queued for upload this cycle.

    Attributes:
        name: File name within the watched folder.
        current: Write time being uploaded.
        snapshot: Record as it was before queueing, restored on failure.
    """

    name: str
    current: datetime
    snapshot: FileSyncRecord


class StabilityDetector:
    """Classifies files and maintains their sync records.

    The detector mutates the records dict it is given; it keeps no state
    of its own between cycles.
    """

    def __init__(
        self,
        settle_seconds: int,
        poll_interval: int,
        max_attempts: int,
    ) -> None:
        """Initialize the detector.

        Args:
            settle_seconds: Seconds a write time must stay unchanged.
            poll_interval: Seconds added per unchanged poll.
            max_attempts: Failed uploads allowed per file version.
        """
        self._settle_seconds = settle_seconds
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts

    @property
    def settle_seconds(self) -> int:
        """Get the settle threshold in seconds."""
        return self._settle_seconds

    @property
    def max_attempts(self) -> int:
        """Get the failed-upload limit per file version."""
        return self._max_attempts

    def classify(
        self,
        records: dict[str, FileSyncRecord],
        name: str,
        current: datetime,
    ) -> FileStatus:
        """Classify one file and update its record.

        Args:
            records: All records, updated in place.
            name: File name.
            current: Modification time truncated to whole seconds.

        Returns:
            The file's status for this cycle.
        """
        record = records.get(name)

        if record is None:
            if self._settle_seconds == 0:
                return FileStatus.STABLE
            records[name] = FileSyncRecord(candidate_time=current, stable_seconds=0)
            return FileStatus.TRACKING

        if record.last_sync_time == current:
            return FileStatus.IN_SYNC

        if record.candidate_time != current:
            # New version: restart the countdown and the retry budget
            record.candidate_time = current
            record.stable_seconds = 0
            record.attempts = 0
            return FileStatus.TRACKING

        if record.attempts >= self._max_attempts:
            return FileStatus.EXHAUSTED

        record.stable_seconds = max(record.stable_seconds, 0) + self._poll_interval
        if record.stable_seconds >= self._settle_seconds:
            return FileStatus.STABLE
        return FileStatus.TRACKING

    def queue(
        self,
        records: dict[str, FileSyncRecord],
        name: str,
        current: datetime,
    ) -> PendingUpload:
        """Mark a STABLE file as in flight.

        The record's last_sync_time is advanced to current before the
        transfer outcome is known; rollback() reverts it.
        """
        record = records.get(name)
        if record is None:
            record = FileSyncRecord(candidate_time=current, stable_seconds=0)
            records[name] = record

        pending = PendingUpload(name=name, current=current, snapshot=record.copy())
        record.last_sync_time = current
        record.stable_seconds = IN_FLIGHT
        return pending

    def restore(
        self,
        records: dict[str, FileSyncRecord],
        pending: PendingUpload,
    ) -> FileSyncRecord:
        """Put back the pre-queue record of an upload that never ran."""
        restored = pending.snapshot.copy()
        records[pending.name] = restored
        return restored

    def rollback(
        self,
        records: dict[str, FileSyncRecord],
        pending: PendingUpload,
    ) -> FileSyncRecord:
        """Restore a failed upload's snapshot and count the attempt.

        Returns:
            The restored record.
        """
        restored = self.restore(records, pending)
        restored.attempts += 1
        if restored.attempts >= self._max_attempts:
            logger.warning(
                "Giving up on %s after %d failed attempts until it changes",
                pending.name,
                restored.attempts,
            )
        return restored

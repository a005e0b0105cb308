"""Tests for the watch folder poll loop."""

from __future__ import annotations

import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from watchfolder.client.detector import StabilityDetector
from watchfolder.client.state import FileSyncRecord, SyncStateStore
from watchfolder.client.uploader import UploadOutcome, UploadStage
from watchfolder.client.worker import CycleLogAdapter, WatchFolderWorker, new_cycle_id
from watchfolder.core.config import ServerConfig, WatchConfig
from watchfolder.core.types import FileStatus, WorkerState

MTIME = 1_700_000_000
T_FILE = datetime.fromtimestamp(MTIME)
T_OLD = datetime(2023, 1, 1, 8, 0, 0)


def succeed(path: Path, log: Any = None) -> UploadOutcome:
    """Orchestrator side effect: every upload succeeds."""
    return UploadOutcome(name=path.name, success=True, stage=UploadStage.DONE)


def fail(path: Path, log: Any = None) -> UploadOutcome:
    """Orchestrator side effect: every upload fails."""
    return UploadOutcome(
        name=path.name, success=False, stage=UploadStage.SETUP, error="gateway down"
    )


def add_file(folder: Path, name: str, mtime: int = MTIME) -> Path:
    """Create a file in the watched folder with a fixed mtime."""
    path = folder / name
    path.write_bytes(b"video data")
    os.utime(path, (mtime, mtime))
    return path


class Harness:
    """A worker wired to a real store and detector and a mock orchestrator."""

    def __init__(self, tmp_path: Path, **overrides: Any) -> None:
        self.folder = tmp_path / "incoming"
        self.folder.mkdir(exist_ok=True)
        values: dict[str, Any] = {
            "watch_folder": self.folder,
            "state_file": tmp_path / "state.txt",
            "folder_id": "folder-1",
            "server": ServerConfig(server_url="http://test"),
            "extensions": frozenset({".mp4"}),
            "poll_interval": 60,
            "settle_seconds": 120,
            "max_attempts": 3,
        }
        values.update(overrides)
        self.config = WatchConfig(**values)
        self.store = SyncStateStore(self.config.state_file)
        self.orchestrator = MagicMock()
        self.orchestrator.upload.side_effect = succeed
        self.worker = WatchFolderWorker(
            config=self.config,
            store=self.store,
            detector=StabilityDetector(
                settle_seconds=self.config.settle_seconds,
                poll_interval=self.config.poll_interval,
                max_attempts=self.config.max_attempts,
            ),
            orchestrator=self.orchestrator,
        )

    def uploaded_names(self) -> list[str]:
        """Names passed to the orchestrator, in call order."""
        return [c.args[0].name for c in self.orchestrator.upload.call_args_list]


class TestCycle:
    """Tests for a single scan -> classify -> upload -> persist pass."""

    def test_zero_settle_uploads_on_first_cycle(self, tmp_path: Path) -> None:
        """A new file should be uploaded on the first cycle that sees it."""
        h = Harness(tmp_path, settle_seconds=0)
        add_file(h.folder, "a.mp4")

        result = h.worker.run_cycle()

        assert result.ok
        assert result.statuses == {"a.mp4": FileStatus.STABLE}
        assert result.uploaded == ["a.mp4"]
        assert h.store.load()["a.mp4"].last_sync_time == T_FILE

    def test_settle_then_upload(self, tmp_path: Path) -> None:
        """An unchanged file should upload once and stay in sync."""
        h = Harness(tmp_path, settle_seconds=120, poll_interval=60)
        add_file(h.folder, "b.mp4")

        statuses = [h.worker.run_cycle().statuses["b.mp4"] for _ in range(4)]

        assert statuses == [
            FileStatus.TRACKING,
            FileStatus.TRACKING,
            FileStatus.STABLE,
            FileStatus.IN_SYNC,
        ]
        assert h.uploaded_names() == ["b.mp4"]

    def test_first_cycle_persists_tracking_record(self, tmp_path: Path) -> None:
        """Records for tracked files should be written at cycle end."""
        h = Harness(tmp_path)
        add_file(h.folder, "a.mp4")

        h.worker.run_cycle()

        assert h.store.load() == {
            "a.mp4": FileSyncRecord(candidate_time=T_FILE, stable_seconds=0)
        }
        h.orchestrator.upload.assert_not_called()

    def test_ignores_other_extensions(self, tmp_path: Path) -> None:
        """Files outside the allow-list should not be tracked."""
        h = Harness(tmp_path, settle_seconds=0)
        add_file(h.folder, "notes.txt")

        result = h.worker.run_cycle()

        assert result.statuses == {}
        assert h.store.load() == {}

    def test_failed_upload_rolls_back(self, tmp_path: Path) -> None:
        """The persisted record should revert to its pre-upload sync time."""
        h = Harness(tmp_path, settle_seconds=60, poll_interval=60)
        h.store.save(
            {
                "a.mp4": FileSyncRecord(
                    last_sync_time=T_OLD, candidate_time=T_FILE, stable_seconds=0
                )
            }
        )
        add_file(h.folder, "a.mp4")
        h.orchestrator.upload.side_effect = fail

        result = h.worker.run_cycle()

        assert result.failed == ["a.mp4"]
        assert result.persisted
        assert not result.ok
        record = h.store.load()["a.mp4"]
        assert record.last_sync_time == T_OLD
        assert record.attempts == 1
        assert not record.in_flight

    def test_exhausted_after_max_attempts(self, tmp_path: Path) -> None:
        """After max_attempts failures the file should not be retried."""
        h = Harness(tmp_path, settle_seconds=0, max_attempts=2)
        add_file(h.folder, "a.mp4")
        h.orchestrator.upload.side_effect = fail

        results = [h.worker.run_cycle() for _ in range(4)]

        assert [r.statuses["a.mp4"] for r in results] == [
            FileStatus.STABLE,
            FileStatus.STABLE,
            FileStatus.EXHAUSTED,
            FileStatus.EXHAUSTED,
        ]
        assert h.orchestrator.upload.call_count == 2

    def test_changed_file_retried_after_exhaustion(self, tmp_path: Path) -> None:
        """A new write time should give the file a fresh budget."""
        h = Harness(tmp_path, settle_seconds=0, max_attempts=1)
        path = add_file(h.folder, "a.mp4")
        h.orchestrator.upload.side_effect = fail
        h.worker.run_cycle()
        assert h.worker.run_cycle().statuses["a.mp4"] == FileStatus.EXHAUSTED

        os.utime(path, (MTIME + 30, MTIME + 30))
        h.orchestrator.upload.side_effect = succeed
        statuses = [h.worker.run_cycle().statuses["a.mp4"] for _ in range(3)]

        assert statuses == [FileStatus.TRACKING, FileStatus.STABLE, FileStatus.IN_SYNC]

    def test_uploads_files_in_name_order(self, tmp_path: Path) -> None:
        """Queued files should be uploaded one at a time in name order."""
        h = Harness(tmp_path, settle_seconds=0)
        for name in ("c.mp4", "a.mp4", "b.mp4"):
            add_file(h.folder, name)

        result = h.worker.run_cycle()

        assert h.uploaded_names() == ["a.mp4", "b.mp4", "c.mp4"]
        assert result.uploaded == ["a.mp4", "b.mp4", "c.mp4"]

    def test_unexpected_upload_error_counts_as_failure(self, tmp_path: Path) -> None:
        """An exception from the orchestrator should not end the cycle."""
        h = Harness(tmp_path, settle_seconds=0)
        add_file(h.folder, "a.mp4")
        add_file(h.folder, "b.mp4")
        h.orchestrator.upload.side_effect = [RuntimeError("boom"), succeed(Path("b.mp4"))]

        result = h.worker.run_cycle()

        assert result.failed == ["a.mp4"]
        assert result.uploaded == ["b.mp4"]
        assert result.persisted
        assert h.store.load()["a.mp4"].attempts == 1

    def test_corrupt_state_lines_skipped(self, tmp_path: Path) -> None:
        """A corrupt state line should not stop the cycle."""
        h = Harness(tmp_path, settle_seconds=0)
        h.config.state_file.write_text("garbage line\n")
        add_file(h.folder, "a.mp4")

        result = h.worker.run_cycle()

        assert result.ok
        assert set(h.store.load()) == {"a.mp4"}

    def test_unusable_state_skips_cycle(self, tmp_path: Path) -> None:
        """An unreadable state file should skip the cycle without persisting."""
        h = Harness(tmp_path, settle_seconds=0)
        h.config.state_file.mkdir()
        add_file(h.folder, "a.mp4")

        result = h.worker.run_cycle()

        assert result.error is not None
        assert not result.persisted
        h.orchestrator.upload.assert_not_called()
        assert h.worker.state == WorkerState.IDLE

    def test_scan_failure_still_persists(self, tmp_path: Path) -> None:
        """A failed scan should be reported and the loaded state kept."""
        h = Harness(tmp_path)
        h.store.save({"a.mp4": FileSyncRecord(candidate_time=T_OLD)})
        h.folder.rmdir()

        result = h.worker.run_cycle()

        assert result.error is not None
        assert result.persisted
        assert set(h.store.load()) == {"a.mp4"}

    def test_missing_files_retained_by_default(self, tmp_path: Path) -> None:
        """Records of deleted files should stay unless pruning is on."""
        h = Harness(tmp_path)
        h.store.save({"old.mp4": FileSyncRecord(last_sync_time=T_OLD, candidate_time=T_OLD)})

        result = h.worker.run_cycle()

        assert result.pruned == []
        assert "old.mp4" in h.store.load()

    def test_prune_missing(self, tmp_path: Path) -> None:
        """With pruning on, records of deleted files should be dropped."""
        h = Harness(tmp_path, prune_missing=True)
        h.store.save({"old.mp4": FileSyncRecord(last_sync_time=T_OLD, candidate_time=T_OLD)})
        add_file(h.folder, "a.mp4")

        result = h.worker.run_cycle()

        assert result.pruned == ["old.mp4"]
        assert set(h.store.load()) == {"a.mp4"}

    def test_stop_defers_remaining_uploads(self, tmp_path: Path) -> None:
        """Files still queued when a stop arrives should be left untouched."""
        h = Harness(tmp_path, settle_seconds=0)
        add_file(h.folder, "a.mp4")
        add_file(h.folder, "b.mp4")

        def upload_then_stop(path: Path, log: Any = None) -> UploadOutcome:
            h.worker._stop_event.set()
            return succeed(path)

        h.orchestrator.upload.side_effect = upload_then_stop

        result = h.worker.run_cycle()

        assert result.uploaded == ["a.mp4"]
        assert result.deferred == ["b.mp4"]
        assert result.failed == []
        record = h.store.load()["b.mp4"]
        assert not record.ever_synced
        assert record.attempts == 0

    def test_log_lines_carry_cycle_id(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Cycle log lines should be tagged with the cycle id."""
        h = Harness(tmp_path, settle_seconds=0)
        add_file(h.folder, "a.mp4")

        with caplog.at_level("INFO", logger="watchfolder"):
            result = h.worker.run_cycle()

        assert f"[cycle {result.cycle_id}] Uploading" in caplog.text


class TestCycleLogAdapter:
    """Tests for the per-cycle correlation id."""

    def test_prefixes_message(self) -> None:
        """Messages should be prefixed with the cycle id."""
        adapter = CycleLogAdapter(MagicMock(), {"cycle_id": "abcd1234"})

        msg, _ = adapter.process("hello", {})

        assert msg == "[cycle abcd1234] hello"

    def test_ids_are_unique(self) -> None:
        """Each cycle should get a fresh id."""
        ids = {new_cycle_id() for _ in range(100)}

        assert len(ids) == 100
        assert all(len(i) == 8 for i in ids)


class TestLifecycle:
    """Tests for start() and stop()."""

    def wait_for(self, condition: Any, timeout: float = 5.0) -> bool:
        """Poll a condition until it holds or the timeout expires."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if condition():
                return True
            time.sleep(0.01)
        return False

    def test_start_runs_first_cycle(self, tmp_path: Path) -> None:
        """start() should run a cycle right away."""
        h = Harness(tmp_path, settle_seconds=0, poll_interval=3600)
        add_file(h.folder, "a.mp4")

        h.worker.start()
        try:
            assert self.wait_for(lambda: h.worker.last_result is not None)
            assert h.worker.is_running
        finally:
            h.worker.stop(timeout=5)

        assert h.uploaded_names() == ["a.mp4"]

    def test_stop_interrupts_sleep(self, tmp_path: Path) -> None:
        """A sleeping worker should stop without waiting out the interval."""
        h = Harness(tmp_path, poll_interval=3600)
        h.worker.start()
        assert self.wait_for(lambda: h.worker.state == WorkerState.SLEEPING)

        started = time.monotonic()
        h.worker.stop(timeout=5)

        assert time.monotonic() - started < 2
        assert not h.worker.is_running
        assert h.worker.state == WorkerState.STOPPED

    def test_double_start(self, tmp_path: Path) -> None:
        """A second start() should not spawn another thread."""
        h = Harness(tmp_path, poll_interval=3600)
        h.worker.start()
        try:
            thread = h.worker._thread
            h.worker.start()
            assert h.worker._thread is thread
        finally:
            h.worker.stop(timeout=5)

    def test_loop_survives_failing_cycles(self, tmp_path: Path) -> None:
        """Failing cycles should not end the loop."""
        h = Harness(tmp_path, poll_interval=1)
        h.config.state_file.mkdir()

        h.worker.start()
        try:
            assert self.wait_for(lambda: h.worker.last_result is not None)
            assert h.worker.last_result is not None
            assert h.worker.last_result.error is not None
            assert h.worker.is_running
        finally:
            h.worker.stop(timeout=5)

"""Poll loop for the watch folder.

This module provides:
- WatchFolderWorker: Runs one scan -> classify -> upload -> persist pass
  per poll interval on a dedicated thread
- CycleResult: Outcome of one pass
- CycleLogAdapter: Prefixes log lines with the pass's correlation id

Passes never overlap. Files are uploaded one at a time. A failing pass
is logged and the loop sleeps until the next tick; only stop() ends it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from watchfolder.client.scanner import list_directory, scan_directory
from watchfolder.client.state import StateStoreError, prune
from watchfolder.core.types import FileStatus, WorkerState

if TYPE_CHECKING:
    from watchfolder.client.detector import PendingUpload, StabilityDetector
    from watchfolder.client.scanner import ScannedFile
    from watchfolder.client.state import FileSyncRecord, SyncStateStore
    from watchfolder.client.uploader import UploadOrchestrator
    from watchfolder.core.config import WatchConfig

logger = logging.getLogger(__name__)


class CycleLogAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter tagging every message with a cycle id."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        cycle_id = self.extra["cycle_id"] if self.extra else "-"
        return f"[cycle {cycle_id}] {msg}", kwargs


def new_cycle_id() -> str:
    """Generate a short correlation id for one pass."""
    return uuid.uuid4().hex[:8]


@dataclass
class CycleResult:
    """Outcome of one pass.

    Attributes:
        cycle_id: Correlation id used in this pass's log lines.
        statuses: Classification of every scanned file.
        uploaded: Files committed this pass.
        failed: Files whose upload failed (rolled back).
        deferred: Queued files left for a later pass because of a stop request.
        pruned: Records dropped because their file is gone.
        persisted: Whether the state file was written.
        error: Description of an unexpected pass-level failure.
    """

    cycle_id: str
    statuses: dict[str, FileStatus] = field(default_factory=dict)
    uploaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    persisted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the pass completed without any failure."""
        return self.error is None and not self.failed and self.persisted


class WatchFolderWorker:
    """Single-threaded poll loop driving detection and upload.

    Usage:
        worker = WatchFolderWorker(config, store, detector, orchestrator)
        worker.start()
        ...
        worker.stop()
    """

    def __init__(
        self,
        config: WatchConfig,
        store: SyncStateStore,
        detector: StabilityDetector,
        orchestrator: UploadOrchestrator,
        check_access: bool = True,
    ) -> None:
        """Initialize the worker.

        Args:
            config: Watch folder settings.
            store: Sync state persistence.
            detector: Classifies files and keeps their records.
            orchestrator: Uploads one file.
            check_access: Run the exclusive-open probe on each file.
        """
        self._config = config
        self._store = store
        self._detector = detector
        self._orchestrator = orchestrator
        self._check_access = check_access

        self._state = WorkerState.IDLE
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_result: CycleResult | None = None

    @property
    def state(self) -> WorkerState:
        """Get current loop state."""
        return self._state

    @property
    def last_result(self) -> CycleResult | None:
        """Get the result of the most recent pass."""
        return self._last_result

    @property
    def is_running(self) -> bool:
        """Check if the loop thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def _set_state(self, state: WorkerState) -> None:
        with self._lock:
            self._state = state

    # === Lifecycle ===

    def start(self) -> None:
        """Start the poll loop on a daemon thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("Worker already running")
                return
            self._stop_event.clear()
            self._state = WorkerState.IDLE
            self._thread = threading.Thread(
                target=self.run_forever,
                name="WatchFolderWorker",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Watching %s every %ds (settle %ds)",
            self._config.watch_folder,
            self._config.poll_interval,
            self._config.settle_seconds,
        )

    def stop(self, timeout: float | None = None) -> None:
        """Request the loop to stop and wait for the current pass.

        A sleeping loop wakes immediately. A pass in progress finishes
        its current upload and persist first.

        Args:
            timeout: Maximum time to wait for the thread, None to wait.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Worker did not stop within %ss", timeout)
                return
        with self._lock:
            self._state = WorkerState.STOPPED
        logger.info("Worker stopped")

    def run_forever(self) -> None:
        """Run passes until stop() is called."""
        while not self._stop_event.is_set():
            try:
                self._last_result = self.run_cycle()
            except Exception:
                # run_cycle handles its own failures; this keeps the loop alive
                logger.exception("Unexpected error in watch cycle")

            if self._stop_event.is_set():
                break
            self._set_state(WorkerState.SLEEPING)
            self._stop_event.wait(self._config.poll_interval)
            self._set_state(WorkerState.IDLE)

        with self._lock:
            self._state = WorkerState.STOPPED

    # === One pass ===

    def run_cycle(self) -> CycleResult:
        """Run one scan -> classify -> upload -> persist pass.

        Returns:
            The pass outcome. Never raises for per-file or per-pass errors.
        """
        result = CycleResult(cycle_id=new_cycle_id())
        log = CycleLogAdapter(logger, {"cycle_id": result.cycle_id})

        self._set_state(WorkerState.SCANNING)
        try:
            records = self._store.load()
        except StateStoreError as e:
            log.error("Cycle skipped, state unusable: %s", e)
            result.error = str(e)
            self._set_state(WorkerState.IDLE)
            return result

        pending: list[tuple[PendingUpload, ScannedFile]] = []
        try:
            files = scan_directory(
                self._config.watch_folder,
                self._config.extensions,
                check_access=self._check_access,
            )
            for scanned in files:
                status = self._detector.classify(records, scanned.name, scanned.mtime)
                result.statuses[scanned.name] = status
                log.debug("%s: %s", scanned.name, status.value)
                if status == FileStatus.STABLE:
                    pending.append(
                        (self._detector.queue(records, scanned.name, scanned.mtime), scanned)
                    )

            self._set_state(WorkerState.UPLOADING)
            self._upload_pending(records, pending, result, log)

            if self._config.prune_missing:
                listed = list_directory(self._config.watch_folder, self._config.extensions)
                present = [p.name for p in listed]
                result.pruned = prune(records, present)
                for name in result.pruned:
                    log.info("Dropped state for missing file %s", name)
        except Exception as e:
            log.exception("Cycle failed")
            result.error = str(e)
            self._rollback_unfinished(records, pending, result)

        self._set_state(WorkerState.PERSISTING)
        try:
            self._store.save(records)
            result.persisted = True
        except StateStoreError as e:
            log.error("Failed to persist state: %s", e)
            result.error = result.error or str(e)

        if result.uploaded or result.failed:
            log.info(
                "Cycle done: %d uploaded, %d failed",
                len(result.uploaded),
                len(result.failed),
            )
        self._set_state(WorkerState.IDLE)
        return result

    def _upload_pending(
        self,
        records: dict[str, FileSyncRecord],
        pending: list[tuple[PendingUpload, ScannedFile]],
        result: CycleResult,
        log: logging.LoggerAdapter,  # type: ignore[type-arg]
    ) -> None:
        """Upload queued files in order, rolling back each failure."""
        for item, scanned in pending:
            if self._stop_event.is_set():
                log.info("Stop requested, deferring %s", item.name)
                self._detector.restore(records, item)
                result.deferred.append(item.name)
                continue

            log.info("Uploading %s", scanned.path)
            try:
                outcome = self._orchestrator.upload(scanned.path, log=log)
                success = outcome.success
            except Exception:
                log.exception("Unexpected error uploading %s", item.name)
                success = False

            if success:
                result.uploaded.append(item.name)
            else:
                self._detector.rollback(records, item)
                result.failed.append(item.name)

    def _rollback_unfinished(
        self,
        records: dict[str, FileSyncRecord],
        pending: list[tuple[PendingUpload, ScannedFile]],
        result: CycleResult,
    ) -> None:
        """Roll back queued files that neither succeeded nor failed yet."""
        settled = set(result.uploaded) | set(result.failed) | set(result.deferred)
        for item, _ in pending:
            if item.name not in settled:
                self._detector.rollback(records, item)
                result.failed.append(item.name)

"""Watch folder client.

Architecture:
    WatchFolderWorker -> SyncStateStore (load)
                      -> scan_directory + StabilityDetector (classify)
                      -> UploadOrchestrator (GatewayClient + ChunkedTransferClient)
                      -> SyncStateStore (save)
"""

from watchfolder.client.api import GatewayClient, GatewayError, ResourceStatus, Session, Upload
from watchfolder.client.detector import PendingUpload, StabilityDetector
from watchfolder.client.scanner import (
    FileAccessError,
    ScannedFile,
    is_file_accessible,
    probe_file,
    scan_directory,
)
from watchfolder.client.state import (
    IN_FLIGHT,
    NEVER,
    FileSyncRecord,
    StateCorruptionError,
    StateStoreError,
    SyncStateStore,
)
from watchfolder.client.transfer import (
    ChunkedTransferClient,
    FinalizeError,
    PartAck,
    PartUploadError,
    TransferError,
    TransferHandle,
)
from watchfolder.client.uploader import UploadOrchestrator, UploadOutcome, UploadStage
from watchfolder.client.worker import CycleResult, WatchFolderWorker

__all__ = [
    # Gateway
    "GatewayClient",
    "GatewayError",
    "ResourceStatus",
    "Session",
    "Upload",
    # Transfer
    "ChunkedTransferClient",
    "FinalizeError",
    "PartAck",
    "PartUploadError",
    "TransferError",
    "TransferHandle",
    # State
    "IN_FLIGHT",
    "NEVER",
    "FileSyncRecord",
    "StateCorruptionError",
    "StateStoreError",
    "SyncStateStore",
    # Detection
    "FileAccessError",
    "PendingUpload",
    "ScannedFile",
    "StabilityDetector",
    "is_file_accessible",
    "probe_file",
    "scan_directory",
    # Upload and loop
    "CycleResult",
    "UploadOrchestrator",
    "UploadOutcome",
    "UploadStage",
    "WatchFolderWorker",
]

"""Core module - Configuration, part planning, and shared types."""

from watchfolder.core.chunking import Part, iter_parts, plan_parts, read_part
from watchfolder.core.config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PART_SIZE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SETTLE_SECONDS,
    ConfigurationError,
    ServerConfig,
    TransferConfig,
    WatchConfig,
    normalize_extensions,
)
from watchfolder.core.types import FileStatus, WorkerState

__all__ = [
    # Chunking
    "Part",
    "iter_parts",
    "plan_parts",
    "read_part",
    # Config
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_PART_SIZE",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_SETTLE_SECONDS",
    "ConfigurationError",
    "ServerConfig",
    "TransferConfig",
    "WatchConfig",
    "normalize_extensions",
    # Types
    "FileStatus",
    "WorkerState",
]

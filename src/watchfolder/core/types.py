"""Shared types for watchfolder.

This module defines the enums used by the detector, the worker loop
and the CLI.
"""

from __future__ import annotations

from enum import Enum


class FileStatus(str, Enum):
    """Classification of a watched file for one poll cycle."""

    TRACKING = "tracking"  # Write time recently moved, settle countdown running
    STABLE = "stable"  # Settled, eligible for upload this cycle
    IN_SYNC = "in_sync"  # This exact version was already uploaded
    EXHAUSTED = "exhausted"  # Retry budget spent until the file changes


class WorkerState(str, Enum):
    """State of the poll loop.

    One pass walks IDLE -> SCANNING -> UPLOADING -> PERSISTING -> SLEEPING
    and back to IDLE. STOPPED is reachable from any state.
    """

    IDLE = "idle"
    SCANNING = "scanning"
    UPLOADING = "uploading"
    PERSISTING = "persisting"
    SLEEPING = "sleeping"
    STOPPED = "stopped"

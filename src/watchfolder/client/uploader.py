"""Upload pipeline for one finished file.

Steps, in order:
    1. Create a session in the target folder
    2. Create an upload bound to the session (yields the upload target)
    3. Open a multipart transfer and send fixed-size parts, numbered from 1
    4. Finalize the transfer with the ordered part acknowledgments
    5. Mark the upload as ready for server-side processing

A failure in steps 1-2 is a SETUP failure, opening the transfer is a
TRANSFER failure, and steps 4-5 are FINALIZE failures. A failed part is
logged and the remaining parts are still sent; the missing ack is then
rejected at finalize. With abort_on_part_failure the transfer is aborted
at the first failed part instead.

The orchestrator never retries. Retrying is driven by the stability
detector's attempt count on later cycles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from watchfolder.client.api import GatewayError, Upload
from watchfolder.client.transfer import (
    PartAck,
    PartUploadError,
    TransferHandle,
)
from watchfolder.core.chunking import plan_parts, read_part

if TYPE_CHECKING:
    from watchfolder.client.transfer import ChunkedTransferClient

logger = logging.getLogger(__name__)


class UploadStage(str, Enum):
    """Pipeline stage an upload reached or failed in."""

    SETUP = "setup"
    TRANSFER = "transfer"
    FINALIZE = "finalize"
    DONE = "done"


@dataclass
class UploadOutcome:
    """Result of uploading one file.

    Attributes:
        name: File name.
        success: Whether the file was committed and handed off for processing.
        stage: DONE on success, else the stage that failed.
        error: Failure description.
        parts_total: Number of planned parts.
        parts_acknowledged: Number of parts the store acknowledged.
    """

    name: str
    success: bool
    stage: UploadStage
    error: str | None = None
    parts_total: int = 0
    parts_acknowledged: int = 0

    @property
    def partial(self) -> bool:
        """Whether some but not all parts were acknowledged."""
        return 0 < self.parts_acknowledged < self.parts_total


class Gateway(Protocol):
    """The gateway calls the orchestrator needs."""

    def create_session(self, folder_id: str, name: str) -> str: ...

    def create_upload(self, session_id: str, name: str) -> Upload: ...

    def mark_upload_processing(self, upload: Upload) -> bool: ...


class UploadOrchestrator:
    """Runs the five-step upload pipeline for one file at a time."""

    def __init__(
        self,
        gateway: Gateway,
        transfers: ChunkedTransferClient,
        folder_id: str,
        part_size: int,
        abort_on_part_failure: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            gateway: Client for session/upload resources.
            transfers: Client for the multipart transfer.
            folder_id: Target folder for new sessions.
            part_size: Multipart part size in bytes.
            abort_on_part_failure: Abort the file at its first failed part.
        """
        self._gateway = gateway
        self._transfers = transfers
        self._folder_id = folder_id
        self._part_size = part_size
        self._abort_on_part_failure = abort_on_part_failure

    def upload(
        self,
        path: Path,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> UploadOutcome:
        """Upload one file.

        Args:
            path: File to upload; its name is used as the display name.
            log: Logger to report through (carries the cycle id).

        Returns:
            Outcome of the pipeline. Never raises for gateway, transfer or
            file errors.
        """
        log = log or logger
        name = path.name

        # Steps 1-2: setup
        try:
            session_id = self._gateway.create_session(self._folder_id, name)
            upload = self._gateway.create_upload(session_id, name)
        except GatewayError as e:
            log.warning("Setup failed for %s: %s", name, e)
            return UploadOutcome(
                name=name, success=False, stage=UploadStage.SETUP, error=str(e)
            )

        # Step 3: chunked transfer
        try:
            parts = plan_parts(path.stat().st_size, self._part_size)
            handle = self._transfers.open_transfer(upload.target, name)
            handle.parts_expected = len(parts)
        except (GatewayError, OSError) as e:
            log.warning("Upload failed for %s: %s", name, e)
            return UploadOutcome(
                name=name, success=False, stage=UploadStage.TRANSFER, error=str(e)
            )

        acks = []
        try:
            for part in parts:
                try:
                    data = read_part(path, part)
                    acks.append(self._transfers.upload_part(handle, part.number, data))
                    log.debug(
                        "Part %d/%d uploaded for %s (%d of %d bytes)",
                        part.number,
                        len(parts),
                        name,
                        part.end,
                        parts[-1].end,
                    )
                except (PartUploadError, OSError) as e:
                    log.warning(
                        "Part %d/%d failed for %s: %s", part.number, len(parts), name, e
                    )
                    if self._abort_on_part_failure:
                        self._transfers.abort_transfer(handle)
                        return UploadOutcome(
                            name=name,
                            success=False,
                            stage=UploadStage.TRANSFER,
                            error=str(e),
                            parts_total=len(parts),
                            parts_acknowledged=len(acks),
                        )
        except BaseException:
            # Never leave a multipart upload open behind an unexpected error
            self._transfers.abort_transfer(handle)
            raise

        # Steps 4-5: finalize
        outcome = self._finalize(handle, upload, acks, name, len(parts), log)
        if outcome.success:
            log.info("Uploaded %s (%d parts)", name, len(parts))
        return outcome

    def _finalize(
        self,
        handle: TransferHandle,
        upload: Upload,
        acks: list[PartAck],
        name: str,
        parts_total: int,
        log: logging.Logger | logging.LoggerAdapter,
    ) -> UploadOutcome:
        """Commit the transfer and hand the upload off for processing."""
        try:
            self._transfers.finalize_transfer(handle, acks)
        except GatewayError as e:
            log.warning("Finalize failed for %s: %s", name, e)
            self._transfers.abort_transfer(handle)
            return UploadOutcome(
                name=name,
                success=False,
                stage=UploadStage.FINALIZE,
                error=str(e),
                parts_total=parts_total,
                parts_acknowledged=len(acks),
            )

        try:
            self._gateway.mark_upload_processing(upload)
        except GatewayError as e:
            log.warning("Finalize failed for %s: %s", name, e)
            return UploadOutcome(
                name=name,
                success=False,
                stage=UploadStage.FINALIZE,
                error=str(e),
                parts_total=parts_total,
                parts_acknowledged=len(acks),
            )

        return UploadOutcome(
            name=name,
            success=True,
            stage=UploadStage.DONE,
            parts_total=parts_total,
            parts_acknowledged=len(acks),
        )

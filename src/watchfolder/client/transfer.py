"""Chunked (multipart) content transfer to the gateway's object store.

This module provides:
- parse_upload_target: Split an upload target URL into endpoint, bucket and key prefix
- ChunkedTransferClient: S3-compatible multipart upload via boto3
- TransferHandle, PartAck: Values passed between the transfer steps
- PartUploadError, FinalizeError: Transfer failures

An upload target looks like:

    https://media.example.com/svc/Upload/<key prefix>

The S3 endpoint is everything before "/<bucket>/" and the object key is
"<key prefix>/<file name>".
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from watchfolder.client.api import GatewayError
from watchfolder.core.config import TransferConfig

logger = logging.getLogger(__name__)

# Factory building an S3 client for an endpoint URL
ClientFactory = Callable[[str], Any]


class TransferError(GatewayError):
    """Base exception for chunked transfer errors."""


class PartUploadError(TransferError):
    """A single part failed to upload."""

    def __init__(self, part_number: int, message: str) -> None:
        super().__init__(f"Part {part_number} failed: {message}")
        self.part_number = part_number


class FinalizeError(TransferError):
    """The transfer could not be committed."""


@dataclass(frozen=True)
class UploadTarget:
    """Parsed upload target descriptor."""

    endpoint_url: str
    bucket: str
    key_prefix: str

    def key_for(self, file_name: str) -> str:
        """Object key for a file uploaded to this target."""
        if not self.key_prefix:
            return file_name
        return f"{self.key_prefix}/{file_name}"


@dataclass
class PartAck:
    """Acknowledgment of one uploaded part."""

    number: int
    etag: str


@dataclass
class TransferHandle:
    """An open multipart transfer.

    Attributes:
        target: Where the object is being written.
        key: Object key.
        upload_id: Multipart upload ID from the store.
        parts_sent: Part numbers attempted so far, in order.
        parts_expected: Number of parts the file was planned into, if known.
    """

    target: UploadTarget
    key: str
    upload_id: str
    parts_sent: list[int] = field(default_factory=list)
    parts_expected: int = 0


def parse_upload_target(target: str, bucket: str) -> UploadTarget:
    """Split an upload target URL.

    Args:
        target: Descriptor returned by the gateway.
        bucket: Bucket name embedded in the target path.

    Returns:
        Parsed target.

    Raises:
        TransferError: If the target is not a URL containing "/<bucket>/".
    """
    parts = urlsplit(target)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise TransferError(f"Upload target is not an http(s) URL: {target}")

    marker = f"/{bucket}/"
    path = parts.path
    index = path.find(marker)
    if index < 0:
        if path.rstrip("/").endswith(f"/{bucket}"):
            index = len(path.rstrip("/")) - len(bucket) - 1
            key_prefix = ""
        else:
            raise TransferError(f"Upload target has no '{marker}' segment: {target}")
    else:
        key_prefix = path[index + len(marker):].strip("/")

    endpoint_url = f"{parts.scheme}://{parts.netloc}{path[:index + 1]}"
    return UploadTarget(endpoint_url=endpoint_url, bucket=bucket, key_prefix=key_prefix)


def validate_acks(
    acks: list[PartAck],
    parts_sent: list[int],
    parts_expected: int = 0,
) -> None:
    """Check that acks cover every part exactly once, in order.

    The part count is the largest of the planned count, the attempted
    count and the highest acknowledged number.

    Raises:
        FinalizeError: If the ack list is empty, incomplete, duplicated,
            or out of order.
    """
    if not acks:
        raise FinalizeError("No parts were acknowledged")

    numbers = [ack.number for ack in acks]
    if len(set(numbers)) != len(numbers):
        raise FinalizeError(f"Duplicate part acknowledgments: {numbers}")
    if numbers != sorted(numbers):
        raise FinalizeError(f"Part acknowledgments out of order: {numbers}")

    total = max(parts_expected, len(parts_sent), numbers[-1])
    expected = list(range(1, total + 1))
    if numbers != expected:
        missing = sorted(set(expected) - set(numbers))
        raise FinalizeError(
            f"Incomplete part acknowledgments: missing {missing} "
            f"of {len(expected)} parts"
        )


class ChunkedTransferClient:
    """Multipart uploads against the S3-compatible store behind a target."""

    def __init__(
        self,
        config: TransferConfig,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize the transfer client.

        Args:
            config: Bucket name and credentials.
            client_factory: Optional factory building the S3 client for an
                endpoint URL (for testing).
        """
        self._config = config
        self._client_factory = client_factory or self._create_s3_client
        self._clients: dict[str, Any] = {}

    def _create_s3_client(self, endpoint_url: str) -> Any:
        """Create a boto3 S3 client for an endpoint."""
        import boto3
        from botocore.config import Config

        client_config = Config(
            signature_version=self._config.signature_version,
            s3={"addressing_style": "path"},
        )
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=self._config.access_key,
            aws_secret_access_key=self._config.secret_key,
            region_name=self._config.region,
            verify=self._config.verify_ssl,
            config=client_config,
        )

    def _client(self, target: UploadTarget) -> Any:
        client = self._clients.get(target.endpoint_url)
        if client is None:
            client = self._client_factory(target.endpoint_url)
            self._clients[target.endpoint_url] = client
        return client

    def open_transfer(self, target: str, file_name: str) -> TransferHandle:
        """Start a multipart upload for a file.

        Args:
            target: Upload target descriptor from the gateway.
            file_name: Name of the file being uploaded.

        Returns:
            Handle for the following part uploads.

        Raises:
            TransferError: If the target is invalid or the store refuses.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        parsed = parse_upload_target(target, self._config.bucket)
        key = parsed.key_for(file_name)
        try:
            response = self._client(parsed).create_multipart_upload(
                Bucket=parsed.bucket, Key=key
            )
        except (BotoCoreError, ClientError) as e:
            raise TransferError(f"Cannot open transfer for {key}: {e}") from e

        logger.debug("Opened transfer %s for %s", response["UploadId"], key)
        return TransferHandle(target=parsed, key=key, upload_id=response["UploadId"])

    def upload_part(self, handle: TransferHandle, number: int, data: bytes) -> PartAck:
        """Upload one part.

        Args:
            handle: Open transfer.
            number: Sequence number, starting at 1.
            data: Part bytes.

        Returns:
            Acknowledgment to pass to finalize_transfer.

        Raises:
            PartUploadError: If the store rejects the part.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        handle.parts_sent.append(number)
        try:
            response = self._client(handle.target).upload_part(
                Bucket=handle.target.bucket,
                Key=handle.key,
                UploadId=handle.upload_id,
                PartNumber=number,
                Body=data,
            )
        except (BotoCoreError, ClientError) as e:
            raise PartUploadError(number, str(e)) from e

        return PartAck(number=number, etag=response["ETag"])

    def finalize_transfer(self, handle: TransferHandle, acks: list[PartAck]) -> bool:
        """Commit the uploaded parts as one object.

        The ack list is checked against the attempted parts before the
        store is contacted; the store would otherwise accept a gap.

        Returns:
            True when the object was committed.

        Raises:
            FinalizeError: If acks are missing, duplicated, out of order,
                or the store rejects the commit.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        validate_acks(acks, handle.parts_sent, handle.parts_expected)
        try:
            self._client(handle.target).complete_multipart_upload(
                Bucket=handle.target.bucket,
                Key=handle.key,
                UploadId=handle.upload_id,
                MultipartUpload={
                    "Parts": [
                        {"PartNumber": ack.number, "ETag": ack.etag} for ack in acks
                    ]
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise FinalizeError(f"Cannot commit {handle.key}: {e}") from e

        logger.debug("Committed %s with %d parts", handle.key, len(acks))
        return True

    def abort_transfer(self, handle: TransferHandle) -> None:
        """Abort a transfer. Best effort: failures are logged, not raised."""
        try:
            self._client(handle.target).abort_multipart_upload(
                Bucket=handle.target.bucket,
                Key=handle.key,
                UploadId=handle.upload_id,
            )
            logger.debug("Aborted transfer %s for %s", handle.upload_id, handle.key)
        except Exception as e:
            logger.warning("Failed to abort transfer for %s: %s", handle.key, e)

"""Pytest fixtures for integration tests.

This module wires a real worker, store, detector, gateway client and
transfer client together. The gateway REST API is served by pytest-httpx
and the object store by moto.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from watchfolder.client.api import GatewayClient
from watchfolder.client.detector import StabilityDetector
from watchfolder.client.state import SyncStateStore
from watchfolder.client.transfer import ChunkedTransferClient
from watchfolder.client.uploader import UploadOrchestrator
from watchfolder.client.worker import WatchFolderWorker
from watchfolder.core.config import ServerConfig, TransferConfig, WatchConfig

GATEWAY_URL = "http://gateway.test/api"
BUCKET = "upload"
MTIME = 1_700_000_000


@dataclass
class WatchTestSetup:
    """Container for a fully wired worker."""

    folder: Path
    config: WatchConfig
    store: SyncStateStore
    worker: WatchFolderWorker
    gateway: GatewayClient
    s3: Any

    def create_file(self, name: str, content: bytes, mtime: int = MTIME) -> Path:
        """Create a file in the watched folder with a fixed mtime."""
        path = self.folder / name
        path.write_bytes(content)
        os.utime(path, (mtime, mtime))
        return path

    def read_object(self, key: str) -> bytes:
        """Read an object committed to the store."""
        return self.s3.get_object(Bucket=BUCKET, Key=key)["Body"].read()


@pytest.fixture
def s3_client() -> Generator[Any, None, None]:
    """Create a moto-backed S3 client with the upload bucket."""
    pytest.importorskip("moto")
    import boto3
    from moto import mock_aws

    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


def build_setup(tmp_path: Path, s3_client: Any, **overrides: Any) -> WatchTestSetup:
    """Wire a worker against the mocked gateway and store."""
    folder = tmp_path / "incoming"
    folder.mkdir(exist_ok=True)
    values: dict[str, Any] = {
        "watch_folder": folder,
        "state_file": tmp_path / "state.txt",
        "folder_id": "folder-1",
        "server": ServerConfig(server_url=GATEWAY_URL, token="secret"),
        "transfer": TransferConfig(bucket=BUCKET),
        "extensions": frozenset({".mp4"}),
        "poll_interval": 60,
        "settle_seconds": 0,
        "max_attempts": 2,
    }
    values.update(overrides)
    config = WatchConfig(**values).validate()

    gateway = GatewayClient(config.server)
    orchestrator = UploadOrchestrator(
        gateway=gateway,
        transfers=ChunkedTransferClient(
            config.transfer, client_factory=lambda endpoint_url: s3_client
        ),
        folder_id=config.folder_id,
        part_size=config.part_size,
        abort_on_part_failure=config.abort_on_part_failure,
    )
    store = SyncStateStore(config.state_file)
    worker = WatchFolderWorker(
        config=config,
        store=store,
        detector=StabilityDetector(
            settle_seconds=config.settle_seconds,
            poll_interval=config.poll_interval,
            max_attempts=config.max_attempts,
        ),
        orchestrator=orchestrator,
    )
    return WatchTestSetup(
        folder=folder,
        config=config,
        store=store,
        worker=worker,
        gateway=gateway,
        s3=s3_client,
    )


@pytest.fixture
def setup(tmp_path: Path, s3_client: Any) -> Generator[WatchTestSetup, None, None]:
    """Create a fully wired worker with a zero settle threshold."""
    result = build_setup(tmp_path, s3_client)
    yield result
    result.gateway.close()

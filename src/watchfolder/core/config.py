"""Configuration classes for watchfolder.

This module defines:
- ServerConfig: connection settings for the ingestion gateway
- TransferConfig: settings for the multipart transfer store
- WatchConfig: everything the worker loop consumes
- ConfigurationError: raised at startup for invalid settings
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_POLL_INTERVAL = 60  # seconds
DEFAULT_SETTLE_SECONDS = 120
DEFAULT_PART_SIZE = 1024 * 1024  # 1 MB
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_UPLOAD_BUCKET = "Upload"
# Placeholder signing credentials for stores that authorize by upload target
DEFAULT_ACCESS_KEY = "watchfolder"
DEFAULT_SECRET_KEY = "watchfolder"


class ConfigurationError(ValueError):
    """Invalid configuration. Fatal at startup."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = problems
        super().__init__("; ".join(problems))


@dataclass
class ServerConfig:
    """Configuration for connecting to the ingestion gateway.

    Attributes:
        server_url: Base URL of the gateway REST API
            (e.g., "https://media.example.com/PublicAPI/REST").
        token: Bearer token sent with every request.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (False for self-signed).
    """

    server_url: str
    token: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")


@dataclass
class TransferConfig:
    """Configuration for the S3-compatible multipart transfer endpoint.

    The endpoint itself is derived from each upload target; only the
    bucket name and credentials are configured. Gateways that scope
    access through the upload target ignore the credentials, but the
    requests must still be signed, so placeholders are used by default.

    Attributes:
        bucket: Bucket segment embedded in upload target URLs.
        access_key: Access key used to sign requests.
        secret_key: Secret key used to sign requests.
        region: Region used for signing.
        signature_version: botocore signature version, None for the
            default (SigV4). Use "s3" for stores that only accept
            version 2 signatures.
        verify_ssl: Whether to verify SSL certificates.
    """

    bucket: str = DEFAULT_UPLOAD_BUCKET
    access_key: str = DEFAULT_ACCESS_KEY
    secret_key: str = DEFAULT_SECRET_KEY
    region: str = "us-east-1"
    signature_version: str | None = None
    verify_ssl: bool = True


def normalize_extensions(value: str | list[str] | tuple[str, ...]) -> frozenset[str]:
    """Normalize an extension allow-list.

    Accepts a list or a ";"-separated string. Entries are lowercased and
    prefixed with a dot; blanks are dropped.

    Raises:
        ConfigurationError: If an entry is not a string.
    """
    if isinstance(value, str):
        value = value.split(";")
    result = set()
    for ext in value:
        if not isinstance(ext, str):
            raise ConfigurationError(f"extensions entries must be strings (got {ext!r})")
        ext = ext.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        result.add(ext)
    return frozenset(result)


@dataclass
class WatchConfig:
    """Settings consumed by the watch folder worker.

    Attributes:
        watch_folder: Directory to poll.
        state_file: Path of the persisted sync state.
        folder_id: Target folder on the gateway for new sessions.
        server: Gateway connection settings.
        transfer: Multipart transfer settings.
        poll_interval: Seconds between cycles (> 0).
        settle_seconds: Seconds a write time must stay unchanged (>= 0).
        part_size: Multipart part size in bytes (> 0).
        max_attempts: Failed uploads allowed per file version (>= 1).
        extensions: Allow-listed file extensions (non-empty).
        abort_on_part_failure: Abort a file's transfer on its first failed part.
        prune_missing: Drop records of files no longer in the folder.
        verbose: Log at DEBUG level.
        log_file: Optional log file in addition to stdout.
    """

    watch_folder: Path
    state_file: Path
    folder_id: str
    server: ServerConfig
    transfer: TransferConfig = field(default_factory=TransferConfig)
    poll_interval: int = DEFAULT_POLL_INTERVAL
    settle_seconds: int = DEFAULT_SETTLE_SECONDS
    part_size: int = DEFAULT_PART_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    extensions: frozenset[str] = field(default_factory=frozenset)
    abort_on_part_failure: bool = False
    prune_missing: bool = False
    verbose: bool = False
    log_file: Path | None = None

    def validate(self) -> WatchConfig:
        """Check every constraint and report all violations at once.

        Returns:
            self, for chaining.

        Raises:
            ConfigurationError: If any setting is invalid.
        """
        problems = []
        if self.poll_interval <= 0:
            problems.append(f"poll_interval must be > 0 (got {self.poll_interval})")
        if self.settle_seconds < 0:
            problems.append(f"settle_seconds must be >= 0 (got {self.settle_seconds})")
        if self.part_size <= 0:
            problems.append(f"part_size must be > 0 (got {self.part_size})")
        if self.max_attempts < 1:
            problems.append(f"max_attempts must be >= 1 (got {self.max_attempts})")
        if not self.extensions:
            problems.append("extensions must not be empty")
        if not str(self.watch_folder).strip():
            problems.append("watch_folder is required")
        if not str(self.state_file).strip():
            problems.append("state_file is required")
        if not self.folder_id:
            problems.append("folder_id is required")
        if not self.server.server_url:
            problems.append("server.server_url is required")
        if not self.transfer.bucket:
            problems.append("transfer.bucket must not be empty")
        if problems:
            raise ConfigurationError(problems)
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WatchConfig:
        """Create and validate a config from a parsed JSON document.

        Raises:
            ConfigurationError: If keys are missing or values are invalid.
        """
        missing = [
            key
            for key in ("watch_folder", "state_file", "folder_id", "server")
            if key not in data
        ]
        if missing:
            raise ConfigurationError([f"missing required setting '{k}'" for k in missing])

        server_data = data["server"]
        if not isinstance(server_data, dict) or "server_url" not in server_data:
            raise ConfigurationError("server.server_url is required")

        try:
            server = ServerConfig(
                server_url=str(server_data["server_url"]),
                token=str(server_data.get("token") or ""),
                timeout=float(server_data.get("timeout", 30.0)),
                verify_ssl=bool(server_data.get("verify_ssl", True)),
            )
            transfer_data = data.get("transfer") or {}
            transfer = TransferConfig(
                bucket=str(transfer_data.get("bucket", DEFAULT_UPLOAD_BUCKET)),
                access_key=str(transfer_data.get("access_key") or DEFAULT_ACCESS_KEY),
                secret_key=str(transfer_data.get("secret_key") or DEFAULT_SECRET_KEY),
                region=str(transfer_data.get("region", "us-east-1")),
                signature_version=transfer_data.get("signature_version"),
                verify_ssl=bool(transfer_data.get("verify_ssl", server.verify_ssl)),
            )
            log_file = data.get("log_file")
            config = cls(
                watch_folder=Path(data["watch_folder"]).expanduser(),
                state_file=Path(data["state_file"]).expanduser(),
                folder_id=str(data["folder_id"]),
                server=server,
                transfer=transfer,
                poll_interval=int(data.get("poll_interval", DEFAULT_POLL_INTERVAL)),
                settle_seconds=int(data.get("settle_seconds", DEFAULT_SETTLE_SECONDS)),
                part_size=int(data.get("part_size", DEFAULT_PART_SIZE)),
                max_attempts=int(data.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
                extensions=normalize_extensions(data.get("extensions", [])),
                abort_on_part_failure=bool(data.get("abort_on_part_failure", False)),
                prune_missing=bool(data.get("prune_missing", False)),
                verbose=bool(data.get("verbose", False)),
                log_file=Path(log_file).expanduser() if log_file else None,
            )
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid setting: {e}") from e

        return config.validate()

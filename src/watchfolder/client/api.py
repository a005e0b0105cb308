"""HTTP client for the ingestion gateway REST API.

This module provides:
- GatewayClient: HTTP client for session and upload resources
- Session, Upload: Resource dataclasses sharing a ResourceStatus
- GatewayError: Raised for any non-success response
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from watchfolder.core.config import ServerConfig

logger = logging.getLogger(__name__)

# Upload state understood by the gateway as "content committed, start processing"
UPLOAD_STATE_PROCESSING = 1


class GatewayError(Exception):
    """Base exception for ingestion gateway errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ResourceStatus:
    """Fields every gateway resource carries.

    Attributes:
        id: Resource identifier.
        message_id: Supplementary status code set by the gateway.
        message: Supplementary status text set by the gateway.
    """

    id: str
    message_id: int = 0
    message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceStatus:
        """Create from API response dictionary."""
        return cls(
            id=str(data["ID"]),
            message_id=int(data.get("MessageID") or 0),
            message=data.get("Message"),
        )


@dataclass
class Session:
    """Session resource: the container a file is uploaded into."""

    status: ResourceStatus
    name: str
    parent_folder_id: str

    @property
    def id(self) -> str:
        return self.status.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Create from API response dictionary."""
        return cls(
            status=ResourceStatus.from_dict(data),
            name=data.get("Name") or "",
            parent_folder_id=str(data.get("ParentFolderID") or ""),
        )


@dataclass
class Upload:
    """Upload resource bound to a session.

    Attributes:
        status: Common resource fields.
        session_id: Owning session.
        target: Opaque upload target descriptor for the chunked transfer.
        state: Upload state last reported by the gateway.
    """

    status: ResourceStatus
    session_id: str
    target: str
    state: int = 0

    @property
    def id(self) -> str:
        return self.status.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Upload:
        """Create from API response dictionary."""
        target = data.get("UploadTarget")
        if not target:
            raise GatewayError("Upload response has no UploadTarget")
        return cls(
            status=ResourceStatus.from_dict(data),
            session_id=str(data.get("SessionID") or ""),
            target=str(target),
            state=int(data.get("State") or 0),
        )


class GatewayClient:
    """HTTP client for the ingestion gateway."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the gateway client.

        Args:
            config: Server connection settings.
            transport: Optional custom transport (for testing).
        """
        self._config = config
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> GatewayClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(
        self,
        method: str,
        url: str,
        expected_status: int,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the parsed JSON body.

        Raises:
            GatewayError: On transport errors, unexpected status codes,
                or unparsable bodies.
        """
        try:
            response = self._client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise GatewayError(f"{method} {url} failed: {e}") from e

        if response.status_code != expected_status:
            detail = response.text[:200] if response.content else ""
            raise GatewayError(
                f"{method} {url} returned {response.status_code}, "
                f"expected {expected_status}: {detail}",
                response.status_code,
            )

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(
                f"{method} {url} returned an unparsable body", response.status_code
            ) from e
        if not isinstance(body, dict):
            raise GatewayError(
                f"{method} {url} returned an unexpected body", response.status_code
            )
        return body

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the gateway answers at all.

        Returns:
            True if the base URL responds without a server error.
        """
        try:
            response = self._client.get("")
            return response.status_code < 500
        except httpx.HTTPError:
            return False

    # === Session and upload resources ===

    def create_session(self, folder_id: str, name: str) -> str:
        """Create a session in the target folder.

        Args:
            folder_id: Destination folder on the gateway.
            name: Session display name (the file name).

        Returns:
            The new session ID.

        Raises:
            GatewayError: If the session cannot be created.
        """
        body = self._request(
            "POST",
            "/session",
            201,
            json={"Name": name, "ParentFolderID": folder_id},
        )
        try:
            session = Session.from_dict(body)
        except KeyError as e:
            raise GatewayError(f"Session response missing field {e}") from e
        logger.debug("Created session %s for %s", session.id, name)
        return session.id

    def create_upload(self, session_id: str, name: str) -> Upload:
        """Create an upload resource bound to a session.

        Args:
            session_id: Session to bind to.
            name: File name, sent as the requested upload target.

        Returns:
            The upload resource, whose target scopes the chunked transfer.

        Raises:
            GatewayError: If the upload cannot be created.
        """
        body = self._request(
            "POST",
            "/upload",
            201,
            json={"SessionID": session_id, "UploadTarget": name},
        )
        try:
            upload = Upload.from_dict(body)
        except KeyError as e:
            raise GatewayError(f"Upload response missing field {e}") from e
        logger.debug("Created upload %s -> %s", upload.id, upload.target)
        return upload

    def mark_upload_processing(self, upload: Upload) -> bool:
        """Tell the gateway the content is committed and ready to process.

        Args:
            upload: Upload resource returned by create_upload.

        Returns:
            True once the gateway accepted the state change.

        Raises:
            GatewayError: If the gateway rejects the update.
        """
        self._request(
            "PUT",
            f"/upload/{upload.id}",
            200,
            json={
                "ID": upload.id,
                "SessionID": upload.session_id,
                "UploadTarget": upload.target,
                "State": UPLOAD_STATE_PROCESSING,
            },
        )
        upload.state = UPLOAD_STATE_PROCESSING
        return True

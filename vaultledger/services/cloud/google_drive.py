"""
Google Drive Cloud Transport

Stores the snapshot as a single JSON file in the user's Drive:

- find:     GET  files?q=name='<file>' and trashed=false
- update:   PATCH upload/files/<id>?uploadType=media
- create:   POST upload/files?uploadType=multipart (metadata + content)
- download: GET  files/<id>?alt=media

Requests go through google-auth's AuthorizedSession with the user's OAuth
access token. Network-level failures (connection errors, timeouts) are
retried with exponential backoff; HTTP error responses are not.

The HTTP calls are blocking, so each public method runs them in a worker
thread.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional

import requests
import structlog
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vaultledger.config import GoogleDriveSettings, get_settings
from vaultledger.services.cloud.interface import CloudTransportInterface, TransportError


logger = structlog.get_logger(__name__)

_BOUNDARY = "vault_ledger_boundary"

_network_retry = retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleDriveTransport(CloudTransportInterface):
    """Drive v3 implementation of the cloud transport."""

    def __init__(self, settings: Optional[GoogleDriveSettings] = None):
        self._settings = settings or get_settings().google_drive

    def _session(self, access_token: str) -> AuthorizedSession:
        if not access_token:
            raise TransportError("No access token; sign in to enable cloud sync")
        return AuthorizedSession(Credentials(token=access_token))

    def _check(self, response: requests.Response, action: str) -> requests.Response:
        if not response.ok:
            raise TransportError(
                f"Drive {action} failed: HTTP {response.status_code} {response.text[:200]}"
            )
        return response

    @_network_retry
    def _find_file_id(self, session: AuthorizedSession) -> Optional[str]:
        query = f"name = '{self._settings.vault_file_name}' and trashed = false"
        response = session.get(
            f"{self._settings.api_base_url}/files",
            params={"q": query, "fields": "files(id)"},
            timeout=self._settings.request_timeout_seconds,
        )
        files = self._check(response, "lookup").json().get("files") or []
        return files[0]["id"] if files else None

    @_network_retry
    def _update(self, session: AuthorizedSession, file_id: str, content: str) -> None:
        response = session.patch(
            f"{self._settings.upload_base_url}/files/{file_id}",
            params={"uploadType": "media"},
            data=content.encode("utf-8"),
            headers={"Content-Type": "application/json"},
            timeout=self._settings.request_timeout_seconds,
        )
        self._check(response, "update")

    @_network_retry
    def _create(self, session: AuthorizedSession, content: str) -> None:
        metadata = {"name": self._settings.vault_file_name, "mimeType": "application/json"}
        body = (
            f"--{_BOUNDARY}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{_BOUNDARY}\r\nContent-Type: application/json\r\n\r\n{content}\r\n"
            f"--{_BOUNDARY}--"
        )
        response = session.post(
            f"{self._settings.upload_base_url}/files",
            params={"uploadType": "multipart"},
            data=body.encode("utf-8"),
            headers={"Content-Type": f"multipart/related; boundary={_BOUNDARY}"},
            timeout=self._settings.request_timeout_seconds,
        )
        self._check(response, "create")

    @_network_retry
    def _fetch(self, session: AuthorizedSession, file_id: str) -> dict[str, Any]:
        response = session.get(
            f"{self._settings.api_base_url}/files/{file_id}",
            params={"alt": "media"},
            timeout=self._settings.request_timeout_seconds,
        )
        try:
            return self._check(response, "download").json()
        except ValueError as e:
            raise TransportError(f"Cloud snapshot is not valid JSON: {e}") from e

    # -------------------------------------------------------------------------
    # Blocking implementations
    # -------------------------------------------------------------------------

    def _upload_blocking(self, access_token: str, document: dict[str, Any]) -> datetime:
        synced_at = datetime.now(timezone.utc)
        content = json.dumps({**document, "timestamp": synced_at.isoformat()})
        session = self._session(access_token)
        try:
            file_id = self._find_file_id(session)
            if file_id:
                self._update(session, file_id, content)
            else:
                self._create(session, content)
        except requests.RequestException as e:
            raise TransportError(f"Drive upload failed: {e}") from e

        logger.info("cloud_upload_complete", file=self._settings.vault_file_name, created=not file_id)
        return synced_at

    def _download_blocking(self, access_token: str) -> Optional[dict[str, Any]]:
        session = self._session(access_token)
        try:
            file_id = self._find_file_id(session)
            if not file_id:
                logger.info("cloud_snapshot_missing", file=self._settings.vault_file_name)
                return None
            return self._fetch(session, file_id)
        except requests.RequestException as e:
            raise TransportError(f"Drive download failed: {e}") from e

    # -------------------------------------------------------------------------
    # CloudTransportInterface
    # -------------------------------------------------------------------------

    async def upload(self, access_token: str, document: dict[str, Any]) -> datetime:
        return await asyncio.to_thread(self._upload_blocking, access_token, document)

    async def download(self, access_token: str) -> Optional[dict[str, Any]]:
        return await asyncio.to_thread(self._download_blocking, access_token)

"""
Cloud Transport Interface

The ledger treats cloud backup as an opaque upload/download of ONE
snapshot document under a fixed, well-known name. What the transport does
with it (Drive, S3, a test double) is its own business.

Implementations are async; the sync flow bounds every call with a timeout.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional


class CloudTransportInterface(ABC):
    """Abstract interface for snapshot upload/download."""

    @abstractmethod
    async def upload(self, access_token: str, document: dict[str, Any]) -> datetime:
        """
        Store the snapshot, replacing any previous one.

        Args:
            access_token: OAuth access token for the user's account
            document: Snapshot document (camelCase keys)

        Returns:
            When the upload completed (UTC); this becomes lastSynced

        Raises:
            TransportError: if the upload failed
        """
        pass

    @abstractmethod
    async def download(self, access_token: str) -> Optional[dict[str, Any]]:
        """
        Fetch the stored snapshot.

        Returns:
            The raw document, or None if nothing has been uploaded yet

        Raises:
            TransportError: if the download failed
        """
        pass


class TransportError(Exception):
    """Cloud transport failure (network, auth, bad response)."""
    pass

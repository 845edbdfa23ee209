"""
Abstract Storage Interfaces

Local durable storage holds exactly one thing: the snapshot document
(the same shape the cloud backup and file export use). The audit trail
is a separate, append-only sink.

Implementations must be swappable; the ledger only ever sees these
interfaces. The in-memory implementations used by tests live in
tests/conftest.py.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from vaultledger.models.audit import AuditEvent


class SnapshotStorageInterface(ABC):
    """
    Abstract interface for durable snapshot storage.

    Any storage implementation (local file, browser storage, database)
    must implement these methods.
    """

    @abstractmethod
    def load(self) -> Optional[dict[str, Any]]:
        """
        Load the stored snapshot document.

        Returns:
            The raw document, or None if nothing has been saved yet

        Raises:
            StorageError: If the stored data can't be read
        """
        pass

    @abstractmethod
    def save(self, document: dict[str, Any]) -> None:
        """
        Persist a snapshot document, replacing the previous one.

        Raises:
            StorageError: If the write fails. The previous snapshot must
                still be readable afterwards.
        """
        pass

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable location, used in logs."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class CorruptDataError(StorageError):
    """Stored data exists but isn't valid JSON of the expected shape."""
    pass

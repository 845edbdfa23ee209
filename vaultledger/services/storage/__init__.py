"""
Storage Services Package

Provides abstract interfaces and concrete implementations for local
persistence. Currently implements JSON files as the backend, but designed
to be swappable.
"""

from vaultledger.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    SnapshotStorageInterface,
    StorageError,
)
from vaultledger.services.storage.local_file import (
    JSONFileSnapshotStorage,
    JSONLinesAuditStorage,
    export_snapshot,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "SnapshotStorageInterface",
    # Exceptions
    "CorruptDataError",
    "StorageError",
    # Local file implementation
    "JSONFileSnapshotStorage",
    "JSONLinesAuditStorage",
    "export_snapshot",
]

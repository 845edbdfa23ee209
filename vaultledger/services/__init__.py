"""Services package."""

from vaultledger.services.cloud import (
    CloudTransportInterface,
    GoogleDriveTransport,
    TransportError,
)
from vaultledger.services.storage import (
    AuditStorageInterface,
    CorruptDataError,
    JSONFileSnapshotStorage,
    JSONLinesAuditStorage,
    SnapshotStorageInterface,
    StorageError,
    export_snapshot,
)

__all__ = [
    # Cloud transports
    "CloudTransportInterface",
    "GoogleDriveTransport",
    "TransportError",
    # Storage services
    "AuditStorageInterface",
    "CorruptDataError",
    "JSONFileSnapshotStorage",
    "JSONLinesAuditStorage",
    "SnapshotStorageInterface",
    "StorageError",
    "export_snapshot",
]

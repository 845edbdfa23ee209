"""Cloud backup transports."""

from vaultledger.services.cloud.interface import CloudTransportInterface, TransportError
from vaultledger.services.cloud.google_drive import GoogleDriveTransport

__all__ = [
    "CloudTransportInterface",
    "GoogleDriveTransport",
    "TransportError",
]

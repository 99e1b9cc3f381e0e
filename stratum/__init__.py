from stratum.client import SyncClient
from stratum.config import ClientOptions
from stratum.errors import ConflictError, SyncError, TransportError

__all__ = ["ClientOptions", "ConflictError", "SyncClient", "SyncError", "TransportError"]

"""Storage error types.

Every failure talking to the object store surfaces as a StorageError
subclass so callers can tell "confirmed absent" (StorageNotFoundError)
apart from "could not determine" (everything else).
"""

from ..errors import AssetGateError


class StorageError(AssetGateError):
    """Base exception for storage operations."""


class StorageAuthError(StorageError):
    """Storage backend rejected our credentials or session token."""


class StorageUnavailableError(StorageError):
    """Storage backend could not be used even after re-authentication."""


class StorageNotFoundError(StorageError):
    """Object not found in storage."""

    def __init__(self, storage_id: str, message: str | None = None):
        super().__init__(message or f"Object not found: {storage_id}")
        self.storage_id = storage_id


class StorageTransientError(StorageError):
    """Timeout, transport failure or 5xx from the storage backend."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UploadFailedError(StorageError):
    """Object upload failed."""

    def __init__(self, message: str):
        super().__init__(f"Upload failed: {message}")

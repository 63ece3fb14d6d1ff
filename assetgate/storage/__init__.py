"""Object store access.

The client talks to Backblaze B2 directly; everything above it only deals
in storage ids, storage paths and the errors defined here.
"""

from .client import B2StorageClient, ProgressCallback, UploadSource
from .errors import (
    StorageAuthError,
    StorageError,
    StorageNotFoundError,
    StorageTransientError,
    StorageUnavailableError,
    UploadFailedError,
)
from .models import AuthSession, ObjectInfo, StoredObject

__all__ = [
    "AuthSession",
    "B2StorageClient",
    "ObjectInfo",
    "ProgressCallback",
    "StorageAuthError",
    "StorageError",
    "StorageNotFoundError",
    "StorageTransientError",
    "StorageUnavailableError",
    "StoredObject",
    "UploadFailedError",
    "UploadSource",
]

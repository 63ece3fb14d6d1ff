"""assetgate error types."""


class AssetGateError(Exception):
    """Base class for assetgate errors."""


class ConfigError(AssetGateError):
    """Configuration error."""


class MalformedReferenceError(AssetGateError):
    """Stored reference string is not a valid private reference."""

    def __init__(self, reference: str, reason: str = "invalid format"):
        super().__init__(f"Malformed reference ({reason}): {reference!r}")
        self.reference = reference
        self.reason = reason


class InvalidIdentifierError(AssetGateError):
    """Storage identifier cannot be encoded into a reference."""

    def __init__(self, storage_id: str):
        super().__init__(f"Invalid storage identifier: {storage_id!r}")
        self.storage_id = storage_id


class UploadStateError(AssetGateError):
    """Upload operation was driven out of order."""

"""Private reference codec.

A private reference is the only storage identity calling code persists:

    private:<storage_id>:<storage_path>
    private:4za92:courses/c1/chapters/ch1/abc_video.mp4

The format is provider independent and must stay stable across storage
migrations.
"""

from pydantic import BaseModel, ConfigDict

from .errors import InvalidIdentifierError, MalformedReferenceError
from .types import REFERENCE_DELIMITER, StorageId, StoragePath

PRIVATE_SCHEME = "private"
PRIVATE_PREFIX = f"{PRIVATE_SCHEME}{REFERENCE_DELIMITER}"


class Reference(BaseModel):
    """Identity of a stored object."""

    model_config = ConfigDict(frozen=True)

    storage_id: StorageId
    storage_path: StoragePath

    def to_string(self) -> str:
        """Convert to the canonical private reference string."""
        return f"{PRIVATE_PREFIX}{self.storage_id}{REFERENCE_DELIMITER}{self.storage_path}"

    @classmethod
    def from_string(cls, reference: str) -> "Reference":
        """Parse a private reference string.

        Args:
            reference: Reference string like "private:4za92:path/to/file.mp4"

        Returns:
            Reference instance

        Raises:
            MalformedReferenceError: If reference format is invalid
        """
        return decode(reference)

    def __str__(self) -> str:
        return self.to_string()


def is_private_reference(value: str | None) -> bool:
    """Check whether a stored value uses the private reference scheme."""
    return isinstance(value, str) and value.startswith(PRIVATE_PREFIX)


def encode(storage_id: str, storage_path: str) -> str:
    """Encode a storage identity into a private reference string.

    Raises:
        InvalidIdentifierError: If storage_id is empty or contains the delimiter
    """
    if not storage_id or REFERENCE_DELIMITER in storage_id:
        raise InvalidIdentifierError(storage_id)
    return Reference(storage_id=storage_id, storage_path=storage_path).to_string()


def decode(reference: str) -> Reference:
    """Decode a private reference string.

    Only the first delimiter after the prefix separates the storage id
    from the path, so paths containing colons survive intact.

    Raises:
        MalformedReferenceError: If the prefix is missing or there are
            fewer than two segments
    """
    if not is_private_reference(reference):
        raise MalformedReferenceError(str(reference), "missing private: prefix")

    tail = reference[len(PRIVATE_PREFIX) :]
    storage_id, sep, storage_path = tail.partition(REFERENCE_DELIMITER)
    if not sep:
        raise MalformedReferenceError(reference, "expected <storage_id>:<storage_path>")
    if not storage_id:
        raise MalformedReferenceError(reference, "empty storage id")

    return Reference(storage_id=storage_id, storage_path=storage_path)

"""Storage data models."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from ..reference import Reference
from ..types import StorageId


class AuthSession(BaseModel):
    """Cached result of b2_authorize_account."""

    account_id: str
    authorization_token: str
    api_url: str
    download_url: str
    recommended_part_size: int | None = None
    absolute_minimum_part_size: int | None = None
    allowed_bucket_id: str | None = None

    # Monotonic deadline after which the session is refreshed
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class StoredObject(BaseModel):
    """Result of storing an object."""

    storage_id: StorageId
    storage_path: str
    size: int
    content_sha1: str | None = None
    content_type: str | None = None
    uploaded_at: datetime

    @property
    def reference(self) -> Reference:
        return Reference(storage_id=self.storage_id, storage_path=self.storage_path)


class ObjectInfo(BaseModel):
    """Storage object metadata."""

    storage_id: StorageId
    storage_path: str
    size: int | None = None
    content_type: str | None = None
    content_sha1: str | None = None
    uploaded_at: datetime | None = None
    file_info: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_b2(cls, data: dict[str, Any]) -> "ObjectInfo":
        """Build from a B2 file JSON object."""
        timestamp = data.get("uploadTimestamp")
        return cls(
            storage_id=data["fileId"],
            storage_path=data["fileName"],
            size=data.get("contentLength"),
            content_type=data.get("contentType"),
            content_sha1=_clean_sha1(data.get("contentSha1")),
            uploaded_at=(
                datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
                if timestamp
                else None
            ),
            file_info=data.get("fileInfo") or {},
        )


def _clean_sha1(value: str | None) -> str | None:
    # Large files report "none"; streamed uploads prefix "unverified:"
    if not value or value == "none":
        return None
    return value.removeprefix("unverified:")

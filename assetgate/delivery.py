"""Signed delivery URLs.

Turns a private reference into a short-lived URL on the delivery host:

    https://<host>/<storage_path>?token=<hex>&expires=<epoch seconds>

The ``token`` and ``expires`` parameter names are read by the edge verifier
and must not change without a migration there.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Union
from urllib.parse import quote, urlencode

from pydantic import BaseModel

from . import signing
from .errors import AssetGateError, ConfigError
from .reference import Reference, decode

if TYPE_CHECKING:
    from .config import AssetGateConfig

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 6 * 3600


class AssetClass(str, Enum):
    """Kinds of assets with their own URL lifetimes."""

    VIDEO = "video"
    IMAGE = "image"
    DOCUMENT = "document"


class SignedUrl(BaseModel):
    """Time-limited delivery URL. Never persisted."""

    host: str
    path: str
    token: str
    expires_at: int

    @property
    def url(self) -> str:
        query = urlencode({"token": self.token, "expires": self.expires_at})
        return f"https://{self.host}{quote(self.path, safe='/')}?{query}"

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    def __str__(self) -> str:
        return self.url


class ConfigurationGap(BaseModel):
    """No signing secret is configured, so no signed URL can be issued.

    ``fallback_url`` is only set when unsigned fallback was explicitly
    enabled; callers decide whether to use it.
    """

    reason: str
    missing: str = "signing_secret"
    fallback_url: str | None = None


IssueResult = Union[SignedUrl, ConfigurationGap]


class BatchItemResult(BaseModel):
    """Outcome of one item in a batch issuance."""

    reference: str
    signed_url: SignedUrl | None = None
    gap: ConfigurationGap | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.signed_url is not None


class SignedUrlService:
    """Issues signed delivery URLs for private references."""

    def __init__(
        self,
        delivery_host: str,
        signing_secret: str | None,
        *,
        default_window: int = DEFAULT_WINDOW_SECONDS,
        windows: dict[AssetClass, int] | None = None,
        allow_unsigned_fallback: bool = False,
        origin_base_url: str | None = None,
        item_timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        if not delivery_host:
            raise ConfigError("delivery_host is required")
        if allow_unsigned_fallback and not origin_base_url:
            raise ConfigError("allow_unsigned_fallback requires origin_base_url")

        self._host = delivery_host
        self._secret = signing_secret or None
        self._default_window = default_window
        self._windows = dict(windows or {})
        self._allow_unsigned_fallback = allow_unsigned_fallback
        self._origin_base_url = (origin_base_url or "").rstrip("/")
        self._item_timeout = item_timeout
        self._clock = clock

    @classmethod
    def from_config(cls, config: AssetGateConfig) -> SignedUrlService:
        origin = None
        if config.origin_download_url:
            origin = f"{str(config.origin_download_url).rstrip('/')}/file/{config.bucket_name}"
        return cls(
            delivery_host=config.delivery_host,
            signing_secret=config.signing_secret,
            default_window=config.video_url_ttl,
            windows={
                AssetClass.VIDEO: config.video_url_ttl,
                AssetClass.IMAGE: config.image_url_ttl,
                AssetClass.DOCUMENT: config.document_url_ttl,
            },
            allow_unsigned_fallback=config.allow_unsigned_fallback,
            origin_base_url=origin,
            item_timeout=config.batch_item_timeout,
        )

    @property
    def has_secret(self) -> bool:
        return self._secret is not None

    def window_for(self, asset_class: AssetClass | None) -> int:
        if asset_class is None:
            return self._default_window
        return self._windows.get(asset_class, self._default_window)

    def issue(
        self,
        reference: str | Reference,
        window_seconds: int | None = None,
        *,
        asset_class: AssetClass | None = None,
    ) -> IssueResult:
        """
        Issue a signed URL for a private reference.

        Args:
            reference: Private reference string or decoded Reference
            window_seconds: Lifetime of the URL; defaults per asset class
            asset_class: Selects the default window

        Returns:
            SignedUrl, or ConfigurationGap when no signing secret is set

        Raises:
            MalformedReferenceError: If the reference cannot be decoded
        """
        ref = reference if isinstance(reference, Reference) else decode(reference)
        path = signing.canonical_path(ref.storage_path)

        if self._secret is None:
            return self._gap(ref, path)

        window = window_seconds if window_seconds is not None else self.window_for(asset_class)
        if window <= 0:
            raise ValueError(f"window_seconds must be positive, got {window}")

        expires_at = int(self._clock()) + int(window)
        token = signing.sign(path, expires_at, self._secret)
        return SignedUrl(host=self._host, path=path, token=token, expires_at=expires_at)

    def _gap(self, ref: Reference, path: str) -> ConfigurationGap:
        if not self._allow_unsigned_fallback:
            return ConfigurationGap(reason="signing secret is not configured")

        fallback_url = f"{self._origin_base_url}{quote(path, safe='/')}"
        logger.warning(
            "Issuing unsigned fallback URL for private asset",
            extra={"storage_id": ref.storage_id, "storage_path": ref.storage_path},
        )
        return ConfigurationGap(
            reason="signing secret is not configured; unsigned fallback enabled",
            fallback_url=fallback_url,
        )

    async def _issue_item(
        self, reference: str | Reference, window_seconds: int | None, asset_class: AssetClass | None
    ) -> BatchItemResult:
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.issue, reference, window_seconds, asset_class=asset_class),
                timeout=self._item_timeout,
            )
        except asyncio.TimeoutError:
            return BatchItemResult(
                reference=str(reference),
                error=f"timed out after {self._item_timeout}s",
            )
        except (AssetGateError, ValueError) as e:
            return BatchItemResult(reference=str(reference), error=str(e))

        if isinstance(result, ConfigurationGap):
            return BatchItemResult(reference=str(reference), gap=result)
        return BatchItemResult(reference=str(reference), signed_url=result)

    async def issue_batch(
        self,
        references: Sequence[str | Reference],
        window_seconds: int | None = None,
        *,
        asset_class: AssetClass | None = None,
    ) -> list[BatchItemResult]:
        """
        Issue signed URLs for many references at once.

        Items are processed concurrently and independently; results come
        back in input order, one per reference.
        """
        return list(
            await asyncio.gather(
                *(
                    self._issue_item(reference, window_seconds, asset_class)
                    for reference in references
                )
            )
        )


class SignedUrlCache:
    """Reuses issued URLs until they get close to expiry."""

    def __init__(
        self,
        service: SignedUrlService,
        *,
        refresh_margin: int = 30 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self._service = service
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._entries: dict[tuple[str, int | None, AssetClass | None], SignedUrl] = {}

    def get(
        self,
        reference: str,
        window_seconds: int | None = None,
        *,
        asset_class: AssetClass | None = None,
    ) -> IssueResult:
        """Return a cached URL, issuing a new one when missing or near expiry."""
        key = (reference, window_seconds, asset_class)
        cached = self._entries.get(key)
        if cached and cached.expires_at > self._clock() + self._refresh_margin:
            return cached

        result = self._service.issue(reference, window_seconds, asset_class=asset_class)
        if isinstance(result, SignedUrl):
            self._entries[key] = result
        else:
            self._entries.pop(key, None)
        return result

    def invalidate(self, reference: str) -> None:
        for key in [k for k in self._entries if k[0] == reference]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

"""assetgate configuration."""

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Backblaze part size limits (bytes)
MIN_PART_SIZE = 5 * 1024 * 1024
DEFAULT_PART_SIZE = 100 * 1024 * 1024


class AssetGateConfig(BaseSettings):
    """
    assetgate configuration.

    Uses Pydantic BaseSettings for automatic environment variable loading.
    Environment variables are prefixed with ASSETGATE_.

    Required environment variables:
        ASSETGATE_DELIVERY_HOST: CDN host serving signed URLs (e.g. "cdn.example.com")
        ASSETGATE_B2_KEY_ID: Backblaze application key id
        ASSETGATE_B2_APPLICATION_KEY: Backblaze application key
        ASSETGATE_BUCKET_NAME: Bucket holding private assets

    Optional environment variables:
        ASSETGATE_SIGNING_SECRET: HMAC secret shared with the edge verifier
            (falls back to CDN_AUTH_SECRET)
        ASSETGATE_BUCKET_ID: Bucket id (skips bucket lookup)
        ASSETGATE_STRICT_SIGNING: Refuse to start without a signing secret (default: true)
        ASSETGATE_ALLOW_UNSIGNED_FALLBACK: Expose direct origin URLs when unsigned
            (default: false, every use is logged)
        ASSETGATE_RETRY_ATTEMPTS: Attempts for transient storage errors (default: 3)
        ASSETGATE_RECONCILE_CONCURRENCY: Parallel existence checks (default: 8)
    """

    model_config = SettingsConfigDict(
        env_prefix="ASSETGATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Delivery (CDN) host, without scheme
    delivery_host: str = Field(min_length=1)

    # HMAC signing secret - optional here, enforced by strict_signing
    signing_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "signing_secret",
            "ASSETGATE_SIGNING_SECRET",
            "CDN_AUTH_SECRET",
        ),
    )

    # Missing signing secret is a startup fault when enabled
    strict_signing: bool = True

    # Direct origin URLs for unsigned delivery - off unless explicitly enabled
    allow_unsigned_fallback: bool = False

    # Backblaze credentials - required, non-empty
    b2_key_id: str = Field(min_length=1)
    b2_application_key: str = Field(min_length=1)

    bucket_name: str = Field(min_length=1)
    bucket_id: str | None = None

    b2_auth_url: HttpUrl = HttpUrl("https://api.backblazeb2.com")

    # Base of direct origin URLs, used only by the unsigned fallback
    origin_download_url: HttpUrl | None = None

    # Auth session lifetime (seconds); B2 tokens are valid for 24h
    auth_ttl: float = Field(default=23 * 3600.0, gt=0)

    # Upload part size (bytes)
    part_size: int = Field(default=DEFAULT_PART_SIZE, ge=MIN_PART_SIZE)

    # HTTP request timeout (seconds)
    request_timeout: float = Field(default=60.0, gt=0)

    # Bounded retry for transient storage errors
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_backoff: float = Field(default=0.5, ge=0)
    retry_max_backoff: float = Field(default=8.0, ge=0)

    # Per-item timeout for batch issuance and reconciliation (seconds)
    batch_item_timeout: float = Field(default=10.0, gt=0)

    # Parallel existence checks during reconciliation
    reconcile_concurrency: int = Field(default=8, ge=1)

    # Progress channel capacity per subscriber
    progress_queue_size: int = Field(default=64, ge=1)

    # Signed URL windows per asset class (seconds)
    video_url_ttl: int = Field(default=6 * 3600, gt=0)
    image_url_ttl: int = Field(default=24 * 3600, gt=0)
    document_url_ttl: int = Field(default=3600, gt=0)

    @field_validator("delivery_host")
    @classmethod
    def _strip_scheme(cls, value: str) -> str:
        for prefix in ("https://", "http://"):
            if value.startswith(prefix):
                value = value[len(prefix) :]
        return value.rstrip("/")

    @field_validator("signing_secret")
    @classmethod
    def _blank_secret_is_missing(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

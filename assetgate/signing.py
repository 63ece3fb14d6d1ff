"""HMAC token signing for delivery URLs.

The token covers the canonical message ``path + "\\n" + expires_at`` where
``path`` is the URL pathname the edge sees (leading slash, percent-decoded)
and ``expires_at`` is the expiry in epoch seconds. The signer itself is
window-agnostic; callers choose the expiry.

The edge verifier that sits in front of the bucket is not part of this
package, but it is bound by the same contract. ``verify_signed_url``
implements that contract so both sides can be tested against each other.
"""

import hashlib
import hmac
import time
from urllib.parse import parse_qs, unquote, urlsplit

from pydantic import BaseModel

from .errors import ConfigError

# Extensions the edge is willing to serve
ALLOWED_EXTENSIONS = frozenset(
    {
        "mp4", "webm", "ogg", "mov", "avi", "mkv", "m3u8", "ts",
        "jpg", "jpeg", "png", "gif", "webp",
        "pdf",
    }
)


class VerificationResult(BaseModel):
    """Outcome of verifying a delivery request."""

    valid: bool
    error: str | None = None


def canonical_path(storage_path: str) -> str:
    """Path as signed: the storage path with exactly one leading slash."""
    return "/" + storage_path.lstrip("/")


def _require_secret(secret: str | None) -> bytes:
    if not secret:
        raise ConfigError("Signing secret is not configured")
    return secret.encode("utf-8")


def _message(path: str, expires_at: int) -> bytes:
    return f"{path}\n{int(expires_at)}".encode("utf-8")


def sign(path: str, expires_at: int, secret: str) -> str:
    """Sign a (path, expiry) pair.

    Args:
        path: URL path being granted
        expires_at: Expiry as epoch seconds
        secret: Shared HMAC secret

    Returns:
        Lowercase hex HMAC-SHA256 token

    Raises:
        ConfigError: If secret is empty
    """
    key = _require_secret(secret)
    return hmac.new(key, _message(path, expires_at), hashlib.sha256).hexdigest()


def verify(path: str, expires_at: int, token: str, secret: str) -> bool:
    """Check a token against a (path, expiry) pair. Expiry is not checked."""
    expected = sign(path, expires_at, secret)
    return hmac.compare_digest(expected, str(token).lower())


def verify_at(
    path: str, expires_at: int, token: str, secret: str, now: float
) -> bool:
    """Check a token and reject it once ``now`` is past the expiry."""
    if now > expires_at:
        return False
    return verify(path, expires_at, token, secret)


def verify_signed_url(
    url: str, secret: str, now: float | None = None
) -> VerificationResult:
    """Verify a delivery URL the way the edge does.

    Rejects directory requests, path traversal, disallowed file types,
    missing or malformed parameters, expired URLs and bad signatures.
    """
    parts = urlsplit(url)
    raw_path = parts.path

    if not raw_path or raw_path == "/" or raw_path.endswith("/"):
        return VerificationResult(valid=False, error="Directory listing not allowed")

    if "%2e%2e" in raw_path.lower():
        return VerificationResult(valid=False, error="Path traversal detected")
    path = unquote(raw_path)
    if "../" in path or "..\\" in path:
        return VerificationResult(valid=False, error="Path traversal detected")

    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    if extension not in ALLOWED_EXTENSIONS:
        return VerificationResult(valid=False, error="File type not allowed")

    query = parse_qs(parts.query)
    token = (query.get("token") or [None])[0]
    expires = (query.get("expires") or [None])[0]
    if not token or not expires:
        return VerificationResult(valid=False, error="Missing token")
    try:
        expires_at = int(expires)
    except ValueError:
        return VerificationResult(valid=False, error="Invalid expiry")

    if now is None:
        now = time.time()
    if now > expires_at:
        return VerificationResult(valid=False, error="Token expired")

    if not verify(path, expires_at, token, secret):
        return VerificationResult(valid=False, error="Invalid signature")

    return VerificationResult(valid=True)

"""Tests for HMAC token signing and the edge verification contract."""

import hashlib
import hmac

import pytest

from assetgate import ConfigError, SignedUrlService, encode
from assetgate.signing import (
    canonical_path,
    sign,
    verify,
    verify_at,
    verify_signed_url,
)

SECRET = "test-secret"
NOW = 1_700_000_000
SIX_HOURS = 6 * 3600


class TestSign:
    """Test sign()."""

    def test_token_is_hmac_sha256_of_path_and_expiry(self):
        expected = hmac.new(
            SECRET.encode(), b"/courses/a.mp4\n1700000000", hashlib.sha256
        ).hexdigest()
        assert sign("/courses/a.mp4", NOW, SECRET) == expected

    def test_deterministic(self):
        assert sign("/a.mp4", NOW, SECRET) == sign("/a.mp4", NOW, SECRET)

    def test_lowercase_hex(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert len(token) == 64
        assert token == token.lower()
        int(token, 16)

    def test_empty_secret_is_config_error(self):
        with pytest.raises(ConfigError):
            sign("/a.mp4", NOW, "")

    def test_canonical_path(self):
        assert canonical_path("courses/a.mp4") == "/courses/a.mp4"
        assert canonical_path("/courses/a.mp4") == "/courses/a.mp4"


class TestVerify:
    """Test verify() and verify_at()."""

    def test_valid(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert verify("/a.mp4", NOW, token, SECRET)

    def test_uppercase_token_accepted(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert verify("/a.mp4", NOW, token.upper(), SECRET)

    def test_tampered_path(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert not verify("/b.mp4", NOW, token, SECRET)

    def test_tampered_expiry(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert not verify("/a.mp4", NOW + 1, token, SECRET)

    def test_wrong_secret(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert not verify("/a.mp4", NOW, token, "other-secret")

    def test_verify_at_before_and_at_expiry(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert verify_at("/a.mp4", NOW, token, SECRET, now=NOW - 10)
        assert verify_at("/a.mp4", NOW, token, SECRET, now=NOW)

    def test_verify_at_after_expiry(self):
        token = sign("/a.mp4", NOW, SECRET)
        assert not verify_at("/a.mp4", NOW, token, SECRET, now=NOW + 1)


class TestVerifySignedUrl:
    """Test verify_signed_url() against the edge contract."""

    def _url(self, path: str, expires: int = NOW + 60) -> str:
        token = sign(path, expires, SECRET)
        return f"https://cdn.example.com{path}?token={token}&expires={expires}"

    def test_valid(self):
        result = verify_signed_url(self._url("/v/a.mp4"), SECRET, now=NOW)
        assert result.valid
        assert result.error is None

    def test_percent_encoded_path(self):
        token = sign("/v/my video.mp4", NOW + 60, SECRET)
        url = f"https://cdn.example.com/v/my%20video.mp4?token={token}&expires={NOW + 60}"
        assert verify_signed_url(url, SECRET, now=NOW).valid

    @pytest.mark.parametrize(
        "url,error",
        [
            ("https://cdn.example.com/", "Directory listing not allowed"),
            ("https://cdn.example.com/courses/", "Directory listing not allowed"),
            ("https://cdn.example.com/a/../b.mp4", "Path traversal detected"),
            ("https://cdn.example.com/a/%2E%2E/b.mp4", "Path traversal detected"),
            ("https://cdn.example.com/a/script.sh", "File type not allowed"),
            ("https://cdn.example.com/a/noext", "File type not allowed"),
            ("https://cdn.example.com/a/b.mp4", "Missing token"),
            ("https://cdn.example.com/a/b.mp4?token=abc", "Missing token"),
            ("https://cdn.example.com/a/b.mp4?token=abc&expires=soon", "Invalid expiry"),
        ],
    )
    def test_rejected(self, url, error):
        result = verify_signed_url(url, SECRET, now=NOW)
        assert not result.valid
        assert result.error == error

    def test_expired(self):
        url = self._url("/v/a.mp4", expires=NOW - 1)
        result = verify_signed_url(url, SECRET, now=NOW)
        assert result.error == "Token expired"

    def test_bad_signature(self):
        url = self._url("/v/a.mp4").replace("token=", "token=0")
        result = verify_signed_url(url, SECRET, now=NOW)
        assert result.error == "Invalid signature"

    def test_url_for_other_path_rejected(self):
        token = sign("/v/a.mp4", NOW + 60, SECRET)
        url = f"https://cdn.example.com/v/b.mp4?token={token}&expires={NOW + 60}"
        assert verify_signed_url(url, SECRET, now=NOW).error == "Invalid signature"


class TestSignedUrlScenario:
    """A six-hour URL for an uploaded video, checked before and after expiry."""

    def test_six_hour_window(self):
        reference = encode("4za92", "courses/c1/chapters/ch1/abc_video.mp4")
        service = SignedUrlService("cdn.example.com", SECRET, clock=lambda: NOW)

        signed = service.issue(reference, SIX_HOURS)

        assert signed.url.startswith(
            "https://cdn.example.com/courses/c1/chapters/ch1/abc_video.mp4?token="
        )
        assert signed.expires_at == NOW + SIX_HOURS
        assert f"expires={NOW + SIX_HOURS}" in signed.url

        assert verify_signed_url(signed.url, SECRET, now=NOW).valid
        assert verify_signed_url(signed.url, SECRET, now=NOW + SIX_HOURS).valid

        result = verify_signed_url(signed.url, SECRET, now=NOW + SIX_HOURS + 1)
        assert not result.valid
        assert result.error == "Token expired"

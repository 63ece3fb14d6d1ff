"""Tests for the AssetGate service facade."""

import json

import pytest
from pytest_httpx import HTTPXMock

from assetgate import (
    AssetGate,
    AssetGateConfig,
    B2StorageClient,
    ConfigError,
    ConfigurationGap,
    MalformedReferenceError,
    MetadataRecord,
    SignedUrl,
    SignedUrlService,
    UploadDestination,
    UploadFile,
    UploadPhase,
)
from assetgate.signing import verify_signed_url

AUTH_URL = "https://api.backblazeb2.com/b2api/v2/b2_authorize_account"
API = "https://api001.backblazeb2.com/b2api/v2"
UPLOAD_URL = "https://pod-000-1000-00.backblaze.com/b2api/v2/b2_upload_file/bkt1/c001"
SECRET = "service-secret"
NOW = 1_700_000_000


def add_auth(httpx_mock: HTTPXMock):
    httpx_mock.add_response(
        method="GET",
        url=AUTH_URL,
        json={
            "accountId": "acc1",
            "authorizationToken": "tok",
            "apiUrl": "https://api001.backblazeb2.com",
            "downloadUrl": "https://f001.backblazeb2.com",
            "allowed": {"bucketId": "bkt1"},
        },
    )


def make_gate(signing_secret: str | None = SECRET) -> AssetGate:
    client = B2StorageClient("key-id", "app-key", "media", retry_backoff=0.0)
    signer = SignedUrlService("cdn.example.com", signing_secret, clock=lambda: NOW)
    return AssetGate(client, signer)


def make_config(**kwargs) -> AssetGateConfig:
    defaults = {
        "delivery_host": "cdn.example.com",
        "b2_key_id": "key-id",
        "b2_application_key": "app-key",
        "bucket_name": "media",
        "signing_secret": SECRET,
    }
    defaults.update(kwargs)
    return AssetGateConfig(**defaults)


class TestAssetGateFromConfig:
    """Test AssetGate.from_config()."""

    @pytest.mark.asyncio
    async def test_from_config(self):
        async with AssetGate.from_config(make_config()) as gate:
            assert gate.signer.has_secret
            assert gate.client.bucket_name == "media"

    def test_strict_signing_requires_secret(self, monkeypatch):
        monkeypatch.delenv("ASSETGATE_SIGNING_SECRET", raising=False)
        monkeypatch.delenv("CDN_AUTH_SECRET", raising=False)
        with pytest.raises(ConfigError, match="Signing secret is not configured"):
            AssetGate.from_config(make_config(signing_secret=None))

    @pytest.mark.asyncio
    async def test_non_strict_without_secret(self, monkeypatch):
        monkeypatch.delenv("ASSETGATE_SIGNING_SECRET", raising=False)
        monkeypatch.delenv("CDN_AUTH_SECRET", raising=False)
        config = make_config(signing_secret=None, strict_signing=False)

        async with AssetGate.from_config(config) as gate:
            result = gate.issue_signed_url("private:id1:a.mp4")

        assert isinstance(result, ConfigurationGap)

    @pytest.mark.asyncio
    async def test_fallback_uses_origin_download_url(self, monkeypatch):
        monkeypatch.delenv("ASSETGATE_SIGNING_SECRET", raising=False)
        monkeypatch.delenv("CDN_AUTH_SECRET", raising=False)
        config = make_config(
            signing_secret=None,
            strict_signing=False,
            allow_unsigned_fallback=True,
            origin_download_url="https://f002.backblazeb2.com",
        )

        async with AssetGate.from_config(config) as gate:
            result = gate.issue_signed_url("private:id1:courses/a.mp4")

        assert result.fallback_url == "https://f002.backblazeb2.com/file/media/courses/a.mp4"


class TestAssetGateSigning:
    """Test signed URL issuance through the facade."""

    @pytest.mark.asyncio
    async def test_issue_signed_url(self):
        async with make_gate() as gate:
            result = gate.issue_signed_url("private:4za92:courses/c1/a.mp4", 3600)

        assert isinstance(result, SignedUrl)
        assert verify_signed_url(result.url, SECRET, now=NOW).valid

    @pytest.mark.asyncio
    async def test_issue_signed_urls(self):
        async with make_gate() as gate:
            results = await gate.issue_signed_urls(["private:a:1.mp4", "bad", "private:b:2.png"])

        assert [r.ok for r in results] == [True, False, True]


class TestAssetGateStorage:
    """Test upload, delete and reconcile through the facade."""

    @pytest.mark.asyncio
    async def test_upload_then_sign(self, httpx_mock: HTTPXMock):
        add_auth(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/b2_get_upload_url",
            json={"uploadUrl": UPLOAD_URL, "authorizationToken": "up"},
        )
        httpx_mock.add_response(
            method="POST",
            url=UPLOAD_URL,
            json={
                "fileId": "4za92",
                "fileName": "courses/c1/chapters/ch1/abc_video.mp4",
                "contentLength": 5,
                "uploadTimestamp": 1_700_000_000_000,
            },
        )

        async with make_gate() as gate:
            channel = gate.subscribe_progress("op-1")
            ref = await gate.upload(
                UploadFile(name="video.mp4", data=b"hello", size=5),
                UploadDestination(
                    namespace="courses",
                    owner_id="c1",
                    scope=("chapters", "ch1"),
                    unique_prefix="abc",
                ),
                operation_id="op-1",
            )
            result = gate.issue_signed_url(ref, 3600)

        assert str(ref) == "private:4za92:courses/c1/chapters/ch1/abc_video.mp4"
        assert result.path == "/courses/c1/chapters/ch1/abc_video.mp4"
        assert channel.drain()[-1].phase is UploadPhase.COMPLETED

    @pytest.mark.asyncio
    async def test_delete(self, httpx_mock: HTTPXMock):
        add_auth(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/b2_delete_file_version",
            json={"fileId": "4za92", "fileName": "a/b:c.mp4"},
        )

        async with make_gate() as gate:
            await gate.delete("private:4za92:a/b:c.mp4")

        request = next(
            r for r in httpx_mock.get_requests() if "b2_delete_file_version" in str(r.url)
        )
        assert json.loads(request.content) == {"fileId": "4za92", "fileName": "a/b:c.mp4"}

    @pytest.mark.asyncio
    async def test_delete_malformed_reference(self):
        async with make_gate() as gate:
            with pytest.raises(MalformedReferenceError):
                await gate.delete("https://cdn.example.com/a.mp4")

    @pytest.mark.asyncio
    async def test_reconcile(self, httpx_mock: HTTPXMock):
        add_auth(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/b2_get_file_info",
            match_json={"fileId": "present"},
            json={"fileId": "present", "fileName": "a.mp4"},
        )
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/b2_get_file_info",
            match_json={"fileId": "gone"},
            status_code=404,
            json={"status": 404, "code": "not_found", "message": "File not present"},
        )

        records = [
            MetadataRecord(record_id=1, storage_reference="private:present:a.mp4"),
            MetadataRecord(record_id=2, storage_reference="private:gone:b.mp4"),
            MetadataRecord(record_id=3),
        ]

        async with make_gate() as gate:
            report = await gate.reconcile(records)

        assert [o.record_id for o in report.orphaned] == ["2"]
        assert report.ok_count == 1
        assert report.skipped_count == 1

    @pytest.mark.asyncio
    async def test_list_objects(self, httpx_mock: HTTPXMock):
        add_auth(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{API}/b2_list_file_names",
            json={"files": [{"fileId": "f1", "fileName": "courses/a.mp4"}], "nextFileName": None},
        )

        async with make_gate() as gate:
            objects = await gate.list_objects("courses/")

        assert [o.storage_path for o in objects] == ["courses/a.mp4"]

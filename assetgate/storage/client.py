"""Backblaze B2 object store client.

Talks to the B2 native API (v2) over httpx. Authentication follows the
same pattern as an OAuth bearer client: one cached session, refreshed under
a lock with double-checked reads, re-authorised once when a call comes
back 401.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import IO, TYPE_CHECKING, Any, TypeVar, Union
from urllib.parse import quote

import httpx

from .errors import (
    StorageAuthError,
    StorageError,
    StorageNotFoundError,
    StorageTransientError,
    StorageUnavailableError,
    UploadFailedError,
)
from .models import AuthSession, ObjectInfo, StoredObject
from .retry import retry_transient

if TYPE_CHECKING:
    from ..config import AssetGateConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Receives (bytes_sent, total_bytes); total is None while unknown
ProgressCallback = Callable[[int, Union[int, None]], None]

# Anything upload() can read bytes from
UploadSource = Union[bytes, bytearray, IO[bytes], AsyncIterable[bytes]]

DEFAULT_AUTH_URL = "https://api.backblazeb2.com"
API_PREFIX = "/b2api/v2"

# Body slice size; progress is reported once per slice
CHUNK_SIZE = 64 * 1024

# B2 error codes meaning "no such file"
NOT_FOUND_CODES = frozenset({"not_found", "file_not_present", "no_such_file"})


class _ProgressTracker:
    """Forwards byte counts to a callback, never letting them go backwards.

    A retried request re-sends bytes already reported; those reports are
    suppressed so observers only ever see non-decreasing values.
    """

    def __init__(self, callback: ProgressCallback | None, total: int | None):
        self._callback = callback
        self._total = total
        self._last: tuple[int, int | None] | None = None

    def report(self, sent: int) -> None:
        if self._last is not None and sent <= self._last[0]:
            return
        self._emit(sent)

    def finish(self, size: int) -> None:
        self._total = size
        if self._last != (size, size):
            self._emit(size)

    def _emit(self, sent: int) -> None:
        self._last = (sent, self._total)
        if self._callback is None:
            return
        try:
            self._callback(sent, self._total)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")


async def _iter_source(source: UploadSource) -> AsyncIterator[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        yield bytes(source)
        return
    if hasattr(source, "read"):
        while True:
            chunk = await asyncio.to_thread(source.read, CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
        return
    async for chunk in source:
        if chunk:
            yield bytes(chunk)


async def _iter_parts(source: UploadSource, part_size: int) -> AsyncIterator[bytes]:
    """Re-chunk a source into parts of exactly part_size (last may be short)."""
    buffer = bytearray()
    async for chunk in _iter_source(source):
        buffer.extend(chunk)
        while len(buffer) >= part_size:
            yield bytes(buffer[:part_size])
            del buffer[:part_size]
    if buffer:
        yield bytes(buffer)


async def _chain(head: list[bytes], rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    for part in head:
        yield part
    async for part in rest:
        yield part


async def _body(data: bytes, tracker: _ProgressTracker, offset: int) -> AsyncIterator[bytes]:
    """Request body that reports progress as httpx consumes it."""
    view = memoryview(data)
    for start in range(0, len(data), CHUNK_SIZE):
        chunk = bytes(view[start : start + CHUNK_SIZE])
        yield chunk
        tracker.report(offset + start + len(chunk))


def _timestamp(millis: int | None) -> datetime:
    if not millis:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


class B2StorageClient:
    """
    HTTP client for the Backblaze B2 native API.

    One instance is shared by every consumer in the process; it owns the
    httpx connection pool and the cached auth session.
    """

    def __init__(
        self,
        key_id: str,
        application_key: str,
        bucket_name: str,
        *,
        bucket_id: str | None = None,
        auth_url: str = DEFAULT_AUTH_URL,
        auth_ttl: float = 23 * 3600.0,
        part_size: int = 100 * 1024 * 1024,
        request_timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        retry_max_backoff: float = 8.0,
        clock: Callable[[], float] = time.monotonic,
        http: httpx.AsyncClient | None = None,
    ):
        self._key_id = key_id
        self._application_key = application_key
        self._bucket_name = bucket_name
        self._bucket_id = bucket_id
        self._auth_url = auth_url.rstrip("/")
        self._auth_ttl = auth_ttl
        self._part_size = part_size
        self._retry_attempts = retry_attempts
        self._retry_backoff = retry_backoff
        self._retry_max_backoff = retry_max_backoff
        self._clock = clock
        self._session: AuthSession | None = None
        self._lock = asyncio.Lock()
        self._http = http or httpx.AsyncClient(timeout=request_timeout)

    @classmethod
    def from_config(cls, config: AssetGateConfig) -> B2StorageClient:
        """Create a client from loaded configuration."""
        return cls(
            key_id=config.b2_key_id,
            application_key=config.b2_application_key,
            bucket_name=config.bucket_name,
            bucket_id=config.bucket_id,
            auth_url=str(config.b2_auth_url),
            auth_ttl=config.auth_ttl,
            part_size=config.part_size,
            request_timeout=config.request_timeout,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff,
            retry_max_backoff=config.retry_max_backoff,
        )

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    async def close(self) -> None:
        """Close HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> B2StorageClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # -- session -----------------------------------------------------------

    async def _authorize(self) -> AuthSession:
        """Obtain a session via b2_authorize_account."""
        response = await self._request(
            "GET",
            f"{self._auth_url}{API_PREFIX}/b2_authorize_account",
            auth=(self._key_id, self._application_key),
        )
        if response.status_code in (401, 403):
            raise StorageAuthError(
                f"Authorization failed: {response.status_code} - {response.text}"
            )
        if response.status_code == 404:
            # Wrong auth URL or an intermediary answering; never an object miss
            raise StorageAuthError(
                f"Authorization endpoint not found: {self._auth_url} - {response.text}"
            )
        self._raise_for_status(response, "Authorization")

        data = response.json()
        allowed = data.get("allowed") or {}
        return AuthSession(
            account_id=data["accountId"],
            authorization_token=data["authorizationToken"],
            api_url=data["apiUrl"].rstrip("/"),
            download_url=data.get("downloadUrl", "").rstrip("/"),
            recommended_part_size=data.get("recommendedPartSize"),
            absolute_minimum_part_size=data.get("absoluteMinimumPartSize"),
            allowed_bucket_id=allowed.get("bucketId"),
            expires_at=self._clock() + self._auth_ttl,
        )

    async def _get_session(self) -> AuthSession:
        """Get current session or obtain a new one."""
        session = self._session
        if session and not session.is_expired(self._clock()):
            return session

        async with self._lock:
            # Double-check after acquiring lock
            session = self._session
            if session and not session.is_expired(self._clock()):
                return session
            logger.info("Authorizing with storage backend")
            self._session = await self._authorize()
            return self._session

    async def _invalidate(self, stale: AuthSession) -> None:
        """Drop the session that was rejected, unless already replaced."""
        async with self._lock:
            if self._session is stale:
                self._session = None

    async def _get_bucket_id(self) -> str:
        if self._bucket_id:
            return self._bucket_id

        session = await self._get_session()
        if session.allowed_bucket_id:
            self._bucket_id = session.allowed_bucket_id
            return self._bucket_id

        data = await self._api(
            "b2_list_buckets",
            {"accountId": session.account_id, "bucketName": self._bucket_name},
        )
        for bucket in data.get("buckets", []):
            if bucket.get("bucketName") == self._bucket_name:
                self._bucket_id = bucket["bucketId"]
                return self._bucket_id
        raise StorageError(f"Bucket '{self._bucket_name}' not found")

    # -- transport ---------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to transient errors."""
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise StorageTransientError(f"Request timed out: {method} {url}") from e
        except httpx.RequestError as e:
            raise StorageTransientError(f"Request failed: {e}") from e

    async def _post_api(
        self, session: AuthSession, name: str, body: dict[str, Any]
    ) -> httpx.Response:
        return await self._request(
            "POST",
            f"{session.api_url}{API_PREFIX}/{name}",
            headers={"Authorization": session.authorization_token},
            json=body,
        )

    async def _api(
        self,
        name: str,
        body: dict[str, Any],
        *,
        storage_id: str | None = None,
    ) -> dict[str, Any]:
        """Call a B2 API operation with one re-authorization on 401."""
        session = await self._get_session()
        response = await self._post_api(session, name, body)

        # Handle 401 by re-authorizing and retrying once
        if response.status_code == 401:
            logger.info(f"{name} rejected session token, re-authorizing")
            await self._invalidate(session)
            try:
                session = await self._get_session()
            except StorageAuthError as e:
                raise StorageUnavailableError(f"{name}: re-authorization failed: {e}") from e
            response = await self._post_api(session, name, body)
            if response.status_code == 401:
                raise StorageUnavailableError(
                    f"{name} rejected after re-authorization: {response.text}"
                )

        self._raise_for_status(response, name, storage_id=storage_id)
        return response.json()

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str]:
        try:
            data = response.json()
        except ValueError:
            return "", response.text
        if not isinstance(data, dict):
            return "", response.text
        return str(data.get("code") or ""), str(data.get("message") or "")

    def _raise_for_status(
        self,
        response: httpx.Response,
        context: str,
        *,
        storage_id: str | None = None,
    ) -> None:
        if response.is_success:
            return

        status = response.status_code
        code, message = self._error_details(response)
        detail = f"{context} failed: {status} - {code or 'error'}: {message}"

        # Only B2 itself saying "no such file" about an object counts as absent
        if storage_id is not None and code in NOT_FOUND_CODES:
            raise StorageNotFoundError(storage_id, detail)
        if status == 401:
            raise StorageAuthError(detail)
        if status in (408, 429) or status >= 500:
            raise StorageTransientError(detail, status)
        raise StorageError(detail)

    async def _retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        return await retry_transient(
            operation,
            description=description,
            attempts=self._retry_attempts,
            base_delay=self._retry_backoff,
            max_delay=self._retry_max_backoff,
        )

    # -- upload ------------------------------------------------------------

    async def upload(
        self,
        stream: UploadSource,
        destination_path: str,
        on_progress: ProgressCallback | None = None,
        *,
        size: int | None = None,
        content_type: str | None = None,
        file_info: dict[str, str] | None = None,
    ) -> StoredObject:
        """
        Upload an object.

        Payloads that fit in one part are sent with b2_upload_file; anything
        larger goes through the large file API part by part, so memory use
        is bounded by the part size.

        Args:
            stream: bytes, binary file object, or async iterable of chunks
            destination_path: Object key in the bucket
            on_progress: Called with (bytes_sent, total_bytes)
            size: Declared total size, if known
            content_type: MIME type (B2 detects it when omitted)
            file_info: Custom metadata stored with the object

        Returns:
            StoredObject for the uploaded object

        Raises:
            UploadFailedError: If the upload did not complete. No object is
                left behind under a returned identity.
        """
        tracker = _ProgressTracker(on_progress, size)
        tracker.report(0)

        parts = _iter_parts(stream, self._part_size)
        first = await anext(parts, None)
        second = await anext(parts, None) if first is not None else None

        logger.info(
            "Starting upload",
            extra={"storage_path": destination_path, "size": size},
        )

        try:
            if second is None:
                stored = await self._upload_single(
                    first or b"", destination_path, tracker, content_type, file_info
                )
            else:
                stored = await self._upload_large(
                    _chain([first, second], parts),
                    destination_path,
                    tracker,
                    content_type,
                    file_info,
                )
        except UploadFailedError:
            raise
        except StorageError as e:
            raise UploadFailedError(f"{destination_path}: {e}") from e

        tracker.finish(stored.size)
        logger.info(
            "Upload complete",
            extra={
                "storage_id": stored.storage_id,
                "storage_path": stored.storage_path,
                "size": stored.size,
            },
        )
        return stored

    @staticmethod
    def _info_headers(file_info: dict[str, str] | None) -> dict[str, str]:
        return {
            f"X-Bz-Info-{key}": quote(str(value), safe="")
            for key, value in (file_info or {}).items()
        }

    def _raise_for_upload(self, response: httpx.Response, context: str) -> None:
        # Upload tokens are tied to one upload URL; a 401 means "get a new URL"
        if response.status_code == 401:
            raise StorageTransientError(f"{context}: upload token rejected", 401)
        self._raise_for_status(response, context)

    async def _upload_single(
        self,
        data: bytes,
        path: str,
        tracker: _ProgressTracker,
        content_type: str | None,
        file_info: dict[str, str] | None,
    ) -> StoredObject:
        sha1 = hashlib.sha1(data).hexdigest()
        bucket_id = await self._get_bucket_id()

        async def attempt() -> dict[str, Any]:
            # A fresh upload URL per attempt, as B2 requires after failures
            target = await self._api("b2_get_upload_url", {"bucketId": bucket_id})
            headers = {
                "Authorization": target["authorizationToken"],
                "X-Bz-File-Name": quote(path, safe="/"),
                "Content-Type": content_type or "b2/x-auto",
                "Content-Length": str(len(data)),
                "X-Bz-Content-Sha1": sha1,
                **self._info_headers(file_info),
            }
            response = await self._request(
                "POST", target["uploadUrl"], headers=headers, content=_body(data, tracker, 0)
            )
            self._raise_for_upload(response, "b2_upload_file")
            return response.json()

        result = await self._retry(attempt, f"Upload {path}")
        return StoredObject(
            storage_id=result["fileId"],
            storage_path=result.get("fileName", path),
            size=result.get("contentLength", len(data)),
            content_sha1=result.get("contentSha1", sha1),
            content_type=result.get("contentType", content_type),
            uploaded_at=_timestamp(result.get("uploadTimestamp")),
        )

    async def _upload_large(
        self,
        parts: AsyncIterator[bytes],
        path: str,
        tracker: _ProgressTracker,
        content_type: str | None,
        file_info: dict[str, str] | None,
    ) -> StoredObject:
        bucket_id = await self._get_bucket_id()
        started = await self._retry(
            lambda: self._api(
                "b2_start_large_file",
                {
                    "bucketId": bucket_id,
                    "fileName": path,
                    "contentType": content_type or "b2/x-auto",
                    "fileInfo": file_info or {},
                },
            ),
            f"Start large file {path}",
        )
        file_id = started["fileId"]
        logger.info(
            "Started large file",
            extra={"storage_id": file_id, "storage_path": path},
        )

        part_target: dict[str, Any] | None = None

        async def upload_part(number: int, data: bytes, sha1: str, offset: int) -> None:
            nonlocal part_target
            if part_target is None:
                part_target = await self._api("b2_get_upload_part_url", {"fileId": file_id})
            headers = {
                "Authorization": part_target["authorizationToken"],
                "X-Bz-Part-Number": str(number),
                "Content-Length": str(len(data)),
                "X-Bz-Content-Sha1": sha1,
            }
            try:
                response = await self._request(
                    "POST",
                    part_target["uploadUrl"],
                    headers=headers,
                    content=_body(data, tracker, offset),
                )
                self._raise_for_upload(response, f"b2_upload_part {number}")
            except StorageTransientError:
                part_target = None
                raise

        try:
            sha1s: list[str] = []
            offset = 0
            async for part in parts:
                number = len(sha1s) + 1
                sha1 = hashlib.sha1(part).hexdigest()
                await self._retry(
                    lambda: upload_part(number, part, sha1, offset),
                    f"Upload part {number} of {path}",
                )
                sha1s.append(sha1)
                offset += len(part)

            finished = await self._retry(
                lambda: self._api(
                    "b2_finish_large_file",
                    {"fileId": file_id, "partSha1Array": sha1s},
                ),
                f"Finish large file {path}",
            )
        except Exception:
            await self._cancel_large_file(file_id, path)
            raise

        return StoredObject(
            storage_id=finished.get("fileId", file_id),
            storage_path=finished.get("fileName", path),
            size=offset,
            content_type=finished.get("contentType", content_type),
            uploaded_at=_timestamp(finished.get("uploadTimestamp")),
        )

    async def _cancel_large_file(self, file_id: str, path: str) -> None:
        """Discard an unfinished large file so no parts remain stored."""
        try:
            await self._api(
                "b2_cancel_large_file", {"fileId": file_id}, storage_id=file_id
            )
            logger.info(
                "Cancelled unfinished large file",
                extra={"storage_id": file_id, "storage_path": path},
            )
        except StorageNotFoundError:
            logger.debug("Unfinished large file already gone", extra={"storage_id": file_id})
        except StorageError as e:
            logger.error(
                f"Failed to cancel unfinished large file: {e}",
                extra={"storage_id": file_id, "storage_path": path},
            )

    # -- delete / lookup ---------------------------------------------------

    async def delete(self, storage_id: str, storage_path: str) -> None:
        """
        Delete an object version.

        Idempotent: an object that is already gone counts as deleted.
        """

        async def attempt() -> None:
            await self._api(
                "b2_delete_file_version",
                {"fileId": storage_id, "fileName": storage_path},
                storage_id=storage_id,
            )

        try:
            await self._retry(attempt, f"Delete {storage_path}")
        except StorageNotFoundError:
            logger.info(
                "Object already absent, delete is a no-op",
                extra={"storage_id": storage_id, "storage_path": storage_path},
            )
            return

        logger.info(
            "Deleted object",
            extra={"storage_id": storage_id, "storage_path": storage_path},
        )

    async def _get_file_info(self, storage_id: str) -> ObjectInfo:
        data = await self._api(
            "b2_get_file_info", {"fileId": storage_id}, storage_id=storage_id
        )
        return ObjectInfo.from_b2(data)

    async def get_info(self, storage_id: str) -> ObjectInfo:
        """
        Get object metadata.

        Raises:
            StorageNotFoundError: If the object does not exist
            StorageError: If existence could not be determined
        """
        return await self._retry(
            lambda: self._get_file_info(storage_id), f"Get info {storage_id}"
        )

    async def exists(self, storage_id: str, *, retry: bool = True) -> bool:
        """
        Check whether an object exists.

        Returns True or False only when the backend confirmed it. Any failure
        to find out raises a StorageError instead of returning False.

        Args:
            storage_id: Backend object id
            retry: Retry transient failures (disable to bound scan time)
        """
        try:
            if retry:
                await self.get_info(storage_id)
            else:
                await self._get_file_info(storage_id)
        except StorageNotFoundError:
            return False
        return True

    async def list_objects(self, prefix: str = "", max_count: int = 1000) -> list[ObjectInfo]:
        """List objects by name, following B2 pagination up to max_count."""
        bucket_id = await self._get_bucket_id()
        objects: list[ObjectInfo] = []
        start_name: str | None = None

        while len(objects) < max_count:
            body: dict[str, Any] = {
                "bucketId": bucket_id,
                "prefix": prefix,
                "maxFileCount": min(1000, max_count - len(objects)),
            }
            if start_name:
                body["startFileName"] = start_name

            data = await self._retry(
                lambda body=body: self._api("b2_list_file_names", body),
                f"List {prefix or '/'}",
            )
            objects.extend(ObjectInfo.from_b2(item) for item in data.get("files", []))
            start_name = data.get("nextFileName")
            if not start_name:
                break

        return objects

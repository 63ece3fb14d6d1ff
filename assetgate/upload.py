"""Upload pipeline.

Drives one file from the caller into the object store:

    IDLE -> UPLOADING -> COMPLETED | FAILED

The destination path is namespaced by ownership context so unrelated
uploads never collide. Progress goes to a best-effort channel keyed by
operation id. On success the caller gets a Reference back; storing it in
the metadata store is up to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import re
from collections.abc import AsyncIterator
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .errors import UploadStateError
from .progress import ProgressChannel, ProgressHub, UploadPhase, UploadProgressEvent
from .reference import Reference
from .types import PathSegment

if TYPE_CHECKING:
    from .storage import B2StorageClient, StoredObject

logger = logging.getLogger(__name__)

# Chunk size for reading local files (64KB)
CHUNK_SIZE = 64 * 1024

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


class UploadState(str, Enum):
    """Lifecycle of an upload operation."""

    IDLE = "idle"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe final path segment."""
    name = re.split(r"[\\/]", filename)[-1]
    name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return name or "file"


class UploadDestination(BaseModel):
    """
    Ownership context for an upload.

    Renders ``<namespace>/<owner_id>/<scope...>/<unique>_<filename>``, e.g.
    ``courses/c1/chapters/ch1/abc_video.mp4``.
    """

    namespace: PathSegment
    owner_id: PathSegment
    scope: tuple[PathSegment, ...] = ()
    unique_prefix: PathSegment | None = None

    def path_for(self, filename: str) -> str:
        prefix = self.unique_prefix or uuid4().hex[:12]
        segments = [
            self.namespace,
            self.owner_id,
            *self.scope,
            f"{prefix}_{safe_filename(filename)}",
        ]
        return "/".join(segments)


class UploadFile(BaseModel):
    """A caller-provided file to upload."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    # bytes, binary file object, or async iterable of chunks
    data: Any
    size: int | None = Field(default=None, ge=0)
    content_type: str | None = None

    @classmethod
    def from_path(cls, path: str | os.PathLike[str], content_type: str | None = None) -> UploadFile:
        """Create an UploadFile streaming from a local path."""
        local = Path(path)
        if not local.exists():
            raise FileNotFoundError(f"Local file not found: {local}")

        async def file_chunks() -> AsyncIterator[bytes]:
            with open(local, "rb") as f:
                while True:
                    chunk = await asyncio.to_thread(f.read, CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk

        return cls(
            name=local.name,
            data=file_chunks(),
            size=local.stat().st_size,
            content_type=content_type or mimetypes.guess_type(local.name)[0],
        )


class UploadOperation:
    """One run of the upload state machine."""

    def __init__(
        self,
        operation_id: str,
        file: UploadFile,
        destination_path: str,
        client: B2StorageClient,
        hub: ProgressHub,
        sink: ProgressChannel | None = None,
    ):
        self.operation_id = operation_id
        self.file = file
        self.destination_path = destination_path
        self.state = UploadState.IDLE
        self.reference: Reference | None = None
        self.stored: StoredObject | None = None
        self.error: str | None = None
        self._client = client
        self._hub = hub
        self._sink = sink
        self._bytes_sent = 0

    def _publish(
        self,
        bytes_sent: int,
        total: int | None,
        phase: UploadPhase,
        error: str | None = None,
    ) -> None:
        event = UploadProgressEvent.create(self.operation_id, bytes_sent, total, phase, error)
        self._hub.publish(event)
        if self._sink is not None:
            self._sink.offer(event)

    def _on_progress(self, bytes_sent: int, total: int | None) -> None:
        self._bytes_sent = bytes_sent
        self._publish(bytes_sent, total, UploadPhase.UPLOADING)

    async def run(self) -> Reference:
        """
        Upload the file.

        Returns:
            Reference to the stored object

        Raises:
            UploadStateError: If the operation already ran
            UploadFailedError: If the upload failed (state becomes FAILED)
        """
        if self.state is not UploadState.IDLE:
            raise UploadStateError(
                f"Upload {self.operation_id} cannot start from state {self.state.value}"
            )

        self.state = UploadState.UPLOADING
        self._publish(0, self.file.size, UploadPhase.STARTING)
        logger.info(
            f"Uploading {self.file.name}",
            extra={
                "operation_id": self.operation_id,
                "storage_path": self.destination_path,
                "size": self.file.size,
            },
        )

        try:
            stored = await self._client.upload(
                self.file.data,
                self.destination_path,
                self._on_progress,
                size=self.file.size,
                content_type=self.file.content_type,
                file_info={"original-filename": self.file.name},
            )
        except Exception as e:
            self.state = UploadState.FAILED
            self.error = str(e)
            self._publish(self._bytes_sent, self.file.size, UploadPhase.FAILED, error=str(e))
            logger.error(
                f"Upload failed: {e}",
                extra={"operation_id": self.operation_id, "storage_path": self.destination_path},
            )
            raise

        self.state = UploadState.COMPLETED
        self.stored = stored
        self.reference = stored.reference
        self._publish(stored.size, stored.size, UploadPhase.COMPLETED)
        return self.reference


class UploadPipeline:
    """Creates and runs upload operations against one storage client."""

    def __init__(self, client: B2StorageClient, hub: ProgressHub | None = None):
        self._client = client
        self._hub = hub or ProgressHub()

    @property
    def hub(self) -> ProgressHub:
        return self._hub

    def prepare(
        self,
        file: UploadFile,
        destination: UploadDestination,
        *,
        operation_id: str | None = None,
        progress_sink: ProgressChannel | None = None,
    ) -> UploadOperation:
        """Create an idle operation with its destination path resolved."""
        return UploadOperation(
            operation_id=operation_id or f"upload_{uuid4().hex}",
            file=file,
            destination_path=destination.path_for(file.name),
            client=self._client,
            hub=self._hub,
            sink=progress_sink,
        )

    async def upload(
        self,
        file: UploadFile,
        destination: UploadDestination,
        *,
        operation_id: str | None = None,
        progress_sink: ProgressChannel | None = None,
    ) -> Reference:
        """Upload a file and return its reference."""
        operation = self.prepare(
            file, destination, operation_id=operation_id, progress_sink=progress_sink
        )
        return await operation.run()

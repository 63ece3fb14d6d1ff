"""assetgate service - the single entry point for calling code.

Build one AssetGate at process startup and hand it to every consumer:

    config = AssetGateConfig()
    async with AssetGate.from_config(config) as gate:
        ref = await gate.upload(
            UploadFile.from_path("lesson1.mp4"),
            UploadDestination(namespace="courses", owner_id=course_id,
                              scope=("chapters", chapter_id)),
        )
        result = gate.issue_signed_url(ref, asset_class=AssetClass.VIDEO)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .config import AssetGateConfig
from .delivery import (
    AssetClass,
    BatchItemResult,
    IssueResult,
    SignedUrlService,
)
from .errors import ConfigError
from .progress import ProgressChannel, ProgressHub
from .reconcile import MetadataRecord, OrphanReport, ReconciliationScanner
from .reference import Reference, decode
from .storage import B2StorageClient, ObjectInfo
from .upload import UploadDestination, UploadFile, UploadPipeline

logger = logging.getLogger(__name__)


class AssetGate:
    """Upload, sign, delete and reconcile private assets."""

    def __init__(
        self,
        client: B2StorageClient,
        signer: SignedUrlService,
        *,
        hub: ProgressHub | None = None,
        reconcile_concurrency: int = 8,
        reconcile_timeout: float = 10.0,
    ):
        self._client = client
        self._signer = signer
        self._hub = hub or ProgressHub()
        self._pipeline = UploadPipeline(client, self._hub)
        self._scanner = ReconciliationScanner(
            client,
            concurrency=reconcile_concurrency,
            item_timeout=reconcile_timeout,
        )

    @classmethod
    def from_config(cls, config: AssetGateConfig) -> AssetGate:
        """
        Wire up all components from configuration.

        Raises:
            ConfigError: If strict_signing is on and no signing secret is set
        """
        if config.signing_secret is None:
            if config.strict_signing:
                raise ConfigError(
                    "Signing secret is not configured. Set ASSETGATE_SIGNING_SECRET "
                    "or disable ASSETGATE_STRICT_SIGNING."
                )
            logger.warning("Starting without a signing secret; signed URLs are unavailable")

        return cls(
            client=B2StorageClient.from_config(config),
            signer=SignedUrlService.from_config(config),
            hub=ProgressHub(config.progress_queue_size),
            reconcile_concurrency=config.reconcile_concurrency,
            reconcile_timeout=config.batch_item_timeout,
        )

    @property
    def client(self) -> B2StorageClient:
        return self._client

    @property
    def signer(self) -> SignedUrlService:
        return self._signer

    @property
    def pipeline(self) -> UploadPipeline:
        return self._pipeline

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> AssetGate:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def subscribe_progress(self, operation_id: str) -> ProgressChannel:
        """Listen to progress events of one upload operation."""
        return self._hub.subscribe(operation_id)

    def unsubscribe_progress(self, operation_id: str, channel: ProgressChannel) -> None:
        self._hub.unsubscribe(operation_id, channel)

    async def upload(
        self,
        file: UploadFile,
        destination: UploadDestination,
        progress_sink: ProgressChannel | None = None,
        operation_id: str | None = None,
    ) -> Reference:
        """Upload a file under the destination's namespace."""
        return await self._pipeline.upload(
            file, destination, operation_id=operation_id, progress_sink=progress_sink
        )

    def issue_signed_url(
        self,
        reference: str | Reference,
        window_seconds: int | None = None,
        asset_class: AssetClass | None = None,
    ) -> IssueResult:
        """Issue a signed delivery URL, or a ConfigurationGap."""
        return self._signer.issue(reference, window_seconds, asset_class=asset_class)

    async def issue_signed_urls(
        self,
        references: Sequence[str | Reference],
        window_seconds: int | None = None,
        asset_class: AssetClass | None = None,
    ) -> list[BatchItemResult]:
        return await self._signer.issue_batch(
            references, window_seconds, asset_class=asset_class
        )

    async def delete(self, reference: str | Reference) -> None:
        """
        Delete the object behind a reference. Idempotent.

        Raises:
            MalformedReferenceError: If the reference cannot be decoded
            StorageError: If the backend could not complete the delete
        """
        ref = reference if isinstance(reference, Reference) else decode(reference)
        await self._client.delete(ref.storage_id, ref.storage_path)

    async def get_info(self, reference: str | Reference) -> ObjectInfo:
        ref = reference if isinstance(reference, Reference) else decode(reference)
        return await self._client.get_info(ref.storage_id)

    async def list_objects(self, prefix: str = "", max_count: int = 1000) -> list[ObjectInfo]:
        return await self._client.list_objects(prefix, max_count)

    async def reconcile(self, records: Iterable[MetadataRecord]) -> OrphanReport:
        """Find records whose objects are gone. Never deletes anything."""
        return await self._scanner.scan(records)

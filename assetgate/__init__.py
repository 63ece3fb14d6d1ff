"""assetgate - private asset gateway.

Stores private media in an object store, hands calling code a stable
private reference, issues short-lived signed delivery URLs and finds
metadata records whose objects have disappeared.

Example:
    from assetgate import (
        AssetClass, AssetGate, AssetGateConfig, UploadDestination, UploadFile
    )

    config = AssetGateConfig()  # ASSETGATE_* environment variables

    async with AssetGate.from_config(config) as gate:
        # Upload and keep the reference in your own metadata store
        ref = await gate.upload(
            UploadFile.from_path("lesson1.mp4"),
            UploadDestination(
                namespace="courses", owner_id="c1", scope=("chapters", "ch1")
            ),
        )
        chapter.video_url = str(ref)  # private:4za92:courses/c1/chapters/ch1/..._lesson1.mp4

        # Hand out a signed URL when a client asks for the asset
        result = gate.issue_signed_url(chapter.video_url, asset_class=AssetClass.VIDEO)
        if isinstance(result, SignedUrl):
            return result.url

        # Find records whose objects are gone
        report = await gate.reconcile(records)
        print(render_remediation_script(report))
"""

from importlib.metadata import PackageNotFoundError, version

from .config import AssetGateConfig
from .delivery import (
    AssetClass,
    BatchItemResult,
    ConfigurationGap,
    IssueResult,
    SignedUrl,
    SignedUrlCache,
    SignedUrlService,
)
from .errors import (
    AssetGateError,
    ConfigError,
    InvalidIdentifierError,
    MalformedReferenceError,
    UploadStateError,
)
from .progress import ProgressChannel, ProgressHub, UploadPhase, UploadProgressEvent
from .reconcile import (
    InconclusiveRecord,
    MetadataRecord,
    OrphanedRecord,
    OrphanReport,
    ReconciliationScanner,
    render_remediation_script,
)
from .reference import Reference, decode, encode, is_private_reference
from .service import AssetGate
from .storage import (
    B2StorageClient,
    ObjectInfo,
    StorageAuthError,
    StorageError,
    StorageNotFoundError,
    StorageTransientError,
    StorageUnavailableError,
    StoredObject,
    UploadFailedError,
)
from .upload import (
    UploadDestination,
    UploadFile,
    UploadOperation,
    UploadPipeline,
    UploadState,
)

try:
    __version__ = version("assetgate")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AssetClass",
    # Service
    "AssetGate",
    "AssetGateConfig",
    # Errors
    "AssetGateError",
    "B2StorageClient",
    "BatchItemResult",
    "ConfigError",
    "ConfigurationGap",
    "InconclusiveRecord",
    "InvalidIdentifierError",
    "IssueResult",
    "MalformedReferenceError",
    # Reconciliation
    "MetadataRecord",
    "ObjectInfo",
    "OrphanReport",
    "OrphanedRecord",
    "ProgressChannel",
    "ProgressHub",
    "ReconciliationScanner",
    # References
    "Reference",
    "SignedUrl",
    "SignedUrlCache",
    "SignedUrlService",
    "StorageAuthError",
    "StorageError",
    "StorageNotFoundError",
    "StorageTransientError",
    "StorageUnavailableError",
    "StoredObject",
    "UploadDestination",
    "UploadFailedError",
    "UploadFile",
    "UploadOperation",
    "UploadPhase",
    "UploadPipeline",
    "UploadProgressEvent",
    "UploadState",
    "UploadStateError",
    # Version
    "__version__",
    "decode",
    "encode",
    "is_private_reference",
    "render_remediation_script",
]

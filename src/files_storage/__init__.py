"""
S3 storage adapter for uploaded files.

Contains the ``S3Storage`` adapter, its boto3 backend, the transfer strategy
and the error types callers are expected to handle.
"""
from files_storage.encoding import encode_content_disposition
from files_storage.errors import (
    AccessDeniedError,
    ConfigurationError,
    NotFoundError,
    PartialBatchFailure,
    StorageError,
    TransportError,
)
from files_storage.schemas import (
    DownloadedFile,
    PresignedCredential,
    StorageConfig,
    StoredObjectSource,
    StreamSource,
    TransferMode,
    TransferPlan,
)
from files_storage.storage import S3Storage

__all__ = [
    "AccessDeniedError",
    "ConfigurationError",
    "DownloadedFile",
    "NotFoundError",
    "PartialBatchFailure",
    "PresignedCredential",
    "S3Storage",
    "StorageConfig",
    "StorageError",
    "StoredObjectSource",
    "StreamSource",
    "TransferMode",
    "TransferPlan",
    "TransportError",
    "encode_content_disposition",
]

##################################
# --- Storage data model --- #
##################################

import io
import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, IO, Any, BinaryIO, Dict, Mapping, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from files_storage.errors import ConfigurationError

if TYPE_CHECKING:
    from files_storage.backend import ObjectStorageBackend

MiB = 1024 * 1024

DEFAULT_UPLOAD_MULTIPART_THRESHOLD = 15 * MiB
DEFAULT_COPY_MULTIPART_THRESHOLD = 100 * MiB
DEFAULT_MULTIPART_CONCURRENCY = 10
DEFAULT_DELETE_CONCURRENCY = 1

# S3 DeleteObjects accepts at most this many keys per request
BATCH_DELETE_LIMIT = 1000


@dataclass(frozen=True)
class StorageConfig:
    """Immutable configuration of one storage adapter.

    ``prefix`` is a logical namespace inside the bucket; surrounding slashes
    are dropped. Invalid values raise ``ConfigurationError`` on construction.
    """
    bucket: str
    prefix: Optional[str] = None
    host: Optional[str] = None
    upload_options: Mapping[str, Any] = field(default_factory=dict)
    upload_multipart_threshold: int = DEFAULT_UPLOAD_MULTIPART_THRESHOLD
    copy_multipart_threshold: int = DEFAULT_COPY_MULTIPART_THRESHOLD
    multipart_concurrency: int = DEFAULT_MULTIPART_CONCURRENCY
    delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY

    def __post_init__(self):
        if not self.bucket:
            raise ConfigurationError("bucket is required")

        for name in (
            "upload_multipart_threshold",
            "copy_multipart_threshold",
            "multipart_concurrency",
            "delete_concurrency",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if not isinstance(self.upload_options, Mapping):
            raise ConfigurationError("upload_options must be a mapping")

        # frozen dataclass, so bypass __setattr__ for normalisation
        object.__setattr__(self, "prefix", self.prefix.strip("/") or None if self.prefix else None)
        object.__setattr__(self, "upload_options", MappingProxyType(dict(self.upload_options)))

    @classmethod
    def build(
        cls,
        bucket: str,
        prefix: Optional[str] = None,
        host: Optional[str] = None,
        upload_options: Optional[Mapping[str, Any]] = None,
        multipart_threshold: Optional[Mapping[str, int]] = None,
        multipart_concurrency: int = DEFAULT_MULTIPART_CONCURRENCY,
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
    ) -> "StorageConfig":
        """Build from the ``{"upload": ..., "copy": ...}`` threshold mapping."""
        if multipart_threshold is not None and not isinstance(multipart_threshold, Mapping):
            raise ConfigurationError("multipart_threshold must be a mapping with 'upload' and 'copy' keys")
        thresholds = dict(multipart_threshold or {})
        upload_threshold = thresholds.get("upload")
        copy_threshold = thresholds.get("copy")
        unknown = set(thresholds) - {"upload", "copy"}
        if unknown:
            raise ConfigurationError(f"Unknown multipart_threshold keys: {sorted(unknown)}")

        return cls(
            bucket=bucket,
            prefix=prefix,
            host=host,
            upload_options=upload_options or {},
            upload_multipart_threshold=DEFAULT_UPLOAD_MULTIPART_THRESHOLD if upload_threshold is None else upload_threshold,
            copy_multipart_threshold=DEFAULT_COPY_MULTIPART_THRESHOLD if copy_threshold is None else copy_threshold,
            multipart_concurrency=multipart_concurrency,
            delete_concurrency=delete_concurrency,
        )


class BackendIdentity(NamedTuple):
    """Who a backend talks to and as whom.

    Two backends with equal identities can copy objects server-side.
    """
    kind: str
    endpoint: Optional[str]
    credential: Optional[str]


@dataclass
class StreamSource:
    """Bytes that have to be written to the backend."""
    stream: BinaryIO
    size: Optional[int] = None


@dataclass(frozen=True)
class StoredObjectSource:
    """An object already stored in a backend.

    It is copied server-side when the destination shares the backend's
    identity, otherwise its bytes are read back through ``backend``.
    """
    backend: "ObjectStorageBackend"
    key: str
    size: Optional[int] = None

    @property
    def identity(self) -> BackendIdentity:
        return self.backend.identity

    @property
    def bucket(self) -> str:
        return self.backend.bucket


TransferSource = Union[StreamSource, StoredObjectSource]


def _stream_size(stream: Any) -> Optional[int]:
    size = getattr(stream, "size", None)
    if isinstance(size, int):
        return size
    try:
        return os.fstat(stream.fileno()).st_size
    except (AttributeError, OSError, io.UnsupportedOperation):
        pass
    if isinstance(stream, io.BytesIO):
        return stream.getbuffer().nbytes
    return None


def to_transfer_source(obj: Any) -> TransferSource:
    """Coerce bytes, paths and file objects into a ``TransferSource``.

    Sources that are already a ``StreamSource`` or ``StoredObjectSource`` are
    returned as-is. Local paths are opened by ``S3Storage.upload`` itself.
    """
    if isinstance(obj, (StreamSource, StoredObjectSource)):
        return obj
    if isinstance(obj, (bytes, bytearray, memoryview)):
        data = bytes(obj)
        return StreamSource(stream=io.BytesIO(data), size=len(data))
    if hasattr(obj, "read"):
        return StreamSource(stream=obj, size=_stream_size(obj))
    raise TypeError(f"Cannot upload object of type {type(obj).__name__}")


class TransferMode(str, Enum):
    COPY = "copy"
    WRITE = "write"


@dataclass(frozen=True)
class TransferPlan:
    """Outcome of the transfer strategy decision for one upload."""
    mode: TransferMode
    multipart: bool
    threshold: int
    destination_path: str
    size: Optional[int] = None


class DownloadedFile(NamedTuple):
    """A downloaded object in a local temporary file.

    The file is deleted when closed; use it as a context manager.
    """
    file: IO[bytes]
    content_type: Optional[str]

    def __enter__(self) -> "DownloadedFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.file.close()


class PresignedCredential(BaseModel):
    """Everything a client needs for one direct upload to the bucket."""
    method: str = Field(description="HTTP verb the client must use, `post` or `put`.")
    url: str = Field(description="Endpoint to send the upload to.")
    key: str = Field(description="Bucket key the upload is authorised for.")
    fields: Dict[str, str] = Field(
        default_factory=dict,
        description="Form fields to send along a POST upload.",
    )
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Headers to send along a PUT upload.",
    )
    expires_in: int = Field(description="Seconds the credential stays valid.")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "method": "post",
                "url": "https://my-bucket.s3.amazonaws.com/",
                "key": "cache/4f1c9a.pdf",
                "fields": {
                    "key": "cache/4f1c9a.pdf",
                    "Content-Type": "application/pdf",
                    "policy": "eyJleHBpcmF0aW9uIjog...",
                },
                "headers": {},
                "expires_in": 3600,
            }
        }
    )
